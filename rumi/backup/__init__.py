"""
Backup module for Rumi.

This module handles the remote backup catalog:
- Archive naming and the remote commands that build archives
- Create, list, delete and restore of catalog entries
- Retention policy enforcement
"""

from .archive import ArchiveCommands, generate_archive_name
from .store import BackupStore
from .retention import enforce_retention

__all__ = [
    'ArchiveCommands',
    'generate_archive_name',
    'BackupStore',
    'enforce_retention'
]
