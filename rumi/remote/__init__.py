"""
Remote access layer for Rumi.

This module handles everything that touches the wire:
- Connecting and authenticating over SSH
- Running remote commands
- Uploading files and directories
"""

from .transport import Connection, connect, authenticate
from .commands import CommandRunner
from .files import FileChannel

__all__ = [
    'Connection',
    'connect',
    'authenticate',
    'CommandRunner',
    'FileChannel'
]
