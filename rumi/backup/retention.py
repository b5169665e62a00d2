"""
Retention policy enforcement for backups.

Opens a dedicated connection, runs one sweep over the remote catalog and
closes the connection again. Each sweep gets its own connection so that it
can run on a scheduler thread.
"""

import logging

from rumi.models import Credentials
from rumi.remote.transport import connect
from .store import BackupStore

logger = logging.getLogger(__name__)


def enforce_retention(credentials: Credentials, config, retention_days=None) -> int:
    """
    Delete backups older than the configured retention period.

    Args:
        credentials: SSH credentials of the host holding the catalog
        config: Configuration class (BACKUP_ROOT, BACKUP_RETENTION_DAYS, ...)
        retention_days: Override for config.BACKUP_RETENTION_DAYS

    Returns:
        Number of backups deleted

    Raises:
        RemoteConnectionError: If the host cannot be reached
        AuthenticationError: If authentication fails
    """
    if retention_days is None:
        retention_days = config.BACKUP_RETENTION_DAYS

    logger.info("Starting retention enforcement on %s (%d days)", credentials.host, retention_days)

    with connect(credentials, timeout=config.SSH_TIMEOUT) as connection:
        runner = connection.command_runner()
        files = connection.file_channel()
        store = BackupStore.from_config(runner, files, config)
        deleted = store.cleanup_old_backups(retention_days)

    logger.info("Retention enforcement complete on %s: %d deleted", credentials.host, deleted)
    return deleted
