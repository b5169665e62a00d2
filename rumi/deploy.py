"""
Website publish workflow - protects a live site with the backup catalog.

Workflow:
1. Back up the live site directory (if one exists)
2. Upload the new build
3. Restore the backup if the upload fails

Rollback restores any earlier website backup of the same deployment.
"""

import logging
import posixpath
from datetime import datetime, timezone
from typing import List, Optional

from rumi.backup.store import BackupStore
from rumi.exceptions import NotFoundError, RumiError
from rumi.models import BackupKind, BackupRecord

logger = logging.getLogger(__name__)


class WebsiteDeployer:
    """
    Publishes and rolls back static websites on one connection.
    """

    def __init__(self, connection, config):
        """
        Initialize website deployer.

        Args:
            connection: Connection owned by the calling thread
            config: Configuration class (WEB_ROOT, DRY_RUN, backup settings)
        """
        self.config = config
        self.runner = connection.command_runner()
        self.files = connection.file_channel()
        self.store = BackupStore.from_config(self.runner, self.files, config)
        self.logs = []

    def website_path(self, domain: str) -> str:
        return posixpath.join(self.config.WEB_ROOT, domain)

    def publish(self, deployment_name: str, domain: str, dist_path) -> Optional[BackupRecord]:
        """
        Publish a local build directory as the live site of a domain.

        Args:
            deployment_name: Owning deployment
            domain: Domain served by the site
            dist_path: Local directory with the build to upload

        Returns:
            Backup taken of the previous site, or None if there was none

        Raises:
            FileOperationError: If the upload fails (after restoring the backup)
            CommandExecutionError: If the backup or restore commands fail
        """
        site_path = self.website_path(domain)

        if self.config.DRY_RUN:
            self._log(f"DRY RUN: Would publish {dist_path} to {site_path} for {deployment_name}")
            return None

        self._log(f"Publishing {deployment_name} ({domain}) to {site_path}")

        backup = None
        if self.files.directory_exists(site_path):
            self._log("Creating backup of the live site")
            backup = self.store.create_website_backup(deployment_name, domain, site_path)
            self._log(f"Backup created: {backup.id} ({backup.size_bytes} bytes)")
        else:
            self._log("No live site found, skipping backup")

        try:
            self.files.upload_directory(dist_path, site_path)
        except RumiError as e:
            self._log(f"Upload failed: {e}")
            if backup is not None:
                self._log(f"Restoring backup {backup.id}")
                self.store.restore_website_backup(backup, site_path)
                self._log("Previous site restored")
            raise

        self._log("Publish completed successfully")
        return backup

    def rollback(self, deployment_name: str, backup_id: str) -> BackupRecord:
        """
        Restore a website backup of a deployment into its site directory.

        Raises:
            NotFoundError: If the backup does not exist or belongs elsewhere
        """
        self._log(f"Rolling back {deployment_name} to backup {backup_id}")

        record = self.store.get_backup(backup_id)
        if record.deployment_name != deployment_name or record.kind != BackupKind.WEBSITE:
            raise NotFoundError(f"Backup '{backup_id}' not found for website {deployment_name}")

        if self.config.DRY_RUN:
            self._log(f"DRY RUN: Would restore backup {backup_id} to {self.website_path(record.domain)}")
            return record

        self.store.restore_website_backup(record, self.website_path(record.domain))
        self._log("Rollback completed successfully")
        return record

    def list_backups(self, deployment_name: str) -> List[BackupRecord]:
        return self.store.list_backups(deployment_name)

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)
