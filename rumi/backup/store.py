"""
Backup catalog kept on the remote host.

BackupStore only talks to the host through a CommandRunner and a FileChannel,
so it can be driven against a live connection or an in-memory fake alike.

Create is a two-phase operation: the archive is written first, then its
metadata. If the metadata write fails the archive is left behind without a
catalog entry (an orphan). Records are never updated, only created or
deleted.

Lookups scan every metadata file, so list/get/delete cost one remote command
per catalog entry.
"""

import logging
import posixpath
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from rumi.exceptions import CommandExecutionError, NotFoundError, ParseError, RumiError
from rumi.models import BackupKind, BackupRecord, parse_size
from .archive import (
    ArchiveCommands,
    LABEL_CONFIGURATION,
    LABEL_WEBSITE,
    archive_path,
    backup_directory,
    generate_archive_name,
    is_under,
    metadata_directory,
    metadata_path,
)

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_ROOT = '/var/backups/rumi'
STAGING_DIRNAME = 'staging'


class BackupStore:
    """
    Creates, lists, deletes, restores and expires backups under a backup root.
    """

    def __init__(
        self,
        runner,
        files,
        backup_root: str = DEFAULT_BACKUP_ROOT,
        web_user: str = 'www-data',
        web_group: str = 'www-data',
        nginx_config_path: str = '/etc/nginx/sites-available',
        ssl_cert_path: str = '/etc/letsencrypt/live',
        strict_catalog: bool = False,
        sudo: bool = True,
    ):
        """
        Initialize the store.

        Args:
            runner: CommandRunner used for every remote command
            files: FileChannel used for existence checks and metadata writes
            backup_root: Absolute remote directory holding archives and metadata
            web_user: Owner applied to restored website trees
            web_group: Group applied to restored website trees
            nginx_config_path: Directory of per-domain reverse proxy configs
            ssl_cert_path: Directory of per-domain certificate directories
            strict_catalog: Raise on malformed metadata instead of skipping it
            sudo: Prefix privileged commands with sudo
        """
        if not posixpath.isabs(backup_root):
            raise ValueError(f"Backup root must be an absolute path: {backup_root}")

        self.runner = runner
        self.files = files
        self.backup_root = posixpath.normpath(backup_root)
        self.web_user = web_user
        self.web_group = web_group
        self.nginx_config_path = nginx_config_path
        self.ssl_cert_path = ssl_cert_path
        self.strict_catalog = strict_catalog
        self.commands = ArchiveCommands(sudo=sudo)

    @classmethod
    def from_config(cls, runner, files, config) -> 'BackupStore':
        return cls(
            runner,
            files,
            backup_root=config.BACKUP_ROOT,
            web_user=config.WEB_USER,
            web_group=config.WEB_GROUP,
            nginx_config_path=config.NGINX_CONFIG_PATH,
            ssl_cert_path=config.SSL_CERT_PATH,
            strict_catalog=config.STRICT_CATALOG,
            sudo=config.USE_SUDO,
        )

    def create_website_backup(self, deployment_name: str, domain: str, source_path: str) -> BackupRecord:
        """
        Archive a website tree and record it in the catalog.

        Args:
            deployment_name: Owning deployment
            domain: Domain of the deployment
            source_path: Remote directory to archive

        Returns:
            The persisted BackupRecord

        Raises:
            CommandExecutionError: If a remote command fails
            ParseError: If the archive size cannot be parsed
            FileOperationError: If the metadata cannot be written
        """
        backup_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc)
        name = generate_archive_name(deployment_name, domain, LABEL_WEBSITE, created_at)
        directory = backup_directory(self.backup_root, name)
        archive = archive_path(self.backup_root, name)

        logger.info("Creating website backup for %s from %s", domain, source_path)

        self.runner.run_checked(self.commands.make_directory(directory))
        self.runner.run_checked(self.commands.compress(archive, source_path))
        size_bytes = self._archive_size(archive)

        record = BackupRecord(
            id=backup_id,
            deployment_name=deployment_name,
            domain=domain,
            created_at=created_at,
            kind=BackupKind.WEBSITE,
            artifact_path=archive,
            size_bytes=size_bytes,
            description=f"Website backup for {domain}",
        )
        self._save_metadata(record)

        logger.info("Website backup created: %s (%d bytes)", record.id, record.size_bytes)
        return record

    def create_configuration_backup(self, deployment_name: str, domain: str) -> BackupRecord:
        """
        Archive the reverse proxy config and TLS certificates of a domain.

        Both sources are copied best-effort into a staging directory, since
        either may legitimately be missing. The staging directory is removed
        whether compression succeeds or not.

        Returns:
            The persisted BackupRecord
        """
        backup_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc)
        name = generate_archive_name(deployment_name, domain, LABEL_CONFIGURATION, created_at)
        directory = backup_directory(self.backup_root, name)
        archive = archive_path(self.backup_root, name)
        staging = posixpath.join(directory, STAGING_DIRNAME)

        logger.info("Creating configuration backup for %s", domain)

        self.runner.run_checked(self.commands.make_directory(staging))

        sources = [
            (posixpath.join(self.nginx_config_path, domain), posixpath.join(staging, 'nginx_config')),
            (posixpath.join(self.ssl_cert_path, domain), posixpath.join(staging, 'ssl_certs')),
        ]
        for source, destination in sources:
            try:
                self.runner.run(self.commands.copy_if_present(source, destination))
            except CommandExecutionError as e:
                logger.warning("Could not stage %s: %s", source, e)

        try:
            self.runner.run_checked(self.commands.compress(archive, staging))
        finally:
            try:
                self.runner.run(self.commands.remove_trees(staging))
            except CommandExecutionError as e:
                logger.warning("Failed to remove staging directory %s: %s", staging, e)

        size_bytes = self._archive_size(archive)

        record = BackupRecord(
            id=backup_id,
            deployment_name=deployment_name,
            domain=domain,
            created_at=created_at,
            kind=BackupKind.CONFIGURATION,
            artifact_path=archive,
            size_bytes=size_bytes,
            description=f"Configuration backup for {domain}",
        )
        self._save_metadata(record)

        logger.info("Configuration backup created: %s (%d bytes)", record.id, record.size_bytes)
        return record

    def list_backups(self, deployment_name: Optional[str] = None) -> List[BackupRecord]:
        """
        List catalog entries, newest first.

        Entries that cannot be read or parsed are skipped with a warning,
        unless the store is strict, in which case the error is raised.

        Args:
            deployment_name: Only return records of this deployment (exact match)

        Returns:
            Records sorted by created_at descending
        """
        backups = [
            record for _, record in self._scan()
            if deployment_name is None or record.deployment_name == deployment_name
        ]
        backups.sort(key=lambda record: record.created_at, reverse=True)
        return backups

    def get_backup(self, backup_id: str) -> BackupRecord:
        """
        Find a record by id.

        Raises:
            NotFoundError: If no catalog entry has this id
        """
        return self._find(backup_id)[1]

    def delete_backup(self, backup_id: str):
        """
        Delete a backup's archive and metadata.

        Raises:
            NotFoundError: If no catalog entry has this id
            CommandExecutionError: If a removal command fails
        """
        metadata_file, record = self._find(backup_id)
        self._remove_record(record, metadata_file)

    def restore_website_backup(self, record: BackupRecord, target_path: str):
        """
        Extract a website backup into target_path and reset its permissions.

        Raises:
            NotFoundError: If the archive no longer exists
            CommandExecutionError: If a remote command fails
        """
        logger.info("Restoring backup %s to %s", record.id, target_path)

        if not self.files.file_exists(record.artifact_path):
            raise NotFoundError(f"Backup file not found: {record.artifact_path}")

        self.runner.run_checked(self.commands.make_directory(target_path))
        self.runner.run_checked(self.commands.extract(record.artifact_path, target_path))
        self.runner.run_checked(self.commands.change_owner(target_path, self.web_user, self.web_group))
        self.runner.run_checked(self.commands.change_mode(target_path, '755'))

        logger.info("Backup %s restored to %s", record.id, target_path)

    def cleanup_old_backups(self, retention_days: int) -> int:
        """
        Delete every backup created before now - retention_days.

        Failures on individual records are logged and the sweep continues.

        Args:
            retention_days: Age in days beyond which backups are deleted

        Returns:
            Number of backups actually deleted
        """
        if retention_days < 0:
            raise ValueError(f"retention_days must be >= 0, got {retention_days}")

        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        logger.info("Cleaning up backups older than %d days (before %s)", retention_days, cutoff.isoformat())

        deleted_count = 0
        for metadata_file, record in self._scan():
            if record.created_at >= cutoff:
                continue
            try:
                self._remove_record(record, metadata_file)
            except RumiError as e:
                logger.warning("Failed to delete old backup %s: %s", record.id, e)
                continue
            deleted_count += 1

        logger.info("Cleaned up %d old backups", deleted_count)
        return deleted_count

    def _scan(self) -> List[Tuple[str, BackupRecord]]:
        """
        Read every catalog entry.

        Returns:
            (metadata file, record) pairs in listing order
        """
        directory = metadata_directory(self.backup_root)

        if not self.files.directory_exists(directory):
            return []

        listing = self.runner.run_checked(self.commands.list_metadata(directory))

        entries = []
        for line in listing.stdout.splitlines():
            path = line.strip()
            if not path:
                continue

            try:
                record = self._read_metadata(path)
            except (CommandExecutionError, ParseError) as e:
                if self.strict_catalog:
                    raise
                logger.warning("Skipping unreadable backup metadata %s: %s", path, e)
                continue

            entries.append((path, record))

        return entries

    def _find(self, backup_id: str) -> Tuple[str, BackupRecord]:
        for metadata_file, record in self._scan():
            if record.id == backup_id:
                return metadata_file, record
        raise NotFoundError(f"Backup not found: {backup_id}")

    def _remove_record(self, record: BackupRecord, metadata_file: str):
        logger.info("Deleting backup: %s", record.id)

        errors = []
        for path in (record.artifact_path, metadata_file):
            try:
                if self.files.file_exists(path):
                    self.runner.run_checked(self.commands.remove_file(path))
            except CommandExecutionError as e:
                logger.warning("Failed to remove %s: %s", path, e)
                errors.append(e)

        if errors:
            raise errors[0]

        logger.info("Backup deleted: %s", record.id)

    def _read_metadata(self, path: str) -> BackupRecord:
        content = self.runner.run_checked(self.commands.read_file(path))
        record = BackupRecord.from_json(content.stdout)
        # the file name is the catalog key
        if posixpath.basename(path) != f"{record.id}.json":
            raise ParseError(f"Metadata file {path} does not match backup id {record.id!r}")
        if not is_under(self.backup_root, record.artifact_path):
            raise ParseError(f"Artifact path {record.artifact_path} is outside {self.backup_root}")
        return record

    def _archive_size(self, archive: str) -> int:
        outcome = self.runner.run_checked(self.commands.file_size(archive))
        try:
            return parse_size(outcome.stdout.strip())
        except ParseError as e:
            raise ParseError(f"Failed to parse backup size of {archive}: {e}")

    def _save_metadata(self, record: BackupRecord):
        directory = metadata_directory(self.backup_root)
        self.runner.run_checked(self.commands.make_directory(directory))
        self.files.write_remote_file(metadata_path(self.backup_root, record.id), record.to_json())
