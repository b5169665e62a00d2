"""
Archive naming and the remote shell commands used by the backup catalog.

Layout under the backup root R:
- R/metadata/{id}.json
- R/{archive_name}/{archive_name}.tar.gz

All paths are shell-quoted before they are interpolated.
"""

import posixpath
import shlex
from datetime import datetime

ARCHIVE_EXTENSION = '.tar.gz'
METADATA_DIRNAME = 'metadata'

LABEL_WEBSITE = 'website'
LABEL_CONFIGURATION = 'config'


def sanitize_component(value: str) -> str:
    """
    Make a value safe to use as a single path component.

    Keeps letters, digits, '-', '_' and '.', replacing anything else with '_'.
    """
    return "".join(
        c if c.isalnum() or c in ('-', '_', '.') else '_'
        for c in value
    )


def generate_archive_name(deployment_name: str, domain: str, label: str, timestamp: datetime) -> str:
    """
    Generate the deterministic archive name.

    Format: {deployment_name}_{domain}_{label}_{YYYYMMDD_HHMMSS}

    Args:
        deployment_name: Owning deployment
        domain: Domain of the deployment
        label: 'website' or 'config'
        timestamp: Creation time of the backup

    Returns:
        Archive name without directory or extension
    """
    return "{}_{}_{}_{}".format(
        sanitize_component(deployment_name),
        sanitize_component(domain),
        label,
        timestamp.strftime('%Y%m%d_%H%M%S'),
    )


def backup_directory(backup_root: str, archive_name: str) -> str:
    return posixpath.join(backup_root, archive_name)


def archive_path(backup_root: str, archive_name: str) -> str:
    return posixpath.join(backup_root, archive_name, archive_name + ARCHIVE_EXTENSION)


def metadata_directory(backup_root: str) -> str:
    return posixpath.join(backup_root, METADATA_DIRNAME)


def metadata_path(backup_root: str, backup_id: str) -> str:
    return posixpath.join(backup_root, METADATA_DIRNAME, f"{backup_id}.json")


def is_under(root: str, path: str) -> bool:
    """Return True if path resolves to a location strictly inside root."""
    root = posixpath.normpath(root)
    path = posixpath.normpath(path)
    return path.startswith(root.rstrip('/') + '/')


class ArchiveCommands:
    """
    Builds the shell command lines issued by the backup catalog.

    Privileged commands are prefixed with sudo unless disabled.
    """

    def __init__(self, sudo: bool = True):
        self.sudo = sudo

    def _privileged(self, command: str) -> str:
        return f"sudo {command}" if self.sudo else command

    def make_directory(self, path: str) -> str:
        return self._privileged(f"mkdir -p {shlex.quote(path)}")

    def compress(self, archive: str, source_dir: str) -> str:
        return self._privileged(f"tar -czf {shlex.quote(archive)} -C {shlex.quote(source_dir)} .")

    def extract(self, archive: str, target_dir: str) -> str:
        return self._privileged(f"tar -xzf {shlex.quote(archive)} -C {shlex.quote(target_dir)}")

    def file_size(self, path: str) -> str:
        return f"stat -c%s {shlex.quote(path)}"

    def list_metadata(self, directory: str) -> str:
        return f"find {shlex.quote(directory)} -name '*.json' -type f"

    def read_file(self, path: str) -> str:
        return f"cat {shlex.quote(path)}"

    def remove_file(self, path: str) -> str:
        return self._privileged(f"rm -f {shlex.quote(path)}")

    def remove_trees(self, *paths: str) -> str:
        return self._privileged("rm -rf " + " ".join(shlex.quote(p) for p in paths))

    def copy_if_present(self, source: str, destination: str) -> str:
        """Recursive copy that always exits 0; the source may legitimately be missing."""
        return self._privileged(
            f"cp -r {shlex.quote(source)} {shlex.quote(destination)}"
        ) + " 2>/dev/null || true"

    def change_owner(self, path: str, user: str, group: str) -> str:
        return self._privileged(f"chown -R {shlex.quote(f'{user}:{group}')} {shlex.quote(path)}")

    def change_mode(self, path: str, mode: str = '755') -> str:
        return self._privileged(f"chmod -R {mode} {shlex.quote(path)}")
