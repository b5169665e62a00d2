"""
File transfer to the remote host.

Single files go through the SCP sink protocol so that every transfer ends with
an explicit end-of-file and close handshake. Directory trees and small text
files go through SFTP.
"""

import logging
import os
import shlex
import socket
import stat
from pathlib import Path

import paramiko

from rumi.exceptions import CommandExecutionError, FileOperationError, RemoteConnectionError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 32 * 1024


class FileChannel:
    """Uploads files and directories and writes small remote files over a Connection."""

    def __init__(self, connection, runner=None):
        self.connection = connection
        self.runner = runner or connection.command_runner()

    def upload_file(self, local_path, remote_path: str, mode: int = 0o644):
        """
        Stream a local file to the remote host using SCP.

        Args:
            local_path: Path of the local file
            remote_path: Destination path on the remote host
            mode: Permission bits for the remote file

        Raises:
            FileOperationError: If the file cannot be read or the transfer is not
                acknowledged end to end
        """
        local_path = Path(local_path)
        logger.debug("Uploading file from %s to %s", local_path, remote_path)

        try:
            size = local_path.stat().st_size
            source = open(local_path, 'rb')
        except OSError as e:
            raise FileOperationError(f"Failed to open local file {local_path}: {e}", path=str(local_path))

        try:
            channel = self.connection.open_channel()
        except (paramiko.SSHException, socket.error, RemoteConnectionError) as e:
            source.close()
            raise FileOperationError(f"Failed to open channel for {remote_path}: {e}", path=remote_path)

        try:
            channel.exec_command(f"scp -t {shlex.quote(remote_path)}")
            _expect_ack(channel, remote_path)

            header = f"C{mode & 0o7777:04o} {size} {os.path.basename(remote_path)}\n"
            channel.sendall(header.encode('utf-8'))
            _expect_ack(channel, remote_path)

            sent = 0
            while True:
                chunk = source.read(CHUNK_SIZE)
                if not chunk:
                    break
                channel.sendall(chunk)
                sent += len(chunk)
            if sent != size:
                raise FileOperationError(
                    f"Local file {local_path} changed during upload ({sent} of {size} bytes sent)",
                    path=str(local_path),
                )

            channel.sendall(b'\x00')
            _expect_ack(channel, remote_path)

            # EOF, then wait for the remote side to close with its exit status
            channel.shutdown_write()
            exit_code = channel.recv_exit_status()
            if exit_code != 0:
                raise FileOperationError(
                    f"scp exited with code {exit_code} while writing {remote_path}",
                    path=remote_path,
                )
        except (paramiko.SSHException, socket.error, EOFError) as e:
            raise FileOperationError(f"Failed to upload {local_path} to {remote_path}: {e}", path=remote_path)
        finally:
            source.close()
            channel.close()

        logger.info("Uploaded %s (%d bytes) to %s", local_path, size, remote_path)

    def upload_directory(self, local_path, remote_path: str):
        """
        Recursively mirror a local directory to the remote host.

        The whole tree is uploaded on every call.

        Args:
            local_path: Local directory
            remote_path: Remote destination directory

        Raises:
            FileOperationError: If the local tree cannot be read or any upload fails
        """
        local_path = Path(local_path)
        logger.info("Uploading directory from %s to %s", local_path, remote_path)

        if not local_path.is_dir():
            raise FileOperationError(f"Local directory not found: {local_path}", path=str(local_path))

        try:
            sftp = self.connection.open_sftp()
        except (paramiko.SSHException, socket.error, RemoteConnectionError) as e:
            raise FileOperationError(f"Failed to create SFTP session: {e}", path=remote_path)

        try:
            self._upload_tree(sftp, local_path, remote_path)
        finally:
            sftp.close()

        logger.info("Uploaded directory to %s", remote_path)

    def _upload_tree(self, sftp, local_path: Path, remote_path: str):
        self._make_remote_directory(sftp, remote_path)

        try:
            entries = sorted(local_path.iterdir())
        except OSError as e:
            raise FileOperationError(f"Failed to read local directory {local_path}: {e}", path=str(local_path))

        for entry in entries:
            remote_entry = f"{remote_path.rstrip('/')}/{entry.name}"
            if entry.is_dir():
                self._upload_tree(sftp, entry, remote_entry)
            else:
                try:
                    sftp.put(str(entry), remote_entry, confirm=True)
                except (OSError, paramiko.SSHException) as e:
                    raise FileOperationError(f"Failed to upload {entry} to {remote_entry}: {e}", path=remote_entry)
                logger.debug("Uploaded %s", remote_entry)

    def _make_remote_directory(self, sftp, remote_path: str):
        try:
            sftp.mkdir(remote_path, 0o755)
            logger.debug("Created directory: %s", remote_path)
        except OSError as e:
            try:
                attributes = sftp.stat(remote_path)
            except OSError:
                raise FileOperationError(f"Failed to create remote directory {remote_path}: {e}", path=remote_path)
            if not stat.S_ISDIR(attributes.st_mode):
                raise FileOperationError(f"Remote path exists and is not a directory: {remote_path}", path=remote_path)
            logger.debug("Directory already exists: %s", remote_path)

    def write_remote_file(self, remote_path: str, content: str):
        """
        Create or overwrite a remote file with the given text.

        The write is not atomic: a concurrent reader may see a partial file.

        Raises:
            FileOperationError: If the SFTP session or the write fails
        """
        logger.debug("Creating remote file: %s", remote_path)

        try:
            sftp = self.connection.open_sftp()
        except (paramiko.SSHException, socket.error, RemoteConnectionError) as e:
            raise FileOperationError(f"Failed to create SFTP session: {e}", path=remote_path)

        try:
            with sftp.open(remote_path, 'w') as remote_file:
                remote_file.write(content.encode('utf-8'))
        except (OSError, paramiko.SSHException) as e:
            raise FileOperationError(f"Failed to write remote file {remote_path}: {e}", path=remote_path)
        finally:
            sftp.close()

        logger.debug("Created remote file: %s", remote_path)

    def file_exists(self, remote_path: str) -> bool:
        """Return True if a regular file exists; a check that cannot run counts as absent."""
        return self._test_path('-f', remote_path)

    def directory_exists(self, remote_path: str) -> bool:
        """Return True if a directory exists; a check that cannot run counts as absent."""
        return self._test_path('-d', remote_path)

    def _test_path(self, flag: str, remote_path: str) -> bool:
        # a miss is an answer, not a failure
        try:
            outcome = self.runner.run(f"test {flag} {shlex.quote(remote_path)}", warn_on_failure=False)
        except CommandExecutionError as e:
            logger.debug("Existence check test %s %s failed: %s", flag, remote_path, e)
            return False
        return outcome.succeeded


def _expect_ack(channel, remote_path: str):
    """
    Read one SCP acknowledgement.

    A zero byte means OK. 1 (warning) and 2 (fatal) are followed by a
    message line.
    """
    status = channel.recv(1)
    if status == b'\x00':
        return
    if not status:
        raise FileOperationError(f"scp closed the channel before acknowledging {remote_path}", path=remote_path)

    message = b''
    while not message.endswith(b'\n'):
        byte = channel.recv(1)
        if not byte:
            break
        message += byte
    raise FileOperationError(
        f"scp rejected {remote_path}: {message.decode('utf-8', errors='replace').strip()}",
        path=remote_path,
    )
