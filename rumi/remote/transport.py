"""
SSH transport for Rumi.

Opens one authenticated, exclusive connection to a remote host. The
authentication order is fixed:

1. public key, when both key files are given and exist locally
2. password, when one is given
3. the local SSH agent, when no password is given

The first method that succeeds wins; methods are never mixed.
"""

import logging
import os
import socket
import threading

import paramiko

from rumi.exceptions import AuthenticationError, RemoteConnectionError
from rumi.models import Credentials

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

METHOD_PUBLICKEY = 'publickey'
METHOD_PASSWORD = 'password'
METHOD_AGENT = 'agent'


class Connection:
    """
    Authenticated SSH connection owned by a single thread.

    The thread that creates the connection owns it. Using it from another
    thread raises RemoteConnectionError until the owner calls release(), after
    which the next thread to use it becomes the owner.
    """

    def __init__(self, transport: paramiko.Transport, credentials: Credentials):
        self._transport = transport
        self.credentials = credentials
        self._owner = threading.get_ident()
        self._owner_lock = threading.Lock()

    def __repr__(self):
        return f"<Connection {self.credentials.username}@{self.credentials.host}:{self.credentials.port}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def is_active(self) -> bool:
        return self._transport is not None and self._transport.is_active()

    def release(self):
        """Give up ownership so that another thread can claim the connection."""
        self._check_owner()
        with self._owner_lock:
            self._owner = None

    def _check_owner(self):
        current = threading.get_ident()
        with self._owner_lock:
            if self._owner is None:
                self._owner = current
            elif self._owner != current:
                raise RemoteConnectionError(
                    f"{self!r} is owned by another thread; open a separate connection per worker"
                )

    def _require_transport(self) -> paramiko.Transport:
        self._check_owner()
        if self._transport is None or not self._transport.is_active():
            raise RemoteConnectionError(f"{self!r} is closed")
        return self._transport

    def open_channel(self) -> paramiko.Channel:
        """Open a fresh session channel. The caller is responsible for closing it."""
        return self._require_transport().open_session()

    def open_sftp(self) -> paramiko.SFTPClient:
        """Open a fresh SFTP client. The caller is responsible for closing it."""
        return paramiko.SFTPClient.from_transport(self._require_transport())

    def command_runner(self):
        from rumi.remote.commands import CommandRunner
        return CommandRunner(self)

    def file_channel(self):
        from rumi.remote.files import FileChannel
        return FileChannel(self)

    def test_connection(self):
        """
        Run a trivial checked command to prove the channel works.

        Raises:
            CommandExecutionError: If the command cannot be run or fails
        """
        self.command_runner().run_checked("echo 'connection test'")
        logger.info("Connection test successful for %s", self.credentials.host)

    def close(self):
        """Close the transport. Safe to call more than once."""
        if self._transport is None:
            return
        try:
            self._transport.close()
        finally:
            self._transport = None
            logger.debug("Closed connection to %s", self.credentials.host)


def connect(credentials: Credentials, timeout: float = DEFAULT_TIMEOUT) -> Connection:
    """
    Establish an authenticated SSH connection.

    Args:
        credentials: Host, user and authentication material
        timeout: Socket read/write and handshake timeout in seconds

    Returns:
        Connection owned by the calling thread

    Raises:
        RemoteConnectionError: If the socket or the SSH handshake fails
        AuthenticationError: If every attempted authentication method fails
    """
    address = f"{credentials.host}:{credentials.port}"
    logger.info("Connecting to %s", address)

    try:
        sock = socket.create_connection((credentials.host, credentials.port), timeout=timeout)
        sock.settimeout(timeout)
    except OSError as e:
        raise RemoteConnectionError(f"Failed to connect to {address}: {e}")

    try:
        transport = paramiko.Transport(sock)
        transport.start_client(timeout=timeout)
    except (paramiko.SSHException, OSError, EOFError) as e:
        sock.close()
        raise RemoteConnectionError(f"SSH handshake with {address} failed: {e}")

    try:
        method = authenticate(transport, credentials)
    except Exception:
        transport.close()
        raise

    logger.info("Connected to %s (%s authentication)", address, method)
    return Connection(transport, credentials)


def authenticate(transport: paramiko.Transport, credentials: Credentials) -> str:
    """
    Authenticate an SSH transport following the fixed fallback order.

    Args:
        transport: Transport that has completed the handshake
        credentials: Authentication material

    Returns:
        Name of the method that succeeded

    Raises:
        AuthenticationError: Naming every method that was attempted
    """
    attempted = []
    failures = []

    if _keys_available(credentials):
        attempted.append(METHOD_PUBLICKEY)
        logger.debug("Attempting public key authentication")
        try:
            if _auth_with_key_files(transport, credentials):
                return METHOD_PUBLICKEY
            failures.append(f"{METHOD_PUBLICKEY}: rejected")
        except (paramiko.SSHException, OSError, ValueError) as e:
            failures.append(f"{METHOD_PUBLICKEY}: {e}")
            logger.warning("Public key authentication failed: %s", e)
    elif credentials.public_key_path or credentials.private_key_path:
        logger.warning("Key files not found, skipping public key authentication")

    if credentials.password:
        attempted.append(METHOD_PASSWORD)
        logger.debug("Attempting password authentication")
        try:
            transport.auth_password(credentials.username, credentials.password)
            if transport.is_authenticated():
                return METHOD_PASSWORD
            failures.append(f"{METHOD_PASSWORD}: rejected")
        except paramiko.SSHException as e:
            failures.append(f"{METHOD_PASSWORD}: {e}")
            logger.warning("Password authentication failed: %s", e)
    else:
        attempted.append(METHOD_AGENT)
        logger.debug("Attempting SSH agent authentication")
        try:
            if _auth_with_agent(transport, credentials):
                return METHOD_AGENT
            failures.append(f"{METHOD_AGENT}: no identity accepted")
        except paramiko.SSHException as e:
            failures.append(f"{METHOD_AGENT}: {e}")
            logger.warning("SSH agent authentication failed: %s", e)

    raise AuthenticationError(
        f"All authentication methods failed for {credentials.username}@{credentials.host} "
        f"(attempted: {', '.join(attempted)}; {'; '.join(failures)})",
        attempted_methods=attempted,
    )


def _keys_available(credentials: Credentials) -> bool:
    if not credentials.public_key_path or not credentials.private_key_path:
        return False
    return (
        os.path.exists(os.path.expanduser(credentials.public_key_path))
        and os.path.exists(os.path.expanduser(credentials.private_key_path))
    )


def _auth_with_key_files(transport: paramiko.Transport, credentials: Credentials) -> bool:
    passphrase = credentials.password.encode('utf-8') if credentials.password else None
    key = paramiko.PKey.from_path(
        os.path.expanduser(credentials.private_key_path),
        passphrase=passphrase,
    )
    transport.auth_publickey(credentials.username, key)
    return transport.is_authenticated()


def _auth_with_agent(transport: paramiko.Transport, credentials: Credentials) -> bool:
    agent = paramiko.Agent()
    try:
        keys = agent.get_keys()
        if not keys:
            logger.warning("SSH agent offered no identities")
            return False
        for key in keys:
            try:
                transport.auth_publickey(credentials.username, key)
            except paramiko.AuthenticationException:
                continue
            if transport.is_authenticated():
                return True
        return False
    finally:
        agent.close()
