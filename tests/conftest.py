"""
Shared pytest fixtures for Rumi tests.

This module provides fixtures for:
- An in-memory remote host that interprets the shell commands Rumi issues
- Connection, CommandRunner and FileChannel bound to that host
- A BackupStore over the fake host
- Test configuration and credentials
- Mock fixtures for paramiko and APScheduler
- Temporary file fixtures
"""

import io
import posixpath
import shlex
import stat
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from rumi.backup.store import BackupStore
from rumi.config import Config
from rumi.models import Credentials
from rumi.remote.commands import CommandRunner
from rumi.remote.files import FileChannel


class FakeRemote:
    """
    In-memory host that executes the subset of shell commands Rumi issues.

    Files are kept as bytes keyed by absolute path; archives remember the
    tree they were built from so that extraction can reproduce it.
    """

    def __init__(self):
        self.files = {}
        self.dirs = {'/'}
        self.archives = {}
        self.modes = {}
        self.owners = {}
        self.commands = []
        # substring -> (exit_code, stderr)
        self.failures = {}
        # raised by open_channel when set
        self.channel_error = None

    # Seeding helpers

    def add_dir(self, path):
        path = posixpath.normpath(path)
        while path not in self.dirs:
            self.dirs.add(path)
            path = posixpath.dirname(path)

    def add_file(self, path, content):
        if isinstance(content, str):
            content = content.encode('utf-8')
        self.add_dir(posixpath.dirname(path))
        self.files[path] = content

    def read_text(self, path):
        return self.files[path].decode('utf-8')

    def fail(self, fragment, exit_code=1, stderr='simulated failure'):
        self.failures[fragment] = (exit_code, stderr)

    def files_under(self, root):
        prefix = root.rstrip('/') + '/'
        return sorted(path for path in self.files if path.startswith(prefix))

    # Command interpreter

    def execute(self, command):
        self.commands.append(command)

        for fragment, (exit_code, stderr) in self.failures.items():
            if fragment in command:
                return b'', stderr.encode('utf-8'), exit_code

        tokens = shlex.split(command)
        fallback = None
        if '||' in tokens:
            index = tokens.index('||')
            tokens, fallback = tokens[:index], tokens[index + 1:]
        tokens = [t for t in tokens if not t.startswith('2>')]

        stdout, stderr, exit_code = self._dispatch(tokens)
        if exit_code != 0 and fallback == ['true']:
            return b'', b'', 0
        return stdout, stderr, exit_code

    def _dispatch(self, tokens):
        if tokens and tokens[0] == 'sudo':
            tokens = tokens[1:]

        program, args = tokens[0], tokens[1:]
        handler = getattr(self, f"_cmd_{program}", None)
        if handler is None:
            return b'', f"{program}: command not found".encode('utf-8'), 127
        return handler(args)

    def _ok(self, stdout=''):
        return stdout.encode('utf-8'), b'', 0

    def _error(self, message, exit_code=1):
        return b'', message.encode('utf-8'), exit_code

    def _cmd_echo(self, args):
        return self._ok(' '.join(args) + '\n')

    def _cmd_test(self, args):
        flag, path = args
        if flag == '-f':
            return self._ok() if path in self.files else self._error('', 1)
        if flag == '-d':
            return self._ok() if posixpath.normpath(path) in self.dirs else self._error('', 1)
        return self._error(f"test: unknown flag {flag}", 2)

    def _cmd_mkdir(self, args):
        self.add_dir(args[-1])
        return self._ok()

    def _cmd_tar(self, args):
        mode, archive, _, directory = args[:4]
        directory = posixpath.normpath(directory)

        if mode == '-czf':
            if directory not in self.dirs:
                return self._error(f"tar: {directory}: Cannot open: No such file or directory", 2)
            if posixpath.dirname(archive) not in self.dirs:
                return self._error(f"tar: {archive}: Cannot open: No such file or directory", 2)
            tree = {
                posixpath.relpath(path, directory): content
                for path, content in self.files.items()
                if path.startswith(directory + '/')
            }
            self.archives[archive] = tree
            self.files[archive] = b'\x1f\x8b' + b''.join(tree.values())
            return self._ok()

        if mode == '-xzf':
            if archive not in self.archives:
                return self._error(f"tar: {archive}: Cannot open: No such file or directory", 2)
            if directory not in self.dirs:
                return self._error(f"tar: {directory}: Cannot open: No such file or directory", 2)
            for relative, content in self.archives[archive].items():
                self.add_file(posixpath.join(directory, relative), content)
            return self._ok()

        return self._error(f"tar: unsupported mode {mode}", 2)

    def _cmd_stat(self, args):
        path = args[-1]
        if path not in self.files:
            return self._error(f"stat: cannot stat '{path}': No such file or directory")
        return self._ok(f"{len(self.files[path])}\n")

    def _cmd_find(self, args):
        directory = args[0]
        found = [path for path in self.files_under(directory) if path.endswith('.json')]
        return self._ok(''.join(f"{path}\n" for path in found))

    def _cmd_cat(self, args):
        path = args[0]
        if path not in self.files:
            return self._error(f"cat: {path}: No such file or directory")
        return self.files[path], b'', 0

    def _cmd_rm(self, args):
        flags, paths = args[0], args[1:]
        for path in paths:
            path = posixpath.normpath(path)
            self.files.pop(path, None)
            self.archives.pop(path, None)
            if 'r' in flags:
                for name in self.files_under(path):
                    del self.files[name]
                self.dirs = {d for d in self.dirs if d != path and not d.startswith(path + '/')}
        return self._ok()

    def _cmd_cp(self, args):
        source, destination = posixpath.normpath(args[-2]), posixpath.normpath(args[-1])
        if source in self.files:
            self.add_file(destination, self.files[source])
            return self._ok()
        if source in self.dirs:
            self.add_dir(destination)
            for path in self.files_under(source):
                self.add_file(posixpath.join(destination, posixpath.relpath(path, source)), self.files[path])
            return self._ok()
        return self._error(f"cp: cannot stat '{source}': No such file or directory")

    def _cmd_chown(self, args):
        owner, path = args[-2], args[-1]
        if posixpath.normpath(path) not in self.dirs and path not in self.files:
            return self._error(f"chown: cannot access '{path}': No such file or directory")
        self.owners[path] = owner
        return self._ok()

    def _cmd_chmod(self, args):
        mode, path = args[-2], args[-1]
        if posixpath.normpath(path) not in self.dirs and path not in self.files:
            return self._error(f"chmod: cannot access '{path}': No such file or directory")
        self.modes[path] = mode
        return self._ok()


class FakeChannel:
    """Exec channel that runs its command against a FakeRemote."""

    def __init__(self, remote):
        self.remote = remote
        self.closed = False
        self._result = (b'', b'', -1)

    def exec_command(self, command):
        self._result = self.remote.execute(command)

    def makefile(self, mode):
        return io.BytesIO(self._result[0])

    def makefile_stderr(self, mode):
        return io.BytesIO(self._result[1])

    def recv_exit_status(self):
        return self._result[2]

    def close(self):
        self.closed = True


class FakeRemoteFile:
    def __init__(self, remote, path):
        self.remote = remote
        self.path = path
        self.buffer = b''

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.remote.add_file(self.path, self.buffer)

    def write(self, data):
        self.buffer += data


class FakeSFTP:
    """SFTP client that reads and writes a FakeRemote."""

    def __init__(self, remote):
        self.remote = remote
        self.closed = False

    def mkdir(self, path, mode=0o777):
        path = posixpath.normpath(path)
        if path in self.remote.dirs or path in self.remote.files:
            raise IOError(f"Failure: {path}")
        if posixpath.dirname(path) not in self.remote.dirs:
            raise IOError(f"No such file: {path}")
        self.remote.dirs.add(path)

    def stat(self, path):
        path = posixpath.normpath(path)
        if path in self.remote.dirs:
            return SimpleNamespace(st_mode=stat.S_IFDIR | 0o755)
        if path in self.remote.files:
            return SimpleNamespace(st_mode=stat.S_IFREG | 0o644)
        raise IOError(f"No such file: {path}")

    def put(self, localpath, remotepath, confirm=True):
        if posixpath.dirname(remotepath) not in self.remote.dirs:
            raise IOError(f"No such file: {remotepath}")
        with open(localpath, 'rb') as f:
            self.remote.files[remotepath] = f.read()

    def open(self, path, mode='r'):
        if posixpath.dirname(path) not in self.remote.dirs:
            raise IOError(f"No such file: {path}")
        return FakeRemoteFile(self.remote, path)

    def close(self):
        self.closed = True


class FakeConnection:
    """Connection stand-in that hands out channels and SFTP clients on a FakeRemote."""

    def __init__(self, remote):
        self.remote = remote
        self.channels = []
        self.sftp_clients = []

    def open_channel(self):
        if self.remote.channel_error is not None:
            raise self.remote.channel_error
        channel = FakeChannel(self.remote)
        self.channels.append(channel)
        return channel

    def open_sftp(self):
        sftp = FakeSFTP(self.remote)
        self.sftp_clients.append(sftp)
        return sftp

    def command_runner(self):
        return CommandRunner(self)

    def file_channel(self):
        return FileChannel(self)


class TestConfig(Config):
    """Configuration used by tests."""
    BACKUP_ROOT = '/var/backups/rumi'
    BACKUP_RETENTION_DAYS = 30
    STRICT_CATALOG = False
    RETENTION_HOUR = 2
    SCHEDULER_TIMEZONE = 'UTC'
    WEB_ROOT = '/var/www'
    WEB_USER = 'www-data'
    WEB_GROUP = 'www-data'
    NGINX_CONFIG_PATH = '/etc/nginx/sites-available'
    SSL_CERT_PATH = '/etc/letsencrypt/live'
    USE_SUDO = True
    SSH_TIMEOUT = 5.0
    DRY_RUN = False
    DEBUG = True


@pytest.fixture
def test_config():
    """Test configuration class with fixed, environment-independent values."""
    return TestConfig


@pytest.fixture
def credentials():
    """Password credentials for a test host."""
    return Credentials(host='test.example.com', username='deploy', port=22, password='testpass')


@pytest.fixture
def remote():
    """
    Create an in-memory remote host.

    Starts with only the root directory.
    """
    return FakeRemote()


@pytest.fixture
def connection(remote):
    """Connection bound to the in-memory remote host."""
    return FakeConnection(remote)


@pytest.fixture
def runner(connection):
    """Real CommandRunner over the fake connection."""
    return CommandRunner(connection)


@pytest.fixture
def files(connection, runner):
    """Real FileChannel over the fake connection."""
    return FileChannel(connection, runner)


@pytest.fixture
def store(runner, files):
    """BackupStore with the default backup root over the fake host."""
    return BackupStore(runner, files, backup_root='/var/backups/rumi')


@pytest.fixture
def website(remote):
    """
    Seed a live website tree on the fake host.

    Creates:
    - /var/www/example.com/index.html
    - /var/www/example.com/assets/app.js
    """
    remote.add_file('/var/www/example.com/index.html', '<h1>v1</h1>')
    remote.add_file('/var/www/example.com/assets/app.js', 'console.log("v1")')
    return '/var/www/example.com'


@pytest.fixture
def temp_files(tmp_path):
    """
    Create a temporary build directory.

    Creates:
    - dist/index.html
    - dist/about.html
    - dist/assets/app.js
    """
    dist = tmp_path / 'dist'
    dist.mkdir()
    (dist / 'index.html').write_text('<h1>v2</h1>')
    (dist / 'about.html').write_text('<h1>About</h1>')

    assets = dist / 'assets'
    assets.mkdir()
    (assets / 'app.js').write_text('console.log("v2")')

    return dist


@pytest.fixture
def mock_channel():
    """
    Mock paramiko Channel for command and SCP tests.

    Exec succeeds with empty output and exit code 0 by default.
    """
    channel = MagicMock()
    channel.makefile.return_value = io.BytesIO(b'')
    channel.makefile_stderr.return_value = io.BytesIO(b'')
    channel.recv_exit_status.return_value = 0
    return channel


@pytest.fixture
def mock_transport():
    """
    Mock paramiko.Transport for connection tests.

    Patches socket creation so no network access happens.
    """
    with patch('rumi.remote.transport.socket.create_connection') as mock_socket, \
            patch('rumi.remote.transport.paramiko.Transport') as mock_transport_class:
        transport = MagicMock()
        transport.is_active.return_value = True
        transport.is_authenticated.return_value = True
        mock_transport_class.return_value = transport
        mock_socket.return_value = MagicMock()
        yield transport


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('rumi.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        # Mock scheduler methods
        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
