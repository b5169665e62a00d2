"""
Error taxonomy for Rumi.

Every failure raised by the remote layer and the backup catalog derives from
RumiError, so callers can catch the whole family at a workflow boundary.
"""


class RumiError(Exception):
    """Base class for all Rumi errors."""
    pass


class RemoteConnectionError(RumiError):
    """Raised when the socket, SSH handshake or connection ownership check fails."""
    pass


class AuthenticationError(RumiError):
    """Raised when every credential strategy has been exhausted."""

    def __init__(self, message: str, attempted_methods=None):
        super().__init__(message)
        self.attempted_methods = list(attempted_methods or [])


class CommandExecutionError(RumiError):
    """
    Raised when a checked command exits nonzero or its channel fails.

    Attributes:
        command: The command text that was sent to the remote shell
        exit_code: Remote exit code, or None when the channel itself failed
        stderr: Captured standard error, empty when the channel failed
    """

    def __init__(self, message: str, command: str = '', exit_code=None, stderr: str = ''):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class FileOperationError(RumiError):
    """Raised when an upload, remote file write or existence check fails."""

    def __init__(self, message: str, path: str = ''):
        super().__init__(message)
        self.path = path


class NotFoundError(RumiError):
    """Raised when a backup or its archive does not exist."""
    pass


class ParseError(RumiError):
    """Raised when a size report or a metadata payload cannot be decoded."""
    pass
