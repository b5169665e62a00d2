"""
Remote command execution.

Every call opens a dedicated exec channel and closes it afterwards, whether
the command succeeded or not. Channels are never pooled.
"""

import logging
import socket

import paramiko

from rumi.exceptions import CommandExecutionError, RemoteConnectionError
from rumi.models import CommandOutcome

logger = logging.getLogger(__name__)


class CommandRunner:
    """
    Runs one remote command per call over a Connection.

    run() reports nonzero exits as data; run_checked() turns them into
    CommandExecutionError.
    """

    def __init__(self, connection):
        self.connection = connection

    def run(self, command: str, warn_on_failure: bool = True) -> CommandOutcome:
        """
        Execute a command and capture its output.

        Args:
            command: Shell command line to execute remotely
            warn_on_failure: Log a nonzero exit at WARNING (DEBUG otherwise)

        Returns:
            CommandOutcome, also for nonzero exit codes

        Raises:
            CommandExecutionError: If the channel cannot be opened or read
        """
        logger.debug("Executing command: %s", command)

        try:
            channel = self.connection.open_channel()
        except (paramiko.SSHException, socket.error, RemoteConnectionError) as e:
            raise CommandExecutionError(
                f"Failed to open channel for '{command}': {e}",
                command=command,
            )

        try:
            channel.exec_command(command)
            stdout = channel.makefile('rb').read()
            stderr = channel.makefile_stderr('rb').read()
            exit_code = channel.recv_exit_status()
        except (paramiko.SSHException, socket.error, EOFError) as e:
            raise CommandExecutionError(
                f"Failed to execute command '{command}': {e}",
                command=command,
            )
        finally:
            channel.close()

        outcome = CommandOutcome(
            command=command,
            stdout=stdout.decode('utf-8', errors='replace'),
            stderr=stderr.decode('utf-8', errors='replace'),
            exit_code=exit_code,
        )

        logger.debug("Command '%s' completed with exit code %d", command, exit_code)
        if not outcome.succeeded and warn_on_failure:
            logger.warning("Command '%s' failed: %s", command, outcome.stderr.strip())

        return outcome

    def run_checked(self, command: str) -> CommandOutcome:
        """
        Execute a command and require a zero exit code.

        Raises:
            CommandExecutionError: If the command exits nonzero or the channel fails
        """
        outcome = self.run(command)

        if not outcome.succeeded:
            raise CommandExecutionError(
                f"Command '{command}' failed with exit code {outcome.exit_code}: {outcome.stderr.strip()}",
                command=command,
                exit_code=outcome.exit_code,
                stderr=outcome.stderr,
            )

        return outcome
