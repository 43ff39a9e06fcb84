"""
Fatal outcomes of the supervisor's externally invoked commands.

Each one is a `SystemExit` carrying a stable exit code, so raising it after
the diagnostic has been written ends the invocation with that code.
"""
from typing import Optional

from keeper.config import effective_settings as config


class KeeperExit(SystemExit):
    """Base class for fatal, non-retried supervisor outcomes."""

    exit_code: int = 1

    def __init__(self, message: str = "") -> None:
        super().__init__(self.exit_code)
        self.message = message

    def __str__(self) -> str:
        return self.message


class SingletonConflict(KeeperExit):
    """Another live instance holds the PID file."""

    exit_code = config.EXIT_SINGLETON_CONFLICT

    def __init__(self, running_instance_pid: int, message: Optional[str] = None) -> None:
        self.running_instance_pid = running_instance_pid
        super().__init__(message or f"Have running instance (PID: {running_instance_pid}). Nothing to do.")


class OperationRejected(KeeperExit):
    """The requested operation has no valid target."""

    exit_code = config.EXIT_RESTART_REJECTED


class NoRunningInstance(KeeperExit):
    """No PID file (or only a stale one) was found for a command that needs a running instance."""

    exit_code = config.EXIT_NO_RUNNING_INSTANCE
