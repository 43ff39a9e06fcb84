import enum
import logging
from typing import Optional, NamedTuple

from keeper.supervisor import process_utils
from keeper.supervisor.persistence import PidFile

log = logging.getLogger(__name__)


class SingletonStatus(enum.Enum):
    OK = "ok"
    CONFLICT = "conflict"


class SingletonCheck(NamedTuple):
    """Outcome of the singleton check. `pid` is the pid found in the PID file, if any."""

    status: SingletonStatus
    pid: Optional[int] = None

    @property
    def conflict(self) -> bool:
        return self.status is SingletonStatus.CONFLICT


def single_guarantee(pid_file: PidFile) -> SingletonCheck:
    """
    Checks whether another instance is already running based on the PID file.

    A PID file naming a dead process is stale and does not count as a conflict;
    it is left in place for the caller to overwrite.

    :param pid_file: The PID file of the supervisor.
    :return: A SingletonCheck, with the running instance's pid on conflict.
    """
    pid = pid_file.read()
    if pid is None:
        return SingletonCheck(SingletonStatus.OK)

    if process_utils.pid_exists(pid):
        log.error(f"Instance appears to be running (PID: {pid}). Use 'stop' or 'restart'.")
        return SingletonCheck(SingletonStatus.CONFLICT, pid)

    log.warning(f"Found stale PID file '{pid_file.path}' for dead process {pid}. It will be overwritten.")
    return SingletonCheck(SingletonStatus.OK, pid)
