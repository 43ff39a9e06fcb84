import signal
import psutil
import logging
from typing import Dict, Iterable, List, Optional

from keeper.config import effective_settings as config
from keeper.supervisor import process_utils

log = logging.getLogger(__name__)

# Time allowed for the kernel to tear down force-killed processes.
KILL_REAP_TIMEOUT = 3


def _terminate_processes(pids: Iterable[int]) -> List[int]:
    """Sends SIGTERM to all processes and returns the ones that received it."""
    signalled = []
    for pid in pids:
        log.debug(f"Sending SIGTERM to PID {pid}")
        if process_utils.send_signal(pid, signal.SIGTERM):
            signalled.append(pid)
    return signalled


def _forceful_kill(pids: List[int]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not pids:
        return

    log.warning(f"{len(pids)} processes did not terminate gracefully. Forcing shutdown...")
    for pid in pids:
        log.warning(f"Killing stubborn process PID {pid}.")
        process_utils.kill_process(pid)


def graceful_shutdown_sequence(pids: Iterable[int], timeout: Optional[float] = None) -> Dict[int, Optional[int]]:
    """
    Runs the full graceful shutdown sequence for the given processes.

    Every process gets SIGTERM, then up to `timeout` seconds to exit; the
    remaining ones are killed. Children of the caller are reaped on the way.

    :param pids: The processes to shut down.
    :param timeout: Seconds before force-killing. Defaults to GRACEFUL_SHUTDOWN_TIMEOUT.
    :return: A mapping of every pid to its exit code (None when unknown).
    """
    pids = list(pids)
    timeout = config.GRACEFUL_SHUTDOWN_TIMEOUT if timeout is None else timeout

    _terminate_processes(pids)
    gone, alive = process_utils.wait_processes(pids, timeout)

    _forceful_kill(alive)
    if alive:
        killed, still_alive = process_utils.wait_processes(alive, KILL_REAP_TIMEOUT)
        gone.update(killed)
        for pid in still_alive:
            log.error(f"Process {pid} survived SIGKILL; giving up on it.")
            gone[pid] = None
    return gone


def wait_for_instance_exit(pid: int, timeout: Optional[float] = None) -> bool:
    """
    Asks a running supervisor instance to terminate and waits for it to exit.

    :param pid: The process id of the running instance.
    :param timeout: Seconds to wait. Defaults to RESTART_WAIT_TIMEOUT.
    :return: True if the instance is gone, False if it is still running after the timeout.
    """
    timeout = config.RESTART_WAIT_TIMEOUT if timeout is None else timeout
    log.info(f"Asking running instance (PID: {pid}) to terminate...")
    if not process_utils.send_signal(pid, signal.SIGTERM):
        return True

    try:
        process_utils.get_process_from_pid(pid).wait(timeout=timeout)
    except psutil.NoSuchProcess:
        pass
    except psutil.TimeoutExpired:
        log.error(f"Running instance (PID: {pid}) did not exit within {timeout} seconds.")
        return False
    log.info(f"Running instance (PID: {pid}) has exited.")
    return True
