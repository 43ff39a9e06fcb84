import os
import sys
import signal
import psutil
import logging
import setproctitle
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Tuple

from keeper.config import effective_settings as config

if TYPE_CHECKING:
    from keeper.process import Process

log = logging.getLogger(__name__)


#* --- Process Status ---
def pid_exists(pid: int) -> bool:
    """A wrapper for psutil.pid_exists for easy testing/mocking if needed."""
    return pid > 0 and psutil.pid_exists(pid)

def get_process_from_pid(pid: int) -> psutil.Process:
    """A wrapper for psutil.Process for easy testing/mocking if needed."""
    return psutil.Process(pid)

def describe_process(pid: int) -> Dict[str, Any]:
    """
    Collects name, status and resource usage of a process and its children.

    :param pid: The process to describe.
    :return: A dictionary suitable for status output. Empty if the process is gone.
    """
    try:
        proc = get_process_from_pid(pid)
        with proc.oneshot():
            info = {
                "pid": pid,
                "name": proc.name(),
                "status": proc.status(),
                "cpu": proc.cpu_percent(interval=0.1),
                "memory_mb": proc.memory_info().rss / 1024 / 1024,
            }
        info["children"] = [
            {"pid": child.pid, "name": child.name(), "status": child.status()}
            for child in proc.children()
        ]
        return info
    except psutil.NoSuchProcess:
        return {}
    except psutil.AccessDenied:
        return {"pid": pid, "name": "?", "status": "access denied", "children": []}


#* --- Process Creation ---
def _child_exit_code(code: Any) -> int:
    """Maps a SystemExit code to an integer exit status."""
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    print(code, file=sys.stderr)
    return 1

def spawn_process(
    process: "Process",
    title: Optional[str] = None,
    signals_to_reset: Iterable[int] = (),
    after_fork: Optional[Callable[[], None]] = None,
) -> int:
    """
    Forks a child process that runs `process.run()` and exits.

    In the child, the listed signals get their default disposition back and the
    parent's signal wakeup descriptor is dropped before the work starts.

    :param process: The Process implementation to run in the child.
    :param title: The process title of the child.
    :param signals_to_reset: Signals the parent handles and the child must not inherit.
    :param after_fork: Called in the child before `run()`, to release resources held for the parent.
    :return: The process id of the child (only ever returned in the parent).
    """
    pid = os.fork()
    if pid:
        return pid

    exit_code = 1
    try:
        signal.set_wakeup_fd(-1)
        for sig in signals_to_reset:
            signal.signal(sig, signal.SIG_DFL)
        if after_fork is not None:
            after_fork()
        if title:
            setproctitle.setproctitle(title)
        process.run()
        exit_code = 0
    except SystemExit as e:
        exit_code = _child_exit_code(e.code)
    except BaseException:
        log.critical(f"Unhandled exception in child process {os.getpid()} ({title}).", exc_info=True)
    finally:
        sys.stdout.flush()
        sys.stderr.flush()
        os._exit(exit_code)


#* --- Process Reaping & Signalling ---
def reap_child(pid: int) -> Tuple[bool, Optional[int]]:
    """
    Collects the exit status of a child without blocking.

    :param pid: The child's process id.
    :return: (exited, exit_code). exit_code is negative for a terminating signal,
             None if the status was already collected elsewhere.
    """
    try:
        waited_pid, status = os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        return True, None
    if waited_pid == 0:
        return False, None
    return True, os.waitstatus_to_exitcode(status)

def send_signal(pid: int, sig: int) -> bool:
    """
    Sends a signal to a process.

    :return: True if the signal was delivered, False if the process no longer exists.
    :raises psutil.AccessDenied: If the process belongs to another user.
    """
    try:
        get_process_from_pid(pid).send_signal(sig)
        return True
    except psutil.NoSuchProcess:
        log.debug(f"Process {pid} no longer exists, signal {sig} not sent.")
        return False

def wait_processes(pids: Iterable[int], timeout: float) -> Tuple[Dict[int, Optional[int]], List[int]]:
    """
    Waits up to `timeout` seconds for the given processes to exit.

    Children of the calling process are reaped by the wait.

    :return: A mapping of exited pid to exit code (None when unknown) and the list of pids still alive.
    """
    gone: Dict[int, Optional[int]] = {}
    procs: List[psutil.Process] = []
    for pid in pids:
        try:
            procs.append(get_process_from_pid(pid))
        except psutil.NoSuchProcess:
            gone[pid] = None

    finished, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in finished:
        gone[proc.pid] = proc.returncode
    return gone, [proc.pid for proc in alive]

def kill_process(pid: int) -> None:
    """Forcefully kills a process."""
    try:
        get_process_from_pid(pid).kill()
    except psutil.NoSuchProcess:
        log.debug(f"Process {pid} no longer exists, skipping forceful kill.")


#* --- Daemonization ---
def daemonize(working_dir: Optional[str] = None, umask: Optional[int] = None) -> None:
    """
    Detaches the calling process from its terminal with the classic double fork.

    Both intermediate parents exit with status 0; only the detached grandchild
    returns from this call. Standard streams are redirected to /dev/null.

    :param working_dir: Directory to change into. Defaults to DAEMON_WORKING_DIR.
    :param umask: File creation mask. Defaults to DAEMON_UMASK.
    """
    sys.stdout.flush()
    sys.stderr.flush()

    if os.fork() > 0:
        os._exit(0)
    os.setsid()
    if os.fork() > 0:
        os._exit(0)

    os.chdir(working_dir or config.DAEMON_WORKING_DIR)
    os.umask(config.DAEMON_UMASK if umask is None else umask)

    with open(os.devnull, "rb") as dev_null_in, open(os.devnull, "ab") as dev_null_out:
        os.dup2(dev_null_in.fileno(), sys.stdin.fileno())
        os.dup2(dev_null_out.fileno(), sys.stdout.fileno())
        os.dup2(dev_null_out.fileno(), sys.stderr.fileno())
    log.info(f"Daemonized with PID {os.getpid()}.")
