import time
import signal
import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

from keeper.process import Process
from keeper.config import effective_settings as config
from keeper.supervisor import process_utils, shutdown

log = logging.getLogger(__name__)

# Dispositions installed by the supervisor that children must not inherit.
SUPERVISOR_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGUSR1, signal.SIGUSR2, signal.SIGCHLD)


@dataclass
class ChildProcessSpec:
    """
    What to run in a child and how to supervise it.

    :param process: The Process whose run() is called in the child.
    :param name: Label used in logs and in the child's process title.
    :param respawn: Spawn a replacement when the child exits outside of teardown.
    :param reload_signal: Signal sent to the child on reload; None skips the child.
    """
    process: Process
    name: str
    respawn: bool = True
    reload_signal: Optional[int] = signal.SIGUSR1


@dataclass
class ChildHandle:
    """A live child: its pid and the spec it was spawned from."""
    pid: int
    spec: ChildProcessSpec


class ProcessController:
    """
    Owns the registry of child specs and the children spawned from them.

    Children are spawned on `bootstrap()`, respawned on unexpected exit by
    `reap()`, and stopped by `terminate()` or `reopen()`.
    """

    def __init__(
        self,
        title_prefix: Optional[str] = None,
        signals_to_reset: Iterable[int] = SUPERVISOR_SIGNALS,
        after_fork: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        :param title_prefix: Prefix of the children's process titles. Defaults to PROCESS_TITLE.
        :param signals_to_reset: Signals restored to their default disposition in every child.
        :param after_fork: Called in every child right after the fork.
        """
        self.title_prefix = title_prefix or config.PROCESS_TITLE
        self.signals_to_reset = tuple(signals_to_reset)
        self.after_fork = after_fork
        self.specs: List[ChildProcessSpec] = []
        self.children: Dict[int, ChildHandle] = {}
        self.terminating = False
        self._spawned: Set[int] = set()
        self._terminated_callbacks: List[Callable[[], None]] = []
        self._terminated_fired = False
        self._respawn_history: Dict[int, Deque[float]] = {}

    def pids(self) -> List[int]:
        return list(self.children)

    def register_process(self, spec: ChildProcessSpec) -> "ProcessController":
        """Adds a child spec. Already spawned children are not affected."""
        self.specs.append(spec)
        log.debug(f"Registered child process '{spec.name}'.")
        return self

    def terminated(self, callback: Callable[[], None]) -> "ProcessController":
        """Registers a callback fired once, after terminate() has stopped every child."""
        self._terminated_callbacks.append(callback)
        return self

    def spawn(self, spec: ChildProcessSpec) -> int:
        """Forks a child for a spec and tracks it."""
        pid = process_utils.spawn_process(
            spec.process,
            title=f"{self.title_prefix} - {spec.name}",
            signals_to_reset=self.signals_to_reset,
            after_fork=self.after_fork,
        )
        self.children[pid] = ChildHandle(pid, spec)
        self._spawned.add(id(spec))
        log.info(f"Child '{spec.name}' started with PID: {pid}")
        return pid

    def bootstrap(self) -> None:
        """Spawns every registered spec that has not been spawned yet."""
        pending = [spec for spec in self.specs if id(spec) not in self._spawned]
        log.info(f"Bootstrapping {len(pending)} child processes...")
        for spec in pending:
            self.spawn(spec)

    #* --- Reaping ---
    def get_children_shutdown_handler(self) -> Callable[[], None]:
        """Returns the handler to run on child-exit notifications."""
        return self.reap

    def reap(self) -> None:
        """
        Collects exited children, removes them from the registry and respawns
        them when their spec asks for it and the controller is not tearing down.
        """
        for pid, handle in list(self.children.items()):
            exited, exit_code = process_utils.reap_child(pid)
            if not exited:
                continue

            del self.children[pid]
            self._log_exit(handle, exit_code)

            if self.terminating or not handle.spec.respawn:
                continue
            if self._respawn_allowed(handle.spec):
                log.warning(f"Child '{handle.spec.name}' (PID {pid}) exited unexpectedly. Respawning...")
                self.spawn(handle.spec)

    def _respawn_allowed(self, spec: ChildProcessSpec) -> bool:
        """Limits respawns of one spec to MAX_RESTART_ATTEMPTS per RESTART_WINDOW_SECONDS."""
        now = time.monotonic()
        history = self._respawn_history.setdefault(id(spec), deque())
        while history and history[0] <= now - config.RESTART_WINDOW_SECONDS:
            history.popleft()

        if len(history) >= config.MAX_RESTART_ATTEMPTS:
            log.critical(
                f"Child '{spec.name}' was respawned {len(history)} times within "
                f"{config.RESTART_WINDOW_SECONDS}s. Halting respawn attempts."
            )
            return False
        history.append(now)
        return True

    def _log_exit(self, handle: ChildHandle, exit_code: Optional[int]) -> None:
        name, pid = handle.spec.name, handle.pid
        if exit_code is None:
            log.info(f"Child '{name}' (PID {pid}) has exited.")
        elif exit_code == 0:
            log.info(f"Child '{name}' (PID {pid}) exited normally.")
        elif exit_code < 0:
            log.warning(f"Child '{name}' (PID {pid}) was terminated by {signal.Signals(-exit_code).name}.")
        else:
            log.warning(f"Child '{name}' (PID {pid}) exited with status {exit_code}.")

    #* --- Fan-out Operations ---
    def _stop_children(self) -> None:
        """Stops every live child and removes it from the registry."""
        if not self.children:
            return

        log.info(f"Stopping {len(self.children)} child processes...")
        exit_codes = shutdown.graceful_shutdown_sequence(self.pids())
        for pid, exit_code in exit_codes.items():
            handle = self.children.pop(pid, None)
            if handle:
                self._log_exit(handle, exit_code)
        self.children.clear()

    def terminate(self) -> None:
        """
        Stops every child without respawning, then fires the terminated
        callbacks. The callbacks fire at most once per controller.
        """
        self.terminating = True
        self._stop_children()
        self.specs.clear()
        self._spawned.clear()

        if self._terminated_fired:
            return
        self._terminated_fired = True
        log.info("All child processes have been stopped.")
        for callback in self._terminated_callbacks:
            callback()

    def reopen(self) -> None:
        """Stops every child and spawns a fresh one for each registered spec."""
        if self.terminating:
            log.warning("Reopen requested during teardown. Ignoring.")
            return

        log.info("Reopening all child processes...")
        self.terminating = True
        try:
            self._stop_children()
        finally:
            self.terminating = False

        self._respawn_history.clear()
        for spec in self.specs:
            self.spawn(spec)

    def reload(self) -> None:
        """Sends every live child the reload signal of its spec. Child pids stay the same."""
        log.info(f"Reloading {len(self.children)} child processes...")
        for pid, handle in list(self.children.items()):
            if handle.spec.reload_signal is None:
                log.debug(f"Child '{handle.spec.name}' (PID {pid}) does not reload. Skipping.")
                continue
            process_utils.send_signal(pid, handle.spec.reload_signal)
