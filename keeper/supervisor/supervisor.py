import os
import abc
import sys
import enum
import signal
import psutil
import logging
import setproctitle
from pathlib import Path
from typing import Callable, List, Optional, Union

from keeper.process import Process
from keeper.config import effective_settings as config
from keeper.exceptions import KeeperExit, NoRunningInstance, OperationRejected, SingletonConflict
from keeper.supervisor import process_utils, shutdown, startup
from keeper.supervisor.controller import ChildProcessSpec, ProcessController
from keeper.supervisor.persistence import PidFile
from keeper.supervisor.signals import SignalDispatcher

log = logging.getLogger(__name__)


class State(enum.Enum):
    INIT = "init"
    PREPARING = "preparing"
    RUNNING = "running"
    TERMINATING = "terminating"
    STOPPED = "stopped"
    REJECTED = "rejected"


class ProcessManager(Process):
    """
    Supervises a daemon's process tree.

    Subclasses implement `on_preparing()`, typically registering children
    with `register_child_process()`. `run()` starts the instance and blocks
    until it is terminated; `restart()` and `stop()` act on an instance that
    is already running, located through the PID file.

    Signals handled once running:
      SIGTERM, SIGINT  terminate the supervisor and all children
      SIGUSR1          reopen: replace every child with a fresh process
      SIGUSR2          reload: forward each child's reload signal
      SIGCHLD          reap exited children
    """

    def __init__(self, pid_file: Optional[Union[str, Path]] = None, daemon: bool = False, title: Optional[str] = None) -> None:
        """
        :param pid_file: Path of the PID file. Defaults to the PID_FILE_PATH setting.
        :param daemon: Detach from the terminal before writing the PID file.
        :param title: Process title prefix. Defaults to the PROCESS_TITLE setting.
        """
        self.pid_file = PidFile(pid_file or config.PID_FILE_PATH)
        self.daemon = daemon
        self.title = title or config.PROCESS_TITLE
        self.state = State.INIT
        self.process_controller: Optional[ProcessController] = None
        self.dispatcher = SignalDispatcher()
        self._prepared: List[Callable[[], None]] = []
        self._terminating: List[Callable[[], None]] = []

    @property
    def running(self) -> bool:
        return self.state is State.RUNNING

    @abc.abstractmethod
    def on_preparing(self) -> None:
        """Called once during startup, before children are spawned. Register children here."""

    #* --- Startup ---
    def single_guarantee(self) -> startup.SingletonCheck:
        return startup.single_guarantee(self.pid_file)

    def fresh_process_id_file(self) -> None:
        self.pid_file.write(os.getpid())

    def clear_process_id_file(self) -> None:
        self.pid_file.clear()

    def process(self) -> None:
        """
        Starts this instance: singleton check, optional daemonization, PID file,
        signal handlers, the on_preparing() hook and the prepared callbacks.

        Returns once the instance is running; `serve()` then waits for signals.

        :raises SingletonConflict: If another instance is running.
        """
        if self.state is not State.INIT:
            raise RuntimeError(f"Supervisor has already been started (state: {self.state.value}).")

        check = self.single_guarantee()
        if check.conflict:
            self.state = State.REJECTED
            self._reject(SingletonConflict(check.pid))

        self.state = State.PREPARING
        if self.daemon:
            process_utils.daemonize()

        self.fresh_process_id_file()

        self.dispatcher.bind(signal.SIGTERM, self.on_terminating)
        self.dispatcher.bind(signal.SIGINT, self.on_terminating)
        self.dispatcher.bind(signal.SIGUSR1, self.on_reopen)
        self.dispatcher.bind(signal.SIGUSR2, self.on_reload)
        self.dispatcher.install()

        self.on_preparing()

        for callback in self._prepared:
            callback()

        setproctitle.setproctitle(f"{self.title} - Supervisor")
        self.state = State.RUNNING
        log.info(f"Supervisor started with PID {os.getpid()} (PID file: {self.pid_file.path}).")

    def serve(self) -> None:
        """Dispatches queued signals until the instance stops running."""
        while self.running:
            if not self.dispatcher.wait(config.SUPERVISOR_SLEEP_INTERVAL) and self.process_controller:
                # Exit notifications can coalesce; poll the children on idle wake-ups too.
                self.process_controller.reap()
            self.dispatcher.dispatch_pending()

    def run(self) -> None:
        """Starts this instance and blocks until it has been terminated."""
        try:
            self.process()
            self.serve()
        finally:
            self.dispatcher.uninstall()
        log.info("Supervisor stopped.")

    #* --- Registration ---
    def push_prepared_callback(self, callback: Callable[[], None]) -> "ProcessManager":
        self._prepared.append(callback)
        return self

    def push_terminating_callback(self, callback: Callable[[], None]) -> "ProcessManager":
        self._terminating.append(callback)
        return self

    def set_daemon(self, daemon: bool) -> "ProcessManager":
        self.daemon = daemon
        return self

    def register_child_process(
        self,
        process: Process,
        name: Optional[str] = None,
        respawn: bool = True,
        reload_signal: Optional[int] = signal.SIGUSR1,
    ) -> "ProcessManager":
        """
        Registers a child process.

        The first registration creates the process controller, binds SIGCHLD to
        its reap handler and queues its bootstrap and teardown. Children are
        spawned together once on_preparing() has returned; a child registered
        while the instance is already running is spawned right away.

        :param process: The Process to run in the child.
        :param name: Label for logs and the process title. Defaults to the class name.
        :param respawn: Replace the child when it exits unexpectedly.
        :param reload_signal: Signal forwarded to the child on reload; None to skip it.
        """
        if self.process_controller is None:
            controller = ProcessController(title_prefix=self.title, after_fork=self.dispatcher.release)
            self.process_controller = controller
            self.dispatcher.bind(signal.SIGCHLD, controller.get_children_shutdown_handler())
            self.push_prepared_callback(controller.bootstrap)
            self.push_terminating_callback(controller.terminate)
            controller.terminated(self.clear_process_id_file)

        spec = ChildProcessSpec(
            process=process,
            name=name or process.title or type(process).__name__,
            respawn=respawn,
            reload_signal=reload_signal,
        )
        self.process_controller.register_process(spec)
        if self.running:
            self.process_controller.bootstrap()
        return self

    #* --- Signal Handlers ---
    def on_terminating(self) -> None:
        """Runs the terminating callbacks once and stops the instance."""
        if not self.running:
            return

        log.info("Terminate signal received. Shutting down...")
        self.state = State.TERMINATING
        for callback in self._terminating:
            callback()

        if self.process_controller is None:
            self.clear_process_id_file()

        self.state = State.STOPPED

    def on_reopen(self) -> None:
        if self.process_controller is None:
            log.info("Reopen requested but no child processes are registered.")
            return
        self.process_controller.reopen()

    def on_reload(self) -> None:
        if self.process_controller is None:
            log.info("Reload requested but no child processes are registered.")
            return
        self.process_controller.reload()

    #* --- External Commands ---
    def _reject(self, error: KeeperExit) -> None:
        sys.stderr.write(f"{error.message}\n")
        sys.stderr.flush()
        raise error

    def status(self) -> Optional[int]:
        """
        Returns the pid of the running instance, or None if no live instance holds the PID file.
        """
        pid = self.pid_file.read()
        if pid is not None and process_utils.pid_exists(pid):
            return pid
        return None

    def restart(self, force: bool = False) -> None:
        """
        Restarts the instance.

        A running instance is asked to terminate and waited for, then a new one
        is started in this process. With nothing running, a new instance is
        started only when `force` is set.

        :raises OperationRejected: If nothing is running and `force` is not set.
        :raises SingletonConflict: If the running instance cannot be signalled or does not exit in time.
        """
        check = self.single_guarantee()
        if check.conflict:
            try:
                exited = shutdown.wait_for_instance_exit(check.pid)
            except psutil.AccessDenied:
                self._reject(SingletonConflict(
                    check.pid, f"Not permitted to signal running instance (PID: {check.pid}). Nothing to do."
                ))
            if not exited:
                self._reject(SingletonConflict(
                    check.pid, f"Running instance (PID: {check.pid}) did not stop. Nothing to do."
                ))
            force = True

        self.clear_process_id_file()

        if not force:
            self._reject(OperationRejected("No running instance to restart."))

        self.run()

    def stop(self) -> None:
        """
        Sends the terminate signal to the running instance and returns without waiting.

        :raises NoRunningInstance: If there is no PID file or it names a dead process.
        :raises OperationRejected: If the process in the PID file cannot be signalled.
        """
        pid = self.pid_file.read()
        if pid is None:
            self._reject(NoRunningInstance("No running instance"))

        try:
            delivered = process_utils.send_signal(pid, signal.SIGTERM)
        except psutil.AccessDenied:
            self._reject(OperationRejected(f"Not permitted to signal PID {pid}."))
        if not delivered:
            self.clear_process_id_file()
            self._reject(NoRunningInstance(f"No running instance (removed stale PID file for PID {pid})"))

        log.info(f"Sent SIGTERM to running instance (PID: {pid}).")
