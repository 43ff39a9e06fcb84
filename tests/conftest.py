import os
import time
import signal
import logging

import psutil
import pytest

from keeper.process import Process
from keeper.supervisor import ProcessManager, process_utils

SUPERVISOR_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGUSR1, signal.SIGUSR2, signal.SIGCHLD)


class SleepingWorker(Process):
    title = "sleeper"

    def run(self):
        while True:
            time.sleep(0.05)


class ExitingWorker(Process):
    def run(self):
        return


class DemoManager(ProcessManager):
    """Registers the given children during preparation."""

    def __init__(self, pid_file=None, children=(), **kwargs):
        super().__init__(pid_file=pid_file, **kwargs)
        self.children_to_register = list(children)

    def on_preparing(self):
        for child in self.children_to_register:
            self.register_child_process(child)


class FakeProcessTable:
    """Stands in for forking, reaping and signalling so controller logic runs without real children."""

    def __init__(self):
        # Beyond any pid_max, so a fake pid never names a real process.
        self.next_pid = 10_000_000
        self.spawned = []
        self.alive = set()
        self.exited = {}
        self.stubborn = set()
        self.signals = []
        self.killed = []
        self.after_fork = []

    def spawn_process(self, process, title=None, signals_to_reset=(), after_fork=None):
        self.after_fork.append(after_fork)
        self.next_pid += 1
        pid = self.next_pid
        self.spawned.append((pid, process, title))
        self.alive.add(pid)
        return pid

    def exit(self, pid, code=1):
        """Simulates a child exiting with `code`."""
        self.alive.discard(pid)
        self.exited[pid] = code

    def reap_child(self, pid):
        if pid in self.exited:
            return True, self.exited.pop(pid)
        return False, None

    def send_signal(self, pid, sig):
        self.signals.append((pid, sig))
        return pid in self.alive

    def wait_processes(self, pids, timeout):
        gone, alive = {}, []
        for pid in pids:
            if pid in self.stubborn:
                alive.append(pid)
            else:
                self.alive.discard(pid)
                gone[pid] = -signal.SIGTERM
        return gone, alive

    def kill_process(self, pid):
        self.killed.append(pid)
        self.stubborn.discard(pid)


@pytest.fixture(autouse=True)
def restore_signals():
    """Puts back the signal dispositions and wakeup fd the tests may have replaced."""
    saved = {sig: signal.getsignal(sig) for sig in SUPERVISOR_SIGNALS}
    wakeup_fd = signal.set_wakeup_fd(-1)
    signal.set_wakeup_fd(wakeup_fd)
    yield
    for sig, handler in saved.items():
        signal.signal(sig, signal.SIG_DFL if handler is None else handler)
    signal.set_wakeup_fd(wakeup_fd)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root_logger = logging.getLogger()
    handlers, level = list(root_logger.handlers), root_logger.level
    yield
    for handler in list(root_logger.handlers):
        if handler not in handlers:
            root_logger.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(level)


@pytest.fixture
def pid_path(tmp_path):
    return tmp_path / "run" / "keeper.pid"


@pytest.fixture
def fake_processes(monkeypatch):
    table = FakeProcessTable()
    monkeypatch.setattr(process_utils, "spawn_process", table.spawn_process)
    monkeypatch.setattr(process_utils, "reap_child", table.reap_child)
    monkeypatch.setattr(process_utils, "send_signal", table.send_signal)
    monkeypatch.setattr(process_utils, "wait_processes", table.wait_processes)
    monkeypatch.setattr(process_utils, "kill_process", table.kill_process)
    return table


@pytest.fixture
def make_manager(pid_path):
    """Builds DemoManagers and makes sure none of them leaves handlers or children behind."""
    managers = []

    def factory(children=(), **kwargs):
        manager = DemoManager(pid_file=pid_path, children=children, **kwargs)
        managers.append(manager)
        return manager

    yield factory

    for manager in managers:
        manager.dispatcher.uninstall()
        controller = manager.process_controller
        if controller is None:
            continue
        for pid in controller.pids():
            try:
                child = psutil.Process(pid)
                if child.ppid() == os.getpid():
                    child.kill()
                    child.wait(timeout=5)
            except psutil.Error:
                pass


def wait_until(predicate, timeout=5.0, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
