import os
import sys
import signal

import psutil

from keeper.process import Process
from keeper.supervisor import process_utils
from keeper.supervisor.signals import SignalDispatcher

from conftest import SleepingWorker, wait_until


class ExitWithCode(Process):
    def __init__(self, code):
        self.code = code

    def run(self):
        sys.exit(self.code)


class Crashing(Process):
    def run(self):
        raise RuntimeError("worker crashed")


def reap(pid):
    result = []

    def exited():
        result[:] = process_utils.reap_child(pid)
        return result[0]

    assert wait_until(exited)
    return result[1]


def test_child_exit_status_is_reported():
    assert reap(process_utils.spawn_process(ExitWithCode(3))) == 3
    assert reap(process_utils.spawn_process(ExitWithCode(None))) == 0


def test_unhandled_exception_exits_with_one():
    assert reap(process_utils.spawn_process(Crashing())) == 1


def test_running_child_is_not_reaped():
    pid = process_utils.spawn_process(SleepingWorker(), title="keeper-test sleeper")
    try:
        assert process_utils.reap_child(pid) == (False, None)
        assert process_utils.pid_exists(pid)
    finally:
        process_utils.kill_process(pid)
        gone, alive = process_utils.wait_processes([pid], timeout=5)

    assert alive == []
    assert pid in gone


def test_reap_of_foreign_process():
    assert process_utils.reap_child(os.getppid()) == (True, None)


def test_pid_exists():
    assert process_utils.pid_exists(os.getpid())
    assert not process_utils.pid_exists(0)
    assert not process_utils.pid_exists(-1)


def test_missing_processes_are_reported_gone():
    gone, alive = process_utils.wait_processes([9_999_999], timeout=0.1)

    assert gone == {9_999_999: None}
    assert alive == []


def test_signalling_missing_process():
    assert process_utils.send_signal(9_999_999, 0) is False
    process_utils.kill_process(9_999_999)


def test_describe_process():
    info = process_utils.describe_process(os.getpid())

    assert info["pid"] == os.getpid()
    assert info["name"] == psutil.Process().name()
    assert isinstance(info["children"], list)
    assert process_utils.describe_process(9_999_999) == {}


class ChecksClosedDescriptors(Process):
    def __init__(self, fds):
        self.fds = fds

    def run(self):
        for fd in self.fds:
            try:
                os.fstat(fd)
            except OSError:
                continue
            sys.exit(5)


def test_after_fork_hook_releases_dispatcher_in_child():
    dispatcher = SignalDispatcher()
    dispatcher.bind(signal.SIGUSR1, lambda: None)
    dispatcher.install()
    try:
        fds = [dispatcher._reader.fileno(), dispatcher._writer.fileno()]
        pid = process_utils.spawn_process(
            ChecksClosedDescriptors(fds),
            signals_to_reset=(signal.SIGUSR1,),
            after_fork=dispatcher.release,
        )
        assert reap(pid) == 0
        # The parent keeps its own descriptors.
        assert dispatcher.installed
        os.fstat(fds[0])
    finally:
        dispatcher.uninstall()


def test_without_hook_child_inherits_descriptors():
    dispatcher = SignalDispatcher()
    dispatcher.install()
    try:
        fds = [dispatcher._reader.fileno(), dispatcher._writer.fileno()]
        assert reap(process_utils.spawn_process(ChecksClosedDescriptors(fds))) == 5
    finally:
        dispatcher.uninstall()


def test_daemonize_detaches_into_new_session(tmp_path):
    report = tmp_path / "daemon.txt"
    workdir = tmp_path / "work"
    workdir.mkdir()

    helper = os.fork()
    if helper == 0:
        try:
            process_utils.daemonize(working_dir=str(workdir), umask=0o027)
            temp = tmp_path / "daemon.tmp"
            previous_umask = os.umask(0)
            temp.write_text(f"{os.getpid()} {os.getsid(0)} {os.getppid()} {previous_umask} {os.getcwd()}")
            temp.replace(report)
        finally:
            os._exit(0)

    # The helper is the first parent of the double fork and exits right away.
    _, status = os.waitpid(helper, 0)
    assert os.waitstatus_to_exitcode(status) == 0

    assert wait_until(report.exists)
    daemon_pid, session_id, parent_pid, umask, cwd = report.read_text().split(" ", 4)
    assert int(daemon_pid) not in (os.getpid(), helper)
    assert int(session_id) != os.getsid(0)
    # Not the session leader, so it can never reacquire a terminal.
    assert int(session_id) != int(daemon_pid)
    assert int(parent_pid) != helper
    assert int(umask) == 0o027
    assert cwd == str(workdir.resolve())
