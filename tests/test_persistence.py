import os

import pytest

from keeper.supervisor.persistence import PidFile


def test_write_then_read_returns_same_pid(pid_path):
    pid_file = PidFile(pid_path)

    pid_file.write(4321)

    assert pid_file.read() == 4321
    assert pid_path.read_text() == "4321\n"


def test_write_creates_parent_directory_and_leaves_no_temp_file(tmp_path):
    pid_file = PidFile(tmp_path / "nested" / "dir" / "app.pid")

    pid_file.write(os.getpid())

    assert pid_file.exists()
    assert sorted(p.name for p in pid_file.path.parent.iterdir()) == ["app.pid"]


def test_write_overwrites_previous_content(pid_path):
    pid_file = PidFile(pid_path)
    pid_file.write(111)

    pid_file.write(222)

    assert pid_file.read() == 222


def test_clear_then_read_returns_none(pid_path):
    pid_file = PidFile(pid_path)
    pid_file.write(4321)

    pid_file.clear()

    assert pid_file.read() is None
    assert not pid_path.exists()


def test_clear_is_idempotent(pid_path):
    pid_file = PidFile(pid_path)

    pid_file.clear()
    pid_file.clear()

    assert not pid_file.exists()


def test_read_missing_file_returns_none(pid_path):
    assert PidFile(pid_path).read() is None


@pytest.mark.parametrize("content", ["", "not-a-pid", "12abc", "0", "-5"])
def test_read_unusable_content_returns_none_and_keeps_file(pid_path, content):
    pid_path.parent.mkdir(parents=True)
    pid_path.write_text(content)

    assert PidFile(pid_path).read() is None
    assert pid_path.exists()


def test_read_tolerates_surrounding_whitespace(pid_path):
    pid_path.parent.mkdir(parents=True)
    pid_path.write_text("  777 \n\n")

    assert PidFile(pid_path).read() == 777


def test_write_to_unwritable_location_raises(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("I am a file, not a directory")
    pid_file = PidFile(blocker / "app.pid")

    with pytest.raises(OSError):
        pid_file.write(123)


def test_relative_path_is_made_absolute(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    pid_file = PidFile("app.pid")

    assert pid_file.path == tmp_path / "app.pid"
