import sys
import logging
import subprocess
from types import SimpleNamespace

import psutil
import pytest

from serverkeeper.local.supervisor import process_utils
from serverkeeper.local.supervisor.handle import OneShot


def test_get_executable_path_joins_working_dir(tmp_path):
    assert process_utils.get_executable_path(tmp_path, "7DaysToDieServer.exe") == tmp_path / "7DaysToDieServer.exe"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX session flags")
def test_spawn_detached_uses_new_session_and_no_stdio(monkeypatch, tmp_path):
    captured = {}

    def fake_popen(cmd, **kwargs):
        captured["cmd"] = cmd
        captured.update(kwargs)
        return SimpleNamespace(pid=42)

    monkeypatch.setattr(process_utils.subprocess, "Popen", fake_popen)

    proc = process_utils.spawn_detached(tmp_path / "server", ["-quit"], tmp_path)

    assert proc.pid == 42
    assert captured["cmd"] == [str(tmp_path / "server"), "-quit"]
    assert captured["cwd"] == str(tmp_path)
    assert captured["start_new_session"] is True
    for stream in ("stdin", "stdout", "stderr"):
        assert captured[stream] is subprocess.DEVNULL


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal return codes")
@pytest.mark.parametrize("returncode, expected", [
    (0, (0, None)),
    (1, (1, None)),
    (-9, (-1, "SIGKILL")),
    (-15, (-1, "SIGTERM")),
    (None, (-1, None)),
])
def test_describe_returncode(returncode, expected):
    assert process_utils.describe_returncode(returncode) == expected


def test_run_taskkill_success_logs_output(monkeypatch, caplog):
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return subprocess.CompletedProcess(args, 0, stdout="SUCCESS: The process with PID 77 has been terminated.\r\n", stderr="")

    monkeypatch.setattr(process_utils.subprocess, "run", fake_run)
    monkeypatch.setenv("ComSpec", r"C:\Windows\system32\cmd.exe")

    with caplog.at_level(logging.INFO, logger="proc.taskkill"):
        assert process_utils.run_taskkill(77, timeout=5) is True

    assert calls[0] == [r"C:\Windows\system32\cmd.exe", "/c", "taskkill", "/PID", "77", "/T", "/F"]
    assert any("SUCCESS" in r.getMessage() for r in caplog.records if r.name == "proc.taskkill")


def test_run_taskkill_non_zero_exit_is_failure(monkeypatch):
    monkeypatch.setattr(
        process_utils.subprocess, "run",
        lambda args, **kwargs: subprocess.CompletedProcess(args, 128, stdout="", stderr="ERROR: The process \"77\" not found."),
    )
    assert process_utils.run_taskkill(77) is False


@pytest.mark.parametrize("error", [
    subprocess.TimeoutExpired(cmd="taskkill", timeout=1),
    FileNotFoundError("cmd.exe"),
])
def test_run_taskkill_launch_problems_are_failures(monkeypatch, error):
    def fake_run(args, **kwargs):
        raise error

    monkeypatch.setattr(process_utils.subprocess, "run", fake_run)
    assert process_utils.run_taskkill(77, timeout=1) is False


class _FakeProcess:
    def __init__(self, pid, children=(), kill_error=None):
        self.pid = pid
        self._children = list(children)
        self.kill_error = kill_error
        self.killed = False

    def children(self, recursive=False):
        return self._children

    def kill(self):
        if self.kill_error is not None:
            raise self.kill_error
        self.killed = True


def test_signal_kill(monkeypatch):
    proc = _FakeProcess(10)
    monkeypatch.setattr(process_utils.psutil, "Process", lambda pid: proc)
    assert process_utils.signal_kill(10) is True
    assert proc.killed


def test_signal_kill_missing_process_is_failure(monkeypatch):
    def missing(pid):
        raise psutil.NoSuchProcess(pid)

    monkeypatch.setattr(process_utils.psutil, "Process", missing)
    assert process_utils.signal_kill(10) is False


def test_kill_process_tree_kills_children_then_parent(monkeypatch):
    gone = _FakeProcess(12, kill_error=psutil.NoSuchProcess(12))
    child = _FakeProcess(11)
    parent = _FakeProcess(10, children=[child, gone])
    monkeypatch.setattr(process_utils.psutil, "Process", lambda pid: parent)

    process_utils.kill_process_tree(10)

    assert child.killed and parent.killed


def test_one_shot_fires_once():
    seen = []
    once = OneShot(seen.append, "on_error")

    assert once("a") is True
    assert once("b") is False
    assert seen == ["a"]
    assert once.fired


def test_one_shot_without_callback_still_latches():
    once = OneShot(None, "on_exit")
    assert once(0, None) is True
    assert once(0, None) is False
