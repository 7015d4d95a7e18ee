"""Shared fakes for the supervisor and firewall tests."""

import threading
import itertools
from typing import Dict, List, Optional

import pytest

from serverkeeper.errors import BackendCommandFailure, BackendQueryFailure
from serverkeeper.local.firewall.backend import FirewallBackend
from serverkeeper.local.firewall.models import Direction, EffectiveRule, ExistingRule
from serverkeeper.local.supervisor import process_utils

_pids = itertools.count(4000)


class FakePopen:
    """Stands in for subprocess.Popen; the test decides when the process ends."""

    def __init__(self, pid: Optional[int] = None):
        self.pid = pid if pid is not None else next(_pids)
        self.returncode: Optional[int] = None
        self._done = threading.Event()
        self._wait_error: Optional[BaseException] = None

    def poll(self) -> Optional[int]:
        return self.returncode

    def wait(self, timeout: Optional[float] = None) -> int:
        self._done.wait(timeout)
        if self._wait_error is not None:
            raise self._wait_error
        return self.returncode

    def finish(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self._done.set()

    def fail(self, error: BaseException) -> None:
        self._wait_error = error
        self._done.set()


class SpawnRecorder:
    def __init__(self):
        self.calls: List[tuple] = []
        self.processes: List[FakePopen] = []
        self.error: Optional[BaseException] = None

    def __call__(self, exe_path, args, cwd):
        self.calls.append((exe_path, args, cwd))
        if self.error is not None:
            raise self.error
        proc = FakePopen()
        self.processes.append(proc)
        return proc


@pytest.fixture
def spawner(monkeypatch):
    recorder = SpawnRecorder()
    monkeypatch.setattr(process_utils, "spawn_detached", recorder)
    yield recorder
    for proc in recorder.processes:
        if proc.returncode is None:
            proc.finish(-9)


@pytest.fixture
def kill_calls(monkeypatch):
    """Records every OS-level kill; each kill succeeds unless the test says otherwise."""
    calls = {"taskkill": [], "signal": [], "tree": [], "result": True, "tree_error": None}

    def fake_taskkill(pid, timeout=None):
        calls["taskkill"].append(pid)
        return calls["result"]

    def fake_signal_kill(pid):
        calls["signal"].append(pid)
        return calls["result"]

    def fake_tree(pid):
        calls["tree"].append(pid)
        if calls["tree_error"] is not None:
            raise calls["tree_error"]

    monkeypatch.setattr(process_utils, "run_taskkill", fake_taskkill)
    monkeypatch.setattr(process_utils, "signal_kill", fake_signal_kill)
    monkeypatch.setattr(process_utils, "kill_process_tree", fake_tree)
    return calls


class FakeFirewallBackend(FirewallBackend):
    """In-memory rule store that records every call."""

    def __init__(self, rules: Optional[List[ExistingRule]] = None):
        self.rules: List[ExistingRule] = list(rules or [])
        self.calls: List[tuple] = []
        self.fail_query: Dict[Direction, Exception] = {}
        self.fail_create: Dict[Direction, Exception] = {}
        self.fail_delete: Dict[str, Exception] = {}
        self._ids = itertools.count(1)

    def query_rules(self, display_name: str, direction: Direction) -> List[ExistingRule]:
        self.calls.append(("query", display_name, direction))
        if direction in self.fail_query:
            raise self.fail_query[direction]
        return [r for r in self.rules if r.display_name == display_name and r.direction == direction.value]

    def delete_rule(self, name: str) -> None:
        self.calls.append(("delete", name))
        if name in self.fail_delete:
            raise self.fail_delete[name]
        self.rules = [r for r in self.rules if r.name != name]

    def create_rule(self, rule: EffectiveRule) -> Optional[str]:
        self.calls.append(("create", rule.direction))
        if rule.direction in self.fail_create:
            raise self.fail_create[rule.direction]
        name = f"{{generated-{next(self._ids)}}}"
        self.rules.append(ExistingRule(
            name=name,
            display_name=rule.display_name,
            direction=rule.direction.value,
            protocol=rule.protocol.value,
            ports=tuple(rule.local_ports),
            program=rule.program,
            action=rule.action.value,
            profile_mask=rule.profile_mask,
        ))
        return name

    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in ("delete", "create")]


@pytest.fixture
def backend():
    return FakeFirewallBackend()


@pytest.fixture
def query_failure():
    return BackendQueryFailure("PowerShell exited with code 1", returncode=1, stderr="boom")


@pytest.fixture
def command_failure():
    return BackendCommandFailure("PowerShell exited with code 1", returncode=1, stderr="boom")
