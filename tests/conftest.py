"""
Shared pytest fixtures for swarm_watchdog tests.

OS access (process table, nvidia-smi, screen/tmux) and the status endpoint are
replaced by the in-memory fakes below, so no test spawns processes, opens
sessions or touches the network.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from swarm_watchdog.config import WatchdogConfig
from swarm_watchdog.errors import LaunchError, ProbeError
from swarm_watchdog.liveness import ProcessInfo
from swarm_watchdog.models import GameStatus, StatusSnapshot


# =============================================================================
# FAKES
# =============================================================================


class FakeInspector:
    """Process table keyed by pid; kill() removes entries."""

    def __init__(self, procs: Optional[List[ProcessInfo]] = None, cpu: float = 0.0):
        self.procs: Dict[int, ProcessInfo] = {p.pid: p for p in (procs or [])}
        self.cpu = cpu
        self.killed: List[int] = []
        self.fail_find = False

    def find(self, signature: str, node_dir: str) -> List[ProcessInfo]:
        if self.fail_find:
            raise ProbeError("process table unavailable")
        return [p for p in self.procs.values() if signature and signature in p.cmdline]

    def kill(self, pid: int) -> bool:
        if pid not in self.procs:
            return False
        del self.procs[pid]
        self.killed.append(pid)
        return True

    def cpu_percent(self, pids, interval: float = 1.0) -> float:
        return self.cpu


class FakeGpu:
    def __init__(self, used: Optional[float] = 0.0, free: Optional[float] = 80000.0):
        self.used = used
        self.free = free

    def memory_used_mb(self) -> float:
        if self.used is None:
            raise ProbeError("nvidia-smi not found")
        return self.used

    def memory_free_mb(self) -> float:
        if self.free is None:
            raise ProbeError("nvidia-smi not found")
        return self.free


class FakeSessions:
    """Session manager that records calls; a session name maps to its command."""

    def __init__(self, fail_launch: bool = False):
        self.sessions: Dict[str, Sequence[str]] = {}
        self.created: List[Tuple[str, Sequence[str]]] = []
        self.terminated: List[str] = []
        self.fail_launch = fail_launch

    def list_sessions(self) -> List[str]:
        return list(self.sessions)

    def terminate(self, name: str) -> bool:
        self.terminated.append(name)
        return self.sessions.pop(name, None) is not None

    def create_detached(self, name: str, command: Sequence[str]) -> None:
        if self.fail_launch:
            raise LaunchError("screen is not installed", session=name)
        self.sessions[name] = command
        self.created.append((name, command))


class FakeOracle:
    """Returns queued snapshots in order, then repeats the last one."""

    def __init__(self, *snapshots: StatusSnapshot):
        self.snapshots = list(snapshots) or [StatusSnapshot.unknown()]
        self.calls = 0

    def fetch_status(self) -> StatusSnapshot:
        self.calls += 1
        if len(self.snapshots) > 1:
            return self.snapshots.pop(0)
        return self.snapshots[0]


class FakeLedger:
    def __init__(self, *bets: Tuple[str, str]):
        self.bets = set(bets)

    def has_recorded_action(self, game_id: str, round_id: str) -> bool:
        return (game_id, round_id) in self.bets


def snapshot(game_id: str, round_id: str, status: GameStatus = GameStatus.ACTIVE) -> StatusSnapshot:
    return StatusSnapshot(game_id=game_id, round_id=round_id, status=status)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def node_dir(tmp_path):
    path = tmp_path / "rl-swarm"
    path.mkdir()
    return path


@pytest.fixture
def config(node_dir, tmp_path) -> WatchdogConfig:
    """Config for a node in tmp_path with no sleeping and status checks on."""
    return WatchdogConfig(
        node_name="testnode",
        node_dir=str(node_dir),
        watchdog_log=str(tmp_path / "watchdog.log"),
        status_url="http://status.test/api",
        grace_period=0,
        settle_delay=0,
        lock_dir=str(tmp_path),
    )


@pytest.fixture
def worker_proc(config) -> ProcessInfo:
    return ProcessInfo(
        pid=4242,
        cmdline=f"python -m {config.command_signature} --config-path {config.node_dir}/code_gen_exp/config",
        cwd=config.node_dir,
    )


@pytest.fixture
def inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture
def sessions() -> FakeSessions:
    return FakeSessions()


@pytest.fixture
def gpu() -> FakeGpu:
    return FakeGpu()
