"""Worker liveness detection.

A worker counts as alive when a process with the expected command line runs
under the node directory AND its health signal (GPU memory in use, or CPU
utilisation) is at or above a threshold. A process that exists but consumes
nothing is treated as hung.

When a monitoring tool is missing or its output cannot be parsed the probe
reports healthy.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import Iterable

import psutil

from swarm_watchdog.errors import ProbeError
from swarm_watchdog.models import WorkerIdentity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    cmdline: str
    cwd: str | None = None


def _is_under(path: str | None, root: str) -> bool:
    if not path:
        return False
    path = os.path.realpath(path)
    root = os.path.realpath(root)
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def _argv_mentions(argv: Iterable[str], root: str) -> bool:
    """True if any absolute path in argv, or `--opt=/path` value, lies under root.

    Arguments are split on whitespace too, so `bash -c "cd /path && ..."` counts.
    """
    for arg in argv:
        for word in arg.split():
            for candidate in (word, word.partition("=")[2]):
                candidate = candidate.strip("\"';")
                if candidate.startswith(os.sep) and _is_under(candidate, root):
                    return True
    return False


class ProcessInspector:
    """Read-only view of the OS process table, plus best-effort kill."""

    def find(self, signature: str, node_dir: str) -> list[ProcessInfo]:
        """Processes whose command line contains signature and that belong to node_dir.

        A process belongs to node_dir when its working directory is inside it or
        when one of its path arguments is. Paths compare by whole components,
        so /root/rl-swarm never claims /root/rl-swarm2.
        """
        if not signature:
            return []
        own_pid = os.getpid()
        matches: list[ProcessInfo] = []
        try:
            for proc in psutil.process_iter(["pid", "cmdline", "cwd"]):
                info = proc.info
                if info.get("pid") == own_pid:
                    continue
                argv = info.get("cmdline") or []
                cmdline = " ".join(argv)
                if signature not in cmdline:
                    continue
                cwd = info.get("cwd")
                if _is_under(cwd, node_dir) or _argv_mentions(argv, node_dir):
                    matches.append(ProcessInfo(pid=info["pid"], cmdline=cmdline, cwd=cwd))
        except psutil.Error as e:
            raise ProbeError(f"Process table query failed: {e}") from e
        return matches

    def kill(self, pid: int) -> bool:
        """SIGKILL pid. Returns False if it was already gone."""
        try:
            psutil.Process(pid).kill()
            return True
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied as e:
            logger.warning(f"Not allowed to kill PID {pid}: {e}")
            return False

    def cpu_percent(self, pids: Iterable[int], interval: float = 1.0) -> float:
        """Summed CPU utilisation of pids over a short sampling window."""
        procs = []
        for pid in pids:
            try:
                proc = psutil.Process(pid)
                proc.cpu_percent(None)  # prime the counter
                procs.append(proc)
            except psutil.NoSuchProcess:
                continue
            except psutil.Error as e:
                raise ProbeError(f"Cannot sample CPU for PID {pid}: {e}") from e
        if not procs:
            return 0.0
        time.sleep(interval)
        total = 0.0
        for proc in procs:
            try:
                total += proc.cpu_percent(None)
            except psutil.NoSuchProcess:
                continue
            except psutil.Error as e:
                raise ProbeError(f"Cannot sample CPU for PID {proc.pid}: {e}") from e
        return total


class GpuQuery:
    """Thin wrapper around nvidia-smi's CSV query mode."""

    def __init__(self, binary: str = "nvidia-smi", timeout: float = 10.0):
        self.binary = binary
        self.timeout = timeout

    def _query(self, field: str) -> list[float]:
        try:
            result = subprocess.run(
                [self.binary, f"--query-gpu={field}", "--format=csv,noheader,nounits"],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ProbeError(f"{self.binary} not found") from e
        except subprocess.TimeoutExpired as e:
            raise ProbeError(f"{self.binary} timed out after {self.timeout}s") from e
        except OSError as e:
            raise ProbeError(f"{self.binary} failed: {e}") from e

        if result.returncode != 0:
            raise ProbeError(
                f"{self.binary} exited with {result.returncode}: {result.stderr.strip()}"
            )

        values = []
        for line in result.stdout.strip().splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                values.append(float(line.replace("MiB", "").replace("%", "").strip()))
            except ValueError as e:
                raise ProbeError(f"Unparsable {self.binary} output: {line!r}") from e
        if not values:
            raise ProbeError(f"{self.binary} reported no GPUs")
        return values

    def memory_used_mb(self) -> float:
        return sum(self._query("memory.used"))

    def memory_free_mb(self) -> float:
        return sum(self._query("memory.free"))


class LivenessProbe:
    """Answers "is the worker running and doing something?"."""

    def __init__(
        self,
        inspector: ProcessInspector | None = None,
        gpu: GpuQuery | None = None,
        health_signal: str = "gpu_memory",
        min_threshold: float = 0.0,
        cpu_sample_interval: float = 1.0,
    ):
        self.inspector = inspector or ProcessInspector()
        self.gpu = gpu or GpuQuery()
        self.health_signal = health_signal
        self.min_threshold = min_threshold
        self.cpu_sample_interval = cpu_sample_interval

    def _measure(self, procs: list[ProcessInfo]) -> float:
        if self.health_signal == "cpu_percent":
            return self.inspector.cpu_percent(
                (p.pid for p in procs), interval=self.cpu_sample_interval
            )
        return self.gpu.memory_used_mb()

    def check_alive(self, identity: WorkerIdentity) -> bool:
        try:
            procs = self.inspector.find(identity.command_signature, identity.node_dir)
        except ProbeError as e:
            logger.warning(f"Cannot inspect processes, assuming healthy: {e}")
            return True

        if not procs:
            logger.info(f"No process matching {identity.command_signature!r} under {identity.node_dir}")
            return False

        if self.min_threshold <= 0:
            return True

        try:
            value = self._measure(procs)
        except ProbeError as e:
            logger.warning(f"Cannot read {self.health_signal}, assuming healthy: {e}")
            return True

        if value < self.min_threshold:
            logger.warning(
                f"Worker appears hung: {self.health_signal}={value:.0f} "
                f"< threshold {self.min_threshold:.0f} ({len(procs)} procs)"
            )
            return False
        return True


def has_enough_vram(gpu: GpuQuery, min_free_mb: float) -> bool:
    """Pre-restart gate: is there enough free VRAM to start a worker?

    Disabled when min_free_mb <= 0. Unknown (no nvidia-smi, bad output) allows
    the restart.
    """
    if min_free_mb <= 0:
        return True
    try:
        free = gpu.memory_free_mb()
    except ProbeError as e:
        logger.warning(f"Cannot read free VRAM, allowing restart: {e}")
        return True
    return free >= min_free_mb
