"""Worker restart orchestration.

A restart is always the same six steps, in order:

1. SIGKILL every worker process under the node directory
2. SIGKILL the worker's launcher script
3. close the terminal session hosting the worker (absent is fine)
4. short settle delay
5. start a fresh detached session running the launch script
6. grace period so the worker is up before the next liveness check

Kills and session teardown are best effort. Only step 5 can fail the restart.
"""

from __future__ import annotations

import logging
import shlex
import signal
import time
from typing import Callable

from swarm_watchdog.config import WatchdogConfig
from swarm_watchdog.errors import LaunchError, ProbeError
from swarm_watchdog.liveness import ProcessInspector
from swarm_watchdog.models import RestartParam, WorkerIdentity
from swarm_watchdog.pause import EXIT_MARKER
from swarm_watchdog.sessions import SessionManager, make_session_manager

logger = logging.getLogger(__name__)


def _marker_trap(runtime_log: str, code: int, signal_name: str) -> str:
    action = f'echo "{EXIT_MARKER} {code}" >> {runtime_log}; exit {code}'
    return f"trap {shlex.quote(action)} {signal_name}"


def build_launch_script(config: WatchdogConfig, answer: str) -> str:
    """Bash script run inside the worker session.

    Answers are fed to the worker's prompts in order: settings change, model
    name, then the betting answer. Output is appended to the runtime log, and
    the worker's own exit status is appended as an exit marker when it stops.

    Ctrl-C in the session signals the whole foreground group. tee ignores
    SIGINT so it drains the worker's last output, and the INT trap records
    the interrupt code once the pipeline has finished.
    """
    answers = [*config.auto_answers, answer]
    printf = "printf '%s\\n' " + " ".join(shlex.quote(a) for a in answers)
    runtime_log = shlex.quote(config.runtime_log)
    lines = [
        f"cd {shlex.quote(str(config.node_dir))} && source {shlex.quote(config.venv_activate)} || exit 1",
        _marker_trap(runtime_log, config.interrupt_exit_code, "INT"),
        _marker_trap(runtime_log, 128 + signal.SIGTERM, "TERM"),
        f"{printf} | {config.resolved_worker_command} 2>&1 | ( trap '' INT; exec tee -a {runtime_log} )",
        "rc=${PIPESTATUS[1]}",
        "trap - INT TERM",
        f'echo "{EXIT_MARKER} $rc" >> {runtime_log}',
        'exit "$rc"',
    ]
    return "\n".join(lines)


def build_launch_command(config: WatchdogConfig, answer: str) -> list[str]:
    return ["bash", "-lc", build_launch_script(config, answer)]


class RestartOrchestrator:
    """Kills whatever is left of the worker and starts a fresh one."""

    def __init__(
        self,
        config: WatchdogConfig,
        inspector: ProcessInspector | None = None,
        sessions: SessionManager | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.inspector = inspector or ProcessInspector()
        self.sessions = sessions or make_session_manager(config.session_backend)
        self._sleep = sleep

    def _kill_matching(self, signature: str, node_dir: str) -> int:
        if not signature:
            return 0
        try:
            procs = self.inspector.find(signature, node_dir)
        except ProbeError as e:
            logger.warning(f"Cannot list {signature!r} processes, skipping kill: {e}")
            return 0
        killed = 0
        for proc in procs:
            if self.inspector.kill(proc.pid):
                logger.info(f"Killed PID {proc.pid}: {proc.cmdline[:120]}")
                killed += 1
        return killed

    def stop_worker(self, identity: WorkerIdentity) -> int:
        """Steps 1-3. Returns the number of processes killed."""
        killed = self._kill_matching(identity.command_signature, identity.node_dir)
        killed += self._kill_matching(identity.launcher_signature, identity.node_dir)
        if self.sessions.terminate(identity.session_name):
            logger.info(f"Closed session {identity.session_name}")
        return killed

    def restart(self, identity: WorkerIdentity, param: RestartParam | str) -> None:
        """Run a full restart. Raises LaunchError if the new session cannot start."""
        param = RestartParam(param)
        answer = self.config.answer_for(param.value)
        logger.info(f"Restarting {identity.session_name} in {identity.node_dir} (betting={param.value})")

        killed = self.stop_worker(identity)
        logger.info(f"Stopped old worker ({killed} processes killed)")

        self._sleep(self.config.settle_delay)

        command = build_launch_command(self.config, answer)
        try:
            self.sessions.create_detached(identity.session_name, command)
        except LaunchError:
            logger.error(f"Failed to launch session {identity.session_name}")
            raise
        logger.info(f"Started session {identity.session_name}; waiting {self.config.grace_period:.0f}s grace period")

        self._sleep(self.config.grace_period)
