"""Supervisor loop.

One thread, one worker. Every health_interval seconds tick() runs:

    pause check -> liveness -> [game-change check] -> [betting status] -> restart

Game-change and betting-status checks run inside a tick once their own
interval has elapsed. A tick performs at most one restart and never raises.
Whatever ends the loop, an exit marker is appended to the runtime log so the
next supervisor knows why this one stopped.
"""

from __future__ import annotations

import logging
import signal
import time
from typing import Callable

from swarm_watchdog.config import WatchdogConfig
from swarm_watchdog.errors import RestartError
from swarm_watchdog.ledger import BetLedger
from swarm_watchdog.liveness import GpuQuery, LivenessProbe, ProcessInspector, has_enough_vram
from swarm_watchdog.models import (
    Action,
    Decision,
    PauseState,
    StatusSnapshot,
    SupervisorMemory,
    TickMode,
)
from swarm_watchdog.oracle import StatusOracle
from swarm_watchdog.orchestrator import RestartOrchestrator
from swarm_watchdog.pause import PauseMonitor, append_exit_marker
from swarm_watchdog.policy import Ledger, Oracle, compute_restart_param, decide
from swarm_watchdog.sessions import SessionManager

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CRASH = 1


class SupervisorLoop:
    """Owns the supervisor memory and drives the components tick by tick."""

    def __init__(
        self,
        config: WatchdogConfig,
        probe: LivenessProbe | None = None,
        oracle: Oracle | None = None,
        ledger: Ledger | None = None,
        orchestrator: RestartOrchestrator | None = None,
        pause_monitor: PauseMonitor | None = None,
        gpu: GpuQuery | None = None,
        sessions: SessionManager | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.identity = config.identity()
        inspector = ProcessInspector()
        self.gpu = gpu or GpuQuery()
        self.probe = probe or LivenessProbe(
            inspector=inspector,
            gpu=self.gpu,
            health_signal=config.health_signal,
            min_threshold=config.min_resource_threshold,
        )
        self.oracle = oracle or StatusOracle(config.status_url, timeout=config.status_timeout)
        self.ledger = ledger or BetLedger(config.ledger_path, marker=config.bet_marker)
        self.orchestrator = orchestrator or RestartOrchestrator(
            config, inspector=inspector, sessions=sessions, sleep=sleep
        )
        self.pause_monitor = pause_monitor or PauseMonitor(
            config.runtime_log,
            interrupt_exit_code=config.interrupt_exit_code,
            error_signatures=config.error_signatures,
        )
        self._clock = clock
        self._sleep = sleep

        self.memory = SupervisorMemory()
        self.pause_state = PauseState.ACTIVE
        self.restart_count = 0
        self._last_game_check: float | None = None
        self._last_betting_check: float | None = None

        self._restarting = False
        self._pending_exit: int | None = None
        self.running = False

    # =========================================================================
    # Scheduling
    # =========================================================================

    @staticmethod
    def _due(last: float | None, interval: float, now: float) -> bool:
        return last is None or now - last >= interval

    def _game_check_due(self, now: float) -> bool:
        return self.config.status_checks_enabled and self._due(
            self._last_game_check, self.config.game_check_interval, now
        )

    def _betting_check_due(self, now: float) -> bool:
        return self.config.status_checks_enabled and self._due(
            self._last_betting_check, self.config.betting_check_interval, now
        )

    # =========================================================================
    # Tick
    # =========================================================================

    def tick(self) -> Decision | None:
        """Run one supervision cycle. Returns its decision, or None if it failed.

        Never raises: every failure is logged and the loop carries on.
        """
        try:
            return self._tick(self._clock())
        except Exception as e:
            logger.exception(f"Tick failed: {e}")
            return None

    def _tick(self, now: float) -> Decision | None:
        self.pause_state, self.memory = self.pause_monitor.observe(self.memory)

        if self.pause_state is PauseState.PAUSED:
            alive = True  # not probed while paused
            decision = Decision(Action.STAY_PAUSED, "paused by operator")
        else:
            alive = self.probe.check_alive(self.identity)
            decision, self.memory = decide(
                self.memory, alive, StatusSnapshot.unknown(), self.pause_state, TickMode.HEALTH, self.ledger
            )
        logger.info(f"Health check: {decision}")

        if self._game_check_due(now):
            self._last_game_check = now
            status = self.oracle.fetch_status()
            game_decision, self.memory = decide(
                self.memory, alive, status, self.pause_state, TickMode.GAME_CHANGE, self.ledger
            )
            logger.info(f"Game check: {game_decision}")
            if game_decision.action.restarts and not decision.action.restarts:
                decision = game_decision

        if self._betting_check_due(now):
            self._last_betting_check = now
            self._log_betting_status()

        if decision.action.restarts:
            self._execute_restart(decision)
        return decision

    def _log_betting_status(self) -> None:
        status = self.oracle.fetch_status()
        position = status.position
        if not status.is_known or position is None:
            logger.info("Betting status: unknown (status endpoint unavailable)")
            return
        game_id, round_id = position
        placed = self.ledger.has_recorded_action(game_id, round_id)
        logger.info(
            f"Betting status: game {game_id} round {round_id} "
            f"({status.status.value}), bet placed: {'yes' if placed else 'no'}"
        )

    def _execute_restart(self, decision: Decision) -> None:
        if not has_enough_vram(self.gpu, self.config.min_free_vram_mb):
            logger.warning(
                f"Skipping restart ({decision.reason}): low free VRAM, "
                f"need {self.config.min_free_vram_mb} MB"
            )
            return

        # Betting flag comes from the state right now, not from the decision
        param = compute_restart_param(self.oracle, self.ledger)
        self._restarting = True
        try:
            self.orchestrator.restart(self.identity, param)
            self.restart_count += 1
            logger.info(f"Restart #{self.restart_count} complete (reason: {decision.reason})")
        except RestartError as e:
            logger.error(f"Restart failed, will retry on a later tick: {e}")
        finally:
            self._restarting = False
        if self._pending_exit is not None:
            raise SystemExit(self._pending_exit)

    # =========================================================================
    # Main loop
    # =========================================================================

    def _handle_signal(self, signum, frame) -> None:
        code = 128 + signum
        logger.info(f"Received {signal.Signals(signum).name}, shutting down (exit code {code})")
        self.running = False
        if self._restarting:
            # An in-flight restart runs to completion
            self._pending_exit = code
            return
        raise SystemExit(code)

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def log_banner(self) -> None:
        c = self.config
        logger.info("=" * 60)
        logger.info(f"Swarm watchdog for node {c.node_name}")
        logger.info(f"Node directory: {c.node_dir}")
        logger.info(f"Runtime log: {c.runtime_log}")
        logger.info(f"Session: {c.session_backend}:{c.node_name}")
        logger.info(
            f"Intervals: health={c.health_interval:.0f}s game={c.game_check_interval:.0f}s "
            f"betting={c.betting_check_interval:.0f}s grace={c.grace_period:.0f}s"
        )
        logger.info(
            f"Thresholds: {c.health_signal}>={c.min_resource_threshold:g} "
            f"free_vram>={c.min_free_vram_mb} MB"
        )
        logger.info(f"Status endpoint: {c.status_url or 'disabled'}")
        logger.info("=" * 60)

    def run(self, once: bool = False) -> int:
        """Tick until signalled. Returns the process exit code.

        SIGINT gives 130, SIGTERM 143, an unexpected error 1.
        """
        exit_code = EXIT_OK
        self.running = True
        self.install_signal_handlers()
        self.log_banner()
        try:
            while self.running:
                self.tick()
                if once:
                    break
                self._sleep(self.config.health_interval)
        except SystemExit as e:
            if e.code is None:
                exit_code = EXIT_OK
            else:
                exit_code = e.code if isinstance(e.code, int) else EXIT_CRASH
        except KeyboardInterrupt:
            exit_code = 128 + signal.SIGINT
        except BaseException:
            logger.exception("Supervisor crashed")
            exit_code = EXIT_CRASH
        finally:
            self.running = False
            # A clean single-shot run must not mask the worker's own marker
            if not (once and exit_code == EXIT_OK):
                append_exit_marker(self.config.runtime_log, exit_code)
            logger.info(f"Supervisor exiting with code {exit_code}")
        return exit_code
