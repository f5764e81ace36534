"""Decision policy for the supervisor.

decide() turns one tick's observations into an action plus the memory the loop
should keep. It never touches processes or sessions, and never mutates the
memory it is given; the only lookup it performs is the bet-ledger check.

Two tick kinds share the same inputs:

* HEALTH: restart when the worker is not running.
* GAME_CHANGE: restart with betting enabled when a new round of an active game
  starts and the worker has not already bet in it.

The betting flag actually used for a restart is never taken from the decision.
compute_restart_param() asks the oracle and the ledger again right before the
worker is launched.
"""

from __future__ import annotations

import logging
from typing import Protocol

from swarm_watchdog.models import (
    ENABLE_BETTING,
    Action,
    Decision,
    GameStatus,
    PauseState,
    RestartParam,
    StatusSnapshot,
    SupervisorMemory,
    TickMode,
)

logger = logging.getLogger(__name__)


class Ledger(Protocol):
    def has_recorded_action(self, game_id: str, round_id: str) -> bool: ...


class Oracle(Protocol):
    def fetch_status(self) -> StatusSnapshot: ...


def decide_health(alive: bool, pause_state: PauseState) -> Decision:
    if pause_state is PauseState.PAUSED:
        return Decision(Action.STAY_PAUSED, "paused by operator")
    if not alive:
        return Decision(Action.RESTART, "not running")
    return Decision(Action.NONE, "running")


def decide_game_change(
    memory: SupervisorMemory,
    status: StatusSnapshot,
    pause_state: PauseState,
    ledger: Ledger,
) -> tuple[Decision, SupervisorMemory]:
    position = status.position
    if not status.is_known or position is None:
        return Decision(Action.NONE, "status unknown"), memory

    game_id, round_id = position

    if not memory.has_position:
        return (
            Decision(Action.NONE, f"first observation: game {game_id} round {round_id}"),
            memory.with_position(game_id, round_id),
        )

    if memory.position == (game_id, round_id):
        return Decision(Action.NONE, "game/round unchanged"), memory

    # Track the new pair whatever we decide below
    new_memory = memory.with_position(game_id, round_id)
    change = (
        f"game {memory.last_game_id} round {memory.last_round_id} -> "
        f"game {game_id} round {round_id}"
    )

    if status.status is not GameStatus.ACTIVE:
        return Decision(Action.NONE, f"changed but inactive: {change}"), new_memory

    if ledger.has_recorded_action(game_id, round_id):
        return Decision(Action.NONE, f"already acted this round: {change}"), new_memory

    if pause_state is PauseState.PAUSED:
        return Decision(Action.STAY_PAUSED, f"paused by operator, skipping rebet: {change}"), new_memory

    return (
        Decision(Action.RESTART_AND_REBET, f"new active round: {change}", ENABLE_BETTING),
        new_memory,
    )


def decide(
    memory: SupervisorMemory,
    alive: bool,
    status: StatusSnapshot,
    pause_state: PauseState,
    mode: TickMode,
    ledger: Ledger,
) -> tuple[Decision, SupervisorMemory]:
    """Single entry point for both tick kinds.

    Returns the decision and the memory to keep for the next tick. A worker
    that is not running while supervision is active always yields RESTART,
    whatever the status or memory say.
    """
    if mode is TickMode.HEALTH:
        return decide_health(alive, pause_state), memory
    decision, new_memory = decide_game_change(memory, status, pause_state, ledger)
    if not alive and pause_state is PauseState.ACTIVE:
        return decide_health(alive, pause_state), new_memory
    return decision, new_memory


def compute_restart_param(oracle: Oracle, ledger: Ledger) -> RestartParam:
    """Betting flag for a restart happening now.

    Unreachable status enables betting (fail open). An inactive game, or an
    active round the ledger already has a bet for, disables it.
    """
    status = oracle.fetch_status()
    position = status.position
    if not status.is_known or position is None:
        logger.info("Restart param: status unknown, defaulting to enable")
        return RestartParam.ENABLE
    if status.status is not GameStatus.ACTIVE:
        logger.info(f"Restart param: game {status.game_id} inactive, disabling betting")
        return RestartParam.DISABLE
    game_id, round_id = position
    if ledger.has_recorded_action(game_id, round_id):
        logger.info(
            f"Restart param: bet already placed in game {game_id} "
            f"round {round_id}, disabling betting"
        )
        return RestartParam.DISABLE
    return RestartParam.ENABLE
