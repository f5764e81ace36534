"""Value types shared by the supervisor components.

Everything here is immutable. SupervisorMemory is the only state carried from
one tick to the next; the loop replaces it with the copy returned by the
policy and pause monitor.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


class GameStatus(str, Enum):
    """Status reported by the external game endpoint."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"


class Action(str, Enum):
    """What the loop should do after a decision."""
    NONE = "none"
    RESTART = "restart"
    RESTART_AND_REBET = "restart_and_rebet"
    STAY_PAUSED = "stay_paused"

    @property
    def restarts(self) -> bool:
        return self in (Action.RESTART, Action.RESTART_AND_REBET)


class PauseState(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class TickMode(str, Enum):
    HEALTH = "health"
    GAME_CHANGE = "game_change"


class RestartParam(str, Enum):
    """Betting flag answered to the worker's last interactive prompt."""
    ENABLE = "enable"
    DISABLE = "disable"


ENABLE_BETTING = "enable-betting"


@dataclass(frozen=True)
class SupervisorMemory:
    """State the supervisor keeps between ticks.

    Invariant: last_game_id and last_round_id are both None or both set.
    """
    last_game_id: str | None = None
    last_round_id: str | None = None
    paused_by_operator: bool = False
    last_log_offset: int = 0

    def __post_init__(self) -> None:
        if (self.last_game_id is None) != (self.last_round_id is None):
            raise ValueError(
                "last_game_id and last_round_id must both be set or both be None"
            )
        if self.last_log_offset < 0:
            raise ValueError("last_log_offset must be >= 0")

    @property
    def has_position(self) -> bool:
        return self.last_game_id is not None

    @property
    def position(self) -> tuple[str, str] | None:
        if self.last_game_id is None or self.last_round_id is None:
            return None
        return (self.last_game_id, self.last_round_id)

    def with_position(self, game_id: str, round_id: str) -> SupervisorMemory:
        return replace(self, last_game_id=game_id, last_round_id=round_id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StatusSnapshot:
    """One answer from the status endpoint.

    UNKNOWN means the endpoint could not be read. It never means the game ended.
    """
    game_id: str | None
    round_id: str | None
    status: GameStatus
    obtained_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def unknown(cls) -> StatusSnapshot:
        return cls(game_id=None, round_id=None, status=GameStatus.UNKNOWN)

    @property
    def is_known(self) -> bool:
        return (
            self.status is not GameStatus.UNKNOWN
            and self.game_id is not None
            and self.round_id is not None
        )

    @property
    def position(self) -> tuple[str, str] | None:
        if self.game_id is None or self.round_id is None:
            return None
        return (self.game_id, self.round_id)


@dataclass(frozen=True)
class Decision:
    """Outcome of the decision policy, logged verbatim to the audit log."""
    action: Action
    reason: str
    restart_param: str | None = None

    def __str__(self) -> str:
        text = f"{self.action.value} ({self.reason})"
        if self.restart_param:
            text += f" param={self.restart_param}"
        return text


@dataclass(frozen=True)
class WorkerIdentity:
    """How to find the worker on this machine.

    The worker is never held as a handle; processes and sessions are looked up
    again on every query.
    """
    session_name: str
    node_dir: str
    command_signature: str
    launcher_signature: str = ""
