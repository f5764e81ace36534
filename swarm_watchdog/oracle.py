"""Status oracle: asks the dashboard which game and round are current.

Expected payload:

    {"game": {"id": 7, "status": "active"}, "rounds": [{"id": 1}, {"id": 3}]}

The current round is the highest round id. Anything else (timeouts, HTTP
errors, bad JSON, missing fields) becomes an UNKNOWN snapshot; fetch_status()
never raises and never retries.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import requests

from swarm_watchdog.errors import StatusUnavailableError
from swarm_watchdog.models import GameStatus, StatusSnapshot

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({"active"})


def _max_round_id(rounds: Any) -> str:
    if not isinstance(rounds, list):
        raise StatusUnavailableError("rounds is not a list")
    ids = [
        r.get("id") for r in rounds
        if isinstance(r, Mapping) and r.get("id") not in (None, "")
    ]
    if not ids:
        raise StatusUnavailableError("no round ids in payload")
    try:
        return str(max(int(i) for i in ids))
    except (TypeError, ValueError):
        return str(max(str(i) for i in ids))


def parse_status(payload: Any) -> StatusSnapshot:
    """Turn the endpoint's JSON into a snapshot.

    Raises StatusUnavailableError on any missing or malformed field.
    """
    if not payload or not isinstance(payload, Mapping):
        raise StatusUnavailableError("empty or non-object payload")

    game = payload.get("game")
    if not isinstance(game, Mapping):
        raise StatusUnavailableError("missing game object")

    game_id = game.get("id")
    if game_id in (None, ""):
        raise StatusUnavailableError("missing game id")

    raw_status = game.get("status")
    if not isinstance(raw_status, str) or not raw_status.strip():
        raise StatusUnavailableError("missing game status")

    round_id = _max_round_id(payload.get("rounds"))
    status = (
        GameStatus.ACTIVE
        if raw_status.strip().lower() in ACTIVE_STATUSES
        else GameStatus.INACTIVE
    )
    return StatusSnapshot(game_id=str(game_id), round_id=round_id, status=status)


class StatusOracle:
    """Fetches the current game/round from a fixed URL."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def _get_json(self) -> Any:
        if not self.url:
            raise StatusUnavailableError("no status URL configured")
        try:
            response = requests.get(self.url, timeout=self.timeout)
        except requests.RequestException as e:
            raise StatusUnavailableError(f"request failed: {e}", url=self.url) from e
        if response.status_code != 200:
            raise StatusUnavailableError(
                f"status endpoint returned {response.status_code}", url=self.url
            )
        try:
            return response.json()
        except ValueError as e:
            raise StatusUnavailableError(f"invalid JSON: {e}", url=self.url) from e

    def fetch_status(self) -> StatusSnapshot:
        try:
            snapshot = parse_status(self._get_json())
        except StatusUnavailableError as e:
            logger.warning(f"Status unavailable: {e}")
            return StatusSnapshot.unknown()
        logger.debug(
            f"Status: game={snapshot.game_id} round={snapshot.round_id} status={snapshot.status.value}"
        )
        return snapshot
