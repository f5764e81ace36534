"""Bet ledger lookups.

The worker appends lines such as

    2025-09-02 10:11:12 Game 7 Round 4: placed bet of 0.5 on agent X

to a plain-text ledger. The supervisor only reads it.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)


class BetLedger:
    """Answers "has the worker already bet in this game/round?"."""

    def __init__(self, path: str | Path, marker: str = "placed bet"):
        self.path = Path(path)
        self.marker = marker.lower()

    def _pattern(self, game_id: str, round_id: str) -> re.Pattern[str]:
        return re.compile(
            rf"\bGame\s+{re.escape(str(game_id))}\s+Round\s+{re.escape(str(round_id))}(?!\w)"
        )

    def has_recorded_action(self, game_id: str, round_id: str) -> bool:
        """True if a ledger line names this game/round together with the marker.

        A missing ledger means nothing has been recorded yet.
        """
        if not self.path.exists():
            return False
        pattern = self._pattern(game_id, round_id)
        try:
            with open(self.path, encoding="utf-8", errors="replace") as f:
                for line in f:
                    if self.marker in line.lower() and pattern.search(line):
                        return True
        except OSError as e:
            logger.warning(f"Cannot read bet ledger {self.path}: {e}")
        return False
