"""
engine/bowler_manager.py
========================

Centralises bowler eligibility for a scored match.

Rules enforced
--------------
1. No-consecutive: when format_config.allow_consecutive_overs is False, the
   bowler of the previous over of this innings may not bowl
   the next one.
2. Bowling quota: only when format_config.max_bowler_overs is set; a
   bowler who has completed that many overs this innings is
   no longer eligible.  Disabled by default.

Usage (in match.py)
-------------------
    from engine.bowler_manager import BowlerManager

    self.bowler_manager = BowlerManager(self.fmt)

    # When an over completes
    self.bowler_manager.record_over_completion(inning, over_number, bowler)
    eligible = self.bowler_manager.eligible(fielding_roster, innings=inning)

    # For UI hints
    reason = self.bowler_manager.restriction_reason(name, innings=inning)
"""

import logging
from typing import Dict, Iterable, List, Optional

from engine.format_config import FormatConfig

logger = logging.getLogger(__name__)


def _player_name(player) -> str:
    """Roster entries may be plain names, RosterPlayer objects or dicts."""
    if isinstance(player, str):
        return player.strip()
    if isinstance(player, dict):
        return (player.get("name") or player.get("playerName") or "").strip()
    return (getattr(player, "name", "") or "").strip()


class BowlerManager:
    """
    Tracks who bowled which over, per innings, and answers "who may bowl
    next?".

    Parameters
    ----------
    format_config: FormatConfig instance for the current match format.
    """

    def __init__(self, format_config: FormatConfig):
        self.fmt = format_config
        self._history: Dict[int, List[dict]] = {1: [], 2: []}
        self._last_bowler: Dict[int, Optional[str]] = {}

    # ------------------------------------------------------------------ #
    # Public query interface                                               #
    # ------------------------------------------------------------------ #

    def eligible(self, fielding_roster: Iterable, exclude: Optional[str] = None,
                 innings: int = 1) -> List[str]:
        """
        Return the names allowed to bowl the next over.

        *exclude* defaults to the bowler of the previous over of *innings*.
        Players with blank names are skipped.
        """
        names = []
        for player in fielding_roster:
            name = _player_name(player)
            if not name:
                continue
            if self.restriction_reason(name, exclude=exclude, innings=innings):
                continue
            names.append(name)
        return names

    def restriction_reason(self, bowler_name: str, exclude: Optional[str] = None,
                           innings: int = 1) -> Optional[str]:
        """Why *bowler_name* may not bowl the next over, or None."""
        name = (bowler_name or "").strip()
        blocked = (exclude or self.last_bowler(innings) or "").strip()
        if not self.fmt.allow_consecutive_overs and blocked and name == blocked:
            return "Cannot bowl consecutive overs"
        if self.at_quota(name, innings):
            return f"Bowling quota of {self.fmt.max_bowler_overs} overs reached"
        return None

    def last_bowler(self, innings: int) -> Optional[str]:
        """Name of the bowler who bowled the previous over, or None."""
        return self._last_bowler.get(innings)

    def history(self, innings: int) -> List[dict]:
        return list(self._history.get(innings, []))

    def overs_bowled(self, bowler_name: str, innings: int) -> int:
        """Overs this bowler has completed in *innings*."""
        name = (bowler_name or "").strip()
        return sum(1 for entry in self._history.get(innings, []) if entry["bowler"] == name)

    def at_quota(self, bowler_name: str, innings: int) -> bool:
        """True if a quota is configured and this bowler has used it up."""
        if not self.fmt.quota_enabled:
            return False
        return self.overs_bowled(bowler_name, innings) >= self.fmt.max_bowler_overs

    # ------------------------------------------------------------------ #
    # State mutation                                                       #
    # ------------------------------------------------------------------ #

    def record_over_completion(self, innings: int, over_number: int, bowler_name: str) -> None:
        """
        Call this at the end of every over.

        Updates the innings bowling history and the last-bowler tracker used
        for consecutive-over enforcement.
        """
        name = (bowler_name or "").strip()
        self._history.setdefault(innings, []).append({"over": over_number, "bowler": name})
        self._last_bowler[innings] = name
        logger.debug(
            "BowlerManager: %s completed over %d of innings %d (%d overs this innings)",
            name, over_number, innings, self.overs_bowled(name, innings),
        )

    def reset_innings(self, innings: int) -> None:
        """Clear the history for *innings* (called at innings transition)."""
        self._history[innings] = []
        self._last_bowler.pop(innings, None)
        logger.debug("BowlerManager: reset for innings %d", innings)

    # ------------------------------------------------------------------ #
    # Serialisation                                                        #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict:
        return {
            "history": {str(k): list(v) for k, v in self._history.items()},
            "last_bowler": {str(k): v for k, v in self._last_bowler.items()},
        }

    @classmethod
    def from_dict(cls, format_config: FormatConfig, data: dict) -> "BowlerManager":
        manager = cls(format_config)
        data = data or {}
        for inn, entries in (data.get("history") or {}).items():
            manager._history[int(inn)] = [dict(e) for e in entries]
        for inn, name in (data.get("last_bowler") or {}).items():
            if name:
                manager._last_bowler[int(inn)] = name
        return manager
