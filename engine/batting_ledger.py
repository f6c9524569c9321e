"""
engine/batting_ledger.py
========================

Per-player batting figures for the innings in progress.

One BattingRecord per batter, created lazily the first time the batter is
involved (including a new arrival who has not yet faced a ball).  Records are
kept in arrival order so the scorecard lists batters in batting order.
"""

from dataclasses import asdict, dataclass
from typing import Dict, List, Optional


@dataclass
class BattingRecord:
    name: str
    runs: int = 0
    balls: int = 0
    dots: int = 0
    fours: int = 0
    sixes: int = 0
    strike_rate: float = 0.0
    is_dismissed: bool = False
    dismissal_type: Optional[str] = None
    bowler: Optional[str] = None
    fielder: Optional[str] = None

    def recompute(self) -> None:
        self.strike_rate = (self.runs / self.balls) * 100 if self.balls > 0 else 0.0

    def to_snapshot(self) -> dict:
        return {
            "name": self.name,
            "runs": self.runs,
            "balls": self.balls,
            "dots": self.dots,
            "fours": self.fours,
            "sixes": self.sixes,
            "strikeRate": round(self.strike_rate, 2),
            "isDismissed": self.is_dismissed,
            "dismissalType": self.dismissal_type,
            "bowlerOut": self.bowler,
            "fielderOut": self.fielder,
        }


class BattingLedger:
    """Ordered name -> BattingRecord map for one innings."""

    def __init__(self):
        self._records: Dict[str, BattingRecord] = {}

    def credit(self, name: str, runs: int = 0, counts_as_ball: bool = True,
               is_dot: bool = False, dismissal_type: Optional[str] = None,
               bowler: Optional[str] = None,
               fielder: Optional[str] = None) -> Optional[BattingRecord]:
        """
        Upsert *name* and apply one delivery's worth of figures.

        Runs of exactly 4 or 6 count as boundaries.  A dismissal marks the
        record out; repeating it leaves the first dismissal in place.
        """
        key = (name or "").strip()
        if not key:
            return None

        record = self._records.get(key)
        if record is None:
            record = BattingRecord(name=key)
            self._records[key] = record

        record.runs += runs
        if counts_as_ball:
            record.balls += 1
        if is_dot:
            record.dots += 1
        if runs == 4:
            record.fours += 1
        elif runs == 6:
            record.sixes += 1
        record.recompute()

        if dismissal_type and not record.is_dismissed:
            record.is_dismissed = True
            record.dismissal_type = dismissal_type
            record.bowler = bowler
            record.fielder = fielder
        return record

    def register(self, name: str) -> Optional[BattingRecord]:
        """Zero-stat entry for a batter walking in."""
        return self.credit(name, 0, counts_as_ball=False, is_dot=False)

    # ------------------------------------------------------------------ #

    def get(self, name: str) -> Optional[BattingRecord]:
        return self._records.get((name or "").strip())

    def __contains__(self, name) -> bool:
        return (name or "").strip() in self._records

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> List[BattingRecord]:
        return list(self._records.values())

    def total_runs(self) -> int:
        return sum(r.runs for r in self._records.values())

    def to_list(self) -> List[dict]:
        return [r.to_snapshot() for r in self._records.values()]

    def to_dict(self) -> List[dict]:
        return [asdict(r) for r in self._records.values()]

    @classmethod
    def from_dict(cls, rows: List[dict]) -> "BattingLedger":
        ledger = cls()
        for row in rows or []:
            record = BattingRecord(**row)
            ledger._records[record.name] = record
        return ledger
