"""
engine/bowling_ledger.py
========================

Per-bowler figures, partitioned by innings number.

Each innings gets its own name -> BowlingRecord map, so a player who bowls
in both innings (unusual, but scorers do mis-click) simply gets two
independent records.
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from engine.innings_clock import format_overs


@dataclass
class BowlingRecord:
    name: str
    legal_balls: int = 0
    total_balls: int = 0
    runs_conceded: int = 0
    wickets: int = 0
    maidens: int = 0
    wides: int = 0
    no_balls: int = 0
    balls_per_over: int = field(default=6, repr=False)

    @property
    def economy_rate(self) -> float:
        if self.legal_balls <= 0:
            return 0.0
        return self.runs_conceded / (self.legal_balls / self.balls_per_over)

    @property
    def overs_display(self) -> str:
        return format_overs(self.legal_balls, self.balls_per_over)

    @property
    def bowling_average(self) -> float:
        return self.runs_conceded / self.wickets if self.wickets > 0 else 0.0

    def to_snapshot(self) -> dict:
        return {
            "name": self.name,
            "balls": self.legal_balls,
            "totalBalls": self.total_balls,
            "oversBowled": self.overs_display,
            "runsConceded": self.runs_conceded,
            "wickets": self.wickets,
            "maidenOvers": self.maidens,
            "wides": self.wides,
            "noBalls": self.no_balls,
            "economyRate": round(self.economy_rate, 2),
            "bowlingAverage": round(self.bowling_average, 2),
        }


class BowlingLedger:
    """innings number -> (bowler name -> BowlingRecord)."""

    def __init__(self, balls_per_over: int = 6):
        self.balls_per_over = balls_per_over
        self._innings: Dict[int, Dict[str, BowlingRecord]] = {}

    def credit(self, innings: int, name: str, runs_conceded: int,
               is_wicket: bool = False, counts_as_ball: bool = True,
               extra_type: Optional[str] = None) -> Optional[BowlingRecord]:
        key = (name or "").strip()
        if not key:
            return None

        records = self._innings.setdefault(innings, {})
        record = records.get(key)
        if record is None:
            record = BowlingRecord(name=key, balls_per_over=self.balls_per_over)
            records[key] = record

        record.runs_conceded += runs_conceded
        record.total_balls += 1
        if counts_as_ball:
            record.legal_balls += 1
        if is_wicket:
            record.wickets += 1
        if extra_type == "wide":
            record.wides += 1
        elif extra_type == "no-ball":
            record.no_balls += 1
        return record

    def record_maiden(self, innings: int, name: str) -> None:
        record = self.get(innings, name)
        if record is not None:
            record.maidens += 1

    # ------------------------------------------------------------------ #

    def get(self, innings: int, name: str) -> Optional[BowlingRecord]:
        return self._innings.get(innings, {}).get((name or "").strip())

    def records(self, innings: int) -> List[BowlingRecord]:
        return list(self._innings.get(innings, {}).values())

    def to_list(self, innings: int) -> List[dict]:
        return [r.to_snapshot() for r in self.records(innings)]

    def to_dict(self) -> Dict[str, List[dict]]:
        return {
            str(inn): [asdict(r) for r in records.values()]
            for inn, records in self._innings.items()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, List[dict]], balls_per_over: int = 6) -> "BowlingLedger":
        ledger = cls(balls_per_over)
        for inn, rows in (data or {}).items():
            ledger._innings[int(inn)] = {
                row["name"]: BowlingRecord(**{**row, "balls_per_over": balls_per_over}) for row in rows
            }
        return ledger
