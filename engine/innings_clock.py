"""
engine/innings_clock.py
=======================

Over/ball bookkeeping for one match.

Two views of "how far into the innings are we" are kept:

* a cumulative legal-ball counter per innings (drives the overs-limit check
  and the "5.3" overs display), and
* the shared current_over / current_ball pair (drives over-boundary
  detection and the last-ball strike rule).

Both are only ever moved by advance_ball(), so they cannot drift apart.
"""

import logging
from typing import Dict

from engine.errors import InvariantViolation
from engine.format_config import FormatConfig

logger = logging.getLogger(__name__)


def format_overs(legal_balls: int, balls_per_over: int = 6) -> str:
    """Format a legal-ball count as "<complete overs>.<balls in over>"."""
    return f"{legal_balls // balls_per_over}.{legal_balls % balls_per_over}"


def overs_to_balls(overs, balls_per_over: int = 6) -> int:
    """Inverse of format_overs: "5.3" -> 33."""
    value = str(overs)
    if "." in value:
        whole, balls = value.split(".", 1)
        return int(whole or 0) * balls_per_over + int(balls or 0)
    return int(value or 0) * balls_per_over


class InningsClock:
    """Per-innings counters plus the shared over/ball position."""

    def __init__(self, fmt: FormatConfig):
        self.fmt = fmt
        self.current_inning = 1
        self.current_over = 0
        self.current_ball = 0
        self.balls: Dict[int, int] = {1: 0, 2: 0}
        self.runs: Dict[int, int] = {1: 0, 2: 0}
        self.wickets: Dict[int, int] = {1: 0, 2: 0}

    # ------------------------------------------------------------------ #
    # Mutation                                                             #
    # ------------------------------------------------------------------ #

    def advance_ball(self, is_legal: bool) -> bool:
        """
        Move the clock forward by one delivery.

        Returns True when this delivery completed an over.  Wides and
        no-balls (is_legal=False) leave every counter untouched.
        """
        if not is_legal:
            return False

        self.balls[self.current_inning] += 1
        if self.current_ball == self.fmt.balls_per_over - 1:
            self.current_ball = 0
            self.current_over += 1
            logger.debug("InningsClock: over %d complete (innings %d)",
                         self.current_over, self.current_inning)
            return True

        self.current_ball += 1
        return False

    def add_runs(self, runs: int) -> None:
        self.runs[self.current_inning] += runs

    def add_wicket(self) -> None:
        self.wickets[self.current_inning] += 1

    def start_innings(self, inning: int) -> None:
        """Switch to *inning* and reset the shared over/ball pair."""
        self.current_inning = inning
        self.current_over = 0
        self.current_ball = 0

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    @property
    def target(self) -> int:
        return self.runs[1] + 1

    @property
    def is_last_ball_of_over(self) -> bool:
        return self.current_ball == self.fmt.balls_per_over - 1

    def legal_balls(self, inning: int = None) -> int:
        return self.balls[inning or self.current_inning]

    def overs_display(self, inning: int = None) -> str:
        return format_overs(self.legal_balls(inning), self.fmt.balls_per_over)

    def overs_exhausted(self) -> bool:
        return self.legal_balls() >= self.fmt.legal_balls_limit

    def all_out(self) -> bool:
        return self.wickets[self.current_inning] >= self.fmt.max_wickets

    def target_reached(self) -> bool:
        return self.current_inning == 2 and self.runs[2] >= self.target

    def is_innings_over(self) -> bool:
        # Target first: a chase ends on the winning run, not at the end of the over.
        if self.target_reached():
            return True
        return self.overs_exhausted() or self.all_out()

    def score(self, inning: int) -> dict:
        return {
            "runs": self.runs[inning],
            "wickets": self.wickets[inning],
            "overs": self.overs_display(inning),
        }

    def check_invariants(self) -> None:
        bpo = self.fmt.balls_per_over
        if not 0 <= self.current_ball < bpo:
            raise InvariantViolation(
                f"current_ball out of range: {self.current_ball}")
        expected = self.current_over * bpo + self.current_ball
        if expected != self.legal_balls():
            raise InvariantViolation(
                f"ball counters drifted: over/ball gives {expected}, "
                f"innings {self.current_inning} has {self.legal_balls()} legal balls")

    # ------------------------------------------------------------------ #
    # Serialisation                                                        #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict:
        return {
            "current_inning": self.current_inning,
            "current_over": self.current_over,
            "current_ball": self.current_ball,
            "balls": dict(self.balls),
            "runs": dict(self.runs),
            "wickets": dict(self.wickets),
        }

    @classmethod
    def from_dict(cls, fmt: FormatConfig, data: dict) -> "InningsClock":
        clock = cls(fmt)
        clock.current_inning = int(data.get("current_inning", 1))
        clock.current_over = int(data.get("current_over", 0))
        clock.current_ball = int(data.get("current_ball", 0))
        # JSON round-trips turn int keys into strings.
        for attr in ("balls", "runs", "wickets"):
            raw = data.get(attr) or {}
            setattr(clock, attr, {1: int(raw.get(1, raw.get("1", 0))),
                                  2: int(raw.get(2, raw.get("2", 0)))})
        return clock
