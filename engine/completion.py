"""
engine/completion.py
====================

Innings snapshots, match result and the final scorecard payload.

MatchCompletionResolver keeps one frozen InningsSnapshot per innings number
(re-capturing an innings replaces its snapshot) and decides the result once
the second innings ends.  build_completion_payload() turns a finished
MatchScoringSession into the write-once document stored by MatchArchiver.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

RESULT_WON_BY_RUNS = "won-by-runs"
RESULT_WON_BY_WICKETS = "won-by-wickets"
RESULT_TIED = "tied"


def _plural(count, word):
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


@dataclass(frozen=True)
class InningsSnapshot:
    inning: int
    batting_team_key: str
    batting_team_name: str
    runs: int
    wickets: int
    overs: str
    balls: int
    batsmen: Tuple[dict, ...] = ()
    bowlers: Tuple[dict, ...] = ()
    ball_by_ball: Tuple[str, ...] = ()
    extras: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "inningNumber": self.inning,
            "battingTeamKey": self.batting_team_key,
            "battingTeamName": self.batting_team_name,
            "finalScore": {
                "runs": self.runs,
                "wickets": self.wickets,
                "overs": self.overs,
                "balls": self.balls,
            },
            "batsmen": [dict(b) for b in self.batsmen],
            "bowlers": [dict(b) for b in self.bowlers],
            "ballByBall": list(self.ball_by_ball),
            "extras": dict(self.extras),
        }

    @staticmethod
    def from_dict(data: dict) -> "InningsSnapshot":
        score = data.get("finalScore", {})
        return InningsSnapshot(
            inning=int(data["inningNumber"]),
            batting_team_key=data.get("battingTeamKey", "team1"),
            batting_team_name=data.get("battingTeamName", ""),
            runs=int(score.get("runs", 0)),
            wickets=int(score.get("wickets", 0)),
            overs=score.get("overs", "0.0"),
            balls=int(score.get("balls", 0)),
            batsmen=tuple(data.get("batsmen", [])),
            bowlers=tuple(data.get("bowlers", [])),
            ball_by_ball=tuple(data.get("ballByBall", [])),
            extras=dict(data.get("extras", {})),
        )


@dataclass
class MatchResult:
    result_type: str
    description: str
    winner_key: Optional[str] = None
    margin_runs: Optional[int] = None
    margin_wickets: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "resultType": self.result_type,
            "description": self.description,
            "winnerKey": self.winner_key,
            "marginRuns": self.margin_runs,
            "marginWickets": self.margin_wickets,
        }

    @staticmethod
    def from_dict(data):
        if not data:
            return None
        return MatchResult(
            result_type=data["resultType"],
            description=data.get("description", ""),
            winner_key=data.get("winnerKey"),
            margin_runs=data.get("marginRuns"),
            margin_wickets=data.get("marginWickets"),
        )


class MatchCompletionResolver:
    """Holds innings snapshots and decides the match result."""

    def __init__(self, max_wickets=10):
        self.max_wickets = max_wickets
        self._snapshots: List[InningsSnapshot] = []

    def capture_innings(self, snapshot: InningsSnapshot) -> None:
        self._snapshots = [s for s in self._snapshots if s.inning != snapshot.inning]
        self._snapshots.append(snapshot)
        self._snapshots.sort(key=lambda s: s.inning)
        logger.debug("Captured innings %d: %d/%d (%s ov)",
                     snapshot.inning, snapshot.runs, snapshot.wickets, snapshot.overs)

    def get(self, inning) -> Optional[InningsSnapshot]:
        for snapshot in self._snapshots:
            if snapshot.inning == inning:
                return snapshot
        return None

    @property
    def snapshots(self) -> List[InningsSnapshot]:
        return list(self._snapshots)

    def decide_result(self, clock, rosters) -> MatchResult:
        """
        Result of a finished match.

        A successful chase wins by the wickets in hand; level scores are a
        tie; otherwise the side batting first wins by the run difference.
        """
        first_runs, second_runs = clock.runs[1], clock.runs[2]
        first_key = rosters.batting_team_key(1)
        second_key = rosters.batting_team_key(2)

        if second_runs >= first_runs + 1:
            margin = self.max_wickets - clock.wickets[2]
            name = rosters.team_name(second_key)
            return MatchResult(
                result_type=RESULT_WON_BY_WICKETS,
                description=f"{name} won by {_plural(margin, 'wicket')}",
                winner_key=second_key,
                margin_wickets=margin,
            )

        if first_runs == second_runs:
            return MatchResult(result_type=RESULT_TIED, description="Match tied")

        margin = abs(first_runs - second_runs)
        name = rosters.team_name(first_key)
        return MatchResult(
            result_type=RESULT_WON_BY_RUNS,
            description=f"{name} won by {_plural(margin, 'run')}",
            winner_key=first_key,
            margin_runs=margin,
        )

    def to_dict(self) -> list:
        return [s.to_dict() for s in self._snapshots]

    @classmethod
    def from_dict(cls, data, max_wickets=10) -> "MatchCompletionResolver":
        resolver = cls(max_wickets=max_wickets)
        for row in data or []:
            resolver.capture_innings(InningsSnapshot.from_dict(row))
        return resolver


# ---------------------------------------------------------------------------
# Completion payload
# ---------------------------------------------------------------------------

def _run_rate(runs, balls, balls_per_over=6):
    if balls <= 0:
        return 0.0
    return round(runs / (balls / balls_per_over), 2)


def _innings_payload(snapshot: InningsSnapshot, rosters, balls_per_over=6) -> dict:
    batsmen = []
    for b in snapshot.batsmen:
        batsmen.append({
            "playerId": rosters.find_player_id(b["name"]),
            "playerName": b["name"],
            "runsScored": b["runs"],
            "ballsFaced": b["balls"],
            "fours": b["fours"],
            "sixes": b["sixes"],
            "strikeRate": b["strikeRate"],
            "dismissalType": b["dismissalType"] if b["isDismissed"] else "not-out",
            "bowlerOut": b.get("bowlerOut"),
            "fielderOut": b.get("fielderOut"),
        })

    bowlers = []
    for b in snapshot.bowlers:
        bowlers.append({
            "playerId": rosters.find_player_id(b["name"]),
            "playerName": b["name"],
            "overs": b["oversBowled"],
            "maidens": b["maidenOvers"],
            "runsGiven": b["runsConceded"],
            "wickets": b["wickets"],
            "economy": b["economyRate"],
            "wides": b["wides"],
            "noBalls": b["noBalls"],
        })

    return {
        "inningsNumber": snapshot.inning,
        "battingTeamId": snapshot.batting_team_key,
        "battingTeamName": snapshot.batting_team_name,
        "totalRuns": snapshot.runs,
        "totalWickets": snapshot.wickets,
        "totalOvers": snapshot.overs,
        "runRate": _run_rate(snapshot.runs, snapshot.balls, balls_per_over),
        "extras": dict(snapshot.extras),
        "batsmen": batsmen,
        "bowlers": bowlers,
    }


def build_completion_payload(session) -> dict:
    """Scorecard grouped by team, result summary and awards."""
    rosters = session.rosters
    bpo = session.fmt.balls_per_over
    payload = {
        "matchId": session.match_id,
        "team1Name": rosters.team1_name,
        "team2Name": rosters.team2_name,
        "team1Innings": None,
        "team2Innings": None,
    }
    for snapshot in session.resolver.snapshots:
        payload[f"{snapshot.batting_team_key}Innings"] = _innings_payload(snapshot, rosters, bpo)

    result = session.result
    summary = {}
    if result is not None:
        summary["resultType"] = result.result_type
        summary["description"] = result.description
        if result.winner_key:
            summary["winnerId"] = result.winner_key
        if result.margin_runs is not None:
            summary["marginRuns"] = result.margin_runs
        if result.margin_wickets is not None:
            summary["marginWickets"] = result.margin_wickets
    payload["resultSummary"] = summary

    if session.man_of_the_match:
        payload["awards"] = {
            "manOfTheMatch": {
                "playerId": rosters.find_player_id(session.man_of_the_match),
                "playerName": session.man_of_the_match,
            }
        }
    return payload
