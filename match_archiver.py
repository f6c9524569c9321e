import os
import json
import logging
from datetime import datetime
from tabulate import tabulate
from typing import Any, Dict, Optional

from database import db
from database.models import Match, MatchScorecard, Player

logger = logging.getLogger(__name__)


def _player_pk(player_id) -> Optional[int]:
    """Roster ids from the database are integers; fallback names are not."""
    value = str(player_id or "")
    return int(value) if value.isdigit() else None


class MatchArchiver:
    """
    Durable side of a scored match.

    Checkpoints (the serialised scoring session) are written at innings end
    and match end only.  The completion write is idempotent: once a match is
    processed, later calls report "already processed" and touch nothing.
    """

    def __init__(self, archive_dir: str = "data/archives", text_archive_enabled: bool = False):
        self.archive_dir = archive_dir
        self.text_archive_enabled = text_archive_enabled

    # ------------------------------------------------------------------ #
    # Checkpoints                                                          #
    # ------------------------------------------------------------------ #

    def save_checkpoint(self, match_id: str, state: Dict[str, Any]) -> bool:
        match = db.session.get(Match, match_id)
        if match is None:
            logger.warning(f"[Archive] checkpoint for unknown match {match_id}")
            return False
        try:
            match.checkpoint_json = json.dumps(state)
            match.checkpoint_at = datetime.utcnow()
            if not match.processed:
                match.status = "completed" if state.get("completed") else "live"
            db.session.commit()
            logger.info(f"[Archive] checkpoint saved for match {match_id}")
            return True
        except Exception as e:
            db.session.rollback()
            logger.error(f"[Archive] checkpoint failed for match {match_id}: {e}", exc_info=True)
            return False

    def load_checkpoint(self, match_id: str) -> Optional[Dict[str, Any]]:
        match = db.session.get(Match, match_id)
        if match is None or not match.checkpoint_json:
            return None
        try:
            return json.loads(match.checkpoint_json)
        except ValueError as e:
            logger.error(f"[Archive] corrupt checkpoint for match {match_id}: {e}")
            return None

    # ------------------------------------------------------------------ #
    # Completion                                                           #
    # ------------------------------------------------------------------ #

    def record_completion(self, match_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Write result, scorecard rows and the processed flag in one transaction."""
        match = db.session.get(Match, match_id)
        if match is None:
            raise LookupError(f"Match {match_id} not found")

        # Claim the row in the database; the loaded object may be stale when
        # another request or worker completed the match after it was read.
        claimed = Match.query.filter_by(id=match_id, processed=False).update(
            {"processed": True}, synchronize_session=False
        )
        if claimed != 1:
            db.session.rollback()
            db.session.refresh(match)
            logger.info(f"[Archive] match {match_id} already processed, skipping")
            return {
                "alreadyProcessed": True,
                "message": "Match already completed",
                "matchId": match_id,
                "resultDescription": match.result_description,
            }

        summary = payload.get("resultSummary") or {}
        try:
            match.result_description = summary.get("description")
            match.margin_type = summary.get("resultType")
            match.margin_value = summary.get("marginRuns", summary.get("marginWickets"))
            match.winner_team_key = summary.get("winnerId")
            if match.winner_team_key:
                match.winner_team_id = getattr(match, f"{match.winner_team_key}_id", None)

            for team_key in ("team1", "team2"):
                innings = payload.get(f"{team_key}Innings")
                if not innings:
                    continue
                setattr(match, f"{team_key}_score", innings["totalRuns"])
                setattr(match, f"{team_key}_wickets", innings["totalWickets"])
                setattr(match, f"{team_key}_overs", innings["totalOvers"])
                self._add_scorecard_rows(match, team_key, innings)

            motm = (payload.get("awards") or {}).get("manOfTheMatch")
            if motm:
                match.man_of_the_match = motm.get("playerName")

            match.completion_json = json.dumps(payload)
            match.status = "completed"
            match.processed = True
            match.completed_at = datetime.utcnow()
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.error(f"[Archive] completion write failed for match {match_id}", exc_info=True)
            raise

        logger.info(f"[Archive] match {match_id} completed: {match.result_description}")
        if self.text_archive_enabled:
            self.write_text_archive(payload)
        return {
            "alreadyProcessed": False,
            "message": "Match completed",
            "matchId": match_id,
            "resultDescription": match.result_description,
        }

    def _add_scorecard_rows(self, match, team_key, innings):
        fielding_key = "team2" if team_key == "team1" else "team1"
        inn_no = innings["inningsNumber"]

        for position, b in enumerate(innings["batsmen"], 1):
            pk = _player_pk(b["playerId"])
            db.session.add(MatchScorecard(
                match_id=match.id,
                player_id=pk,
                player_name=b["playerName"],
                team_key=team_key,
                innings_number=inn_no,
                record_type="batting",
                position=position,
                runs=b["runsScored"],
                balls=b["ballsFaced"],
                fours=b["fours"],
                sixes=b["sixes"],
                strike_rate=b["strikeRate"],
                is_out=b["dismissalType"] != "not-out",
                wicket_type=None if b["dismissalType"] == "not-out" else b["dismissalType"],
                wicket_taker_name=b.get("bowlerOut"),
                fielder_name=b.get("fielderOut"),
            ))
            self._bump_batting_aggregates(pk, b)

        for position, b in enumerate(innings["bowlers"], 1):
            pk = _player_pk(b["playerId"])
            db.session.add(MatchScorecard(
                match_id=match.id,
                player_id=pk,
                player_name=b["playerName"],
                team_key=fielding_key,
                innings_number=inn_no,
                record_type="bowling",
                position=position,
                overs=b["overs"],
                runs_conceded=b["runsGiven"],
                wickets=b["wickets"],
                maidens=b["maidens"],
                economy=b["economy"],
                wides=b["wides"],
                noballs=b["noBalls"],
            ))
            self._bump_bowling_aggregates(pk, b)

    def _bump_batting_aggregates(self, pk, row):
        player = db.session.get(Player, pk) if pk else None
        if player is None:
            return
        player.matches_played = (player.matches_played or 0) + 1
        player.total_runs = (player.total_runs or 0) + row["runsScored"]
        player.total_balls_faced = (player.total_balls_faced or 0) + row["ballsFaced"]

    def _bump_bowling_aggregates(self, pk, row):
        player = db.session.get(Player, pk) if pk else None
        if player is None:
            return
        player.total_wickets = (player.total_wickets or 0) + row["wickets"]
        player.total_runs_conceded = (player.total_runs_conceded or 0) + row["runsGiven"]

    # ------------------------------------------------------------------ #
    # Text scorecard                                                       #
    # ------------------------------------------------------------------ #

    def render_scorecard(self, payload: Dict[str, Any]) -> str:
        """Format the completion payload as a plain-text scorecard using tabulate"""
        output = []
        output.append("=" * 80)
        output.append(f"{payload.get('team1Name', 'Team 1')} vs {payload.get('team2Name', 'Team 2')}")
        output.append(f"Match ID: {payload.get('matchId')}")
        output.append("=" * 80)

        innings_list = [payload.get("team1Innings"), payload.get("team2Innings")]
        innings_list = sorted([i for i in innings_list if i], key=lambda i: i["inningsNumber"])
        for innings in innings_list:
            label = "1ST" if innings["inningsNumber"] == 1 else "2ND"
            output.append(f"\n{label} INNINGS - {innings.get('battingTeamName', '')} BATTING")
            output.append("-" * 50)
            output.append(self._create_batting_table(innings["batsmen"]))
            output.append(self._format_extras(innings.get("extras") or {}))
            output.append(
                f"Total: {innings['totalRuns']}/{innings['totalWickets']} "
                f"({innings['totalOvers']} overs, RR {innings['runRate']:.2f})"
            )
            output.append(f"\n{label} INNINGS - BOWLING")
            output.append("-" * 50)
            output.append(self._create_bowling_table(innings["bowlers"]))

        summary = payload.get("resultSummary") or {}
        if summary.get("description"):
            output.append(f"\nMATCH RESULT: {summary['description']}")
        motm = (payload.get("awards") or {}).get("manOfTheMatch")
        if motm:
            output.append(f"MAN OF THE MATCH: {motm.get('playerName')}")
        return "\n".join(output)

    def _format_extras(self, extras: Dict[str, int]) -> str:
        total = sum(extras.values())
        return (f"Extras: {total} (w {extras.get('wides', 0)}, nb {extras.get('noBalls', 0)}, "
                f"b {extras.get('byes', 0)}, lb {extras.get('legByes', 0)})")

    def _create_batting_table(self, batsmen) -> str:
        """Create batting scorecard table"""
        headers = ['Batter', 'Status', 'Runs', 'Balls', '4s', '6s', 'S/R']
        rows = []
        for b in batsmen:
            status = b["dismissalType"]
            if status != "not-out":
                if b.get("bowlerOut"):
                    status += f" b {b['bowlerOut']}"
                if b.get("fielderOut"):
                    status += f" ({b['fielderOut']})"
            rows.append([
                b["playerName"],
                status,
                b["runsScored"],
                b["ballsFaced"],
                b["fours"],
                b["sixes"],
                f"{b['strikeRate']:.2f}",
            ])
        if not rows:
            rows.append(["No batting data available", "-", "-", "-", "-", "-", "-"])
        return tabulate(rows, headers=headers, tablefmt="grid")

    def _create_bowling_table(self, bowlers) -> str:
        """Create bowling scorecard table"""
        headers = ['Bowler', 'Overs', 'Maidens', 'Runs', 'Wickets', 'Economy', 'Wides', 'No Balls']
        rows = []
        for b in bowlers:
            rows.append([
                b["playerName"],
                b["overs"],
                b["maidens"],
                b["runsGiven"],
                b["wickets"],
                f"{b['economy']:.2f}",
                b["wides"],
                b["noBalls"],
            ])
        return tabulate(rows, headers=headers, tablefmt="grid")

    def write_text_archive(self, payload: Dict[str, Any]) -> Optional[str]:
        """Write the text scorecard to <archive_dir>/<match_id>.txt"""
        try:
            os.makedirs(self.archive_dir, exist_ok=True)
            path = os.path.join(self.archive_dir, f"{payload.get('matchId')}.txt")
            with open(path, "w", encoding="utf-8") as f:
                f.write(self.render_scorecard(payload))
            logger.info(f"[Archive] text scorecard written to {path}")
            return path
        except OSError as e:
            logger.error(f"[Archive] could not write text scorecard: {e}", exc_info=True)
            return None
