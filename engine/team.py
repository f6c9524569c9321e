# ── engine/team.py ──

from typing import Iterable, List, Optional

TEAM_KEYS = ("team1", "team2")


def _other(team_key):
    return "team2" if team_key == "team1" else "team1"


class RosterPlayer:
    def __init__(self, name, team, player_id=None, role=None):
        self.name = (name or "").strip()
        self.team = team
        self.player_id = player_id
        self.role = role

    def to_dict(self):
        return {
            "name": self.name,
            "team": self.team,
            "id": self.player_id,
            "role": self.role,
        }

    @staticmethod
    def from_dict(data):
        return RosterPlayer(
            name=data.get("name") or data.get("playerName"),
            team=data.get("team", "team1"),
            player_id=data.get("id") or data.get("playerId"),
            role=data.get("role"),
        )


class MatchRosters:
    """
    Both playing squads of a match, plus which side bats first.

    Rosters are supplied by the team-management side of the app; the scoring
    core only asks "who may bat?" and "who is fielding?".  A side that was
    created without any players gets generated placeholder names so a friendly
    match can still be scored.
    """

    def __init__(self, team1_name, team2_name, players: Iterable = (), batting_first="team1"):
        if batting_first not in TEAM_KEYS:
            raise ValueError(f"batting_first must be one of {TEAM_KEYS}, got {batting_first!r}")
        self.team1_name = team1_name or "Team A"
        self.team2_name = team2_name or "Team B"
        self.batting_first = batting_first
        self.players: List[RosterPlayer] = []
        for p in players:
            player = p if isinstance(p, RosterPlayer) else RosterPlayer.from_dict(p)
            if player.name:
                self.players.append(player)

    # -- sides ------------------------------------------------------------

    def batting_team_key(self, innings):
        return self.batting_first if innings == 1 else _other(self.batting_first)

    def fielding_team_key(self, innings):
        return _other(self.batting_team_key(innings))

    def team_name(self, team_key):
        return self.team1_name if team_key == "team1" else self.team2_name

    # -- rosters ----------------------------------------------------------

    def squad(self, team_key) -> List[RosterPlayer]:
        squad = [p for p in self.players if p.team == team_key]
        return squad

    def batting_roster(self, innings, dismissed=(), at_crease=()) -> List[str]:
        """Names that may still walk in: not dismissed and not already batting."""
        team_key = self.batting_team_key(innings)
        names = [p.name for p in self.squad(team_key)]
        if not names:
            team = self.team_name(team_key)
            names = [f"{team} Batsman {i}" for i in range(1, 12)]
        excluded = {(n or "").strip() for n in dismissed} | {(n or "").strip() for n in at_crease}
        return [n for n in names if n not in excluded]

    def fielding_roster(self, innings) -> List[str]:
        team_key = self.fielding_team_key(innings)
        names = [p.name for p in self.squad(team_key)]
        if not names:
            team = self.team_name(team_key)
            names = [f"{team} Bowler {i}" for i in range(1, 7)]
        return names

    def is_batting_side(self, innings, name) -> bool:
        name = (name or "").strip()
        return bool(name) and name in self.batting_roster(innings)

    def is_fielding_side(self, innings, name) -> bool:
        name = (name or "").strip()
        return bool(name) and name in self.fielding_roster(innings)

    def all_players(self) -> List[str]:
        return self.batting_roster(1) + self.fielding_roster(1)

    def find_player_id(self, name) -> Optional[str]:
        """Roster id for *name*; the name itself when the player has no id."""
        name = (name or "").strip()
        for p in self.players:
            if p.name == name and p.player_id is not None:
                return str(p.player_id)
        return name

    # -- serialisation ----------------------------------------------------

    def to_dict(self):
        return {
            "team1_name": self.team1_name,
            "team2_name": self.team2_name,
            "batting_first": self.batting_first,
            "players": [p.to_dict() for p in self.players],
        }

    @staticmethod
    def from_dict(data):
        return MatchRosters(
            team1_name=data.get("team1_name"),
            team2_name=data.get("team2_name"),
            players=data.get("players", []),
            batting_first=data.get("batting_first", "team1"),
        )
