from datetime import datetime
from flask_login import UserMixin
from sqlalchemy.orm import relationship, synonym
from database import db
import uuid

class User(UserMixin, db.Model):
    """Scorer / organizer account (id is the email address)"""
    __tablename__ = 'users'

    id = db.Column(db.String(120), primary_key=True)
    email = synonym('id')
    stable_id = db.Column(db.String(36), unique=True, default=lambda: str(uuid.uuid4()))
    password_hash = db.Column(db.String(200))
    display_name = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_login = db.Column(db.DateTime)

    teams = relationship('Team', backref='owner', lazy=True, cascade="all, delete-orphan")
    matches = relationship('Match', backref='organizer', lazy=True, cascade="all, delete-orphan")

class Team(db.Model):
    """Saved squad owned by an organizer"""
    __tablename__ = 'teams'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(120), db.ForeignKey('users.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    short_code = db.Column(db.String(10), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'short_code', name='uq_team_user_short_code'),
    )

    players = relationship('Player', backref='team', lazy=True, cascade="all, delete-orphan")

class Player(db.Model):
    """Rostered player"""
    __tablename__ = 'players'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    role = db.Column(db.String(50))  # Batsman, Bowler, All-rounder, Wicketkeeper

    # Career aggregates, updated once per completed match
    matches_played = db.Column(db.Integer, default=0)
    total_runs = db.Column(db.Integer, default=0)
    total_balls_faced = db.Column(db.Integer, default=0)
    total_wickets = db.Column(db.Integer, default=0)
    total_runs_conceded = db.Column(db.Integer, default=0)

    scorecard_entries = relationship('MatchScorecard', backref='player_ref', passive_deletes=True)

class Match(db.Model):
    """Scored match: setup, last checkpoint and (once completed) the result"""
    __tablename__ = 'matches'

    id = db.Column(db.String(36), primary_key=True)  # UUID
    user_id = db.Column(db.String(120), db.ForeignKey('users.id'), nullable=False, index=True)

    # Teams are optional: friendly matches can be scored with names only
    team1_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=True, index=True)
    team2_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=True, index=True)
    team1_name = db.Column(db.String(100), nullable=False)
    team2_name = db.Column(db.String(100), nullable=False)
    batting_first = db.Column(db.String(10), default='team1')  # 'team1' or 'team2'
    roster_json = db.Column(db.Text, nullable=True)  # MatchRosters.to_dict()

    # Match Format
    match_format = db.Column(db.String(20), default='T20')
    overs_per_side = db.Column(db.Integer, default=20)

    status = db.Column(db.String(20), default='scheduled', index=True)  # scheduled, live, completed
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Crash recovery: serialised scoring session at the last innings/match end
    checkpoint_json = db.Column(db.Text, nullable=True)
    checkpoint_at = db.Column(db.DateTime, nullable=True)

    # Result (written once, by MatchArchiver.record_completion)
    winner_team_key = db.Column(db.String(10), nullable=True)
    winner_team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=True)
    result_description = db.Column(db.String(200))  # e.g., "Strikers won by 4 wickets"
    margin_type = db.Column(db.String(20))  # won-by-runs, won-by-wickets, tied
    margin_value = db.Column(db.Integer)

    team1_score = db.Column(db.Integer)
    team1_wickets = db.Column(db.Integer)
    team1_overs = db.Column(db.String(10))
    team2_score = db.Column(db.Integer)
    team2_wickets = db.Column(db.Integer)
    team2_overs = db.Column(db.String(10))

    man_of_the_match = db.Column(db.String(100))
    completion_json = db.Column(db.Text, nullable=True)
    processed = db.Column(db.Boolean, default=False, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    # Relationships
    scorecards = relationship('MatchScorecard', backref='match', cascade="all, delete-orphan")
    team1 = relationship('Team', foreign_keys=[team1_id])
    team2 = relationship('Team', foreign_keys=[team2_id])

class MatchScorecard(db.Model):
    """One player's batting or bowling figures in one innings of a match"""
    __tablename__ = 'match_scorecards'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.String(36), db.ForeignKey('matches.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('players.id', ondelete='SET NULL'), nullable=True, index=True)
    player_name = db.Column(db.String(100), nullable=False)
    team_key = db.Column(db.String(10), nullable=False)  # team the record counts for
    innings_number = db.Column(db.Integer, default=1, nullable=False)
    record_type = db.Column(db.String(20), default="batting", nullable=False)
    position = db.Column(db.Integer, nullable=True)

    # Batting
    runs = db.Column(db.Integer, default=0)
    balls = db.Column(db.Integer, default=0)
    fours = db.Column(db.Integer, default=0)
    sixes = db.Column(db.Integer, default=0)
    strike_rate = db.Column(db.Float, default=0.0)
    is_out = db.Column(db.Boolean, default=False)
    wicket_type = db.Column(db.String(50), nullable=True)
    wicket_taker_name = db.Column(db.String(100), nullable=True)
    fielder_name = db.Column(db.String(100), nullable=True)

    # Bowling
    overs = db.Column(db.String(10), default='0.0')
    runs_conceded = db.Column(db.Integer, default=0)
    wickets = db.Column(db.Integer, default=0)
    maidens = db.Column(db.Integer, default=0)
    economy = db.Column(db.Float, default=0.0)
    wides = db.Column(db.Integer, default=0)
    noballs = db.Column(db.Integer, default=0)

    __table_args__ = (
        db.Index('ix_scorecard_match_innings', 'match_id', 'innings_number'),
    )
