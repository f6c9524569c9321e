"""
Pytest fixtures for Scorebook testing.
Provides reusable fixtures for the app, database, clients and scoring sessions.
"""

import os
import sys
from datetime import datetime, timezone

import pytest
import yaml
from werkzeug.security import generate_password_hash

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Enforce test-safe startup before importing app module.
os.environ.setdefault("SCOREBOOK_TEST_MODE", "1")
os.environ.setdefault("SCOREBOOK_SKIP_GLOBAL_APP", "1")

import app as app_module
from app import create_app, db
from database.models import User
from engine.format_config import get_format
from engine.match import MatchScoringSession
from engine.team import MatchRosters


TEAM1_PLAYERS = [f"S{i}" for i in range(1, 12)]
TEAM2_PLAYERS = [f"B{i}" for i in range(1, 7)] + [f"F{i}" for i in range(1, 6)]


# ==================== Scoring Fixtures ====================

@pytest.fixture
def roster_players():
    """Strikers (S1-S11) bat first against Titans (B1-B6 bowlers, F1-F5 fielders)."""
    players = [{"name": n, "team": "team1", "id": i} for i, n in enumerate(TEAM1_PLAYERS, 1)]
    players += [{"name": n, "team": "team2", "id": 100 + i} for i, n in enumerate(TEAM2_PLAYERS, 1)]
    return players


@pytest.fixture
def rosters(roster_players):
    return MatchRosters("Strikers", "Titans", players=roster_players, batting_first="team1")


@pytest.fixture
def make_session(rosters):
    """Factory for sessions with a custom overs limit (and optional bowling quota)."""
    def _make(overs=2, max_bowler_overs=None, match_id="match-1"):
        fmt = get_format("T20", overs=overs, max_bowler_overs=max_bowler_overs)
        return MatchScoringSession(match_id, rosters, fmt=fmt)
    return _make


@pytest.fixture
def session(make_session):
    return make_session()


@pytest.fixture
def live_session(session):
    """S1 on strike, S2 at the other end, B1 bowling."""
    session.start_match("S1", "S2", "B1")
    return session


# ==================== Application Fixtures ====================

@pytest.fixture(scope="function")
def test_config(tmp_path):
    """Create a temporary config file for testing."""
    config_path = tmp_path / "config.yaml"
    config_data = {
        "app": {
            "secret_key": "test-secret-key-for-testing-only-12345",
        },
        "database": {
            "uri": "sqlite:///:memory:",
        },
        "scoring": {
            "format": "T20",
            "overs": None,
            "max_bowler_overs": None,
            "undo_depth": 10,
        },
        "archive": {
            "enabled": False,
            "directory": str(tmp_path / "archives"),
        },
        "sessions": {
            "max_age_hours": 24,
        },
        "logging": {
            "level": "INFO",
        },
    }

    config_path.write_text(yaml.safe_dump(config_data, sort_keys=False), encoding="utf-8")
    return config_path


@pytest.fixture(scope="function")
def app(test_config, tmp_path, monkeypatch):
    """Create and configure a test Flask application instance."""
    monkeypatch.setenv("SCOREBOOK_CONFIG_PATH", str(test_config))
    monkeypatch.setenv("SCOREBOOK_TEST_MODE", "1")
    monkeypatch.setenv("SCOREBOOK_SKIP_GLOBAL_APP", "1")
    test_db_file = tmp_path / "pytest_app.db"
    monkeypatch.setenv("SCOREBOOK_DB_URI", f"sqlite:///{test_db_file.as_posix()}")

    app_module.SCORING_SESSIONS.clear()
    app_module.SESSION_LAST_ACTIVITY.clear()

    app = create_app()
    app.config.update({
        "TESTING": True,
        "LOGIN_DISABLED": False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()

    app_module.SCORING_SESSIONS.clear()


@pytest.fixture(scope="function")
def client(app):
    """Create a test client for the app."""
    return app.test_client()


# ==================== User Fixtures ====================

def _make_user(email, password, name):
    user = User(
        id=email,
        password_hash=generate_password_hash(password),
        display_name=name,
        created_at=datetime.now(timezone.utc),
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope="function")
def regular_user(app):
    """Create the organizer account used by most route tests."""
    return _make_user("scorer@example.com", "Password123!", "Scorer")


@pytest.fixture(scope="function")
def other_user(app):
    """A second account that must not be able to touch the organizer's matches."""
    return _make_user("other@example.com", "Password123!", "Other Scorer")


# ==================== Authentication Helpers ====================

@pytest.fixture(scope="function")
def authenticated_client(client, regular_user):
    """Return a client logged in as the organizer."""
    with client:
        client.post("/login", json={
            "email": regular_user.id,
            "password": "Password123!",
        })
        yield client


# ==================== Pytest Configuration ====================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
