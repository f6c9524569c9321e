import os
import time
import logging
import threading
import traceback
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify, request
from flask_login import LoginManager

from auth.user_auth import register_user, verify_user
from database import db
from database.models import Match as DBMatch, Team as DBTeam, User
from match_archiver import MatchArchiver
from routes.auth_routes import register_auth_routes
from routes.match_routes import register_match_routes
from utils.broadcaster import SnapshotBroadcaster
from utils.helpers import PROJECT_ROOT, config_section, load_config


# Live scoring sessions, one per match being scored
SCORING_SESSIONS = {}
SCORING_SESSIONS_LOCK = threading.Lock()
SESSION_LAST_ACTIVITY = {}

_MATCH_LOCKS = {}
_MATCH_LOCKS_GUARD = threading.Lock()


def get_match_lock(match_id):
    """One lock per match: commands for a match are applied strictly one at a time."""
    with _MATCH_LOCKS_GUARD:
        lock = _MATCH_LOCKS.get(match_id)
        if lock is None:
            lock = threading.Lock()
            _MATCH_LOCKS[match_id] = lock
        return lock


def touch_session(match_id):
    SESSION_LAST_ACTIVITY[match_id] = time.time()


def _is_test_mode():
    return os.getenv("SCOREBOOK_TEST_MODE") == "1"


def cleanup_stale_sessions(app, max_age_seconds=None):
    """Evict completed sessions idle for longer than sessions.max_age_hours."""
    if max_age_seconds is None:
        max_age_seconds = app.config.get("SESSION_MAX_AGE_HOURS", 24) * 3600
    try:
        cutoff = time.time() - max_age_seconds
        removed = []
        with SCORING_SESSIONS_LOCK:
            for match_id, session in list(SCORING_SESSIONS.items()):
                if session.completed and SESSION_LAST_ACTIVITY.get(match_id, 0) < cutoff:
                    del SCORING_SESSIONS[match_id]
                    SESSION_LAST_ACTIVITY.pop(match_id, None)
                    removed.append(match_id)

        broadcaster = app.extensions.get("scorebook_broadcaster")
        for match_id in removed:
            if broadcaster is not None:
                broadcaster.forget(match_id)
            with _MATCH_LOCKS_GUARD:
                _MATCH_LOCKS.pop(match_id, None)
            app.logger.info(f"[Cleanup] Removed completed scoring session: {match_id}")

        if removed:
            app.logger.info(f"[Cleanup] Cleaned up {len(removed)} scoring sessions")
        return removed
    except Exception as e:
        app.logger.error(f"[Cleanup] Error cleaning up scoring sessions: {e}", exc_info=True)
        return []


def periodic_cleanup(app, interval_seconds):
    while True:
        try:
            time.sleep(interval_seconds)
            cleanup_stale_sessions(app)
        except Exception as e:
            app.logger.error(f"[PeriodicCleanup] Error in cleanup thread: {e}")


def _setup_logging(level_name):
    base_dir = os.path.abspath(os.path.dirname(__file__))
    log_dir = os.path.join(base_dir, "logs")
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "execution.log")
    level = getattr(logging, str(level_name or "DEBUG").upper(), logging.DEBUG)

    # Clear existing handlers to avoid duplicates
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=[file_handler, console_handler])


# ────── App Factory ──────
def create_app():
    app = Flask(__name__)
    config = load_config()
    app_cfg = config_section(config, "app")
    scoring_cfg = config_section(config, "scoring")
    archive_cfg = config_section(config, "archive")
    sessions_cfg = config_section(config, "sessions")

    # --- Secret key setup ---
    secret = app_cfg.get("secret_key")
    if not secret or not isinstance(secret, str):
        secret = os.getenv("FLASK_SECRET_KEY", None)
        if not secret:
            secret = os.urandom(24).hex()
            print("[WARN] Using random Flask SECRET_KEY, sessions won't persist across restarts")

    app.config["SECRET_KEY"] = secret
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_MAX_AGE_HOURS"] = sessions_cfg.get("max_age_hours", 24)

    # --- Database ---
    db_uri = os.getenv("SCOREBOOK_DB_URI") or config_section(config, "database").get("uri") \
        or f"sqlite:///{os.path.join(PROJECT_ROOT, 'scorebook.db')}"
    app.config["SQLALCHEMY_DATABASE_URI"] = db_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    db.init_app(app)
    with app.app_context():
        db.create_all()

    # --- Logging setup (logs to file + terminal) ---
    _setup_logging(config_section(config, "logging").get("level"))
    app.logger = logging.getLogger("Scorebook")

    # --- Flask-Login setup ---
    login_manager = LoginManager(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required"}), 401

    @app.before_request
    def log_request():
        app.logger.info(f"{request.remote_addr} {request.method} {request.path}")

    # --- Scoring collaborators ---
    archive_dir = archive_cfg.get("directory") or "data/archives"
    if not os.path.isabs(archive_dir):
        archive_dir = os.path.join(PROJECT_ROOT, archive_dir)
    archiver = MatchArchiver(archive_dir=archive_dir,
                             text_archive_enabled=bool(archive_cfg.get("enabled", False)))
    broadcaster = SnapshotBroadcaster(publish_sync=_is_test_mode())
    broadcaster.start()
    app.extensions["scorebook_archiver"] = archiver
    app.extensions["scorebook_broadcaster"] = broadcaster

    register_auth_routes(app, register_user=register_user, verify_user=verify_user)
    register_match_routes(
        app,
        db=db,
        DBMatch=DBMatch,
        DBTeam=DBTeam,
        archiver=archiver,
        broadcaster=broadcaster,
        SCORING_SESSIONS=SCORING_SESSIONS,
        SCORING_SESSIONS_LOCK=SCORING_SESSIONS_LOCK,
        get_match_lock=get_match_lock,
        touch_session=touch_session,
        scoring_config=scoring_cfg,
        commentary_pack=config_section(config, "commentary").get("pack_path"),
    )

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    if not _is_test_mode():
        interval = float(sessions_cfg.get("cleanup_interval_hours", 6)) * 3600
        threading.Thread(target=periodic_cleanup, args=(app, interval), daemon=True).start()

    app.logger.info("Scorebook app created")
    return app


# Gunicorn entry point ("app:app"); tests build their own instance.
app = None if os.getenv("SCOREBOOK_SKIP_GLOBAL_APP") == "1" else create_app()


# ────── Run Server ──────
if __name__ == "__main__":
    try:
        HOST = "127.0.0.1"
        PORT = 7860
        print("✅ Scorebook is up and running!")
        print(f"🌐 API at: http://{HOST}:{PORT}")
        print("🔐 Press Ctrl+C to stop the server.\n")
        app.run(host=HOST, port=PORT, debug=True, use_reloader=False)
    except Exception:
        print("❌ Failed to start Scorebook:")
        traceback.print_exc()
