import logging
from datetime import datetime

from werkzeug.security import check_password_hash, generate_password_hash

from database import db
from database.models import User

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def register_user(email, password, display_name=None):
    """Create an account. Returns (user, error_message)."""
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        return None, "A valid email is required"
    if len(password or "") < MIN_PASSWORD_LENGTH:
        return None, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if db.session.get(User, email):
        return None, "An account with this email already exists"

    user = User(
        id=email,
        password_hash=generate_password_hash(password),
        display_name=(display_name or "").strip() or email.split("@")[0],
    )
    db.session.add(user)
    db.session.commit()
    logger.info(f"[Auth] registered {email}")
    return user, None


def verify_user(email, password):
    """Return the User when the credentials match, else None."""
    user = db.session.get(User, (email or "").strip().lower())
    if user is None or not user.password_hash:
        return None
    if not check_password_hash(user.password_hash, password or ""):
        return None
    user.last_login = datetime.utcnow()
    db.session.commit()
    return user
