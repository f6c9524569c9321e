"""Authentication route registration."""

from flask import jsonify, request
from flask_login import current_user, login_required, login_user, logout_user


def _credentials():
    data = request.get_json(silent=True) or request.form
    return (
        (data.get("email") or "").strip().lower(),
        data.get("password") or "",
        data.get("display_name") or "",
    )


def register_auth_routes(app, *, register_user, verify_user):
    @app.route("/register", methods=["POST"])
    def register():
        email, password, display_name = _credentials()
        user, error = register_user(email, password, display_name)
        if error:
            return jsonify({"error": error}), 400
        login_user(user)
        return jsonify({"email": user.id, "display_name": user.display_name}), 201

    @app.route("/login", methods=["POST"])
    def login():
        email, password, _ = _credentials()
        if not email or not password:
            return jsonify({"error": "Email and password required"}), 400
        user = verify_user(email, password)
        if user is None:
            app.logger.warning(f"[Auth] failed login for {email}")
            return jsonify({"error": "Invalid email or password"}), 401
        login_user(user, remember=True)
        app.logger.info(f"Successful login for {email}")
        return jsonify({"email": user.id, "display_name": user.display_name})

    @app.route("/logout", methods=["POST"])
    @login_required
    def logout():
        app.logger.info(f"Logout for {current_user.id}")
        logout_user()
        return jsonify({"message": "Logged out"})
