"""
Authentication Routes

Provides:
- GET  /auth/csrf    (CSRF token for the session endpoints)
- POST /auth/login   (email + password, JSON body or form)
- POST /auth/logout

Rules:
- Only active users may log in.
- Credentials are validated via password hash.
- Failures never reveal whether the e-mail exists.
- Every session POST must carry the CSRF token in the X-CSRFToken header
  (or a csrf_token form field).
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
import structlog

from ...models import User

LOGGER = structlog.get_logger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ============================================================
# CSRF
# ============================================================

@auth_bp.route("/csrf", methods=["GET"])
def csrf_token():
    """Hand the session's CSRF token to JSON clients."""
    return jsonify({"csrf_token": generate_csrf()})


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    """Authenticate a user and open a session."""
    if current_user.is_authenticated:
        return jsonify({"user": current_user.to_dict()})

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = request.form
    email = data.get("email")
    password = data.get("password")
    if not isinstance(email, str) or not isinstance(password, str):
        return jsonify({"error": "INVALID_CREDENTIALS", "message": "Invalid e-mail or password."}), 401
    email = email.strip().lower()

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password) or not user.is_active:
        LOGGER.info("login_failed", email=email)
        return jsonify({"error": "INVALID_CREDENTIALS", "message": "Invalid e-mail or password."}), 401

    login_user(user)
    LOGGER.info("login", user_id=user.id)
    return jsonify({"user": user.to_dict()})


# ============================================================
# LOGOUT
# ============================================================

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    """Log out the current user."""
    LOGGER.info("logout", user_id=current_user.id)
    logout_user()
    return jsonify({"status": "logged_out"})
