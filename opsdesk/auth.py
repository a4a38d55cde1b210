# opsdesk/auth.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_user, logout_user
from sqlalchemy.exc import SQLAlchemyError

from .errors import InvalidInput, Unauthorized
from .extensions import db, limiter, login_manager
from .models import Member, Organization, User, utcnow_naive
from .utils.guards import session_required
from .utils.hashing import verify_secret

auth = Blueprint("auth", __name__)


# =========================================================
# Flask-Login hooks
# =========================================================
@login_manager.user_loader
def load_user(user_id: str):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Unauthorized"}), 401


def _login_limit() -> str:
    return current_app.config.get("LOGIN_RATE_LIMIT", "5 per minute")


def _user_payload(user: User) -> dict:
    orgs = (
        db.session.query(Organization.slug, Organization.name, Member.role)
        .join(Member, Member.organization_id == Organization.id)
        .filter(Member.user_id == user.id)
        .order_by(Organization.name.asc())
        .all()
    )
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "organizations": [{"slug": slug, "name": name, "role": role} for slug, name, role in orgs],
    }


# =========================================================
# Login / Logout
# =========================================================
@auth.route("/login", methods=["POST"])
@limiter.limit(_login_limit)
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower() if isinstance(data.get("email"), str) else ""
    password = data.get("password") if isinstance(data.get("password"), str) else ""

    if not email or not password:
        raise InvalidInput("Email and password are required.")

    user = User.query.filter(db.func.lower(User.email) == email).first()

    if not user or not verify_secret(user.password_hash, password):
        raise Unauthorized("Invalid email or password.")

    if user.is_active is False:
        raise Unauthorized("This account is inactive.")

    login_user(user, remember=bool(data.get("remember")))

    try:
        user.last_login_at = utcnow_naive()
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Could not stamp last_login_at for user %s", user.id)

    current_app.logger.info("User %s logged in", user.id)
    return jsonify({"user": _user_payload(user)})


@auth.route("/logout", methods=["POST"])
def logout():
    """
    Not session_required: logging out twice is harmless and should not 401.
    """
    logout_user()
    return jsonify({"success": True})


@auth.route("/me", methods=["GET"])
@session_required
def me():
    return jsonify({"user": _user_payload(current_user)})
