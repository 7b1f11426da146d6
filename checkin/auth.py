# checkin/auth.py
# Optional login: an emailed magic link trades for a 7-day bearer token.
# Anonymous students never need any of this.
from __future__ import annotations

import datetime
import re
import smtplib
from functools import wraps
from urllib.parse import urlencode

import jwt
from flask import Blueprint, current_app, jsonify, request

from .emailer import send_email
from .models import User, db
from .store import safe_commit

auth_bp = Blueprint("auth", __name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
SESSION_DAYS = 7


# ----------------------------
# JWT helpers
# ----------------------------
def _encode(payload: dict) -> str:
    token = jwt.encode(payload, current_app.config["JWT_SECRET"], algorithm="HS256")
    return token if isinstance(token, str) else token.decode("utf-8")


def _decode(token: str, typ: str) -> dict:
    data = jwt.decode(token, current_app.config["JWT_SECRET"], algorithms=["HS256"])
    if data.get("typ") != typ:
        raise jwt.InvalidTokenError(f"expected a {typ} token")
    return data


def create_token(user_id: int) -> str:
    now = datetime.datetime.now(datetime.timezone.utc)
    return _encode({
        "sub": str(user_id),
        "typ": "session",
        "iat": now,
        "exp": now + datetime.timedelta(days=SESSION_DAYS),
    })


def make_login_token(user_id: int, minutes: int | None = None) -> str:
    minutes = minutes or int(current_app.config.get("LOGIN_LINK_MINUTES") or 30)
    now = datetime.datetime.now(datetime.timezone.utc)
    return _encode({
        "sub": str(user_id),
        "typ": "login",
        "iat": now,
        "exp": now + datetime.timedelta(minutes=minutes),
    })


def _get_bearer_token():
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return None


def _user_from_token(token: str, typ: str) -> User | None:
    data = _decode(token, typ)
    return db.session.get(User, int(data["sub"]))


def get_current_user() -> User | None:
    """The logged-in user for this request, or None (anonymous)."""
    token = _get_bearer_token()
    if not token:
        return None
    try:
        return _user_from_token(token, "session")
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        current_app.logger.info("Ignoring bad bearer token: %s", e)
        return None


def token_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        # Allow CORS preflight without auth
        if request.method == "OPTIONS":
            return ("", 204)

        token = _get_bearer_token()
        if not token:
            return jsonify({"message": "Authorization token is missing"}), 401
        try:
            user = _user_from_token(token, "session")
        except jwt.ExpiredSignatureError:
            return jsonify({"message": "Authorization token has expired"}), 401
        except (jwt.InvalidTokenError, KeyError, ValueError) as e:
            return jsonify({"message": "Authorization token is invalid", "error": str(e)}), 401
        if user is None:
            return jsonify({"message": "Authorization token is invalid", "error": "User not found"}), 401
        return f(user, *args, **kwargs)
    return decorated


def _user_json(user: User) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name}


# ----------------------------
# Email link flow
# ----------------------------
def login_email_bodies(link: str) -> tuple[str, str]:
    text = f"""Hi,

Use this link to sign in to Listening Check-in:
{link}

The link expires soon. If you didn't ask for it, you can ignore this email.
"""
    html = f"""<html><body>
<p>Hi,</p>
<p><b>Use this link to sign in to Listening Check-in:</b><br>
<a href="{link}">{link}</a></p>
<p>The link expires soon. If you didn't ask for it, you can ignore this email.</p>
</body></html>"""
    return text, html


def request_email_link(email: str) -> User:
    """Create the user on first use and email them a sign-in link."""
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValueError("A valid email is required")

    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(email=email)
        db.session.add(user)
        safe_commit()

    base = (current_app.config.get("FRONTEND_BASE_URL") or "").rstrip("/")
    link = f"{base}/auth/callback?" + urlencode({"token": make_login_token(user.id)})
    text, html = login_email_bodies(link)
    send_email(subject="Your sign-in link", text=text, html=html, to=[email])
    current_app.logger.info("Sent sign-in link to user %s", user.id)
    return user


@auth_bp.route("/auth/email-link", methods=["POST"])
def email_link():
    data = request.get_json(silent=True) or {}
    try:
        request_email_link(data.get("email") or "")
    except ValueError as e:
        return jsonify({"ok": False, "message": str(e)}), 400
    except (smtplib.SMTPException, OSError, RuntimeError) as e:
        current_app.logger.error("Sending sign-in link failed: %s", e)
        return jsonify({"ok": False, "message": "Could not send the sign-in email"}), 502
    return jsonify({"ok": True}), 202


@auth_bp.route("/auth/verify", methods=["POST"])
def verify():
    data = request.get_json(silent=True) or {}
    token = (data.get("token") or "").strip()
    if not token:
        return jsonify({"message": "token is required"}), 400
    try:
        user = _user_from_token(token, "login")
    except jwt.ExpiredSignatureError:
        return jsonify({"message": "This sign-in link has expired"}), 401
    except (jwt.InvalidTokenError, KeyError, ValueError):
        return jsonify({"message": "This sign-in link is invalid"}), 401
    if user is None:
        return jsonify({"message": "This sign-in link is invalid"}), 401

    user.last_login_at = datetime.datetime.utcnow()
    safe_commit()
    return jsonify({"token": create_token(user.id), "user": _user_json(user)}), 200


@auth_bp.route("/me", methods=["GET", "OPTIONS"])
@token_required
def me(current_user):
    return jsonify(_user_json(current_user))
