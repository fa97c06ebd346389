"""Bearer tokens and role checks.

Tokens are itsdangerous-signed payloads ``{"user_id", "role"}``; the rental
core trusts the decoded identity verbatim and receives it as an ``Actor``.
"""
from __future__ import annotations

from functools import wraps

from flask import current_app, g, jsonify, request
from itsdangerous import BadSignature, URLSafeTimedSerializer

from .lifecycle import Actor


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")


def build_token(user_id: int, role: str) -> str:
    return _serializer().dumps({"user_id": user_id, "role": role})


def get_current_actor() -> Actor | None:
    """Extract and validate the actor from the Authorization header.

    Returns None if the header is missing, the token is malformed or expired.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]
    try:
        payload = _serializer().loads(token, max_age=current_app.config.get("AUTH_TOKEN_MAX_AGE", 86400))
    except BadSignature:
        # Invalid or expired token
        return None

    user_id = payload.get("user_id")
    role = payload.get("role")
    if user_id is None or not role:
        return None
    return Actor(user_id=int(user_id), role=role)


def login_required(*roles):
    """Require a valid token, and one of ``roles`` when any are given.

    The actor is stored on ``g.actor`` for the view.
    """
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            actor = get_current_actor()
            if actor is None:
                return jsonify({
                    "error": "unauthorized",
                    "message": "Authentication required. Please log in to continue.",
                }), 401
            if roles and actor.role not in roles:
                return jsonify({
                    "error": "forbidden",
                    "message": f"This action requires role: {', '.join(roles)}",
                }), 403
            g.actor = actor
            return fn(*args, **kwargs)

        return wrapper

    return deco
