from functools import wraps

from flask import current_app, g, jsonify, request

from app.extensions import db
from app.models import User


def get_request_user():
    header = current_app.config.get("USER_ID_HEADER", "X-User-Id")
    raw_value = (request.headers.get(header) or "").strip()
    if not raw_value.isdigit():
        return None
    return db.session.get(User, int(raw_value))


def api_user_required(func):
    """Resolve the user an upstream gateway already authenticated."""

    @wraps(func)
    def wrapped(*args, **kwargs):
        user = get_request_user()
        if not user:
            return jsonify({"error": "authentication required"}), 401
        g.api_user = user
        return func(*args, **kwargs)

    return wrapped
