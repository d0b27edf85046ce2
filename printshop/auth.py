from __future__ import annotations

import hashlib
import hmac
from functools import wraps

from flask import jsonify, redirect, request, session, url_for

SESSION_FLAG = "is_admin"


def hash_password(password: str) -> str:
    """SHA-256 hex digest, the format ADMIN_PASSWORD_HASH is stored in."""
    return hashlib.sha256((password or "").encode("utf-8")).hexdigest()


def verify_password(password: str, expected_hash: str) -> bool:
    if not expected_hash:
        return False
    return hmac.compare_digest(hash_password(password), expected_hash.strip().lower())


def login() -> None:
    session.permanent = True
    session[SESSION_FLAG] = True


def logout() -> None:
    session.pop(SESSION_FLAG, None)


def is_admin() -> bool:
    return bool(session.get(SESSION_FLAG))


def admin_required(view):
    """Pages redirect to the login form; API routes answer 401."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        if not is_admin():
            if request.path.startswith("/api/"):
                return jsonify({"error": "Unauthorized"}), 401
            return redirect(url_for("admin_login"))
        return view(*args, **kwargs)

    return wrapper
