"""
middleware/auth_middleware.py — Bearer JWT identity for every engine route.

Tokens are issued by the authentication collaborator; this service only
verifies them. The acting user's id (the `sub` claim) is what the engine
records as host, entry recorder, settler and audit actor.

@require_auth:
  1. Reads "Authorization: Bearer <token>"
  2. Verifies the signature and expiry (PyJWT, JWT_ALGORITHM, JWT_SECRET_KEY)
  3. Attaches the int user id to flask.g.user_id

Authentication only (401). Whether that user may touch a given session or
transfer is the service layer's call (403). Services never see the token;
routes pass g.user_id to them as a plain int.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, bad signature or unusable sub
  TOKEN_EXPIRED  (401) — exp claim is in the past
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from backend.app.errors import AppError, ErrorCode


def require_auth(f: Callable) -> Callable:
    """
    Route decorator: rejects the request unless it carries a valid token.

    Usage:
        @sessions_bp.route("/<int:session_id>/settlement", methods=["POST"])
        @require_auth
        def calculate_settlement(session_id):
            caller_id = g.user_id
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def _bearer_token() -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )
    return parts[1]


def _authenticate_request() -> int:
    """
    Returns the acting user id for the current request.

    Raises AppError on any failure; the global handler renders it.
    """
    raw_token = _bearer_token()

    try:
        payload = jwt.decode(
            raw_token,
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Obtain a new one and retry.",
            401,
        )
    except jwt.InvalidTokenError:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token does not carry a valid user id in its 'sub' claim.",
            401,
        )

    if user_id < 1:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token does not carry a valid user id in its 'sub' claim.",
            401,
        )
    return user_id
