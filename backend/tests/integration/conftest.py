"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per test session with create_app("testing").
    TestingConfig uses in-memory SQLite unless TEST_DATABASE_URL points at a
    real PostgreSQL database.
  - Tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - Identity comes from JWTs minted here with the testing secret; there is no
    login endpoint in this service.

Helper functions (not fixtures) for common operations:
  - auth_headers(user_id)                     → {"Authorization": "Bearer <jwt>"}
  - make_session(client, host_id, ...)        → session dict
  - add_participant(client, host_id, sid, uid) → participant dict
  - record_entry(client, user_id, sid, pid, kind, amount) → HTTP response
  - close_session(client, host_id, sid)       → HTTP response
  - play_session(client, host_id, ledger)     → (session dict, {user_id: participant_id})

These are plain functions so tests can call them with arbitrary arguments.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import text

from backend.app import create_app
from backend.app.extensions import db as _db

TEST_JWT_SECRET = "testing-secret"


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the testing app and its tables once; drops them at teardown."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test, children before parents.

    audit_records and settlement_runs first, then transfers and entries
    (both reference participants), then participants and sessions.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        _db.session.remove()

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM audit_records"))
            conn.execute(text("DELETE FROM settlement_runs"))
            conn.execute(text("DELETE FROM transfers"))
            conn.execute(text("DELETE FROM entries"))
            conn.execute(text("DELETE FROM participants"))
            conn.execute(text("DELETE FROM game_sessions"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def make_token(user_id: int, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Signs an access token the way the identity collaborator would."""
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {"sub": str(user_id), "iat": now, "exp": now + expires_in},
        TEST_JWT_SECRET,
        algorithm="HS256",
    )


def auth_headers(user_id: int) -> dict:
    """Returns the Authorization header dict for a request made as user_id."""
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def make_session(client, host_id: int, name: str = "Friday Poker") -> dict:
    """Creates an open session hosted by host_id and returns its data dict."""
    resp = client.post(
        "/api/v1/sessions",
        json={"name": name},
        headers=auth_headers(host_id),
    )
    assert resp.status_code == 201, f"make_session failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_participant(client, host_id: int, session_id: int, user_id: int) -> dict:
    """Adds user_id to the session roster and returns the participant dict."""
    resp = client.post(
        f"/api/v1/sessions/{session_id}/participants",
        json={"user_id": user_id},
        headers=auth_headers(host_id),
    )
    assert resp.status_code == 201, f"add_participant failed: {resp.get_json()}"
    return resp.get_json()["data"]


def record_entry(
    client,
    user_id: int,
    session_id: int,
    participant_id: int,
    kind: str,
    amount,
):
    """Records a buy-in ("debit") or cash-out ("credit"). Returns the HTTP response."""
    return client.post(
        f"/api/v1/sessions/{session_id}/entries",
        json={"participant_id": participant_id, "kind": kind, "amount": amount},
        headers=auth_headers(user_id),
    )


def close_session(client, host_id: int, session_id: int):
    """Closes the session. Returns the HTTP response."""
    return client.post(
        f"/api/v1/sessions/{session_id}/close",
        headers=auth_headers(host_id),
    )


def play_session(client, host_id: int, ledger: dict[int, tuple[str, str]]) -> tuple[dict, dict]:
    """
    Runs a whole session: roster, one debit and one credit per player.

    Args:
        ledger: {user_id: (debit_amount, credit_amount)}; "0" skips the entry.

    Returns:
        (session dict, {user_id: participant_id})
    """
    game = make_session(client, host_id)
    participant_ids = {}
    for user_id, (debit, credit) in ledger.items():
        p = add_participant(client, host_id, game["id"], user_id)
        participant_ids[user_id] = p["id"]
        for kind, amount in (("debit", debit), ("credit", credit)):
            if amount != "0":
                resp = record_entry(client, host_id, game["id"], p["id"], kind, amount)
                assert resp.status_code == 201, f"record_entry failed: {resp.get_json()}"
    return game, participant_ids
