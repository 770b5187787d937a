"""
tests/integration/test_settlements.py — The settlement engine end to end.

Endpoints covered:
  GET  /sessions/:id/balance-check
  POST /sessions/:id/settlement           → 201 / 200 / 409 / 422 / 404
  GET  /sessions/:id/settlement
  GET  /sessions/:id/settlement/attempts
  POST /transfers/:id/pay                 → 200 / 403 / 409
  POST /transfers/:id/revert              → 200 / 403 / 409

Scenarios:
  1. A(debit 100), B(debit 100, credit 50), C(credit 150)
     → A→C 100.00, B→C 50.00
  2. debit 300.00 vs credit 290.00 → BALANCE_MISMATCH, zero transfers
  3. Calculating again after (1) returns the same two transfers, not four
  4. paid → revert: back to pending, same id, one audit record per transition
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from .conftest import (
    add_participant,
    auth_headers,
    close_session,
    make_session,
    play_session,
    record_entry,
)

HOST = 10
A, B, C, D = 1, 2, 3, 4
STRANGER = 99

SCENARIO_1 = {
    A: ("100", "0"),
    B: ("100", "50"),
    C: ("0", "150"),
}


def _calculate(client, session_id: int, user_id: int = HOST):
    return client.post(f"/api/v1/sessions/{session_id}/settlement", headers=auth_headers(user_id))


def _get_settlement(client, session_id: int, user_id: int = HOST) -> dict:
    resp = client.get(f"/api/v1/sessions/{session_id}/settlement", headers=auth_headers(user_id))
    assert resp.status_code == 200
    return resp.get_json()["data"]


def _attempts(client, session_id: int) -> list[dict]:
    resp = client.get(
        f"/api/v1/sessions/{session_id}/settlement/attempts",
        headers=auth_headers(HOST),
    )
    assert resp.status_code == 200
    return resp.get_json()["data"]


def _settled_scenario_1(client):
    game, pids = play_session(client, HOST, SCENARIO_1)
    close_session(client, HOST, game["id"])
    resp = _calculate(client, game["id"])
    assert resp.status_code == 201, resp.get_json()
    return game, pids, resp.get_json()["data"]


def _pay(client, transfer_id: int, user_id: int, method: str | None = None):
    body = {} if method is None else {"method": method}
    return client.post(
        f"/api/v1/transfers/{transfer_id}/pay",
        json=body,
        headers=auth_headers(user_id),
    )


def _revert(client, transfer_id: int, user_id: int):
    return client.post(f"/api/v1/transfers/{transfer_id}/revert", headers=auth_headers(user_id))


# ═══════════════════════════════════════════════════════════════════════════
# GET /sessions/:id/balance-check
# ═══════════════════════════════════════════════════════════════════════════

class TestBalanceCheck:

    def test_balanced(self, client):
        game, _ = play_session(client, HOST, SCENARIO_1)
        resp = client.get(f"/api/v1/sessions/{game['id']}/balance-check", headers=auth_headers(A))
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["ok"] is True
        assert data["total_credit"] == "200.00"
        assert data["total_debit"] == "200.00"
        assert data["difference"] == "0.00"

    def test_mismatch_reported_not_raised(self, client):
        game, _ = play_session(client, HOST, {A: ("300", "0"), B: ("0", "290")})
        resp = client.get(f"/api/v1/sessions/{game['id']}/balance-check", headers=auth_headers(HOST))
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["ok"] is False
        assert data["difference"] == "-10.00"
        assert "290.00" in data["message"] and "300.00" in data["message"]


# ═══════════════════════════════════════════════════════════════════════════
# POST /sessions/:id/settlement
# ═══════════════════════════════════════════════════════════════════════════

class TestCalculateSettlement:

    def test_scenario_1_transfers(self, client):
        _, pids, transfers = _settled_scenario_1(client)

        assert [(t["payer_id"], t["payee_id"], t["amount"]) for t in transfers] == [
            (pids[A], pids[C], "100.00"),
            (pids[B], pids[C], "50.00"),
        ]
        assert all(t["pay_state"] == "pending" for t in transfers)
        assert all(t["payment_method"] is None for t in transfers)
        assert transfers[0]["payer_user_id"] == A
        assert transfers[0]["payee_user_id"] == C

    def test_scenario_2_mismatch_writes_nothing(self, client):
        game, _ = play_session(client, HOST, {A: ("300.00", "0"), B: ("0", "290.00")})
        close_session(client, HOST, game["id"])

        resp = _calculate(client, game["id"])
        assert resp.status_code == 422
        error = resp.get_json()["error"]
        assert error["code"] == "BALANCE_MISMATCH"
        assert "10.00" in error["message"]

        settlement = _get_settlement(client, game["id"])
        assert settlement["computed"] is False
        assert settlement["transfers"] == []

        attempts = _attempts(client, game["id"])
        assert len(attempts) == 1
        assert attempts[0]["status"] == "failed"
        assert attempts[0]["error_code"] == "BALANCE_MISMATCH"

    def test_mismatch_within_tolerance_settles(self, client):
        game, _ = play_session(client, HOST, {A: ("100.00", "0"), B: ("0", "100.01")})
        close_session(client, HOST, game["id"])

        resp = _calculate(client, game["id"])
        assert resp.status_code == 201
        assert [t["amount"] for t in resp.get_json()["data"]] == ["100.00"]

    def test_scenario_3_idempotent(self, client):
        game, _, first = _settled_scenario_1(client)

        resp = _calculate(client, game["id"], user_id=B)
        assert resp.status_code == 200
        assert resp.get_json()["data"] == first

        settlement = _get_settlement(client, game["id"])
        assert len(settlement["transfers"]) == 2

        statuses = [a["status"] for a in _attempts(client, game["id"])]
        assert statuses == ["computed", "reused"]

    def test_not_closed(self, client):
        game, _ = play_session(client, HOST, SCENARIO_1)

        resp = _calculate(client, game["id"])
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "SESSION_NOT_CLOSED"
        assert _get_settlement(client, game["id"])["computed"] is False

    def test_unknown_session(self, client):
        resp = _calculate(client, 5555)
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "SESSION_NOT_FOUND"

    def test_stranger_forbidden_and_not_logged(self, client):
        game, _ = play_session(client, HOST, SCENARIO_1)
        close_session(client, HOST, game["id"])

        resp = _calculate(client, game["id"], user_id=STRANGER)
        assert resp.status_code == 403
        assert _attempts(client, game["id"]) == []

    def test_everyone_even_settles_with_no_transfers(self, client):
        game, _ = play_session(client, HOST, {A: ("50", "50"), B: ("20", "20")})
        close_session(client, HOST, game["id"])

        resp = _calculate(client, game["id"])
        assert resp.status_code == 201
        assert resp.get_json()["data"] == []

        settlement = _get_settlement(client, game["id"])
        assert settlement["computed"] is True
        assert settlement["all_paid"] is True

        assert _calculate(client, game["id"]).status_code == 200

    def test_transfer_above_limit_aborts(self, client):
        # 6000 owed in one piece exceeds TRANSFER_AMOUNT_MAX (5000.00).
        game, _ = play_session(client, HOST, {A: ("6000", "0"), B: ("0", "6000")})
        close_session(client, HOST, game["id"])

        resp = _calculate(client, game["id"])
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "TRANSFER_AMOUNT_OUT_OF_RANGE"
        assert _get_settlement(client, game["id"])["computed"] is False

    def test_conservation_for_larger_table(self, client):
        ledger = {
            A: ("200", "35.55"),
            B: ("50", "180.20"),
            C: ("120", "0"),
            D: ("10", "164.25"),
        }
        game, pids = play_session(client, HOST, ledger)
        close_session(client, HOST, game["id"])

        resp = _calculate(client, game["id"])
        assert resp.status_code == 201
        transfers = resp.get_json()["data"]

        assert len(transfers) <= len(ledger) - 1
        flow = defaultdict(lambda: Decimal("0.00"))
        for t in transfers:
            assert t["payer_id"] != t["payee_id"]
            flow[t["payer_id"]] -= Decimal(t["amount"])
            flow[t["payee_id"]] += Decimal(t["amount"])

        for user_id, (debit, credit) in ledger.items():
            assert flow[pids[user_id]] == Decimal(credit) - Decimal(debit)


# ═══════════════════════════════════════════════════════════════════════════
# Pay / revert
# ═══════════════════════════════════════════════════════════════════════════

class TestPayState:

    def test_scenario_4_pay_then_revert(self, client):
        _, _, transfers = _settled_scenario_1(client)
        transfer_id = transfers[0]["id"]

        paid = _pay(client, transfer_id, A, method="venmo")
        assert paid.status_code == 200
        assert paid.get_json()["data"]["pay_state"] == "paid"
        assert paid.get_json()["data"]["payment_method"] == "venmo"
        assert paid.get_json()["data"]["paid_at"] is not None

        reverted = _revert(client, transfer_id, C)
        assert reverted.status_code == 200
        data = reverted.get_json()["data"]
        assert data["id"] == transfer_id
        assert data["pay_state"] == "pending"
        assert data["payment_method"] is None
        assert data["paid_at"] is None

        history = client.get(
            f"/api/v1/audit/transfers/{transfer_id}",
            headers=auth_headers(A),
        ).get_json()["data"]
        assert [(r["operation"], r["old_state"], r["new_state"]) for r in history] == [
            ("insert", None, "pending"),
            ("update", "pending", "paid"),
            ("update", "paid", "pending"),
        ]
        assert [r["actor_id"] for r in history[1:]] == [A, C]

    def test_method_defaults_to_cash(self, client):
        _, _, transfers = _settled_scenario_1(client)
        resp = _pay(client, transfers[1]["id"], HOST)
        assert resp.get_json()["data"]["payment_method"] == "cash"

    def test_unknown_method(self, client):
        _, _, transfers = _settled_scenario_1(client)
        resp = _pay(client, transfers[0]["id"], A, method="cheque")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_PAYMENT_METHOD"

    def test_pay_twice(self, client):
        _, _, transfers = _settled_scenario_1(client)
        _pay(client, transfers[0]["id"], A)
        resp = _pay(client, transfers[0]["id"], C)
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "TRANSFER_ALREADY_PAID"

    def test_revert_pending(self, client):
        _, _, transfers = _settled_scenario_1(client)
        resp = _revert(client, transfers[0]["id"], HOST)
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "TRANSFER_NOT_PAID"

    def test_uninvolved_participant_cannot_pay(self, client):
        _, _, transfers = _settled_scenario_1(client)
        # transfers[0] is A → C; B is neither side.
        resp = _pay(client, transfers[0]["id"], B)
        assert resp.status_code == 403

    def test_payer_cannot_revert(self, client):
        _, _, transfers = _settled_scenario_1(client)
        _pay(client, transfers[0]["id"], A)
        resp = _revert(client, transfers[0]["id"], A)
        assert resp.status_code == 403

    def test_unknown_transfer(self, client):
        resp = _pay(client, 31337, HOST)
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "TRANSFER_NOT_FOUND"

    def test_all_paid(self, client):
        game, _, transfers = _settled_scenario_1(client)
        assert _get_settlement(client, game["id"])["all_paid"] is False

        for t in transfers:
            _pay(client, t["id"], HOST)

        settlement = _get_settlement(client, game["id"], user_id=C)
        assert settlement["computed"] is True
        assert settlement["all_paid"] is True
        assert [t["pay_state"] for t in settlement["transfers"]] == ["paid", "paid"]


# ═══════════════════════════════════════════════════════════════════════════
# Attempt log
# ═══════════════════════════════════════════════════════════════════════════

def test_attempt_log_records_totals(client):
    game, _, _ = _settled_scenario_1(client)
    attempts = _attempts(client, game["id"])

    assert len(attempts) == 1
    run = attempts[0]
    assert run["status"] == "computed"
    assert run["attempted_by"] == HOST
    assert run["transfers_created"] == 2
    assert run["total_credit"] == "200.00"
    assert run["total_debit"] == "200.00"
    assert run["error_code"] is None


def test_settlement_not_visible_to_stranger(client):
    game = make_session(client, HOST)
    add_participant(client, HOST, game["id"], A)
    resp = client.get(f"/api/v1/sessions/{game['id']}/settlement", headers=auth_headers(STRANGER))
    assert resp.status_code == 403


def test_entry_write_refused_after_settlement_keeps_transfers(client):
    game, pids, transfers = _settled_scenario_1(client)
    resp = record_entry(client, HOST, game["id"], pids[A], "debit", "10")
    assert resp.status_code == 409
    assert len(_get_settlement(client, game["id"])["transfers"]) == len(transfers)
