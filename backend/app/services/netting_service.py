"""
services/netting_service.py — Deterministic minimum-transfer debt netting.

Turns signed net positions into an ordered list of (payer, payee, amount)
transfers that zero every position.

Algorithm (greedy two-pointer matching):
  1. Debtors are positions below -tolerance, creditors above +tolerance.
     Positions within tolerance of zero owe and are owed nothing.
  2. Debtors sorted most-negative first, creditors most-positive first,
     ties broken by participant id so the output is reproducible.
  3. Match the current debtor with the current creditor for
     min(debt, credit), rounded to 2 places; reduce both; advance past any
     side whose remainder is within tolerance of zero.
  4. Stop when either list is exhausted.

Guarantees, for balanced input:
  - at most n - 1 transfers for n non-zero positions,
  - no transfer has payer == payee,
  - each payer pays exactly its debt and each payee receives exactly its
    credit, up to residuals no larger than tolerance.

No Flask and no database access; rounding is integrity_service.round_money.
Persistence belongs to settlement_service.
"""

from __future__ import annotations

from decimal import Decimal

from backend.app.services.integrity_service import DEFAULT_TOLERANCE, round_money


def split_positions(
        positions: dict[int, Decimal],
        tolerance: Decimal = DEFAULT_TOLERANCE,
) -> tuple[list[tuple[int, Decimal]], list[tuple[int, Decimal]]]:
    """
    Partitions positions into (debtors, creditors), both in matching order.

    Debtors carry their debt as a positive amount.
    """
    debtors = sorted(
        ((pid, -amount) for pid, amount in positions.items() if amount < -tolerance),
        key=lambda item: (-item[1], item[0]),
    )
    creditors = sorted(
        ((pid, amount) for pid, amount in positions.items() if amount > tolerance),
        key=lambda item: (-item[1], item[0]),
    )
    return debtors, creditors


def net_transfers(
        positions: dict[int, Decimal],
        tolerance: Decimal = DEFAULT_TOLERANCE,
) -> list[dict]:
    """
    Computes the transfer list for {participant_id: net_position}.

    Args:
        positions: net position per participant; negative owes, positive is
                   owed. Callers must have passed the session balance check
                   first — this function does not re-validate.
        tolerance: balances within this distance of zero count as settled.

    Returns:
        [{"payer_id": int, "payee_id": int, "amount": Decimal}, ...]
        in the order the transfers were produced. Empty when nobody owes.
    """
    debtors, creditors = split_positions(positions, tolerance)

    transfers: list[dict] = []
    i = j = 0

    while i < len(debtors) and j < len(creditors):
        debtor_id, debt = debtors[i]
        creditor_id, credit = creditors[j]

        amount = round_money(min(debt, credit))
        if amount == Decimal("0"):
            # Sub-cent remainder: nothing to pay, drop the smaller side.
            if debt <= credit:
                i += 1
            else:
                j += 1
            continue

        transfers.append({
            "payer_id": debtor_id,
            "payee_id": creditor_id,
            "amount": amount,
        })

        debt -= amount
        credit -= amount
        debtors[i] = (debtor_id, debt)
        creditors[j] = (creditor_id, credit)

        # A rounding residual within tolerance counts as settled.
        if debt <= tolerance:
            i += 1
        if credit <= tolerance:
            j += 1

    return transfers
