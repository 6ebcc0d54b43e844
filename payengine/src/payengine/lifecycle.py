"""
Transaction lifecycle: Unsigned -> Signed -> Pending -> Confirmed | Failed.

Status of a broadcast transaction is never stored; it is classified from
chain data on every query.
"""

from __future__ import annotations

from paycore.errors import InvalidState
from paycore.models import BaseTransaction, TransactionStatus


def _require_status(tx: BaseTransaction, expected: TransactionStatus, action: str) -> None:
    if tx.status != expected:
        raise InvalidState(
            f"Cannot {action} transaction with status {tx.status.value}, "
            f"expected {expected.value}",
            id=tx.id,
            status=tx.status.value,
        )


def assert_can_sign(tx: BaseTransaction) -> None:
    _require_status(tx, TransactionStatus.UNSIGNED, "sign")


def assert_can_broadcast(tx: BaseTransaction) -> None:
    _require_status(tx, TransactionStatus.SIGNED, "broadcast")


def count_confirmations(current_height: int, tx_height: int | None) -> int:
    """Blocks (or ledgers) closed since the transaction's own. 0 while unmined."""
    if tx_height is None:
        return 0
    return max(0, current_height - tx_height)


def classify_status(
    confirmations: int,
    min_confirmations: int,
    mined: bool,
    executed: bool | None = None,
) -> TransactionStatus:
    """
    Canonical status from chain data.

    Args:
        confirmations: Confirmations counted for this query
        min_confirmations: Threshold the count must exceed
        mined: Whether the transaction is in a block or validated ledger
        executed: Chain reported execution outcome, None if unknown

    A mined transaction must have more confirmations than the threshold to
    leave Pending. A threshold of 0 only requires the transaction to be mined.
    """
    if not mined or (min_confirmations > 0 and confirmations <= min_confirmations):
        return TransactionStatus.PENDING
    if executed is False:
        return TransactionStatus.FAILED
    return TransactionStatus.CONFIRMED
