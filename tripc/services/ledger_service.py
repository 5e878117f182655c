"""Wallet ledger.

users.balance is a cached projection of SUM(ledger_entries.delta). Every balance change
goes through post_entry(), which applies a conditional UPDATE on the balance and appends
the matching LedgerEntry in the caller's transaction. Callers commit (or roll back) both
together.
"""
import logging
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from tripc.core.errors import InsufficientFundsError, NotFoundError
from tripc.models.ledger import LedgerEntry
from tripc.models.user import User

logger = logging.getLogger(__name__)


def get_balance(db: Session, user_id: str) -> int:
    balance = db.execute(select(User.balance).where(User.id == user_id)).scalar_one_or_none()
    if balance is None:
        raise NotFoundError("User not found")
    return int(balance)


def post_entry(
    db: Session,
    user_id: str,
    delta: int,
    reason: str,
    *,
    description: str = "",
    related_booking_id: str | None = None,
    reference_type: str = "",
    reference_id: str = "",
) -> LedgerEntry:
    """Apply `delta` to the user's balance and append the ledger row. Does not commit.

    Debits never take the balance below zero; the check and the write are one statement.
    """
    stmt = update(User).where(User.id == user_id)
    if delta < 0:
        stmt = stmt.where(User.balance + delta >= 0)
    result = db.execute(
        stmt.values(balance=User.balance + delta).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        if db.get(User, user_id) is None:
            raise NotFoundError("User not found")
        raise InsufficientFundsError("Insufficient Tcent balance")

    balance_after = db.execute(select(User.balance).where(User.id == user_id)).scalar_one()
    entry = LedgerEntry(
        id=str(uuid.uuid4()),
        user_id=user_id,
        delta=int(delta),
        balance_after=int(balance_after),
        reason=reason,
        description=description,
        related_booking_id=related_booking_id,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.add(entry)
    logger.info("Ledger %s user=%s delta=%s balance_after=%s", reason, user_id, delta, balance_after)
    return entry


def ledger_sum(db: Session, user_id: str) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(LedgerEntry.delta), 0)).where(LedgerEntry.user_id == user_id)
    ).scalar_one()
    return int(total)


def reconcile(db: Session, user_id: str) -> dict:
    cached = get_balance(db, user_id)
    total = ledger_sum(db, user_id)
    if cached != total:
        logger.error("Reconciliation discrepancy: user=%s cached_balance=%s ledger_sum=%s", user_id, cached, total)
    return {"userId": user_id, "cachedBalance": cached, "ledgerSum": total, "consistent": cached == total}


def recent_entries(db: Session, user_id: str, limit: int = 20) -> list[LedgerEntry]:
    return (
        db.query(LedgerEntry)
        .filter(LedgerEntry.user_id == user_id)
        .order_by(LedgerEntry.created_at.desc())
        .limit(limit)
        .all()
    )
