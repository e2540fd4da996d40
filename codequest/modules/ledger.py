"""
Transaction ledger: one write-only entry per coin-affecting event.
"""

import logging
from typing import Any, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from common.models import Transaction, TransactionType

logger = logging.getLogger(__name__)


def record_transaction(
    db: Session,
    user_id: str,
    transaction_type: TransactionType,
    amount: int,
    balance: int,
    description: str,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None
) -> Transaction:
    """
    Append a ledger entry to the current unit of work.

    The caller owns the transaction; nothing is committed here.

    Args:
        db: Database session
        user_id: Affected user
        transaction_type: Kind of event
        amount: Signed coin delta
        balance: Balance right after the event
        description: Human-readable summary
        reference_id: Related record, e.g. a submission id
        reference_type: Kind of related record

    Returns:
        Transaction: The pending ledger entry
    """
    entry = Transaction(
        user_id=user_id,
        type=transaction_type,
        amount=amount,
        balance=balance,
        description=description,
        reference_id=reference_id,
        reference_type=reference_type
    )
    db.add(entry)
    db.flush()

    logger.debug(
        f"Ledger {transaction_type.value} for {user_id}: "
        f"{amount:+d} -> {balance}"
    )
    return entry


def list_transactions(
    db: Session,
    user_id: str,
    limit: int = 50
) -> list[Transaction]:
    """Most recent ledger entries for a user, newest first."""
    stmt = (
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
    )
    return list(db.scalars(stmt))


def transaction_summary(db: Session, user_id: str) -> dict[str, Any]:
    """
    Lifetime coin totals for a user.

    Returns:
        dict: ``total_earned`` (sum of credits), ``total_spent`` (sum of
            debits, as a positive number) and ``by_type`` (net amount per
            transaction type, zero for types never seen)
    """
    amount = Transaction.amount
    stmt = (
        select(
            Transaction.type,
            func.sum(amount),
            func.sum(case((amount > 0, amount), else_=0)),
            func.sum(case((amount < 0, -amount), else_=0)),
        )
        .where(Transaction.user_id == user_id)
        .group_by(Transaction.type)
    )

    by_type = {t.value: 0 for t in TransactionType}
    total_earned = 0
    total_spent = 0
    for transaction_type, net, earned, spent in db.execute(stmt):
        by_type[transaction_type.value] = int(net)
        total_earned += int(earned)
        total_spent += int(spent)

    return {
        "total_earned": total_earned,
        "total_spent": total_spent,
        "by_type": by_type,
    }
