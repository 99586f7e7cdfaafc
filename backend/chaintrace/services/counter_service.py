# Overview: Atomic sequence allocation (global counters and per-user batch numbers).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import GlobalCounter, User
from .concurrency import run_with_retry


NFT_TOKEN_COUNTER = "nftTokenId"


class CounterError(Exception):
    """Raised when a sequence cannot be allocated."""
    pass


def next_counter(name: str) -> int:
    """
    Atomically allocate the next value of a named global sequence.

    The first value of a new sequence is 1. The increment is a single
    UPDATE ... SET value = value + 1, read back inside the same transaction,
    so two concurrent callers never observe the same value. The first-use
    INSERT is guarded by the unique name constraint; the loser of that race
    rolls back and takes the UPDATE path.

    The caller owns the commit.
    """
    if not name:
        raise CounterError("counter name is required")

    stmt = (
        update(GlobalCounter)
        .where(GlobalCounter.name == name)
        .values(value=GlobalCounter.value + 1)
    )

    def _read() -> int:
        db.session.flush()
        return (
            db.session.query(GlobalCounter.value)
            .filter_by(name=name)
            .scalar()
        )

    def _op() -> int:
        result = db.session.execute(stmt)
        if result.rowcount:
            return _read()

        db.session.add(GlobalCounter(name=name, value=1))
        try:
            db.session.flush()
            return 1
        except IntegrityError:
            db.session.rollback()
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            return _read()

    return run_with_retry(_op)


def next_batch_number(user_id: int) -> int:
    """
    Atomically increment User.batch_counter and return the new value.

    This is the manufacturer-relative batch number. The caller owns the commit.
    """
    stmt = (
        update(User)
        .where(User.id == user_id)
        .values(batch_counter=User.batch_counter + 1)
    )

    def _op() -> int:
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise CounterError(f"User {user_id} not found")
        db.session.flush()
        return (
            db.session.query(User.batch_counter)
            .filter_by(id=user_id)
            .scalar()
        )

    return run_with_retry(_op)
