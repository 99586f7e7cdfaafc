# Overview: Ledger of chain-confirmed operations whose off-chain mirror write failed.

"""
Reconciliation defects

WHY: A confirmed chain transaction cannot be rolled back. When the mirror
write that follows it fails, the mirror transaction is rolled back and the
divergence is recorded here (own transaction) and logged at ERROR on the
"chaintrace.reconciliation" logger, so an operator can reprocess it.

A creation whose receipt timed out lands here too, as "<op>.in_doubt":
the transaction may still confirm and then needs mirroring by hand.
"""
from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..errors import ChainTimeoutError, ConsistencyError, NotFoundError
from ..extensions import db
from ..models import ReconciliationDefect
from chaintrace.time_utils import utcnow

logger = logging.getLogger("chaintrace.reconciliation")


def record_defect(
    operation: str,
    detail: str,
    *,
    chain_ref: str | None = None,
    actor_user_id: int | None = None,
    payload: dict | None = None,
) -> ReconciliationDefect:
    """Persist a defect in its own transaction. The caller must have rolled back first."""
    defect = ReconciliationDefect(
        operation=operation,
        chain_ref=chain_ref,
        actor_user_id=actor_user_id,
        detail=detail,
        payload=payload,
    )
    db.session.add(defect)
    db.session.commit()
    return defect


def mirror_failure(
    exc: Exception,
    operation: str,
    *,
    chain_ref: str | None = None,
    actor_user_id: int | None = None,
    payload: dict | None = None,
) -> ConsistencyError:
    """
    Roll back the failed mirror write, record the defect and build the
    ConsistencyError to raise. Usage: raise mirror_failure(...) from exc
    """
    db.session.rollback()
    detail = f"{type(exc).__name__}: {exc}"

    defect_id = None
    try:
        defect_id = record_defect(
            operation,
            detail,
            chain_ref=chain_ref,
            actor_user_id=actor_user_id,
            payload=payload,
        ).id
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Could not persist reconciliation defect for %s (%s)", operation, chain_ref)

    logger.error(
        "Mirror write failed after chain confirmation: operation=%s chain_ref=%s defect=%s detail=%s",
        operation, chain_ref, defect_id, detail,
    )
    return ConsistencyError(
        f"{operation} confirmed on chain ({chain_ref}) but the off-chain record was not saved",
        defect_id=defect_id,
    )


def record_in_doubt(
    exc: ChainTimeoutError,
    operation: str,
    *,
    actor_user_id: int | None = None,
    payload: dict | None = None,
) -> ReconciliationDefect | None:
    """
    Record a submitted transaction whose receipt never arrived.

    The operation is stored as "<operation>.in_doubt" with the tx hash as
    chain_ref; exc.defect_id is set so the caller can re-raise it as is.
    """
    db.session.rollback()
    chain_ref = f"tx:{exc.tx_hash}" if exc.tx_hash else None
    try:
        defect = record_defect(
            f"{operation}.in_doubt",
            f"{type(exc).__name__}: {exc}",
            chain_ref=chain_ref,
            actor_user_id=actor_user_id,
            payload=payload,
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Could not persist in-doubt record for %s (%s)", operation, chain_ref)
        return None

    exc.defect_id = defect.id
    logger.error(
        "Chain outcome unknown: operation=%s chain_ref=%s defect=%s", operation, chain_ref, defect.id,
    )
    return defect


def list_defects(resolved: bool | None = False, limit: int = 100) -> list[ReconciliationDefect]:
    query = db.session.query(ReconciliationDefect)
    if resolved is not None:
        query = query.filter(ReconciliationDefect.resolved.is_(resolved))
    return query.order_by(ReconciliationDefect.created_at.desc(), ReconciliationDefect.id.desc()).limit(limit).all()


def resolve_defect(defect_id: int, note: str | None = None) -> ReconciliationDefect:
    defect = db.session.get(ReconciliationDefect, defect_id)
    if not defect:
        raise NotFoundError(f"Defect {defect_id} not found")
    defect.resolved = True
    defect.resolved_at = utcnow()
    defect.resolution_note = note
    db.session.commit()
    return defect
