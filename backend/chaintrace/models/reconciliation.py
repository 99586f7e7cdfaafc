from __future__ import annotations

from ..extensions import db
from chaintrace.time_utils import to_utc_z


class ReconciliationDefect(db.Model):
    """
    A chain operation that confirmed while its off-chain mirror write failed.

    WHY: The chain step cannot be undone. The row records what should have
    been mirrored so an operator can reprocess it (flask reconcile ...).

    IMMUTABLE except for the resolved flag. Written in its own transaction,
    after the failed mirror transaction has been rolled back.
    """
    __tablename__ = "reconciliation_defects"
    __table_args__ = (
        db.Index("ix_reconciliation_defects_resolved_created", "resolved", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. "product.create", "batch.create", "product.transfer"
    operation = db.Column(db.String(64), nullable=False, index=True)
    # Chain-side reference: tx hash, product id or batch id
    chain_ref = db.Column(db.String(128), nullable=True, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    detail = db.Column(db.Text, nullable=False)
    payload = db.Column(db.JSON, nullable=True)

    resolved = db.Column(db.Boolean, nullable=False, default=False)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolution_note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operation": self.operation,
            "chainRef": self.chain_ref,
            "actorUserId": self.actor_user_id,
            "detail": self.detail,
            "payload": self.payload,
            "resolved": self.resolved,
            "resolvedAt": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "resolutionNote": self.resolution_note,
            "createdAt": to_utc_z(self.created_at),
        }
