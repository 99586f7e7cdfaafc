from __future__ import annotations

from ..extensions import db
from chaintrace.time_utils import to_utc_z


PARTNERSHIP_PENDING = "pending"
PARTNERSHIP_ACCEPTED = "accepted"
PARTNERSHIP_REJECTED = "rejected"

QR_ACCESS_PENDING = "pending"
QR_ACCESS_APPROVED = "approved"
QR_ACCESS_REJECTED = "rejected"


def partnership_pair_key(user_a_id: int, user_b_id: int) -> str:
    """Order-independent key for the {sender, receiver} pair."""
    low, high = sorted((user_a_id, user_b_id))
    return f"{low}:{high}"


class Partnership(db.Model):
    """
    Relationship between two users that permits gated transfers.

    LIFECYCLE:
    1. pending: created by sender
    2. accepted / rejected: set once, by the receiver only

    No revocation. pair_key makes the unordered pair unique, so A->B and
    B->A cannot both exist.
    """
    __tablename__ = "partnerships"
    __table_args__ = (
        db.UniqueConstraint("pair_key", name="uq_partnerships_pair"),
        db.Index("ix_partnerships_receiver_status", "receiver_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    pair_key = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PARTNERSHIP_PENDING, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sender = db.relationship("User", foreign_keys=[sender_id])
    receiver = db.relationship("User", foreign_keys=[receiver_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sender": self.sender.to_summary() if self.sender else None,
            "receiver": self.receiver.to_summary() if self.receiver else None,
            "status": self.status,
            "createdAt": to_utc_z(self.created_at),
            "respondedAt": to_utc_z(self.responded_at) if self.responded_at else None,
        }


class QRAccessRequest(db.Model):
    """
    Retailer request to see the QR codes of one manufacturer batch.

    Independent of Partnership. Approval grants QR visibility on every
    product of the batch to the retailer.
    """
    __tablename__ = "qr_access_requests"
    __table_args__ = (
        db.UniqueConstraint("batch_id", "retailer_id", "manufacturer_id", name="uq_qr_access_batch_retailer_mfr"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    retailer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    manufacturer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=QR_ACCESS_PENDING, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    batch = db.relationship("Batch")
    retailer = db.relationship("User", foreign_keys=[retailer_id])
    manufacturer = db.relationship("User", foreign_keys=[manufacturer_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batchId": self.batch_id,
            "retailer": self.retailer.to_summary() if self.retailer else None,
            "manufacturer": self.manufacturer.to_summary() if self.manufacturer else None,
            "status": self.status,
            "createdAt": to_utc_z(self.created_at),
            "respondedAt": to_utc_z(self.responded_at) if self.responded_at else None,
        }
