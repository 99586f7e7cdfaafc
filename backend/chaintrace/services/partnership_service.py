# Overview: Partnership requests between users, and the transfer-time partnership gate.

"""
Partnerships

A partnership is requested by one user (sender) and accepted or rejected
once by the other (receiver). An accepted partnership, in either direction,
is the precondition for transferring a gated product between the two.
"""

from sqlalchemy.exc import IntegrityError

from ..errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PartnershipRequiredError,
    ValidationError,
)
from ..extensions import db
from ..models import Partnership, User, partnership_pair_key
from ..models.network import (
    PARTNERSHIP_ACCEPTED,
    PARTNERSHIP_PENDING,
    PARTNERSHIP_REJECTED,
)
from chaintrace.time_utils import utcnow
from .auth_service import find_user_by_wallet


def request_partnership(sender: User, receiver_id) -> Partnership:
    if receiver_id in (None, ""):
        raise ValidationError("receiverId is required")
    try:
        receiver_id = int(receiver_id)
    except (TypeError, ValueError):
        raise ValidationError("receiverId must be an integer")

    receiver = db.session.get(User, receiver_id)
    if not receiver:
        raise NotFoundError("Receiver not found")
    if receiver.id == sender.id:
        raise ValidationError("Cannot partner with yourself")

    pair_key = partnership_pair_key(sender.id, receiver.id)
    if db.session.query(Partnership).filter_by(pair_key=pair_key).first():
        raise ConflictError("Partnership already exists")

    partnership = Partnership(
        sender_id=sender.id,
        receiver_id=receiver.id,
        pair_key=pair_key,
        status=PARTNERSHIP_PENDING,
    )
    db.session.add(partnership)
    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent request for the same pair
        db.session.rollback()
        raise ConflictError("Partnership already exists")
    return partnership


def respond_to_partnership(user: User, partnership_id: int, status: str) -> Partnership:
    """Accept or reject a pending partnership. Only the receiver may respond, once."""
    if status not in (PARTNERSHIP_ACCEPTED, PARTNERSHIP_REJECTED):
        raise ValidationError("Status must be accepted or rejected")

    partnership = db.session.get(Partnership, partnership_id)
    if not partnership:
        raise NotFoundError("Partnership not found")
    if partnership.receiver_id != user.id:
        raise AuthorizationError("Only receiver can respond")
    if partnership.status != PARTNERSHIP_PENDING:
        raise ValidationError("Already responded")

    partnership.status = status
    partnership.responded_at = utcnow()
    db.session.commit()
    return partnership


def list_partnerships(user: User) -> list[Partnership]:
    """All partnerships the user is part of, newest first."""
    return (
        db.session.query(Partnership)
        .filter(db.or_(Partnership.sender_id == user.id, Partnership.receiver_id == user.id))
        .order_by(Partnership.created_at.desc(), Partnership.id.desc())
        .all()
    )


def pending_requests(user: User) -> list[Partnership]:
    """Pending partnerships where the user is the receiver."""
    return (
        db.session.query(Partnership)
        .filter_by(receiver_id=user.id, status=PARTNERSHIP_PENDING)
        .order_by(Partnership.created_at.desc(), Partnership.id.desc())
        .all()
    )


def has_accepted_partnership(user_a_id: int, user_b_id: int) -> bool:
    return db.session.query(Partnership.id).filter_by(
        pair_key=partnership_pair_key(user_a_id, user_b_id),
        status=PARTNERSHIP_ACCEPTED,
    ).first() is not None


def check_partnership_for_transfer(sender: User, recipient_wallet: str) -> User:
    """
    Gate for transferring a gated product to recipient_wallet.

    Returns the recipient user. Raises PartnershipRequiredError when the
    recipient is unknown or no accepted partnership exists.
    """
    recipient = find_user_by_wallet(recipient_wallet)
    if not recipient:
        raise PartnershipRequiredError("Receiver not found in system")
    if not has_accepted_partnership(sender.id, recipient.id):
        raise PartnershipRequiredError("Partnership required. Request partnership first.")
    return recipient
