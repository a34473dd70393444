import uuid
from enum import Enum

from sqlalchemy import event

from subscription_service.errors import LedgerImmutableError
from subscription_service.extensions import db
from subscription_service.utils import isoformat, utcnow


class TransactionType(str, Enum):
    EARN = "EARN"
    REDEEM = "REDEEM"
    EXPIRED = "EXPIRED"


class UserPointsWallet(db.Model):
    """Running balance per user, kept in lock-step with the ledger."""

    __tablename__ = "user_points_wallet"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    user_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    total_points = db.Column(db.Integer, nullable=False, default=0)
    lifetime_earned = db.Column(db.Integer, nullable=False, default=0)
    lifetime_spent = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    transactions = db.relationship(
        "PointsTransaction",
        backref="wallet",
        lazy="dynamic",
        order_by="PointsTransaction.created_at.desc()",
    )

    __table_args__ = (
        db.CheckConstraint("total_points >= 0", name="non_negative_points_balance"),
    )

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "total_points": self.total_points,
            "lifetime_earned": self.lifetime_earned,
            "lifetime_spent": self.lifetime_spent,
            "updated_at": isoformat(self.updated_at),
        }


class PointsTransaction(db.Model):
    """
    Immutable ledger entry. ``points`` is the signed delta applied to the wallet.

    ``idempotency_key`` is optional; when present the unique constraint makes a
    second posting for the same key impossible.
    """

    __tablename__ = "points_transactions"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    wallet_id = db.Column(db.Uuid, db.ForeignKey("user_points_wallet.id"), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    transaction_type = db.Column(db.String(20), nullable=False)
    points = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)
    reference_type = db.Column(db.String(50), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)
    idempotency_key = db.Column(db.String(255), unique=True, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        db.Index("idx_points_reference", "reference_type", "reference_id"),
    )

    def to_dict(self):
        return {
            "id": str(self.id),
            "transaction_type": self.transaction_type,
            "points": self.points,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_at": isoformat(self.created_at),
        }


@event.listens_for(PointsTransaction, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise LedgerImmutableError()


@event.listens_for(PointsTransaction, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise LedgerImmutableError()
