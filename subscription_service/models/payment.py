import uuid
from enum import Enum

from subscription_service.extensions import db
from subscription_service.utils import isoformat, utcnow


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    subscription_id = db.Column(db.Uuid, db.ForeignKey("user_subscriptions.id"), nullable=True, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_method = db.Column(db.String(50), nullable=True, default="STRIPE")
    stripe_payment_intent_id = db.Column(db.String(255), unique=True, nullable=True, index=True)
    stripe_invoice_id = db.Column(db.String(255), unique=True, nullable=True, index=True)
    failure_reason = db.Column(db.Text, nullable=True)
    processed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    subscription = db.relationship("UserSubscription", backref=db.backref("payments", lazy="dynamic"))

    def __repr__(self):
        return f"<Payment {self.id} {self.status} {self.amount} {self.currency}>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "subscription_id": str(self.subscription_id) if self.subscription_id else None,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status,
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "stripe_invoice_id": self.stripe_invoice_id,
            "failure_reason": self.failure_reason,
            "processed_at": isoformat(self.processed_at),
            "created_at": isoformat(self.created_at),
        }
