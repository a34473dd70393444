import uuid
from enum import Enum

from subscription_service.extensions import db
from subscription_service.utils import isoformat, utcnow


class EarningType(str, Enum):
    COURSE_ENROLLMENT = "COURSE_ENROLLMENT"
    SUBSCRIPTION_REVENUE_SHARE = "SUBSCRIPTION_REVENUE_SHARE"
    BONUS = "BONUS"
    ADJUSTMENT = "ADJUSTMENT"


class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class InstructorEarning(db.Model):
    """
    Accounting entry owed to instructors. Revenue-share pool entries have no
    instructor until distribution assigns one.
    """

    __tablename__ = "instructor_earnings"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    instructor_id = db.Column(db.String(64), nullable=True, index=True)
    course_id = db.Column(db.String(64), nullable=True)
    subscription_id = db.Column(db.Uuid, db.ForeignKey("user_subscriptions.id"), nullable=True, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    earning_type = db.Column(db.String(30), nullable=False)
    description = db.Column(db.Text, nullable=True)
    source_reference = db.Column(db.String(255), unique=True, nullable=True)
    payout_id = db.Column(db.Uuid, db.ForeignKey("instructor_payouts.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": str(self.id),
            "instructor_id": self.instructor_id,
            "course_id": self.course_id,
            "subscription_id": str(self.subscription_id) if self.subscription_id else None,
            "amount": str(self.amount),
            "currency": self.currency,
            "earning_type": self.earning_type,
            "description": self.description,
            "payout_id": str(self.payout_id) if self.payout_id else None,
            "created_at": isoformat(self.created_at),
        }


class InstructorPayout(db.Model):
    __tablename__ = "instructor_payouts"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    instructor_id = db.Column(db.String(64), nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    status = db.Column(db.String(20), nullable=False, default=PayoutStatus.PENDING.value, index=True)
    period_start = db.Column(db.DateTime, nullable=False)
    period_end = db.Column(db.DateTime, nullable=False)
    stripe_payout_id = db.Column(db.String(255), nullable=True)
    stripe_transfer_id = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    failure_reason = db.Column(db.String(500), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    earnings = db.relationship("InstructorEarning", backref="payout", lazy="dynamic")

    def to_dict(self):
        return {
            "id": str(self.id),
            "instructor_id": self.instructor_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status,
            "period_start": isoformat(self.period_start),
            "period_end": isoformat(self.period_end),
            "stripe_payout_id": self.stripe_payout_id,
            "description": self.description,
            "failure_reason": self.failure_reason,
            "paid_at": isoformat(self.paid_at),
            "created_at": isoformat(self.created_at),
        }
