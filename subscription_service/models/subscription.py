# subscription.py
import uuid
from enum import Enum

from subscription_service.extensions import db
from subscription_service.utils import isoformat, utcnow


class SubscriptionStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class UserSubscription(db.Model):
    """
    Local mirror of one processor subscription.

    Status and period fields are written only by the billing state machine.
    ``version`` drives SQLAlchemy's optimistic concurrency check, so two
    handlers racing on the same row cannot silently overwrite each other.
    """

    __tablename__ = "user_subscriptions"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    plan_id = db.Column(db.Uuid, db.ForeignKey("subscription_plans.id"), nullable=True, index=True)

    stripe_subscription_id = db.Column(db.String(255), unique=True, nullable=True, index=True)
    stripe_customer_id = db.Column(db.String(255), nullable=True, index=True)

    status = db.Column(db.String(20), nullable=False, default=SubscriptionStatus.PENDING.value, index=True)
    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True, index=True)
    auto_renew = db.Column(db.Boolean, nullable=False, default=True)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    plan = db.relationship("SubscriptionPlan", lazy="joined")
    history = db.relationship(
        "SubscriptionHistory",
        backref="subscription",
        lazy="dynamic",
        order_by="SubscriptionHistory.created_at",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.Index("idx_user_subscription_status", "user_id", "status"),
        db.CheckConstraint(
            "status IN ('PENDING', 'ACTIVE', 'CANCELLED', 'EXPIRED')",
            name="valid_user_subscription_status",
        ),
    )

    def __repr__(self):
        return f"<UserSubscription {self.id} user={self.user_id} status={self.status}>"

    @classmethod
    def find_by_stripe_id(cls, stripe_subscription_id):
        if not stripe_subscription_id:
            return None
        return cls.query.filter_by(stripe_subscription_id=stripe_subscription_id).first()

    @property
    def is_active(self):
        return self.status == SubscriptionStatus.ACTIVE.value

    def to_dict(self):
        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "plan": self.plan.to_dict() if self.plan else None,
            "status": self.status,
            "stripe_subscription_id": self.stripe_subscription_id,
            "start_date": isoformat(self.start_date),
            "end_date": isoformat(self.end_date),
            "auto_renew": self.auto_renew,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class SubscriptionHistory(db.Model):
    """Append-only audit trail of mirror status changes."""

    __tablename__ = "subscription_history"

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(
        db.Uuid, db.ForeignKey("user_subscriptions.id"), nullable=False, index=True
    )
    action = db.Column(db.String(50), nullable=False)
    previous_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @classmethod
    def log_event(cls, subscription, action, previous_status, new_status, reason=None):
        entry = cls(
            subscription=subscription,
            action=action,
            previous_status=previous_status,
            new_status=new_status,
            reason=reason,
        )
        db.session.add(entry)
        return entry

    def to_dict(self):
        return {
            "action": self.action,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "reason": self.reason,
            "created_at": isoformat(self.created_at),
        }
