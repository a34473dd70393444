import uuid
from enum import Enum

from subscription_service.extensions import db
from subscription_service.utils import isoformat, utcnow


class BillingCycle(str, Enum):
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class SubscriptionPlan(db.Model):
    __tablename__ = "subscription_plans"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    billing_cycle = db.Column(db.String(20), nullable=False, default=BillingCycle.MONTHLY.value)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    points_awarded = db.Column(db.Integer, nullable=False, default=0)
    stripe_price_id = db.Column(db.String(255), unique=True, nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("name", "billing_cycle", name="uq_plan_name_cycle"),
    )

    def __repr__(self):
        return f"<SubscriptionPlan {self.name} {self.billing_cycle}>"

    @classmethod
    def find_by_stripe_price_id(cls, price_id):
        if not price_id:
            return None
        return cls.query.filter_by(stripe_price_id=price_id).first()

    def to_dict(self):
        return {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "billing_cycle": self.billing_cycle,
            "price": str(self.price),
            "currency": self.currency,
            "points_awarded": self.points_awarded,
            "stripe_price_id": self.stripe_price_id,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
        }
