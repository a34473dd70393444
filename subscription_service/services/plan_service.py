import logging
import os
from decimal import Decimal

from subscription_service.errors import PlanNotFoundError
from subscription_service.extensions import db
from subscription_service.models.plan import BillingCycle, SubscriptionPlan

logger = logging.getLogger(__name__)

DEFAULT_PLANS = (
    ("Basic", BillingCycle.MONTHLY, Decimal("9.99"), 100),
    ("Basic", BillingCycle.YEARLY, Decimal("99.99"), 1200),
    ("Plus", BillingCycle.MONTHLY, Decimal("19.99"), 250),
    ("Plus", BillingCycle.YEARLY, Decimal("199.99"), 3000),
    ("Pro", BillingCycle.MONTHLY, Decimal("39.99"), 500),
    ("Pro", BillingCycle.YEARLY, Decimal("399.99"), 6000),
)


class PlanService:
    """Read access to the plan catalog."""

    @staticmethod
    def find_plan_by_remote_price_id(price_id):
        plan = SubscriptionPlan.find_by_stripe_price_id(price_id)
        if plan is None and price_id:
            logger.warning("No plan configured for Stripe price", extra={"price_id": price_id})
        return plan

    @staticmethod
    def get_plan(plan_id):
        plan = db.session.get(SubscriptionPlan, plan_id)
        if plan is None:
            raise PlanNotFoundError(details={"plan_id": str(plan_id)})
        return plan

    @staticmethod
    def list_active_plans():
        return (
            SubscriptionPlan.query
            .filter_by(is_active=True)
            .order_by(SubscriptionPlan.price.asc())
            .all()
        )


def seed_default_plans():
    """
    Insert the default catalog, skipping plans that already exist.

    Price ids come from STRIPE_PRICE_<NAME>_<CYCLE>, e.g. STRIPE_PRICE_PRO_MONTHLY.
    """
    created = []
    for name, cycle, price, points in DEFAULT_PLANS:
        existing = SubscriptionPlan.query.filter_by(name=name, billing_cycle=cycle.value).first()
        if existing:
            continue
        plan = SubscriptionPlan(
            name=name,
            description=f"{name} {cycle.value.lower()} plan",
            billing_cycle=cycle.value,
            price=price,
            currency="USD",
            points_awarded=points,
            stripe_price_id=os.getenv(f"STRIPE_PRICE_{name.upper()}_{cycle.value}"),
            is_active=True,
        )
        db.session.add(plan)
        created.append(plan)

    db.session.commit()
    logger.info("Default plans seeded", extra={"created": len(created)})
    return created
