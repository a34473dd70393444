import logging

from subscription_service.billing import SubscriptionStateMachine, Transition
from subscription_service.services.plan_service import PlanService
from subscription_service.services.points_service import PointsService

logger = logging.getLogger(__name__)

SUBSCRIPTION_REFERENCE = "SUBSCRIPTION"
RENEWAL_REFERENCE = "SUBSCRIPTION_RENEWAL"


def period_award_key(mirror):
    """
    Idempotency key for the one plan award a billing period earns.

    Activation and renewal share it, so a period paid for after a lapse
    is credited once whichever event reaches the service first.
    """
    if mirror.start_date is None:
        return None
    return f"subscription:{mirror.id}:period:{mirror.start_date.isoformat()}"


class ReconciliationService:
    """
    Applies processor subscription objects to the local mirror and posts the
    points those changes earn. Shared by the webhook handlers, the
    synchronous create flow and the expiry job.
    """

    @classmethod
    def sync_from_remote(cls, remote, *, user_id=None, reason=None):
        """
        Upsert the mirror for ``remote`` under a row lock.

        Returns ``(mirror, transition)``, or None when no owning user can be
        resolved for a subscription the service has never seen.
        """
        mirror = SubscriptionStateMachine.lock_by_remote_id(remote.id)
        created = False
        plan = PlanService.find_plan_by_remote_price_id(remote.primary_price_id)

        if mirror is None:
            owner = (
                user_id
                or remote.user_id
                or SubscriptionStateMachine.find_user_by_customer(remote.customer_id)
            )
            if not owner:
                logger.warning(
                    "Cannot resolve user for processor subscription, skipping",
                    extra={"stripe_subscription_id": remote.id, "customer_id": remote.customer_id},
                )
                return None
            mirror = SubscriptionStateMachine.new_mirror(owner, plan=plan)
            created = True
        elif SubscriptionStateMachine.held_as_duplicate(mirror, remote):
            logger.warning(
                "Ignoring processor state for a superseded duplicate subscription",
                extra={
                    "subscription_id": str(mirror.id),
                    "stripe_subscription_id": remote.id,
                    "remote_status": remote.status,
                },
            )
            return mirror, Transition(mirror.status, mirror.status)

        transition = SubscriptionStateMachine.apply_remote(
            mirror, remote, plan=plan, reason=reason, created=created
        )
        SubscriptionStateMachine.flush()

        if transition.activated:
            cls.award_activation_points(mirror)
        return mirror, transition

    @staticmethod
    def award_activation_points(mirror):
        plan = mirror.plan
        if plan is None or not plan.points_awarded:
            logger.warning(
                "Subscription activated without a points-bearing plan",
                extra={"subscription_id": str(mirror.id), "plan_id": str(mirror.plan_id) if mirror.plan_id else None},
            )
            return None
        return PointsService.award_points(
            user_id=mirror.user_id,
            points=plan.points_awarded,
            description=f"New subscription to {plan.name} plan",
            reference_type=SUBSCRIPTION_REFERENCE,
            reference_id=str(mirror.id),
            idempotency_key=period_award_key(mirror),
        )

    @staticmethod
    def award_renewal_points(mirror, invoice):
        plan = mirror.plan
        if plan is None or not plan.points_awarded:
            logger.warning(
                "Renewal on a subscription without a points-bearing plan",
                extra={"subscription_id": str(mirror.id), "invoice_id": invoice.id},
            )
            return None
        return PointsService.award_points(
            user_id=mirror.user_id,
            points=plan.points_awarded,
            description=f"Subscription renewal for {plan.name} plan",
            reference_type=RENEWAL_REFERENCE,
            reference_id=invoice.id,
            idempotency_key=period_award_key(mirror) or f"invoice:{invoice.id}:renewal",
        )
