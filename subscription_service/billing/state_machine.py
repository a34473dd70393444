import logging
from typing import NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError

from subscription_service.billing.status_mapper import map_remote_status
from subscription_service.errors import InvalidStateTransition
from subscription_service.extensions import db
from subscription_service.models.subscription import (
    SubscriptionHistory,
    SubscriptionStatus,
    UserSubscription,
)
from subscription_service.utils import utcnow

logger = logging.getLogger(__name__)

ACTIVE = SubscriptionStatus.ACTIVE.value
PENDING = SubscriptionStatus.PENDING.value
CANCELLED = SubscriptionStatus.CANCELLED.value
EXPIRED = SubscriptionStatus.EXPIRED.value
LIVE_STATUSES = (ACTIVE, PENDING)

DUPLICATE_CANCELLED = "duplicate_cancelled"

# Transitions the service may make on its own authority. Anything the
# processor reports is applied as-is through apply_remote.
LOCAL_TRANSITIONS = {
    PENDING: {PENDING, ACTIVE, CANCELLED, EXPIRED},
    ACTIVE: {ACTIVE, CANCELLED, EXPIRED},
    EXPIRED: {EXPIRED, CANCELLED},
    CANCELLED: {CANCELLED},
}


class Transition(NamedTuple):
    previous: Optional[str]
    current: str

    @property
    def changed(self):
        return self.previous != self.current

    @property
    def activated(self):
        return self.current == ACTIVE and self.previous != ACTIVE


class SubscriptionStateMachine:
    """
    The only writer of UserSubscription status and period fields.

    Lookups that precede a write take a row lock; the mirror's version
    column catches whatever a lock cannot (e.g. SQLite in tests).
    """

    @staticmethod
    def lock_by_remote_id(stripe_subscription_id):
        if not stripe_subscription_id:
            return None
        return (
            UserSubscription.query
            .filter_by(stripe_subscription_id=stripe_subscription_id)
            .with_for_update()
            .first()
        )

    @staticmethod
    def lock_by_id(subscription_id):
        return (
            UserSubscription.query
            .filter_by(id=subscription_id)
            .with_for_update()
            .first()
        )

    @staticmethod
    def lock_latest_pending(user_id):
        return (
            UserSubscription.query
            .filter_by(user_id=user_id, status=PENDING)
            .order_by(UserSubscription.created_at.desc())
            .with_for_update()
            .first()
        )

    @staticmethod
    def find_user_by_customer(stripe_customer_id):
        """User id of any existing mirror for a processor customer."""
        if not stripe_customer_id:
            return None
        mirror = (
            UserSubscription.query
            .filter_by(stripe_customer_id=stripe_customer_id)
            .order_by(UserSubscription.created_at.desc())
            .first()
        )
        return mirror.user_id if mirror else None

    @staticmethod
    def held_as_duplicate(mirror, remote):
        """
        True when ``mirror`` was cancelled as a duplicate and the user still
        has another live mirror. Applying ``remote`` would then revive it next
        to the subscription that superseded it.
        """
        if mirror.status != CANCELLED or map_remote_status(remote.status).value == CANCELLED:
            return False
        last = (
            SubscriptionHistory.query
            .filter_by(subscription_id=mirror.id)
            .order_by(SubscriptionHistory.id.desc())
            .first()
        )
        if last is None or last.action != DUPLICATE_CANCELLED:
            return False
        other_live = (
            UserSubscription.query
            .filter(
                UserSubscription.user_id == mirror.user_id,
                UserSubscription.id != mirror.id,
                UserSubscription.status.in_(LIVE_STATUSES),
            )
            .first()
        )
        return other_live is not None

    @staticmethod
    def new_mirror(user_id, *, plan=None):
        mirror = UserSubscription(user_id=user_id, status=PENDING, auto_renew=True, plan=plan)
        db.session.add(mirror)
        return mirror

    @staticmethod
    def apply_remote(mirror, remote, *, plan=None, reason=None, created=False):
        """
        Overwrite status, period and linkage from a processor subscription.

        Returns the Transition; ``previous`` is None for a row created in
        this unit of work.
        """
        if mirror.stripe_subscription_id and mirror.stripe_subscription_id != remote.id:
            raise InvalidStateTransition(
                f"Mirror {mirror.id} is linked to {mirror.stripe_subscription_id}, not {remote.id}"
            )

        previous = None if created else mirror.status
        new_status = map_remote_status(remote.status).value

        mirror.stripe_subscription_id = remote.id
        if remote.customer_id:
            mirror.stripe_customer_id = remote.customer_id
        if remote.current_period_start:
            mirror.start_date = remote.current_period_start
        if remote.current_period_end:
            mirror.end_date = remote.current_period_end
        if mirror.start_date is None:
            mirror.start_date = utcnow()
        mirror.auto_renew = not remote.cancel_at_period_end
        if plan is not None and mirror.plan_id != plan.id:
            mirror.plan = plan
        mirror.status = new_status

        transition = Transition(previous, new_status)
        if created or transition.changed:
            SubscriptionHistory.log_event(
                mirror,
                action="created" if created else "remote_sync",
                previous_status=previous,
                new_status=new_status,
                reason=reason,
            )
            logger.info(
                "Mirror status applied from processor",
                extra={
                    "subscription_id": str(mirror.id) if mirror.id else None,
                    "stripe_subscription_id": remote.id,
                    "remote_status": remote.status,
                    "previous_status": previous,
                    "new_status": new_status,
                },
            )
        return transition

    @staticmethod
    def apply_remote_status(mirror, status, *, reason, action="remote_event"):
        """Set a status implied by a processor event that carries no subscription object."""
        status = SubscriptionStatus(status).value
        previous = mirror.status
        if status == CANCELLED:
            mirror.auto_renew = False
        mirror.status = status
        transition = Transition(previous, status)
        if transition.changed:
            SubscriptionHistory.log_event(mirror, action, previous, status, reason)
        return transition

    @staticmethod
    def transition_locally(mirror, status, *, reason, action="local_transition", start_date=None):
        """
        Make a status change on the service's own authority.

        Raises InvalidStateTransition for moves the local state machine does
        not allow, e.g. reviving a CANCELLED mirror without the processor.
        """
        status = SubscriptionStatus(status).value
        previous = mirror.status
        if status not in LOCAL_TRANSITIONS.get(previous, set()):
            raise InvalidStateTransition(
                f"Cannot move subscription {mirror.id} from {previous} to {status}",
                details={"from": previous, "to": status},
            )

        if status == CANCELLED:
            mirror.auto_renew = False
        if start_date is not None:
            mirror.start_date = start_date
        mirror.status = status

        transition = Transition(previous, status)
        if transition.changed:
            SubscriptionHistory.log_event(mirror, action, previous, status, reason)
            logger.info(
                "Mirror status changed locally",
                extra={
                    "subscription_id": str(mirror.id),
                    "user_id": mirror.user_id,
                    "previous_status": previous,
                    "new_status": status,
                    "reason": reason,
                },
            )
        return transition

    @staticmethod
    def flush():
        try:
            db.session.flush()
        except SQLAlchemyError:
            db.session.rollback()
            raise
