import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from subscription_service.billing import SubscriptionStateMachine
from subscription_service.errors import (
    ActiveSubscriptionExistsError,
    InvalidStateTransition,
    PlanMisconfiguredError,
    PlanNotFoundError,
    RemoteProcessorError,
    SubscriptionNotFoundError,
)
from subscription_service.extensions import db
from subscription_service.locks import redis_lock
from subscription_service.models.subscription import SubscriptionStatus, UserSubscription
from subscription_service.services.payment_service import PaymentService, minor_to_major
from subscription_service.services.plan_service import PlanService
from subscription_service.services.reconciliation_service import ReconciliationService
from subscription_service.services.stripe_service import get_stripe_service
from subscription_service.utils import utcnow
from subscription_service.webhooks.events import PayloadDecodeError, RemoteSubscription, as_mapping

logger = logging.getLogger(__name__)

ACTIVE = SubscriptionStatus.ACTIVE.value
PENDING = SubscriptionStatus.PENDING.value


def _decode_subscription(obj):
    try:
        return RemoteSubscription.from_mapping(as_mapping(obj))
    except PayloadDecodeError:
        logger.error("Processor subscription not decodable", extra={"object_id": getattr(obj, "id", None)})
        return None


def _first_payment(subscription):
    """(payment_intent mapping, client_secret) of a new subscription's first invoice."""
    invoice = as_mapping(as_mapping(subscription).get("latest_invoice")) or {}
    intent = as_mapping(invoice.get("payment_intent"))
    if intent:
        return intent, intent.get("client_secret")
    # Newer API versions expose the secret on the invoice instead
    secret = as_mapping(invoice.get("confirmation_secret")) or {}
    return None, secret.get("client_secret")


class SubscriptionService:
    """Synchronous subscription flows driven by the API."""

    @staticmethod
    def get_user_subscriptions(user_id):
        return (
            UserSubscription.query
            .filter_by(user_id=user_id)
            .order_by(UserSubscription.created_at.desc())
            .all()
        )

    @staticmethod
    def get_active_subscription(user_id):
        return (
            UserSubscription.query
            .filter_by(user_id=user_id, status=ACTIVE)
            .order_by(UserSubscription.created_at.desc())
            .first()
        )

    @staticmethod
    def _ensure_no_active_subscription(user_id, stripe_service):
        """
        Raise ActiveSubscriptionExistsError when the user holds a subscription
        the processor confirms is active. Stale local ACTIVE rows are corrected.
        """
        active = (
            UserSubscription.query
            .filter_by(user_id=user_id, status=ACTIVE)
            .with_for_update()
            .all()
        )
        for mirror in active:
            if not mirror.stripe_subscription_id:
                raise ActiveSubscriptionExistsError(details={"subscription_id": str(mirror.id)})

            remote = None
            obj = stripe_service.retrieve_subscription(mirror.stripe_subscription_id)
            if obj is not None:
                remote = _decode_subscription(obj)

            if remote is None:
                SubscriptionStateMachine.transition_locally(
                    mirror,
                    SubscriptionStatus.EXPIRED,
                    reason="Processor no longer knows this subscription",
                    action="stale_active",
                )
                continue

            _, transition = ReconciliationService.sync_from_remote(remote, reason="Pre-create check")
            if transition.current == ACTIVE:
                raise ActiveSubscriptionExistsError(
                    details={"subscription_id": str(mirror.id), "plan": mirror.plan.name if mirror.plan else None}
                )

    @classmethod
    def create_subscription(cls, user_id, plan_id, email):
        """
        Start a subscription at the processor and mirror it locally.

        Returns the mirror and the client secret the frontend needs to
        confirm the first payment. Activation arrives by webhook.
        """
        plan = PlanService.get_plan(plan_id)
        if not plan.is_active:
            raise PlanNotFoundError(details={"plan_id": str(plan_id)})
        if not plan.stripe_price_id:
            raise PlanMisconfiguredError(details={"plan_id": str(plan.id), "plan": plan.name})

        stripe_service = get_stripe_service()
        ttl = current_app.config.get("SUBSCRIPTION_REQUEST_LOCK_TTL", 30)

        with redis_lock(f"subscription:create:{user_id}", ttl=ttl):
            try:
                cls._ensure_no_active_subscription(user_id, stripe_service)

                previous = (
                    UserSubscription.query
                    .filter(
                        UserSubscription.user_id == user_id,
                        UserSubscription.stripe_customer_id.isnot(None),
                    )
                    .order_by(UserSubscription.created_at.desc())
                    .first()
                )
                if previous is not None:
                    customer_id = previous.stripe_customer_id
                else:
                    customer_id = stripe_service.create_customer(email=email, user_id=user_id).id

                subscription = stripe_service.create_subscription(
                    customer_id=customer_id,
                    price_id=plan.stripe_price_id,
                    user_id=user_id,
                )
                remote = _decode_subscription(subscription)
                if remote is None:
                    raise RemoteProcessorError("Processor returned an unreadable subscription")

                # A webhook may already have created the mirror
                mirror, _ = ReconciliationService.sync_from_remote(
                    remote, user_id=user_id, reason="Subscription requested"
                )

                intent, client_secret = _first_payment(subscription)
                if intent and PaymentService.find_by_payment_intent(intent.get("id")) is None:
                    PaymentService.create_payment_record(
                        user_id=user_id,
                        amount=minor_to_major(intent.get("amount")),
                        currency=intent.get("currency") or plan.currency,
                        subscription=mirror,
                        stripe_payment_intent_id=intent.get("id"),
                    )

                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        logger.info(
            "Subscription requested",
            extra={
                "user_id": user_id,
                "subscription_id": str(mirror.id),
                "stripe_subscription_id": remote.id,
                "status": mirror.status,
            },
        )
        return {
            "subscription": mirror.to_dict(),
            "client_secret": client_secret,
            "payment_intent_id": intent.get("id") if intent else None,
        }

    @staticmethod
    def cancel_subscription(user_id, subscription_id):
        mirror = SubscriptionStateMachine.lock_by_id(subscription_id)
        if mirror is None or mirror.user_id != user_id:
            raise SubscriptionNotFoundError(details={"subscription_id": str(subscription_id)})
        if mirror.status not in (ACTIVE, PENDING):
            raise InvalidStateTransition(
                f"Subscription is already {mirror.status.lower()}",
                details={"from": mirror.status, "to": SubscriptionStatus.CANCELLED.value},
            )

        try:
            if mirror.stripe_subscription_id:
                cancelled = get_stripe_service().cancel_subscription(mirror.stripe_subscription_id)
                remote = _decode_subscription(cancelled)
                if remote is not None:
                    ReconciliationService.sync_from_remote(remote, reason="Cancelled by user")
            else:
                SubscriptionStateMachine.transition_locally(
                    mirror,
                    SubscriptionStatus.CANCELLED,
                    reason="Cancelled by user",
                    action="user_cancelled",
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "Subscription cancelled",
            extra={"user_id": user_id, "subscription_id": str(mirror.id), "status": mirror.status},
        )
        return mirror

    # ============ SCHEDULED MAINTENANCE ============

    @staticmethod
    def _reconcile_overdue(mirror, stripe_service):
        if not mirror.stripe_subscription_id:
            SubscriptionStateMachine.transition_locally(
                mirror,
                SubscriptionStatus.EXPIRED,
                reason="Past end date with no processor subscription",
                action="expired",
            )
            return "expired"

        try:
            obj = stripe_service.retrieve_subscription(mirror.stripe_subscription_id)
        except RemoteProcessorError as exc:
            logger.warning(
                "Processor unreachable during expiry check",
                extra={"subscription_id": str(mirror.id), "error": str(exc)},
            )
            obj = None

        remote = _decode_subscription(obj) if obj is not None else None
        if remote is None:
            SubscriptionStateMachine.transition_locally(
                mirror,
                SubscriptionStatus.EXPIRED,
                reason="Past end date and not confirmed by processor",
                action="expired",
            )
            return "expired"

        ReconciliationService.sync_from_remote(remote, reason="Scheduled expiry check")
        return "expired" if mirror.status != ACTIVE else "renewed"

    @classmethod
    def expire_overdue_subscriptions(cls, now=None):
        """ACTIVE mirrors past their end date: reconcile with the processor, else expire."""
        now = now or utcnow()
        stripe_service = get_stripe_service()
        overdue_ids = [
            row.id
            for row in (
                UserSubscription.query
                .with_entities(UserSubscription.id)
                .filter(UserSubscription.status == ACTIVE, UserSubscription.end_date < now)
                .all()
            )
        ]

        stats = {"checked": len(overdue_ids), "expired": 0, "renewed": 0, "failed": 0}
        for subscription_id in overdue_ids:
            try:
                mirror = SubscriptionStateMachine.lock_by_id(subscription_id)
                if mirror is None or mirror.status != ACTIVE:
                    db.session.rollback()
                    continue
                outcome = cls._reconcile_overdue(mirror, stripe_service)
                db.session.commit()
                stats[outcome] += 1
            except SQLAlchemyError:
                db.session.rollback()
                stats["failed"] += 1
                logger.exception("Expiry check failed", extra={"subscription_id": str(subscription_id)})

        logger.info("Expiry check completed", extra=stats)
        return stats

    @staticmethod
    def cleanup_stale_pending_subscriptions(max_age_hours=None, now=None):
        max_age_hours = max_age_hours or current_app.config.get("PENDING_SUBSCRIPTION_MAX_AGE_HOURS", 24)
        cutoff = (now or utcnow()) - timedelta(hours=max_age_hours)

        stale = (
            UserSubscription.query
            .filter(UserSubscription.status == PENDING, UserSubscription.created_at < cutoff)
            .with_for_update()
            .all()
        )
        try:
            for mirror in stale:
                SubscriptionStateMachine.transition_locally(
                    mirror,
                    SubscriptionStatus.CANCELLED,
                    reason=f"Pending for more than {max_age_hours} hours",
                    action="pending_expired",
                )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        status_counts = dict(
            db.session.query(UserSubscription.status, func.count(UserSubscription.id))
            .group_by(UserSubscription.status)
            .all()
        )
        logger.info(
            "Stale pending subscriptions cleaned up",
            extra={"cancelled": len(stale), "status_counts": status_counts},
        )
        return {"cancelled": len(stale), "status_counts": status_counts}
