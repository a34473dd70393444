import logging

import sentry_sdk
from flask import current_app

from subscription_service.billing import SubscriptionStateMachine, map_remote_status
from subscription_service.extensions import db
from subscription_service.models.payment import PaymentStatus
from subscription_service.models.subscription import SubscriptionStatus, UserSubscription
from subscription_service.services.payment_service import PaymentService, minor_to_major
from subscription_service.services.payout_service import PayoutService
from subscription_service.services.reconciliation_service import ReconciliationService
from subscription_service.utils import utcnow

logger = logging.getLogger(__name__)

ACTIVE = SubscriptionStatus.ACTIVE.value
PENDING = SubscriptionStatus.PENDING.value
CANCELLED = SubscriptionStatus.CANCELLED.value


class ReconciliationHandlers:
    """
    One method per handled event type. Each runs inside the dispatcher's
    transaction and flushes; the dispatcher commits.
    """

    def __init__(self, extractor, guard):
        self.extractor = extractor
        self.guard = guard

    # ============ SUBSCRIPTIONS ============

    def _current(self, remote):
        """
        Processor subscriptions never move from active back to incomplete, so
        an inline object saying so is an old snapshot delivered late.
        """
        mirror = UserSubscription.find_by_stripe_id(remote.id)
        if (
            mirror is not None
            and mirror.status == ACTIVE
            and map_remote_status(remote.status).value == PENDING
        ):
            logger.info(
                "Stale subscription snapshot, re-fetching",
                extra={"stripe_subscription_id": remote.id, "remote_status": remote.status},
            )
            return self.extractor.fetch("subscription", remote.id) or remote
        return remote

    def _resolve_user(self, remote):
        existing = UserSubscription.find_by_stripe_id(remote.id)
        if existing is not None:
            return existing.user_id
        return remote.user_id or SubscriptionStateMachine.find_user_by_customer(remote.customer_id)

    def subscription_created(self, notification):
        remote = self.extractor.extract(notification, "subscription")
        if remote is None:
            logger.warning("Subscription created without a usable object", extra={"event_id": notification.id})
            return
        remote = self._current(remote)

        user_id = self._resolve_user(remote)
        if not user_id:
            logger.warning(
                "Cannot resolve user for created subscription, skipping",
                extra={"event_id": notification.id, "stripe_subscription_id": remote.id},
            )
            return

        self.guard.cancel_duplicates(user_id, remote.id)
        ReconciliationService.sync_from_remote(remote, user_id=user_id, reason=notification.type)

    def subscription_updated(self, notification):
        remote = self.extractor.extract(notification, "subscription")
        if remote is None:
            logger.warning("Subscription updated without a usable object", extra={"event_id": notification.id})
            return
        remote = self._current(remote)
        ReconciliationService.sync_from_remote(remote, reason=notification.type)

    def subscription_deleted(self, notification):
        remote = self.extractor.extract(notification, "subscription")
        if remote is None:
            logger.warning("Subscription deleted without a usable object", extra={"event_id": notification.id})
            return

        mirror = SubscriptionStateMachine.lock_by_remote_id(remote.id)
        if mirror is None:
            logger.warning(
                "Deleted subscription has no local mirror",
                extra={"event_id": notification.id, "stripe_subscription_id": remote.id},
            )
            return

        if remote.current_period_end:
            mirror.end_date = remote.current_period_end
        SubscriptionStateMachine.apply_remote_status(
            mirror,
            CANCELLED,
            reason="Subscription deleted at processor",
            action="remote_deleted",
        )
        self.guard.cancel_abandoned_pending(mirror.user_id, mirror.id)
        SubscriptionStateMachine.flush()

    # ============ INVOICES ============

    def invoice_payment_succeeded(self, notification):
        invoice = self.extractor.extract(notification, "invoice")
        if invoice is None or not invoice.subscription_id:
            logger.info("Invoice is not for a subscription, skipping", extra={"event_id": notification.id})
            return

        # The invoice can arrive before the subscription events; the
        # processor's current subscription is the source of truth
        remote = self.extractor.fetch("subscription", invoice.subscription_id)
        if remote is None:
            logger.warning(
                "Invoice subscription unknown to processor",
                extra={"invoice_id": invoice.id, "stripe_subscription_id": invoice.subscription_id},
            )
            return

        result = ReconciliationService.sync_from_remote(remote, reason=notification.type)
        if result is None:
            return
        mirror, transition = result

        if not transition.activated and invoice.is_renewal and mirror.status == ACTIVE:
            ReconciliationService.award_renewal_points(mirror, invoice)

        PaymentService.record_invoice_payment(mirror, invoice, PaymentStatus.COMPLETED)

        if invoice.amount_paid > 0:
            self._post_revenue_share(mirror, invoice)

    def _post_revenue_share(self, mirror, invoice):
        try:
            with db.session.begin_nested():
                PayoutService.record_revenue_share(
                    subscription_id=mirror.id,
                    total_amount=minor_to_major(invoice.amount_paid),
                    currency=invoice.currency.upper(),
                    source_reference=invoice.id,
                )
        except Exception as exc:
            logger.exception(
                "Revenue share posting failed",
                extra={"invoice_id": invoice.id, "subscription_id": str(mirror.id)},
            )
            sentry_sdk.capture_exception(exc)

    def invoice_payment_failed(self, notification):
        invoice = self.extractor.extract(notification, "invoice")
        if invoice is None or not invoice.subscription_id:
            logger.info("Invoice is not for a subscription, skipping", extra={"event_id": notification.id})
            return

        mirror = SubscriptionStateMachine.lock_by_remote_id(invoice.subscription_id)
        if mirror is None:
            logger.warning(
                "Failed invoice has no local mirror",
                extra={"invoice_id": invoice.id, "stripe_subscription_id": invoice.subscription_id},
            )
            return

        if mirror.status != CANCELLED:
            SubscriptionStateMachine.apply_remote_status(
                mirror,
                SubscriptionStatus.EXPIRED,
                reason="Invoice payment failed",
                action="payment_failed",
            )
        PaymentService.record_invoice_payment(mirror, invoice, PaymentStatus.FAILED)
        SubscriptionStateMachine.flush()

    # ============ PAYMENT INTENTS ============

    def _pending_mirror(self, payment, user_id):
        if payment is not None and payment.subscription_id:
            mirror = SubscriptionStateMachine.lock_by_id(payment.subscription_id)
            if mirror is not None and mirror.status != PENDING:
                logger.info(
                    "Payment's subscription is no longer pending",
                    extra={"subscription_id": str(mirror.id), "status": mirror.status},
                )
                return None
            return mirror
        if user_id:
            return SubscriptionStateMachine.lock_latest_pending(user_id)
        return None

    def payment_intent_succeeded(self, notification):
        intent = self.extractor.extract(notification, "payment_intent")
        if intent is None:
            logger.warning("Payment intent without a usable object", extra={"event_id": notification.id})
            return

        payment = PaymentService.update_payment_status(intent.id, PaymentStatus.COMPLETED)

        if not current_app.config.get("PAYMENT_INTENT_ACTIVATION_ENABLED", True):
            return

        user_id = intent.user_id or (payment.user_id if payment else None)
        mirror = self._pending_mirror(payment, user_id)
        if mirror is None:
            logger.info(
                "No pending subscription to activate for payment intent",
                extra={"payment_intent_id": intent.id, "user_id": user_id},
            )
            return

        transition = SubscriptionStateMachine.transition_locally(
            mirror,
            SubscriptionStatus.ACTIVE,
            reason=f"Payment intent {intent.id} succeeded",
            action="payment_confirmed",
            start_date=utcnow(),
        )
        SubscriptionStateMachine.flush()
        if transition.activated:
            ReconciliationService.award_activation_points(mirror)

    def payment_intent_failed(self, notification):
        intent = self.extractor.extract(notification, "payment_intent")
        if intent is None:
            logger.warning("Payment intent without a usable object", extra={"event_id": notification.id})
            return

        reason = intent.last_error_message or "Payment failed"
        payment = PaymentService.update_payment_status(intent.id, PaymentStatus.FAILED, failure_reason=reason)

        user_id = intent.user_id or (payment.user_id if payment else None)
        mirror = self._pending_mirror(payment, user_id)
        if mirror is None:
            return

        SubscriptionStateMachine.transition_locally(
            mirror,
            SubscriptionStatus.CANCELLED,
            reason=f"Payment failed: {reason}",
            action="payment_failed",
        )
        SubscriptionStateMachine.flush()
