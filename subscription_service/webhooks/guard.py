import logging

import sentry_sdk
from flask import current_app
from sqlalchemy import or_

from subscription_service.billing import SubscriptionStateMachine
from subscription_service.billing.state_machine import DUPLICATE_CANCELLED, LIVE_STATUSES
from subscription_service.errors import RemoteProcessorError
from subscription_service.models.subscription import SubscriptionStatus, UserSubscription

logger = logging.getLogger(__name__)


class DuplicateSubscriptionGuard:
    """
    Keeps at most one live mirror per user.

    Cancellation here is local. With DUPLICATE_GUARD_REMOTE_CANCEL set the
    duplicate is also cancelled at the processor, best-effort. A duplicate
    left live at the processor stays cancelled here while the user has
    another live mirror (see SubscriptionStateMachine.held_as_duplicate).
    """

    def __init__(self, stripe_service):
        self.stripe_service = stripe_service

    def cancel_duplicates(self, user_id, keep_remote_id):
        """Cancel the user's ACTIVE/PENDING mirrors not linked to ``keep_remote_id``."""
        duplicates = (
            UserSubscription.query
            .filter(
                UserSubscription.user_id == user_id,
                UserSubscription.status.in_(LIVE_STATUSES),
                or_(
                    UserSubscription.stripe_subscription_id.is_(None),
                    UserSubscription.stripe_subscription_id != keep_remote_id,
                ),
            )
            .with_for_update()
            .all()
        )
        for mirror in duplicates:
            remote_id = mirror.stripe_subscription_id
            SubscriptionStateMachine.transition_locally(
                mirror,
                SubscriptionStatus.CANCELLED,
                reason=f"Superseded by subscription {keep_remote_id}",
                action=DUPLICATE_CANCELLED,
            )
            logger.warning(
                "Cancelled duplicate subscription",
                extra={
                    "user_id": user_id,
                    "subscription_id": str(mirror.id),
                    "stripe_subscription_id": remote_id,
                    "kept_stripe_subscription_id": keep_remote_id,
                },
            )
            if remote_id:
                self._cancel_remote(remote_id)
        return duplicates

    def cancel_abandoned_pending(self, user_id, keep_id):
        """Cancel the user's PENDING mirrors other than ``keep_id``."""
        abandoned = (
            UserSubscription.query
            .filter(
                UserSubscription.user_id == user_id,
                UserSubscription.status == SubscriptionStatus.PENDING.value,
                UserSubscription.id != keep_id,
            )
            .with_for_update()
            .all()
        )
        for mirror in abandoned:
            SubscriptionStateMachine.transition_locally(
                mirror,
                SubscriptionStatus.CANCELLED,
                reason="Abandoned after subscription deletion",
                action="pending_abandoned",
            )
        if abandoned:
            logger.info(
                "Cancelled abandoned pending subscriptions",
                extra={"user_id": user_id, "count": len(abandoned)},
            )
        return abandoned

    def _cancel_remote(self, remote_id):
        if not current_app.config.get("DUPLICATE_GUARD_REMOTE_CANCEL", False):
            return
        try:
            self.stripe_service.cancel_subscription(remote_id)
        except RemoteProcessorError as exc:
            logger.error(
                "Failed to cancel duplicate at processor",
                extra={"stripe_subscription_id": remote_id, "error": str(exc)},
            )
            sentry_sdk.capture_exception(exc)
