from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from subscription_service.errors import (
    ActiveSubscriptionExistsError,
    InvalidStateTransition,
    PlanMisconfiguredError,
    PlanNotFoundError,
    RemoteProcessorUnavailable,
    ServiceUnavailableError,
    SubscriptionNotFoundError,
    SubscriptionRequestInProgressError,
)
from subscription_service.extensions import db
from subscription_service.models import Payment, UserSubscription
from subscription_service.services.points_service import PointsService
from subscription_service.services.subscription_service import SubscriptionService
from subscription_service.utils import utcnow

from conftest import subscription_object


@pytest.fixture()
def stripe_double(monkeypatch, mock_stripe):
    monkeypatch.setattr(
        "subscription_service.services.subscription_service.get_stripe_service", lambda: mock_stripe
    )
    mock_stripe.create_customer.return_value = SimpleNamespace(id="cus_new")
    return mock_stripe


def new_remote_subscription(sub_id="sub_fresh", user_id=None, status="incomplete"):
    obj = subscription_object(sub_id=sub_id, user_id=user_id, status=status, customer="cus_new")
    obj["latest_invoice"] = {
        "id": "in_fresh",
        "object": "invoice",
        "payment_intent": {
            "id": "pi_fresh",
            "object": "payment_intent",
            "client_secret": "pi_fresh_secret_abc",
            "amount": 3999,
            "currency": "usd",
        },
    }
    return obj


class TestCreateSubscription:

    def test_creates_pending_mirror_and_payment(self, stripe_double, redis_lock_client, pro_plan, user_id):
        stripe_double.create_subscription.return_value = new_remote_subscription(user_id=user_id)

        result = SubscriptionService.create_subscription(user_id, pro_plan.id, "buyer@example.com")

        assert result["client_secret"] == "pi_fresh_secret_abc"
        assert result["payment_intent_id"] == "pi_fresh"
        assert result["subscription"]["status"] == "PENDING"

        mirror = UserSubscription.query.filter_by(stripe_subscription_id="sub_fresh").one()
        assert mirror.user_id == user_id
        assert mirror.stripe_customer_id == "cus_new"
        assert mirror.plan_id == pro_plan.id

        payment = Payment.query.filter_by(stripe_payment_intent_id="pi_fresh").one()
        assert payment.status == "PENDING"
        assert payment.amount == Decimal("39.99")
        assert payment.subscription_id == mirror.id

        stripe_double.create_customer.assert_called_once_with(email="buyer@example.com", user_id=user_id)
        stripe_double.create_subscription.assert_called_once_with(
            customer_id="cus_new", price_id=pro_plan.stripe_price_id, user_id=user_id
        )
        redis_lock_client.lock.assert_called_once_with(f"subscription:create:{user_id}", timeout=30)
        redis_lock_client.lock.return_value.release.assert_called_once()

    def test_reuses_existing_customer(self, stripe_double, redis_lock_client, pro_plan, user_id, make_mirror):
        make_mirror(user_id, plan=pro_plan, status="CANCELLED", stripe_subscription_id="sub_past",
                    stripe_customer_id="cus_existing")
        stripe_double.create_subscription.return_value = new_remote_subscription(user_id=user_id)

        SubscriptionService.create_subscription(user_id, pro_plan.id, "buyer@example.com")

        stripe_double.create_customer.assert_not_called()
        assert stripe_double.create_subscription.call_args.kwargs["customer_id"] == "cus_existing"

    def test_immediately_active_subscription_awards_points(
        self, stripe_double, redis_lock_client, pro_plan, user_id
    ):
        stripe_double.create_subscription.return_value = new_remote_subscription(user_id=user_id, status="active")

        SubscriptionService.create_subscription(user_id, pro_plan.id, "buyer@example.com")

        assert PointsService.get_balance(user_id) == 500

    def test_confirmed_active_subscription_blocks_creation(
        self, stripe_double, redis_lock_client, pro_plan, user_id, make_mirror
    ):
        make_mirror(user_id, plan=pro_plan, status="ACTIVE", stripe_subscription_id="sub_live")
        stripe_double.retrieve_subscription.return_value = subscription_object(sub_id="sub_live", user_id=user_id)

        with pytest.raises(ActiveSubscriptionExistsError):
            SubscriptionService.create_subscription(user_id, pro_plan.id, "buyer@example.com")

        stripe_double.create_subscription.assert_not_called()
        redis_lock_client.lock.return_value.release.assert_called_once()

    def test_stale_active_mirror_is_expired_then_creation_proceeds(
        self, stripe_double, redis_lock_client, pro_plan, user_id, make_mirror
    ):
        stale = make_mirror(user_id, plan=pro_plan, status="ACTIVE", stripe_subscription_id="sub_ghost")
        stripe_double.create_subscription.return_value = new_remote_subscription(user_id=user_id)

        SubscriptionService.create_subscription(user_id, pro_plan.id, "buyer@example.com")

        assert db.session.get(UserSubscription, stale.id).status == "EXPIRED"
        stripe_double.retrieve_subscription.assert_called_once_with("sub_ghost")

    def test_lock_held_rejects_request(self, stripe_double, redis_lock_client, pro_plan, user_id):
        redis_lock_client.lock.return_value.acquire.return_value = False

        with pytest.raises(SubscriptionRequestInProgressError):
            SubscriptionService.create_subscription(user_id, pro_plan.id, "buyer@example.com")

        stripe_double.create_subscription.assert_not_called()

    def test_missing_redis_is_unavailable(self, stripe_double, monkeypatch, pro_plan, user_id):
        monkeypatch.setattr("subscription_service.locks.get_redis_client", lambda: None)

        with pytest.raises(ServiceUnavailableError):
            SubscriptionService.create_subscription(user_id, pro_plan.id, "buyer@example.com")

    def test_inactive_plan(self, stripe_double, redis_lock_client, pro_plan, user_id):
        pro_plan.is_active = False
        db.session.commit()

        with pytest.raises(PlanNotFoundError):
            SubscriptionService.create_subscription(user_id, pro_plan.id, "buyer@example.com")

    def test_plan_without_price(self, stripe_double, redis_lock_client, pro_plan, user_id):
        pro_plan.stripe_price_id = None
        db.session.commit()

        with pytest.raises(PlanMisconfiguredError):
            SubscriptionService.create_subscription(user_id, pro_plan.id, "buyer@example.com")

    def test_processor_failure_leaves_nothing_behind(self, stripe_double, redis_lock_client, pro_plan, user_id):
        stripe_double.create_subscription.side_effect = RemoteProcessorUnavailable()

        with pytest.raises(RemoteProcessorUnavailable):
            SubscriptionService.create_subscription(user_id, pro_plan.id, "buyer@example.com")

        assert UserSubscription.query.count() == 0


class TestCancelSubscription:

    def test_remote_cancel_is_mirrored(self, stripe_double, pro_plan, user_id, make_mirror):
        mirror = make_mirror(user_id, plan=pro_plan, status="ACTIVE", stripe_subscription_id="sub_bye")
        stripe_double.cancel_subscription.return_value = subscription_object(sub_id="sub_bye", status="canceled")

        SubscriptionService.cancel_subscription(user_id, mirror.id)

        assert db.session.get(UserSubscription, mirror.id).status == "CANCELLED"
        stripe_double.cancel_subscription.assert_called_once_with("sub_bye")

    def test_unlinked_pending_is_cancelled_locally(self, stripe_double, pro_plan, user_id, make_mirror):
        mirror = make_mirror(user_id, plan=pro_plan, status="PENDING")

        SubscriptionService.cancel_subscription(user_id, mirror.id)

        assert db.session.get(UserSubscription, mirror.id).status == "CANCELLED"
        stripe_double.cancel_subscription.assert_not_called()

    def test_other_users_subscription_is_not_found(self, stripe_double, pro_plan, user_id, make_mirror):
        mirror = make_mirror(user_id, plan=pro_plan, status="ACTIVE")

        with pytest.raises(SubscriptionNotFoundError):
            SubscriptionService.cancel_subscription("someone-else", mirror.id)

    def test_already_cancelled(self, stripe_double, pro_plan, user_id, make_mirror):
        mirror = make_mirror(user_id, plan=pro_plan, status="CANCELLED")

        with pytest.raises(InvalidStateTransition):
            SubscriptionService.cancel_subscription(user_id, mirror.id)


class TestScheduledMaintenance:

    def test_expire_overdue_subscriptions(self, stripe_double, pro_plan, user_id, make_mirror):
        past = utcnow() - timedelta(days=1)
        renewed_until = (utcnow() + timedelta(days=29)).replace(microsecond=0)
        gone = make_mirror(user_id, plan=pro_plan, status="ACTIVE", stripe_subscription_id="sub_gone",
                           end_date=past)
        renewed = make_mirror("user-2", plan=pro_plan, status="ACTIVE", stripe_subscription_id="sub_renewed",
                              end_date=past)
        unreachable = make_mirror("user-3", plan=pro_plan, status="ACTIVE", stripe_subscription_id="sub_down",
                                  end_date=past)
        local_only = make_mirror("user-4", plan=pro_plan, status="ACTIVE", end_date=past)
        current = make_mirror("user-5", plan=pro_plan, status="ACTIVE", stripe_subscription_id="sub_ok")

        def retrieve(remote_id):
            if remote_id == "sub_renewed":
                return subscription_object(sub_id="sub_renewed", period_end=renewed_until)
            if remote_id == "sub_down":
                raise RemoteProcessorUnavailable()
            return None

        stripe_double.retrieve_subscription.side_effect = retrieve

        stats = SubscriptionService.expire_overdue_subscriptions()

        assert stats == {"checked": 4, "expired": 3, "renewed": 1, "failed": 0}
        assert db.session.get(UserSubscription, gone.id).status == "EXPIRED"
        assert db.session.get(UserSubscription, unreachable.id).status == "EXPIRED"
        assert db.session.get(UserSubscription, local_only.id).status == "EXPIRED"
        refreshed = db.session.get(UserSubscription, renewed.id)
        assert refreshed.status == "ACTIVE"
        assert refreshed.end_date == renewed_until
        assert db.session.get(UserSubscription, current.id).status == "ACTIVE"

    def test_cleanup_stale_pending(self, app, pro_plan, user_id, make_mirror):
        old = make_mirror(user_id, plan=pro_plan, status="PENDING", created_at=utcnow() - timedelta(hours=48))
        fresh = make_mirror("user-2", plan=pro_plan, status="PENDING")

        result = SubscriptionService.cleanup_stale_pending_subscriptions()

        assert result["cancelled"] == 1
        assert result["status_counts"] == {"CANCELLED": 1, "PENDING": 1}
        assert db.session.get(UserSubscription, old.id).status == "CANCELLED"
        assert db.session.get(UserSubscription, fresh.id).status == "PENDING"

    def test_cleanup_honours_max_age(self, app, pro_plan, user_id, make_mirror):
        make_mirror(user_id, plan=pro_plan, status="PENDING", created_at=utcnow() - timedelta(hours=3))

        assert SubscriptionService.cleanup_stale_pending_subscriptions(max_age_hours=2)["cancelled"] == 1
