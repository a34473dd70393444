from unittest.mock import patch

import pytest

from subscription_service.extensions import db
from subscription_service.models import EarningType
from subscription_service.services.payout_service import PayoutService
from subscription_service.services.points_service import PointsService


class TestPlans:

    def test_plans_are_public_and_ordered_by_price(self, client, pro_plan, basic_plan):
        response = client.get("/api/v1/subscriptions/plans")

        assert response.status_code == 200
        names = [plan["name"] for plan in response.get_json()["plans"]]
        assert names == ["Basic", "Pro"]

    def test_inactive_plans_are_hidden(self, client, pro_plan, basic_plan):
        basic_plan.is_active = False
        db.session.commit()

        plans = client.get("/api/v1/subscriptions/plans").get_json()["plans"]

        assert [plan["name"] for plan in plans] == ["Pro"]


class TestSubscriptionEndpoints:

    @pytest.mark.parametrize(
        "method, path",
        [
            ("get", "/api/v1/subscriptions/me"),
            ("get", "/api/v1/subscriptions/me/active"),
            ("post", "/api/v1/subscriptions"),
            ("get", "/api/v1/points/wallet"),
            ("get", "/api/v1/payouts"),
        ],
    )
    def test_authentication_required(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 401
        assert response.get_json()["error"] == "authorization_required"

    def test_invalid_token(self, client):
        response = client.get("/api/v1/subscriptions/me", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    def test_create_uses_token_identity_and_email(self, client, auth_headers, pro_plan, user_id):
        result = {"subscription": {"status": "PENDING"}, "client_secret": "secret", "payment_intent_id": "pi_1"}
        with patch(
            "subscription_service.api.subscriptions.SubscriptionService.create_subscription",
            return_value=result,
        ) as create:
            response = client.post(
                "/api/v1/subscriptions",
                json={"plan_id": str(pro_plan.id)},
                headers=auth_headers(user_id, email="member@example.com"),
            )

        assert response.status_code == 201
        assert response.get_json() == result
        create.assert_called_once_with(user_id=user_id, plan_id=pro_plan.id, email="member@example.com")

    def test_create_rejects_bad_plan_id(self, client, auth_headers, user_id):
        response = client.post(
            "/api/v1/subscriptions", json={"plan_id": "pro"}, headers=auth_headers(user_id)
        )

        assert response.status_code == 400
        assert response.get_json()["error"] == "VALIDATION_ERROR"

    def test_create_unknown_plan(self, client, auth_headers, user_id, redis_lock_client):
        response = client.post(
            "/api/v1/subscriptions",
            json={"plan_id": "6f1c1d55-9a52-4f57-9a56-3a4f2ab8b0c1"},
            headers=auth_headers(user_id),
        )

        assert response.status_code == 404
        assert response.get_json()["error"] == "PLAN_NOT_FOUND"

    def test_list_and_active(self, client, auth_headers, pro_plan, user_id, make_mirror):
        make_mirror(user_id, plan=pro_plan, status="CANCELLED")
        active = make_mirror(user_id, plan=pro_plan, status="ACTIVE", stripe_subscription_id="sub_mine")
        make_mirror("someone-else", plan=pro_plan, status="ACTIVE")

        listed = client.get("/api/v1/subscriptions/me", headers=auth_headers(user_id)).get_json()
        current = client.get("/api/v1/subscriptions/me/active", headers=auth_headers(user_id)).get_json()

        assert len(listed["subscriptions"]) == 2
        assert current["subscription"]["id"] == str(active.id)
        assert current["subscription"]["plan"]["name"] == "Pro"

    def test_no_active_subscription(self, client, auth_headers, user_id):
        response = client.get("/api/v1/subscriptions/me/active", headers=auth_headers(user_id))

        assert response.get_json() == {"subscription": None}

    def test_cancel_local_pending(self, client, auth_headers, pro_plan, user_id, make_mirror):
        mirror = make_mirror(user_id, plan=pro_plan, status="PENDING")

        response = client.post(f"/api/v1/subscriptions/{mirror.id}/cancel", headers=auth_headers(user_id))

        assert response.status_code == 200
        assert response.get_json()["subscription"]["status"] == "CANCELLED"

    def test_cancel_someone_elses_subscription(self, client, auth_headers, pro_plan, user_id, make_mirror):
        mirror = make_mirror("someone-else", plan=pro_plan, status="PENDING")

        response = client.post(f"/api/v1/subscriptions/{mirror.id}/cancel", headers=auth_headers(user_id))

        assert response.status_code == 404
        assert response.get_json()["error"] == "SUBSCRIPTION_NOT_FOUND"

    def test_cancel_twice_conflicts(self, client, auth_headers, pro_plan, user_id, make_mirror):
        mirror = make_mirror(user_id, plan=pro_plan, status="CANCELLED")

        response = client.post(f"/api/v1/subscriptions/{mirror.id}/cancel", headers=auth_headers(user_id))

        assert response.status_code == 409
        assert response.get_json()["error"] == "INVALID_STATE_TRANSITION"


class TestPointsEndpoints:

    def test_empty_wallet(self, client, auth_headers, user_id):
        response = client.get("/api/v1/points/wallet", headers=auth_headers(user_id))

        assert response.status_code == 200
        assert response.get_json()["total_points"] == 0

    def test_wallet_and_transactions(self, client, auth_headers, user_id):
        for _ in range(3):
            PointsService.award_points(user_id, 100, "Earned")
        db.session.commit()

        wallet = client.get("/api/v1/points/wallet", headers=auth_headers(user_id)).get_json()
        history = client.get(
            "/api/v1/points/transactions?page=1&per_page=2", headers=auth_headers(user_id)
        ).get_json()

        assert wallet["total_points"] == 300
        assert history["total"] == 3
        assert len(history["transactions"]) == 2
        assert history["pages"] == 2

    def test_bad_pagination(self, client, auth_headers, user_id):
        response = client.get("/api/v1/points/transactions?page=zero", headers=auth_headers(user_id))

        assert response.status_code == 400

    def test_validate(self, client, auth_headers, user_id):
        PointsService.award_points(user_id, 50, "Earned")
        db.session.commit()

        response = client.post(
            "/api/v1/points/validate", json={"required_points": 80}, headers=auth_headers(user_id)
        )

        assert response.get_json()["shortfall"] == 30

    def test_redeem(self, client, auth_headers, user_id):
        PointsService.award_points(user_id, 200, "Earned")
        db.session.commit()

        response = client.post(
            "/api/v1/points/redeem",
            json={"points": 150, "description": "Course unlock"},
            headers=auth_headers(user_id),
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["balance"] == 50
        assert body["transaction"]["points"] == -150

    def test_redeem_insufficient(self, client, auth_headers, user_id):
        response = client.post("/api/v1/points/redeem", json={"points": 10}, headers=auth_headers(user_id))

        assert response.status_code == 422
        assert response.get_json()["error"] == "INSUFFICIENT_POINTS"


class TestPayoutEndpoints:

    def test_pending_earnings_and_payout(self, client, auth_headers, user_id):
        PayoutService.record_earning("12.00", EarningType.COURSE_ENROLLMENT, instructor_id=user_id)
        db.session.commit()

        pending = client.get("/api/v1/payouts/earnings/pending", headers=auth_headers(user_id)).get_json()
        created = client.post(
            "/api/v1/payouts",
            json={"period_start": "2000-01-01T00:00:00", "period_end": "2100-01-01T00:00:00+00:00"},
            headers=auth_headers(user_id),
        )
        listed = client.get("/api/v1/payouts", headers=auth_headers(user_id)).get_json()

        assert pending["total_amount"] == "12.00"
        assert created.status_code == 201
        assert created.get_json()["payout"]["amount"] == "12.00"
        assert len(listed["payouts"]) == 1

    def test_payout_without_earnings(self, client, auth_headers, user_id):
        response = client.post(
            "/api/v1/payouts",
            json={"period_start": "2000-01-01T00:00:00", "period_end": "2100-01-01T00:00:00"},
            headers=auth_headers(user_id),
        )

        assert response.status_code == 400
        assert response.get_json()["error"] == "NO_EARNINGS_AVAILABLE"

    def test_payout_requires_period(self, client, auth_headers, user_id):
        response = client.post("/api/v1/payouts", json={}, headers=auth_headers(user_id))

        assert response.status_code == 400


class TestOperationalEndpoints:

    def test_liveness(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json()["status"] == "ok"

    def test_readiness(self, client):
        body = client.get("/health/ready").get_json()

        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["redis"]["status"] == "skipped"
        assert body["checks"]["stripe"]["status"] == "ok"
        assert body["status"] == "ok"

    def test_readiness_degraded_without_webhook_secret(self, app, monkeypatch, client):
        monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", None)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.get_json()["status"] == "degraded"

    def test_metrics_endpoint(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.mimetype == "text/plain"

    def test_unknown_route_is_json_404(self, client):
        response = client.get("/api/v1/nothing-here")

        assert response.status_code == 404
        assert response.get_json()["error"] == "NOT_FOUND"

    def test_wrong_method_is_json_405(self, client):
        response = client.delete("/api/v1/subscriptions/plans")

        assert response.status_code == 405
        assert response.get_json()["error"] == "METHOD_NOT_ALLOWED"
