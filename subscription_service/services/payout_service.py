import logging
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app

from subscription_service.errors import (
    NoEarningsAvailableError,
    PayoutNotFoundError,
    PayoutStateError,
    ValidationError,
)
from subscription_service.extensions import db
from subscription_service.models.earnings import (
    EarningType,
    InstructorEarning,
    InstructorPayout,
    PayoutStatus,
)
from subscription_service.utils import utcnow

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
DEFAULT_REVENUE_SHARE_RATE = Decimal("0.70")


def _to_decimal(value):
    return value if isinstance(value, Decimal) else Decimal(str(value))


class PayoutService:
    """Instructor earnings and the payouts that settle them."""

    @staticmethod
    def revenue_share_rate():
        return _to_decimal(current_app.config.get("REVENUE_SHARE_RATE", DEFAULT_REVENUE_SHARE_RATE))

    @staticmethod
    def record_earning(
        amount,
        earning_type,
        instructor_id=None,
        course_id=None,
        subscription_id=None,
        currency="USD",
        description=None,
        source_reference=None,
    ):
        amount = _to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
        if amount <= 0:
            raise ValidationError("Earning amount must be positive", details={"amount": str(amount)})

        if source_reference:
            existing = InstructorEarning.query.filter_by(source_reference=source_reference).first()
            if existing is not None:
                logger.info(
                    "Earning already recorded, skipping",
                    extra={"source_reference": source_reference},
                )
                return existing

        earning = InstructorEarning(
            instructor_id=instructor_id,
            course_id=course_id,
            subscription_id=subscription_id,
            amount=amount,
            currency=currency.upper(),
            earning_type=EarningType(earning_type).value,
            description=description,
            source_reference=source_reference,
        )
        db.session.add(earning)
        db.session.flush()
        return earning

    @classmethod
    def record_revenue_share(cls, subscription_id, total_amount, currency="USD", source_reference=None):
        """
        Post the instructor pool's share of a subscription payment.

        The entry has no instructor; distribution assigns one later. Flushes
        only, so callers wrap it in a savepoint when it must not abort the
        surrounding transaction.
        """
        total = _to_decimal(total_amount)
        share = (total * cls.revenue_share_rate()).quantize(CENT, rounding=ROUND_HALF_UP)
        earning = cls.record_earning(
            amount=share,
            earning_type=EarningType.SUBSCRIPTION_REVENUE_SHARE,
            subscription_id=subscription_id,
            currency=currency,
            description=f"Revenue share of {total:.2f} {currency.upper()} subscription payment",
            source_reference=source_reference,
        )
        logger.info(
            "Revenue share recorded",
            extra={
                "subscription_id": str(subscription_id) if subscription_id else None,
                "total_amount": str(total),
                "share_amount": str(earning.amount),
                "source_reference": source_reference,
            },
        )
        return earning

    @staticmethod
    def get_pending_earnings(instructor_id):
        earnings = (
            InstructorEarning.query
            .filter_by(instructor_id=instructor_id, payout_id=None)
            .order_by(InstructorEarning.created_at.asc())
            .all()
        )
        total = sum((e.amount for e in earnings), Decimal("0.00"))
        return {
            "instructor_id": instructor_id,
            "total_amount": str(total.quantize(CENT)),
            "count": len(earnings),
            "earnings": [e.to_dict() for e in earnings],
        }

    @staticmethod
    def create_payout(instructor_id, period_start, period_end, currency="USD"):
        """Bundle the instructor's unpaid earnings in the period into a PENDING payout."""
        if period_end <= period_start:
            raise ValidationError("period_end must be after period_start")

        earnings = (
            InstructorEarning.query
            .filter(
                InstructorEarning.instructor_id == instructor_id,
                InstructorEarning.payout_id.is_(None),
                InstructorEarning.created_at >= period_start,
                InstructorEarning.created_at <= period_end,
            )
            .with_for_update()
            .all()
        )
        if not earnings:
            raise NoEarningsAvailableError(details={"instructor_id": instructor_id})

        total = sum((e.amount for e in earnings), Decimal("0.00"))
        payout = InstructorPayout(
            instructor_id=instructor_id,
            amount=total,
            currency=currency,
            status=PayoutStatus.PENDING.value,
            period_start=period_start,
            period_end=period_end,
            description=f"Payout for {len(earnings)} earnings",
        )
        db.session.add(payout)
        for earning in earnings:
            earning.payout = payout
        db.session.flush()

        logger.info(
            "Payout created",
            extra={
                "payout_id": str(payout.id),
                "instructor_id": instructor_id,
                "amount": str(total),
                "earnings": len(earnings),
            },
        )
        return payout

    @staticmethod
    def _lock_payout(payout_id):
        payout = (
            InstructorPayout.query
            .filter_by(id=payout_id)
            .with_for_update()
            .first()
        )
        if payout is None:
            raise PayoutNotFoundError(details={"payout_id": str(payout_id)})
        return payout

    @classmethod
    def process_payout(cls, payout_id, stripe_payout_id=None):
        payout = cls._lock_payout(payout_id)
        if payout.status != PayoutStatus.PENDING.value:
            raise PayoutStateError(details={"payout_id": str(payout_id), "status": payout.status})
        payout.status = PayoutStatus.PROCESSING.value
        payout.stripe_payout_id = stripe_payout_id
        db.session.flush()
        logger.info("Payout processing", extra={"payout_id": str(payout.id)})
        return payout

    @classmethod
    def complete_payout(cls, payout_id):
        payout = cls._lock_payout(payout_id)
        if payout.status != PayoutStatus.PROCESSING.value:
            raise PayoutStateError(details={"payout_id": str(payout_id), "status": payout.status})
        payout.status = PayoutStatus.PAID.value
        payout.paid_at = utcnow()
        db.session.flush()
        logger.info("Payout completed", extra={"payout_id": str(payout.id), "amount": str(payout.amount)})
        return payout

    @classmethod
    def fail_payout(cls, payout_id, reason):
        """Mark the payout FAILED and release its earnings for a later payout."""
        payout = cls._lock_payout(payout_id)
        if payout.status in (PayoutStatus.PAID.value, PayoutStatus.CANCELLED.value):
            raise PayoutStateError(details={"payout_id": str(payout_id), "status": payout.status})
        payout.status = PayoutStatus.FAILED.value
        payout.failure_reason = (reason or "")[:500]
        for earning in payout.earnings.all():
            earning.payout = None
        db.session.flush()
        logger.warning(
            "Payout failed",
            extra={"payout_id": str(payout.id), "failure_reason": payout.failure_reason},
        )
        return payout

    @staticmethod
    def list_payouts(instructor_id):
        return (
            InstructorPayout.query
            .filter_by(instructor_id=instructor_id)
            .order_by(InstructorPayout.created_at.desc())
            .all()
        )
