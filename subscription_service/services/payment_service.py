import logging
from decimal import Decimal

from subscription_service.extensions import db
from subscription_service.models.payment import Payment, PaymentStatus
from subscription_service.utils import utcnow

logger = logging.getLogger(__name__)


def minor_to_major(amount):
    """Processor amounts are integer cents."""
    return (Decimal(int(amount or 0)) / 100).quantize(Decimal("0.01"))


class PaymentService:

    @staticmethod
    def find_by_payment_intent(payment_intent_id):
        if not payment_intent_id:
            return None
        return Payment.query.filter_by(stripe_payment_intent_id=payment_intent_id).first()

    @staticmethod
    def create_payment_record(
        user_id,
        amount,
        currency="USD",
        subscription=None,
        stripe_payment_intent_id=None,
        status=PaymentStatus.PENDING,
    ):
        payment = Payment(
            user_id=user_id,
            subscription=subscription,
            amount=amount,
            currency=currency.upper(),
            status=PaymentStatus(status).value,
            stripe_payment_intent_id=stripe_payment_intent_id,
        )
        db.session.add(payment)
        db.session.flush()
        logger.info(
            "Payment record created",
            extra={
                "payment_id": str(payment.id),
                "user_id": user_id,
                "payment_intent_id": stripe_payment_intent_id,
                "amount": str(payment.amount),
            },
        )
        return payment

    @classmethod
    def update_payment_status(cls, payment_intent_id, status, failure_reason=None):
        """Returns the updated Payment, or None when no record exists for the intent."""
        payment = (
            Payment.query
            .filter_by(stripe_payment_intent_id=payment_intent_id)
            .with_for_update()
            .first()
        ) if payment_intent_id else None
        if payment is None:
            logger.info("No payment record for payment intent", extra={"payment_intent_id": payment_intent_id})
            return None

        status = PaymentStatus(status).value
        payment.status = status
        if failure_reason:
            payment.failure_reason = failure_reason
        if status == PaymentStatus.COMPLETED.value:
            payment.processed_at = utcnow()
        db.session.flush()

        logger.info(
            "Payment status updated",
            extra={"payment_id": str(payment.id), "payment_intent_id": payment_intent_id, "status": status},
        )
        return payment

    @staticmethod
    def record_invoice_payment(mirror, invoice, status):
        """
        Upsert the Payment for an invoice. One row per invoice id; a payment
        created for the invoice's payment intent is reused.
        """
        status = PaymentStatus(status).value
        payment = Payment.query.filter_by(stripe_invoice_id=invoice.id).with_for_update().first()
        if payment is None and invoice.payment_intent_id:
            payment = (
                Payment.query
                .filter_by(stripe_payment_intent_id=invoice.payment_intent_id)
                .with_for_update()
                .first()
            )
        if payment is None:
            payment = Payment(
                user_id=mirror.user_id,
                stripe_payment_intent_id=invoice.payment_intent_id,
            )
            db.session.add(payment)

        payment.subscription = mirror
        payment.stripe_invoice_id = invoice.id
        payment.currency = invoice.currency.upper()
        payment.status = status
        if status == PaymentStatus.FAILED.value:
            payment.amount = minor_to_major(invoice.amount_due)
        else:
            payment.amount = minor_to_major(invoice.amount_paid)
        if status == PaymentStatus.COMPLETED.value:
            payment.processed_at = payment.processed_at or utcnow()
        db.session.flush()
        return payment
