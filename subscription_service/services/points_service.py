import logging

from sqlalchemy.exc import IntegrityError

from subscription_service.errors import InsufficientPointsError, InvalidPointsAmountError
from subscription_service.extensions import db
from subscription_service.models.points import PointsTransaction, TransactionType, UserPointsWallet
from subscription_service.observability.metrics import metrics

logger = logging.getLogger(__name__)


def _validate_amount(points):
    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise InvalidPointsAmountError(details={"points": points})


class PointsService:
    """
    Wallet and ledger writes. The only code allowed to change a wallet balance.

    Methods flush but never commit; the caller owns the transaction so a
    points award lands atomically with the state change that earned it.
    """

    @staticmethod
    def get_wallet(user_id):
        return UserPointsWallet.query.filter_by(user_id=user_id).first()

    @staticmethod
    def get_or_create_wallet(user_id):
        wallet = (
            UserPointsWallet.query
            .filter_by(user_id=user_id)
            .with_for_update()
            .first()
        )
        if wallet is not None:
            return wallet

        wallet = UserPointsWallet(user_id=user_id, total_points=0, lifetime_earned=0, lifetime_spent=0)
        try:
            with db.session.begin_nested():
                db.session.add(wallet)
        except IntegrityError:
            # Created concurrently; use the winner's row
            wallet = (
                UserPointsWallet.query
                .filter_by(user_id=user_id)
                .with_for_update()
                .one()
            )
        else:
            logger.info("Points wallet created", extra={"user_id": user_id})
        return wallet

    @classmethod
    def award_points(
        cls,
        user_id,
        points,
        description,
        reference_type=None,
        reference_id=None,
        idempotency_key=None,
    ):
        """
        Credit ``points`` and append an EARN entry.

        Without ``idempotency_key`` every call posts; callers guard against
        repeats. With a key, a repeat returns the original entry unchanged.
        """
        _validate_amount(points)

        if idempotency_key:
            existing = PointsTransaction.query.filter_by(idempotency_key=idempotency_key).first()
            if existing is not None:
                logger.info(
                    "Points award already posted, skipping",
                    extra={"user_id": user_id, "idempotency_key": idempotency_key},
                )
                return existing

        wallet = cls.get_or_create_wallet(user_id)
        wallet.total_points += points
        wallet.lifetime_earned += points

        entry = PointsTransaction(
            wallet=wallet,
            user_id=user_id,
            transaction_type=TransactionType.EARN.value,
            points=points,
            description=description,
            reference_type=reference_type,
            reference_id=str(reference_id) if reference_id is not None else None,
            idempotency_key=idempotency_key,
        )
        db.session.add(entry)
        db.session.flush()

        metrics.record_points_awarded(points, reference_type or "UNSPECIFIED")
        logger.info(
            "Points awarded",
            extra={
                "user_id": user_id,
                "points": points,
                "balance": wallet.total_points,
                "reference_type": reference_type,
                "reference_id": entry.reference_id,
            },
        )
        return entry

    @classmethod
    def redeem_points(cls, user_id, points, description, reference_type=None, reference_id=None):
        """Debit ``points``; raises InsufficientPointsError when the balance is short."""
        _validate_amount(points)

        wallet = cls.get_or_create_wallet(user_id)
        if wallet.total_points < points:
            raise InsufficientPointsError(
                details={"current_balance": wallet.total_points, "required_points": points}
            )

        wallet.total_points -= points
        wallet.lifetime_spent += points

        entry = PointsTransaction(
            wallet=wallet,
            user_id=user_id,
            transaction_type=TransactionType.REDEEM.value,
            points=-points,
            description=description,
            reference_type=reference_type,
            reference_id=str(reference_id) if reference_id is not None else None,
        )
        db.session.add(entry)
        db.session.flush()

        logger.info(
            "Points redeemed",
            extra={"user_id": user_id, "points": points, "balance": wallet.total_points},
        )
        return entry

    @classmethod
    def get_balance(cls, user_id):
        wallet = cls.get_wallet(user_id)
        return wallet.total_points if wallet else 0

    @classmethod
    def validate_points(cls, user_id, required_points):
        if isinstance(required_points, bool) or not isinstance(required_points, int) or required_points < 0:
            raise InvalidPointsAmountError(details={"required_points": required_points})
        balance = cls.get_balance(user_id)
        return {
            "has_enough_points": balance >= required_points,
            "current_balance": balance,
            "required_points": required_points,
            "shortfall": max(required_points - balance, 0),
        }

    @staticmethod
    def get_transaction_history(user_id, page=1, per_page=20):
        return (
            PointsTransaction.query
            .filter_by(user_id=user_id)
            .order_by(PointsTransaction.created_at.desc())
            .paginate(page=page, per_page=per_page, error_out=False)
        )
