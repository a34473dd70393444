"""
Typed views of processor objects.

Each variant carries only the fields the reconciliation handlers read.
``from_mapping`` raises PayloadDecodeError when the mapping is not the
expected object kind or lacks a required field; the extractor treats that
as a signal to re-fetch by id.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Tuple

from subscription_service.errors import MalformedNotificationError
from subscription_service.utils import from_epoch

USER_ID_METADATA_KEYS = ("userId", "user_id")


class PayloadDecodeError(ValueError):
    pass


def as_mapping(obj):
    """Plain mapping view of a dict or a processor SDK object, else None."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        converted = to_dict()
        if isinstance(converted, Mapping):
            return converted
    return None


def object_id(value):
    """Id from either the string form or the nested-object form of a reference."""
    if isinstance(value, str):
        return value or None
    mapping = as_mapping(value)
    if mapping:
        ref = mapping.get("id")
        return ref if isinstance(ref, str) and ref else None
    return None


def _metadata(mapping):
    metadata = as_mapping(mapping.get("metadata")) or {}
    return {str(key): str(value) for key, value in metadata.items() if value is not None}


def _require_kind(mapping, kind):
    if mapping is None:
        raise PayloadDecodeError(f"expected {kind} object, got nothing")
    found = mapping.get("object")
    if found != kind:
        raise PayloadDecodeError(f"expected {kind} object, got {found!r}")
    if not object_id(mapping.get("id")):
        raise PayloadDecodeError(f"{kind} object has no id")


def _user_id_from(metadata):
    for key in USER_ID_METADATA_KEYS:
        value = metadata.get(key)
        if value:
            return value
    return None


@dataclass(frozen=True)
class Notification:
    id: str
    type: str
    payload: Any = None

    @classmethod
    def from_envelope(cls, envelope):
        mapping = as_mapping(envelope)
        if mapping is None:
            raise MalformedNotificationError("Notification envelope is not an object")
        event_id = mapping.get("id")
        event_type = mapping.get("type")
        if not event_id or not event_type:
            raise MalformedNotificationError(details={"event_id": event_id, "event_type": event_type})
        data = as_mapping(mapping.get("data")) or {}
        return cls(id=str(event_id), type=str(event_type), payload=data.get("object"))


@dataclass(frozen=True)
class RemoteSubscription:
    id: str
    status: Optional[str]
    customer_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    price_ids: Tuple[str, ...] = ()
    metadata: dict = field(default_factory=dict)

    kind = "subscription"

    @classmethod
    def from_mapping(cls, mapping):
        _require_kind(mapping, "subscription")
        if not mapping.get("status"):
            raise PayloadDecodeError("subscription object has no status")

        items = []
        items_container = as_mapping(mapping.get("items"))
        if items_container:
            items = [as_mapping(item) or {} for item in items_container.get("data") or []]

        price_ids = []
        for item in items:
            price_id = object_id(item.get("price"))
            if price_id:
                price_ids.append(price_id)

        # Newer API versions report the billing period on the items
        period_start = mapping.get("current_period_start")
        period_end = mapping.get("current_period_end")
        if period_start is None and items:
            period_start = items[0].get("current_period_start")
        if period_end is None and items:
            period_end = items[0].get("current_period_end")

        return cls(
            id=object_id(mapping.get("id")),
            status=mapping.get("status"),
            customer_id=object_id(mapping.get("customer")),
            current_period_start=from_epoch(period_start),
            current_period_end=from_epoch(period_end),
            cancel_at_period_end=bool(mapping.get("cancel_at_period_end")),
            price_ids=tuple(price_ids),
            metadata=_metadata(mapping),
        )

    @property
    def user_id(self):
        return _user_id_from(self.metadata)

    @property
    def primary_price_id(self):
        return self.price_ids[0] if self.price_ids else None


@dataclass(frozen=True)
class RemoteInvoice:
    id: str
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    amount_paid: int = 0
    amount_due: int = 0
    currency: str = "usd"
    billing_reason: Optional[str] = None
    payment_intent_id: Optional[str] = None

    kind = "invoice"

    RENEWAL_BILLING_REASONS = frozenset({"subscription_cycle"})

    @classmethod
    def from_mapping(cls, mapping):
        _require_kind(mapping, "invoice")

        subscription_id = object_id(mapping.get("subscription"))
        if subscription_id is None:
            parent = as_mapping(mapping.get("parent")) or {}
            details = as_mapping(parent.get("subscription_details")) or {}
            subscription_id = object_id(details.get("subscription"))

        try:
            amount_paid = int(mapping.get("amount_paid") or 0)
            amount_due = int(mapping.get("amount_due") or 0)
        except (TypeError, ValueError) as exc:
            raise PayloadDecodeError("invoice amount is not an integer") from exc

        return cls(
            id=object_id(mapping.get("id")),
            subscription_id=subscription_id,
            customer_id=object_id(mapping.get("customer")),
            amount_paid=amount_paid,
            amount_due=amount_due,
            currency=(mapping.get("currency") or "usd"),
            billing_reason=mapping.get("billing_reason"),
            payment_intent_id=object_id(mapping.get("payment_intent")),
        )

    @property
    def is_renewal(self):
        return self.billing_reason in self.RENEWAL_BILLING_REASONS


@dataclass(frozen=True)
class RemotePaymentIntent:
    id: str
    status: Optional[str] = None
    amount: int = 0
    currency: str = "usd"
    metadata: dict = field(default_factory=dict)
    last_error_message: Optional[str] = None

    kind = "payment_intent"

    @classmethod
    def from_mapping(cls, mapping):
        _require_kind(mapping, "payment_intent")
        last_error = as_mapping(mapping.get("last_payment_error")) or {}
        try:
            amount = int(mapping.get("amount") or 0)
        except (TypeError, ValueError) as exc:
            raise PayloadDecodeError("payment intent amount is not an integer") from exc
        return cls(
            id=object_id(mapping.get("id")),
            status=mapping.get("status"),
            amount=amount,
            currency=(mapping.get("currency") or "usd"),
            metadata=_metadata(mapping),
            last_error_message=last_error.get("message"),
        )

    @property
    def user_id(self):
        return _user_id_from(self.metadata)


VARIANTS = {
    RemoteSubscription.kind: RemoteSubscription,
    RemoteInvoice.kind: RemoteInvoice,
    RemotePaymentIntent.kind: RemotePaymentIntent,
}
