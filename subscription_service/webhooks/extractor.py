import logging

from subscription_service.webhooks.events import VARIANTS, PayloadDecodeError, as_mapping, object_id

logger = logging.getLogger(__name__)

EVENT_KIND_PREFIXES = (
    ("customer.subscription.", "subscription"),
    ("invoice.", "invoice"),
    ("payment_intent.", "payment_intent"),
)


def kind_for_event_type(event_type):
    for prefix, kind in EVENT_KIND_PREFIXES:
        if event_type.startswith(prefix):
            return kind
    return None


def recover_id(kind, payload):
    """
    Id of the ``kind`` object a payload refers to. A payload of another kind
    is only useful through a reference field named after ``kind``.
    """
    mapping = as_mapping(payload)
    if mapping is not None:
        found = mapping.get("object")
        if found and found != kind:
            return object_id(mapping.get(kind))
    return object_id(payload)


def decode(kind, obj):
    """Decode ``obj`` as ``kind``; raises PayloadDecodeError when it is not one."""
    variant = VARIANTS[kind]
    return variant.from_mapping(as_mapping(obj))


class EventExtractor:
    """
    Turns a notification payload into a typed processor object.

    The inline object is trusted first. When it is missing, truncated or of
    the wrong kind, the id is recovered and the object re-fetched, so the
    handlers always see the processor's current view.
    """

    def __init__(self, stripe_service):
        self.stripe_service = stripe_service
        self._fetchers = {
            "subscription": stripe_service.retrieve_subscription,
            "invoice": stripe_service.retrieve_invoice,
            "payment_intent": stripe_service.retrieve_payment_intent,
        }

    def extract(self, notification, kind=None):
        kind = kind or kind_for_event_type(notification.type)
        if kind is None:
            return None

        try:
            return decode(kind, notification.payload)
        except PayloadDecodeError as exc:
            logger.info(
                "Inline object not decodable, re-fetching",
                extra={"event_id": notification.id, "kind": kind, "reason": str(exc)},
            )

        ref = recover_id(kind, notification.payload)
        if ref is None:
            logger.warning(
                "Notification payload carries no object id",
                extra={"event_id": notification.id, "event_type": notification.type},
            )
            return None

        # RemoteProcessorError propagates so the delivery is retried
        fetched = self._fetchers[kind](ref)
        if fetched is None:
            logger.warning(
                "Processor does not know the notification object",
                extra={"event_id": notification.id, "kind": kind, "object_id": ref},
            )
            return None

        try:
            return decode(kind, fetched)
        except PayloadDecodeError as exc:
            logger.error(
                "Re-fetched object not decodable",
                extra={"event_id": notification.id, "kind": kind, "object_id": ref, "reason": str(exc)},
            )
            return None

    def fetch(self, kind, ref):
        """Retrieve and decode by id; None when missing or undecodable."""
        if not ref:
            return None
        fetched = self._fetchers[kind](ref)
        if fetched is None:
            return None
        try:
            return decode(kind, fetched)
        except PayloadDecodeError:
            logger.error("Processor object not decodable", extra={"kind": kind, "object_id": ref})
            return None
