from subscription_service.extensions import db
from subscription_service.utils import isoformat, utcnow


class WebhookEvent(db.Model):
    """One row per processor notification id; the dedup key for redeliveries."""

    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    stripe_event_id = db.Column(db.String(255), unique=True, nullable=False, index=True)
    event_type = db.Column(db.String(100), nullable=False, index=True)
    processed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    processing_attempts = db.Column(db.Integer, nullable=False, default=0)
    last_processing_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f"<WebhookEvent {self.stripe_event_id} {self.event_type} processed={self.processed}>"

    def to_dict(self):
        return {
            "stripe_event_id": self.stripe_event_id,
            "event_type": self.event_type,
            "processed": self.processed,
            "processing_attempts": self.processing_attempts,
            "last_processing_error": self.last_processing_error,
            "created_at": isoformat(self.created_at),
            "processed_at": isoformat(self.processed_at),
        }
