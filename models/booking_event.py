from datetime import datetime
from models.db import db

class BookingEvent(db.Model):
    __tablename__ = "booking_events"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)

    event_type = db.Column(db.String(30), nullable=False)  # CREATED, APPROVED, REJECTED, CANCELLED, ACTIVATED, COMPLETED
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)  # null for system transitions
    from_status = db.Column(db.String(20), nullable=True)
    to_status = db.Column(db.String(20), nullable=False)
    payload_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
