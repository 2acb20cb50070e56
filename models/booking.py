from datetime import datetime
from models.db import db


class BookingStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"

    ALL = (PENDING, APPROVED, REJECTED, CANCELLED, ACTIVE, COMPLETED)

    # statuses that reserve the dates; PENDING requests may overlap each other
    BLOCKING = (APPROVED, ACTIVE)


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    # copied from the property owner when the booking is created
    landlord_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # both bounds inclusive
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    rent_amount = db.Column(db.Numeric(12, 2), nullable=False)
    security_deposit = db.Column(db.Numeric(12, 2), nullable=True)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=BookingStatus.PENDING, index=True)
    notes = db.Column(db.Text, nullable=True)

    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    rented_property = db.relationship("Property")
    tenant = db.relationship("User", foreign_keys=[tenant_id])
    landlord = db.relationship("User", foreign_keys=[landlord_id])

    __table_args__ = (
        # serves the overlap query: property + date range
        db.Index("ix_bookings_property_period", "property_id", "start_date", "end_date"),
    )
