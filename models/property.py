from datetime import datetime
from models.db import db

class Property(db.Model):
    __tablename__ = "properties"

    id = db.Column(db.Integer, primary_key=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)
    address = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(120), nullable=False)
    state = db.Column(db.String(120), nullable=True)

    # monthly rent
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    currency_code = db.Column(db.String(3), nullable=False, default="MYR")

    # owner-controlled switch; bookings are refused while False
    is_available = db.Column(db.Boolean, default=True, nullable=False)
    # listing review: PENDING, APPROVED, REJECTED
    status = db.Column(db.String(20), nullable=False, default="PENDING")

    # bumped on every approval so concurrent approvals on one property cannot both commit
    booking_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    owner = db.relationship("User", back_populates="properties")
