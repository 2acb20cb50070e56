"""
Date-interval rules for rentals: interval validation and the overlap query.

Only bookings in a blocking status (APPROVED, ACTIVE) reserve dates. Pending
requests never block each other; the owner picks one when approving.
"""
from datetime import timedelta

from sqlalchemy import and_

from models.booking import Booking, BookingStatus
from services.errors import InvalidInterval, PastStartDate

# A booking ending on day N conflicts with one starting on day N.
BOUNDARY_INCLUSIVE = "inclusive"
# Check-out day may be the next tenant's check-in day.
BOUNDARY_HANDOVER = "handover"

BOUNDARY_POLICIES = (BOUNDARY_INCLUSIVE, BOUNDARY_HANDOVER)

DEFAULT_CALENDAR_DAYS = 365


def check_policy(policy):
    if policy not in BOUNDARY_POLICIES:
        raise ValueError(f"Unknown booking boundary policy: {policy!r}")
    return policy


def validate_interval(start_date, end_date, today):
    if start_date >= end_date:
        raise InvalidInterval(start_date=start_date.isoformat(), end_date=end_date.isoformat())
    # a stay begins at midnight of its start date, already gone by today's clock
    if start_date <= today:
        raise PastStartDate(start_date=start_date.isoformat(), today=today.isoformat())


def intervals_overlap(start1, end1, start2, end2, policy=BOUNDARY_INCLUSIVE):
    check_policy(policy)
    if policy == BOUNDARY_INCLUSIVE:
        return start1 <= end2 and end1 >= start2
    return start1 < end2 and end1 > start2


def overlap_clause(start_date, end_date, policy=BOUNDARY_INCLUSIVE):
    """SQL form of :func:`intervals_overlap` against ``Booking`` rows."""
    check_policy(policy)
    if policy == BOUNDARY_INCLUSIVE:
        return and_(Booking.start_date <= end_date, Booking.end_date >= start_date)
    return and_(Booking.start_date < end_date, Booking.end_date > start_date)


def find_conflicts(session, property_id, start_date, end_date, exclude_booking_id=None,
                   policy=BOUNDARY_INCLUSIVE):
    q = (
        session.query(Booking)
        .filter(
            Booking.property_id == property_id,
            Booking.status.in_(BookingStatus.BLOCKING),
            overlap_clause(start_date, end_date, policy),
        )
    )
    if exclude_booking_id is not None:
        q = q.filter(Booking.id != exclude_booking_id)
    return q.order_by(Booking.start_date.asc()).all()


def is_available(session, property_id, start_date, end_date, exclude_booking_id=None,
                 policy=BOUNDARY_INCLUSIVE):
    return not find_conflicts(
        session, property_id, start_date, end_date,
        exclude_booking_id=exclude_booking_id, policy=policy,
    )


def booked_periods(session, property_id, range_start, range_end):
    """Blocking bookings touching [range_start, range_end], for calendar display."""
    rows = (
        session.query(Booking.id, Booking.start_date, Booking.end_date, Booking.status)
        .filter(
            Booking.property_id == property_id,
            Booking.status.in_(BookingStatus.BLOCKING),
            overlap_clause(range_start, range_end, BOUNDARY_INCLUSIVE),
        )
        .order_by(Booking.start_date.asc())
        .all()
    )
    return [
        {"id": r.id, "start_date": r.start_date, "end_date": r.end_date, "status": r.status}
        for r in rows
    ]


def default_calendar_range(today, range_start=None, range_end=None):
    start = range_start or today
    end = range_end or start + timedelta(days=DEFAULT_CALENDAR_DAYS)
    if end < start:
        raise InvalidInterval(
            "Range end must not be before range start",
            start_date=start.isoformat(),
            end_date=end.isoformat(),
        )
    return start, end
