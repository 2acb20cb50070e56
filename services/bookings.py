"""
Booking lifecycle for rental properties.

PENDING -> APPROVED / REJECTED is decided by the landlord (or an admin);
PENDING or APPROVED bookings may be cancelled by any participant. APPROVED ->
ACTIVE -> COMPLETED is driven by the calendar through ``advance_statuses``.

Every status change is one conditional UPDATE guarded by the statuses it may
leave, so a request that lost a race sees zero affected rows and reports
``InvalidTransition`` instead of overwriting the winner. Approval also claims
the property's ``booking_version`` after re-checking overlaps, which keeps two
overlapping approvals from both committing.
"""
import json
import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_
from sqlalchemy.exc import InterfaceError, OperationalError

from models.booking import Booking, BookingStatus
from models.booking_event import BookingEvent
from models.property import Property
from services import availability
from services.availability import BOUNDARY_INCLUSIVE, check_policy
from services.errors import (
    AccessDenied,
    BookingNotFound,
    InvalidTransition,
    MissingReason,
    OverlapConflict,
    PropertyNotFound,
    PropertyUnavailable,
    SelfBooking,
    StorageUnavailable,
)

logger = logging.getLogger(__name__)

ADMIN_ROLE = "ADMIN"
LANDLORD_ROLE = "LANDLORD"

SCOPE_TENANT = "tenant"
SCOPE_LANDLORD = "landlord"

# target status -> statuses it may be entered from
TRANSITIONS = {
    BookingStatus.APPROVED: (BookingStatus.PENDING,),
    BookingStatus.REJECTED: (BookingStatus.PENDING,),
    BookingStatus.CANCELLED: (BookingStatus.PENDING, BookingStatus.APPROVED),
    BookingStatus.ACTIVE: (BookingStatus.APPROVED,),
    BookingStatus.COMPLETED: (BookingStatus.APPROVED, BookingStatus.ACTIVE),
}

EVENT_TYPES = {
    BookingStatus.PENDING: "CREATED",
    BookingStatus.APPROVED: "APPROVED",
    BookingStatus.REJECTED: "REJECTED",
    BookingStatus.CANCELLED: "CANCELLED",
    BookingStatus.ACTIVE: "ACTIVATED",
    BookingStatus.COMPLETED: "COMPLETED",
}


@dataclass(frozen=True)
class Actor:
    """The caller of a booking operation: user id plus role names."""

    user_id: int
    roles: frozenset = frozenset()

    @classmethod
    def from_user(cls, user):
        return cls(user_id=user.id, roles=frozenset(r.name for r in user.roles))

    @property
    def is_admin(self):
        return ADMIN_ROLE in self.roles

    @property
    def is_landlord(self):
        return LANDLORD_ROLE in self.roles


def _utc_today():
    return datetime.utcnow().date()


def months_spanned(start_date, end_date):
    # 30-day months, rounded up; a short stay still pays one month
    days = (end_date - start_date).days
    return max(1, math.ceil(days / 30))


def compute_total_price(rent_amount, start_date, end_date):
    total = Decimal(rent_amount) * months_spanned(start_date, end_date)
    return total.quantize(Decimal("0.01"))


def append_note(existing, label, text):
    if not text:
        return existing
    return f"{existing or ''}\n\n{label}: {text}".strip()


def _to_decimal(value):
    if value is None:
        return None
    return Decimal(str(value))


class BookingService:
    def __init__(self, session, clock=None, boundary_policy=BOUNDARY_INCLUSIVE):
        self.session = session
        self.clock = clock or _utc_today
        self.boundary_policy = check_policy(boundary_policy)

    def today(self):
        return self.clock()

    @contextmanager
    def _storage(self):
        try:
            yield
        except (OperationalError, InterfaceError) as exc:
            self.session.rollback()
            logger.warning("Booking storage failure: %s", exc)
            raise StorageUnavailable() from exc
        except Exception:
            self.session.rollback()
            raise

    # ---------- creation ----------

    def create_booking(self, actor, property_id, start_date, end_date, rent_amount=None,
                       security_deposit=None, notes=None):
        availability.validate_interval(start_date, end_date, self.today())

        with self._storage():
            prop = self.session.get(Property, property_id)
            if prop is None:
                raise PropertyNotFound(property_id=property_id)
            if prop.owner_user_id == actor.user_id:
                raise SelfBooking()
            if not prop.is_available:
                raise PropertyUnavailable(property_id=property_id)

            conflicts = availability.find_conflicts(
                self.session, prop.id, start_date, end_date, policy=self.boundary_policy,
            )
            if conflicts:
                raise OverlapConflict(conflicting_booking_ids=[b.id for b in conflicts])

            rent = _to_decimal(rent_amount) if rent_amount is not None else Decimal(prop.price)
            booking = Booking(
                property_id=prop.id,
                tenant_id=actor.user_id,
                landlord_id=prop.owner_user_id,
                start_date=start_date,
                end_date=end_date,
                rent_amount=rent,
                security_deposit=_to_decimal(security_deposit),
                total_price=compute_total_price(rent, start_date, end_date),
                status=BookingStatus.PENDING,
                notes=notes or None,
            )
            self.session.add(booking)
            self.session.flush()
            self._record(
                booking.id, BookingStatus.PENDING, actor.user_id, None,
                {"start_date": start_date, "end_date": end_date},
            )
            self.session.commit()

        logger.info("Booking %s requested for property %s by user %s", booking.id, property_id, actor.user_id)
        return booking

    # ---------- decisions ----------

    def approve_booking(self, booking_id, actor, notes=None):
        notes = (notes or "").strip() or None
        with self._storage():
            booking = self._load_for_decision(booking_id, actor)
            self._ensure_allowed(booking, BookingStatus.APPROVED)

            prop = self.session.get(Property, booking.property_id)
            version = prop.booking_version

            conflicts = availability.find_conflicts(
                self.session,
                booking.property_id,
                booking.start_date,
                booking.end_date,
                exclude_booking_id=booking.id,
                policy=self.boundary_policy,
            )
            if conflicts:
                raise OverlapConflict(
                    "Property is no longer available for this period due to other approved bookings",
                    conflicting_booking_ids=[b.id for b in conflicts],
                )

            self._claim_property(prop.id, version)
            self._transition(
                booking,
                BookingStatus.APPROVED,
                actor.user_id,
                values={"notes": append_note(booking.notes, "Owner approval notes", notes)},
                payload={"notes": notes} if notes else None,
            )
            self.session.commit()

        logger.info("Booking %s approved by user %s", booking_id, actor.user_id)
        return booking

    def reject_booking(self, booking_id, actor, reason):
        reason = (reason or "").strip()
        if not reason:
            raise MissingReason()

        with self._storage():
            booking = self._load_for_decision(booking_id, actor)
            self._ensure_allowed(booking, BookingStatus.REJECTED)
            self._transition(
                booking,
                BookingStatus.REJECTED,
                actor.user_id,
                values={"notes": append_note(booking.notes, "Rejection reason", reason)},
                payload={"reason": reason},
            )
            self.session.commit()

        logger.info("Booking %s rejected by user %s", booking_id, actor.user_id)
        return booking

    def cancel_booking(self, booking_id, actor, reason=None):
        reason = (reason or "").strip()[:255] or None
        with self._storage():
            booking = self._load_visible(booking_id, actor)
            self._ensure_allowed(booking, BookingStatus.CANCELLED)
            self._transition(
                booking,
                BookingStatus.CANCELLED,
                actor.user_id,
                values={
                    "cancelled_at": datetime.utcnow(),
                    "cancelled_by": actor.user_id,
                    "cancel_reason": reason,
                },
                payload={"reason": reason} if reason else None,
            )
            self.session.commit()

        logger.info("Booking %s cancelled by user %s", booking_id, actor.user_id)
        return booking

    def advance_statuses(self):
        """Move bookings along the calendar: finished stays complete, started ones go ACTIVE."""
        today = self.today()
        counts = {"completed": 0, "activated": 0}

        with self._storage():
            finished = (
                self.session.query(Booking)
                .filter(
                    Booking.status.in_(TRANSITIONS[BookingStatus.COMPLETED]),
                    Booking.end_date < today,
                )
                .all()
            )
            for booking in finished:
                if self._try_transition(booking, BookingStatus.COMPLETED):
                    counts["completed"] += 1

            started = (
                self.session.query(Booking)
                .filter(
                    Booking.status.in_(TRANSITIONS[BookingStatus.ACTIVE]),
                    Booking.start_date <= today,
                    Booking.end_date >= today,
                )
                .all()
            )
            for booking in started:
                if self._try_transition(booking, BookingStatus.ACTIVE):
                    counts["activated"] += 1

            self.session.commit()

        logger.info("Advanced booking statuses for %s: %s", today.isoformat(), counts)
        return counts

    # ---------- reads ----------

    def get_booking(self, booking_id, actor):
        with self._storage():
            return self._load_visible(booking_id, actor)

    def events_for(self, booking_id, actor):
        with self._storage():
            booking = self._load_visible(booking_id, actor)
            return (
                self.session.query(BookingEvent)
                .filter(BookingEvent.booking_id == booking.id)
                .order_by(BookingEvent.id.asc())
                .all()
            )

    def list_bookings(self, actor, status=None, property_id=None, scope=None, page=1, limit=10):
        q = self.session.query(Booking)
        if scope == SCOPE_TENANT:
            q = q.filter(Booking.tenant_id == actor.user_id)
        elif scope == SCOPE_LANDLORD:
            q = q.filter(Booking.landlord_id == actor.user_id)
        elif scope is not None:
            raise ValueError(f"Unknown booking scope: {scope!r}")
        elif not actor.is_admin:
            if actor.is_landlord:
                q = q.filter(or_(Booking.tenant_id == actor.user_id, Booking.landlord_id == actor.user_id))
            else:
                q = q.filter(Booking.tenant_id == actor.user_id)

        if status:
            q = q.filter(Booking.status == status)
        if property_id is not None:
            q = q.filter(Booking.property_id == property_id)

        page = max(1, page)
        limit = max(1, limit)
        with self._storage():
            total = q.count()
            items = (
                q.order_by(Booking.created_at.desc(), Booking.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )

        pagination = {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        }
        return items, pagination

    def booked_periods(self, property_id, range_start=None, range_end=None):
        start, end = availability.default_calendar_range(self.today(), range_start, range_end)
        with self._storage():
            if self.session.get(Property, property_id) is None:
                raise PropertyNotFound(property_id=property_id)
            return availability.booked_periods(self.session, property_id, start, end)

    # ---------- internals ----------

    def _load_booking(self, booking_id):
        booking = self.session.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFound(booking_id=booking_id)
        return booking

    def _load_visible(self, booking_id, actor):
        booking = self._load_booking(booking_id)
        if not (actor.is_admin or actor.user_id in (booking.tenant_id, booking.landlord_id)):
            raise AccessDenied("Access denied: you can only view your own bookings")
        return booking

    def _load_for_decision(self, booking_id, actor):
        booking = self._load_booking(booking_id)
        if not (actor.is_admin or booking.landlord_id == actor.user_id):
            raise AccessDenied("Access denied: you can only manage bookings for your own properties")
        return booking

    def _ensure_allowed(self, booking, target):
        if booking.status not in TRANSITIONS[target]:
            raise InvalidTransition(booking.status, target)

    def _claim_property(self, property_id, version):
        claimed = (
            self.session.query(Property)
            .filter(Property.id == property_id, Property.booking_version == version)
            .update({"booking_version": version + 1}, synchronize_session=False)
        )
        if not claimed:
            logger.warning("Lost approval race on property %s at version %s", property_id, version)
            raise OverlapConflict(
                "Property availability changed while approving; reload and try again",
                property_id=property_id,
            )

    def _transition(self, booking, target, actor_id, values=None, payload=None):
        from_status = booking.status
        changes = {"status": target, "updated_at": datetime.utcnow()}
        changes.update(values or {})

        updated = (
            self.session.query(Booking)
            .filter(Booking.id == booking.id, Booking.status.in_(TRANSITIONS[target]))
            .update(changes, synchronize_session=False)
        )
        if not updated:
            current = (
                self.session.query(Booking.status)
                .filter(Booking.id == booking.id)
                .scalar()
            )
            logger.warning("Booking %s moved to %s before %s could apply", booking.id, current, target)
            raise InvalidTransition(current, target)

        self.session.expire(booking)
        self._record(booking.id, target, actor_id, from_status, payload)

    def _try_transition(self, booking, target):
        try:
            self._transition(booking, target, None)
        except InvalidTransition as exc:
            logger.info("Skipped booking %s: %s", booking.id, exc.message)
            return False
        return True

    def _record(self, booking_id, to_status, actor_id, from_status, payload=None):
        self.session.add(BookingEvent(
            booking_id=booking_id,
            event_type=EVENT_TYPES[to_status],
            actor_id=actor_id,
            from_status=from_status,
            to_status=to_status,
            payload_json=json.dumps(payload, default=str) if payload else None,
        ))
