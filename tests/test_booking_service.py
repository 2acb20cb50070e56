import json
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from models import db
from models.booking import Booking, BookingStatus
from models.booking_event import BookingEvent
from models.property import Property
from services import availability
from services.availability import BOUNDARY_HANDOVER
from services.bookings import Actor, BookingService, compute_total_price, months_spanned
from services.errors import (
    AccessDenied,
    BookingNotFound,
    InvalidInterval,
    InvalidTransition,
    MissingReason,
    OverlapConflict,
    PastStartDate,
    PropertyNotFound,
    PropertyUnavailable,
    SelfBooking,
    StorageUnavailable,
)

MAR_10 = date(2024, 3, 10)
MAR_20 = date(2024, 3, 20)


def _request(service, tenant, rental, start=MAR_10, end=MAR_20, **kwargs):
    return service.create_booking(Actor.from_user(tenant), rental.id, start, end, **kwargs)


def _approved(service, tenant, landlord, rental, start=MAR_10, end=MAR_20):
    booking = _request(service, tenant, rental, start, end)
    return service.approve_booking(booking.id, Actor.from_user(landlord))


def _blocking_pairs_overlap(property_id):
    rows = (
        Booking.query
        .filter(Booking.property_id == property_id, Booking.status.in_(BookingStatus.BLOCKING))
        .all()
    )
    for i, a in enumerate(rows):
        for b in rows[i + 1:]:
            if availability.intervals_overlap(a.start_date, a.end_date, b.start_date, b.end_date):
                return True
    return False


# ---------- creation ----------

def test_create_booking_starts_pending(service, tenant, landlord, rental):
    booking = _request(service, tenant, rental, rent_amount=Decimal("2000"), security_deposit=500, notes="Quiet tenant")

    assert booking.status == BookingStatus.PENDING
    assert booking.tenant_id == tenant.id
    assert booking.landlord_id == landlord.id
    assert booking.rent_amount == Decimal("2000.00")
    assert booking.security_deposit == Decimal("500.00")
    assert booking.total_price == Decimal("2000.00")
    assert booking.notes == "Quiet tenant"

    events = BookingEvent.query.filter_by(booking_id=booking.id).all()
    assert [(e.event_type, e.to_status) for e in events] == [("CREATED", BookingStatus.PENDING)]


def test_rent_defaults_to_property_price(service, tenant, rental):
    booking = _request(service, tenant, rental, start=date(2024, 3, 1), end=date(2024, 5, 15))
    assert booking.rent_amount == Decimal("1500.00")
    assert booking.total_price == Decimal("4500.00")


def test_total_price_months():
    assert months_spanned(date(2024, 1, 1), date(2024, 1, 2)) == 1
    assert months_spanned(date(2024, 1, 1), date(2024, 1, 31)) == 1
    assert months_spanned(date(2024, 1, 1), date(2024, 2, 1)) == 2
    assert compute_total_price(Decimal("1000"), date(2024, 1, 1), date(2024, 12, 31)) == Decimal("13000.00")


@pytest.mark.parametrize("start, end, error", [
    (MAR_10, MAR_10, InvalidInterval),
    (MAR_20, MAR_10, InvalidInterval),
    (date(2023, 12, 31), MAR_10, PastStartDate),
    (date(2024, 1, 1), MAR_10, PastStartDate),
])
def test_create_rejects_bad_intervals(service, tenant, rental, start, end, error):
    with pytest.raises(error):
        _request(service, tenant, rental, start, end)
    assert Booking.query.count() == 0


def test_create_unknown_property(service, tenant):
    with pytest.raises(PropertyNotFound):
        service.create_booking(Actor.from_user(tenant), 9999, MAR_10, MAR_20)


def test_create_own_property(service, landlord, rental):
    with pytest.raises(SelfBooking):
        _request(service, landlord, rental)


def test_create_unavailable_property(service, tenant, landlord, make_property):
    closed = make_property(landlord, is_available=False)
    with pytest.raises(PropertyUnavailable):
        _request(service, tenant, closed)


def test_pending_requests_do_not_block_each_other(service, tenant, tenant_b, rental):
    first = _request(service, tenant, rental)
    second = _request(service, tenant_b, rental, start=date(2024, 3, 15), end=date(2024, 3, 25))
    assert first.status == second.status == BookingStatus.PENDING


def test_create_conflicts_with_approved_booking_sharing_a_boundary(service, tenant, tenant_b, landlord, rental):
    approved = _approved(service, tenant, landlord, rental)

    with pytest.raises(OverlapConflict) as exc:
        _request(service, tenant_b, rental, start=MAR_20, end=date(2024, 3, 25))
    assert exc.value.details["conflicting_booking_ids"] == [approved.id]


def test_handover_policy_accepts_same_day_turnover(tenant, tenant_b, landlord, rental):
    service = BookingService(db.session, clock=lambda: date(2024, 1, 1), boundary_policy=BOUNDARY_HANDOVER)
    _approved(service, tenant, landlord, rental)

    booking = _request(service, tenant_b, rental, start=MAR_20, end=date(2024, 3, 25))
    assert booking.status == BookingStatus.PENDING


def test_unknown_boundary_policy_fails_fast():
    with pytest.raises(ValueError):
        BookingService(db.session, boundary_policy="sometimes")


# ---------- approval ----------

def test_approve_appends_notes_and_records_event(service, tenant, landlord, rental):
    booking = _request(service, tenant, rental, notes="Moving from Penang")
    approved = service.approve_booking(booking.id, Actor.from_user(landlord), notes="Keys at the lobby")

    assert approved.status == BookingStatus.APPROVED
    assert approved.notes == "Moving from Penang\n\nOwner approval notes: Keys at the lobby"

    event = BookingEvent.query.filter_by(booking_id=booking.id, event_type="APPROVED").one()
    assert event.actor_id == landlord.id
    assert event.from_status == BookingStatus.PENDING
    assert json.loads(event.payload_json) == {"notes": "Keys at the lobby"}


def test_approve_without_notes_keeps_notes(service, tenant, landlord, rental):
    booking = _request(service, tenant, rental)
    approved = service.approve_booking(booking.id, Actor.from_user(landlord))
    assert approved.notes is None


def test_admin_can_approve(service, tenant, admin, rental):
    booking = _request(service, tenant, rental)
    assert service.approve_booking(booking.id, Actor.from_user(admin)).status == BookingStatus.APPROVED


def test_approve_requires_landlord_or_admin(service, tenant, other_landlord, rental):
    booking = _request(service, tenant, rental)
    for actor in (tenant, other_landlord):
        with pytest.raises(AccessDenied):
            service.approve_booking(booking.id, Actor.from_user(actor))
    assert db.session.get(Booking, booking.id).status == BookingStatus.PENDING


def test_approve_missing_booking_is_not_found_even_for_strangers(service, outsider):
    with pytest.raises(BookingNotFound):
        service.approve_booking(4242, Actor.from_user(outsider))


def test_second_overlapping_approval_conflicts(service, tenant, tenant_b, landlord, rental):
    owner = Actor.from_user(landlord)
    a = _request(service, tenant, rental, start=date(2024, 6, 1), end=date(2024, 6, 10))
    b = _request(service, tenant_b, rental, start=date(2024, 6, 5), end=date(2024, 6, 15))

    assert service.approve_booking(a.id, owner).status == BookingStatus.APPROVED
    with pytest.raises(OverlapConflict):
        service.approve_booking(b.id, owner)

    assert db.session.get(Booking, b.id).status == BookingStatus.PENDING
    assert not _blocking_pairs_overlap(rental.id)


def test_approving_twice_is_an_invalid_transition(service, tenant, landlord, rental):
    booking = _approved(service, tenant, landlord, rental)
    with pytest.raises(InvalidTransition) as exc:
        service.approve_booking(booking.id, Actor.from_user(landlord))
    assert exc.value.current == BookingStatus.APPROVED
    assert exc.value.requested == BookingStatus.APPROVED


def test_approval_loses_when_booking_changes_underneath(service, tenant, landlord, rental, monkeypatch):
    booking = _request(service, tenant, rental)
    real_find = availability.find_conflicts

    def racing_find(session, *args, **kwargs):
        # a concurrent cancel lands between the status check and the write
        session.query(Booking).filter(Booking.id == booking.id).update(
            {"status": BookingStatus.CANCELLED}, synchronize_session=False,
        )
        return real_find(session, *args, **kwargs)

    monkeypatch.setattr(availability, "find_conflicts", racing_find)

    with pytest.raises(InvalidTransition) as exc:
        service.approve_booking(booking.id, Actor.from_user(landlord))
    assert exc.value.current == BookingStatus.CANCELLED
    assert exc.value.requested == BookingStatus.APPROVED


def test_approval_loses_when_property_was_claimed_concurrently(service, tenant, landlord, rental, monkeypatch):
    booking = _request(service, tenant, rental)
    real_find = availability.find_conflicts

    def racing_find(session, property_id, *args, **kwargs):
        # another approval on the same property commits first
        session.query(Property).filter(Property.id == property_id).update(
            {"booking_version": Property.booking_version + 1}, synchronize_session=False,
        )
        return real_find(session, property_id, *args, **kwargs)

    monkeypatch.setattr(availability, "find_conflicts", racing_find)

    with pytest.raises(OverlapConflict):
        service.approve_booking(booking.id, Actor.from_user(landlord))

    assert db.session.get(Booking, booking.id).status == BookingStatus.PENDING
    assert BookingEvent.query.filter_by(booking_id=booking.id, event_type="APPROVED").count() == 0


def test_approval_bumps_booking_version(service, tenant, landlord, rental):
    before = rental.booking_version
    _approved(service, tenant, landlord, rental)
    assert db.session.get(Property, rental.id).booking_version == before + 1


# ---------- rejection ----------

def test_reject_requires_reason(service, tenant, landlord, rental):
    booking = _request(service, tenant, rental)
    for reason in (None, "", "   "):
        with pytest.raises(MissingReason):
            service.reject_booking(booking.id, Actor.from_user(landlord), reason)


def test_reject_appends_reason(service, tenant, landlord, rental):
    booking = _request(service, tenant, rental, notes="Two cats")
    rejected = service.reject_booking(booking.id, Actor.from_user(landlord), "No pets allowed")

    assert rejected.status == BookingStatus.REJECTED
    assert rejected.notes == "Two cats\n\nRejection reason: No pets allowed"


def test_rejecting_a_rejected_booking_fails(service, tenant, landlord, rental):
    booking = _request(service, tenant, rental)
    owner = Actor.from_user(landlord)
    service.reject_booking(booking.id, owner, "Dates unsuitable")

    with pytest.raises(InvalidTransition):
        service.reject_booking(booking.id, owner, "Dates unsuitable")


def test_reject_requires_property_owner_or_admin(service, tenant, other_landlord, rental):
    booking = _request(service, tenant, rental)
    for actor in (tenant, other_landlord):
        with pytest.raises(AccessDenied):
            service.reject_booking(booking.id, Actor.from_user(actor), "Not my call")
    assert db.session.get(Booking, booking.id).status == BookingStatus.PENDING


def test_reject_approved_booking_fails(service, tenant, landlord, rental):
    booking = _approved(service, tenant, landlord, rental)
    with pytest.raises(InvalidTransition):
        service.reject_booking(booking.id, Actor.from_user(landlord), "Changed my mind")


# ---------- cancellation ----------

@pytest.mark.parametrize("who", ["tenant", "landlord", "admin"])
def test_participants_can_cancel(service, tenant, landlord, admin, rental, who):
    actor = {"tenant": tenant, "landlord": landlord, "admin": admin}[who]
    booking = _request(service, tenant, rental)

    cancelled = service.cancel_booking(booking.id, Actor.from_user(actor), reason="Plans changed")

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancelled_by == actor.id
    assert cancelled.cancel_reason == "Plans changed"
    assert cancelled.cancelled_at is not None
    assert db.session.get(Booking, booking.id) is not None


def test_outsider_cannot_cancel(service, tenant, outsider, rental):
    booking = _request(service, tenant, rental)
    with pytest.raises(AccessDenied):
        service.cancel_booking(booking.id, Actor.from_user(outsider))


def test_cancelled_approval_frees_the_dates(service, tenant, tenant_b, landlord, rental):
    booking = _approved(service, tenant, landlord, rental)
    service.cancel_booking(booking.id, Actor.from_user(tenant))

    again = _request(service, tenant_b, rental)
    assert service.approve_booking(again.id, Actor.from_user(landlord)).status == BookingStatus.APPROVED


def test_cancel_then_approve_is_invalid(service, tenant, landlord, rental):
    booking = _request(service, tenant, rental)
    service.cancel_booking(booking.id, Actor.from_user(tenant))

    with pytest.raises(InvalidTransition) as exc:
        service.approve_booking(booking.id, Actor.from_user(landlord))
    assert exc.value.current == BookingStatus.CANCELLED


def test_cancelling_twice_is_invalid(service, tenant, rental):
    booking = _request(service, tenant, rental)
    service.cancel_booking(booking.id, Actor.from_user(tenant))
    with pytest.raises(InvalidTransition):
        service.cancel_booking(booking.id, Actor.from_user(tenant))


def test_rejected_booking_cannot_be_cancelled(service, tenant, landlord, rental):
    booking = _request(service, tenant, rental)
    service.reject_booking(booking.id, Actor.from_user(landlord), "Under renovation")

    with pytest.raises(InvalidTransition) as exc:
        service.cancel_booking(booking.id, Actor.from_user(tenant))
    assert exc.value.current == BookingStatus.REJECTED
    assert db.session.get(Booking, booking.id).cancelled_at is None


def test_completed_booking_cannot_be_cancelled(tenant, landlord, rental):
    early = BookingService(db.session, clock=lambda: date(2024, 1, 1))
    booking = _request(early, tenant, rental, start=date(2024, 1, 5), end=date(2024, 1, 10))
    early.approve_booking(booking.id, Actor.from_user(landlord))
    BookingService(db.session, clock=lambda: date(2024, 2, 1)).advance_statuses()

    with pytest.raises(InvalidTransition) as exc:
        early.cancel_booking(booking.id, Actor.from_user(landlord))
    assert exc.value.current == BookingStatus.COMPLETED


# ---------- read access ----------

def test_booking_visibility(service, tenant, landlord, admin, outsider, rental):
    booking = _request(service, tenant, rental)

    for viewer in (tenant, landlord, admin):
        assert service.get_booking(booking.id, Actor.from_user(viewer)).id == booking.id

    with pytest.raises(AccessDenied):
        service.get_booking(booking.id, Actor.from_user(outsider))

    with pytest.raises(BookingNotFound):
        service.get_booking(booking.id + 100, Actor.from_user(outsider))


def test_list_scoping(service, tenant, tenant_b, landlord, other_landlord, admin, rental, make_property):
    other_rental = make_property(other_landlord, title="Studio in Bangsar")
    mine = _request(service, tenant, rental)
    theirs = _request(service, tenant_b, other_rental)
    landlord_trip = _request(service, landlord, other_rental, start=date(2024, 7, 1), end=date(2024, 7, 5))

    def ids(user, **kwargs):
        items, _ = service.list_bookings(Actor.from_user(user), **kwargs)
        return {b.id for b in items}

    assert ids(tenant) == {mine.id}
    assert ids(tenant_b) == {theirs.id}
    assert ids(landlord) == {mine.id, landlord_trip.id}
    assert ids(landlord, scope="landlord") == {mine.id}
    assert ids(landlord, scope="tenant") == {landlord_trip.id}
    assert ids(other_landlord) == {theirs.id, landlord_trip.id}
    assert ids(admin) == {mine.id, theirs.id, landlord_trip.id}
    assert ids(admin, property_id=rental.id) == {mine.id}
    assert ids(admin, status=BookingStatus.APPROVED) == set()


def test_list_pagination(service, tenant, rental):
    for day in range(1, 6):
        _request(service, tenant, rental, start=date(2024, 4, day), end=date(2024, 4, day + 1))

    items, pagination = service.list_bookings(Actor.from_user(tenant), page=2, limit=2)
    assert len(items) == 2
    assert pagination == {"page": 2, "limit": 2, "total": 5, "pages": 3}


def test_events_follow_the_lifecycle(service, tenant, landlord, rental):
    booking = _approved(service, tenant, landlord, rental)
    service.cancel_booking(booking.id, Actor.from_user(tenant), reason="Job moved")

    events = service.events_for(booking.id, Actor.from_user(tenant))
    assert [e.event_type for e in events] == ["CREATED", "APPROVED", "CANCELLED"]
    assert events[-1].from_status == BookingStatus.APPROVED


def test_booked_periods_unknown_property(service):
    with pytest.raises(PropertyNotFound):
        service.booked_periods(12345)


# ---------- calendar sweep ----------

def test_advance_statuses(tenant, landlord, rental):
    early = BookingService(db.session, clock=lambda: date(2024, 1, 1))
    owner = Actor.from_user(landlord)
    past = _request(early, tenant, rental, start=date(2024, 1, 5), end=date(2024, 1, 10))
    current = _request(early, tenant, rental, start=date(2024, 2, 1), end=date(2024, 2, 28))
    future = _request(early, tenant, rental, start=date(2024, 5, 1), end=date(2024, 5, 20))
    pending = _request(early, tenant, rental, start=date(2024, 2, 10), end=date(2024, 2, 12))
    for b in (past, current, future):
        early.approve_booking(b.id, owner)

    later = BookingService(db.session, clock=lambda: date(2024, 2, 15))
    assert later.advance_statuses() == {"completed": 1, "activated": 1}

    assert db.session.get(Booking, past.id).status == BookingStatus.COMPLETED
    assert db.session.get(Booking, current.id).status == BookingStatus.ACTIVE
    assert db.session.get(Booking, future.id).status == BookingStatus.APPROVED
    assert db.session.get(Booking, pending.id).status == BookingStatus.PENDING

    event = BookingEvent.query.filter_by(booking_id=current.id, event_type="ACTIVATED").one()
    assert event.actor_id is None


def test_active_booking_cannot_be_cancelled(tenant, landlord, rental):
    early = BookingService(db.session, clock=lambda: date(2024, 1, 1))
    booking = _request(early, tenant, rental, start=date(2024, 2, 1), end=date(2024, 2, 28))
    early.approve_booking(booking.id, Actor.from_user(landlord))
    BookingService(db.session, clock=lambda: date(2024, 2, 2)).advance_statuses()

    with pytest.raises(InvalidTransition):
        early.cancel_booking(booking.id, Actor.from_user(tenant))


# ---------- storage failures ----------

class _UnreachableStore:
    """Session stand-in whose reads fail the way a dropped database connection does."""

    def __init__(self):
        self.rolled_back = False

    def get(self, *args, **kwargs):
        raise OperationalError("SELECT properties", {}, Exception("could not connect to server"))

    def rollback(self):
        self.rolled_back = True


def test_storage_outage_surfaces_as_storage_unavailable(tenant, rental):
    store = _UnreachableStore()
    service = BookingService(store, clock=lambda: date(2024, 1, 1))

    with pytest.raises(StorageUnavailable) as exc:
        _request(service, tenant, rental)

    assert store.rolled_back
    assert exc.value.status_code == 503
