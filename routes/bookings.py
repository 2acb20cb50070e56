from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.booking import BookingStatus
from services.bookings import BookingService, SCOPE_LANDLORD, SCOPE_TENANT
from utils.audit import log_event
from utils.auth_context import current_actor, login_required
from utils.params import parse_amount, parse_date

booking_bp = Blueprint("booking", __name__, url_prefix="/bookings")


def booking_service():
    return BookingService(
        db.session,
        boundary_policy=current_app.config.get("BOOKING_BOUNDARY_POLICY", "inclusive"),
    )


def _party(user):
    return {"id": user.id, "name": user.name, "email": user.email, "phone": user.phone}


def _text_field(data, name):
    value = data.get(name)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    return value


def _booking_to_dict(b):
    prop = b.rented_property
    return {
        "id": b.id,
        "property_id": b.property_id,
        "property": {"id": prop.id, "title": prop.title, "city": prop.city},
        "tenant_id": b.tenant_id,
        "tenant": _party(b.tenant),
        "landlord_id": b.landlord_id,
        "landlord": _party(b.landlord),
        "start_date": b.start_date.isoformat(),
        "end_date": b.end_date.isoformat(),
        "rent_amount": str(b.rent_amount),
        "security_deposit": str(b.security_deposit) if b.security_deposit is not None else None,
        "total_price": str(b.total_price),
        "status": b.status,
        "notes": b.notes,
        "cancelled_at": b.cancelled_at.isoformat() if b.cancelled_at else None,
        "cancel_reason": b.cancel_reason,
        "created_at": b.created_at.isoformat(),
        "updated_at": b.updated_at.isoformat(),
    }


def _page_args():
    default_size = current_app.config.get("BOOKINGS_PAGE_SIZE", 10)
    max_size = current_app.config.get("BOOKINGS_MAX_PAGE_SIZE", 100)
    page = request.args.get("page", type=int) or 1
    limit = request.args.get("limit", type=int) or default_size
    return max(1, page), max(1, min(limit, max_size))


def _list(scope=None):
    status = (request.args.get("status") or "").strip().upper() or None
    if status and status not in BookingStatus.ALL:
        return jsonify(error="Unknown status", allowed=list(BookingStatus.ALL)), 400

    page, limit = _page_args()
    items, pagination = booking_service().list_bookings(
        current_actor(),
        status=status,
        property_id=request.args.get("property_id", type=int),
        scope=scope,
        page=page,
        limit=limit,
    )
    return jsonify(bookings=[_booking_to_dict(b) for b in items], pagination=pagination), 200


# ---------- TENANT: request a booking ----------
@booking_bp.post("")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}
    property_id = data.get("property_id")
    if isinstance(property_id, bool) or not isinstance(property_id, int) or property_id < 1:
        return jsonify(error="property_id must be a positive integer"), 400

    try:
        start_date = parse_date(data.get("start_date"))
        end_date = parse_date(data.get("end_date"))
    except ValueError:
        return jsonify(error="start_date and end_date must be ISO dates e.g. 2026-01-20"), 400

    try:
        rent_amount = parse_amount(data["rent_amount"], "rent_amount") if data.get("rent_amount") is not None else None
        deposit = parse_amount(data["security_deposit"], "security_deposit") if data.get("security_deposit") is not None else None
        notes = (_text_field(data, "notes") or "").strip() or None
    except ValueError as exc:
        return jsonify(error=str(exc)), 400

    max_notes = current_app.config.get("BOOKING_NOTES_MAX_LENGTH", 1000)
    if notes and len(notes) > max_notes:
        return jsonify(error=f"notes cannot exceed {max_notes} characters"), 400

    booking = booking_service().create_booking(
        current_actor(),
        property_id,
        start_date,
        end_date,
        rent_amount=rent_amount,
        security_deposit=deposit,
        notes=notes,
    )

    log_event(
        "BOOKING_CREATE",
        user_id=g.user.id,
        entity="booking",
        entity_id=booking.id,
        metadata={"property_id": property_id},
    )
    return jsonify(_booking_to_dict(booking)), 201


# ---------- scoped lists ----------
@booking_bp.get("")
@login_required
def list_bookings():
    return _list()


@booking_bp.get("/my-bookings")
@login_required
def my_bookings():
    return _list(SCOPE_TENANT)


@booking_bp.get("/owner-bookings")
@login_required
def owner_bookings():
    return _list(SCOPE_LANDLORD)


@booking_bp.get("/<int:booking_id>")
@login_required
def get_booking(booking_id: int):
    booking = booking_service().get_booking(booking_id, current_actor())
    return jsonify(_booking_to_dict(booking)), 200


@booking_bp.get("/<int:booking_id>/events")
@login_required
def booking_events(booking_id: int):
    events = booking_service().events_for(booking_id, current_actor())
    return jsonify([
        {
            "id": e.id,
            "event_type": e.event_type,
            "actor_id": e.actor_id,
            "from_status": e.from_status,
            "to_status": e.to_status,
            "payload": e.payload_json,
            "created_at": e.created_at.isoformat(),
        }
        for e in events
    ]), 200


# ---------- LANDLORD/ADMIN: decide ----------
@booking_bp.post("/<int:booking_id>/approve")
@login_required
def approve_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    try:
        notes = _text_field(data, "notes")
    except ValueError as exc:
        return jsonify(error=str(exc)), 400

    booking = booking_service().approve_booking(booking_id, current_actor(), notes=notes)

    log_event("BOOKING_APPROVE", user_id=g.user.id, entity="booking", entity_id=booking_id)
    return jsonify(_booking_to_dict(booking)), 200


@booking_bp.post("/<int:booking_id>/reject")
@login_required
def reject_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    try:
        reason = _text_field(data, "reason")
    except ValueError as exc:
        return jsonify(error=str(exc)), 400

    booking = booking_service().reject_booking(booking_id, current_actor(), reason)

    log_event("BOOKING_REJECT", user_id=g.user.id, entity="booking", entity_id=booking_id, metadata={"reason": reason})
    return jsonify(_booking_to_dict(booking)), 200


# ---------- any participant: cancel ----------
@booking_bp.post("/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    try:
        reason = _text_field(data, "reason")
    except ValueError as exc:
        return jsonify(error=str(exc)), 400

    booking = booking_service().cancel_booking(booking_id, current_actor(), reason=reason)

    log_event("BOOKING_CANCEL", user_id=g.user.id, entity="booking", entity_id=booking_id, metadata={"reason": reason})
    return jsonify(_booking_to_dict(booking)), 200
