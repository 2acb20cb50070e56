from flask import Blueprint, request, jsonify, g

from models import db
from models.property import Property
from security.rbac import can_manage_property, require_roles
from routes.bookings import booking_service
from utils.audit import log_event
from utils.auth_context import login_required
from utils.params import parse_amount, parse_date

property_bp = Blueprint("property", __name__, url_prefix="/properties")

REVIEW_STATUSES = ("APPROVED", "REJECTED")


def _property_to_dict(p):
    return {
        "id": p.id,
        "owner_user_id": p.owner_user_id,
        "title": p.title,
        "description": p.description,
        "address": p.address,
        "city": p.city,
        "state": p.state,
        "price": str(p.price),
        "currency_code": p.currency_code,
        "is_available": p.is_available,
        "status": p.status,
        "created_at": p.created_at.isoformat(),
    }


@property_bp.post("")
@require_roles("LANDLORD")
def create_property():
    data = request.get_json(silent=True) or {}
    title = (data.get("title") or "").strip()
    address = (data.get("address") or "").strip()
    city = (data.get("city") or "").strip()
    if not title or not address or not city:
        return jsonify(error="title, address and city are required"), 400

    try:
        price = parse_amount(data.get("price"), "price")
    except ValueError as exc:
        return jsonify(error=str(exc)), 400

    prop = Property(
        owner_user_id=g.user.id,
        title=title,
        description=(data.get("description") or "").strip() or None,
        address=address,
        city=city,
        state=(data.get("state") or "").strip() or None,
        price=price,
        currency_code=(data.get("currency_code") or "MYR").strip().upper()[:3],
        is_available=bool(data.get("is_available", True)),
        status="PENDING",
    )
    db.session.add(prop)
    db.session.commit()

    log_event("PROPERTY_CREATE", user_id=g.user.id, entity="property", entity_id=prop.id)
    return jsonify(_property_to_dict(prop)), 201


@property_bp.get("/me")
@login_required
def my_properties():
    rows = (
        Property.query
        .filter_by(owner_user_id=g.user.id)
        .order_by(Property.created_at.desc())
        .all()
    )
    return jsonify([_property_to_dict(p) for p in rows]), 200


@property_bp.get("/<int:property_id>")
def get_property(property_id: int):
    prop = db.session.get(Property, property_id)
    if not prop:
        return jsonify(error="Property not found"), 404
    return jsonify(_property_to_dict(prop)), 200


@property_bp.post("/<int:property_id>/availability")
@login_required
def set_availability(property_id: int):
    data = request.get_json(silent=True) or {}
    is_available = data.get("is_available")
    if not isinstance(is_available, bool):
        return jsonify(error="is_available must be true or false"), 400

    prop = db.session.get(Property, property_id)
    if not prop:
        return jsonify(error="Property not found"), 404
    if not can_manage_property(g.user, prop):
        return jsonify(error="Forbidden"), 403

    prop.is_available = is_available
    db.session.commit()

    log_event(
        "PROPERTY_AVAILABILITY",
        user_id=g.user.id,
        entity="property",
        entity_id=prop.id,
        metadata={"is_available": is_available},
    )
    return jsonify(id=prop.id, is_available=prop.is_available), 200


@property_bp.post("/<int:property_id>/review")
@require_roles("ADMIN")
def review_property(property_id: int):
    data = request.get_json(silent=True) or {}
    status = (data.get("status") or "").strip().upper()
    if status not in REVIEW_STATUSES:
        return jsonify(error="status must be APPROVED or REJECTED"), 400

    prop = db.session.get(Property, property_id)
    if not prop:
        return jsonify(error="Property not found"), 404

    prop.status = status
    db.session.commit()

    log_event("PROPERTY_REVIEW", user_id=g.user.id, entity="property", entity_id=prop.id, metadata={"status": status})
    return jsonify(id=prop.id, status=prop.status), 200


@property_bp.get("/<int:property_id>/booked-periods")
def booked_periods(property_id: int):
    try:
        range_start = parse_date(request.args["start_date"]) if request.args.get("start_date") else None
        range_end = parse_date(request.args["end_date"]) if request.args.get("end_date") else None
    except ValueError:
        return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400

    periods = booking_service().booked_periods(property_id, range_start, range_end)
    return jsonify([
        {
            "id": p["id"],
            "start_date": p["start_date"].isoformat(),
            "end_date": p["end_date"].isoformat(),
            "status": p["status"],
        }
        for p in periods
    ]), 200
