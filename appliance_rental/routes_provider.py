"""Provider workspace: inventory management and rental fulfilment."""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from . import coordinator, listing
from .auth import login_required
from .constants import ApplianceStatus, RentalStatus, Role
from .errors import Forbidden, NotFound, RentalError, ValidationError
from .extensions import db
from .models import Appliance, Category, Rental, User
from .pricing import PricingTiers
from .routes import database_error, error_response, json_body, text_field

bp_provider = Blueprint("provider", __name__, url_prefix="/provider")

SPEC_FIELDS = ("brand", "model", "year")


def _parse_appliance(payload: dict, partial: bool = False) -> dict[str, object]:
    """Validate an appliance body into column values.

    With ``partial`` only the keys present are returned. ``status`` is never
    read here; it has its own endpoint.
    """
    values: dict[str, object] = {}

    for key in ("name", "description"):
        if key in payload or not partial:
            value = payload.get(key)
            value = value.strip() if isinstance(value, str) else ""
            if not value:
                raise ValidationError(f"{key} is required")
            values[key] = value

    if "category_id" in payload:
        category_id = payload.get("category_id")
        if category_id is not None:
            category = db.session.get(Category, category_id) if isinstance(category_id, int) else None
            if category is None or not category.is_active:
                raise ValidationError("category_id does not reference an active category", error="invalid_category")
        values["category_id"] = category_id

    if "images" in payload or not partial:
        images = payload.get("images") or []
        if not isinstance(images, list) or not all(isinstance(i, str) for i in images):
            raise ValidationError("images must be a list of URLs")
        values["images"] = images

    if "specifications" in payload or not partial:
        specs = payload.get("specifications")
        if not isinstance(specs, dict):
            raise ValidationError("specifications must be an object with brand, model and year")
        brand = str(specs.get("brand") or "").strip()
        model = str(specs.get("model") or "").strip()
        if not brand or not model:
            raise ValidationError("specifications.brand and specifications.model are required")
        try:
            year = int(specs.get("year"))
        except (TypeError, ValueError):
            raise ValidationError("specifications.year must be an integer") from None
        values.update({
            "brand": brand,
            "model": model,
            "year": year,
            "extra_specifications": {k: v for k, v in specs.items() if k not in SPEC_FIELDS},
        })

    if "pricing" in payload or not partial:
        values["pricing"] = PricingTiers.from_payload(payload.get("pricing"))

    return values


def _own_appliance(appliance_id: int) -> Appliance:
    appliance = db.session.get(Appliance, appliance_id)
    if appliance is None:
        raise NotFound("Appliance not found")
    if appliance.provider_id != g.actor.user_id:
        raise Forbidden("You can only manage your own appliances")
    return appliance


@bp_provider.get("/appliances")
@login_required(Role.PROVIDER)
def list_provider_appliances() -> tuple[dict[str, object], int]:
    try:
        page, limit = listing.page_args(request.args)
        query = Appliance.query.filter_by(provider_id=g.actor.user_id)
        status = (request.args.get("status") or "").strip().upper()
        if status:
            if status not in ApplianceStatus.ALL:
                raise ValidationError(f"Unknown status: {status}", error="invalid_status")
            query = query.filter(Appliance.status == status)
        appliances, pagination = listing.paginate(query.order_by(Appliance.created_at.desc()), page, limit)
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch provider appliances")

    return jsonify({"appliances": [a.to_dict() for a in appliances], "pagination": pagination}), 200


@bp_provider.post("/appliances")
@login_required(Role.PROVIDER)
def create_appliance() -> tuple[dict[str, object], int]:
    """List a new appliance for rent.
    ---
    tags:
      - Provider
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            name:
              type: string
            description:
              type: string
            category_id:
              type: integer
            images:
              type: array
              items:
                type: string
            specifications:
              type: object
              description: brand, model, year and any extra fields
            pricing:
              type: object
              description: daily, weekly, monthly, deposit
    responses:
      201:
        description: Appliance created as AVAILABLE
      400:
        description: Invalid payload
    """
    payload = json_body()
    try:
        values = _parse_appliance(payload)
        pricing = values.pop("pricing")
        appliance = Appliance(provider_id=g.actor.user_id, **values)
        appliance.pricing = pricing
        db.session.add(appliance)
        db.session.commit()
    except RentalError as exc:
        db.session.rollback()
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to create appliance")

    current_app.logger.info("Provider %s listed appliance %s", g.actor.user_id, appliance.appliance_id)
    return jsonify({"message": "Appliance created", "appliance": appliance.to_dict()}), 201


@bp_provider.get("/appliances/<int:appliance_id>")
@login_required(Role.PROVIDER)
def get_provider_appliance(appliance_id: int) -> tuple[dict[str, object], int]:
    try:
        appliance = _own_appliance(appliance_id)
    except RentalError as exc:
        return error_response(exc)
    return jsonify({"appliance": appliance.to_dict()}), 200


@bp_provider.put("/appliances/<int:appliance_id>")
@login_required(Role.PROVIDER)
def update_appliance(appliance_id: int) -> tuple[dict[str, object], int]:
    payload = json_body()
    try:
        appliance = _own_appliance(appliance_id)
        values = _parse_appliance(payload, partial=True)
        pricing = values.pop("pricing", None)
        for key, value in values.items():
            setattr(appliance, key, value)
        if pricing is not None:
            appliance.pricing = pricing
        db.session.commit()
    except RentalError as exc:
        db.session.rollback()
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to update appliance")

    return jsonify({"message": "Appliance updated", "appliance": appliance.to_dict()}), 200


@bp_provider.delete("/appliances/<int:appliance_id>")
@login_required(Role.PROVIDER)
def delete_appliance(appliance_id: int) -> tuple[dict[str, object], int]:
    try:
        coordinator.delete_appliance(appliance_id, g.actor)
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to delete appliance")

    return jsonify({"message": "Appliance deleted"}), 200


@bp_provider.put("/appliances/<int:appliance_id>/status")
@login_required(Role.PROVIDER)
def set_appliance_status(appliance_id: int) -> tuple[dict[str, object], int]:
    """Toggle an appliance between AVAILABLE and MAINTENANCE.
    ---
    tags:
      - Provider
    responses:
      200:
        description: Status updated
      400:
        description: Status is not AVAILABLE or MAINTENANCE
      403:
        description: Appliance belongs to another provider
      409:
        description: An open rental holds the appliance
    """
    payload = json_body()
    try:
        status = text_field(payload, "status").upper()
        appliance = coordinator.set_appliance_status(appliance_id, status, g.actor)
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to update appliance status")

    return jsonify({"message": "Appliance status updated", "appliance": appliance.to_dict()}), 200


@bp_provider.get("/rentals")
@login_required(Role.PROVIDER)
def list_provider_rentals() -> tuple[dict[str, object], int]:
    try:
        statuses = listing.parse_status_filter(request.args.get("status"))
        page, limit = listing.page_args(request.args)
        query = Rental.query.filter_by(provider_id=g.actor.user_id)
        if statuses:
            query = query.filter(Rental.status.in_(statuses))
        rentals, pagination = listing.paginate(query.order_by(Rental.created_at.desc()), page, limit)
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch provider rentals")

    return jsonify({"rentals": [r.to_dict() for r in rentals], "pagination": pagination}), 200


@bp_provider.get("/rentals/<int:rental_id>")
@login_required(Role.PROVIDER)
def get_provider_rental(rental_id: int) -> tuple[dict[str, object], int]:
    rental = db.session.get(Rental, rental_id)
    if rental is None or rental.provider_id != g.actor.user_id:
        return jsonify({"error": "not_found", "message": "Rental not found"}), 404
    return jsonify({"rental": rental.to_dict()}), 200


@bp_provider.put("/rentals/<int:rental_id>/status")
@login_required(Role.PROVIDER)
def update_rental_status(rental_id: int) -> tuple[dict[str, object], int]:
    """Approve, reject, activate, complete or cancel a rental.
    ---
    tags:
      - Provider
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            status:
              type: string
              enum: [APPROVED, REJECTED, ACTIVE, COMPLETED, CANCELLED]
    responses:
      200:
        description: Rental updated
      400:
        description: Transition not allowed from the current status
      404:
        description: Rental not found
      409:
        description: Concurrent update, retry
    """
    payload = json_body()
    try:
        status = text_field(payload, "status").upper()
    except ValidationError as exc:
        return error_response(exc)
    if not status:
        return jsonify({"error": "invalid_payload", "message": "status is required"}), 400

    try:
        rental = coordinator.execute_transition(rental_id, status, g.actor)
    except RentalError as exc:
        current_app.logger.warning("Provider %s could not move rental %s to %s: %s",
                                   g.actor.user_id, rental_id, status, exc)
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to update rental status")

    return jsonify({"message": f"Rental {status.lower()}", "rental": rental.to_dict()}), 200


@bp_provider.get("/stats")
@login_required(Role.PROVIDER)
def provider_stats() -> tuple[dict[str, object], int]:
    provider_id = g.actor.user_id
    try:
        total_appliances = Appliance.query.filter_by(provider_id=provider_id).count()
        counts = dict(
            db.session.query(Rental.status, func.count(Rental.rental_id))
            .filter(Rental.provider_id == provider_id)
            .group_by(Rental.status)
            .all()
        )
        total_earnings = (
            db.session.query(func.coalesce(func.sum(Rental.total_amount), 0.0))
            .filter(Rental.provider_id == provider_id, Rental.status == RentalStatus.COMPLETED)
            .scalar()
        )
        provider = db.session.get(User, provider_id)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to compute provider stats")

    return jsonify({
        "stats": {
            "total_appliances": total_appliances,
            "active_rentals": counts.get(RentalStatus.APPROVED, 0) + counts.get(RentalStatus.ACTIVE, 0),
            "completed_rentals": counts.get(RentalStatus.COMPLETED, 0),
            "pending_requests": counts.get(RentalStatus.PENDING, 0),
            "total_earnings": round(float(total_earnings or 0), 2),
            "average_rating": provider.rating if provider else 0.0,
        }
    }), 200
