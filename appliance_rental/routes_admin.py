"""Administrator endpoints: accounts, provider verification, categories, analytics."""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import listing
from .auth import login_required
from .constants import ApplianceStatus, RentalStatus, Role
from .errors import RentalError, ValidationError
from .extensions import db
from .models import Appliance, Category, Rental, User
from .routes import database_error, error_response, json_body

bp_admin = Blueprint("admin", __name__, url_prefix="/admin")

RECENT_COUNT = 5


def _search_users(query, search: str):
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    return query


@bp_admin.get("/users")
@login_required(Role.ADMIN)
def list_users() -> tuple[dict[str, object], int]:
    """List accounts with optional search and role filter.
    ---
    tags:
      - Admin
    parameters:
      - name: search
        in: query
        type: string
      - name: role
        in: query
        type: string
        enum: [USER, PROVIDER, ADMIN]
    responses:
      200:
        description: Users with pagination metadata
    """
    try:
        page, limit = listing.page_args(request.args)
        query = _search_users(User.query, request.args.get("search", "").strip())
        role = request.args.get("role", "").strip().upper()
        if role:
            if role not in Role.ALL:
                raise ValidationError(f"Unknown role: {role}", error="invalid_role")
            query = query.filter(User.role == role)
        users, pagination = listing.paginate(query.order_by(User.created_at.desc()), page, limit)
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch users")

    return jsonify({"users": [u.to_dict() for u in users], "pagination": pagination}), 200


@bp_admin.get("/providers")
@login_required(Role.ADMIN)
def list_providers() -> tuple[dict[str, object], int]:
    try:
        page, limit = listing.page_args(request.args)
        query = _search_users(User.query.filter(User.role == Role.PROVIDER), request.args.get("search", "").strip())
        verified = request.args.get("verified", "").strip().lower()
        if verified in ("true", "false"):
            query = query.filter(User.is_verified.is_(verified == "true"))
        providers, pagination = listing.paginate(query.order_by(User.created_at.desc()), page, limit)
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch providers")

    return jsonify({"providers": [p.to_dict() for p in providers], "pagination": pagination}), 200


@bp_admin.put("/providers/<int:provider_id>/verify")
@login_required(Role.ADMIN)
def verify_provider(provider_id: int) -> tuple[dict[str, object], int]:
    payload = json_body()
    is_verified = payload.get("is_verified")
    if not isinstance(is_verified, bool):
        return jsonify({"error": "invalid_payload", "message": "is_verified must be a boolean"}), 400

    provider = db.session.get(User, provider_id)
    if provider is None or provider.role != Role.PROVIDER:
        return jsonify({"error": "not_found", "message": "Provider not found"}), 404

    try:
        provider.is_verified = is_verified
        db.session.commit()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to update provider verification")

    current_app.logger.info("Admin %s set provider %s verified=%s", g.actor.user_id, provider_id, is_verified)
    return jsonify({"message": "Provider verification updated", "provider": provider.to_dict()}), 200


def _category_fields(payload: dict, partial: bool = False) -> dict[str, object]:
    values: dict[str, object] = {}
    for key in ("name", "description", "image"):
        if key in payload or not partial:
            value = payload.get(key)
            value = value.strip() if isinstance(value, str) else ""
            if not value:
                raise ValidationError(f"{key} is required")
            values[key] = value
    if "is_active" in payload:
        if not isinstance(payload["is_active"], bool):
            raise ValidationError("is_active must be a boolean")
        values["is_active"] = payload["is_active"]
    return values


@bp_admin.get("/categories")
@login_required(Role.ADMIN)
def list_all_categories() -> tuple[dict[str, object], int]:
    try:
        page, limit = listing.page_args(request.args)
        categories, pagination = listing.paginate(Category.query.order_by(Category.name), page, limit)
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch categories")

    return jsonify({"categories": [c.to_dict() for c in categories], "pagination": pagination}), 200


@bp_admin.post("/categories")
@login_required(Role.ADMIN)
def create_category() -> tuple[dict[str, object], int]:
    payload = json_body()
    try:
        category = Category(**_category_fields(payload))
        db.session.add(category)
        db.session.commit()
    except RentalError as exc:
        return error_response(exc)
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "conflict", "message": "A category with this name already exists"}), 409
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to create category")

    return jsonify({"message": "Category created", "category": category.to_dict()}), 201


@bp_admin.put("/categories/<int:category_id>")
@login_required(Role.ADMIN)
def update_category(category_id: int) -> tuple[dict[str, object], int]:
    payload = json_body()
    category = db.session.get(Category, category_id)
    if category is None:
        return jsonify({"error": "not_found", "message": "Category not found"}), 404

    try:
        for key, value in _category_fields(payload, partial=True).items():
            setattr(category, key, value)
        db.session.commit()
    except RentalError as exc:
        db.session.rollback()
        return error_response(exc)
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "conflict", "message": "A category with this name already exists"}), 409
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to update category")

    return jsonify({"message": "Category updated", "category": category.to_dict()}), 200


@bp_admin.delete("/categories/<int:category_id>")
@login_required(Role.ADMIN)
def deactivate_category(category_id: int) -> tuple[dict[str, object], int]:
    # Appliances keep their category reference, so categories are only hidden
    category = db.session.get(Category, category_id)
    if category is None:
        return jsonify({"error": "not_found", "message": "Category not found"}), 404

    try:
        category.is_active = False
        db.session.commit()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to deactivate category")

    return jsonify({"message": "Category deactivated", "category": category.to_dict()}), 200


@bp_admin.get("/analytics")
@login_required(Role.ADMIN)
def analytics() -> tuple[dict[str, object], int]:
    """Platform-wide counts plus recent activity.
    ---
    tags:
      - Admin
    responses:
      200:
        description: Counts of users, providers, appliances and rentals, recent records and popular categories
    """
    try:
        users_by_role = dict(
            db.session.query(User.role, func.count(User.user_id)).group_by(User.role).all()
        )
        appliances_by_status = dict(
            db.session.query(Appliance.status, func.count(Appliance.appliance_id)).group_by(Appliance.status).all()
        )
        rentals_by_status = dict(
            db.session.query(Rental.status, func.count(Rental.rental_id)).group_by(Rental.status).all()
        )
        revenue = (
            db.session.query(func.coalesce(func.sum(Rental.total_amount), 0.0))
            .filter(Rental.status == RentalStatus.COMPLETED)
            .scalar()
        )
        recent_users = User.query.order_by(User.created_at.desc()).limit(RECENT_COUNT).all()
        recent_rentals = Rental.query.order_by(Rental.created_at.desc()).limit(RECENT_COUNT).all()
        popular_categories = (
            db.session.query(Category.category_id, Category.name, func.count(Rental.rental_id).label("rentals"))
            .join(Appliance, Appliance.category_id == Category.category_id)
            .join(Rental, Rental.appliance_id == Appliance.appliance_id)
            .group_by(Category.category_id, Category.name)
            .order_by(func.count(Rental.rental_id).desc())
            .limit(RECENT_COUNT)
            .all()
        )
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to compute analytics")

    return jsonify({
        "counts": {
            "users": users_by_role.get(Role.USER, 0),
            "providers": users_by_role.get(Role.PROVIDER, 0),
            "admins": users_by_role.get(Role.ADMIN, 0),
            "appliances": sum(appliances_by_status.values()),
            "available_appliances": appliances_by_status.get(ApplianceStatus.AVAILABLE, 0),
            "rentals": sum(rentals_by_status.values()),
            "rentals_by_status": {status: rentals_by_status.get(status, 0) for status in RentalStatus.ALL},
            "completed_revenue": round(float(revenue or 0), 2),
        },
        "recent_users": [u.to_dict_basic() for u in recent_users],
        "recent_rentals": [r.to_dict() for r in recent_rentals],
        "popular_categories": [
            {"id": cid, "name": name, "rentals": count} for cid, name, count in popular_categories
        ],
    }), 200
