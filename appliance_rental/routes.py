"""HTTP routes for the appliance rental backend."""
from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from . import coordinator, listing, payments, storage
from .auth import build_token, login_required
from .constants import Role
from .errors import NotFound, RentalError, ValidationError
from .extensions import db
from .lifecycle import party_of
from .models import Appliance, AuthAccount, CartItem, Category, Rental, Review, User
from .pricing import compute_rental_cost

bp = Blueprint("api", __name__)

ADDRESS_FIELDS = ("street", "city", "state", "zip_code")


def error_response(exc: RentalError):
    return jsonify(exc.to_dict()), exc.status_code


def database_error(exc: SQLAlchemyError, message: str):
    db.session.rollback()
    current_app.logger.exception(message, exc_info=exc)
    return jsonify({"error": "database_error"}), 500


def json_body() -> dict:
    """The request JSON when it is an object, otherwise an empty dict."""
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def text_field(payload: dict, key: str, strip: bool = True) -> str:
    """Read a string field; missing or null reads as "", any other type is rejected."""
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value.strip() if strip else value


def register_routes(app) -> None:
    from .routes_admin import bp_admin
    from .routes_provider import bp_provider

    app.register_blueprint(bp)
    app.register_blueprint(bp_provider)
    app.register_blueprint(bp_admin)


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


# --- Identity ---


def _address(payload, key: str) -> dict[str, str] | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be an object")
    return {field: (str(value.get(field) or "").strip() or None) for field in ADDRESS_FIELDS}


@bp.post("/auth/register")
def register_user() -> tuple[dict[str, object], int]:
    """Register a new customer or provider account.
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            name:
              type: string
            email:
              type: string
            password:
              type: string
            role:
              type: string
              enum: [USER, PROVIDER]
            business_name:
              type: string
            business_address:
              type: object
          required:
            - name
            - email
            - password
    responses:
      201:
        description: User registered, returns an access token
      400:
        description: Invalid payload
      403:
        description: Administrator accounts cannot be self-registered
      409:
        description: Email already in use
    """
    payload = json_body()

    try:
        name = text_field(payload, "name")
        email = text_field(payload, "email").lower()
        password = text_field(payload, "password", strip=False)
        role = (text_field(payload, "role") or Role.USER).upper()
        phone = text_field(payload, "phone") or None
        business_name = text_field(payload, "business_name") or None
        address = _address(payload, "address") or {}
        business_address = _address(payload, "business_address") or {}
    except ValidationError as exc:
        return error_response(exc)

    if not name or not email or not password:
        return jsonify({"error": "invalid_payload", "message": "name, email, and password are required"}), 400

    if role == Role.ADMIN:
        return jsonify({"error": "forbidden", "message": "Administrator accounts cannot be registered"}), 403
    if role not in (Role.USER, Role.PROVIDER):
        return jsonify({"error": "invalid_role", "message": "role must be USER or PROVIDER"}), 400

    if role == Role.PROVIDER and (not business_name or not all(business_address.get(f) for f in ADDRESS_FIELDS)):
        return jsonify({
            "error": "invalid_payload",
            "message": "providers must supply business_name and a complete business_address",
        }), 400

    if User.query.filter_by(email=email).first():
        return jsonify({"error": "conflict", "message": "email address is already in use"}), 409

    try:
        new_user = User(
            name=name,
            email=email,
            role=role,
            phone=phone,
            street=address.get("street"),
            city=address.get("city"),
            state=address.get("state"),
            zip_code=address.get("zip_code"),
        )
        if role == Role.PROVIDER:
            new_user.business_name = business_name
            new_user.business_street = business_address["street"]
            new_user.business_city = business_address["city"]
            new_user.business_state = business_address["state"]
            new_user.business_zip_code = business_address["zip_code"]
        db.session.add(new_user)
        db.session.flush()

        db.session.add(AuthAccount(user_id=new_user.user_id, password_hash=generate_password_hash(password)))
        db.session.commit()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to register new user")

    token = build_token(new_user.user_id, new_user.role)
    return jsonify({"token": token, "user": new_user.to_dict_basic()}), 201


@bp.post("/auth/login")
def login() -> tuple[dict[str, object], int]:
    """Authenticate a user by email/password and return an access token.
    ---
    tags:
      - Authentication
    responses:
      200:
        description: Login successful, returns access token
      400:
        description: Missing email or password
      401:
        description: Invalid email or password
    """
    payload = json_body()

    try:
        email = text_field(payload, "email").lower()
        password = text_field(payload, "password", strip=False)
    except ValidationError as exc:
        return error_response(exc)

    if not email or not password:
        return jsonify({"error": "invalid_payload", "message": "email and password are required"}), 400

    record = (
        db.session.query(User, AuthAccount)
        .join(AuthAccount, AuthAccount.user_id == User.user_id)
        .filter(User.email == email)
        .first()
    )
    if not record:
        return jsonify({"error": "unauthorized", "message": "invalid email or password"}), 401

    user, auth_account = record
    if not check_password_hash(auth_account.password_hash, password):
        return jsonify({"error": "unauthorized", "message": "invalid email or password"}), 401

    try:
        auth_account.last_login_at = datetime.now(timezone.utc)
        db.session.commit()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to record login")

    token = build_token(user.user_id, user.role)
    return jsonify({"token": token, "user": user.to_dict()}), 200


@bp.get("/users/me")
@login_required()
def get_profile() -> tuple[dict[str, object], int]:
    user = db.session.get(User, g.actor.user_id)
    if user is None:
        return jsonify({"error": "not_found", "message": "user not found"}), 404
    return jsonify({"user": user.to_dict()}), 200


@bp.put("/users/me")
@login_required()
def update_profile() -> tuple[dict[str, object], int]:
    """Update name, phone, address and (for providers) the business profile."""
    payload = json_body()
    user = db.session.get(User, g.actor.user_id)
    if user is None:
        return jsonify({"error": "not_found", "message": "user not found"}), 404

    try:
        if "name" in payload:
            name = text_field(payload, "name")
            if not name:
                raise ValidationError("name cannot be empty")
            user.name = name
        if "phone" in payload:
            user.phone = text_field(payload, "phone") or None

        address = _address(payload, "address")
        if address is not None:
            user.street, user.city, user.state, user.zip_code = (address[f] for f in ADDRESS_FIELDS)

        if user.is_provider:
            if "business_name" in payload:
                business_name = text_field(payload, "business_name")
                if not business_name:
                    raise ValidationError("business_name cannot be empty")
                user.business_name = business_name
            business_address = _address(payload, "business_address")
            if business_address is not None:
                (user.business_street, user.business_city,
                 user.business_state, user.business_zip_code) = (business_address[f] for f in ADDRESS_FIELDS)

        db.session.commit()
    except RentalError as exc:
        db.session.rollback()
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to update profile")

    return jsonify({"message": "Profile updated", "user": user.to_dict()}), 200


@bp.put("/users/me/password")
@login_required()
def change_password() -> tuple[dict[str, object], int]:
    payload = json_body()
    try:
        current_password = text_field(payload, "current_password", strip=False)
        new_password = text_field(payload, "new_password", strip=False)
    except ValidationError as exc:
        return error_response(exc)

    if not current_password or not new_password:
        return jsonify({
            "error": "invalid_payload",
            "message": "current_password and new_password are required",
        }), 400
    if len(new_password) < 6:
        return jsonify({"error": "invalid_payload", "message": "new password must be at least 6 characters"}), 400

    account = db.session.get(AuthAccount, g.actor.user_id)
    if account is None or not check_password_hash(account.password_hash, current_password):
        return jsonify({"error": "unauthorized", "message": "current password is incorrect"}), 401

    try:
        account.password_hash = generate_password_hash(new_password)
        db.session.commit()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to change password")

    return jsonify({"message": "Password updated"}), 200


# --- Catalogue ---


@bp.get("/categories")
def list_categories() -> tuple[dict[str, object], int]:
    try:
        page, limit = listing.page_args(request.args)
        query = Category.query.filter(Category.is_active.is_(True)).order_by(Category.name)
        categories, pagination = listing.paginate(query, page, limit)
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch categories")

    return jsonify({"categories": [c.to_dict() for c in categories], "pagination": pagination}), 200


@bp.get("/appliances")
def list_appliances() -> tuple[dict[str, object], int]:
    """Return available appliances with search/filter support.
    ---
    tags:
      - Appliances
    parameters:
      - name: category
        in: query
        type: integer
      - name: search
        in: query
        type: string
        description: Matches name, description or brand (case-insensitive)
      - name: price_min
        in: query
        type: number
      - name: price_max
        in: query
        type: number
      - name: brands
        in: query
        type: string
        description: Comma separated brand names
      - name: page
        in: query
        type: integer
        default: 1
      - name: limit
        in: query
        type: integer
        default: 12
    responses:
      200:
        description: Appliances with pagination metadata
      400:
        description: Invalid filter or pagination parameters
    """
    try:
        filters = listing.appliance_filters(request.args)
        page, limit = listing.page_args(request.args)
        appliances, pagination = listing.paginate(listing.filter_appliances(filters), page, limit)
    except RentalError as exc:
        current_app.logger.warning("Invalid appliance listing parameters: %s", exc)
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch appliances")

    return jsonify({
        "appliances": [a.to_dict() for a in appliances],
        "pagination": pagination,
        "filters": filters,
    }), 200


@bp.get("/appliances/brands")
def list_brands() -> tuple[dict[str, object], int]:
    try:
        return jsonify({"brands": listing.available_brands()}), 200
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch brands")


@bp.get("/appliances/featured")
def featured_appliances() -> tuple[dict[str, object], int]:
    try:
        appliances = listing.featured_appliances()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch featured appliances")
    return jsonify({"appliances": [a.to_dict() for a in appliances]}), 200


@bp.get("/appliances/popular")
def popular_appliances() -> tuple[dict[str, object], int]:
    try:
        appliances = listing.popular_appliances()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch popular appliances")
    return jsonify({"appliances": [a.to_dict() for a in appliances]}), 200


@bp.get("/appliances/<int:appliance_id>")
def get_appliance(appliance_id: int) -> tuple[dict[str, object], int]:
    appliance = db.session.get(Appliance, appliance_id)
    if appliance is None:
        return jsonify({"error": "not_found", "message": "Appliance not found"}), 404
    return jsonify({"appliance": appliance.to_dict()}), 200


@bp.get("/appliances/<int:appliance_id>/reviews")
def get_appliance_reviews(appliance_id: int) -> tuple[dict[str, object], int]:
    if db.session.get(Appliance, appliance_id) is None:
        return jsonify({"error": "not_found", "message": "Appliance not found"}), 404
    try:
        page, limit = listing.page_args(request.args)
        query = Review.query.filter_by(appliance_id=appliance_id).order_by(Review.created_at.desc())
        reviews, pagination = listing.paginate(query, page, limit)
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch reviews")

    return jsonify({"reviews": [r.to_dict() for r in reviews], "pagination": pagination}), 200


@bp.get("/appliances/<int:appliance_id>/quote")
def quote_appliance(appliance_id: int) -> tuple[dict[str, object], int]:
    """Price a date range for an appliance.
    ---
    tags:
      - Appliances
    parameters:
      - name: start_date
        in: query
        type: string
        required: true
      - name: end_date
        in: query
        type: string
        required: true
    responses:
      200:
        description: Total, deposit and the monthly/weekly/daily breakdown
      400:
        description: Invalid or missing dates
      404:
        description: Appliance not found
    """
    appliance = db.session.get(Appliance, appliance_id)
    if appliance is None:
        return jsonify({"error": "not_found", "message": "Appliance not found"}), 404

    start_date = request.args.get("start_date")
    end_date = request.args.get("end_date")
    if not start_date or not end_date:
        return jsonify({"error": "invalid_payload", "message": "start_date and end_date are required"}), 400

    try:
        cost = compute_rental_cost(start_date, end_date, appliance.pricing)
    except RentalError as exc:
        return error_response(exc)

    min_days = current_app.config.get("RENTAL_MIN_DAYS", 30)
    quote = cost.to_dict()
    quote.update({"appliance_id": appliance_id, "min_days": min_days, "meets_minimum": cost.days >= min_days})
    return jsonify({"quote": quote}), 200


# --- Cart ---


def _cart_payload(user_id: int) -> dict[str, object]:
    items = CartItem.query.filter_by(user_id=user_id).order_by(CartItem.added_at).all()
    return {"items": [item.to_dict() for item in items], "count": len(items)}


@bp.get("/cart")
@login_required()
def get_cart() -> tuple[dict[str, object], int]:
    try:
        return jsonify(_cart_payload(g.actor.user_id)), 200
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch cart")


@bp.post("/cart")
@login_required()
def add_to_cart() -> tuple[dict[str, object], int]:
    payload = json_body()
    appliance_id = payload.get("appliance_id")
    if not isinstance(appliance_id, int) or isinstance(appliance_id, bool):
        return jsonify({"error": "invalid_payload", "message": "appliance_id must be an integer"}), 400

    if db.session.get(Appliance, appliance_id) is None:
        return jsonify({"error": "not_found", "message": "Appliance not found"}), 404

    existing = CartItem.query.filter_by(user_id=g.actor.user_id, appliance_id=appliance_id).first()
    if existing:
        return jsonify({"message": "Appliance already in cart", **_cart_payload(g.actor.user_id)}), 200

    try:
        db.session.add(CartItem(user_id=g.actor.user_id, appliance_id=appliance_id))
        db.session.commit()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to add appliance to cart")

    return jsonify({"message": "Appliance added to cart", **_cart_payload(g.actor.user_id)}), 201


@bp.delete("/cart/<int:appliance_id>")
@login_required()
def remove_from_cart(appliance_id: int) -> tuple[dict[str, object], int]:
    item = CartItem.query.filter_by(user_id=g.actor.user_id, appliance_id=appliance_id).first()
    if item is None:
        return jsonify({"error": "not_found", "message": "Appliance is not in the cart"}), 404
    try:
        db.session.delete(item)
        db.session.commit()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to remove appliance from cart")
    return jsonify({"message": "Appliance removed from cart", **_cart_payload(g.actor.user_id)}), 200


@bp.delete("/cart")
@login_required()
def clear_cart() -> tuple[dict[str, object], int]:
    try:
        CartItem.query.filter_by(user_id=g.actor.user_id).delete()
        db.session.commit()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to clear cart")
    return jsonify({"message": "Cart cleared", "items": [], "count": 0}), 200


@bp.post("/cart/checkout")
@login_required()
def checkout_cart() -> tuple[dict[str, object], int]:
    """Rent every listed cart item at once; all rentals are created or none.
    ---
    tags:
      - Cart
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            items:
              type: array
              description: "[{appliance_id, start_date, end_date}]"
            delivery_address:
              type: object
            delivery_time:
              type: string
            payment_method:
              type: string
              enum: [CASH_ON_DELIVERY, ONLINE]
            payment_intent_id:
              type: string
    responses:
      201:
        description: Rentals created
      400:
        description: Invalid payload, item not in cart, or payment incomplete
      409:
        description: An appliance is unavailable or was booked concurrently
    """
    payload = json_body()
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        return jsonify({"error": "invalid_payload", "message": "items must be a non-empty list"}), 400

    shared = {k: v for k, v in payload.items() if k != "items"}
    try:
        requests = [coordinator.RentalRequest.from_payload(item, shared) for item in items]
        in_cart = {
            item.appliance_id for item in CartItem.query.filter_by(user_id=g.actor.user_id).all()
        }
        missing = [r.appliance_id for r in requests if r.appliance_id not in in_cart]
        if missing:
            raise ValidationError(f"Appliances not in cart: {missing}", error="not_in_cart")
        rentals = coordinator.checkout_cart(requests, g.actor)
    except RentalError as exc:
        current_app.logger.warning("Checkout refused for user %s: %s", g.actor.user_id, exc)
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to check out cart")

    return jsonify({
        "message": "Rentals created successfully",
        "rentals": [r.to_dict() for r in rentals],
    }), 201


# --- Rentals (renter side) ---


@bp.post("/rentals")
@login_required()
def create_rental() -> tuple[dict[str, object], int]:
    """Book an appliance for a date range.
    ---
    tags:
      - Rentals
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            appliance_id:
              type: integer
            start_date:
              type: string
            end_date:
              type: string
            payment_method:
              type: string
              enum: [CASH_ON_DELIVERY, ONLINE]
            payment_intent_id:
              type: string
            delivery_address:
              type: object
            delivery_time:
              type: string
    responses:
      201:
        description: Rental created in PENDING, appliance locked
      400:
        description: Invalid payload, dates or payment
      404:
        description: Appliance not found
      409:
        description: Appliance unavailable or booked concurrently
    """
    payload = request.get_json(silent=True)
    try:
        rental_request = coordinator.RentalRequest.from_payload(payload)
        rental = coordinator.create_rental(rental_request, g.actor)
    except RentalError as exc:
        current_app.logger.warning("Rental creation refused for user %s: %s", g.actor.user_id, exc)
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to create rental")

    return jsonify({"message": "Rental created successfully", "rental": rental.to_dict()}), 201


@bp.get("/rentals")
@login_required()
def list_my_rentals() -> tuple[dict[str, object], int]:
    try:
        statuses = listing.parse_status_filter(request.args.get("status"))
        page, limit = listing.page_args(request.args)
        query = Rental.query.filter_by(user_id=g.actor.user_id)
        if statuses:
            query = query.filter(Rental.status.in_(statuses))
        rentals, pagination = listing.paginate(query.order_by(Rental.created_at.desc()), page, limit)
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch rentals")

    return jsonify({"rentals": [r.to_dict() for r in rentals], "pagination": pagination}), 200


@bp.get("/rentals/<int:rental_id>")
@login_required()
def get_rental(rental_id: int) -> tuple[dict[str, object], int]:
    rental = db.session.get(Rental, rental_id)
    try:
        if rental is None:
            raise NotFound("Rental not found")
        if not g.actor.is_admin:
            party_of(rental, g.actor)
    except RentalError as exc:
        return error_response(exc)
    return jsonify({"rental": rental.to_dict()}), 200


@bp.patch("/rentals/<int:rental_id>")
@login_required()
def transition_rental(rental_id: int) -> tuple[dict[str, object], int]:
    """Move a rental to a new status on behalf of its renter or provider.
    ---
    tags:
      - Rentals
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
      403:
        description: The caller may not request this transition
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
        current_app.logger.warning("Transition of rental %s to %s refused: %s", rental_id, status, exc)
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to update rental status")

    return jsonify({"message": f"Rental {status.lower()}", "rental": rental.to_dict()}), 200


@bp.post("/rentals/<int:rental_id>/cancel")
@login_required()
def cancel_rental(rental_id: int) -> tuple[dict[str, object], int]:
    try:
        rental = coordinator.cancel_rental(rental_id, g.actor)
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to cancel rental")

    return jsonify({"message": "Rental cancelled", "rental": rental.to_dict()}), 200


# --- Reviews ---


@bp.post("/reviews")
@login_required()
def create_review() -> tuple[dict[str, object], int]:
    payload = json_body()
    appliance_id = payload.get("appliance_id")
    if not isinstance(appliance_id, int) or isinstance(appliance_id, bool):
        return jsonify({"error": "invalid_payload", "message": "appliance_id must be an integer"}), 400

    try:
        review = coordinator.create_review(g.actor, appliance_id, payload.get("rating"), payload.get("comment"))
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to create review")

    return jsonify({"message": "Review submitted", "review": review.to_dict()}), 201


@bp.get("/reviews/mine")
@login_required()
def my_reviews() -> tuple[dict[str, object], int]:
    try:
        reviews = Review.query.filter_by(user_id=g.actor.user_id).order_by(Review.created_at.desc()).all()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch reviews")
    return jsonify({"reviews": [r.to_dict() for r in reviews]}), 200


# --- Payments (Stripe PaymentIntent; the amount is always computed here) ---


@bp.post("/payments/intent")
@login_required()
def create_payment_intent() -> tuple[dict[str, object], int]:
    """Create a Stripe PaymentIntent for one or more appliance bookings.
    ---
    tags:
      - Payments
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            items:
              type: array
              description: "[{appliance_id, start_date, end_date}]"
    responses:
      200:
        description: Payment intent created, returns the client secret
      400:
        description: Invalid request payload
      404:
        description: Appliance not found
      502:
        description: Payment gateway error
    """
    payload = json_body()
    items = payload.get("items")
    if items is None and payload.get("appliance_id") is not None:
        items = [payload]
    if not isinstance(items, list) or not items:
        return jsonify({"error": "invalid_payload", "message": "items must be a non-empty list"}), 400

    try:
        amount = 0.0
        appliance_ids = []
        for item in items:
            if not isinstance(item, dict):
                raise ValidationError("each item must be an object")
            appliance_id = item.get("appliance_id")
            if not isinstance(appliance_id, int) or isinstance(appliance_id, bool):
                raise ValidationError("appliance_id must be an integer")
            appliance = db.session.get(Appliance, appliance_id)
            if appliance is None:
                raise NotFound("Appliance not found")
            if not item.get("start_date") or not item.get("end_date"):
                raise ValidationError("start_date and end_date are required")
            cost = compute_rental_cost(item["start_date"], item["end_date"], appliance.pricing)
            amount += cost.total_amount + cost.deposit
            appliance_ids.append(str(appliance.appliance_id))

        if amount <= 0:
            raise ValidationError("Payment amount must be positive", error="invalid_amount")

        intent = payments.create_payment_intent(
            round(amount, 2),
            metadata={"user_id": str(g.actor.user_id), "appliance_ids": ",".join(appliance_ids)},
        )
    except RentalError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to prepare payment intent")

    return jsonify({**intent, "amount": round(amount, 2)}), 200


# --- Uploads ---


@bp.post("/uploads/images")
@login_required(Role.PROVIDER, Role.ADMIN)
def upload_image() -> tuple[dict[str, object], int]:
    """Upload an appliance (providers) or category (admins) image to S3.
    ---
    tags:
      - Uploads
    consumes:
      - multipart/form-data
    parameters:
      - name: image
        in: formData
        type: file
        required: true
      - name: folder
        in: formData
        type: string
        enum: [appliances, categories]
    responses:
      201:
        description: Image uploaded, returns its public URL
      400:
        description: Missing or unsupported file
      502:
        description: Object storage error
    """
    folder = request.form.get("folder", "appliances")
    if folder not in ("appliances", "categories"):
        return jsonify({"error": "invalid_payload", "message": "folder must be appliances or categories"}), 400
    if folder == "categories" and not g.actor.is_admin:
        return jsonify({"error": "forbidden", "message": "Only administrators upload category images"}), 403

    try:
        url = storage.upload_image(request.files.get("image"), folder=folder)
    except RentalError as exc:
        return error_response(exc)

    return jsonify({"url": url}), 201
