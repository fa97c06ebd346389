"""
RENTAL TRANSACTION COORDINATOR

Every write that touches both a rental and its appliance goes through here,
inside one database unit of work (``atomic``). Inside the unit the rental and
the appliance are re-read with ``SELECT ... FOR UPDATE`` and the appliance
status is written with a conditional UPDATE that only matches the status the
coordinator just validated. If another request changed the appliance in
between, the UPDATE matches no row and the whole unit is rolled back with
``Conflict``.

Calls to the payment gateway happen before the unit is opened so no row lock
is held across network I/O. The unit then claims the payment intent in
``payment_claims`` so one payment can fund only one booking or checkout.
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError

from . import payments
from .constants import ApplianceStatus, PaymentMethod, PaymentStatus, RentalStatus
from .errors import (ApplianceUnavailable, Conflict, DuplicateReview, Forbidden,
                     NotFound, PaymentAlreadyUsed, ValidationError)
from .extensions import db
from .lifecycle import (ALLOWED_TRANSITIONS, OPEN_STATES, Actor, Transition,
                        ensure_renter_cancellable, party_of, validate_transition)
from .models import Appliance, CartItem, PaymentClaim, Rental, Review, User, utc_now
from .pricing import as_date, compute_rental_cost

MANUAL_APPLIANCE_STATES = (ApplianceStatus.AVAILABLE, ApplianceStatus.MAINTENANCE)


@dataclass(frozen=True)
class DeliveryDetails:
    street: str
    city: str
    state: str
    zip_code: str
    time: str

    @classmethod
    def from_payload(cls, address, delivery_time) -> "DeliveryDetails":
        if not isinstance(address, dict):
            raise ValidationError("delivery_address is required", error="invalid_payload")
        fields = {key: str(address.get(key) or "").strip() for key in ("street", "city", "state", "zip_code")}
        missing = [key for key, value in fields.items() if not value]
        if missing:
            raise ValidationError(f"delivery_address is missing: {', '.join(missing)}")
        if not delivery_time or not str(delivery_time).strip():
            raise ValidationError("delivery_time is required")
        return cls(time=str(delivery_time).strip(), **fields)


@dataclass(frozen=True)
class RentalRequest:
    """A validated request to book one appliance."""

    appliance_id: int
    start_date: date
    end_date: date
    payment_method: str
    delivery: DeliveryDetails
    payment_intent_id: str | None = None

    @classmethod
    def from_payload(cls, data: dict, shared: dict | None = None) -> "RentalRequest":
        """Build from a request body.

        ``shared`` supplies delivery and payment fields common to every item
        of a cart checkout; keys in ``data`` win.
        """
        for part in (data, shared):
            if part is not None and not isinstance(part, dict):
                raise ValidationError("each item must be an object")
        merged = dict(shared or {})
        merged.update(data or {})

        appliance_id = merged.get("appliance_id")
        if isinstance(appliance_id, bool) or not isinstance(appliance_id, int):
            try:
                appliance_id = int(str(appliance_id))
            except ValueError:
                raise ValidationError("appliance_id must be an integer") from None

        for key in ("start_date", "end_date"):
            if not merged.get(key):
                raise ValidationError(f"{key} is required")

        payment_method = merged.get("payment_method") or PaymentMethod.CASH_ON_DELIVERY
        if payment_method not in PaymentMethod.ALL:
            raise ValidationError(
                f"payment_method must be one of: {', '.join(PaymentMethod.ALL)}",
                error="invalid_payment_method",
            )

        payment_intent_id = merged.get("payment_intent_id") or None
        if payment_intent_id is not None and not isinstance(payment_intent_id, str):
            raise ValidationError("payment_intent_id must be a string")

        return cls(
            appliance_id=appliance_id,
            start_date=as_date(merged["start_date"]),
            end_date=as_date(merged["end_date"]),
            payment_method=payment_method,
            delivery=DeliveryDetails.from_payload(merged.get("delivery_address"), merged.get("delivery_time")),
            payment_intent_id=payment_intent_id,
        )


@contextmanager
def atomic():
    """Run the block as one unit of work: commit on success, roll back on any error.

    Lock waits and statement timeouts surface from the driver as
    ``OperationalError`` and are reported as ``Conflict``.
    """
    try:
        _bound_duration()
        yield db.session
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        current_app.logger.warning("Rental unit of work aborted: %s", exc)
        raise Conflict() from exc
    except Exception:
        db.session.rollback()
        raise


def _bound_duration() -> None:
    timeout_ms = int(current_app.config.get("RENTAL_TX_TIMEOUT_MS") or 0)
    if timeout_ms > 0 and db.engine.dialect.name == "postgresql":
        db.session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


def _load_appliance(appliance_id: int, lock: bool = True) -> Appliance | None:
    stmt = db.select(Appliance).filter_by(appliance_id=appliance_id)
    if lock:
        stmt = stmt.with_for_update()
    return db.session.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()


def _load_rental(rental_id: int) -> Rental | None:
    stmt = (
        db.select(Rental)
        .filter_by(rental_id=rental_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def _write_appliance_status(appliance_id: int, expected: tuple[str, ...], new_status: str) -> int:
    """Set the appliance status only if it is still one of ``expected``.

    Returns the number of rows changed (0 or 1).
    """
    result = db.session.execute(
        db.update(Appliance)
        .where(Appliance.appliance_id == appliance_id, Appliance.status.in_(expected))
        .values(status=new_status, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    cached = db.session.identity_map.get(db.session.identity_key(Appliance, appliance_id))
    if cached is not None:
        db.session.expire(cached, ["status", "updated_at"])
    return result.rowcount


# ---------------------------------------------------------------------------
# Rental creation
# ---------------------------------------------------------------------------

def _check_dates(req: RentalRequest) -> None:
    if req.end_date <= req.start_date:
        raise ValidationError("end_date must be after start_date", error="invalid_date_range")
    if req.start_date < date.today():
        raise ValidationError("start_date cannot be in the past", error="invalid_date_range")
    min_days = int(current_app.config.get("RENTAL_MIN_DAYS", 30))
    if (req.end_date - req.start_date).days < min_days:
        raise ValidationError(f"Minimum rental duration is {min_days} days", error="rental_too_short")


def _quote(req: RentalRequest, actor: Actor):
    """Pre-read the appliance outside the unit to price the request."""
    appliance = db.session.get(Appliance, req.appliance_id)
    if appliance is None:
        raise NotFound("Appliance not found")
    if appliance.provider_id == actor.user_id:
        raise Forbidden("You cannot rent your own appliance")
    if appliance.status != ApplianceStatus.AVAILABLE:
        raise ApplianceUnavailable()
    return compute_rental_cost(req.start_date, req.end_date, appliance.pricing)


def _verify_payment(intent_id: str | None, expected_amount: float) -> None:
    if not intent_id:
        raise ValidationError("payment_intent_id is required for online payment", error="payment_incomplete")
    if db.session.get(PaymentClaim, intent_id) is not None:
        raise PaymentAlreadyUsed()
    if not payments.payment_completed(intent_id, expected_amount):
        current_app.logger.warning("Payment intent %s has not completed", intent_id)
        raise ValidationError("Payment has not been completed", error="payment_incomplete")


def _claim_payment(intent_id: str, actor: Actor, amount: float) -> None:
    """Record the intent as spent inside the unit.

    The primary key on ``payment_claims`` makes a second claim fail even when
    both requests passed the check in ``_verify_payment``.
    """
    try:
        db.session.execute(
            db.insert(PaymentClaim).values(gateway_payment_id=intent_id, user_id=actor.user_id, amount=amount)
        )
    except IntegrityError as exc:
        current_app.logger.warning("Payment intent %s claimed twice", intent_id)
        raise PaymentAlreadyUsed() from exc


def _create_in_unit(req: RentalRequest, actor: Actor, payment_status: str) -> Rental:
    """Create one rental and lock its appliance. Does not commit."""
    appliance = _load_appliance(req.appliance_id)
    if appliance is None:
        raise NotFound("Appliance not found")
    if appliance.provider_id == actor.user_id:
        raise Forbidden("You cannot rent your own appliance")
    if appliance.status != ApplianceStatus.AVAILABLE:
        raise ApplianceUnavailable()

    cost = compute_rental_cost(req.start_date, req.end_date, appliance.pricing)
    rental = Rental(
        user_id=actor.user_id,
        appliance_id=appliance.appliance_id,
        provider_id=appliance.provider_id,
        start_date=req.start_date,
        end_date=req.end_date,
        status=RentalStatus.PENDING,
        total_amount=cost.total_amount,
        deposit=cost.deposit,
        payment_status=payment_status,
        payment_method=req.payment_method,
        gateway_payment_id=req.payment_intent_id if payment_status == PaymentStatus.PAID else None,
        delivery_street=req.delivery.street,
        delivery_city=req.delivery.city,
        delivery_state=req.delivery.state,
        delivery_zip_code=req.delivery.zip_code,
        delivery_time=req.delivery.time,
    )
    db.session.add(rental)
    db.session.flush()

    if _write_appliance_status(appliance.appliance_id, (ApplianceStatus.AVAILABLE,), ApplianceStatus.RENTED) != 1:
        raise Conflict("Appliance was booked by another request, please retry")
    return rental


def create_rental(req: RentalRequest, actor: Actor) -> Rental:
    _check_dates(req)
    cost = _quote(req, actor)

    payment_status = PaymentStatus.PENDING
    if req.payment_method == PaymentMethod.ONLINE:
        _verify_payment(req.payment_intent_id, cost.total_amount + cost.deposit)
        payment_status = PaymentStatus.PAID

    with atomic():
        if payment_status == PaymentStatus.PAID:
            _claim_payment(req.payment_intent_id, actor, cost.total_amount + cost.deposit)
        rental = _create_in_unit(req, actor, payment_status)

    current_app.logger.info(
        "Rental %s created for appliance %s by user %s", rental.rental_id, req.appliance_id, actor.user_id
    )
    return rental


def checkout_cart(requests: list[RentalRequest], actor: Actor) -> list[Rental]:
    """Create one rental per request, all or none, and drop them from the cart."""
    if not requests:
        raise ValidationError("No items to check out", error="empty_cart")
    ids = [r.appliance_id for r in requests]
    if len(set(ids)) != len(ids):
        raise ValidationError("Each appliance may appear only once per checkout")

    expected_amount = 0.0
    for req in requests:
        _check_dates(req)
        cost = _quote(req, actor)
        expected_amount += cost.total_amount + cost.deposit

    methods = {r.payment_method for r in requests}
    if len(methods) != 1:
        raise ValidationError("All items of a checkout must use the same payment method")

    payment_status = PaymentStatus.PENDING
    if methods == {PaymentMethod.ONLINE}:
        intent_ids = {r.payment_intent_id for r in requests}
        if len(intent_ids) != 1:
            raise ValidationError("A checkout is paid with a single payment", error="payment_incomplete")
        intent_id = intent_ids.pop()
        _verify_payment(intent_id, round(expected_amount, 2))
        payment_status = PaymentStatus.PAID

    with atomic():
        if payment_status == PaymentStatus.PAID:
            _claim_payment(intent_id, actor, round(expected_amount, 2))
        rentals = [_create_in_unit(req, actor, payment_status) for req in requests]
        CartItem.query.filter(
            CartItem.user_id == actor.user_id,
            CartItem.appliance_id.in_(ids),
        ).delete(synchronize_session=False)

    current_app.logger.info("Checkout by user %s created rentals %s",
                            actor.user_id, [r.rental_id for r in rentals])
    return rentals


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------

def _apply(rental: Rental, transition: Transition) -> None:
    rental.status = transition.target
    if transition.refund and rental.payment_status == PaymentStatus.PAID:
        rental.payment_status = PaymentStatus.REFUNDED
    db.session.flush()

    if transition.appliance_status == ApplianceStatus.RENTED:
        changed = _write_appliance_status(
            rental.appliance_id,
            (ApplianceStatus.RENTED, ApplianceStatus.AVAILABLE),
            ApplianceStatus.RENTED,
        )
        if changed != 1:
            raise ApplianceUnavailable("Appliance is under maintenance or no longer exists")
    elif transition.appliance_status == ApplianceStatus.AVAILABLE:
        changed = _write_appliance_status(rental.appliance_id, (ApplianceStatus.RENTED,), ApplianceStatus.AVAILABLE)
        if changed != 1:
            current_app.logger.warning(
                "Appliance %s was not RENTED when rental %s moved to %s",
                rental.appliance_id, rental.rental_id, rental.status,
            )


def execute_transition(rental_id: int, requested_status: str, actor: Actor) -> Rental:
    with atomic():
        rental = _load_rental(rental_id)
        if rental is None:
            raise NotFound("Rental not found")
        party = party_of(rental, actor)
        previous = rental.status
        transition = validate_transition(from_status=previous, to_status=requested_status, party=party)
        _apply(rental, transition)

    current_app.logger.info(
        "Rental %s moved %s -> %s by %s %s", rental_id, previous, requested_status, party, actor.user_id
    )
    return rental


def cancel_rental(rental_id: int, actor: Actor) -> Rental:
    """Renter cancellation; only a PENDING rental can be cancelled this way."""
    with atomic():
        rental = _load_rental(rental_id)
        if rental is None or rental.user_id != actor.user_id:
            raise NotFound("Rental not found")
        ensure_renter_cancellable(rental.status)
        _apply(rental, ALLOWED_TRANSITIONS[(rental.status, RentalStatus.CANCELLED)])

    current_app.logger.info("Rental %s cancelled by renter %s", rental_id, actor.user_id)
    return rental


# ---------------------------------------------------------------------------
# Provider writes on the appliance itself
# ---------------------------------------------------------------------------

def _owned_appliance(appliance_id: int, actor: Actor) -> Appliance:
    appliance = _load_appliance(appliance_id)
    if appliance is None:
        raise NotFound("Appliance not found")
    if appliance.provider_id != actor.user_id and not actor.is_admin:
        raise Forbidden("You can only manage your own appliances")
    return appliance


def _open_rental_exists(appliance_id: int) -> bool:
    stmt = (
        db.select(Rental.rental_id)
        .where(Rental.appliance_id == appliance_id, Rental.status.in_(OPEN_STATES))
        .limit(1)
    )
    return db.session.execute(stmt).first() is not None


def set_appliance_status(appliance_id: int, status: str, actor: Actor) -> Appliance:
    """Manual maintenance toggle by the owning provider."""
    if status not in MANUAL_APPLIANCE_STATES:
        raise ValidationError(
            f"status must be one of: {', '.join(MANUAL_APPLIANCE_STATES)}", error="invalid_status"
        )

    with atomic():
        appliance = _owned_appliance(appliance_id, actor)
        if _open_rental_exists(appliance_id):
            raise Conflict("Appliance has an open rental and cannot change status")
        if _write_appliance_status(appliance_id, (appliance.status,), status) != 1:
            raise Conflict()

    current_app.logger.info("Appliance %s status set to %s by %s", appliance_id, status, actor.user_id)
    return appliance


def delete_appliance(appliance_id: int, actor: Actor) -> None:
    with atomic():
        appliance = _owned_appliance(appliance_id, actor)
        referenced = db.session.execute(
            db.select(Rental.rental_id).filter_by(appliance_id=appliance_id).limit(1)
        ).first()
        if referenced is not None:
            raise Conflict("Appliance has rentals and cannot be deleted")
        CartItem.query.filter_by(appliance_id=appliance_id).delete(synchronize_session=False)
        db.session.delete(appliance)

    current_app.logger.info("Appliance %s deleted by %s", appliance_id, actor.user_id)


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------

def _refresh_provider_rating(provider_id: int) -> None:
    average = db.session.execute(
        db.select(db.func.avg(Review.rating)).filter_by(provider_id=provider_id)
    ).scalar()
    provider = db.session.get(User, provider_id)
    if provider is not None:
        provider.rating = round(float(average or 0), 2)


def create_review(actor: Actor, appliance_id: int, rating, comment) -> Review:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("rating must be an integer between 1 and 5", error="invalid_rating")
    if not comment or not str(comment).strip():
        raise ValidationError("comment is required")

    try:
        with atomic():
            appliance = _load_appliance(appliance_id)
            if appliance is None:
                raise NotFound("Appliance not found")

            rental = db.session.execute(
                db.select(Rental)
                .filter_by(user_id=actor.user_id, appliance_id=appliance_id, status=RentalStatus.COMPLETED)
                .order_by(Rental.end_date.desc())
                .limit(1)
            ).scalar_one_or_none()
            if rental is None:
                raise Forbidden("You can only review appliances from your completed rentals")

            review = Review(
                user_id=actor.user_id,
                appliance_id=appliance_id,
                provider_id=appliance.provider_id,
                rental_id=rental.rental_id,
                rating=rating,
                comment=str(comment).strip(),
            )
            db.session.add(review)
            db.session.flush()

            count = appliance.review_count or 0
            appliance.ratings = round(((appliance.ratings or 0) * count + rating) / (count + 1), 2)
            appliance.review_count = count + 1
            rental.has_review = True
            _refresh_provider_rating(appliance.provider_id)
    except IntegrityError as exc:
        raise DuplicateReview() from exc

    current_app.logger.info("Review %s created for appliance %s", review.review_id, appliance_id)
    return review
