"""Database models for the appliance rental backend."""
from __future__ import annotations

from datetime import datetime, timezone

from .constants import ApplianceStatus, PaymentMethod, PaymentStatus, RentalStatus, Role
from .extensions import db
from .pricing import PricingTiers


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _iso(value) -> str | None:
    return value.isoformat() if value else None


class User(db.Model):
    """Customers, providers and administrators share one table, tagged by role."""

    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    phone = db.Column(db.String(30))
    role = db.Column(
        db.Enum(
            *Role.ALL,
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default=Role.USER,
    )
    street = db.Column(db.String(150))
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))
    zip_code = db.Column(db.String(20))

    # Provider profile
    business_name = db.Column(db.String(150))
    business_street = db.Column(db.String(150))
    business_city = db.Column(db.String(100))
    business_state = db.Column(db.String(100))
    business_zip_code = db.Column(db.String(20))
    rating = db.Column(db.Float, nullable=False, default=0.0)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    auth_account = db.relationship("AuthAccount", back_populates="user", uselist=False)
    appliances = db.relationship("Appliance", back_populates="provider", lazy="dynamic")
    cart_items = db.relationship(
        "CartItem",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="CartItem.added_at",
    )

    @property
    def is_provider(self) -> bool:
        return self.role == Role.PROVIDER

    def address_dict(self) -> dict[str, str | None]:
        return {"street": self.street, "city": self.city, "state": self.state, "zip_code": self.zip_code}

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
        }

    def to_dict(self) -> dict[str, object]:
        data = self.to_dict_basic()
        data["address"] = self.address_dict()
        data["created_at"] = _iso(self.created_at)
        if self.is_provider:
            data.update(self.provider_summary())
            data["business_address"] = {
                "street": self.business_street,
                "city": self.business_city,
                "state": self.business_state,
                "zip_code": self.business_zip_code,
            }
        return data

    def provider_summary(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "name": self.name,
            "business_name": self.business_name,
            "is_verified": bool(self.is_verified),
            "rating": self.rating or 0.0,
        }


class AuthAccount(db.Model):
    __tablename__ = "auth_accounts"

    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), primary_key=True)
    password_hash = db.Column(db.String(255), nullable=False)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    user = db.relationship("User", back_populates="auth_account")


class Category(db.Model):
    """Appliance categories, used only for filtering."""

    __tablename__ = "categories"

    category_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=False)
    image = db.Column(db.String(500), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.category_id,
            "name": self.name,
            "description": self.description,
            "image": self.image,
            "is_active": bool(self.is_active),
            "created_at": _iso(self.created_at),
        }


class Appliance(db.Model):
    """A rentable item owned by a provider.

    ``status`` is the availability flag contended by concurrent bookings; the
    rental coordinator is its only writer on behalf of the rental workflow.
    """

    __tablename__ = "appliances"

    appliance_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.category_id"), nullable=True, index=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text, nullable=False)
    images = db.Column(db.JSON, nullable=False, default=list)

    brand = db.Column(db.String(100), nullable=False)
    model = db.Column(db.String(100), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    extra_specifications = db.Column(db.JSON, nullable=False, default=dict)

    price_daily = db.Column(db.Float, nullable=False)
    price_weekly = db.Column(db.Float, nullable=False)
    price_monthly = db.Column(db.Float, nullable=False)
    deposit = db.Column(db.Float, nullable=False)

    status = db.Column(
        db.Enum(
            *ApplianceStatus.ALL,
            name="appliance_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default=ApplianceStatus.AVAILABLE,
        default=ApplianceStatus.AVAILABLE,
        index=True,
    )
    ratings = db.Column(db.Float, nullable=False, default=0.0)
    review_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    provider = db.relationship("User", back_populates="appliances")
    category = db.relationship("Category")

    @property
    def pricing(self) -> PricingTiers:
        return PricingTiers(
            daily=self.price_daily,
            weekly=self.price_weekly,
            monthly=self.price_monthly,
            deposit=self.deposit,
        )

    @pricing.setter
    def pricing(self, tiers: PricingTiers) -> None:
        self.price_daily = tiers.daily
        self.price_weekly = tiers.weekly
        self.price_monthly = tiers.monthly
        self.deposit = tiers.deposit

    def to_summary(self) -> dict[str, object]:
        return {
            "id": self.appliance_id,
            "name": self.name,
            "images": list(self.images or []),
            "pricing": self.pricing.to_dict(),
            "status": self.status,
        }

    def to_dict(self) -> dict[str, object]:
        specifications = dict(self.extra_specifications or {})
        specifications.update({"brand": self.brand, "model": self.model, "year": self.year})
        return {
            "id": self.appliance_id,
            "name": self.name,
            "description": self.description,
            "category_id": self.category_id,
            "category": self.category.name if self.category else None,
            "images": list(self.images or []),
            "provider_id": self.provider_id,
            "provider": self.provider.provider_summary() if self.provider else None,
            "specifications": specifications,
            "pricing": self.pricing.to_dict(),
            "status": self.status,
            "ratings": self.ratings or 0.0,
            "review_count": self.review_count or 0,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Rental(db.Model):
    """A booking of one appliance by one renter for a date range."""

    __tablename__ = "rentals"

    rental_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False, index=True)
    appliance_id = db.Column(db.Integer, db.ForeignKey("appliances.appliance_id"), nullable=False, index=True)
    # Copied from the appliance at creation, never edited afterwards
    provider_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False, index=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    status = db.Column(
        db.Enum(
            *RentalStatus.ALL,
            name="rental_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default=RentalStatus.PENDING,
        default=RentalStatus.PENDING,
        index=True,
    )
    total_amount = db.Column(db.Float, nullable=False)
    deposit = db.Column(db.Float, nullable=False)
    payment_status = db.Column(
        db.Enum(
            *PaymentStatus.ALL,
            name="payment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default=PaymentStatus.PENDING,
        default=PaymentStatus.PENDING,
    )
    payment_method = db.Column(
        db.Enum(
            *PaymentMethod.ALL,
            name="payment_method",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default=PaymentMethod.CASH_ON_DELIVERY,
        default=PaymentMethod.CASH_ON_DELIVERY,
    )
    # Stripe payment intent id; one intent may pay for every rental of a cart checkout
    gateway_payment_id = db.Column(db.String(255), nullable=True, index=True)
    delivery_street = db.Column(db.String(150), nullable=False)
    delivery_city = db.Column(db.String(100), nullable=False)
    delivery_state = db.Column(db.String(100), nullable=False)
    delivery_zip_code = db.Column(db.String(20), nullable=False)
    delivery_time = db.Column(db.String(50), nullable=False)
    has_review = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    renter = db.relationship("User", foreign_keys=[user_id])
    provider = db.relationship("User", foreign_keys=[provider_id])
    appliance = db.relationship("Appliance")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.rental_id,
            "user_id": self.user_id,
            "appliance_id": self.appliance_id,
            "provider_id": self.provider_id,
            "appliance": self.appliance.to_summary() if self.appliance else None,
            "renter": {
                "id": self.renter.user_id,
                "name": self.renter.name,
                "email": self.renter.email,
                "phone": self.renter.phone,
            } if self.renter else None,
            "provider": {
                "id": self.provider.user_id,
                "name": self.provider.name,
                "business_name": self.provider.business_name,
                "phone": self.provider.phone,
            } if self.provider else None,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "status": self.status,
            "total_amount": self.total_amount,
            "deposit": self.deposit,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "delivery_address": {
                "street": self.delivery_street,
                "city": self.delivery_city,
                "state": self.delivery_state,
                "zip_code": self.delivery_zip_code,
            },
            "delivery_time": self.delivery_time,
            "has_review": bool(self.has_review),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Review(db.Model):
    """One review per (user, appliance), written after a completed rental."""

    __tablename__ = "reviews"
    __table_args__ = (
        db.UniqueConstraint("user_id", "appliance_id", name="uq_review_user_appliance"),
    )

    review_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    appliance_id = db.Column(db.Integer, db.ForeignKey("appliances.appliance_id"), nullable=False, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    rental_id = db.Column(db.Integer, db.ForeignKey("rentals.rental_id"), nullable=True)
    rating = db.Column(db.Integer, nullable=False)  # 1-5 stars
    comment = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    user = db.relationship("User", foreign_keys=[user_id])
    appliance = db.relationship("Appliance")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.review_id,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else "Anonymous",
            "appliance_id": self.appliance_id,
            "appliance": {
                "id": self.appliance.appliance_id,
                "name": self.appliance.name,
                "images": list(self.appliance.images or []),
            } if self.appliance else None,
            "provider_id": self.provider_id,
            "rental_id": self.rental_id,
            "rating": self.rating,
            "comment": self.comment,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class CartItem(db.Model):
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("user_id", "appliance_id", name="uq_cart_user_appliance"),
    )

    cart_item_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False, index=True)
    appliance_id = db.Column(db.Integer, db.ForeignKey("appliances.appliance_id"), nullable=False)
    added_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    user = db.relationship("User", back_populates="cart_items")
    appliance = db.relationship("Appliance")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.cart_item_id,
            "appliance_id": self.appliance_id,
            "appliance": self.appliance.to_summary() if self.appliance else None,
            "added_at": _iso(self.added_at),
        }


class PaymentClaim(db.Model):
    """A gateway payment intent that has been spent on a booking or checkout."""

    __tablename__ = "payment_claims"

    gateway_payment_id = db.Column(db.String(255), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)
    claimed_at = db.Column(db.DateTime, nullable=False, default=utc_now)
