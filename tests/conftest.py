"""pytest configuration: application fixtures and record factories."""
from __future__ import annotations

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

# Ensure the project root is available on sys.path so tests can import the app package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from werkzeug.security import generate_password_hash  # noqa: E402

from appliance_rental import create_app  # noqa: E402
from appliance_rental.auth import build_token  # noqa: E402
from appliance_rental.config import TestingConfig  # noqa: E402
from appliance_rental.constants import (ApplianceStatus, PaymentMethod,  # noqa: E402
                                        PaymentStatus, RentalStatus, Role)
from appliance_rental.extensions import db  # noqa: E402
from appliance_rental.models import (Appliance, AuthAccount, Category,  # noqa: E402
                                     Rental, User)

DEFAULT_PASSWORD = "secret123"


def future_range(days: int = 30, offset: int = 1) -> tuple[str, str]:
    """ISO start/end dates ``offset`` days from today spanning ``days`` days."""
    start = date.today() + timedelta(days=offset)
    return start.isoformat(), (start + timedelta(days=days)).isoformat()


DELIVERY = {
    "delivery_address": {"street": "12 MG Road", "city": "Pune", "state": "MH", "zip_code": "411001"},
    "delivery_time": "10:00-12:00",
}


class Factory:
    """Creates committed records and returns their ids."""

    def __init__(self, app) -> None:
        self.app = app
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def user(self, role: str = Role.USER, password: str = DEFAULT_PASSWORD, **fields) -> int:
        n = self._next()
        fields.setdefault("name", f"{role.title()} {n}")
        fields.setdefault("email", f"{role.lower()}{n}@example.com")
        if role == Role.PROVIDER:
            fields.setdefault("business_name", f"Rentals {n}")
            fields.setdefault("business_street", "1 Market St")
            fields.setdefault("business_city", "Pune")
            fields.setdefault("business_state", "MH")
            fields.setdefault("business_zip_code", "411001")
        with self.app.app_context():
            user = User(role=role, **fields)
            db.session.add(user)
            db.session.flush()
            db.session.add(AuthAccount(user_id=user.user_id, password_hash=generate_password_hash(password)))
            db.session.commit()
            return user.user_id

    def provider(self, **fields) -> int:
        return self.user(role=Role.PROVIDER, **fields)

    def category(self, name: str = "Refrigerators", is_active: bool = True) -> int:
        with self.app.app_context():
            category = Category(name=name, description=f"{name} for rent", image="https://img/cat.jpg",
                                is_active=is_active)
            db.session.add(category)
            db.session.commit()
            return category.category_id

    def appliance(self, provider_id: int, **fields) -> int:
        n = self._next()
        fields.setdefault("name", f"Double Door Fridge {n}")
        fields.setdefault("description", "Frost free, 250 litres")
        fields.setdefault("brand", "LG")
        fields.setdefault("model", f"GL-{n}")
        fields.setdefault("year", 2023)
        fields.setdefault("images", ["https://img/fridge.jpg"])
        fields.setdefault("price_daily", 100.0)
        fields.setdefault("price_weekly", 600.0)
        fields.setdefault("price_monthly", 2000.0)
        fields.setdefault("deposit", 500.0)
        fields.setdefault("status", ApplianceStatus.AVAILABLE)
        with self.app.app_context():
            appliance = Appliance(provider_id=provider_id, extra_specifications={}, **fields)
            db.session.add(appliance)
            db.session.commit()
            return appliance.appliance_id

    def rental(self, user_id: int, appliance_id: int, status: str = RentalStatus.PENDING,
               payment_status: str = PaymentStatus.PENDING, appliance_status: str | None = None) -> int:
        """Insert a rental directly, setting the appliance status to match it."""
        start, end = future_range()
        with self.app.app_context():
            appliance = db.session.get(Appliance, appliance_id)
            rental = Rental(
                user_id=user_id,
                appliance_id=appliance_id,
                provider_id=appliance.provider_id,
                start_date=date.fromisoformat(start),
                end_date=date.fromisoformat(end),
                status=status,
                total_amount=2000.0,
                deposit=appliance.deposit,
                payment_status=payment_status,
                payment_method=PaymentMethod.ONLINE if payment_status != PaymentStatus.PENDING
                else PaymentMethod.CASH_ON_DELIVERY,
                delivery_street="12 MG Road",
                delivery_city="Pune",
                delivery_state="MH",
                delivery_zip_code="411001",
                delivery_time="10:00-12:00",
            )
            if appliance_status is None:
                appliance_status = (ApplianceStatus.RENTED
                                    if status in (RentalStatus.PENDING, RentalStatus.APPROVED, RentalStatus.ACTIVE)
                                    else ApplianceStatus.AVAILABLE)
            appliance.status = appliance_status
            db.session.add(rental)
            db.session.commit()
            return rental.rental_id

    def headers(self, user_id: int, role: str = Role.USER) -> dict[str, str]:
        with self.app.app_context():
            return {"Authorization": f"Bearer {build_token(user_id, role)}"}


@pytest.fixture
def app():
    flask_app = create_app(TestingConfig)
    with flask_app.app_context():
        db.create_all()

    yield flask_app

    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def factory(app) -> Factory:
    return Factory(app)
