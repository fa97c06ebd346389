"""Tests for booking an appliance (POST /rentals)."""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import text

from appliance_rental import coordinator
from appliance_rental.constants import ApplianceStatus, PaymentStatus, RentalStatus, Role
from appliance_rental.errors import ApplianceUnavailable, Conflict, PaymentAlreadyUsed
from appliance_rental.extensions import db
from appliance_rental.lifecycle import Actor
from appliance_rental.models import Appliance, PaymentClaim, Rental

from conftest import DELIVERY, future_range


@pytest.fixture
def booking(factory):
    provider_id = factory.provider()
    renter_id = factory.user()
    appliance_id = factory.appliance(provider_id)
    return provider_id, renter_id, appliance_id


def _body(appliance_id: int, days: int = 30, **extra) -> dict:
    start, end = future_range(days)
    return {"appliance_id": appliance_id, "start_date": start, "end_date": end, **DELIVERY, **extra}


@pytest.fixture
def stripe_mock():
    """Mock Stripe API calls."""
    with patch("appliance_rental.payments.stripe") as mock_stripe:
        mock_intent = MagicMock()
        mock_intent.id = "pi_test123"
        mock_intent.client_secret = "pi_test123_secret_abc"
        mock_intent.amount = 250000
        mock_intent.status = "succeeded"

        mock_stripe.PaymentIntent.create.return_value = mock_intent
        mock_stripe.PaymentIntent.retrieve.return_value = mock_intent
        mock_stripe.error.StripeError = Exception

        yield mock_stripe


def test_create_rental_requires_auth(client, booking) -> None:
    response = client.post("/rentals", json=_body(booking[2]))

    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthorized"


def test_create_rental_locks_appliance(app, client, factory, booking) -> None:
    provider_id, renter_id, appliance_id = booking

    response = client.post("/rentals", json=_body(appliance_id, days=59), headers=factory.headers(renter_id))

    assert response.status_code == 201
    rental = response.get_json()["rental"]
    assert rental["status"] == RentalStatus.PENDING
    assert rental["provider_id"] == provider_id
    assert rental["payment_status"] == PaymentStatus.PENDING
    assert rental["total_amount"] == 4500
    assert rental["deposit"] == 500

    with app.app_context():
        assert db.session.get(Appliance, appliance_id).status == ApplianceStatus.RENTED


def test_second_booking_is_refused(app, client, factory, booking) -> None:
    _, renter_id, appliance_id = booking
    other_renter = factory.user()

    first = client.post("/rentals", json=_body(appliance_id), headers=factory.headers(renter_id))
    second = client.post("/rentals", json=_body(appliance_id), headers=factory.headers(other_renter))

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.get_json()["error"] == "appliance_unavailable"
    with app.app_context():
        assert Rental.query.filter_by(appliance_id=appliance_id).count() == 1


def test_maintenance_appliance_cannot_be_booked(client, factory) -> None:
    provider_id = factory.provider()
    appliance_id = factory.appliance(provider_id, status=ApplianceStatus.MAINTENANCE)

    response = client.post("/rentals", json=_body(appliance_id), headers=factory.headers(factory.user()))

    assert response.status_code == 409
    assert response.get_json()["error"] == "appliance_unavailable"


def test_rental_shorter_than_minimum_is_refused(app, client, factory, booking) -> None:
    _, renter_id, appliance_id = booking

    response = client.post("/rentals", json=_body(appliance_id, days=29), headers=factory.headers(renter_id))

    assert response.status_code == 400
    assert response.get_json()["error"] == "rental_too_short"
    with app.app_context():
        assert db.session.get(Appliance, appliance_id).status == ApplianceStatus.AVAILABLE


def test_start_date_in_the_past_is_refused(client, factory, booking) -> None:
    _, renter_id, appliance_id = booking
    body = _body(appliance_id)
    body["start_date"], body["end_date"] = future_range(40, offset=-5)

    response = client.post("/rentals", json=body, headers=factory.headers(renter_id))

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_date_range"


def test_missing_delivery_address(client, factory, booking) -> None:
    _, renter_id, appliance_id = booking
    body = _body(appliance_id)
    del body["delivery_address"]

    response = client.post("/rentals", json=body, headers=factory.headers(renter_id))

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


def test_unknown_appliance(client, factory) -> None:
    response = client.post("/rentals", json=_body(9999), headers=factory.headers(factory.user()))

    assert response.status_code == 404


def test_provider_cannot_rent_own_appliance(client, factory, booking) -> None:
    provider_id, _, appliance_id = booking

    response = client.post("/rentals", json=_body(appliance_id), headers=factory.headers(provider_id, Role.PROVIDER))

    assert response.status_code == 403


def test_online_payment_marks_rental_paid(client, factory, booking, stripe_mock) -> None:
    _, renter_id, appliance_id = booking

    response = client.post(
        "/rentals",
        json=_body(appliance_id, payment_method="ONLINE", payment_intent_id="pi_test123"),
        headers=factory.headers(renter_id),
    )

    assert response.status_code == 201
    assert response.get_json()["rental"]["payment_status"] == PaymentStatus.PAID
    stripe_mock.PaymentIntent.retrieve.assert_called_once_with("pi_test123")


def test_online_payment_not_completed(app, client, factory, booking, stripe_mock) -> None:
    _, renter_id, appliance_id = booking
    stripe_mock.PaymentIntent.retrieve.return_value.status = "requires_payment_method"

    response = client.post(
        "/rentals",
        json=_body(appliance_id, payment_method="ONLINE", payment_intent_id="pi_test123"),
        headers=factory.headers(renter_id),
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "payment_incomplete"
    with app.app_context():
        assert Rental.query.count() == 0
        assert db.session.get(Appliance, appliance_id).status == ApplianceStatus.AVAILABLE


def test_online_payment_below_amount_due(client, factory, booking, stripe_mock) -> None:
    _, renter_id, appliance_id = booking
    stripe_mock.PaymentIntent.retrieve.return_value.amount = 100

    response = client.post(
        "/rentals",
        json=_body(appliance_id, payment_method="ONLINE", payment_intent_id="pi_test123"),
        headers=factory.headers(renter_id),
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "payment_incomplete"


def test_online_payment_requires_intent(client, factory, booking) -> None:
    _, renter_id, appliance_id = booking

    response = client.post("/rentals", json=_body(appliance_id, payment_method="ONLINE"),
                           headers=factory.headers(renter_id))

    assert response.status_code == 400
    assert response.get_json()["error"] == "payment_incomplete"


def test_payment_intent_cannot_pay_twice(client, factory, stripe_mock) -> None:
    provider_id = factory.provider()
    renter_id = factory.user()
    first_id = factory.appliance(provider_id)
    second_id = factory.appliance(provider_id)

    first = client.post("/rentals", json=_body(first_id, payment_method="ONLINE", payment_intent_id="pi_test123"),
                        headers=factory.headers(renter_id))
    second = client.post("/rentals", json=_body(second_id, payment_method="ONLINE", payment_intent_id="pi_test123"),
                         headers=factory.headers(renter_id))

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.get_json()["error"] == "payment_already_used"


def test_concurrent_booking_loses_with_conflict(app, factory, booking) -> None:
    """Another request books the appliance between the re-read and the write."""
    _, renter_id, appliance_id = booking
    real_load = coordinator._load_appliance

    def load_then_lose_race(appliance_id, lock=True):
        appliance = real_load(appliance_id, lock)
        db.session.execute(
            text("UPDATE appliances SET status = 'RENTED' WHERE appliance_id = :id"),
            {"id": appliance_id},
        )
        return appliance

    start, end = future_range()
    request = coordinator.RentalRequest.from_payload(
        {"appliance_id": appliance_id, "start_date": start, "end_date": end, **DELIVERY}
    )

    with app.app_context():
        with patch.object(coordinator, "_load_appliance", side_effect=load_then_lose_race):
            with pytest.raises(Conflict):
                coordinator.create_rental(request, Actor(user_id=renter_id, role=Role.USER))

        assert Rental.query.count() == 0
        assert db.session.get(Appliance, appliance_id).status == ApplianceStatus.AVAILABLE


def test_sequential_double_booking_via_coordinator(app, factory, booking) -> None:
    _, renter_id, appliance_id = booking
    other_renter = factory.user()
    start, end = future_range()
    request = coordinator.RentalRequest.from_payload(
        {"appliance_id": appliance_id, "start_date": start, "end_date": end, **DELIVERY}
    )

    with app.app_context():
        coordinator.create_rental(request, Actor(user_id=renter_id, role=Role.USER))
        with pytest.raises(ApplianceUnavailable):
            coordinator.create_rental(request, Actor(user_id=other_renter, role=Role.USER))


@pytest.mark.parametrize("body", [[1, 2], "fridge", 7])
def test_body_must_be_an_object(client, factory, body) -> None:
    response = client.post("/rentals", json=body, headers=factory.headers(factory.user()))

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


def test_payment_intent_id_must_be_a_string(app, client, factory, booking) -> None:
    _, renter_id, appliance_id = booking

    response = client.post(
        "/rentals",
        json=_body(appliance_id, payment_method="ONLINE", payment_intent_id={"x": 1}),
        headers=factory.headers(renter_id),
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"
    with app.app_context():
        assert Rental.query.count() == 0


def test_one_payment_cannot_fund_two_concurrent_bookings(app, factory) -> None:
    """A second booking with the same intent commits while the first is verifying it."""
    provider_id = factory.provider()
    renter_id = factory.user()
    first_id = factory.appliance(provider_id)
    second_id = factory.appliance(provider_id)
    actor = Actor(renter_id, Role.USER)

    def paid_online(appliance_id):
        return coordinator.RentalRequest.from_payload(
            _body(appliance_id, payment_method="ONLINE", payment_intent_id="pi_same")
        )

    interleaved = []

    def other_request_commits_first(intent_id, amount):
        if not interleaved:
            interleaved.append(intent_id)
            coordinator.create_rental(paid_online(second_id), actor)
        return True

    with app.app_context():
        with patch.object(coordinator.payments, "payment_completed", side_effect=other_request_commits_first):
            with pytest.raises(PaymentAlreadyUsed):
                coordinator.create_rental(paid_online(first_id), actor)

        paid = Rental.query.filter_by(gateway_payment_id="pi_same").all()
        assert [r.appliance_id for r in paid] == [second_id]
        assert PaymentClaim.query.count() == 1
        assert db.session.get(Appliance, first_id).status == ApplianceStatus.AVAILABLE
