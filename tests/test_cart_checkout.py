"""Tests for the cart and the all-or-nothing cart checkout."""
from __future__ import annotations

from unittest.mock import patch

import pytest

from appliance_rental import coordinator
from appliance_rental.constants import ApplianceStatus, PaymentStatus, Role
from appliance_rental.errors import Conflict
from appliance_rental.extensions import db
from appliance_rental.lifecycle import Actor
from appliance_rental.models import Appliance, CartItem, PaymentClaim, Rental

from conftest import DELIVERY, future_range


@pytest.fixture
def cart(client, factory):
    provider_id = factory.provider()
    renter_id = factory.user()
    appliance_ids = [factory.appliance(provider_id), factory.appliance(provider_id)]
    headers = factory.headers(renter_id)
    for appliance_id in appliance_ids:
        assert client.post("/cart", json={"appliance_id": appliance_id}, headers=headers).status_code == 201
    return renter_id, appliance_ids, headers


def _items(appliance_ids, days: int = 30):
    start, end = future_range(days)
    return [{"appliance_id": a, "start_date": start, "end_date": end} for a in appliance_ids]


def test_cart_add_is_idempotent(client, cart) -> None:
    _, appliance_ids, headers = cart

    again = client.post("/cart", json={"appliance_id": appliance_ids[0]}, headers=headers)
    listing = client.get("/cart", headers=headers).get_json()

    assert again.status_code == 200
    assert listing["count"] == 2
    assert [item["appliance_id"] for item in listing["items"]] == appliance_ids


def test_cart_remove_and_clear(client, cart) -> None:
    _, appliance_ids, headers = cart

    removed = client.delete(f"/cart/{appliance_ids[0]}", headers=headers)
    missing = client.delete(f"/cart/{appliance_ids[0]}", headers=headers)
    cleared = client.delete("/cart", headers=headers)

    assert removed.get_json()["count"] == 1
    assert missing.status_code == 404
    assert cleared.get_json()["count"] == 0


def test_add_unknown_appliance(client, factory) -> None:
    response = client.post("/cart", json={"appliance_id": 4242}, headers=factory.headers(factory.user()))

    assert response.status_code == 404


def test_checkout_creates_every_rental(app, client, cart) -> None:
    _, appliance_ids, headers = cart

    response = client.post("/cart/checkout", json={"items": _items(appliance_ids), **DELIVERY}, headers=headers)

    assert response.status_code == 201
    assert len(response.get_json()["rentals"]) == 2
    with app.app_context():
        assert CartItem.query.count() == 0
        assert {db.session.get(Appliance, a).status for a in appliance_ids} == {ApplianceStatus.RENTED}


def test_checkout_is_all_or_nothing(app, client, factory, cart) -> None:
    _, appliance_ids, headers = cart
    with app.app_context():
        # Someone else booked the second appliance after it was added to the cart
        db.session.get(Appliance, appliance_ids[1]).status = ApplianceStatus.RENTED
        db.session.commit()

    response = client.post("/cart/checkout", json={"items": _items(appliance_ids), **DELIVERY}, headers=headers)

    assert response.status_code == 409
    with app.app_context():
        assert Rental.query.count() == 0
        assert CartItem.query.count() == 2
        assert db.session.get(Appliance, appliance_ids[0]).status == ApplianceStatus.AVAILABLE


def test_checkout_rejects_items_not_in_cart(client, factory, cart) -> None:
    _, appliance_ids, headers = cart
    outsider = factory.appliance(factory.provider())

    response = client.post("/cart/checkout", json={"items": _items([outsider]), **DELIVERY}, headers=headers)

    assert response.status_code == 400
    assert response.get_json()["error"] == "not_in_cart"


def test_checkout_enforces_minimum_duration(client, cart) -> None:
    _, appliance_ids, headers = cart

    response = client.post("/cart/checkout", json={"items": _items(appliance_ids, days=10), **DELIVERY},
                           headers=headers)

    assert response.status_code == 400
    assert response.get_json()["error"] == "rental_too_short"


def test_checkout_paid_online_with_one_intent(app, client, cart) -> None:
    _, appliance_ids, headers = cart
    with patch("appliance_rental.payments.stripe") as mock_stripe:
        mock_stripe.error.StripeError = Exception
        intent = mock_stripe.PaymentIntent.retrieve.return_value
        intent.status = "succeeded"
        intent.amount = 500000  # two rentals of 2000 + 500 deposit

        response = client.post(
            "/cart/checkout",
            json={"items": _items(appliance_ids), "payment_method": "ONLINE",
                  "payment_intent_id": "pi_cart", **DELIVERY},
            headers=headers,
        )

    assert response.status_code == 201
    with app.app_context():
        rentals = Rental.query.all()
        assert {r.payment_status for r in rentals} == {PaymentStatus.PAID}
        assert {r.gateway_payment_id for r in rentals} == {"pi_cart"}
        assert db.session.get(PaymentClaim, "pi_cart").amount == 5000


def test_failure_inside_checkout_unit_discards_earlier_rentals(app, cart) -> None:
    renter_id, appliance_ids, _ = cart
    real_write = coordinator._write_appliance_status
    calls = []

    def second_write_loses(appliance_id, expected, new_status):
        calls.append(appliance_id)
        if len(calls) == 2:
            return 0
        return real_write(appliance_id, expected, new_status)

    requests = [coordinator.RentalRequest.from_payload(item, DELIVERY) for item in _items(appliance_ids)]

    with app.app_context():
        with patch.object(coordinator, "_write_appliance_status", side_effect=second_write_loses):
            with pytest.raises(Conflict):
                coordinator.checkout_cart(requests, Actor(renter_id, Role.USER))

        assert Rental.query.count() == 0
        assert CartItem.query.count() == 2
        assert {db.session.get(Appliance, a).status for a in appliance_ids} == {ApplianceStatus.AVAILABLE}


@pytest.mark.parametrize("item", [5, "abc", ["appliance_id"], None])
def test_checkout_item_must_be_an_object(app, client, cart, item) -> None:
    _, _, headers = cart

    response = client.post("/cart/checkout", json={"items": [item], **DELIVERY}, headers=headers)

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"
    with app.app_context():
        assert Rental.query.count() == 0
