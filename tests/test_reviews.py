"""Tests for review gating and rating aggregates."""
from __future__ import annotations

import pytest

from appliance_rental.constants import RentalStatus, Role
from appliance_rental.extensions import db
from appliance_rental.models import Appliance, Rental, Review, User


@pytest.fixture
def completed(factory):
    provider_id = factory.provider()
    renter_id = factory.user()
    appliance_id = factory.appliance(provider_id)
    rental_id = factory.rental(renter_id, appliance_id, status=RentalStatus.COMPLETED)
    return provider_id, renter_id, appliance_id, rental_id


def test_review_after_completed_rental(app, client, factory, completed) -> None:
    provider_id, renter_id, appliance_id, rental_id = completed

    response = client.post(
        "/reviews",
        json={"appliance_id": appliance_id, "rating": 4, "comment": "Cooled well all summer"},
        headers=factory.headers(renter_id),
    )

    assert response.status_code == 201
    assert response.get_json()["review"]["rental_id"] == rental_id
    with app.app_context():
        appliance = db.session.get(Appliance, appliance_id)
        assert appliance.review_count == 1
        assert appliance.ratings == 4
        assert db.session.get(User, provider_id).rating == 4
        assert db.session.get(Rental, rental_id).has_review is True


def test_second_review_is_a_duplicate(app, client, factory, completed) -> None:
    _, renter_id, appliance_id, _ = completed
    body = {"appliance_id": appliance_id, "rating": 5, "comment": "Great"}

    first = client.post("/reviews", json=body, headers=factory.headers(renter_id))
    second = client.post("/reviews", json=body, headers=factory.headers(renter_id))

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.get_json()["error"] == "duplicate_review"
    with app.app_context():
        assert Review.query.count() == 1
        assert db.session.get(Appliance, appliance_id).review_count == 1


@pytest.mark.parametrize("status", [RentalStatus.PENDING, RentalStatus.ACTIVE, RentalStatus.CANCELLED])
def test_review_requires_completed_rental(client, factory, status) -> None:
    provider_id = factory.provider()
    renter_id = factory.user()
    appliance_id = factory.appliance(provider_id)
    factory.rental(renter_id, appliance_id, status=status)

    response = client.post(
        "/reviews",
        json={"appliance_id": appliance_id, "rating": 5, "comment": "Nice"},
        headers=factory.headers(renter_id),
    )

    assert response.status_code == 403


@pytest.mark.parametrize("rating", [0, 6, "5", 4.5, None])
def test_rating_must_be_one_to_five(client, factory, completed, rating) -> None:
    _, renter_id, appliance_id, _ = completed

    response = client.post(
        "/reviews",
        json={"appliance_id": appliance_id, "rating": rating, "comment": "Hmm"},
        headers=factory.headers(renter_id),
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_rating"


def test_ratings_are_averaged(app, client, factory, completed) -> None:
    provider_id, renter_id, appliance_id, _ = completed
    second_renter = factory.user()
    factory.rental(second_renter, appliance_id, status=RentalStatus.COMPLETED)

    client.post("/reviews", json={"appliance_id": appliance_id, "rating": 5, "comment": "A"},
                headers=factory.headers(renter_id))
    client.post("/reviews", json={"appliance_id": appliance_id, "rating": 2, "comment": "B"},
                headers=factory.headers(second_renter))

    public = client.get(f"/appliances/{appliance_id}/reviews").get_json()
    mine = client.get("/reviews/mine", headers=factory.headers(second_renter)).get_json()

    assert public["pagination"]["total"] == 2
    assert [r["rating"] for r in mine["reviews"]] == [2]
    with app.app_context():
        appliance = db.session.get(Appliance, appliance_id)
        assert appliance.ratings == 3.5
        assert appliance.review_count == 2
        assert db.session.get(User, provider_id).rating == 3.5


def test_provider_account_can_review_as_renter(client, factory, completed) -> None:
    provider_id, _, appliance_id, _ = completed
    other_provider = factory.provider()
    factory.rental(other_provider, appliance_id, status=RentalStatus.COMPLETED)

    response = client.post(
        "/reviews",
        json={"appliance_id": appliance_id, "rating": 3, "comment": "Fine"},
        headers=factory.headers(other_provider, Role.PROVIDER),
    )

    assert response.status_code == 201
