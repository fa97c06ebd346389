"""
RENTAL LIFECYCLE RULES

The only allowed status transitions of a rental, who may request each of them,
and what each one does to the appliance and to the payment. Nothing here
touches the database; the coordinator applies the returned ``Transition``.

    PENDING  -> APPROVED   provider   appliance stays RENTED
    PENDING  -> REJECTED   provider   appliance -> AVAILABLE, PAID -> REFUNDED
    PENDING  -> CANCELLED  renter     appliance -> AVAILABLE, PAID -> REFUNDED
    APPROVED -> ACTIVE     provider   none
    APPROVED -> CANCELLED  provider   appliance -> AVAILABLE, PAID -> REFUNDED
    ACTIVE   -> COMPLETED  provider   appliance -> AVAILABLE

The appliance is locked (RENTED) when the rental is created, so approval only
re-asserts the lock. REJECTED, COMPLETED and CANCELLED are terminal.
"""
from __future__ import annotations

from dataclasses import dataclass

from .constants import ApplianceStatus, RentalStatus, Role
from .errors import Forbidden, InvalidTransition, NotCancellable, NotFound, ValidationError

RENTER = "renter"
PROVIDER = "provider"

TERMINAL_STATES = frozenset({
    RentalStatus.REJECTED,
    RentalStatus.COMPLETED,
    RentalStatus.CANCELLED,
})

# Rentals in these states hold the appliance
OPEN_STATES = frozenset({
    RentalStatus.PENDING,
    RentalStatus.APPROVED,
    RentalStatus.ACTIVE,
})

RENTER_CANCELLABLE_STATES = frozenset({RentalStatus.PENDING})


@dataclass(frozen=True)
class Actor:
    """Identity of the caller, as supplied by the session token."""

    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class Transition:
    source: str
    target: str
    parties: frozenset
    appliance_status: str | None = None
    refund: bool = False


def _t(source, target, parties, appliance_status=None, refund=False) -> Transition:
    return Transition(source, target, frozenset(parties), appliance_status, refund)


ALLOWED_TRANSITIONS: dict[tuple[str, str], Transition] = {
    (t.source, t.target): t
    for t in (
        _t(RentalStatus.PENDING, RentalStatus.APPROVED, {PROVIDER}, ApplianceStatus.RENTED),
        _t(RentalStatus.PENDING, RentalStatus.REJECTED, {PROVIDER}, ApplianceStatus.AVAILABLE, refund=True),
        _t(RentalStatus.PENDING, RentalStatus.CANCELLED, {RENTER}, ApplianceStatus.AVAILABLE, refund=True),
        _t(RentalStatus.APPROVED, RentalStatus.ACTIVE, {PROVIDER}),
        _t(RentalStatus.APPROVED, RentalStatus.CANCELLED, {PROVIDER}, ApplianceStatus.AVAILABLE, refund=True),
        _t(RentalStatus.ACTIVE, RentalStatus.COMPLETED, {PROVIDER}, ApplianceStatus.AVAILABLE),
    )
}


def party_of(rental, actor: Actor) -> str:
    """Return whether the actor is the rental's provider or its renter.

    A rental that belongs to neither is reported as missing so its existence
    does not leak to other accounts.
    """
    if actor.role == Role.PROVIDER and rental.provider_id == actor.user_id:
        return PROVIDER
    if rental.user_id == actor.user_id:
        return RENTER
    raise NotFound("Rental not found")


def can_transition(*, from_status: str, to_status: str) -> bool:
    if from_status in TERMINAL_STATES:
        return False
    return (from_status, to_status) in ALLOWED_TRANSITIONS


def validate_transition(*, from_status: str, to_status: str, party: str) -> Transition:
    if to_status not in RentalStatus.ALL:
        raise ValidationError(
            f"status must be one of: {', '.join(RentalStatus.ALL)}",
            error="invalid_status",
        )

    if not can_transition(from_status=from_status, to_status=to_status):
        raise InvalidTransition(from_status, to_status)

    transition = ALLOWED_TRANSITIONS[(from_status, to_status)]
    if party not in transition.parties:
        if party == RENTER and to_status == RentalStatus.CANCELLED:
            raise NotCancellable(f"A {from_status.lower()} rental can only be cancelled by the provider")
        raise Forbidden(f"Only the {' or '.join(sorted(transition.parties))} can move a rental to {to_status}")
    return transition


def ensure_renter_cancellable(status: str) -> None:
    if status not in RENTER_CANCELLABLE_STATES:
        raise NotCancellable(f"A {status.lower()} rental cannot be cancelled")
