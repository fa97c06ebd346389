"""
Exception classes for the rental workflow.

Each error carries a stable machine-readable ``error`` kind and the HTTP
status the route handlers answer with, so controllers can turn any of them
into a JSON response without a lookup table.
"""
from __future__ import annotations


class RentalError(Exception):
    """Base class for every failure raised by the rental core."""

    error = "rental_error"
    status_code = 400
    default_message = "Error: request could not be processed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def __str__(self) -> str:  # pragma: no cover
        return self.message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "message": self.message}


class Unauthorized(RentalError):
    """Raised when the request carries no valid identity."""

    error = "unauthorized"
    status_code = 401
    default_message = "Authentication required. Please log in to continue."


class Forbidden(RentalError):
    """Raised when the actor lacks the role required for the action."""

    error = "forbidden"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class NotFound(RentalError):
    """Raised when a record does not exist or does not belong to the actor."""

    error = "not_found"
    status_code = 404
    default_message = "Error: record not found"


class InvalidTransition(RentalError):
    """Raised when a status change is not permitted from the current state."""

    error = "invalid_transition"
    status_code = 400

    def __init__(self, current: str, requested: str, message: str | None = None) -> None:
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot change rental status from {current} to {requested}")

    def to_dict(self) -> dict[str, str]:
        data = super().to_dict()
        data.update({"current_status": self.current, "requested_status": self.requested})
        return data


class ApplianceUnavailable(RentalError):
    """Raised when booking an appliance that is not AVAILABLE."""

    error = "appliance_unavailable"
    status_code = 409
    default_message = "Appliance is not available for rent"


class NotCancellable(RentalError):
    """Raised when a renter tries to cancel a rental past the PENDING stage."""

    error = "not_cancellable"
    status_code = 400
    default_message = "This rental cannot be cancelled"


class Conflict(RentalError):
    """Raised when a concurrent write won the race; the request is safe to retry."""

    error = "conflict"
    status_code = 409
    default_message = "The record was modified by another request, please retry"


class ValidationError(RentalError):
    """Raised on malformed input."""

    error = "invalid_payload"
    status_code = 400
    default_message = "Error: invalid input"

    def __init__(self, message: str | None = None, error: str | None = None) -> None:
        super().__init__(message)
        if error:
            self.error = error


class DuplicateReview(RentalError):
    """Raised when the user already reviewed the appliance."""

    error = "duplicate_review"
    status_code = 409
    default_message = "You have already reviewed this appliance"


class PaymentAlreadyUsed(Conflict):
    """Raised when a gateway payment has already paid for another booking."""

    error = "payment_already_used"
    default_message = "This payment has already been used"
