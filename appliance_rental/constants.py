"""
Roles and status values shared by the models, the rental lifecycle and the
route handlers.
"""


class Role:
    USER = "USER"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"

    ALL = (USER, PROVIDER, ADMIN)


class ApplianceStatus:
    AVAILABLE = "AVAILABLE"
    RENTED = "RENTED"
    MAINTENANCE = "MAINTENANCE"

    ALL = (AVAILABLE, RENTED, MAINTENANCE)


class RentalStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    ALL = (PENDING, APPROVED, REJECTED, ACTIVE, COMPLETED, CANCELLED)


class PaymentStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"

    ALL = (PENDING, PAID, REFUNDED)


class PaymentMethod:
    CASH_ON_DELIVERY = "CASH_ON_DELIVERY"
    ONLINE = "ONLINE"

    ALL = (CASH_ON_DELIVERY, ONLINE)


DATE_FMT = "%Y-%m-%d"
