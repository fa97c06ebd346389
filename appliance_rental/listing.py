"""Catalogue queries: appliance filtering, brand lists and offset pagination."""
from __future__ import annotations

from sqlalchemy import func, or_
from sqlalchemy.orm import joinedload

from .constants import ApplianceStatus, RentalStatus
from .errors import ValidationError
from .models import Appliance

DEFAULT_LIMIT = 12
MAX_LIMIT = 50
FEATURED_COUNT = 5
POPULAR_COUNT = 8


def page_args(args) -> tuple[int, int]:
    """Read ``page`` and ``limit`` from request args, clamped to sane bounds."""
    try:
        page = max(1, int(args.get("page", 1)))
        limit = min(MAX_LIMIT, max(1, int(args.get("limit", DEFAULT_LIMIT))))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers", error="invalid_parameters") from None
    return page, limit


def paginate(query, page: int, limit: int) -> tuple[list, dict[str, int]]:
    total_count = query.order_by(None).count()
    items = query.limit(limit).offset((page - 1) * limit).all()
    return items, {
        "page": page,
        "limit": limit,
        "total": total_count,
        "pages": (total_count + limit - 1) // limit,
    }


def _price(args, key: str) -> float | None:
    raw = args.get(key, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"{key} must be a number", error="invalid_parameters") from None


def parse_status_filter(raw: str | None) -> list[str]:
    """Comma separated rental statuses; unknown values are refused."""
    statuses = [s.strip().upper() for s in (raw or "").split(",") if s.strip()]
    unknown = [s for s in statuses if s not in RentalStatus.ALL]
    if unknown:
        raise ValidationError(f"Unknown status: {', '.join(unknown)}", error="invalid_status")
    return statuses


def appliance_filters(args) -> dict[str, object]:
    category = args.get("category", "").strip()
    try:
        category_id = int(category) if category else None
    except ValueError:
        raise ValidationError("category must be an integer id", error="invalid_parameters") from None
    return {
        "category": category_id,
        "search": args.get("search", "").strip(),
        "price_min": _price(args, "price_min"),
        "price_max": _price(args, "price_max"),
        "brands": [b.strip() for b in args.get("brands", "").split(",") if b.strip()],
    }


def filter_appliances(filters: dict[str, object], query=None):
    """Apply catalogue filters; defaults to AVAILABLE appliances only."""
    if query is None:
        query = Appliance.query.filter(Appliance.status == ApplianceStatus.AVAILABLE)
    query = query.options(joinedload(Appliance.provider))

    if filters.get("category") is not None:
        query = query.filter(Appliance.category_id == filters["category"])

    search = filters.get("search")
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Appliance.name.ilike(pattern),
                Appliance.description.ilike(pattern),
                Appliance.brand.ilike(pattern),
            )
        )

    if filters.get("price_min") is not None:
        query = query.filter(Appliance.price_daily >= filters["price_min"])
    if filters.get("price_max") is not None:
        query = query.filter(Appliance.price_daily <= filters["price_max"])

    brands = filters.get("brands")
    if brands:
        query = query.filter(func.lower(Appliance.brand).in_([b.lower() for b in brands]))

    return query.order_by(Appliance.created_at.desc(), Appliance.appliance_id.desc())


def available_brands() -> list[str]:
    rows = (
        Appliance.query.with_entities(Appliance.brand)
        .filter(Appliance.status == ApplianceStatus.AVAILABLE)
        .distinct()
        .order_by(Appliance.brand)
        .all()
    )
    return [brand for (brand,) in rows if brand]


def featured_appliances() -> list[Appliance]:
    return (
        Appliance.query.options(joinedload(Appliance.provider))
        .filter(Appliance.status == ApplianceStatus.AVAILABLE)
        .order_by(Appliance.ratings.desc(), Appliance.review_count.desc())
        .limit(FEATURED_COUNT)
        .all()
    )


def popular_appliances() -> list[Appliance]:
    return (
        Appliance.query.options(joinedload(Appliance.provider))
        .filter(Appliance.status == ApplianceStatus.AVAILABLE)
        .order_by(Appliance.review_count.desc(), Appliance.ratings.desc())
        .limit(POPULAR_COUNT)
        .all()
    )
