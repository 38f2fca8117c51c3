"""
Pricing resolver – which price applies to a room category / meal plan /
occupancy on a given night.

Overlapping rows are resolved by walking RESOLUTION_ORDER: an explicit DIRECT
date override beats a PLAN_BASED seasonal rate, which beats the open-ended
BASE rate. When no row covers the date the property's flat ``price.base`` is
used; when that is missing too the combination is not bookable.
"""
import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from app.config.database import db_config, Collections
from app.models.pricing import (
    NightlyPrice,
    OccupancyType,
    PlanType,
    PriceResolution,
    PricingOption,
    PricingQueryRequest,
    PricingQueryResponse,
    PricingType,
)
from app.services.pricing_store import get_property
from app.utils.helpers import date_to_str, iter_dates

logger = logging.getLogger(__name__)

RESOLUTION_ORDER = (PricingType.DIRECT, PricingType.PLAN_BASED, PricingType.BASE)

PROPERTY_BASE = "PROPERTY_BASE"

# Combination offered when a category has no pricing rows of its own
DEFAULT_PLAN = PlanType.EP
DEFAULT_OCCUPANCY = OccupancyType.DOUBLE


def property_base_price(property_doc: Optional[Dict]) -> Optional[float]:
    """The property's flat fallback price, if it has a usable one"""
    if not property_doc:
        return None
    price = property_doc.get("price")
    base = price.get("base") if isinstance(price, dict) else None
    try:
        base = float(base)
    except (TypeError, ValueError):
        return None
    return base if base > 0 else None


def _layer_rank(entry: Dict):
    # Latest start first, then the most recently edited row
    return (entry.get("start_date") or "", entry.get("updated_at") or datetime.min)


def select_entry(entries: Iterable[Dict], on_date) -> Optional[Dict]:
    """Pick the row that prices ``on_date``, or None.

    Both range ends are inclusive.
    """
    day = date_to_str(on_date)
    candidates = [
        e for e in entries
        if e.get("is_active", True) and e["start_date"] <= day <= e["end_date"]
    ]
    for pricing_type in RESOLUTION_ORDER:
        layer = [e for e in candidates if e.get("pricing_type") == pricing_type.value]
        if layer:
            return max(layer, key=_layer_rank)
    return None


def resolve_from_entries(
    entries: Iterable[Dict],
    on_date: date,
    base_price: Optional[float] = None,
) -> PriceResolution:
    """Resolve one night from rows already loaded for a single pricing key"""
    entry = select_entry(entries, on_date)
    if entry is not None:
        if not entry.get("is_available", True):
            return PriceResolution(
                date=on_date,
                pricing_type=entry["pricing_type"],
                entry_id=str(entry["_id"]) if entry.get("_id") is not None else None,
                reason="blocked",
            )
        return PriceResolution(
            date=on_date,
            price=float(entry["price"]),
            available=True,
            pricing_type=entry["pricing_type"],
            entry_id=str(entry["_id"]) if entry.get("_id") is not None else None,
        )
    if base_price is not None:
        return PriceResolution(
            date=on_date, price=base_price, available=True, pricing_type=PROPERTY_BASE
        )
    return PriceResolution(date=on_date, reason="no_price")


async def _load_entries(
    property_id: str,
    start: str,
    end: str,
    room_category: Optional[str] = None,
    plan_type: Optional[str] = None,
    occupancy_type: Optional[str] = None,
) -> List[Dict]:
    query: Dict = {
        "property_id": property_id,
        "is_active": True,
        "start_date": {"$lte": end},
        "end_date": {"$gte": start},
    }
    if room_category:
        query["room_category"] = room_category
    if plan_type:
        query["plan_type"] = plan_type
    if occupancy_type:
        query["occupancy_type"] = occupancy_type
    coll = db_config.get_collection(Collections.PROPERTY_PRICING)
    return await coll.find(query).to_list(length=None)


async def resolve_price(
    property_id: str,
    room_category: str,
    plan_type: PlanType,
    occupancy_type: OccupancyType,
    on_date: date,
) -> PriceResolution:
    property_doc = await get_property(property_id)
    day = date_to_str(on_date)
    entries = await _load_entries(
        property_id, day, day, room_category.strip(), plan_type.value, occupancy_type.value
    )
    resolution = resolve_from_entries(entries, on_date, property_base_price(property_doc))
    if not resolution.available:
        logger.info(
            "🚫 No price for %s %s/%s/%s on %s (%s)",
            property_id, room_category, plan_type.value, occupancy_type.value, day, resolution.reason,
        )
    return resolution


def _unit_categories(property_doc: Dict) -> List[str]:
    units = property_doc.get("property_units") or []
    codes = []
    for unit in units:
        if isinstance(unit, dict):
            code = unit.get("unit_type_code") or unit.get("unit_type_name")
            if code:
                codes.append(str(code).strip())
    return codes


def build_pricing_options(
    entries: List[Dict],
    nights: List[date],
    categories: List[str],
    plan_type: Optional[PlanType],
    occupancy_type: Optional[OccupancyType],
    base_price: Optional[float],
    rooms: int = 1,
) -> List[PricingOption]:
    """Price every bookable combination over ``nights``.

    A combination with any unpriced or blocked night is left out.
    """
    grouped: Dict[Tuple[str, str, str], List[Dict]] = defaultdict(list)
    for entry in entries:
        grouped[(entry["room_category"], entry["plan_type"], entry["occupancy_type"])].append(entry)

    options = []
    for category in categories:
        combos = sorted({(p, o) for (c, p, o) in grouped if c == category})
        if plan_type:
            combos = [(p, o) for (p, o) in combos if p == plan_type.value]
        if occupancy_type:
            combos = [(p, o) for (p, o) in combos if o == occupancy_type.value]
        if not combos and not any(c == category for (c, _, _) in grouped):
            combos = [(
                (plan_type or DEFAULT_PLAN).value,
                (occupancy_type or DEFAULT_OCCUPANCY).value,
            )]

        for plan, occupancy in combos:
            rows = grouped.get((category, plan, occupancy), [])
            nightly = []
            for night in nights:
                resolution = resolve_from_entries(rows, night, base_price)
                if not resolution.available:
                    nightly = None
                    break
                nightly.append(NightlyPrice(
                    date=night, price=resolution.price, pricing_type=resolution.pricing_type
                ))
            if not nightly:
                continue

            stay_total = sum(n.price for n in nightly)
            options.append(PricingOption(
                room_category=category,
                plan_type=plan,
                occupancy_type=occupancy,
                nights=len(nightly),
                rooms=rooms,
                price_per_night=round(stay_total / len(nightly), 2),
                total_price=round(stay_total * rooms, 2),
                nightly=nightly,
            ))

    options.sort(key=lambda o: (o.total_price, o.room_category))
    return options


async def quote_stay(request: PricingQueryRequest) -> PricingQueryResponse:
    """Bookable pricing options for every night of [check_in, check_out)"""
    property_doc = await get_property(request.property_id)
    nights = list(iter_dates(request.check_in_date, request.check_out_date))

    entries = await _load_entries(
        request.property_id,
        date_to_str(nights[0]),
        date_to_str(nights[-1]),
        request.room_category.strip() if request.room_category else None,
        request.plan_type.value if request.plan_type else None,
        request.occupancy_type.value if request.occupancy_type else None,
    )

    if request.room_category:
        categories = [request.room_category.strip()]
    else:
        categories = sorted(
            {e["room_category"] for e in entries} | set(_unit_categories(property_doc))
        )

    options = build_pricing_options(
        entries,
        nights,
        categories,
        request.plan_type,
        request.occupancy_type,
        property_base_price(property_doc),
        request.rooms,
    )
    logger.info(
        "🧮 Quoted %d option(s) for property %s, %s → %s",
        len(options), request.property_id, request.check_in_date, request.check_out_date,
    )
    return PricingQueryResponse(
        property_id=request.property_id,
        check_in_date=request.check_in_date,
        check_out_date=request.check_out_date,
        nights=len(nights),
        pricing_options=options,
    )
