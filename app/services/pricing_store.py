"""
Pricing store – persistence of PropertyPricing rows.

Rows are keyed by (property, room category, plan type, occupancy type,
pricing type) and carry an inclusive [start_date, end_date] range stored as
ISO strings. Mongo does not enforce non-overlapping ranges for a key; the
checks here (and in the bulk importer) do.
"""
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from app.config.database import db_config, Collections
from app.database.db_operations import db_ops
from app.models.pricing import (
    PricingEntryBase,
    PricingEntryCreate,
    PricingEntryUpdate,
    PricingSource,
)
from app.utils.errors import NotFoundError, PricingConflictError, PricingValidationError
from app.utils.helpers import date_to_str, format_validation_errors, serialize_doc, to_object_id

logger = logging.getLogger(__name__)

PricingKey = Tuple[str, str, str, str, str]


def _enum_value(value) -> str:
    return getattr(value, "value", value)


def pricing_key(property_id: str, entry) -> PricingKey:
    """Invariant key of a row (model or stored dict)"""
    get = entry.get if isinstance(entry, dict) else lambda k: getattr(entry, k)
    return (
        property_id,
        get("room_category"),
        _enum_value(get("plan_type")),
        _enum_value(get("occupancy_type")),
        _enum_value(get("pricing_type")),
    )


def ranges_overlap(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    """Inclusive ranges of ISO date strings"""
    return start_a <= end_b and start_b <= end_a


def entry_to_doc(
    entry: PricingEntryBase,
    property_id: str,
    source: PricingSource = PricingSource.MANUAL,
    batch_id: Optional[str] = None,
) -> Dict:
    """Storage form: enum values and ISO date strings"""
    doc = entry.model_dump(mode="json", exclude={"row_number", "property_id"})
    doc["property_id"] = property_id
    doc["source"] = source.value
    if batch_id:
        doc["import_batch_id"] = batch_id
    return doc


async def get_property(property_id: str, session=None) -> Dict:
    prop = await db_ops.get_by_id(Collections.PROPERTIES, property_id, session=session)
    if not prop:
        raise NotFoundError(f"Property {property_id} not found")
    return prop


async def find_overlapping(
    key: PricingKey,
    start_date: str,
    end_date: str,
    exclude_id: Optional[str] = None,
    session=None,
) -> List[Dict]:
    """Active rows of the same key whose range overlaps [start_date, end_date]"""
    property_id, room_category, plan_type, occupancy_type, pricing_type = key
    query = {
        "property_id": property_id,
        "room_category": room_category,
        "plan_type": plan_type,
        "occupancy_type": occupancy_type,
        "pricing_type": pricing_type,
        "is_active": True,
        "start_date": {"$lte": end_date},
        "end_date": {"$gte": start_date},
    }
    oid = to_object_id(exclude_id) if exclude_id else None
    if oid is not None:
        query["_id"] = {"$ne": oid}
    coll = db_config.get_collection(Collections.PROPERTY_PRICING)
    return await coll.find(query, session=session).to_list(length=None)


def _conflict_error(entry_doc: Dict, existing: List[Dict]) -> PricingConflictError:
    return PricingConflictError(
        "Pricing range overlaps an existing entry",
        conflicts=[
            {
                "existing_id": str(doc["_id"]),
                "start_date": doc["start_date"],
                "end_date": doc["end_date"],
                "price": doc.get("price"),
            }
            for doc in existing
        ],
    )


async def create_entry(entry: PricingEntryCreate) -> Dict:
    await get_property(entry.property_id)
    doc = entry_to_doc(entry, entry.property_id)
    if doc["is_active"]:
        existing = await find_overlapping(
            pricing_key(entry.property_id, doc), doc["start_date"], doc["end_date"]
        )
        if existing:
            raise _conflict_error(doc, existing)
    created = await db_ops.create(Collections.PROPERTY_PRICING, doc)
    logger.info(
        "💰 Pricing entry %s created for property %s (%s %s/%s/%s)",
        created["_id"], entry.property_id, doc["pricing_type"],
        doc["room_category"], doc["plan_type"], doc["occupancy_type"],
    )
    return serialize_doc(created)


async def update_entry(entry_id: str, patch: PricingEntryUpdate) -> Dict:
    current = await db_ops.get_by_id(Collections.PROPERTY_PRICING, entry_id)
    if not current:
        raise NotFoundError("Pricing entry not found")

    changes = patch.model_dump(exclude_unset=True, mode="json")
    if not changes:
        raise PricingValidationError("No fields to update")

    merged = {**current, **changes}
    try:
        validated = PricingEntryCreate(
            property_id=merged["property_id"],
            room_category=merged["room_category"],
            plan_type=merged["plan_type"],
            occupancy_type=merged["occupancy_type"],
            pricing_type=merged["pricing_type"],
            start_date=merged["start_date"],
            end_date=merged.get("end_date"),
            price=merged["price"],
            is_active=merged.get("is_active", True),
            is_available=merged.get("is_available", True),
            reason=merged.get("reason"),
        )
    except ValidationError as e:
        raise PricingValidationError("Invalid pricing entry", errors=format_validation_errors(e))

    doc = entry_to_doc(validated, validated.property_id, PricingSource(current.get("source", "manual")))
    if doc["is_active"]:
        existing = await find_overlapping(
            pricing_key(validated.property_id, doc),
            doc["start_date"],
            doc["end_date"],
            exclude_id=entry_id,
        )
        if existing:
            raise _conflict_error(doc, existing)

    updated = await db_ops.update(Collections.PROPERTY_PRICING, entry_id, doc)
    return serialize_doc(updated)


async def delete_entry(entry_id: str) -> None:
    if not await db_ops.delete(Collections.PROPERTY_PRICING, entry_id):
        raise NotFoundError("Pricing entry not found")


async def list_entries(
    property_id: str,
    room_category: Optional[str] = None,
    plan_type: Optional[str] = None,
    occupancy_type: Optional[str] = None,
    pricing_type: Optional[str] = None,
    active_on: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[Dict]:
    filter_query: Dict = {"property_id": property_id}
    if room_category:
        filter_query["room_category"] = room_category
    if plan_type:
        filter_query["plan_type"] = plan_type
    if occupancy_type:
        filter_query["occupancy_type"] = occupancy_type
    if pricing_type:
        filter_query["pricing_type"] = pricing_type
    if active_on:
        day = date_to_str(active_on)
        filter_query["start_date"] = {"$lte": day}
        filter_query["end_date"] = {"$gte": day}

    entries = await db_ops.get_all(
        Collections.PROPERTY_PRICING,
        filter_query=filter_query,
        skip=skip,
        limit=limit,
        sort=[("room_category", 1), ("start_date", 1)],
    )
    return [serialize_doc(e) for e in entries]


async def summarize_property_pricing(property_id: str) -> List[Dict]:
    """Entry counts and price spread per room category and pricing layer"""
    pipeline = [
        {"$match": {"property_id": property_id, "is_active": True}},
        {
            "$group": {
                "_id": {"room_category": "$room_category", "pricing_type": "$pricing_type"},
                "entries": {"$sum": 1},
                "min_price": {"$min": "$price"},
                "max_price": {"$max": "$price"},
            }
        },
        {"$sort": {"_id.room_category": 1, "_id.pricing_type": 1}},
    ]
    rows = await db_ops.aggregate(Collections.PROPERTY_PRICING, pipeline)
    return [
        {
            "room_category": row["_id"]["room_category"],
            "pricing_type": row["_id"]["pricing_type"],
            "entries": row["entries"],
            "min_price": row["min_price"],
            "max_price": row["max_price"],
        }
        for row in rows
    ]
