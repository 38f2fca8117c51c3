"""
Bulk pricing import – spreadsheet rows → PropertyPricing rows, all or nothing.

Order of work:
    1. every row is validated before storage is touched
    2. the batch is checked against itself for overlapping ranges
    3. inside one Mongo transaction either the property's rows are replaced,
       or each row is checked against stored rows of the same key; the first
       conflict aborts and rolls back the whole batch
"""
import io
import logging
import uuid
import zipfile
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import ValidationError

from app.config.database import db_config, Collections
from app.database.db_operations import db_ops
from app.models.pricing import (
    DateRangeSummary,
    ImportConflict,
    ImportPreview,
    ImportResult,
    ImportStatus,
    PricingImportRow,
    PricingSource,
    PricingType,
)
from app.services.pricing_store import entry_to_doc, find_overlapping, get_property, pricing_key
from app.utils.errors import PricingConflictError, PricingValidationError
from app.utils.helpers import format_validation_errors, parse_date

logger = logging.getLogger(__name__)

TEMPLATE_HEADERS = [
    "Room Category",
    "Plan Type",
    "Occupancy Type",
    "Pricing Type",
    "Start Date",
    "End Date",
    "Price",
    "Available",
]

# Normalised header text → row field
HEADER_ALIASES = {
    "roomcategory": "room_category",
    "category": "room_category",
    "roomtype": "room_category",
    "plantype": "plan_type",
    "mealplan": "plan_type",
    "plan": "plan_type",
    "occupancytype": "occupancy_type",
    "occupancy": "occupancy_type",
    "pricingtype": "pricing_type",
    "startdate": "start_date",
    "datefrom": "start_date",
    "from": "start_date",
    "enddate": "end_date",
    "dateto": "end_date",
    "to": "end_date",
    "price": "price",
    "rate": "price",
    "available": "is_available",
    "isavailable": "is_available",
}

REQUIRED_COLUMNS = ("room_category", "plan_type", "occupancy_type", "start_date", "end_date", "price")

TRUE_VALUES = {"yes", "y", "true", "1", "available"}
FALSE_VALUES = {"no", "n", "false", "0", "unavailable", "blocked"}


# ─── Spreadsheet parsing ──────────────────────────────────────────────────────

def _normalize_header(value: Any) -> str:
    text = str(value or "").strip().lower()
    return "".join(ch for ch in text if ch.isalnum())


def _cell_to_date(value: Any) -> Optional[str]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_date(value).isoformat()


def _cell_to_price(value: Any) -> Any:
    if isinstance(value, str):
        cleaned = value.replace(",", "").replace("₹", "").strip()
        return float(cleaned) if cleaned else None
    return value


def _cell_to_bool(value: Any) -> bool:
    if value is None or value == "":
        return True
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError(f"Available must be yes/no, got {value!r}")


def parse_pricing_workbook(content: bytes) -> Tuple[List[Dict], List[str]]:
    """Read the first sheet of an .xlsx into raw row dicts.

    Returns ``(rows, errors)``. Cell values that cannot be read are reported
    per sheet row; the file itself being unreadable raises
    PricingValidationError.
    """
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise PricingValidationError(f"Could not read spreadsheet: {e}")

    try:
        sheet = workbook.worksheets[0]
        row_iter = sheet.iter_rows(values_only=True)
        header = next(row_iter, None)
        if not header:
            raise PricingValidationError("Spreadsheet is empty")

        columns: Dict[int, str] = {}
        for index, title in enumerate(header):
            field = HEADER_ALIASES.get(_normalize_header(title))
            if field and field not in columns.values():
                columns[index] = field

        missing = [c for c in REQUIRED_COLUMNS if c not in columns.values()]
        if missing:
            raise PricingValidationError(
                "Missing columns: " + ", ".join(m.replace("_", " ").title() for m in missing)
            )

        rows: List[Dict] = []
        errors: List[str] = []
        for sheet_row, values in enumerate(row_iter, start=2):
            if values is None or all(v is None or str(v).strip() == "" for v in values):
                continue
            raw = {
                field: values[index] if index < len(values) else None
                for index, field in columns.items()
            }
            try:
                row = {
                    "row_number": sheet_row,
                    "room_category": str(raw.get("room_category") or "").strip(),
                    "plan_type": raw.get("plan_type"),
                    "occupancy_type": raw.get("occupancy_type"),
                    "pricing_type": raw.get("pricing_type") or PricingType.PLAN_BASED.value,
                    "start_date": _cell_to_date(raw.get("start_date")),
                    "end_date": _cell_to_date(raw.get("end_date")),
                    "price": _cell_to_price(raw.get("price")),
                    "is_available": _cell_to_bool(raw.get("is_available")),
                }
            except ValueError as e:
                errors.append(f"Row {sheet_row}: {e}")
                continue
            rows.append(row)
        return rows, errors
    finally:
        workbook.close()


def build_pricing_template() -> bytes:
    """An .xlsx with the import header row and two example rows"""
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = "Pricing"

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill("solid", fgColor="1E3A5F")
    for column, title in enumerate(TEMPLATE_HEADERS, 1):
        cell = sheet.cell(row=1, column=column)
        cell.value = title
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center")
        sheet.column_dimensions[cell.column_letter].width = 18

    examples = [
        ["Deluxe Room", "EP", "DOUBLE", "PLAN_BASED", "2025-01-01", "2025-03-31", 3500, "Yes"],
        ["Deluxe Room", "CP", "DOUBLE", "DIRECT", "2025-12-24", "2025-12-26", 5200, "Yes"],
    ]
    for row in examples:
        sheet.append(row)

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


# ─── Validation ───────────────────────────────────────────────────────────────

def validate_rows(rows: List[Dict]) -> Tuple[List[PricingImportRow], List[str]]:
    """Validate every row; returns the valid rows and the row errors"""
    valid: List[PricingImportRow] = []
    errors: List[str] = []
    for position, raw in enumerate(rows, start=1):
        if isinstance(raw, PricingImportRow):
            valid.append(raw)
            continue
        data = dict(raw)
        data.setdefault("row_number", position)
        try:
            valid.append(PricingImportRow.model_validate(data))
        except ValidationError as e:
            for message in format_validation_errors(e):
                errors.append(f"Row {data['row_number']}: {message}")
    return valid, errors


def find_batch_conflicts(rows: List[PricingImportRow], property_id: str) -> List[ImportConflict]:
    """Rows of the same pricing key whose ranges overlap each other"""
    by_key: Dict[tuple, List[PricingImportRow]] = {}
    for row in rows:
        by_key.setdefault(pricing_key(property_id, row), []).append(row)

    conflicts = []
    for key_rows in by_key.values():
        key_rows.sort(key=lambda r: (r.start_date, r.end_date))
        widest = key_rows[0]
        for row in key_rows[1:]:
            if row.start_date <= widest.end_date:
                conflicts.append(_conflict(
                    row,
                    "batch",
                    existing_row_number=widest.row_number,
                    existing_start_date=widest.start_date,
                    existing_end_date=widest.end_date,
                ))
            if row.end_date > widest.end_date:
                widest = row
    return conflicts


def _conflict(row: PricingImportRow, conflicts_with: str, **existing) -> ImportConflict:
    return ImportConflict(
        row_number=row.row_number,
        room_category=row.room_category,
        plan_type=row.plan_type,
        occupancy_type=row.occupancy_type,
        pricing_type=row.pricing_type,
        start_date=row.start_date,
        end_date=row.end_date,
        conflicts_with=conflicts_with,
        **existing,
    )


def summarize_rows(rows: List[Dict]) -> ImportPreview:
    """Preview of a parsed sheet before anything is written"""
    valid, errors = validate_rows(rows)
    starts = [r.start_date for r in valid]
    ends = [r.end_date for r in valid]
    return ImportPreview(
        total_rows=len(rows),
        valid_rows=len(valid),
        invalid_rows=len(rows) - len(valid),
        room_categories=sorted({r.room_category for r in valid}),
        date_range=DateRangeSummary(
            min=min(starts) if starts else None,
            max=max(ends) if ends else None,
        ),
        errors=errors,
    )


# ─── Import ───────────────────────────────────────────────────────────────────

def _stored_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return parse_date(value)
    return parse_date(str(value))


async def _write_batch(
    rows: List[PricingImportRow],
    property_id: str,
    replace_existing: bool,
    batch_id: str,
    session,
) -> Tuple[int, int, int]:
    """Runs inside the transaction; raises PricingConflictError to abort"""
    docs = [entry_to_doc(row, property_id, PricingSource.IMPORT, batch_id) for row in rows]

    if replace_existing:
        deleted = await db_ops.delete_many(
            Collections.PROPERTY_PRICING, {"property_id": property_id}, session=session
        )
        created = await db_ops.insert_many(Collections.PROPERTY_PRICING, docs, session=session)
        return created, 0, deleted

    updated = 0
    to_insert = []
    for row, doc in zip(rows, docs):
        existing = await find_overlapping(
            pricing_key(property_id, doc), doc["start_date"], doc["end_date"], session=session
        )
        same_range = [
            e for e in existing
            if e["start_date"] == doc["start_date"] and e["end_date"] == doc["end_date"]
        ]
        if existing and len(existing) == 1 and same_range:
            await db_ops.update(
                Collections.PROPERTY_PRICING,
                str(existing[0]["_id"]),
                {
                    "price": doc["price"],
                    "is_available": doc["is_available"],
                    "source": doc["source"],
                    "import_batch_id": batch_id,
                },
                session=session,
            )
            updated += 1
            continue
        if existing:
            clash = existing[0]
            raise PricingConflictError(
                f"Row {row.row_number} overlaps an existing pricing entry",
                conflicts=[_conflict(
                    row,
                    "existing",
                    existing_id=str(clash["_id"]),
                    existing_start_date=_stored_date(clash.get("start_date")),
                    existing_end_date=_stored_date(clash.get("end_date")),
                )],
            )
        to_insert.append(doc)

    created = await db_ops.insert_many(Collections.PROPERTY_PRICING, to_insert, session=session)
    return created, updated, 0


async def import_pricing(
    rows: List[Dict],
    property_id: str,
    replace_existing: bool = False,
    known_errors: Optional[List[str]] = None,
    performed_by: Optional[str] = None,
) -> ImportResult:
    """Import a batch of pricing rows for one property, all or nothing.

    ``known_errors`` carries problems found while reading the sheet; any of
    them fails the batch like a row validation error.
    """
    await get_property(property_id)

    result = ImportResult(
        status=ImportStatus.SUCCESS,
        property_id=property_id,
        replace_existing=replace_existing,
    )

    valid, errors = validate_rows(rows)
    errors = list(known_errors or []) + errors
    if not rows and not errors:
        errors.append("No pricing rows to import")
    if errors:
        result.status = ImportStatus.VALIDATION_ERROR
        result.errors = errors
        logger.warning("⚠️  Pricing import for %s rejected: %d invalid row(s)", property_id, len(errors))
        return result

    batch_conflicts = find_batch_conflicts(valid, property_id)
    if batch_conflicts:
        result.status = ImportStatus.CONFLICT
        result.conflicts = batch_conflicts
        result.errors = [f"Row {c.row_number} overlaps row {c.existing_row_number} of the same sheet" for c in batch_conflicts]
        result.rolled_back = True
        logger.warning("⚠️  Pricing import for %s rejected: overlapping rows in batch", property_id)
        return result

    batch_id = uuid.uuid4().hex
    try:
        async with await db_config.start_session() as session:
            async with session.start_transaction():
                created, updated, deleted = await _write_batch(
                    valid, property_id, replace_existing, batch_id, session
                )
    except PricingConflictError as e:
        result.status = ImportStatus.CONFLICT
        result.conflicts = e.conflicts
        result.errors = [e.message]
        result.rolled_back = True
        logger.warning("⚠️  Pricing import for %s rolled back: %s", property_id, e.message)
        return result
    except Exception:
        logger.exception("❌ Pricing import for %s failed", property_id)
        result.status = ImportStatus.FAILED
        result.errors = ["Import failed, no changes were saved"]
        result.rolled_back = True
        return result

    result.batch_id = batch_id
    result.created = created
    result.updated = updated
    result.deleted = deleted
    logger.info(
        "📥 Pricing import %s for property %s by %s: %d created, %d updated, %d deleted",
        batch_id, property_id, performed_by or "unknown", created, updated, deleted,
    )
    return result
