"""
Pricing routes – price lookups, pricing entry management and bulk import
"""
import io
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse

from app.config.settings import settings
from app.models.pricing import (
    ImportResult,
    ImportStatus,
    OccupancyType,
    PlanType,
    PriceResolution,
    PriceResolveRequest,
    PricingEntryCreate,
    PricingEntryResponse,
    PricingEntryUpdate,
    PricingImportRequest,
    PricingImportResponse,
    PricingQueryRequest,
    PricingQueryResponse,
    PricingSummaryItem,
    PricingType,
)
from app.services import pricing_import, pricing_resolver, pricing_store
from app.utils.auth import require_admin
from app.utils.errors import PricingConflictError, PricingError, PricingValidationError

router = APIRouter(prefix="/pricing", tags=["Pricing"])

IMPORT_STATUS_CODES = {
    ImportStatus.SUCCESS: status.HTTP_200_OK,
    ImportStatus.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ImportStatus.CONFLICT: status.HTTP_409_CONFLICT,
    ImportStatus.FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _http_error(e: PricingError) -> HTTPException:
    detail = {"message": e.message}
    if isinstance(e, PricingValidationError):
        detail["errors"] = e.errors
    elif isinstance(e, PricingConflictError):
        detail["conflicts"] = jsonable_encoder(e.conflicts)
    return HTTPException(status_code=e.status_code, detail=detail)


def _import_response(payload, result: ImportResult) -> JSONResponse:
    return JSONResponse(
        status_code=IMPORT_STATUS_CODES[result.status],
        content=jsonable_encoder(payload, by_alias=False),
    )


# ─── Lookups ──────────────────────────────────────────────────────────────────

@router.post("/resolve", response_model=PriceResolution)
async def resolve_price(request: PriceResolveRequest):
    """Price of one room category / plan / occupancy on one date"""
    try:
        return await pricing_resolver.resolve_price(
            request.property_id,
            request.room_category,
            request.plan_type,
            request.occupancy_type,
            request.date,
        )
    except PricingError as e:
        raise _http_error(e)


@router.post("/query", response_model=PricingQueryResponse)
async def query_pricing(request: PricingQueryRequest):
    """Bookable pricing options for a stay"""
    try:
        return await pricing_resolver.quote_stay(request)
    except PricingError as e:
        raise _http_error(e)


# ─── Entries ──────────────────────────────────────────────────────────────────

@router.get("/{property_id}/entries", response_model=List[PricingEntryResponse])
async def list_pricing_entries(
    property_id: str,
    room_category: Optional[str] = None,
    plan_type: Optional[PlanType] = None,
    occupancy_type: Optional[OccupancyType] = None,
    pricing_type: Optional[PricingType] = None,
    active_on: Optional[date] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: dict = Depends(require_admin)
):
    """Pricing entries of a property with optional filtering"""
    return await pricing_store.list_entries(
        property_id,
        room_category=room_category,
        plan_type=plan_type.value if plan_type else None,
        occupancy_type=occupancy_type.value if occupancy_type else None,
        pricing_type=pricing_type.value if pricing_type else None,
        active_on=active_on,
        skip=skip,
        limit=limit,
    )


@router.get("/{property_id}/summary", response_model=List[PricingSummaryItem])
async def pricing_summary(property_id: str, current_user: dict = Depends(require_admin)):
    """Entry counts and price spread per room category and pricing type"""
    return await pricing_store.summarize_property_pricing(property_id)


@router.post("/entries", response_model=PricingEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_pricing_entry(
    entry: PricingEntryCreate,
    current_user: dict = Depends(require_admin)
):
    """Create a single pricing entry; overlapping ranges for the same key are rejected"""
    try:
        return await pricing_store.create_entry(entry)
    except PricingError as e:
        raise _http_error(e)


@router.put("/entries/{entry_id}", response_model=PricingEntryResponse)
async def update_pricing_entry(
    entry_id: str,
    entry_update: PricingEntryUpdate,
    current_user: dict = Depends(require_admin)
):
    """Update a pricing entry"""
    try:
        return await pricing_store.update_entry(entry_id, entry_update)
    except PricingError as e:
        raise _http_error(e)


@router.delete("/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_pricing_entry(entry_id: str, current_user: dict = Depends(require_admin)):
    """Delete a pricing entry"""
    try:
        await pricing_store.delete_entry(entry_id)
    except PricingError as e:
        raise _http_error(e)
    return None


# ─── Bulk import ──────────────────────────────────────────────────────────────

@router.get("/import/template")
async def download_import_template(current_user: dict = Depends(require_admin)):
    """Excel template for bulk pricing import"""
    content = pricing_import.build_pricing_template()
    return StreamingResponse(
        io.BytesIO(content),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=pricing-template.xlsx"},
    )


@router.post("/import", response_model=PricingImportResponse)
async def import_pricing_file(
    file: UploadFile = File(...),
    property_id: str = Form(...),
    replace_existing: bool = Form(False),
    dry_run: bool = Form(False),
    current_user: dict = Depends(require_admin)
):
    """Import pricing rows from an .xlsx file, all or nothing"""
    filename = (file.filename or "").lower()
    if not filename.endswith(".xlsx"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please upload a valid Excel file (.xlsx)"
        )
    content = await file.read()
    if len(content) > settings.MAX_IMPORT_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="File is too large"
        )

    try:
        rows, parse_errors = pricing_import.parse_pricing_workbook(content)
        summary = pricing_import.summarize_rows(rows)
        summary.total_rows += len(parse_errors)
        summary.invalid_rows += len(parse_errors)
        summary.errors = parse_errors + summary.errors

        if dry_run:
            return PricingImportResponse(success=not summary.errors, summary=summary)

        result = await pricing_import.import_pricing(
            rows,
            property_id,
            replace_existing=replace_existing,
            known_errors=parse_errors,
            performed_by=current_user.get("username") or current_user.get("sub"),
        )
    except PricingError as e:
        raise _http_error(e)

    payload = PricingImportResponse(success=result.success, summary=summary, import_result=result)
    return _import_response(payload, result)


@router.post("/import/rows", response_model=ImportResult)
async def import_pricing_rows(
    request: PricingImportRequest,
    current_user: dict = Depends(require_admin)
):
    """Import pricing rows sent as JSON, all or nothing"""
    try:
        result = await pricing_import.import_pricing(
            request.rows,
            request.property_id,
            replace_existing=request.replace_existing,
            performed_by=current_user.get("username") or current_user.get("sub"),
        )
    except PricingError as e:
        raise _http_error(e)
    return _import_response(result, result)
