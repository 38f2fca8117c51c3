"""
Promotion routes
"""
from fastapi import APIRouter, HTTPException, status, Depends, Query
from pydantic import ValidationError
from typing import List, Optional
from datetime import datetime

from app.config.database import Collections
from app.config.settings import settings
from app.database.db_operations import db_ops
from app.models.promotion import (
    ApplicablePromotion,
    ApplicablePromotionsRequest,
    ApplyPromotionRequest,
    ApplyPromotionResponse,
    BookingDetails,
    PromotionAnalytics,
    PromotionCreate,
    PromotionResponse,
    PromotionStatus,
    PromotionStatusUpdate,
    PromotionUpdate,
    STATUS_TRANSITIONS,
    PromotionBase,
)
from app.services import promotion_engine
from app.utils.auth import require_admin
from app.utils.helpers import format_validation_errors, serialize_doc, serialize_docs

router = APIRouter(prefix="/promotions", tags=["Promotions"])


def _promotion_to_doc(data: dict, conditions) -> dict:
    """JSON-safe document, with the validity window kept as real datetimes"""
    if conditions is not None:
        data["conditions"]["valid_from"] = promotion_engine.as_utc_naive(conditions.valid_from)
        data["conditions"]["valid_to"] = promotion_engine.as_utc_naive(conditions.valid_to)
    return data


async def _get_promotion_or_404(promotion_id: str) -> dict:
    promotion = await db_ops.get_by_id(Collections.PROMOTIONS, promotion_id)
    if not promotion:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Promotion not found"
        )
    return promotion


async def _ensure_coupon_unique(coupon_code: Optional[str], exclude_id=None):
    if not coupon_code:
        return
    query = {"coupon_code": coupon_code, "status": {"$ne": PromotionStatus.EXPIRED.value}}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if await db_ops.get_one(Collections.PROMOTIONS, query):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Coupon code {coupon_code} is already in use"
        )


@router.post("/", response_model=PromotionResponse, status_code=status.HTTP_201_CREATED)
async def create_promotion(
    promotion: PromotionCreate,
    current_user: dict = Depends(require_admin)
):
    """Create a new promotion (draft unless created active)"""
    await _ensure_coupon_unique(promotion.coupon_code)

    promotion_dict = _promotion_to_doc(promotion.model_dump(mode='json'), promotion.conditions)
    promotion_dict["is_active"] = True
    promotion_dict["analytics"] = PromotionAnalytics().model_dump()
    promotion_dict["created_by"] = current_user.get("sub")

    created = await db_ops.create(Collections.PROMOTIONS, promotion_dict)
    return serialize_doc(created)


@router.get("/", response_model=List[PromotionResponse])
async def get_promotions(
    status_filter: Optional[PromotionStatus] = Query(None, alias="status"),
    is_active: Optional[bool] = None,
    property_id: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: dict = Depends(require_admin)
):
    """Get all promotions with optional filtering"""
    filter_query = {}
    if status_filter is not None:
        filter_query["status"] = status_filter.value
    if is_active is not None:
        filter_query["is_active"] = is_active
    if property_id:
        filter_query["$or"] = [
            {"target_properties": property_id},
            {"conditions.applicable_properties": property_id},
        ]

    promotions = await db_ops.get_all(
        Collections.PROMOTIONS,
        filter_query=filter_query,
        skip=skip,
        limit=limit,
        sort=[("created_at", -1)],
    )
    return serialize_docs(promotions)


@router.post("/applicable", response_model=List[ApplicablePromotion])
async def get_applicable_promotions(request: ApplicablePromotionsRequest):
    """Promotions a booking qualifies for, best discount first"""
    details = BookingDetails(**request.model_dump(exclude={"coupon_code"}))
    return await promotion_engine.find_applicable_promotions(details, request.coupon_code)


@router.get("/{promotion_id}", response_model=PromotionResponse)
async def get_promotion(
    promotion_id: str,
    current_user: dict = Depends(require_admin)
):
    """Get promotion by ID"""
    promotion = await _get_promotion_or_404(promotion_id)
    return serialize_doc(promotion)


@router.put("/{promotion_id}", response_model=PromotionResponse)
async def update_promotion(
    promotion_id: str,
    promotion_update: PromotionUpdate,
    current_user: dict = Depends(require_admin)
):
    """Update promotion; the merged promotion must still be valid"""
    current = await _get_promotion_or_404(promotion_id)
    if current.get("status") == PromotionStatus.EXPIRED.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Expired promotions cannot be edited"
        )

    update_data = promotion_update.model_dump(exclude_unset=True, mode='json')
    if not update_data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update"
        )

    is_active = update_data.pop("is_active", None)
    merged = {**serialize_doc(dict(current)), **update_data}
    try:
        validated = PromotionBase.model_validate(merged)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=format_validation_errors(e)
        )
    await _ensure_coupon_unique(validated.coupon_code, exclude_id=current["_id"])

    new_doc = _promotion_to_doc(validated.model_dump(mode='json'), validated.conditions)
    if is_active is not None:
        new_doc["is_active"] = is_active

    updated = await db_ops.update(Collections.PROMOTIONS, promotion_id, new_doc)
    return serialize_doc(updated)


@router.post("/{promotion_id}/status", response_model=PromotionResponse)
async def change_promotion_status(
    promotion_id: str,
    status_update: PromotionStatusUpdate,
    current_user: dict = Depends(require_admin)
):
    """Move a promotion through draft → active ↔ paused → expired"""
    current = await _get_promotion_or_404(promotion_id)
    current_status = PromotionStatus(current.get("status", PromotionStatus.DRAFT.value))
    target = status_update.status

    if target != current_status and target not in STATUS_TRANSITIONS[current_status]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot change status from {current_status.value} to {target.value}"
        )

    update_data = {"status": target.value}
    if target == PromotionStatus.ACTIVE:
        update_data["is_active"] = True
    elif target == PromotionStatus.EXPIRED:
        update_data["is_active"] = False
        update_data["expired_at"] = datetime.utcnow()

    updated = await db_ops.update(Collections.PROMOTIONS, promotion_id, update_data)
    return serialize_doc(updated)


@router.delete("/{promotion_id}", response_model=PromotionResponse)
async def archive_promotion(
    promotion_id: str,
    current_user: dict = Depends(require_admin)
):
    """Retire a promotion. Promotions are kept for analytics and marked expired."""
    await _get_promotion_or_404(promotion_id)
    updated = await db_ops.update(Collections.PROMOTIONS, promotion_id, {
        "status": PromotionStatus.EXPIRED.value,
        "is_active": False,
        "expired_at": datetime.utcnow(),
    })
    return serialize_doc(updated)


@router.post("/{promotion_id}/apply", response_model=ApplyPromotionResponse)
async def apply_promotion(
    promotion_id: str,
    request: ApplyPromotionRequest,
):
    """Apply a promotion to an existing booking and record its usage.

    The booking's total_price is read as the authoritative amount and is
    never modified here. Each booking can take a given promotion once.
    """
    promotion = await _get_promotion_or_404(promotion_id)
    booking = await db_ops.get_by_id(Collections.BOOKINGS, request.booking_id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Booking not found"
        )

    try:
        details = promotion_engine.booking_details_from_booking(booking)
    except (KeyError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Booking cannot be priced: {e}"
        )

    if promotion_engine.is_coupon_gated(promotion) and request.coupon_code != promotion.get("coupon_code"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A valid coupon code is required for this promotion"
        )

    if promotion.get("status") != PromotionStatus.ACTIVE.value or not promotion.get("is_active", True):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Promotion is not active"
        )

    if await promotion_engine.has_promotion_usage(promotion_id, request.booking_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Promotion has already been applied to this booking"
        )

    validation = await promotion_engine.validate_promotion(
        promotion, details, booking_id=request.booking_id
    )
    if not validation.is_valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Promotion does not apply to this booking", "errors": validation.errors}
        )

    discount = promotion_engine.calculate_discount_amount(promotion, details)
    analytics_updated = await promotion_engine.apply_promotion_to_booking(
        promotion_id, details, discount, booking_id=request.booking_id
    )

    return ApplyPromotionResponse(
        success=True,
        promotion_id=promotion_id,
        booking_id=request.booking_id,
        total_amount=details.total_amount,
        discount_amount=discount,
        final_amount=round(max(0.0, details.total_amount - discount), 2),
        analytics_updated=analytics_updated,
    )
