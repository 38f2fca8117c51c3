"""
Promotion model and schemas for discounts and coupon codes
"""
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Literal, Dict, Any
from datetime import datetime, date
from enum import Enum


class PromotionType(str, Enum):
    LAST_MINUTE = "last_minute"
    EARLY_BIRD = "early_bird"
    LONG_STAY = "long_stay"
    SEASONAL = "seasonal"
    VOLUME = "volume"
    FIRST_TIME = "first_time"
    REPEAT_CUSTOMER = "repeat_customer"
    CUSTOM = "custom"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_NIGHTS = "free_nights"
    BUY_X_GET_Y = "buy_x_get_y"


class PromotionStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"


# Allowed status moves; expired is terminal
STATUS_TRANSITIONS = {
    PromotionStatus.DRAFT: {PromotionStatus.ACTIVE, PromotionStatus.EXPIRED},
    PromotionStatus.ACTIVE: {PromotionStatus.PAUSED, PromotionStatus.EXPIRED},
    PromotionStatus.PAUSED: {PromotionStatus.ACTIVE, PromotionStatus.EXPIRED},
    PromotionStatus.EXPIRED: set(),
}

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def normalize_coupon_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    code = code.strip().upper()
    return code or None


class AdvanceBookingWindow(BaseModel):
    min: Optional[int] = Field(None, ge=0)
    max: Optional[int] = Field(None, ge=0)


class BuyXGetY(BaseModel):
    buy_nights: int = Field(..., ge=1)
    get_free_nights: int = Field(..., ge=1)
    max_free_nights: Optional[int] = Field(None, ge=1)


class PromotionConditions(BaseModel):
    valid_from: datetime
    valid_to: datetime
    min_stay_nights: Optional[int] = Field(None, ge=1)
    max_stay_nights: Optional[int] = Field(None, ge=1)
    min_booking_amount: Optional[float] = Field(None, ge=0)
    max_booking_amount: Optional[float] = Field(None, ge=0)
    advance_booking_days: Optional[AdvanceBookingWindow] = None
    min_guests: Optional[int] = Field(None, ge=1)
    max_guests: Optional[int] = Field(None, ge=1)
    min_rooms: Optional[int] = Field(None, ge=1)
    max_rooms: Optional[int] = Field(None, ge=1)
    days_of_week: List[str] = Field(default_factory=list)
    exclude_weekends: bool = False
    weekends_only: bool = False
    applicable_properties: List[str] = Field(default_factory=list)
    exclude_properties: List[str] = Field(default_factory=list)
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_limit_per_customer: Optional[int] = Field(None, ge=1)
    first_time_customer: bool = False
    repeat_customer: bool = False
    requires_coupon_code: bool = False

    @field_validator('days_of_week')
    @classmethod
    def validate_days(cls, v):
        days = [d.strip().lower() for d in v]
        unknown = [d for d in days if d not in WEEKDAYS]
        if unknown:
            raise ValueError(f"Unknown day(s) of week: {', '.join(unknown)}")
        return days

    @model_validator(mode='after')
    def validate_window(self):
        if self.valid_to <= self.valid_from:
            raise ValueError('valid_to must be after valid_from')
        if self.exclude_weekends and self.weekends_only:
            raise ValueError('exclude_weekends and weekends_only cannot both be set')
        return self


class DisplaySettings(BaseModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    badge_text: Optional[str] = None
    urgency_message: Optional[str] = None
    priority: int = 0


class PromotionAnalytics(BaseModel):
    usage_count: int = 0
    total_discount_given: float = 0
    revenue: float = 0
    bookings_generated: int = 0
    avg_booking_value: float = 0


class PromotionBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    type: PromotionType = PromotionType.CUSTOM
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: float = Field(..., gt=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    min_discount_amount: Optional[float] = Field(None, ge=0)
    buy_x_get_y: Optional[BuyXGetY] = None
    conditions: PromotionConditions
    coupon_code: Optional[str] = Field(None, max_length=50)
    target_properties: List[str] = Field(default_factory=list)
    display_settings: DisplaySettings = Field(default_factory=DisplaySettings)

    @field_validator('coupon_code')
    @classmethod
    def normalize_code(cls, v):
        return normalize_coupon_code(v)

    @model_validator(mode='after')
    def validate_discount(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError('Percentage discount cannot exceed 100%')
        if self.discount_type == DiscountType.BUY_X_GET_Y and self.buy_x_get_y is None:
            raise ValueError('buy_x_get_y settings are required for buy_x_get_y discounts')
        if self.conditions.requires_coupon_code and not self.coupon_code:
            raise ValueError('A coupon code is required when requires_coupon_code is set')
        return self


class PromotionCreate(PromotionBase):
    status: Literal["draft", "active"] = "draft"


class PromotionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    type: Optional[PromotionType] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, gt=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    min_discount_amount: Optional[float] = Field(None, ge=0)
    buy_x_get_y: Optional[BuyXGetY] = None
    conditions: Optional[PromotionConditions] = None
    coupon_code: Optional[str] = Field(None, max_length=50)
    target_properties: Optional[List[str]] = None
    display_settings: Optional[DisplaySettings] = None
    is_active: Optional[bool] = None

    @field_validator('coupon_code')
    @classmethod
    def normalize_code(cls, v):
        return normalize_coupon_code(v)


class PromotionStatusUpdate(BaseModel):
    status: PromotionStatus


class PromotionResponse(PromotionBase):
    id: str = Field(alias="_id")
    status: PromotionStatus
    is_active: bool = True
    analytics: PromotionAnalytics = Field(default_factory=PromotionAnalytics)
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"populate_by_name": True}

    # Stored promotions are trusted; skip creation-time checks on the way out
    @model_validator(mode='after')
    def validate_discount(self):
        return self


# ─── Applicability ────────────────────────────────────────────────────────────

class BookingDetails(BaseModel):
    property_id: str
    check_in_date: date
    check_out_date: date
    guests: int = Field(default=1, ge=1)
    rooms: int = Field(default=1, ge=1)
    total_amount: float = Field(..., gt=0)
    user_id: Optional[str] = None
    booking_date: Optional[date] = None

    @model_validator(mode='after')
    def validate_stay(self):
        if self.check_out_date <= self.check_in_date:
            raise ValueError('Check-out date must be after check-in date')
        return self


class ApplicablePromotionsRequest(BookingDetails):
    coupon_code: Optional[str] = None

    @field_validator('coupon_code')
    @classmethod
    def normalize_code(cls, v):
        return normalize_coupon_code(v)


class ConditionChecks(BaseModel):
    date_range: bool = False
    stay_duration: bool = False
    booking_amount: bool = False
    advance_booking: bool = False
    guest_count: bool = False
    room_count: bool = False
    day_of_week: bool = False
    property_eligibility: bool = False
    usage_limit: bool = False
    customer_eligibility: bool = False


class PromotionValidationResult(BaseModel):
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    conditions: ConditionChecks = Field(default_factory=ConditionChecks)

    def fail(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)


class ApplicablePromotion(BaseModel):
    promotion: Dict[str, Any]
    discount_amount: float
    final_amount: float
    discount_percentage: float
    validation: PromotionValidationResult
    display: Optional[Dict[str, Any]] = None


class ApplyPromotionRequest(BaseModel):
    booking_id: str
    coupon_code: Optional[str] = None

    @field_validator('coupon_code')
    @classmethod
    def normalize_code(cls, v):
        return normalize_coupon_code(v)


class ApplyPromotionResponse(BaseModel):
    success: bool
    promotion_id: str
    booking_id: str
    total_amount: float
    discount_amount: float
    final_amount: float
    analytics_updated: bool
    errors: List[str] = Field(default_factory=list)
