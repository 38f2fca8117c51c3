"""
Pydantic models for property pricing: stored entries, price lookups,
stay quotes and bulk import results
"""
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from enum import Enum

from app.config.settings import settings


# ─── Enums ────────────────────────────────────────────────────────────────────

class PlanType(str, Enum):
    EP = "EP"      # Room only
    CP = "CP"      # Room + breakfast
    MAP = "MAP"    # Room + one main meal
    AP = "AP"      # All meals


class OccupancyType(str, Enum):
    SINGLE = "SINGLE"
    DOUBLE = "DOUBLE"
    TRIPLE = "TRIPLE"
    QUAD = "QUAD"


class PricingType(str, Enum):
    BASE = "BASE"                # catch-all fallback, open ended
    PLAN_BASED = "PLAN_BASED"    # seasonal plan/occupancy rates
    DIRECT = "DIRECT"            # explicit date overrides


class PricingSource(str, Enum):
    MANUAL = "manual"
    IMPORT = "import"


# BASE rows without an end date run until this day
OPEN_END_DATE = date(9999, 12, 31)


def _normalize_code(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper().replace(" ", "_").replace("-", "_")
    return value


# ─── Stored entries ───────────────────────────────────────────────────────────

class PricingEntryBase(BaseModel):
    room_category: str = Field(..., min_length=1, max_length=100)
    plan_type: PlanType
    occupancy_type: OccupancyType
    pricing_type: PricingType = PricingType.PLAN_BASED
    start_date: date
    end_date: Optional[date] = None
    price: float = Field(..., gt=0, le=settings.MAX_PRICE)
    is_active: bool = True
    is_available: bool = True
    reason: Optional[str] = Field(None, max_length=300)

    @field_validator('room_category')
    @classmethod
    def strip_room_category(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Room category is required')
        return v

    @field_validator('plan_type', 'occupancy_type', 'pricing_type', mode='before')
    @classmethod
    def normalize_codes(cls, v):
        return _normalize_code(v)

    @model_validator(mode='after')
    def validate_range(self):
        if self.end_date is None:
            if self.pricing_type != PricingType.BASE:
                raise ValueError('End date is required unless the pricing type is BASE')
            self.end_date = OPEN_END_DATE
        if self.end_date < self.start_date:
            raise ValueError('End date must be on or after start date')
        return self


class PricingEntryCreate(PricingEntryBase):
    property_id: str = Field(..., min_length=1)


class PricingEntryUpdate(BaseModel):
    room_category: Optional[str] = Field(None, min_length=1, max_length=100)
    plan_type: Optional[PlanType] = None
    occupancy_type: Optional[OccupancyType] = None
    pricing_type: Optional[PricingType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    price: Optional[float] = Field(None, gt=0, le=settings.MAX_PRICE)
    is_active: Optional[bool] = None
    is_available: Optional[bool] = None
    reason: Optional[str] = Field(None, max_length=300)

    @field_validator('plan_type', 'occupancy_type', 'pricing_type', mode='before')
    @classmethod
    def normalize_codes(cls, v):
        return _normalize_code(v)


class PricingEntryResponse(BaseModel):
    id: str = Field(alias="_id")
    property_id: str
    room_category: str
    plan_type: PlanType
    occupancy_type: OccupancyType
    pricing_type: PricingType
    start_date: date
    end_date: date
    price: float
    is_active: bool = True
    is_available: bool = True
    reason: Optional[str] = None
    source: PricingSource = PricingSource.MANUAL
    import_batch_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"populate_by_name": True}


# ─── Lookups ──────────────────────────────────────────────────────────────────

class PriceResolveRequest(BaseModel):
    property_id: str
    room_category: str
    plan_type: PlanType
    occupancy_type: OccupancyType
    date: date

    @field_validator('plan_type', 'occupancy_type', mode='before')
    @classmethod
    def normalize_codes(cls, v):
        return _normalize_code(v)


class PriceResolution(BaseModel):
    """Outcome of a single-date lookup. ``price`` is None when unavailable."""
    date: date
    price: Optional[float] = None
    available: bool = False
    pricing_type: Optional[str] = None   # a PricingType value or "PROPERTY_BASE"
    entry_id: Optional[str] = None
    reason: Optional[str] = None         # "blocked" | "no_price" when unavailable


class PricingQueryRequest(BaseModel):
    property_id: str
    check_in_date: date
    check_out_date: date
    room_category: Optional[str] = None
    plan_type: Optional[PlanType] = None
    occupancy_type: Optional[OccupancyType] = None
    rooms: int = Field(default=1, ge=1, le=50)

    @field_validator('plan_type', 'occupancy_type', mode='before')
    @classmethod
    def normalize_codes(cls, v):
        return _normalize_code(v)

    @model_validator(mode='after')
    def validate_stay(self):
        if self.check_out_date <= self.check_in_date:
            raise ValueError('Check-out date must be after check-in date')
        return self


class NightlyPrice(BaseModel):
    date: date
    price: float
    pricing_type: str


class PricingOption(BaseModel):
    room_category: str
    plan_type: PlanType
    occupancy_type: OccupancyType
    nights: int
    rooms: int = 1
    price_per_night: float
    total_price: float
    nightly: List[NightlyPrice] = Field(default_factory=list)


class PricingQueryResponse(BaseModel):
    success: bool = True
    property_id: str
    check_in_date: date
    check_out_date: date
    nights: int
    pricing_options: List[PricingOption] = Field(default_factory=list)


# ─── Bulk import ──────────────────────────────────────────────────────────────

class PricingImportRow(PricingEntryBase):
    """One spreadsheet row. Ranges must be strictly increasing."""
    row_number: int = Field(..., ge=1)

    @model_validator(mode='after')
    def validate_strict_range(self):
        if self.end_date <= self.start_date:
            raise ValueError('Start date must be before end date')
        return self


class PricingImportRequest(BaseModel):
    property_id: str
    replace_existing: bool = False
    rows: List[Dict[str, Any]] = Field(..., min_length=1)


class ImportStatus(str, Enum):
    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    FAILED = "failed"


class ImportConflict(BaseModel):
    row_number: int
    room_category: str
    plan_type: PlanType
    occupancy_type: OccupancyType
    pricing_type: PricingType
    start_date: date
    end_date: date
    conflicts_with: str                  # "existing" or "batch"
    existing_id: Optional[str] = None
    existing_row_number: Optional[int] = None
    existing_start_date: Optional[date] = None
    existing_end_date: Optional[date] = None


class ImportResult(BaseModel):
    status: ImportStatus
    property_id: str
    replace_existing: bool = False
    batch_id: Optional[str] = None
    created: int = 0
    updated: int = 0
    deleted: int = 0
    conflicts: List[ImportConflict] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    rolled_back: bool = False

    @property
    def success(self) -> bool:
        return self.status == ImportStatus.SUCCESS


class DateRangeSummary(BaseModel):
    min: Optional[date] = None
    max: Optional[date] = None


class ImportPreview(BaseModel):
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    room_categories: List[str] = Field(default_factory=list)
    date_range: DateRangeSummary = Field(default_factory=DateRangeSummary)
    errors: List[str] = Field(default_factory=list)


class PricingImportResponse(BaseModel):
    success: bool
    summary: ImportPreview
    import_result: Optional[ImportResult] = None


class PricingSummaryItem(BaseModel):
    room_category: str
    pricing_type: PricingType
    entries: int
    min_price: float
    max_price: float
