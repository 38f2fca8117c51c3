"""
Promotion Engine – which promotions apply to a booking and how much they
take off.

Candidates are the active promotions: automatic ones always, coupon-gated
ones only when the caller supplies the matching code. Each candidate is
checked against its conditions, priced, and the list is returned best
discount first. Usage analytics are bumped best-effort when a promotion is
applied; that write is never tied to the booking write.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from app.config.database import db_config, Collections
from app.database.db_operations import db_ops
from app.models.promotion import (
    ApplicablePromotion,
    BookingDetails,
    DiscountType,
    PromotionStatus,
    PromotionValidationResult,
    normalize_coupon_code,
)
from app.utils.helpers import parse_date, serialize_doc, to_object_id

logger = logging.getLogger(__name__)

DEFAULT_BADGES = {
    "last_minute": "Last Minute Deal",
    "early_bird": "Early Bird Special",
    "long_stay": "Extended Stay Discount",
    "seasonal": "Seasonal Offer",
    "volume": "Volume Discount",
    "first_time": "Welcome Offer",
    "repeat_customer": "Loyalty Reward",
    "custom": "Special Offer",
}

# Bookings that count towards per-customer limits and first/repeat checks
COUNTED_BOOKING_STATUSES = ["confirmed", "completed"]


# ─── helpers ──────────────────────────────────────────────────────────────────

def as_utc_naive(value: Any) -> Optional[datetime]:
    """Mongo hands back naive UTC datetimes; bring everything to that form"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _utcnow() -> datetime:
    return datetime.utcnow()


def stay_nights(details: BookingDetails) -> int:
    return (details.check_out_date - details.check_in_date).days


def is_coupon_gated(promotion: Dict) -> bool:
    conditions = promotion.get("conditions") or {}
    return bool(promotion.get("coupon_code")) or bool(conditions.get("requires_coupon_code"))


def build_candidate_query(coupon_code: Optional[str] = None) -> Dict:
    """Active promotions: automatic ones, plus the coupon's when one is given"""
    query: Dict[str, Any] = {"is_active": True, "status": PromotionStatus.ACTIVE.value}
    automatic = {"coupon_code": None, "conditions.requires_coupon_code": {"$ne": True}}
    code = normalize_coupon_code(coupon_code)
    if code:
        query["$or"] = [automatic, {"coupon_code": code}]
    else:
        query.update(automatic)
    return query


# ─── validation ───────────────────────────────────────────────────────────────

def validate_promotion_rules(
    promotion: Dict,
    details: BookingDetails,
    now: Optional[datetime] = None,
) -> PromotionValidationResult:
    """Check every booking-level condition; collects all failures"""
    now = as_utc_naive(now) or _utcnow()
    result = PromotionValidationResult()
    checks = result.conditions
    conditions = promotion.get("conditions") or {}

    nights = stay_nights(details)
    booking_date = details.booking_date or now.date()
    advance_days = (details.check_in_date - booking_date).days
    amount = details.total_amount

    # 1. Validity window
    valid_from = as_utc_naive(conditions.get("valid_from"))
    valid_to = as_utc_naive(conditions.get("valid_to"))
    if valid_from and valid_to and valid_from <= now <= valid_to:
        checks.date_range = True
    else:
        result.fail("Promotion is not valid for current date range")

    # 2. Stay duration
    min_nights = conditions.get("min_stay_nights")
    max_nights = conditions.get("max_stay_nights")
    if min_nights and nights < min_nights:
        result.fail(f"Minimum stay of {min_nights} nights required")
    elif max_nights and nights > max_nights:
        result.fail(f"Maximum stay of {max_nights} nights exceeded")
    else:
        checks.stay_duration = True

    # 3. Booking amount
    min_amount = conditions.get("min_booking_amount")
    max_amount = conditions.get("max_booking_amount")
    if min_amount and amount < min_amount:
        result.fail(f"Minimum booking amount of ₹{min_amount:,.0f} required")
    elif max_amount and amount > max_amount:
        result.fail(f"Maximum booking amount of ₹{max_amount:,.0f} exceeded")
    else:
        checks.booking_amount = True

    # 4. Advance booking
    window = conditions.get("advance_booking_days") or {}
    if window.get("min") and advance_days < window["min"]:
        result.fail(f"Must book at least {window['min']} days in advance")
    elif window.get("max") is not None and advance_days > window["max"]:
        result.fail(f"Must book within {window['max']} days of stay")
    else:
        checks.advance_booking = True

    # 5. Guests
    if conditions.get("min_guests") and details.guests < conditions["min_guests"]:
        result.fail(f"Minimum {conditions['min_guests']} guests required")
    elif conditions.get("max_guests") and details.guests > conditions["max_guests"]:
        result.fail(f"Maximum {conditions['max_guests']} guests allowed")
    else:
        checks.guest_count = True

    # 6. Rooms
    if conditions.get("min_rooms") and details.rooms < conditions["min_rooms"]:
        result.fail(f"Minimum {conditions['min_rooms']} rooms required")
    elif conditions.get("max_rooms") and details.rooms > conditions["max_rooms"]:
        result.fail(f"Maximum {conditions['max_rooms']} rooms allowed")
    else:
        checks.room_count = True

    # 7. Check-in weekday
    check_in_day = details.check_in_date.strftime("%A").lower()
    is_weekend = details.check_in_date.weekday() >= 5
    days_of_week = conditions.get("days_of_week") or []
    if days_of_week:
        if check_in_day in days_of_week:
            checks.day_of_week = True
        else:
            result.fail(f"Promotion only valid for: {', '.join(days_of_week)}")
    elif conditions.get("exclude_weekends") and is_weekend:
        result.fail("Promotion excludes weekends")
    elif conditions.get("weekends_only") and not is_weekend:
        result.fail("Promotion only valid for weekends")
    else:
        checks.day_of_week = True

    # 8. Property targeting; no target list means the promotion is global
    targets = set(conditions.get("applicable_properties") or []) | set(promotion.get("target_properties") or [])
    excluded = set(conditions.get("exclude_properties") or [])
    if details.property_id in excluded:
        result.fail("Property excluded from this promotion")
    elif targets and details.property_id not in targets:
        result.fail("Property not eligible for this promotion")
    else:
        checks.property_eligibility = True

    # 9. Overall usage limit
    usage_limit = conditions.get("usage_limit")
    usage_count = (promotion.get("analytics") or {}).get("usage_count", 0)
    if usage_limit and usage_count >= usage_limit:
        result.fail("Promotion usage limit reached")
    else:
        checks.usage_limit = True

    return result


async def validate_customer_eligibility(
    promotion: Dict,
    user_id: str,
    result: PromotionValidationResult,
    booking_id: Optional[str] = None,
) -> bool:
    """Per-customer limit and first-time / repeat customer rules.

    ``booking_id`` is the booking being discounted; it never counts against
    its own guest.
    """
    conditions = promotion.get("conditions") or {}
    counted = {"$in": COUNTED_BOOKING_STATUSES}
    base_query: Dict[str, Any] = {"user_id": user_id, "status": counted}
    booking_oid = to_object_id(booking_id) if booking_id else None
    if booking_oid is not None:
        base_query["_id"] = {"$ne": booking_oid}

    try:
        if conditions.get("usage_limit_per_customer"):
            used = await db_ops.count(Collections.BOOKINGS, {
                **base_query,
                "promotion_id": str(promotion.get("_id")),
            })
            if used >= conditions["usage_limit_per_customer"]:
                result.fail("Customer usage limit reached for this promotion")
                return False

        if conditions.get("first_time_customer") or conditions.get("repeat_customer"):
            previous = await db_ops.count(Collections.BOOKINGS, base_query)
            if conditions.get("first_time_customer") and previous > 0:
                result.fail("Promotion only available for first-time customers")
                return False
            if conditions.get("repeat_customer") and previous == 0:
                result.fail("Promotion only available for repeat customers")
                return False
    except PyMongoError:
        logger.exception("❌ Error checking customer eligibility for promotion %s", promotion.get("_id"))
        result.fail("Customer eligibility could not be verified")
        return False

    return True


async def validate_promotion(
    promotion: Dict,
    details: BookingDetails,
    now: Optional[datetime] = None,
    booking_id: Optional[str] = None,
) -> PromotionValidationResult:
    result = validate_promotion_rules(promotion, details, now)
    if details.user_id:
        result.conditions.customer_eligibility = await validate_customer_eligibility(
            promotion, details.user_id, result, booking_id
        )
    else:
        result.conditions.customer_eligibility = True
    return result


# ─── discount ─────────────────────────────────────────────────────────────────

def calculate_discount_amount(promotion: Dict, details: BookingDetails) -> float:
    """Discount for a validated promotion, clamped to [0, total_amount]"""
    total = details.total_amount
    nights = stay_nights(details)
    value = float(promotion.get("discount_value") or 0)
    discount_type = promotion.get("discount_type")

    if discount_type == DiscountType.PERCENTAGE.value:
        amount = total * min(value, 100) / 100
        if promotion.get("max_discount_amount"):
            amount = min(amount, float(promotion["max_discount_amount"]))
    elif discount_type in (DiscountType.FIXED.value, "fixed_amount"):
        amount = value
    elif discount_type == DiscountType.FREE_NIGHTS.value:
        free_nights = min(int(value), nights)
        amount = free_nights * (total / nights)
    elif discount_type == DiscountType.BUY_X_GET_Y.value:
        offer = promotion.get("buy_x_get_y") or {}
        buy = offer.get("buy_nights") or 0
        amount = 0.0
        if buy:
            free_nights = (nights // buy) * (offer.get("get_free_nights") or 0)
            if offer.get("max_free_nights"):
                free_nights = min(free_nights, offer["max_free_nights"])
            amount = free_nights * (total / nights)
    else:
        amount = 0.0

    min_discount = promotion.get("min_discount_amount")
    if min_discount and amount < min_discount:
        amount = 0.0

    return round(max(0.0, min(amount, total)), 2)


# ─── main entry-points ────────────────────────────────────────────────────────

async def find_applicable_promotions(
    details: BookingDetails,
    coupon_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[ApplicablePromotion]:
    """Valid promotions for a booking, best discount first"""
    query = build_candidate_query(coupon_code)
    try:
        coll = db_config.get_collection(Collections.PROMOTIONS)
        promotions = await coll.find(query).sort([("display_settings.priority", -1)]).to_list(length=None)
    except PyMongoError:
        logger.exception("❌ Error loading promotions for property %s", details.property_id)
        return []

    applicable: List[ApplicablePromotion] = []
    for promotion in promotions:
        validation = await validate_promotion(promotion, details, now)
        if not validation.is_valid:
            continue
        discount = calculate_discount_amount(promotion, details)
        final_amount = round(max(0.0, details.total_amount - discount), 2)
        percentage = round(discount / details.total_amount * 100, 2)
        display = get_promotion_display_info(promotion, discount, now)
        applicable.append(ApplicablePromotion(
            promotion=serialize_doc(promotion),
            discount_amount=discount,
            final_amount=final_amount,
            discount_percentage=percentage,
            validation=validation,
            display=display,
        ))

    applicable.sort(
        key=lambda a: (
            a.discount_amount,
            (a.promotion.get("display_settings") or {}).get("priority", 0),
        ),
        reverse=True,
    )
    return applicable


async def has_promotion_usage(promotion_id: str, booking_id: str) -> bool:
    """Whether this booking has already been discounted by this promotion"""
    usage = await db_ops.get_one(Collections.PROMOTION_USAGES, {
        "promotion_id": promotion_id,
        "booking_id": booking_id,
    })
    return usage is not None


async def apply_promotion_to_booking(
    promotion_id: str,
    details: BookingDetails,
    discount_amount: float,
    booking_id: Optional[str] = None,
) -> bool:
    """Bump usage analytics for an applied promotion. Best-effort.

    With a ``booking_id`` the application is recorded once per
    (promotion, booking); a repeat leaves the analytics untouched.
    """
    try:
        if booking_id:
            try:
                await db_ops.create(Collections.PROMOTION_USAGES, {
                    "promotion_id": promotion_id,
                    "booking_id": booking_id,
                    "user_id": details.user_id,
                    "discount_amount": discount_amount,
                    "total_amount": details.total_amount,
                })
            except DuplicateKeyError:
                logger.info("ℹ️  Promotion %s already applied to booking %s", promotion_id, booking_id)
                return False

        matched = await db_ops.increment(Collections.PROMOTIONS, promotion_id, {
            "analytics.usage_count": 1,
            "analytics.total_discount_given": discount_amount,
            "analytics.revenue": details.total_amount - discount_amount,
            "analytics.bookings_generated": 1,
        })
        if not matched:
            logger.warning("⚠️  Promotion %s not found while recording usage", promotion_id)
            return False

        promotion = await db_ops.get_by_id(Collections.PROMOTIONS, promotion_id)
        analytics = (promotion or {}).get("analytics") or {}
        if analytics.get("bookings_generated"):
            await db_ops.update(Collections.PROMOTIONS, promotion_id, {
                "analytics.avg_booking_value": round(
                    analytics.get("revenue", 0) / analytics["bookings_generated"], 2
                ),
            })
        return True
    except PyMongoError:
        logger.exception("❌ Error applying promotion %s to booking", promotion_id)
        return False


def booking_details_from_booking(booking: Dict) -> BookingDetails:
    """Booking document → BookingDetails; ``total_price`` is authoritative"""
    created_at = booking.get("created_at")
    return BookingDetails(
        property_id=str(booking.get("property_id")),
        check_in_date=parse_date(booking["check_in_date"]),
        check_out_date=parse_date(booking["check_out_date"]),
        guests=booking.get("guests") or 1,
        rooms=booking.get("rooms") or 1,
        total_amount=float(booking["total_price"]),
        user_id=str(booking["user_id"]) if booking.get("user_id") else None,
        booking_date=parse_date(created_at) if created_at else None,
    )


# ─── display ──────────────────────────────────────────────────────────────────

def generate_urgency_message(promotion: Dict, now: Optional[datetime] = None) -> Optional[str]:
    display = promotion.get("display_settings") or {}
    if display.get("urgency_message"):
        return display["urgency_message"]

    valid_to = as_utc_naive((promotion.get("conditions") or {}).get("valid_to"))
    if valid_to is None:
        return None
    days_left = (valid_to - (as_utc_naive(now) or _utcnow())).days

    if days_left <= 1:
        return "Expires today!"
    if days_left <= 3:
        return f"Only {days_left} days left!"
    if days_left <= 7:
        return f"Ends in {days_left} days"
    return None


def get_promotion_display_info(
    promotion: Dict,
    discount_amount: float,
    now: Optional[datetime] = None,
) -> Dict[str, Optional[str]]:
    display = promotion.get("display_settings") or {}
    return {
        "badge": display.get("badge_text") or DEFAULT_BADGES.get(promotion.get("type"), "Special Offer"),
        "title": display.get("title") or promotion.get("name"),
        "description": display.get("subtitle") or promotion.get("description") or "",
        "urgency": generate_urgency_message(promotion, now),
        "savings": f"Save ₹{discount_amount:,.2f}",
    }
