import asyncio
from datetime import date, datetime

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from app.config.database import Collections
from app.models.promotion import BookingDetails
from app.services import promotion_engine
from app.services.promotion_engine import (
    build_candidate_query,
    calculate_discount_amount,
    validate_promotion_rules,
)


def _details(**overrides):
    data = {
        "property_id": "prop-1",
        "check_in_date": date(2025, 7, 7),     # a Monday
        "check_out_date": date(2025, 7, 10),
        "guests": 2,
        "rooms": 1,
        "total_amount": 12636,
        "booking_date": date(2025, 6, 1),
    }
    data.update(overrides)
    return BookingDetails(**data)


def _find(details, coupon_code=None, now=None):
    return asyncio.run(promotion_engine.find_applicable_promotions(details, coupon_code, now))


# ─── discount arithmetic ──────────────────────────────────────────────────────

def test_percentage_discount(make_promotion):
    promotion = make_promotion(discount_value=20)
    assert calculate_discount_amount(promotion, _details()) == 2527.2


def test_percentage_discount_respects_cap(make_promotion):
    promotion = make_promotion(discount_value=20, max_discount_amount=1500)
    assert calculate_discount_amount(promotion, _details()) == 1500


def test_stored_percentage_above_100_is_clamped(make_promotion):
    promotion = make_promotion(discount_value=20)
    promotion["discount_value"] = 150
    assert calculate_discount_amount(promotion, _details(total_amount=5000)) == 5000


def test_fixed_discount_never_exceeds_total(make_promotion):
    promotion = make_promotion(discount_type="fixed", discount_value=8000)
    assert calculate_discount_amount(promotion, _details(total_amount=5000)) == 5000
    assert calculate_discount_amount(promotion, _details(total_amount=12636)) == 8000


def test_free_nights_discount(make_promotion):
    promotion = make_promotion(discount_type="free_nights", discount_value=1)
    assert calculate_discount_amount(promotion, _details(total_amount=9000)) == 3000


def test_buy_x_get_y_discount(make_promotion):
    promotion = make_promotion(
        discount_type="buy_x_get_y",
        discount_value=1,
        buy_x_get_y={"buy_nights": 2, "get_free_nights": 1, "max_free_nights": 2},
    )
    six_nights = _details(check_out_date=date(2025, 7, 13), total_amount=18000)
    assert calculate_discount_amount(promotion, six_nights) == 6000


def test_discount_below_minimum_is_dropped(make_promotion):
    promotion = make_promotion(discount_type="fixed", discount_value=100, min_discount_amount=500)
    assert calculate_discount_amount(promotion, _details()) == 0


# ─── rules ────────────────────────────────────────────────────────────────────

def test_valid_promotion_passes_every_check(make_promotion, now):
    result = validate_promotion_rules(make_promotion(), _details(), now)
    assert result.is_valid
    assert result.errors == []
    assert result.conditions.date_range
    assert result.conditions.property_eligibility


def test_expired_window_fails(make_promotion):
    promotion = make_promotion(valid_from=datetime(2024, 1, 1), valid_to=datetime(2024, 12, 31))
    result = validate_promotion_rules(promotion, _details(), datetime(2025, 6, 1))
    assert not result.is_valid
    assert "Promotion is not valid for current date range" in result.errors


@pytest.mark.parametrize("conditions,overrides,message", [
    ({"min_stay_nights": 4}, {}, "Minimum stay of 4 nights required"),
    ({"max_stay_nights": 2}, {}, "Maximum stay of 2 nights exceeded"),
    ({"min_booking_amount": 20000}, {}, "Minimum booking amount of ₹20,000 required"),
    ({"advance_booking_days": {"min": 60}}, {}, "Must book at least 60 days in advance"),
    ({"advance_booking_days": {"max": 7}}, {}, "Must book within 7 days of stay"),
    ({"min_guests": 3}, {}, "Minimum 3 guests required"),
    ({"min_rooms": 2}, {}, "Minimum 2 rooms required"),
    ({"days_of_week": ["Friday", "saturday"]}, {}, "Promotion only valid for: friday, saturday"),
    ({"weekends_only": True}, {}, "Promotion only valid for weekends"),
    ({"exclude_weekends": True}, {"check_in_date": date(2025, 7, 5)}, "Promotion excludes weekends"),
    ({"usage_limit": 1}, {}, None),
])
def test_condition_failures(make_promotion, now, conditions, overrides, message):
    promotion = make_promotion(conditions=conditions)
    if message is None:
        promotion["analytics"]["usage_count"] = 1
        message = "Promotion usage limit reached"
    result = validate_promotion_rules(promotion, _details(**overrides), now)
    assert not result.is_valid
    assert message in result.errors


def test_every_failure_is_collected(make_promotion, now):
    promotion = make_promotion(conditions={"min_stay_nights": 5, "min_guests": 4})
    result = validate_promotion_rules(promotion, _details(), now)
    assert len(result.errors) == 2


def test_targeting(make_promotion, now):
    targeted = make_promotion(target_properties=["prop-2"])
    assert not validate_promotion_rules(targeted, _details(), now).is_valid

    listed = make_promotion(conditions={"applicable_properties": ["prop-1"]})
    assert validate_promotion_rules(listed, _details(), now).is_valid

    excluded = make_promotion(
        target_properties=["prop-1"], conditions={"exclude_properties": ["prop-1"]}
    )
    result = validate_promotion_rules(excluded, _details(), now)
    assert result.errors == ["Property excluded from this promotion"]


def test_first_time_customer(fake_db, make_promotion, now):
    promotion = make_promotion(conditions={"first_time_customer": True})
    details = _details(user_id="user-1")

    assert asyncio.run(promotion_engine.validate_promotion(promotion, details, now)).is_valid

    fake_db[Collections.BOOKINGS].docs.append({"_id": ObjectId(), "user_id": "user-1", "status": "completed"})
    result = asyncio.run(promotion_engine.validate_promotion(promotion, details, now))
    assert not result.is_valid
    assert result.conditions.customer_eligibility is False


def test_per_customer_usage_limit(fake_db, make_promotion, now):
    promotion = make_promotion(conditions={"usage_limit_per_customer": 1})
    fake_db[Collections.BOOKINGS].docs.append({
        "_id": ObjectId(),
        "user_id": "user-1",
        "promotion_id": str(promotion["_id"]),
        "status": "confirmed",
    })
    result = asyncio.run(promotion_engine.validate_promotion(promotion, _details(user_id="user-1"), now))
    assert "Customer usage limit reached for this promotion" in result.errors


def test_booking_being_discounted_is_not_a_previous_stay(fake_db, make_promotion, now):
    promotion = make_promotion(conditions={"first_time_customer": True})
    booking_id = ObjectId()
    fake_db[Collections.BOOKINGS].docs.append({"_id": booking_id, "user_id": "guest-1", "status": "confirmed"})
    details = _details(user_id="guest-1")

    assert asyncio.run(promotion_engine.validate_promotion(promotion, details, now, booking_id=str(booking_id))).is_valid
    assert not asyncio.run(promotion_engine.validate_promotion(promotion, details, now)).is_valid


def test_eligibility_lookup_failure_rejects_the_promotion(fake_db, make_promotion, now, monkeypatch):
    async def broken_count(*args, **kwargs):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(promotion_engine.db_ops, "count", broken_count)
    fake_db[Collections.PROMOTIONS].docs.extend([
        make_promotion(name="Welcome", conditions={"first_time_customer": True}),
        make_promotion(name="Everyone", discount_value=10),
    ])

    found = _find(_details(user_id="guest-1"), now=now)
    assert [a.promotion["name"] for a in found] == ["Everyone"]

    welcome = fake_db[Collections.PROMOTIONS].docs[0]
    result = asyncio.run(promotion_engine.validate_promotion(welcome, _details(user_id="guest-1"), now))
    assert result.errors == ["Customer eligibility could not be verified"]
    assert result.conditions.customer_eligibility is False


# ─── candidate lookup ─────────────────────────────────────────────────────────

def test_candidate_query_normalizes_coupon():
    query = build_candidate_query("  summer25 ")
    assert query["status"] == "active"
    assert query["$or"][1] == {"coupon_code": "SUMMER25"}

    automatic_only = build_candidate_query(None)
    assert "$or" not in automatic_only
    assert automatic_only["coupon_code"] is None
    assert build_candidate_query("   ") == automatic_only


def test_coupon_promotions_need_their_code(fake_db, make_promotion, now):
    coll = fake_db[Collections.PROMOTIONS]
    automatic = make_promotion(name="Automatic", discount_value=10)
    coupon = make_promotion(name="Coupon", discount_value=25, coupon_code="summer25")
    coll.docs.extend([automatic, coupon])

    without_code = _find(_details(), now=now)
    assert [a.promotion["name"] for a in without_code] == ["Automatic"]

    with_code = _find(_details(), coupon_code=" Summer25", now=now)
    assert [a.promotion["name"] for a in with_code] == ["Coupon", "Automatic"]

    wrong_code = _find(_details(), coupon_code="WINTER", now=now)
    assert [a.promotion["name"] for a in wrong_code] == ["Automatic"]


def test_only_active_promotions_in_window_are_returned(fake_db, make_promotion, now):
    coll = fake_db[Collections.PROMOTIONS]
    coll.docs.extend([
        make_promotion(name="Live"),
        make_promotion(name="Draft", status="draft"),
        make_promotion(name="Paused", status="paused"),
        make_promotion(name="Ended", valid_from=datetime(2024, 1, 1), valid_to=datetime(2025, 5, 31)),
        make_promotion(name="Elsewhere", conditions={"exclude_properties": ["prop-1"]}),
    ])
    found = _find(_details(), now=now)
    assert [a.promotion["name"] for a in found] == ["Live"]


def test_results_are_ordered_by_discount(fake_db, make_promotion, now):
    fake_db[Collections.PROMOTIONS].docs.extend([
        make_promotion(name="Ten", discount_value=10),
        make_promotion(name="Flat", discount_type="fixed", discount_value=5000),
        make_promotion(name="Twenty", discount_value=20, display_settings={"priority": 5}),
    ])
    found = _find(_details(), now=now)

    assert [a.promotion["name"] for a in found] == ["Flat", "Twenty", "Ten"]
    twenty = found[1]
    assert twenty.discount_amount == 2527.2
    assert twenty.final_amount == 10108.8
    assert twenty.discount_percentage == 20
    assert twenty.display["savings"] == "Save ₹2,527.20"
    assert twenty.display["badge"] == "Special Offer"


def test_apply_records_analytics(fake_db, make_promotion):
    promotion = make_promotion()
    fake_db[Collections.PROMOTIONS].docs.append(promotion)
    promotion_id = str(promotion["_id"])

    assert asyncio.run(promotion_engine.apply_promotion_to_booking(promotion_id, _details(), 2527.2))
    assert asyncio.run(promotion_engine.apply_promotion_to_booking(
        promotion_id, _details(total_amount=8000), 1600
    ))

    analytics = fake_db[Collections.PROMOTIONS].docs[0]["analytics"]
    assert analytics["usage_count"] == 2
    assert analytics["bookings_generated"] == 2
    assert analytics["total_discount_given"] == pytest.approx(4127.2)
    assert analytics["revenue"] == pytest.approx(16508.8)
    assert analytics["avg_booking_value"] == pytest.approx(8254.4)


def test_apply_is_recorded_once_per_booking(fake_db, make_promotion):
    promotion = make_promotion()
    fake_db[Collections.PROMOTIONS].docs.append(promotion)
    promotion_id = str(promotion["_id"])
    booking_id = str(ObjectId())

    assert asyncio.run(promotion_engine.apply_promotion_to_booking(promotion_id, _details(), 2527.2, booking_id=booking_id))
    assert asyncio.run(promotion_engine.apply_promotion_to_booking(promotion_id, _details(), 2527.2, booking_id=booking_id)) is False
    assert asyncio.run(promotion_engine.has_promotion_usage(promotion_id, booking_id))

    analytics = fake_db[Collections.PROMOTIONS].docs[0]["analytics"]
    assert analytics["usage_count"] == 1
    assert analytics["total_discount_given"] == 2527.2
    usages = fake_db[Collections.PROMOTION_USAGES].docs
    assert [(u["promotion_id"], u["booking_id"]) for u in usages] == [(promotion_id, booking_id)]


def test_apply_to_missing_promotion(fake_db):
    assert asyncio.run(promotion_engine.apply_promotion_to_booking(str(ObjectId()), _details(), 100)) is False


# ─── display ──────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("valid_to,expected", [
    (datetime(2025, 6, 2, 6), "Expires today!"),
    (datetime(2025, 6, 4, 13), "Only 3 days left!"),
    (datetime(2025, 6, 7, 13), "Ends in 6 days"),
    (datetime(2025, 8, 1), None),
])
def test_urgency_message(make_promotion, now, valid_to, expected):
    promotion = make_promotion(valid_to=valid_to)
    assert promotion_engine.generate_urgency_message(promotion, now) == expected


def test_custom_urgency_and_badge(make_promotion, now):
    promotion = make_promotion(
        type="early_bird",
        display_settings={"urgency_message": "Hurry!", "title": "Early Bird"},
    )
    info = promotion_engine.get_promotion_display_info(promotion, 1000, now)
    assert info["urgency"] == "Hurry!"
    assert info["badge"] == "Early Bird Special"
    assert info["title"] == "Early Bird"


def test_booking_details_from_booking():
    details = promotion_engine.booking_details_from_booking({
        "property_id": ObjectId("64b000000000000000000001"),
        "check_in_date": "2025-07-07",
        "check_out_date": "2025-07-10T00:00:00",
        "total_price": 12636,
        "user_id": "user-1",
        "created_at": datetime(2025, 6, 1, 9, 30),
    })
    assert details.property_id == "64b000000000000000000001"
    assert details.total_amount == 12636
    assert details.booking_date == date(2025, 6, 1)
    assert details.guests == 1
