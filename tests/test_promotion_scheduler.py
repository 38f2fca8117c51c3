import asyncio
from datetime import datetime

from app.config.database import Collections
from app.services.promotion_scheduler import expire_ended_promotions


def test_ended_promotions_are_expired_not_deleted(fake_db, make_promotion):
    now = datetime(2025, 6, 1, 12, 0)
    ended_window = {"valid_from": datetime(2025, 1, 1), "valid_to": datetime(2025, 5, 31)}
    coll = fake_db[Collections.PROMOTIONS]
    coll.docs.extend([
        make_promotion(name="Ended active", **ended_window),
        make_promotion(name="Ended paused", status="paused", **ended_window),
        make_promotion(name="Ended draft", status="draft", **ended_window),
        make_promotion(name="Running"),
    ])

    assert asyncio.run(expire_ended_promotions(now)) == 2

    by_name = {d["name"]: d for d in coll.docs}
    assert len(by_name) == 4
    for name in ("Ended active", "Ended paused"):
        assert by_name[name]["status"] == "expired"
        assert by_name[name]["is_active"] is False
        assert by_name[name]["expired_at"] == now
    assert by_name["Ended draft"]["status"] == "draft"
    assert by_name["Running"]["status"] == "active"


def test_nothing_to_expire(fake_db, make_promotion):
    fake_db[Collections.PROMOTIONS].docs.append(make_promotion())
    assert asyncio.run(expire_ended_promotions(datetime(2025, 6, 1))) == 0
