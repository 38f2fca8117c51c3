"""
Shared fixtures. Services talk to Motor through ``db_config``; the tests swap
in a small in-memory stand-in that understands the queries, updates and
transactions those services use.
"""
import asyncio
import copy
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from app.config.database import db_config, Collections
from app.models.promotion import PromotionAnalytics, PromotionCreate
from app.services.promotion_engine import as_utc_naive

MISSING = object()


# ─── query / update evaluation ────────────────────────────────────────────────

def _get_path(doc, path):
    value = doc
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return MISSING
    return value


def _equals(value, expected):
    if value is MISSING:
        return expected is None
    if isinstance(value, list) and not isinstance(expected, list):
        return expected in value
    return value == expected


def _apply_operator(value, op, expected):
    if op == "$eq":
        return _equals(value, expected)
    if op == "$ne":
        return not _equals(value, expected)
    if op == "$in":
        return any(_equals(value, e) for e in expected)
    if op == "$nin":
        return not any(_equals(value, e) for e in expected)
    if op == "$exists":
        return (value is not MISSING) == bool(expected)
    if value is MISSING or value is None:
        return False
    if op == "$lt":
        return value < expected
    if op == "$lte":
        return value <= expected
    if op == "$gt":
        return value > expected
    if op == "$gte":
        return value >= expected
    raise NotImplementedError(f"Query operator {op} is not supported by the fake")


def matches(doc, query):
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, q) for q in condition):
                return False
            continue
        if key == "$and":
            if not all(matches(doc, q) for q in condition):
                return False
            continue
        value = _get_path(doc, key)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            if not all(_apply_operator(value, op, exp) for op, exp in condition.items()):
                return False
        elif not _equals(value, condition):
            return False
    return True


def _parent_of(doc, path):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    return target, parts[-1]


def apply_update(doc, update):
    for op, fields in update.items():
        for path, value in fields.items():
            parent, leaf = _parent_of(doc, path)
            if op == "$set":
                parent[leaf] = copy.deepcopy(value)
            elif op == "$inc":
                parent[leaf] = parent.get(leaf, 0) + value
            else:
                raise NotImplementedError(f"Update operator {op} is not supported by the fake")


def _sort_key(path):
    def key(doc):
        value = _get_path(doc, path)
        missing = value is MISSING or value is None
        return (not missing, value if not missing else 0)
    return key


def _field_value(doc, expression):
    if isinstance(expression, str) and expression.startswith("$"):
        value = _get_path(doc, expression[1:])
        return None if value is MISSING else value
    return expression


def _group(docs, fields):
    id_expr = fields["_id"]
    groups = {}
    for doc in docs:
        if isinstance(id_expr, dict):
            group_id = {name: _field_value(doc, expr) for name, expr in id_expr.items()}
        else:
            group_id = _field_value(doc, id_expr)
        key = repr(group_id)
        group = groups.setdefault(key, {"_id": group_id})
        for name, accumulator in fields.items():
            if name == "_id":
                continue
            (op, expression), = accumulator.items()
            value = _field_value(doc, expression)
            if op == "$sum":
                group[name] = group.get(name, 0) + value
            elif op == "$min":
                group[name] = value if name not in group else min(group[name], value)
            elif op == "$max":
                group[name] = value if name not in group else max(group[name], value)
            else:
                raise NotImplementedError(f"Accumulator {op} is not supported by the fake")
    return list(groups.values())


# ─── fake Motor objects ───────────────────────────────────────────────────────

class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def sort(self, key_or_list, direction=None):
        order_by = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction or 1)]
        for path, order in reversed(order_by):
            self._docs.sort(key=_sort_key(path), reverse=order < 0)
        return self

    def skip(self, count):
        self._skip = count
        return self

    def limit(self, count):
        self._limit = count
        return self

    async def to_list(self, length=None):
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[:self._limit]
        if length:
            docs = docs[:length]
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []
        self.unique_indexes = []

    def _matching(self, query):
        return [d for d in self.docs if matches(d, query)]

    def find(self, query=None, projection=None, session=None):
        return FakeCursor(self._matching(query))

    async def find_one(self, query=None, session=None):
        found = self._matching(query)
        return copy.deepcopy(found[0]) if found else None

    async def insert_one(self, document, session=None):
        document.setdefault("_id", ObjectId())
        for keys in self.unique_indexes:
            if any(all(_get_path(d, k) == _get_path(document, k) for k in keys) for d in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key on {keys}")
        self.docs.append(copy.deepcopy(document))
        return SimpleNamespace(inserted_id=document["_id"])

    async def insert_many(self, documents, session=None):
        ids = []
        for document in documents:
            result = await self.insert_one(document)
            ids.append(result.inserted_id)
        return SimpleNamespace(inserted_ids=ids)

    async def find_one_and_update(self, query, update, return_document=False, session=None):
        found = self._matching(query)
        if not found:
            return None
        before = copy.deepcopy(found[0])
        apply_update(found[0], update)
        return copy.deepcopy(found[0]) if return_document else before

    async def update_one(self, query, update, session=None):
        found = self._matching(query)[:1]
        for doc in found:
            apply_update(doc, update)
        return SimpleNamespace(matched_count=len(found), modified_count=len(found))

    async def update_many(self, query, update, session=None):
        found = self._matching(query)
        for doc in found:
            apply_update(doc, update)
        return SimpleNamespace(matched_count=len(found), modified_count=len(found))

    async def delete_one(self, query, session=None):
        found = self._matching(query)[:1]
        for doc in found:
            self.docs.remove(doc)
        return SimpleNamespace(deleted_count=len(found))

    async def delete_many(self, query, session=None):
        found = self._matching(query)
        self.docs = [d for d in self.docs if d not in found]
        return SimpleNamespace(deleted_count=len(found))

    async def count_documents(self, query, session=None):
        return len(self._matching(query))

    async def create_index(self, keys, unique=False, **kwargs):
        if unique:
            self.unique_indexes.append(tuple(path for path, _ in keys))
        return "_".join(f"{path}_{order}" for path, order in keys)

    def aggregate(self, pipeline, session=None):
        docs = [copy.deepcopy(d) for d in self.docs]
        for stage in pipeline:
            (op, body), = stage.items()
            if op == "$match":
                docs = [d for d in docs if matches(d, body)]
            elif op == "$group":
                docs = _group(docs, body)
            elif op == "$sort":
                FakeCursor(docs).sort(list(body.items()))
            else:
                raise NotImplementedError(f"Pipeline stage {op} is not supported by the fake")
        return FakeCursor(docs)


class FakeDatabase:
    def __init__(self):
        self.collections = {}
        self.committed = 0
        self.aborted = 0

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]


class FakeTransaction:
    """Snapshots every collection; restores them when the block raises"""

    def __init__(self, database):
        self.database = database
        self.snapshot = None

    async def __aenter__(self):
        self.snapshot = {
            name: copy.deepcopy(coll.docs) for name, coll in self.database.collections.items()
        }
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.database.committed += 1
            return False
        for name, coll in self.database.collections.items():
            coll.docs = self.snapshot.get(name, [])
        self.database.aborted += 1
        return False


class FakeSession:
    def __init__(self, database):
        self.database = database

    def start_transaction(self):
        return FakeTransaction(self.database)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeClient:
    def __init__(self, database):
        self.database = database

    async def start_session(self):
        return FakeSession(self.database)

    def close(self):
        pass


# ─── fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_db(monkeypatch):
    database = FakeDatabase()
    monkeypatch.setattr(db_config, "database", database)
    monkeypatch.setattr(db_config, "client", FakeClient(database))
    asyncio.run(db_config.ensure_indexes())
    return database


@pytest.fixture
def property_id(fake_db):
    oid = ObjectId()
    fake_db[Collections.PROPERTIES].docs.append({
        "_id": oid,
        "name": "Hilltop Homestay",
        "price": {"base": 2500},
        "property_units": [
            {"unit_type_code": "DELUXE", "unit_type_name": "Deluxe Room"},
        ],
    })
    return str(oid)


def pricing_doc(property_id, **overrides):
    """A stored pricing row; dates as ISO strings like the services write them"""
    doc = {
        "_id": ObjectId(),
        "property_id": property_id,
        "room_category": "DELUXE",
        "plan_type": "EP",
        "occupancy_type": "DOUBLE",
        "pricing_type": "PLAN_BASED",
        "start_date": "2025-01-01",
        "end_date": "2025-01-31",
        "price": 3000.0,
        "is_active": True,
        "is_available": True,
        "source": "manual",
        "created_at": datetime(2024, 12, 1),
        "updated_at": datetime(2024, 12, 1),
    }
    doc.update(overrides)
    return doc


def promotion_doc(valid_from=None, valid_to=None, status="active", **overrides):
    """A stored promotion built the same way the create route builds one"""
    conditions = overrides.pop("conditions", {})
    valid_from = valid_from or datetime(2025, 1, 1)
    valid_to = valid_to or datetime(2025, 12, 31)
    data = {
        "name": "Monsoon Saver",
        "discount_type": "percentage",
        "discount_value": 20,
        "conditions": {"valid_from": valid_from, "valid_to": valid_to, **conditions},
    }
    data.update(overrides)
    promotion = PromotionCreate(**data)
    doc = promotion.model_dump(mode="json")
    doc["conditions"]["valid_from"] = as_utc_naive(promotion.conditions.valid_from)
    doc["conditions"]["valid_to"] = as_utc_naive(promotion.conditions.valid_to)
    doc["_id"] = ObjectId()
    doc["status"] = status
    doc["is_active"] = status == "active"
    doc["analytics"] = PromotionAnalytics().model_dump()
    doc["created_at"] = datetime(2024, 12, 1)
    doc["updated_at"] = datetime(2024, 12, 1)
    return doc


@pytest.fixture
def now():
    return datetime(2025, 6, 1, 12, 0)


@pytest.fixture
def live_window():
    """A validity window around the real clock, for routes that use utcnow()"""
    current = datetime.utcnow()
    return current - timedelta(days=30), current + timedelta(days=365)


@pytest.fixture
def make_pricing():
    return pricing_doc


@pytest.fixture
def make_promotion():
    return promotion_doc
