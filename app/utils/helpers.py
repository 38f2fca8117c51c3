"""
Helper utility functions
"""
from bson import ObjectId
from bson.errors import InvalidId
from typing import Dict, Iterator, List, Optional, Union
from datetime import date, datetime, timedelta
import pytz

from app.config.settings import settings

LOCAL_TZ = pytz.timezone(settings.TIMEZONE)

# Stored dates are ISO strings so Mongo range queries compare lexicographically
DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d")


def serialize_doc(doc: Dict) -> Dict:
    """Convert MongoDB document to JSON-serializable format"""
    if doc is None:
        return None

    if "_id" in doc and isinstance(doc["_id"], ObjectId):
        doc["_id"] = str(doc["_id"])

    # Convert any nested ObjectIds or datetimes
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            doc[key] = str(value)
        elif isinstance(value, datetime):
            if value.tzinfo is None:
                utc_dt = pytz.utc.localize(value)
                doc[key] = utc_dt.astimezone(LOCAL_TZ).isoformat()
            else:
                doc[key] = value.astimezone(LOCAL_TZ).isoformat()
        elif isinstance(value, list):
            doc[key] = [serialize_doc(item) if isinstance(item, dict) else item for item in value]
        elif isinstance(value, dict):
            doc[key] = serialize_doc(value)

    return doc


def serialize_docs(docs: List[Dict]) -> List[Dict]:
    """Convert list of MongoDB documents to JSON-serializable format"""
    return [serialize_doc(doc) for doc in docs]


def to_object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def date_to_str(value: Union[date, datetime, str, None]) -> Optional[str]:
    """Normalise a date-ish value to the stored ``YYYY-MM-DD`` form"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return parse_date(value).isoformat()


def parse_date(value: Union[date, datetime, str]) -> date:
    """Parse a date from a date, datetime or one of ``DATE_FORMATS``.

    Raises ValueError when the value cannot be read as a calendar date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid date: {value!r}")
    text = value.strip()
    # Accept full ISO timestamps as well
    if "T" in text:
        text = text.split("T", 1)[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value!r}")


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Every date in the half-open range [start, end)"""
    current = start
    while current < end:
        yield current
        current += timedelta(days=1)


def format_validation_errors(exc) -> List[str]:
    """Flatten a pydantic ValidationError into readable messages"""
    messages = []
    for err in exc.errors():
        msg = err.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        field = ".".join(str(part) for part in err.get("loc", ()))
        messages.append(f"{field}: {msg}" if field else msg)
    return messages
