import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

_DIGITS = re.compile(r"^\d+$")
# pydantic also reads bare numbers as unix timestamps; only dates go through it
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_DATETIME = TypeAdapter(datetime)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_utc() -> datetime:
    """Current UTC time truncated to millisecond resolution."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond - now.microsecond % 1000)


def to_epoch_ms(ts: datetime) -> int:
    return (ts - _EPOCH) // timedelta(milliseconds=1)


def to_iso(ts: datetime) -> str:
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def parse_since(value: Optional[str]) -> Optional[datetime]:
    '''
    Parse the ?since= filter of the missed endpoint.
    All-digit strings are epoch milliseconds, anything else is tried as ISO-8601.
    Returns None when the value is absent or unparsable; never raises.
    '''
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if _DIGITS.match(value):
        try:
            return _EPOCH + timedelta(milliseconds=int(value))
        except OverflowError:
            return None
    if not _ISO_DATE.match(value):
        return None
    try:
        parsed = _DATETIME.validate_python(value)
    except ValidationError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Server -> client messages are built as dicts
def make_connected(student_id: str) -> dict:
    return {"type": "connected", "studentId": student_id}


def make_error(error: str, **extra: Any) -> dict:
    return {"error": error, **extra}


def make_too_many_connections(limit: int) -> dict:
    return make_error("Too many connections", message=f"Max {limit} connections per student")


def make_sse_frame(data: dict) -> str:
    return f"data: {json.dumps(data, separators=(',', ':'))}\n\n"
