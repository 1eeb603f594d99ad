# timestamps.py
# Description: UTC timestamp helpers shared by the stores and the sync core.
#
# All instants are stored as fixed-width ISO-8601 strings with microseconds and a 'Z' suffix,
# so lexical order in SQLite matches chronological order.
#
# Imports
from datetime import datetime, timezone
from typing import Union
#
#######################################################################################################################
#
# Functions:

DB_TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    return ensure_utc(value).strftime(DB_TIMESTAMP_FORMAT)


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid timestamp value: {value!r}")
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return ensure_utc(datetime.fromisoformat(text))


def normalize_timestamp(value: Union[str, datetime]) -> str:
    """Round-trips any accepted timestamp into the canonical DB string."""
    return to_db_timestamp(parse_timestamp(value))

#
# End of timestamps.py
#######################################################################################################################
