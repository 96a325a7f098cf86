from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    # naive 값은 UTC로 간주
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores datetimes as UTC and always reads them back timezone-aware.

    SQLite drops the offset on write, so values are converted to UTC first.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return to_utc(value)

    def process_result_value(self, value, dialect):
        return to_utc(value)
