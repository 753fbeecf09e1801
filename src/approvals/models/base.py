from datetime import UTC, datetime
from typing import Any


def utc_now() -> datetime:
    """Return current UTC time as naive datetime.

    Timestamp columns are stored without time zone; all times are UTC by
    convention.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def localized(value: dict[str, str] | None, locale: str = "en", fallback: str = "") -> str:
    """Pick a display string from a localized ``{locale: text}`` map."""
    if not value:
        return fallback
    return value.get(locale) or next(iter(value.values()), fallback)


def parse_utc(value: Any) -> datetime | None:
    """Parse an ISO datetime (or datetime) into naive UTC; empty values give None."""
    if value is None or value == "":
        return None
    moment = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC).replace(tzinfo=None)
    return moment
