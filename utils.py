"""Utility functions for timestamps, money, budget periods and ids."""
import calendar
import datetime as dt
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

ISO_FORMAT_ERROR = "Invalid date format. Expected ISO 8601 (YYYY-MM-DD[THH:MM:SS])."


def round_money(value: Any) -> float:
    """Round an amount to 2 decimal places with HALF_UP (normal money rounding)."""
    if value is None:
        return 0.0
    dec = value if isinstance(value, Decimal) else Decimal(str(value))
    return float(dec.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def stored_money(value: Any) -> Decimal:
    """The amount as it reads back from a REAL column (double precision)."""
    return Decimal(str(float(value)))


def utc_now() -> dt.datetime:
    return truncate_ms(dt.datetime.now(dt.timezone.utc))


def truncate_ms(value: dt.datetime) -> dt.datetime:
    """Drop sub-millisecond precision, the resolution timestamps are stored at."""
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def _end_of_day(day: dt.date) -> dt.datetime:
    return dt.datetime.combine(day, dt.time(23, 59, 59, 999000), tzinfo=dt.timezone.utc)


def normalize_timestamp(value: Any, end_of_day: bool = False) -> dt.datetime:
    """Normalize a value to an aware UTC datetime or raise a ValueError.

    Accepts datetimes (naive ones are taken as UTC), dates and ISO strings,
    including the ``Z`` suffix.  A bare date becomes midnight, or the last
    millisecond of that day when ``end_of_day`` is set, so that date ranges
    are inclusive.
    """
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            if len(text) == 10:
                value = dt.date.fromisoformat(text)
            else:
                value = dt.datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(ISO_FORMAT_ERROR)

    if isinstance(value, dt.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt.timezone.utc)
        return truncate_ms(value.astimezone(dt.timezone.utc))

    if isinstance(value, dt.date):
        if end_of_day:
            return _end_of_day(value)
        return dt.datetime.combine(value, dt.time(), tzinfo=dt.timezone.utc)

    raise ValueError(ISO_FORMAT_ERROR)


def to_iso(value: dt.datetime) -> str:
    """Format a datetime the way it is stored: ``2025-01-31T12:00:00.000Z``."""
    value = normalize_timestamp(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_iso(text: str) -> dt.datetime:
    return normalize_timestamp(text)


def months_ago(months: int, now: Optional[dt.datetime] = None) -> dt.datetime:
    """Step back ``months`` calendar months, clamping the day to the month's length."""
    now = normalize_timestamp(now) if now is not None else utc_now()
    total = now.year * 12 + (now.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def period_window(period: str, reference: Optional[Any] = None) -> tuple[dt.datetime, dt.datetime]:
    """Return the inclusive (start, end) of the budget period containing ``reference``."""
    ref = normalize_timestamp(reference) if reference is not None else utc_now()
    day = ref.date()

    if period == "weekly":
        start = day - dt.timedelta(days=day.weekday())
        end = start + dt.timedelta(days=6)
    elif period == "monthly":
        start = day.replace(day=1)
        end = day.replace(day=calendar.monthrange(day.year, day.month)[1])
    elif period == "yearly":
        start = dt.date(day.year, 1, 1)
        end = dt.date(day.year, 12, 31)
    else:
        raise ValueError(f"Unknown budget period: {period!r}")

    return normalize_timestamp(start), _end_of_day(end)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def classify_budget(
    spent: Decimal,
    amount: Decimal,
    warning_threshold: float = 80,
) -> list[str]:
    """Return flags for a budget that crossed its warning threshold or its ceiling."""
    flags: list[str] = []
    spent = Decimal(str(spent or 0))
    amount = Decimal(str(amount or 0))

    if amount <= 0:
        if spent > 0:
            flags.append("over_budget")
        return flags

    percentage = spent / amount * 100
    if percentage >= Decimal(str(warning_threshold)):
        flags.append("warning")
    if spent > amount:
        flags.append("over_budget")

    return flags
