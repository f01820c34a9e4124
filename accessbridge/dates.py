"""Validity-window parsing, clamping and vendor timestamp formatting.

The vendor hard-rejects validity windows longer than its limit (10 years by
default), so over-long windows are clamped rather than refused. Wire format
is ISO-8601 with an explicit numeric offset and no fractional seconds:

    2025-01-01T00:00:00+02:00
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo

from .errors import DateValidationError, InvalidRange

DEFAULT_MAX_YEARS = 10


def parse_instant(value, tz: tzinfo | None = None) -> datetime:
    """Parse a datetime, date or ISO-8601 string into an aware datetime.

    Naive values (including date-only strings) are interpreted in `tz`,
    defaulting to the local zone.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise DateValidationError(f"Invalid date format provided: {value!r}") from None
    else:
        raise DateValidationError(f"Invalid date format provided: {value!r}")

    if parsed.tzinfo is None:
        if tz is None:
            return parsed.astimezone()
        return parsed.replace(tzinfo=tz)
    return parsed


def format_vendor_time(moment: datetime, tz: tzinfo | None = None) -> str:
    """Render `moment` in `tz` (default local) as YYYY-MM-DDTHH:MM:SS±HH:MM."""
    local = moment.astimezone(tz) if tz is not None else moment.astimezone()
    offset = local.utcoffset() or timedelta(0)
    total_minutes = int(offset.total_seconds() // 60)
    sign = "+" if total_minutes >= 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{local.strftime('%Y-%m-%dT%H:%M:%S')}{sign}{hours:02d}:{minutes:02d}"


def add_years(moment: datetime, years: int) -> datetime:
    """Same wall-clock time `years` later; 29 Feb falls back to 28 Feb."""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


def duration_years(start, end) -> float:
    """Span between two instants in years of 365.25 days, two decimals."""
    delta = abs(parse_instant(end) - parse_instant(start))
    return round(delta / timedelta(days=365.25), 2)


@dataclass(frozen=True)
class DateRange:
    """Normalized validity window in vendor wire format."""

    start: str
    end: str
    adjusted: bool = False
    original_from: str | None = None
    original_to: str | None = None
    reason: str | None = None


class DateRangeNormalizer:
    """Validates and clamps validity windows to the vendor limit."""

    def __init__(self, max_years: int = DEFAULT_MAX_YEARS, tz: tzinfo | None = None):
        if max_years < 1:
            raise ValueError("max_years must be at least 1")
        self.max_years = max_years
        self.tz = tz

    def max_end(self, start) -> datetime:
        return self._limit(self._localize(parse_instant(start, self.tz)))

    def normalize(self, start, end) -> DateRange:
        begin = self._localize(parse_instant(start, self.tz))
        finish = self._localize(parse_instant(end, self.tz))

        if begin > finish:
            raise InvalidRange(
                "Start date must be before end date",
                valid_from=format_vendor_time(begin, self.tz),
                valid_to=format_vendor_time(finish, self.tz),
            )

        limit = self._limit(begin)
        if finish > limit:
            return DateRange(
                start=format_vendor_time(begin, self.tz),
                end=format_vendor_time(limit, self.tz),
                adjusted=True,
                original_from=format_vendor_time(begin, self.tz),
                original_to=format_vendor_time(finish, self.tz),
                reason=(
                    f"Date range exceeded {self.max_years} years, "
                    "adjusted to maximum allowed duration"
                ),
            )

        return DateRange(
            start=format_vendor_time(begin, self.tz),
            end=format_vendor_time(finish, self.tz),
        )

    def _localize(self, moment: datetime) -> datetime:
        # Clamp arithmetic happens in the output zone so wall-clock time is kept
        return moment.astimezone(self.tz) if self.tz is not None else moment.astimezone()

    def _limit(self, begin: datetime) -> datetime:
        if self.tz is None:
            # Keep the wall-clock time; the offset follows local rules on that date
            return add_years(begin.replace(tzinfo=None), self.max_years).astimezone()
        return add_years(begin, self.max_years)
