"""
Time resolution: absolute and natural-language date strings to timestamps.

Two modes:
- day-only (default): start of the resolved day, used for start and series dates
- preserve-time: keeps the detected time of day, used for due dates and reminders
"""
import logging
import re
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, Optional, Union

import dateparser

from errors import Unparseable

logger = logging.getLogger(__name__)

_YMD_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ISO_DATETIME_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?$"
)
_HM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# Relative keywords, resolved against the reference day's start
RELATIVE_DAYS = {
    "today": 0,
    "今天": 0,
    "tomorrow": 1,
    "tmr": 1,
    "明天": 1,
    "后天": 2,
    "yesterday": -1,
    "昨天": -1,
}

# strptime patterns without a year get the reference year appended
_DAY_PATTERNS = [
    ("%m/%d", False),
    ("%b %d", False),
    ("%B %d", False),
    ("%b %d %Y", True),
    ("%B %d %Y", True),
    ("%Y/%m/%d", True),
]
_DATETIME_PATTERNS = [
    ("%Y/%m/%d %H:%M", True),
    ("%m/%d/%Y %H:%M", True),
    ("%m/%d %H:%M", False),
]


def parse_absolute(value) -> Union[date, datetime]:
    """
    Parse the absolute subset accepted on direct API paths:
    YYYY-MM-DD, or an ISO-8601 date-time with optional seconds and zone.
    Returns a date for date-only input, a datetime otherwise.
    """
    if isinstance(value, (date, datetime)):
        return value
    if not isinstance(value, str):
        raise ValueError("expected YYYY-MM-DD or an ISO date-time string")
    s = value.strip()
    if _YMD_RE.match(s):
        return date.fromisoformat(s)
    if _ISO_DATETIME_RE.match(s):
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        elif re.search(r"[+-]\d{4}$", s):
            s = f"{s[:-2]}:{s[-2:]}"
        return datetime.fromisoformat(s)
    raise ValueError(f"not an absolute date: {value!r}")


def parse_hm(value) -> time:
    """Parse HH:MM (24h)."""
    if isinstance(value, time):
        return value
    if not isinstance(value, str) or not _HM_RE.match(value.strip()):
        raise ValueError(f"expected HH:MM, got {value!r}")
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def to_zone(value: Union[date, datetime], tz: tzinfo) -> datetime:
    """Dates become midnight in tz; naive datetimes are read as tz wall-clock."""
    if not isinstance(value, datetime):
        return datetime.combine(value, time(0, 0), tzinfo=tz)
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def at_time(day: date, hm: time, tz: tzinfo) -> datetime:
    return datetime.combine(day, hm, tzinfo=tz)


def has_time_of_day(value: datetime) -> bool:
    return (value.hour, value.minute, value.second) != (0, 0, 0)


class TimeResolver:
    """Resolve loosely formatted date strings against a reference moment."""

    def __init__(self, tz: tzinfo, languages: Iterable[str] = ("en", "zh")):
        self.tz = tz
        self.languages = list(languages)

    def resolve(self, text: Optional[str], reference: datetime, preserve_time: bool = False) -> datetime:
        """
        Resolution order, first match wins:
        exact date, full date-time, locale patterns, relative keywords,
        then the generic natural-language detector.
        Raises Unparseable when nothing matches.
        """
        if text is None or not str(text).strip():
            raise Unparseable("empty date string")
        s = str(text).strip()
        ref = to_zone(reference, self.tz)

        value = (
            self._absolute(s)
            or self._patterns(s, ref)
            or self._relative(s, ref)
            or self._detect(s, ref)
        )
        if value is None:
            raise Unparseable(f"cannot resolve date: {text!r}")
        return value if preserve_time else start_of_day(value)

    def resolve_day(self, text: Optional[str], reference: datetime) -> date:
        return self.resolve(text, reference).date()

    def _absolute(self, s: str) -> Optional[datetime]:
        try:
            return to_zone(parse_absolute(s), self.tz)
        except ValueError:
            return None

    def _patterns(self, s: str, ref: datetime) -> Optional[datetime]:
        for fmt, has_year in _DATETIME_PATTERNS + _DAY_PATTERNS:
            candidate, pattern = (s, fmt) if has_year else (f"{s} {ref.year}", f"{fmt} %Y")
            try:
                parsed = datetime.strptime(candidate, pattern)
            except ValueError:
                continue
            return parsed.replace(tzinfo=self.tz)
        return None

    def _relative(self, s: str, ref: datetime) -> Optional[datetime]:
        offset = RELATIVE_DAYS.get(s.lower())
        if offset is None:
            return None
        return start_of_day(ref) + timedelta(days=offset)

    def _detect(self, s: str, ref: datetime) -> Optional[datetime]:
        parsed = dateparser.parse(
            s,
            languages=self.languages,
            settings={
                "RELATIVE_BASE": ref.replace(tzinfo=None),
                "PREFER_DATES_FROM": "future",
                "RETURN_AS_TIMEZONE_AWARE": False,
            },
        )
        if parsed is None:
            return None
        logger.debug("dateparser resolved %r to %s", s, parsed)
        return to_zone(parsed, self.tz)
