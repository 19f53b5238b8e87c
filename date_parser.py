"""Free-text exam date and study time parsing.

Accepted exam date forms (case-insensitive, times optional):

* ``skip`` / ``not sure`` / ``later``
* ``today 3pm``, ``tonight``, ``tomorrow 2pm``, ``in 3 days``
* ``next friday 9:30am``, ``this mon``, ``friday``
* anything dateutil reads as a day: ``22 Aug 7pm``, ``Aug 22``,
  ``22nd august 09:30``, ``22/8``, ``22-08-2026``, ``2026-08-22``

Dates without a time default to 19:00. All values are UTC.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional, Tuple

from dateutil import parser as dateutil_parser

DEFAULT_HOUR = 19

SKIP_WORDS = frozenset({"skip", "not sure", "later", "unsure", "idk", "dont know", "don't know"})

_WEEKDAYS = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tue": 1, "tues": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thu": 3, "thurs": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}
_WEEKDAY_ALT = "|".join(sorted(_WEEKDAYS, key=len, reverse=True))

_RELATIVE_DAY = re.compile(rf"\b(?:(next|this)\s+)?({_WEEKDAY_ALT})\b")
_IN_DAYS = re.compile(r"\bin\s+(\d{1,2})\s+days?\b")
_TOMORROW = re.compile(r"\b(tomorrow|tmrw|tmr|tom)\b")
_TODAY = re.compile(r"\b(today|tonight)\b")

# any fixed day works; only the time of day is kept
_TIME_ONLY_DAY = datetime(2001, 1, 1)


@dataclass(frozen=True)
class ParsedDate:
    when: Optional[datetime]
    skipped: bool = False
    time_included: bool = False

    def hours_until(self, now: datetime) -> Optional[float]:
        if self.when is None:
            return None
        return max(0.0, (self.when - now).total_seconds() / 3600.0)


class _Reading(NamedTuple):
    when: datetime
    year_given: bool
    day_given: bool
    time_given: bool


def _read(text: str, day: datetime) -> Optional[_Reading]:
    """Let dateutil read ``text``, filling what it leaves out from ``day`` at 19:00.

    The text is read against a second default that differs in every field;
    a field that comes out the same both times was written by the user.
    """
    default = datetime(day.year, day.month, day.day, DEFAULT_HOUR)
    other = datetime(day.year + 1, day.month % 12 + 1, 2 if day.day == 1 else 1, 7, 30)
    # ISO dates start with the year; dayfirst would read them as Y-D-M
    dayfirst = not text[:4].isdigit()
    try:
        first = dateutil_parser.parse(text, default=default, dayfirst=dayfirst, fuzzy=True, ignoretz=True)
        second = dateutil_parser.parse(text, default=other, dayfirst=dayfirst, fuzzy=True, ignoretz=True)
    except (dateutil_parser.ParserError, ValueError, OverflowError):
        return None
    return _Reading(
        when=first.replace(tzinfo=timezone.utc),
        year_given=first.year == second.year,
        day_given=first.day == second.day,
        time_given=first.hour == second.hour,
    )


def _remainder(text: str, match: "re.Match[str]") -> str:
    return f"{text[:match.start()]} {text[match.end():]}".strip()


def _keyword_day(text: str, today: datetime) -> Optional[Tuple[datetime, str, bool]]:
    """(named day, leftover text, is the today keyword) for tomorrow/today/in N days."""
    match = _TOMORROW.search(text)
    if match:
        return today + timedelta(days=1), _remainder(text, match), False
    match = _TODAY.search(text)
    if match:
        return today, _remainder(text, match), True
    match = _IN_DAYS.search(text)
    if match:
        return today + timedelta(days=int(match.group(1))), _remainder(text, match), False
    return None


def _weekday(text: str, today: datetime) -> Optional[Tuple[datetime, str, bool]]:
    match = _RELATIVE_DAY.search(text)
    if not match:
        return None
    target = _WEEKDAYS[match.group(2)]
    days_ahead = (target - today.weekday()) % 7
    if days_ahead == 0 or match.group(1) == "next":
        days_ahead += 7
    return today + timedelta(days=days_ahead), _remainder(text, match), False


def _absolute(reading: _Reading, now: datetime) -> Optional[ParsedDate]:
    when = reading.when
    if not reading.year_given and when.date() < now.date():
        try:
            when = when.replace(year=when.year + 1)
        except ValueError:
            return None
    if when < now:
        return None
    return ParsedDate(when=when, time_included=reading.time_given)


def parse_exam_date(text: str, now: datetime) -> Optional[ParsedDate]:
    """Parse a free-text exam date relative to ``now``.

    Returns ``None`` when the text cannot be understood or names a moment
    that has already passed, so the caller can re-prompt.
    """
    cleaned = re.sub(r"\s+", " ", (text or "").strip().lower())
    if not cleaned:
        return None
    if cleaned in SKIP_WORDS:
        return ParsedDate(when=None, skipped=True)

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    today = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)

    named = _keyword_day(cleaned, today)
    if named is None:
        # a lone number is a menu answer, not a day of the month
        reading = None if cleaned.isdigit() else _read(cleaned, today)
        if reading is not None and reading.day_given:
            return _absolute(reading, now)
        named = _weekday(cleaned, today)
        if named is None:
            if reading is None or not reading.time_given:
                return None
            when = reading.when
            if when <= now:
                when += timedelta(days=1)
            return ParsedDate(when=when, time_included=True)

    day, rest, is_today = named
    reading = _read(rest, day) if rest else None
    time_given = reading is not None and reading.time_given
    if time_given:
        when = day.replace(hour=reading.when.hour, minute=reading.when.minute)
    else:
        when = day.replace(hour=DEFAULT_HOUR)
    if when < now:
        if is_today and not time_given:
            when = now.replace(second=0, microsecond=0)
        else:
            return None
    return ParsedDate(when=when, time_included=time_given)


def parse_preferred_time(text: str) -> Optional[str]:
    """Parse ``7pm``, ``7:30 am``, ``6.45pm`` or ``19:00`` into ``HH:MM``."""
    cleaned = (text or "").strip().lower().replace(".", ":")
    if cleaned.isdigit():
        cleaned += ":00"
    reading = _read(cleaned, _TIME_ONLY_DAY) if cleaned else None
    if reading is None or not reading.time_given:
        return None
    return f"{reading.when.hour:02d}:{reading.when.minute:02d}"


def format_exam_date(value: datetime) -> str:
    """``Friday 22 Aug at 7pm`` style confirmation text."""
    hour = value.hour % 12 or 12
    suffix = "am" if value.hour < 12 else "pm"
    minutes = f":{value.minute:02d}" if value.minute else ""
    return f"{value.strftime('%A')} {value.day} {value.strftime('%b')} at {hour}{minutes}{suffix}"
