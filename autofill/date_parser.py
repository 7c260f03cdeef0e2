"""
Relative date parser.

Turns answers like "3 months", "two weeks", "od zaraz" or "15.01.2025" into
absolute dates for date pickers. Returns None when nothing is recognized;
callers must then leave the field alone.
"""

import re
from datetime import date, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

NUMBER_WORDS = {
    # English
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11,
    "twelve": 12,
    # Polish
    "jeden": 1, "jedna": 1, "jedno": 1, "dwa": 2, "dwie": 2, "trzy": 3,
    "cztery": 4, "pięć": 5, "sześć": 6, "siedem": 7, "osiem": 8,
    "dziewięć": 9, "dziesięć": 10, "jedenaście": 11, "dwanaście": 12,
}

UNITS = {
    "day": "days", "days": "days", "dzień": "days", "dni": "days",
    "week": "weeks", "weeks": "weeks", "tydzień": "weeks", "tygodnie": "weeks",
    "tygodni": "weeks", "tygodnia": "weeks",
    "month": "months", "months": "months", "miesiąc": "months",
    "miesiące": "months", "miesięcy": "months", "miesiąca": "months",
    "year": "years", "years": "years", "rok": "years", "lata": "years",
    "lat": "years", "roku": "years",
}

IMMEDIATE = {
    "now": 0, "immediately": 0, "asap": 0, "right away": 0, "today": 0,
    "teraz": 0, "natychmiast": 0, "od zaraz": 0, "od razu": 0, "dziś": 0,
    "dzisiaj": 0, "zaraz": 0,
    "tomorrow": 1, "jutro": 1, "od jutra": 1,
}

_UNIT_ALT = "|".join(sorted(map(re.escape, UNITS), key=len, reverse=True))
_WORD_ALT = "|".join(sorted(map(re.escape, NUMBER_WORDS), key=len, reverse=True))
_IMMEDIATE_ALT = "|".join(sorted(map(re.escape, IMMEDIATE), key=len, reverse=True))

RE_ISO = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
RE_DMY = re.compile(r"\b(\d{1,2})([./-])(\d{1,2})\2(\d{4})\b")
RE_DIGIT_UNIT = re.compile(rf"\b(\d{{1,3}})\s*({_UNIT_ALT})\b")
RE_WORD_UNIT = re.compile(rf"\b({_WORD_ALT})\s+({_UNIT_ALT})\b")
RE_IMMEDIATE = re.compile(rf"(?<!\w)({_IMMEDIATE_ALT})(?!\w)")


def _shift(today: date, amount: int, unit: str) -> date:
    return today + relativedelta(**{unit: amount})


def parse(text: Optional[str], today: Optional[date] = None) -> Optional[date]:
    """Parse an absolute or relative date phrase; None if unrecognized."""
    if not text:
        return None
    today = today or date.today()
    lowered = text.strip().lower()

    try:
        m = RE_ISO.search(lowered)
        if m:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

        m = RE_DMY.search(lowered)
        if m:
            return date(int(m.group(4)), int(m.group(3)), int(m.group(1)))
    except ValueError:
        return None

    m = RE_DIGIT_UNIT.search(lowered)
    if m:
        return _shift(today, int(m.group(1)), UNITS[m.group(2)])

    m = RE_WORD_UNIT.search(lowered)
    if m:
        return _shift(today, NUMBER_WORDS[m.group(1)], UNITS[m.group(2)])

    m = RE_IMMEDIATE.search(lowered)
    if m:
        return today + timedelta(days=IMMEDIATE[m.group(1)])

    return None


def format_date(value: date, fmt: Optional[str] = None) -> str:
    """Render a date in a field's format, e.g. "DD/MM/YYYY"; ISO by default."""
    if not fmt:
        return value.isoformat()
    tokens = {
        "YYYY": f"{value.year:04d}",
        "YY": f"{value.year % 100:02d}",
        "MM": f"{value.month:02d}",
        "DD": f"{value.day:02d}",
    }
    return re.sub(r"YYYY|YY|MM|DD", lambda m: tokens[m.group(0)], fmt.upper())
