"""
Datetime utility functions.
Timezone-aware "now" plus the age arithmetic used for age groups and season eligibility.
"""

from datetime import date, datetime
from typing import Optional
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def today_utc() -> date:
    """Current calendar date in UTC."""
    return utcnow().date()


def calculate_age(date_of_birth: date, on_date: Optional[date] = None) -> int:
    """
    Whole years between date_of_birth and on_date (defaults to today).

    The birthday itself counts: someone born 2010-05-01 is 14 on 2024-05-01
    and still 13 on 2024-04-30.
    """
    on_date = on_date or today_utc()
    age = on_date.year - date_of_birth.year
    if (on_date.month, on_date.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def get_age_group(date_of_birth: date, on_date: Optional[date] = None) -> str:
    """
    Map a date of birth to its age bucket.

    Examples:
        >>> get_age_group(date(2018, 1, 1), date(2024, 6, 1))
        'mini'
        >>> get_age_group(date(2000, 1, 1), date(2024, 6, 1))
        'Seniors'
    """
    age = calculate_age(date_of_birth, on_date)
    if age <= 7:
        return "mini"
    for limit in (9, 11, 13, 15, 17, 19, 21):
        if age <= limit:
            return f"U-{limit:02d}"
    return "Seniors"


def date_in_range(value: date, start: Optional[date], end: Optional[date]) -> bool:
    """True when both bounds are set and start <= value <= end."""
    if start is None or end is None:
        return False
    return start <= value <= end


def years_before(on_date: date, years: int) -> date:
    """on_date shifted back by whole years; Feb 29 falls back to Feb 28."""
    try:
        return on_date.replace(year=on_date.year - years)
    except ValueError:
        return on_date.replace(year=on_date.year - years, day=28)


# Age bucket -> (min_age, max_age); None means unbounded
AGE_GROUP_RANGES = {
    "mini": (None, 7),
    "U-09": (8, 9),
    "U-11": (10, 11),
    "U-13": (12, 13),
    "U-15": (14, 15),
    "U-17": (16, 17),
    "U-19": (18, 19),
    "U-21": (20, 21),
    "Seniors": (22, None),
}


def birth_date_bounds(
    min_age: Optional[int], max_age: Optional[int], on_date: Optional[date] = None
):
    """
    Translate an age range into date-of-birth bounds for SQL filtering.

    Returns:
        (born_after, born_on_or_before), either may be None. A player is in
        range when born_after < date_of_birth <= born_on_or_before.
    """
    on_date = on_date or today_utc()
    born_on_or_before = years_before(on_date, min_age) if min_age is not None else None
    born_after = years_before(on_date, max_age + 1) if max_age is not None else None
    return born_after, born_on_or_before
