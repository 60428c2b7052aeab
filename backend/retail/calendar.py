"""
Market Calendar — weekday, pay-cycle and event context for a business date.

Market stalls live on a monthly pay cycle more than on a fiscal calendar:
  - Payday phase (25th through the 5th) lifts spending
  - Mid-month (13th-17th) is a secondary dip/bump depending on the market
  - Weekends (Saturday/Sunday) carry the bulk of walk-in traffic
  - Public holidays empty the office crowd; festivals bring people out

Weekday numbering follows Python: 0=Monday ... 6=Sunday.
"""

from datetime import date, timedelta
from functools import lru_cache
from typing import NamedTuple

from core.config import get_settings

settings = get_settings()
NEAR_EVENT_DAYS = int(settings.calendar_near_event_days)
NEAR_EVENT_SHARE = float(settings.calendar_near_event_share)
PAYDAY_FACTOR = float(settings.calendar_payday_factor)

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

WEEKEND_DAYS = frozenset({5, 6})

# Month phase labels used as pattern-mining dimension values
PHASE_EARLY_MONTH = "Early Month"
PHASE_PAYDAY = "Payday Phase"
PHASE_MID_MONTH = "Mid-Month"
PHASE_NORMAL = "Normal Phase"


class DayContext(NamedTuple):
    weekday: int  # 0-6
    weekday_name: str
    phase: str
    is_weekend: bool
    is_payday: bool
    event_name: str | None = None


# ── Weekday Helpers ──────────────────────────────────────────────────────


def weekday_name(dt: date) -> str:
    return WEEKDAY_NAMES[dt.weekday()]


def is_weekend(dt: date) -> bool:
    return dt.weekday() in WEEKEND_DAYS


# ── Pay-Cycle Phases ─────────────────────────────────────────────────────


def is_payday_period(dt: date) -> bool:
    """Salary window: the 25th of one month through the 5th of the next."""
    return dt.day >= 25 or dt.day <= 5


def get_month_phase(dt: date) -> str:
    """
    Classify the day of month into a pay-cycle phase.

    Early Month is only the starting label: every day is re-classified as
    Payday (>=25 or <=5), Mid-Month (13-17) or Normal, so days 6-7 end up
    in the Normal phase.
    """
    phase = PHASE_EARLY_MONTH
    if is_payday_period(dt):
        phase = PHASE_PAYDAY
    elif 13 <= dt.day <= 17:
        phase = PHASE_MID_MONTH
    else:
        phase = PHASE_NORMAL
    return phase


def describe_day(dt: date) -> DayContext:
    """Bundle all calendar context for one date."""
    event = get_event(dt)
    return DayContext(
        weekday=dt.weekday(),
        weekday_name=weekday_name(dt),
        phase=get_month_phase(dt),
        is_weekend=is_weekend(dt),
        is_payday=is_payday_period(dt),
        event_name=event.name if event else None,
    )


# ── Market Events ────────────────────────────────────────────────────────

EVENT_HOLIDAY = "holiday"
EVENT_FESTIVAL = "festival"
EVENT_SPECIAL = "special"


class MarketEvent(NamedTuple):
    event_date: date
    name: str
    kind: str  # holiday | festival | special
    demand_factor: float  # 1.0 = normal trade


class CalendarFactors(NamedTuple):
    event: MarketEvent | None
    nearby_event: MarketEvent | None
    days_from_event: int  # signed, negative = before the nearby event
    is_payday: bool
    total_factor: float
    factors: list[tuple[str, float]]


# (month, day) → (name, kind, demand factor)
_FIXED_EVENTS = {
    (1, 1): ("New Year's Day", EVENT_HOLIDAY, 0.3),
    (2, 14): ("Valentine's Day", EVENT_SPECIAL, 1.5),
    (4, 6): ("Chakri Day", EVENT_HOLIDAY, 0.8),
    (4, 13): ("Songkran", EVENT_FESTIVAL, 0.4),
    (4, 14): ("Songkran", EVENT_FESTIVAL, 0.4),
    (4, 15): ("Songkran", EVENT_FESTIVAL, 0.4),
    (5, 1): ("Labour Day", EVENT_HOLIDAY, 1.2),
    (5, 4): ("Coronation Day", EVENT_HOLIDAY, 0.8),
    (6, 3): ("Queen's Birthday", EVENT_HOLIDAY, 0.8),
    (7, 28): ("King's Birthday", EVENT_HOLIDAY, 0.8),
    (8, 12): ("Mother's Day", EVENT_HOLIDAY, 1.4),
    (10, 13): ("King Bhumibol Memorial Day", EVENT_HOLIDAY, 0.7),
    (10, 23): ("Chulalongkorn Day", EVENT_HOLIDAY, 0.8),
    (12, 5): ("Father's Day", EVENT_HOLIDAY, 1.4),
    (12, 10): ("Constitution Day", EVENT_HOLIDAY, 0.8),
    (12, 25): ("Christmas Day", EVENT_SPECIAL, 1.3),
    (12, 31): ("New Year's Eve", EVENT_HOLIDAY, 1.5),
}

# Lunar-calendar events move every year and are listed explicitly
_LUNAR_EVENTS = {
    2025: {date(2025, 2, 12): "Makha Bucha", date(2025, 5, 11): "Visakha Bucha", date(2025, 11, 5): "Loy Krathong"},
    2026: {date(2026, 3, 3): "Makha Bucha", date(2026, 5, 31): "Visakha Bucha", date(2026, 11, 24): "Loy Krathong"},
    2027: {date(2027, 2, 20): "Makha Bucha", date(2027, 5, 20): "Visakha Bucha", date(2027, 11, 13): "Loy Krathong"},
    2028: {date(2028, 2, 10): "Makha Bucha", date(2028, 5, 8): "Visakha Bucha", date(2028, 11, 2): "Loy Krathong"},
}
_LUNAR_KINDS = {
    "Makha Bucha": (EVENT_HOLIDAY, 0.7),
    "Visakha Bucha": (EVENT_HOLIDAY, 0.7),
    "Loy Krathong": (EVENT_FESTIVAL, 1.3),
}


@lru_cache(maxsize=32)
def get_market_events(year: int) -> dict[date, MarketEvent]:
    """Holidays and trading events for a year.

    Fixed-date events every year, plus lunar events for the years listed.
    """
    events = {}
    for (month, day), (name, kind, factor) in _FIXED_EVENTS.items():
        dt = date(year, month, day)
        events[dt] = MarketEvent(dt, name, kind, factor)
    for dt, name in _LUNAR_EVENTS.get(year, {}).items():
        kind, factor = _LUNAR_KINDS[name]
        events[dt] = MarketEvent(dt, name, kind, factor)
    return events


def get_event(dt: date) -> MarketEvent | None:
    return get_market_events(dt.year).get(dt)


def find_nearby_event(dt: date, days_range: int = NEAR_EVENT_DAYS) -> tuple[MarketEvent, int] | None:
    """Closest event within days_range of dt (the day itself excluded).

    Returns the event and the signed day offset from it (positive = after).
    Ties go to the earlier event.
    """
    best: tuple[MarketEvent, int] | None = None
    for back in range(-days_range, days_range + 1):
        if back == 0:
            continue
        event = get_event(dt - timedelta(days=back))
        if event is None:
            continue
        if best is None or abs(back) < abs(best[1]) or (abs(back) == abs(best[1]) and back > best[1]):
            best = (event, back)
    return best


def get_calendar_factors(dt: date) -> CalendarFactors:
    """
    Combined calendar demand factor for one date.

      event day         × event factor
      near an event     × 1 + (event factor - 1) × 0.3
      payday window     × 1.20   (not on an event day)
    """
    event = get_event(dt)
    nearby = None if event else find_nearby_event(dt)
    payday = is_payday_period(dt)

    factors: list[tuple[str, float]] = []
    if event:
        factors.append((event.name, event.demand_factor))
    elif nearby:
        nearby_event, offset = nearby
        side = "after" if offset > 0 else "before"
        near_factor = 1 + (nearby_event.demand_factor - 1) * NEAR_EVENT_SHARE
        factors.append((f"{abs(offset)} day(s) {side} {nearby_event.name}", near_factor))
    if payday and not event:
        factors.append(("Payday", PAYDAY_FACTOR))

    total = 1.0
    for _, factor in factors:
        total *= factor

    return CalendarFactors(
        event=event,
        nearby_event=nearby[0] if nearby else None,
        days_from_event=nearby[1] if nearby else 0,
        is_payday=payday,
        total_factor=total,
        factors=factors,
    )
