import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta
from decimal import ROUND_FLOOR, Decimal

from dateutil import parser as date_parser

from velocity.models.post import BlogPost, Trend, VelocityMetrics, WindowMetrics

logger = logging.getLogger(__name__)

DEFAULT_WINDOWS: tuple[int, ...] = (30, 14)


def round_half_up(value: Decimal | float, places: int = 2) -> float:
    # Exact halves go toward +infinity: -3.125 -> -3.12.
    scaled = Decimal(str(value)).scaleb(places) + Decimal("0.5")
    return float(scaled.to_integral_value(rounding=ROUND_FLOOR).scaleb(-places))


def parse_publish_date(raw: str, now: datetime) -> date | None:
    """
    Best-effort calendar date for a scraped publish date. Tries general parsing
    first, then a strict YYYY-MM-DD split. Returns None when both fail.
    """
    text = (raw or "").strip()
    if not text:
        return None
    try:
        # Missing components (e.g. "March 2024") resolve against Jan 1 of the current year.
        return date_parser.parse(text, default=datetime(now.year, 1, 1)).date()
    except (ValueError, OverflowError):
        pass

    parts = text.split("-")
    if len(parts) != 3:
        return None
    try:
        return date(int(parts[0]), int(parts[1]), int(parts[2]))
    except ValueError:
        return None


def _change(current: int, previous: int) -> tuple[float, Trend]:
    if previous > 0:
        pct = round_half_up((Decimal(current) - Decimal(previous)) / Decimal(previous) * 100)
        if pct > 0:
            return pct, Trend.UP
        if pct < 0:
            return pct, Trend.DOWN
        return pct, Trend.NO_CHANGE
    if current > 0:
        return 100.0, Trend.UP
    return 0.0, Trend.NO_CHANGE


def _window(dates: Sequence[date], days: int, now: datetime) -> WindowMetrics:
    today = now.date()
    current_start = (now - timedelta(days=days)).date()
    previous_start = (now - timedelta(days=2 * days)).date()

    current = sum(1 for d in dates if current_start <= d <= today)
    previous = sum(1 for d in dates if previous_start <= d < current_start)
    pct, trend = _change(current, previous)
    return WindowMetrics(
        days=days,
        current_count=current,
        previous_count=previous,
        trend=trend,
        percentage_change=pct,
    )


def analyze_velocity(
    posts: Iterable[BlogPost],
    now: datetime,
    windows: Sequence[int] = DEFAULT_WINDOWS,
) -> VelocityMetrics:
    """
    Compare post counts in the trailing window against the window before it,
    once per window size. Pure: the same posts and `now` always give the same result.
    """
    dates: list[date] = []
    skipped = 0
    for post in posts:
        parsed = parse_publish_date(post.publish_date, now)
        if parsed is None:
            skipped += 1
            continue
        dates.append(parsed)

    if skipped:
        logger.debug("[velocity] skipped unparseable dates | count=%d", skipped)

    return VelocityMetrics(windows={days: _window(dates, days, now) for days in windows})
