"""
Time-aligned TTL functions.

These are not wired by default. Select them through the built-in ``ttl``
helper module, e.g. ``RESPONSE_CACHE_TTL_HELPER=ttl`` and
``RESPONSE_CACHE_TTL_FUNCTION=until_next_day``.
"""

from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from shared.logging import get_logger

logger = get_logger("response_cache.ttl")


def seconds_until_next_minute(now: datetime) -> int:
    return 60 - now.second


def seconds_until_next_day(now: datetime, timezone: Optional[str] = None) -> int:
    """Seconds from ``now`` to the next midnight, optionally in ``timezone``.

    Sub-second precision is kept on both ends so the difference is a whole
    number of seconds. The subtraction is done in UTC so DST transitions
    count real elapsed time.
    """
    if timezone:
        now = now.astimezone(ZoneInfo(timezone))

    next_day = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0)

    if now.tzinfo is not None:
        delta = next_day.astimezone(dt_timezone.utc) - now.astimezone(dt_timezone.utc)
    else:
        delta = next_day - now
    return int(delta.total_seconds())


def until_next_minute(request: Any, global_options: Any, path_options: Any = None) -> int:
    seconds = seconds_until_next_minute(datetime.now())
    logger.debug("Seconds until next minute", ttl=seconds)
    return seconds


def until_next_day(request: Any, global_options: Any, path_options: Any = None) -> int:
    """Expire at midnight, in ``global_options.timezone`` when set."""
    tz_name = getattr(global_options, "timezone", None)
    now = datetime.now().astimezone() if tz_name else datetime.now()
    seconds = seconds_until_next_day(now, tz_name)
    logger.debug("Seconds until next day", ttl=seconds, timezone=tz_name)
    return seconds
