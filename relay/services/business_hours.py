"""Business-hours evaluation for agent policies.

Policy shape (stored as JSON on the agent)::

    {
        "enabled": true,
        "timezone": "Europe/Berlin",
        "closedMessage": "...",
        "schedule": {"monday": {"enabled": true, "open": "09:00", "close": "17:00"}, ...}
    }

`open`/`close` may be "HH:MM" strings or minutes since midnight.
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from relay.logging_config import get_logger

logger = get_logger("business_hours")

DEFAULT_OPEN = "09:00"
DEFAULT_CLOSE = "17:00"

DEFAULT_CLOSED_MESSAGE = (
    "Thank you for reaching out! We're currently outside our business hours. "
    "Please try again during our business hours or send us an email and we'll "
    "respond as soon as we're back."
)


def to_minutes(value) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid time value: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    hours, minutes = str(value).split(":", 1)
    return int(hours) * 60 + int(minutes)


def is_within_business_hours(policy: Optional[dict], now: Optional[datetime] = None) -> bool:
    """True when the policy is disabled/absent or `now` falls inside [open, close)."""
    if not policy or not policy.get("enabled"):
        return True

    try:
        schedule = policy.get("schedule")
        if not schedule:
            return True

        tz = ZoneInfo(policy.get("timezone") or "UTC")
        local = (now or datetime.now(timezone.utc)).astimezone(tz)
        weekday = local.strftime("%A").lower()

        day = schedule.get(weekday)
        if not day or not day.get("enabled"):
            return False

        current = local.hour * 60 + local.minute
        open_mins = to_minutes(day.get("open", DEFAULT_OPEN))
        close_mins = to_minutes(day.get("close", DEFAULT_CLOSE))
        return open_mins <= current < close_mins
    except Exception as e:
        logger.warning(f"Business hours check failed, defaulting to open: {e}")
        return True


def closed_message(policy: Optional[dict]) -> str:
    return (policy or {}).get("closedMessage") or DEFAULT_CLOSED_MESSAGE
