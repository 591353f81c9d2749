from datetime import datetime

from app.utils.clock import to_naive_utc


def should_reset(anchor: datetime, now: datetime) -> bool:
    """
    True when now falls in a later calendar month than anchor.

    A now earlier than anchor (clock skew) never resets: counters do not
    move backwards.
    """
    anchor = to_naive_utc(anchor)
    now = to_naive_utc(now)
    if now < anchor:
        return False
    return (now.year, now.month) != (anchor.year, anchor.month)


def period_start(now: datetime) -> datetime:
    """First instant of now's calendar month."""
    return to_naive_utc(now).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
