"""
Quiet Hours
Window check and the named policies deciding which articles may still be sent inside it
"""

from typing import Any, Callable, Dict

QuietHoursPolicy = Callable[[Any, int], bool]


def is_quiet_hour(hour: int, start: int, end: int) -> bool:
    """
    Whether `hour` falls in [start, end), wrapping past midnight

    start == end disables the window.
    """
    if start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def always(article: Any, hour: int) -> bool:
    return True


def extreme_only(article: Any, hour: int) -> bool:
    return bool(getattr(article, "extreme_hit", False))


def high_only(article: Any, hour: int) -> bool:
    return getattr(article, "impact_category", None) == "HIGH"


def never(article: Any, hour: int) -> bool:
    return False


QUIET_HOURS_POLICIES: Dict[str, QuietHoursPolicy] = {
    "always": always,
    "extreme_only": extreme_only,
    "high_only": high_only,
    "never": never,
}


def get_quiet_hours_policy(name: str) -> QuietHoursPolicy:
    try:
        return QUIET_HOURS_POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown quiet hours policy: {name}") from None
