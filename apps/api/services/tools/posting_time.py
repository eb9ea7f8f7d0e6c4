"""Best-time-to-post tool."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
import logging
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from services.tools.types import ToolDefinition

logger = logging.getLogger(__name__)

TOOL_NAME = "getBestTimeToPost"

DAYS_OF_WEEK = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
WEEKEND = ("Saturday", "Sunday")

DEFAULT_HOUR = 9
DEFAULT_CONFIDENCE = 0.5


@dataclass(frozen=True)
class PlatformTimes:
    optimal_hours: List[int]
    worst_hours: List[int]
    peak_days: List[str]
    description: str


PLATFORM_TIMES = {
    "linkedin": PlatformTimes(
        optimal_hours=[9, 10, 12, 17],
        worst_hours=[0, 1, 2, 3, 4, 5, 6, 22, 23],
        peak_days=["Tuesday", "Wednesday", "Thursday"],
        description="B2B professionals are most active during business hours",
    ),
    "twitter": PlatformTimes(
        optimal_hours=[8, 12, 15, 17, 20],
        worst_hours=[2, 3, 4, 5, 6],
        peak_days=["Monday", "Tuesday", "Wednesday"],
        description="High engagement during commute times and breaks",
    ),
    "facebook": PlatformTimes(
        optimal_hours=[13, 15, 19, 20],
        worst_hours=[1, 2, 3, 4, 5, 6, 7],
        peak_days=["Wednesday", "Thursday", "Friday"],
        description="Users browse during breaks and leisure time",
    ),
}

GET_BEST_TIME_TO_POST_TOOL = ToolDefinition(
    name=TOOL_NAME,
    description=(
        "Calculate the best time to post on social media based on platform algorithms, timezone, "
        "day of week, and target audience. Returns the optimal hour (0-23), confidence score (0-1), "
        "and reasoning."
    ),
    input_schema={
        "platform": {
            "type": "string",
            "enum": ["linkedin", "twitter", "facebook"],
            "description": "The social media platform",
        },
        "timezone": {
            "type": "string",
            "description": 'User timezone (e.g., "America/New_York", "UTC"). Defaults to UTC if not provided.',
        },
        "day_of_week": {
            "type": "string",
            "enum": DAYS_OF_WEEK,
            "description": "Day of the week for posting. Defaults to current day.",
        },
        "target_audience": {
            "type": "string",
            "description": 'Target audience type (e.g., "B2B professionals", "consumers", "students", "general").',
        },
    },
    required=["platform"],
)


def platform_times(platform: str) -> PlatformTimes:
    return PLATFORM_TIMES.get(platform, PLATFORM_TIMES["linkedin"])


def current_day_of_week(timezone: Optional[str] = None) -> str:
    try:
        tz = ZoneInfo(timezone) if timezone else dt_timezone.utc
    except (ZoneInfoNotFoundError, ValueError):
        tz = dt_timezone.utc
    return DAYS_OF_WEEK[datetime.now(tz).weekday()]


def day_of_week_adjustment(platform: str, day_of_week: str) -> int:
    if day_of_week in WEEKEND:
        # LinkedIn is dead on weekends; elsewhere people sleep in.
        return -12 if platform == "linkedin" else 2
    if day_of_week in ("Monday", "Friday"):
        return -1
    return 0


def audience_adjustment(target_audience: str) -> int:
    audience = target_audience.lower()
    if "b2b" in audience or "professional" in audience:
        return 1
    if "student" in audience:
        return 3
    return 0


def calculate_confidence(platform: str, day_of_week: str, target_audience: str) -> float:
    confidence = 0.85
    if platform == "linkedin":
        confidence += 0.05
    if day_of_week in platform_times(platform).peak_days:
        confidence += 0.05
    if day_of_week in WEEKEND:
        confidence -= 0.15
    if target_audience and target_audience != "general":
        confidence += 0.05
    return round(max(0.0, min(1.0, confidence)), 2)


def format_hour(hour: int) -> str:
    period = "PM" if hour >= 12 else "AM"
    display = 12 if hour == 0 else hour - 12 if hour > 12 else hour
    return f"{display}:00 {period}"


def time_of_day_label(hour: int) -> str:
    if 5 <= hour < 12:
        return "Morning"
    if 12 <= hour < 17:
        return "Afternoon"
    if 17 <= hour < 21:
        return "Evening"
    return "Night"


def build_reason(platform: str, hour: int, day_of_week: str, target_audience: str, confidence: float) -> str:
    reason = f"Best time for {platform}: {format_hour(hour)} ({time_of_day_label(hour)})"

    if day_of_week in platform_times(platform).peak_days:
        reason += f". {day_of_week} is a peak engagement day."
    elif day_of_week in WEEKEND:
        reason += f". Note: Weekend engagement is typically lower on {platform}."

    audience = (target_audience or "").lower()
    if audience and audience != "general":
        if "b2b" in audience:
            reason += " B2B audience is most active during business hours."
        elif "student" in audience:
            reason += " Students are most active in afternoon/evening."

    if confidence >= 0.9:
        reason += " High confidence based on platform analytics."
    elif confidence < 0.7:
        reason += " Lower confidence due to off-peak timing."
    return reason


def get_best_time_to_post(
    platform: str,
    timezone: Optional[str] = None,
    day_of_week: Optional[str] = None,
    target_audience: Optional[str] = None,
) -> Dict[str, Any]:
    """Optimal posting hour for a platform/day/audience; never raises."""
    try:
        day = day_of_week or current_day_of_week(timezone)
        audience = target_audience or "general"

        base_hour = platform_times(platform).optimal_hours[0]
        hour = (base_hour + day_of_week_adjustment(platform, day) + audience_adjustment(audience)) % 24
        confidence = calculate_confidence(platform, day, audience)
        return {
            "hour": hour,
            "confidence": confidence,
            "reason": build_reason(platform, hour, day, audience, confidence),
            "day_of_week": day,
        }
    except Exception as exc:
        logger.warning("Best-time calculation fallback for platform=%r: %s", platform, exc)
        return {
            "hour": DEFAULT_HOUR,
            "confidence": DEFAULT_CONFIDENCE,
            "reason": "Default recommendation: 9 AM is generally a safe time for most platforms",
            "day_of_week": day_of_week if isinstance(day_of_week, str) else None,
        }


def run(tool_input: Dict[str, Any]) -> Dict[str, Any]:
    return get_best_time_to_post(
        platform=tool_input.get("platform"),
        timezone=tool_input.get("timezone"),
        day_of_week=tool_input.get("day_of_week"),
        target_audience=tool_input.get("target_audience"),
    )
