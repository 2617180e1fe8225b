"""
Task Type Mapping - Normalises SEOWorks task type strings.

The vendor sends free-form casing and separators ("GBP-Post", "seochange").
Anything not listed here is unmappable and must not be guessed.
"""

from datetime import UTC, datetime

from app.models.api import TaskType

_VENDOR_TASK_TYPES: dict[str, TaskType] = {
    "page": TaskType.PAGE,
    "blog": TaskType.BLOG,
    "gbp_post": TaskType.GBP_POST,
    "improvement": TaskType.IMPROVEMENT,
    "maintenance": TaskType.IMPROVEMENT,
    "seochange": TaskType.IMPROVEMENT,
}

# Dealership usage counter per task type
USAGE_FIELDS: dict[TaskType, str] = {
    TaskType.PAGE: "pages_used_this_period",
    TaskType.BLOG: "blogs_used_this_period",
    TaskType.GBP_POST: "gbp_posts_used_this_period",
    TaskType.IMPROVEMENT: "improvements_used_this_period",
}

# Request completion counter per task type
COMPLETION_FIELDS: dict[TaskType, str] = {
    TaskType.PAGE: "pages_completed",
    TaskType.BLOG: "blogs_completed",
    TaskType.GBP_POST: "gbp_posts_completed",
    TaskType.IMPROVEMENT: "improvements_completed",
}


def map_vendor_task_type(raw: str | None) -> TaskType | None:
    """Map a vendor task type to TaskType, or None when it is not recognised."""
    if not raw:
        return None
    key = raw.strip().lower().replace("-", "_").replace(" ", "_")
    return _VENDOR_TASK_TYPES.get(key)


def parse_vendor_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 vendor timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
