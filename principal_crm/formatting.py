"""Display formatting: relative dates, numbers, colors and icons."""

from .config import RAG_HEX, TIMELINE_ACTIVITY_COLORS, TIMELINE_ACTIVITY_ICONS
from .loaders.utils import normalise_date, resolve_now, safe_float


def format_relative_date(value, now=None) -> str:
    """Human-friendly age of a date: 'Today', 'Yesterday', '3 days ago', ...

    Missing dates render as 'Never'. Future dates render as 'Today'.
    """
    date = normalise_date(value)
    if date is None:
        return "Never"

    diff_days = (resolve_now(now).normalize() - date.normalize()).days
    if diff_days <= 0:
        return "Today"
    if diff_days == 1:
        return "Yesterday"
    if diff_days < 7:
        return f"{diff_days} days ago"
    if diff_days < 30:
        weeks = diff_days // 7
        return f"{weeks} week{'s' if weeks > 1 else ''} ago"
    if diff_days < 365:
        months = diff_days // 30
        return f"{months} month{'s' if months > 1 else ''} ago"
    years = diff_days // 365
    return f"{years} year{'s' if years > 1 else ''} ago"


def format_activity_date(value, style: str = "short", now=None) -> str:
    """Format a date as 'short' (2025-03-04), 'long' (Tuesday, March 4, 2025) or 'relative'."""
    if style == "relative":
        return format_relative_date(value, now)

    date = normalise_date(value)
    if date is None:
        return ""
    if style == "long":
        return f"{date.strftime('%A, %B')} {date.day}, {date.year}"
    if style == "short":
        return date.strftime("%Y-%m-%d")
    raise ValueError(f"Unknown date style: {style!r}")


def time_difference(value, now=None) -> dict | None:
    """Largest whole unit between a date and now.

    Returns {"value": 3, "unit": "days", "label": "3 days ago"} or None when
    the date is missing.
    """
    date = normalise_date(value)
    if date is None:
        return None

    seconds = abs((resolve_now(now) - date).total_seconds())
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)
    months = days // 30

    if months > 0:
        amount, unit = months, "months"
    elif days > 0:
        amount, unit = days, "days"
    elif hours > 0:
        amount, unit = hours, "hours"
    else:
        amount, unit = minutes, "minutes"

    singular = unit[:-1]
    label = f"{amount} {singular if amount == 1 else unit} ago"
    return {"value": amount, "unit": unit, "label": label}


def format_number(value, kind: str = "decimal") -> str:
    """Format a metric as 'currency', 'percentage', 'integer' or 'decimal'. Missing -> 'N/A'."""
    number = safe_float(value)
    if number is None:
        return "N/A"
    if kind == "currency":
        return f"${number:,.0f}"
    if kind == "percentage":
        return f"{number:.1f}%"
    if kind == "integer":
        return f"{round(number):,d}"
    if kind == "decimal":
        return f"{number:,.2f}"
    raise ValueError(f"Unknown number format: {kind!r}")


def activity_icon(activity_type: str) -> str:
    return TIMELINE_ACTIVITY_ICONS.get(activity_type, "circle")


def activity_color(activity_type: str) -> str:
    return TIMELINE_ACTIVITY_COLORS.get(activity_type, "grey")


def color_hex(color: str) -> str:
    """Hex code for a named dashboard color, grey when unknown."""
    return RAG_HEX.get(color, RAG_HEX["grey"])


def format_score(score) -> str:
    value = safe_float(score)
    if value is None:
        return "N/A"
    return f"{value:.0f}"
