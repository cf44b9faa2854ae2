"""
Timeline functions: filtering, grouping, sorting, pagination and summary
statistics over normalised timeline entries (see transforms.build_timeline).
"""

import logging
from dataclasses import dataclass, field, fields
from datetime import date

import pandas as pd

from .config import (
    DEFAULT_PAGE_SIZE,
    TIMELINE_ACTIVITY_COLORS,
    TIMELINE_ACTIVITY_ICONS,
    TIMELINE_ACTIVITY_TYPES,
    TIMELINE_GROUP_CRITERIA,
    TIMELINE_SORT_FIELDS,
    TIMELINE_SUMMARY_KEYS,
)
from .formatting import format_activity_date
from .kpis import classify_trend
from .loaders.utils import normalise_date, resolve_now

logger = logging.getLogger(__name__)


@dataclass
class TimelineFilter:
    """Active filters for the timeline view. Empty lists / None mean 'no filter'."""

    activity_types: list[str] = field(default_factory=list)
    start_date: date | pd.Timestamp | None = None
    end_date: date | pd.Timestamp | None = None
    search: str = ""
    principal_ids: list[str] = field(default_factory=list)
    source_tables: list[str] = field(default_factory=list)
    activity_status: list[str] = field(default_factory=list)
    follow_up_required: bool | None = None
    overdue_only: bool = False

    def is_active(self) -> bool:
        defaults = TimelineFilter()
        return any(getattr(self, f.name) != getattr(defaults, f.name) for f in fields(self))


@dataclass
class Pagination:
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_previous: bool


def _overdue_mask(entries: pd.DataFrame, now: pd.Timestamp) -> pd.Series:
    required = entries["follow_up_required"].fillna(False).astype(bool)
    due = pd.to_datetime(entries["follow_up_date"])
    return required & due.notna() & (due < now)


def apply_timeline_filters(
    entries: pd.DataFrame,
    filt: TimelineFilter | None = None,
    now=None,
) -> pd.DataFrame:
    """Apply every active filter in `filt` to the timeline.

    The date range only applies when both bounds are set, and includes the
    whole end day.
    """
    if filt is None or entries.empty:
        return entries

    ref = resolve_now(now)
    df = entries

    if filt.activity_types:
        df = df[df["activity_type"].isin(filt.activity_types)]

    if filt.search:
        needle = filt.search.strip().lower()
        haystack = (
            df["activity_subject"].fillna("").str.lower() + "\n"
            + df["activity_details"].fillna("").str.lower() + "\n"
            + df["principal_name"].fillna("").str.lower()
        )
        df = df[haystack.str.contains(needle, regex=False)]

    if filt.principal_ids:
        df = df[df["principal_id"].isin(filt.principal_ids)]

    if filt.source_tables:
        df = df[df["source_table"].isin(filt.source_tables)]

    if filt.activity_status:
        df = df[df["activity_status"].isin(filt.activity_status)]

    if filt.follow_up_required is not None:
        df = df[df["follow_up_required"].fillna(False).astype(bool) == filt.follow_up_required]

    if filt.overdue_only:
        df = df[_overdue_mask(df, ref)]

    start = normalise_date(filt.start_date)
    end = normalise_date(filt.end_date)
    if start is not None and end is not None:
        end_of_day = end.normalize() + pd.Timedelta(days=1)
        df = df[(df["activity_date"] >= start.normalize()) & (df["activity_date"] < end_of_day)]

    return df


def sort_timeline(
    entries: pd.DataFrame,
    field: str = "activity_date",
    order: str = "desc",
) -> pd.DataFrame:
    """Sort timeline entries by activity_date, timeline_rank or activity_type."""
    if field not in TIMELINE_SORT_FIELDS:
        raise ValueError(f"Unknown timeline sort field: {field!r}")
    if order not in ("asc", "desc"):
        raise ValueError(f"Unknown sort order: {order!r}")
    if entries.empty:
        return entries
    return entries.sort_values(
        field, ascending=(order == "asc"), kind="mergesort", na_position="last"
    ).reset_index(drop=True)


def paginate(
    df: pd.DataFrame,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> tuple[pd.DataFrame, Pagination]:
    """Slice one page out of `df` (pages are 1-based)."""
    if page < 1:
        raise ValueError("page must be >= 1")
    if limit < 1:
        raise ValueError("limit must be >= 1")

    total = len(df)
    total_pages = -(-total // limit)
    start = (page - 1) * limit
    page_rows = df.iloc[start:start + limit]

    return page_rows, Pagination(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_previous=page > 1,
    )


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def group_by_date_and_type(entries: pd.DataFrame) -> pd.DataFrame:
    """Collapse entries sharing a calendar day and activity type.

    Returns
    -------
    DataFrame with columns:
        group_key, date, activity_type, count, principal_count, latest_activity
    Newest day first; within a day, busiest type first.
    """
    columns = ["group_key", "date", "activity_type", "count", "principal_count", "latest_activity"]
    if entries.empty:
        return pd.DataFrame(columns=columns)

    df = entries.copy()
    df["date"] = df["activity_date"].dt.normalize()
    grouped = (
        df.groupby(["date", "activity_type"])
        .agg(
            count=("activity_type", "size"),
            principal_count=("principal_id", "nunique"),
            latest_activity=("activity_date", "max"),
        )
        .reset_index()
    )
    grouped["group_key"] = grouped["date"].dt.strftime("%Y-%m-%d") + "|" + grouped["activity_type"]
    grouped = grouped.sort_values(
        ["date", "count", "activity_type"],
        ascending=[False, False, True],
        kind="mergesort",
    ).reset_index(drop=True)

    logger.info("Grouped %d timeline entries into %d date/type groups", len(entries), len(grouped))
    return grouped[columns]


def group_by_date(entries: pd.DataFrame) -> list[dict]:
    """One group per day, newest first, with per-type summary counts.

    Each group:
    {
        "group_id": "2025-03-04",
        "label": "Tuesday, March 4, 2025",
        "date": Timestamp,
        "count": 3,
        "summary": {"interactions": 2, "opportunities": 1, "contacts": 0, "products": 0},
        "entries": DataFrame,
    }
    """
    if entries.empty:
        return []

    df = entries.copy()
    df["_day"] = df["activity_date"].dt.normalize()

    groups = []
    for day, day_rows in df.groupby("_day", sort=False):
        summary = {key: 0 for key in TIMELINE_SUMMARY_KEYS.values()}
        for activity_type, count in day_rows["activity_type"].value_counts().items():
            key = TIMELINE_SUMMARY_KEYS.get(activity_type)
            if key is not None:
                summary[key] += int(count)
        groups.append({
            "group_id": day.strftime("%Y-%m-%d"),
            "label": format_activity_date(day, "long"),
            "date": day,
            "count": int(len(day_rows)),
            "summary": summary,
            "entries": day_rows.drop(columns="_day").reset_index(drop=True),
        })

    groups.sort(key=lambda g: g["date"], reverse=True)
    return groups


def group_by(entries: pd.DataFrame, criteria: str = "date") -> list[dict]:
    """Group entries by 'date', 'activity_type', 'principal' or 'source'."""
    if criteria not in TIMELINE_GROUP_CRITERIA:
        raise ValueError(f"Unknown timeline grouping: {criteria!r}")
    if criteria == "date":
        return group_by_date(entries)
    if entries.empty:
        return []

    column, label_column = {
        "activity_type": ("activity_type", "activity_type"),
        "principal": ("principal_id", "principal_name"),
        "source": ("source_table", "source_table"),
    }[criteria]

    groups = []
    for key, rows in entries.groupby(column, dropna=False, sort=True):
        label = rows[label_column].iloc[0]
        groups.append({
            "group_id": str(key),
            "label": str(label) if pd.notna(label) else "Unknown",
            "count": int(len(rows)),
            "entries": rows.sort_values("activity_date", ascending=False).reset_index(drop=True),
        })
    groups.sort(key=lambda g: (-g["count"], g["label"]))
    return groups


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------

def follow_up_entries(entries: pd.DataFrame) -> pd.DataFrame:
    if entries.empty:
        return entries
    return entries[entries["follow_up_required"].fillna(False).astype(bool)]


def overdue_entries(entries: pd.DataFrame, now=None) -> pd.DataFrame:
    """Entries whose required follow-up date has passed."""
    if entries.empty:
        return entries
    return entries[_overdue_mask(entries, resolve_now(now))]


def recent_activity(entries: pd.DataFrame, now=None, days: int = 7, limit: int = 10) -> pd.DataFrame:
    """Newest entries from the last `days` days, at most `limit`."""
    if entries.empty:
        return entries
    ref = resolve_now(now)
    cutoff = ref - pd.Timedelta(days=days)
    recent = entries[(entries["activity_date"] >= cutoff) & (entries["activity_date"] <= ref)]
    return recent.sort_values("activity_date", ascending=False, kind="mergesort").head(limit)


def activity_type_distribution(entries: pd.DataFrame) -> dict[str, dict]:
    """Count, percentage, color and icon for every timeline activity type."""
    counts = {t: 0 for t in TIMELINE_ACTIVITY_TYPES}
    if not entries.empty:
        for t, c in entries["activity_type"].value_counts().items():
            counts[t] = int(c)
    total = len(entries)
    return {
        t: {
            "count": c,
            "percentage": (c / total * 100) if total else 0.0,
            "color": TIMELINE_ACTIVITY_COLORS.get(t, "grey"),
            "icon": TIMELINE_ACTIVITY_ICONS.get(t, "circle"),
        }
        for t, c in counts.items()
    }


def summarise_timeline(entries: pd.DataFrame, now=None) -> dict:
    """Summary block for the timeline header.

    Returns
    -------
    {
        "total_entries": int,
        "unique_principals": int,
        "date_range": {"start": Timestamp | None, "end": Timestamp | None},
        "most_active_day": {"date": "2025-03-04" | None, "count": int},
        "activity_trend": "increasing" | "stable" | "decreasing",
        "follow_ups_required": int,
        "overdue_follow_ups": int,
    }

    The trend compares the last 7 days with the 7 days before.
    """
    if entries.empty:
        return {
            "total_entries": 0,
            "unique_principals": 0,
            "date_range": {"start": None, "end": None},
            "most_active_day": {"date": None, "count": 0},
            "activity_trend": "stable",
            "follow_ups_required": 0,
            "overdue_follow_ups": 0,
        }

    ref = resolve_now(now)
    week_ago = ref - pd.Timedelta(days=7)
    two_weeks_ago = ref - pd.Timedelta(days=14)

    dates = entries["activity_date"]
    day_counts = dates.dt.normalize().value_counts()
    # ties go to the earliest day
    busiest = day_counts[day_counts == day_counts.max()].index.min()

    recent = int(((dates >= week_ago) & (dates <= ref)).sum())
    previous = int(((dates >= two_weeks_ago) & (dates < week_ago)).sum())

    return {
        "total_entries": int(len(entries)),
        "unique_principals": int(entries["principal_id"].nunique()),
        "date_range": {"start": dates.min(), "end": dates.max()},
        "most_active_day": {"date": busiest.strftime("%Y-%m-%d"), "count": int(day_counts.max())},
        "activity_trend": classify_trend(recent, previous),
        "follow_ups_required": int(len(follow_up_entries(entries))),
        "overdue_follow_ups": int(len(overdue_entries(entries, ref))),
    }


def get_entries_for_date(entries: pd.DataFrame, day) -> pd.DataFrame:
    target = normalise_date(day)
    if entries.empty or target is None:
        return entries.iloc[0:0]
    return entries[entries["activity_date"].dt.normalize() == target.normalize()]
