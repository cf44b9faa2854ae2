"""
Sort / filter / search composition for the principal selector and the
product performance table.

Filters are chained predicates over already-fetched DataFrames; nothing
here talks to the API.
"""

import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import date

import pandas as pd

from .config import (
    DEFAULT_SORT_FIELD,
    DEFAULT_SORT_ORDER,
    MAX_SEARCH_LENGTH,
    PRINCIPAL_SORT_FIELDS,
    PRODUCT_SORT_FIELDS,
    RECOMMENDED_MIN_SCORE,
)
from .kpis import canonical_activity_status
from .loaders.utils import normalise_date, resolve_now, safe_float

logger = logging.getLogger(__name__)

_LIST_FIELDS = (
    "activity_status", "organization_status", "organization_type",
    "product_categories", "country",
)
_BOOL_FIELDS = (
    "has_products", "has_opportunities", "has_active_opportunities",
    "is_principal", "is_distributor",
)


@dataclass
class PrincipalFilters:
    """Principal list filters. Empty lists and None values are inactive."""

    search: str = ""
    activity_status: list[str] = field(default_factory=list)
    organization_status: list[str] = field(default_factory=list)
    organization_type: list[str] = field(default_factory=list)
    engagement_min: float | None = None
    engagement_max: float | None = None
    lead_min: float | None = None
    lead_max: float | None = None
    product_categories: list[str] = field(default_factory=list)
    has_products: bool | None = None
    has_opportunities: bool | None = None
    has_active_opportunities: bool | None = None
    country: list[str] = field(default_factory=list)
    last_interaction_days: int | None = None
    is_principal: bool | None = None
    is_distributor: bool | None = None
    created_after: date | pd.Timestamp | None = None
    created_before: date | pd.Timestamp | None = None


@dataclass
class SortState:
    """Current sort column and direction for a table header."""

    field: str = DEFAULT_SORT_FIELD
    order: str = DEFAULT_SORT_ORDER

    def toggle(self, field_name: str) -> "SortState":
        """Header click: same column flips direction, a new column starts descending."""
        if field_name == self.field:
            self.order = "asc" if self.order == "desc" else "desc"
        else:
            self.field = field_name
            self.order = "desc"
        return self

    @property
    def ascending(self) -> bool:
        return self.order == "asc"


@dataclass
class SelectionState:
    """Selected principal ids for single- or multi-select pickers."""

    multi_select: bool = True
    max_selections: int | None = None
    selected: list[str] = field(default_factory=list)

    def toggle(self, principal_id: str) -> None:
        if not self.multi_select:
            self.selected = [principal_id]
            return
        if principal_id in self.selected:
            self.selected.remove(principal_id)
        elif not self.is_full():
            self.selected.append(principal_id)

    def select(self, principal_ids: list[str]) -> None:
        if not self.multi_select:
            self.selected = list(principal_ids[:1])
            return
        limit = self.max_selections
        self.selected = list(principal_ids[:limit] if limit else principal_ids)

    def clear(self) -> None:
        self.selected = []

    def is_full(self) -> bool:
        return bool(self.max_selections) and len(self.selected) >= self.max_selections

    def is_selected(self, principal_id: str) -> bool:
        return principal_id in self.selected


# ---------------------------------------------------------------------------
# Principal filters
# ---------------------------------------------------------------------------

def _in_range(series: pd.Series, low, high) -> pd.Series:
    mask = pd.Series(True, index=series.index)
    if low is not None:
        mask &= series >= low
    if high is not None:
        mask &= series <= high
    return mask


def apply_principal_filters(
    summaries: pd.DataFrame,
    filters: PrincipalFilters | None = None,
    now=None,
) -> pd.DataFrame:
    """Chain every active filter over the activity summary frame."""
    if filters is None or summaries.empty:
        return summaries

    df = summaries

    if filters.search:
        df = search_principals(df, filters.search).drop(columns=["match_score"])

    if filters.activity_status:
        wanted = {canonical_activity_status(s) for s in filters.activity_status} - {None}
        if wanted:
            df = df[df["activity_status"].isin(wanted)]
        else:
            logger.warning("Ignoring unknown activity status filter: %s", filters.activity_status)

    if filters.organization_status:
        df = df[df["principal_status"].isin(filters.organization_status)]

    if filters.organization_type:
        df = df[df["organization_type"].isin(filters.organization_type)]

    if filters.engagement_min is not None or filters.engagement_max is not None:
        df = df[_in_range(df["engagement_score"], filters.engagement_min, filters.engagement_max)]

    if filters.lead_min is not None or filters.lead_max is not None:
        df = df[_in_range(df["lead_score"].fillna(0), filters.lead_min, filters.lead_max)]

    if filters.product_categories:
        df = df[df["primary_product_category"].isin(filters.product_categories)]

    if filters.has_products is not None:
        df = df[(df["product_count"] > 0) == filters.has_products]

    if filters.has_opportunities is not None:
        df = df[(df["total_opportunities"] > 0) == filters.has_opportunities]

    if filters.has_active_opportunities is not None:
        df = df[(df["active_opportunities"] > 0) == filters.has_active_opportunities]

    if filters.country:
        df = df[df["country"].isin(filters.country)]

    if filters.last_interaction_days is not None:
        cutoff = resolve_now(now) - pd.Timedelta(days=filters.last_interaction_days)
        df = df[pd.to_datetime(df["last_interaction_date"]) >= cutoff]

    if filters.is_principal is not None:
        df = df[df["is_principal"].astype(bool) == filters.is_principal]

    if filters.is_distributor is not None:
        df = df[df["is_distributor"].astype(bool) == filters.is_distributor]

    after = normalise_date(filters.created_after)
    if after is not None:
        df = df[pd.to_datetime(df["principal_created_at"]) >= after]

    before = normalise_date(filters.created_before)
    if before is not None:
        end_of_day = before.normalize() + pd.Timedelta(days=1)
        df = df[pd.to_datetime(df["principal_created_at"]) < end_of_day]

    logger.debug("Principal filters kept %d of %d rows", len(df), len(summaries))
    return df


def search_principals(summaries: pd.DataFrame, query: str) -> pd.DataFrame:
    """Case-insensitive name/organization/industry search with a match score.

    Scores: exact name 100, name prefix 80, name contains 60, organization
    or industry contains 40. Non-matching rows are dropped; results are
    ordered by match score then engagement score.
    """
    needle = (query or "").strip().lower()
    if not needle:
        out = summaries.copy()
        out["match_score"] = 0
        return out
    if summaries.empty:
        return summaries.assign(match_score=pd.Series(dtype=int))

    def score(row) -> int:
        name = str(row.get("principal_name") or "").lower()
        if name == needle:
            return 100
        if name.startswith(needle):
            return 80
        if needle in name:
            return 60
        for col in ("organization", "industry"):
            value = row.get(col)
            if isinstance(value, str) and needle in value.lower():
                return 40
        return 0

    out = summaries.copy()
    out["match_score"] = out.apply(score, axis=1).astype(int)
    out = out[out["match_score"] > 0]
    return out.sort_values(
        ["match_score", "engagement_score"], ascending=[False, False], kind="mergesort"
    )


def highlight_match(text: str, query: str, marker: str = "**") -> str:
    """Wrap the first case-insensitive occurrence of `query` in `marker`."""
    if not text or not query:
        return text or ""
    idx = text.lower().find(query.strip().lower())
    if idx < 0:
        return text
    end = idx + len(query.strip())
    return f"{text[:idx]}{marker}{text[idx:end]}{marker}{text[end:]}"


def sort_records(
    df: pd.DataFrame,
    sort: SortState,
    allowed_fields: tuple[str, ...] = PRINCIPAL_SORT_FIELDS,
) -> pd.DataFrame:
    """Stable sort by the active column; missing values always last.

    Text columns sort case-insensitively.
    """
    if sort.field not in allowed_fields:
        raise ValueError(f"Unknown sort field: {sort.field!r}")
    if df.empty:
        return df

    def lower_text(col: pd.Series) -> pd.Series:
        if pd.api.types.is_string_dtype(col):
            return col.str.lower()
        return col

    return df.sort_values(
        sort.field,
        ascending=sort.ascending,
        kind="mergesort",
        na_position="last",
        key=lower_text,
    )


def recommended_mask(summaries: pd.DataFrame) -> pd.Series:
    """Principals worth suggesting: engagement above 70 and currently ACTIVE."""
    return (summaries["engagement_score"] > RECOMMENDED_MIN_SCORE) & (
        summaries["activity_status"] == "ACTIVE"
    )


def get_selection_items(summaries: pd.DataFrame, selection: SelectionState) -> list[dict]:
    """Compact records for the selected principals, in selection order."""
    if summaries.empty or not selection.selected:
        return []
    indexed = summaries.drop_duplicates("principal_id").set_index("principal_id", drop=False)
    recommended = recommended_mask(indexed)
    items = []
    for pid in selection.selected:
        if pid not in indexed.index:
            continue
        row = indexed.loc[pid]
        items.append({
            "id": pid,
            "name": row["principal_name"],
            "engagement_score": float(row["engagement_score"]),
            "activity_status": row["activity_status"],
            "contact_count": int(row["contact_count"]),
            "opportunity_count": int(row["total_opportunities"]),
            "last_activity_date": row["last_activity_date"],
            "is_recommended": bool(recommended.loc[pid]),
        })
    return items


# ---------------------------------------------------------------------------
# Product table
# ---------------------------------------------------------------------------

def apply_product_filters(
    products: pd.DataFrame,
    search: str = "",
    categories: list[str] | None = None,
    contract_statuses: list[str] | None = None,
    min_win_rate: float | None = None,
) -> pd.DataFrame:
    """Product table filters: name search, category, contract status, minimum win rate."""
    if products.empty:
        return products
    df = products
    needle = (search or "").strip().lower()
    if needle:
        df = df[df["product_name"].fillna("").str.lower().str.contains(needle, regex=False)]
    if categories:
        df = df[df["product_category"].isin(categories)]
    if contract_statuses:
        df = df[df["contract_status"].isin(contract_statuses)]
    if min_win_rate is not None:
        df = df[df["win_rate"] >= min_win_rate]
    return df


def sort_products(products: pd.DataFrame, sort: SortState) -> pd.DataFrame:
    return sort_records(products, sort, PRODUCT_SORT_FIELDS)


# ---------------------------------------------------------------------------
# Filter state helpers
# ---------------------------------------------------------------------------

def active_filter_count(filters: PrincipalFilters) -> int:
    """Number of filter groups currently narrowing the list."""
    count = 0
    if filters.search:
        count += 1
    count += sum(1 for name in _LIST_FIELDS if getattr(filters, name))
    count += sum(1 for name in _BOOL_FIELDS if getattr(filters, name) is not None)
    if filters.engagement_min is not None or filters.engagement_max is not None:
        count += 1
    if filters.lead_min is not None or filters.lead_max is not None:
        count += 1
    if filters.last_interaction_days is not None:
        count += 1
    if filters.created_after is not None or filters.created_before is not None:
        count += 1
    return count


def filter_summary(filters: PrincipalFilters) -> str:
    """One-line description of the active filters for the list header."""
    parts = []
    if filters.search:
        parts.append(f'Search: "{filters.search}"')
    if filters.activity_status:
        parts.append(f"Activity: {', '.join(filters.activity_status)}")
    if filters.organization_status:
        parts.append(f"Status: {', '.join(filters.organization_status)}")
    if filters.product_categories:
        parts.append(f"Products: {', '.join(filters.product_categories)}")
    if filters.has_opportunities is True:
        parts.append("Has Opportunities")
    if filters.engagement_min is not None or filters.engagement_max is not None:
        low = filters.engagement_min if filters.engagement_min is not None else 0
        high = filters.engagement_max if filters.engagement_max is not None else 100
        parts.append(f"Engagement: {low:g}-{high:g}")
    return " • ".join(parts) if parts else "No active filters"


def validate_filter_form(filters: PrincipalFilters) -> dict[str, str]:
    """Return field -> message for invalid filter combinations (empty when valid)."""
    errors: dict[str, str] = {}

    if len(filters.search or "") > MAX_SEARCH_LENGTH:
        errors["search"] = f"Search query must be less than {MAX_SEARCH_LENGTH} characters"

    for name in ("engagement_min", "engagement_max"):
        value = getattr(filters, name)
        if value is not None and not 0 <= value <= 100:
            errors[name] = "Engagement score must be between 0 and 100"

    if (
        filters.engagement_min is not None
        and filters.engagement_max is not None
        and filters.engagement_min > filters.engagement_max
    ):
        errors["engagement_range"] = "Minimum score cannot be greater than maximum score"

    unknown = [s for s in filters.activity_status if canonical_activity_status(s) is None]
    if unknown:
        errors["activity_status"] = f"Unknown activity status: {', '.join(unknown)}"

    after = normalise_date(filters.created_after)
    before = normalise_date(filters.created_before)
    if after is not None and before is not None and after > before:
        errors["date_range"] = "Start date cannot be after end date"

    return errors


_ERROR_FIELDS: dict[str, tuple[str, ...]] = {
    "search": ("search",),
    "engagement_min": ("engagement_min",),
    "engagement_max": ("engagement_max",),
    "engagement_range": ("engagement_min", "engagement_max"),
    "date_range": ("created_after", "created_before"),
}


def drop_invalid_filters(filters: PrincipalFilters, errors: dict[str, str]) -> PrincipalFilters:
    """Copy of filters with only the fields named in errors cleared; unknown statuses are removed."""
    if not errors:
        return filters
    defaults = PrincipalFilters()
    changes = {}
    for key in errors:
        for name in _ERROR_FIELDS.get(key, ()):
            changes[name] = getattr(defaults, name)
    if "activity_status" in errors:
        changes["activity_status"] = [
            s for s in filters.activity_status if canonical_activity_status(s) is not None
        ]
    return replace(filters, **changes)


def to_query_params(filters: PrincipalFilters, sort: SortState | None = None) -> dict[str, str]:
    """Serialise filters and sort into flat query parameters for a shareable link."""
    params: dict[str, str] = {}
    data = asdict(filters)
    for name, value in data.items():
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, list):
            params[name] = ",".join(value)
        elif isinstance(value, bool):
            params[name] = "true" if value else "false"
        elif isinstance(value, (date, pd.Timestamp)):
            params[name] = pd.Timestamp(value).strftime("%Y-%m-%d")
        else:
            params[name] = str(value)
    if sort is not None:
        params["sort"] = sort.field
        params["order"] = sort.order
    return params


def from_query_params(params: dict[str, str]) -> tuple[PrincipalFilters, SortState]:
    """Inverse of to_query_params; unknown keys are ignored."""
    filters = PrincipalFilters()
    for name in PrincipalFilters.__dataclass_fields__:
        raw = params.get(name)
        if raw is None or raw == "":
            continue
        if name in _LIST_FIELDS:
            setattr(filters, name, [v for v in raw.split(",") if v])
        elif name in _BOOL_FIELDS:
            setattr(filters, name, raw.lower() == "true")
        elif name in ("engagement_min", "engagement_max", "lead_min", "lead_max"):
            setattr(filters, name, safe_float(raw))
        elif name == "last_interaction_days":
            value = safe_float(raw)
            setattr(filters, name, int(value) if value is not None else None)
        elif name in ("created_after", "created_before"):
            setattr(filters, name, normalise_date(raw))
        else:
            setattr(filters, name, raw)

    sort = SortState()
    if params.get("sort") in PRINCIPAL_SORT_FIELDS:
        sort.field = params["sort"]
    if params.get("order") in ("asc", "desc"):
        sort.order = params["order"]
    return filters, sort
