"""
Dashboard-ready output functions.

These are the entry points the Streamlit app calls. Each function takes
already-normalised DataFrames (see transforms.py) and returns plain dicts
or DataFrames suitable for rendering cards, charts and tables.
"""

import logging
from pathlib import Path

import pandas as pd

from .config import (
    DEFAULT_PAGE_SIZE,
    FOLLOW_UP_SCORE_THRESHOLD,
    INTERACTION_TYPES,
    MAX_NOTES_LENGTH,
    MAX_SUBJECT_LENGTH,
    MIN_SUBJECT_LENGTH,
    OPPORTUNITY_STAGES,
)
from .filters import (
    PrincipalFilters,
    SortState,
    apply_principal_filters,
    apply_product_filters,
    highlight_match,
    recommended_mask,
    sort_products,
    sort_records,
)
from .formatting import format_activity_date, format_relative_date
from .kpis import (
    calc_win_rate,
    calculate_conversion_funnel,
    calculate_interaction_priority,
    compute_follow_up_metrics,
    compute_type_distribution,
    engagement_color,
    engagement_level,
    get_engagement_breakdown,
    status_color,
    summarise_activity,
)
from .timeline import (
    TimelineFilter,
    apply_timeline_filters,
    group_by_date,
    paginate,
    sort_timeline,
    summarise_timeline,
)
from .transforms import (
    PRODUCT_PERFORMANCE_COLUMNS,
    build_activity_summary,
    build_distributor_hierarchy,
    build_distributor_relationships,
    build_interactions,
    build_opportunities,
    build_product_performance,
    build_timeline,
    flatten_hierarchy,
)
from .loaders import ApiResponse, PrincipalActivityApi, load_view_export
from .loaders.utils import normalise_date, resolve_now, safe_float

logger = logging.getLogger(__name__)

SELECTOR_COLUMNS = [
    "principal_id", "principal_name", "organization", "activity_status",
    "status_color", "engagement_score", "engagement_color", "engagement_level",
    "contact_count", "total_opportunities", "last_activity", "is_recommended",
    "display_name",
]

FOLLOW_UP_COLUMNS = [
    "interaction_id", "principal_id", "principal_name", "interaction_type",
    "subject", "follow_up_date", "due", "priority", "is_overdue",
]


def get_principal_overview(summaries: pd.DataFrame) -> dict:
    """KPI cards, status distribution, engagement breakdown and funnel.

    Returns
    -------
    {
        "kpis": summarise_activity(...) dict,
        "engagement_breakdown": {"high_engagement": ..., ...},
        "funnel": [{"stage", "count", "conversion_pct"}, ...],
        "cards": [{"label", "value", "color"}, ...],
    }
    """
    kpis = summarise_activity(summaries)
    cards = [
        {"label": "Total Principals", "value": kpis["total_principals"], "color": "blue"},
        {"label": "Active Principals", "value": kpis["active_principals"], "color": "green"},
        {
            "label": "Avg Engagement",
            "value": kpis["average_engagement_score"],
            "color": engagement_color(kpis["average_engagement_score"]) if kpis["total_principals"] else "grey",
        },
        {"label": "With Opportunities", "value": kpis["principals_with_opportunities"], "color": "purple"},
        {"label": "Pending Follow-ups", "value": kpis["pending_follow_ups"], "color": "orange"},
    ]
    return {
        "kpis": kpis,
        "engagement_breakdown": get_engagement_breakdown(summaries),
        "funnel": calculate_conversion_funnel(summaries),
        "cards": cards,
    }


def get_selector_options(
    summaries: pd.DataFrame,
    filters: PrincipalFilters | None = None,
    sort: SortState | None = None,
    now=None,
) -> pd.DataFrame:
    """Filtered, sorted principal list for the selector with display columns added.

    Returns
    -------
    DataFrame with SELECTOR_COLUMNS.
    """
    if summaries.empty:
        return pd.DataFrame(columns=SELECTOR_COLUMNS)

    ref = resolve_now(now)
    df = apply_principal_filters(summaries, filters, ref)
    df = sort_records(df, sort or SortState())
    if df.empty:
        return pd.DataFrame(columns=SELECTOR_COLUMNS)

    out = df.copy()
    out["status_color"] = out["activity_status"].map(status_color)
    out["engagement_color"] = out["engagement_score"].map(engagement_color)
    out["engagement_level"] = out["engagement_score"].map(engagement_level)
    out["last_activity"] = out["last_activity_date"].map(lambda d: format_relative_date(d, ref))
    out["is_recommended"] = recommended_mask(out)
    query = filters.search if filters is not None else ""
    out["display_name"] = out["principal_name"].map(lambda name: highlight_match(name, query))
    return out[SELECTOR_COLUMNS].reset_index(drop=True)


def get_distributor_table(
    relationships: pd.DataFrame,
    expanded: list[str] | None = None,
    now=None,
) -> pd.DataFrame:
    """Relationship table rows: principals with their distributors nested beneath.

    An empty relationship list yields an empty frame with the table schema.
    """
    tree = build_distributor_hierarchy(relationships)
    table = flatten_hierarchy(tree, expanded)
    if table.empty:
        return table
    ref = resolve_now(now)
    table["last_contact_label"] = table["last_contact"].map(lambda d: format_relative_date(d, ref))
    return table


def get_product_table(
    products: pd.DataFrame,
    search: str = "",
    categories: list[str] | None = None,
    sort: SortState | None = None,
) -> pd.DataFrame:
    """Product performance table, filtered and sorted (performance score desc by default)."""
    if products.empty:
        return pd.DataFrame(columns=PRODUCT_PERFORMANCE_COLUMNS)
    df = apply_product_filters(products, search=search, categories=categories)
    return sort_products(df, sort or SortState("performance_score", "desc")).reset_index(drop=True)


def get_product_summary(products: pd.DataFrame) -> dict:
    """Totals over a product table: products, opportunities, wins, value, win rate."""
    if products.empty:
        return {
            "product_count": 0,
            "total_opportunities": 0,
            "won_opportunities": 0,
            "total_value": 0.0,
            "win_rate": 0.0,
            "exclusive_count": 0,
        }
    total = int(products["total_opportunities"].sum())
    won = int(products["won_opportunities"].sum())
    return {
        "product_count": int(len(products)),
        "total_opportunities": total,
        "won_opportunities": won,
        "total_value": float(products["total_value"].sum()),
        "win_rate": calc_win_rate(won, total),
        "exclusive_count": int(products["exclusive_rights"].astype(bool).sum()),
    }


def get_timeline_view(
    timeline: pd.DataFrame,
    filt: TimelineFilter | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    now=None,
) -> dict:
    """Filtered, paged timeline grouped by day, plus the header summary."""
    ref = resolve_now(now)
    filtered = apply_timeline_filters(timeline, filt, ref)
    ordered = sort_timeline(filtered, "activity_date", "desc")
    rows, pagination = paginate(ordered, page, limit)
    return {
        "groups": group_by_date(rows),
        "pagination": pagination,
        "summary": summarise_timeline(filtered, ref),
    }


def get_principal_metrics(
    principal_id: str,
    interactions: pd.DataFrame,
    opportunities: pd.DataFrame,
    now=None,
) -> dict:
    """Per-principal interaction and opportunity metrics for the detail page."""
    ref = resolve_now(now)
    its = interactions[interactions["principal_id"] == principal_id] if not interactions.empty else interactions
    opps = opportunities[opportunities["principal_id"] == principal_id] if not opportunities.empty else opportunities

    won = int(opps["is_won"].astype(bool).sum()) if not opps.empty else 0
    pipeline = opps[~opps["is_won"].astype(bool)] if not opps.empty else opps
    return {
        "interaction_count": int(len(its)),
        "type_distribution": compute_type_distribution(its),
        "follow_ups": compute_follow_up_metrics(its, ref),
        "opportunity_count": int(len(opps)),
        "won_opportunities": won,
        "win_rate": calc_win_rate(won, len(opps)),
        "pipeline_value": float(pipeline["estimated_value"].sum()) if not pipeline.empty else 0.0,
        "weighted_pipeline_value": (
            float((pipeline["estimated_value"] * pipeline["probability_percent"] / 100).sum())
            if not pipeline.empty else 0.0
        ),
        "stage_counts": (
            {str(k): int(v) for k, v in opps["stage"].value_counts().items()} if not opps.empty else {}
        ),
    }


def get_principal_detail(principal_id: str, dataset: dict, now=None) -> dict | None:
    """Everything the principal detail page renders for one principal.

    Parameters
    ----------
    principal_id : Principal to show.
    dataset : Dict of normalised frames keyed summaries, timeline,
        relationships, products, interactions, opportunities.

    Returns
    -------
    None when the principal is unknown, else a dict with summary (row dict),
    relationships (table), products (table), product_summary, timeline
    (recent day groups), timeline_summary and kpi_metrics.
    """
    ref = resolve_now(now)
    summaries = dataset["summaries"]
    match = summaries[summaries["principal_id"] == principal_id] if not summaries.empty else summaries
    if match.empty:
        logger.warning("Principal '%s' not found", principal_id)
        return None

    summary = match.iloc[0].to_dict()
    summary["engagement_color"] = engagement_color(summary["engagement_score"])
    summary["status_color"] = status_color(summary["activity_status"])
    summary["last_activity"] = format_relative_date(summary["last_activity_date"], ref)

    def _for(frame: pd.DataFrame) -> pd.DataFrame:
        if frame.empty:
            return frame
        return frame[frame["principal_id"] == principal_id]

    products = _for(dataset["products"])
    timeline = _for(dataset["timeline"])

    return {
        "summary": summary,
        "relationships": get_distributor_table(_for(dataset["relationships"]), now=ref),
        "products": get_product_table(products),
        "product_summary": get_product_summary(products),
        "timeline": get_timeline_view(timeline, now=ref, limit=10)["groups"],
        "timeline_summary": summarise_timeline(timeline, ref),
        "kpi_metrics": get_principal_metrics(
            principal_id, dataset["interactions"], dataset["opportunities"], ref
        ),
    }


def get_follow_up_queue(
    interactions: pd.DataFrame,
    summaries: pd.DataFrame,
    now=None,
) -> pd.DataFrame:
    """Interactions needing follow-up, overdue first then by due date.

    Returns
    -------
    DataFrame with FOLLOW_UP_COLUMNS.
    """
    if interactions.empty:
        return pd.DataFrame(columns=FOLLOW_UP_COLUMNS)

    ref = resolve_now(now)
    queue = interactions[interactions["follow_up_needed"].fillna(False).astype(bool)].copy()
    if queue.empty:
        return pd.DataFrame(columns=FOLLOW_UP_COLUMNS)

    names = (
        summaries.drop_duplicates("principal_id").set_index("principal_id")["principal_name"]
        if not summaries.empty else pd.Series(dtype=object)
    )
    queue["principal_name"] = queue["principal_id"].map(names).fillna("Unknown principal")
    queue["priority"] = queue.apply(lambda row: calculate_interaction_priority(row, ref), axis=1)
    queue["is_overdue"] = queue["follow_up_date"].notna() & (queue["follow_up_date"] < ref)
    queue["due"] = queue["follow_up_date"].map(format_activity_date)
    queue = queue.sort_values(
        ["is_overdue", "follow_up_date"],
        ascending=[False, True],
        kind="mergesort",
        na_position="last",
    )
    return queue[FOLLOW_UP_COLUMNS].reset_index(drop=True)


def get_principals_requiring_follow_up(summaries: pd.DataFrame) -> pd.DataFrame:
    """Principals with pending follow-ups or an engagement score of 75+, soonest follow-up first."""
    if summaries.empty:
        return summaries
    needs = (summaries["follow_ups_required"] > 0) | (
        summaries["engagement_score"] >= FOLLOW_UP_SCORE_THRESHOLD
    )
    return summaries[needs].sort_values(
        "next_follow_up_date", ascending=True, kind="mergesort", na_position="last"
    )


# ---------------------------------------------------------------------------
# Write forms
# ---------------------------------------------------------------------------

def build_interaction_payload(
    principal_id: str,
    interaction_type: str,
    subject: str,
    interaction_date=None,
    notes: str = "",
    follow_up_date=None,
    now=None,
) -> tuple[dict, dict[str, str]]:
    """Validate the log-interaction form and shape it as an interactions row.

    Returns
    -------
    (payload, errors). The payload should only be sent when errors is empty.
    """
    ref = resolve_now(now)
    errors: dict[str, str] = {}

    if interaction_type not in INTERACTION_TYPES:
        errors["interaction_type"] = "Please select a valid interaction type"

    subject = (subject or "").strip()
    if len(subject) < MIN_SUBJECT_LENGTH:
        errors["subject"] = f"Subject must be at least {MIN_SUBJECT_LENGTH} characters"
    elif len(subject) > MAX_SUBJECT_LENGTH:
        errors["subject"] = f"Subject must be less than {MAX_SUBJECT_LENGTH} characters"

    if len(notes or "") > MAX_NOTES_LENGTH:
        errors["notes"] = f"Notes must be less than {MAX_NOTES_LENGTH} characters"

    when = normalise_date(interaction_date) if interaction_date is not None else ref
    if when is None:
        errors["interaction_date"] = "Please enter a valid date"
    elif when >= ref.normalize() + pd.Timedelta(days=1):
        errors["interaction_date"] = "Interaction date cannot be in the future"

    follow_up = normalise_date(follow_up_date)
    if follow_up is not None and when is not None and follow_up.normalize() < when.normalize():
        errors["follow_up_date"] = "Follow-up date must be on or after the interaction date"

    payload = {
        "organization_id": principal_id,
        "interaction_type": interaction_type,
        "subject": subject,
        "interaction_date": when.isoformat() if when is not None else None,
        "notes": (notes or "").strip() or None,
        "follow_up_needed": follow_up is not None,
        "follow_up_date": follow_up.strftime("%Y-%m-%d") if follow_up is not None else None,
    }
    return payload, errors


def build_opportunity_payload(
    principal_id: str,
    principal_name: str,
    stage: str = "New Lead",
    product_id: str | None = None,
    product_name: str | None = None,
    estimated_value=None,
    probability_percent=None,
) -> tuple[dict, dict[str, str]]:
    """Validate the new-opportunity form; the name is '<principal> - <product>'."""
    errors: dict[str, str] = {}
    if stage not in OPPORTUNITY_STAGES:
        errors["stage"] = "Please select a valid stage"

    value = safe_float(estimated_value)
    if value is not None and value < 0:
        errors["estimated_value"] = "Estimated value cannot be negative"

    probability = safe_float(probability_percent)
    if probability is not None and not 0 <= probability <= 100:
        errors["probability_percent"] = "Probability must be between 0 and 100"

    name = f"{principal_name} - {product_name}" if product_name else principal_name
    payload = {
        "name": name,
        "principal_organization_id": principal_id,
        "stage": stage,
        "product_id": product_id,
        "estimated_value": value,
        "probability_percent": int(probability) if probability is not None else None,
    }
    return payload, errors


# ---------------------------------------------------------------------------
# Data sources
# ---------------------------------------------------------------------------

_NORMALISERS = {
    "summaries": lambda records, now: build_activity_summary(records, now),
    "timeline": lambda records, now: build_timeline(records),
    "relationships": lambda records, now: build_distributor_relationships(records),
    "products": lambda records, now: build_product_performance(records, now),
    "interactions": lambda records, now: build_interactions(records),
    "opportunities": lambda records, now: build_opportunities(records),
}


def load_dataset_from_api(api: PrincipalActivityApi, now=None) -> tuple[dict, dict[str, str]]:
    """Fetch every view and normalise it.

    Each fetch fails independently: a failed view yields an empty frame
    with its schema and an entry in the returned errors dict.
    """
    ref = resolve_now(now)
    fetches = {
        "summaries": api.get_activity_summary,
        "relationships": api.get_distributor_relationships,
        "products": api.get_product_performance,
        "interactions": api.get_interactions,
        "opportunities": api.get_opportunities,
    }
    dataset: dict[str, pd.DataFrame] = {}
    errors: dict[str, str] = {}
    for view, fetch in fetches.items():
        resp = fetch()
        if not resp.success:
            errors[view] = resp.error or "Unknown error"
        dataset[view] = _NORMALISERS[view](resp.data if resp.success else [], ref)

    # The timeline view is per principal
    timeline_records: list[dict] = []
    for principal_id in dataset["summaries"]["principal_id"].tolist():
        resp = api.get_timeline(principal_id)
        if resp.success:
            timeline_records.extend(resp.data or [])
        else:
            errors["timeline"] = resp.error or "Unknown error"
    dataset["timeline"] = build_timeline(timeline_records)

    if errors:
        logger.warning("Dataset loaded with %d failed views: %s", len(errors), ", ".join(errors))
    return dataset, errors


def visible_errors(errors: dict[str, str], dismissed: set[tuple[str, str]]) -> dict[str, str]:
    """Load errors still to show; a dismissed view reappears if its message changes."""
    return {view: message for view, message in errors.items() if (view, message) not in dismissed}


def fetch_engagement_breakdown(api: PrincipalActivityApi) -> ApiResponse:
    """Engagement band counts for every principal, aggregated from the raw score rows."""
    resp = api.get_engagement_rows()
    if not resp.success:
        return resp
    return ApiResponse(success=True, data=get_engagement_breakdown(pd.DataFrame(resp.data or [])))


def load_dataset_from_exports(paths: dict[str, str | Path], now=None) -> dict[str, pd.DataFrame]:
    """Load a dataset from saved view exports; views without a file come back empty."""
    ref = resolve_now(now)
    dataset = {}
    for view, normalise in _NORMALISERS.items():
        records = load_view_export(paths[view], view) if view in paths else []
        dataset[view] = normalise(records, ref)
    return dataset
