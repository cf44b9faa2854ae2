"""
KPI computation functions — pure functions with no side effects.

Provides engagement scoring and color classification, activity status
derivation, product/contract scoring, and the activity summary aggregates
behind the KPI cards and engagement breakdown.
"""

import logging

import pandas as pd

from .config import (
    ACTIVITY_STATUS_ALIASES,
    ACTIVITY_STATUS_CONFIG,
    CONTRACT_EXPIRING_DAYS,
    DEFAULT_STATUS_COLOR,
    ENGAGEMENT_COLOR_THRESHOLDS,
    ENGAGEMENT_SCORE_RANGES,
    ENGAGEMENT_WEIGHTS,
    INTERACTION_TYPES,
    SCORE_MAX,
    SCORE_MIN,
    TOP_PERFORMER_COUNT,
    TREND_BAND,
)
from .loaders.utils import normalise_date, resolve_now, safe_float

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Scores and classification
# ---------------------------------------------------------------------------

def clamp_score(value) -> float:
    """Clamp a score to [0, 100]. Missing values count as 0."""
    score = safe_float(value)
    if score is None:
        return SCORE_MIN
    return max(SCORE_MIN, min(SCORE_MAX, score))


def calculate_engagement_score(
    lead_score: float | None,
    interactions_last_30_days: int | None,
    active_opportunities: int | None,
    active_product_count: int | None,
) -> float:
    """Weighted 0-100 engagement score.

    Each input is scaled by its per-unit factor, capped, then weighted:

        0.4 * lead_score
      + 0.3 * min(30, 5 * interactions_last_30_days)
      + 0.2 * min(20, 10 * active_opportunities)
      + 0.1 * min(10, 2 * active_product_count)
    """
    inputs = {
        "lead_score": lead_score,
        "interactions_last_30_days": interactions_last_30_days,
        "active_opportunities": active_opportunities,
        "active_product_count": active_product_count,
    }
    total = 0.0
    for name, raw in inputs.items():
        params = ENGAGEMENT_WEIGHTS[name]
        value = safe_float(raw) or 0.0
        scaled = min(params["cap"], max(0.0, value * params["per_unit"]))
        total += scaled * params["weight"]
    return round(clamp_score(total), 2)


def determine_activity_status(last_activity_date, now=None) -> str:
    """Derive ACTIVE / MODERATE / LOW / NO_ACTIVITY from the last activity date."""
    last = normalise_date(last_activity_date)
    if last is None:
        return "NO_ACTIVITY"

    days_since = (resolve_now(now) - last).days
    if days_since <= ACTIVITY_STATUS_CONFIG["ACTIVE"]["threshold_days"]:
        return "ACTIVE"
    if days_since <= ACTIVITY_STATUS_CONFIG["MODERATE"]["threshold_days"]:
        return "MODERATE"
    return "LOW"


def canonical_activity_status(value) -> str | None:
    """Known status for an upstream string after alias mapping, or None."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    status = str(value).strip().upper().replace(" ", "_")
    status = ACTIVITY_STATUS_ALIASES.get(status, status)
    return status if status in ACTIVITY_STATUS_CONFIG else None


def normalise_activity_status(value) -> str:
    """Map upstream status strings onto the known set; unknown values become NO_ACTIVITY."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return "NO_ACTIVITY"
    status = canonical_activity_status(value)
    if status is None:
        logger.warning("Unknown activity status '%s', treating as NO_ACTIVITY", value)
        return "NO_ACTIVITY"
    return status


def status_color(status) -> str:
    """Badge color for an activity status, with a default for unknown values."""
    if status is None:
        return DEFAULT_STATUS_COLOR
    key = str(status).strip().upper()
    key = ACTIVITY_STATUS_ALIASES.get(key, key)
    return ACTIVITY_STATUS_CONFIG.get(key, {}).get("color", DEFAULT_STATUS_COLOR)


def engagement_color(score) -> str:
    """Return 'green' (>=80), 'amber' (>=40), 'red', or 'grey' when missing."""
    value = safe_float(score)
    if value is None:
        return "grey"
    value = clamp_score(value)
    for lower_bound, color in ENGAGEMENT_COLOR_THRESHOLDS:
        if value >= lower_bound:
            return color
    return "red"


def engagement_level(score) -> str:
    """Return 'HIGH', 'MEDIUM' or 'LOW' engagement band."""
    value = clamp_score(score)
    if value >= ENGAGEMENT_SCORE_RANGES["HIGH"]["min"]:
        return "HIGH"
    if value >= ENGAGEMENT_SCORE_RANGES["MEDIUM"]["min"]:
        return "MEDIUM"
    return "LOW"


def calc_win_rate(won, total) -> float:
    """Win percentage (0-100); 0 when there are no opportunities."""
    won_f = safe_float(won) or 0.0
    total_f = safe_float(total) or 0.0
    if total_f <= 0:
        return 0.0
    return round(min(100.0, won_f / total_f * 100), 2)


def calculate_product_performance_score(
    total_opportunities,
    won_opportunities,
    recent_interactions,
    exclusive_rights,
) -> float:
    """Product performance score (0-100).

    Logic
    -----
    - win rate, 50% weight
    - recent interactions present: 30 points at 30% weight
    - exclusive rights: 20 points (10 otherwise) at 20% weight
    """
    win_component = calc_win_rate(won_opportunities, total_opportunities) * 0.5
    recent = safe_float(recent_interactions) or 0.0
    recency_component = (30 if recent > 0 else 0) * 0.3
    exclusivity_component = (20 if exclusive_rights else 10) * 0.2
    return round(clamp_score(win_component + recency_component + exclusivity_component), 2)


def determine_contract_status(contract_start_date, contract_end_date, now=None) -> str:
    """Return 'EXPIRED', 'EXPIRING_SOON', 'PENDING' or 'ACTIVE'."""
    ref = resolve_now(now)
    start = normalise_date(contract_start_date)
    end = normalise_date(contract_end_date)

    if end is not None and end < ref:
        return "EXPIRED"
    if end is not None and end < ref + pd.Timedelta(days=CONTRACT_EXPIRING_DAYS):
        return "EXPIRING_SOON"
    if start is not None and start > ref:
        return "PENDING"
    return "ACTIVE"


def calc_growth_rate(current, previous) -> float:
    """Percentage change from previous to current.

    Growth from zero is reported as 100% (or 0% when both are zero).
    """
    cur = safe_float(current) or 0.0
    prev = safe_float(previous) or 0.0
    if prev == 0:
        return 100.0 if cur > 0 else 0.0
    return round((cur - prev) / prev * 100, 2)


def classify_trend(current, previous, band: float = TREND_BAND) -> str:
    """Return 'increasing', 'decreasing' or 'stable' using a relative band."""
    cur = safe_float(current) or 0.0
    prev = safe_float(previous) or 0.0
    if cur > prev * (1 + band):
        return "increasing"
    if cur < prev * (1 - band):
        return "decreasing"
    return "stable"


# ---------------------------------------------------------------------------
# Activity summary aggregation
# ---------------------------------------------------------------------------

def get_engagement_breakdown(summaries: pd.DataFrame) -> dict[str, int]:
    """Count principals by engagement band for the breakdown widget.

    Principals with NO_ACTIVITY are counted as inactive regardless of score.
    """
    breakdown = {
        "high_engagement": 0,
        "medium_engagement": 0,
        "low_engagement": 0,
        "inactive": 0,
    }
    if summaries.empty:
        return breakdown

    for _, row in summaries.iterrows():
        if normalise_activity_status(row.get("activity_status")) == "NO_ACTIVITY":
            breakdown["inactive"] += 1
            continue
        color = engagement_color(row.get("engagement_score"))
        if color == "green":
            breakdown["high_engagement"] += 1
        elif color == "amber":
            breakdown["medium_engagement"] += 1
        else:
            breakdown["low_engagement"] += 1

    return breakdown


def get_status_distribution(summaries: pd.DataFrame) -> dict[str, int]:
    """Count principals per activity status, including zero counts."""
    distribution = {status: 0 for status in ACTIVITY_STATUS_CONFIG}
    if summaries.empty:
        return distribution
    statuses = summaries["activity_status"].map(normalise_activity_status)
    for status, count in statuses.value_counts().items():
        distribution[status] = int(count)
    return distribution


def get_top_performers(
    summaries: pd.DataFrame,
    n: int = TOP_PERFORMER_COUNT,
) -> list[dict]:
    """Top principals by engagement score, then total opportunities."""
    if summaries.empty:
        return []
    ranked = summaries.sort_values(
        ["engagement_score", "total_opportunities"],
        ascending=[False, False],
        kind="mergesort",
    ).head(n)
    return [
        {
            "principal_id": row["principal_id"],
            "principal_name": row["principal_name"],
            "engagement_score": float(row["engagement_score"]),
            "total_opportunities": int(row["total_opportunities"]),
            "won_opportunities": int(row["won_opportunities"]),
        }
        for _, row in ranked.iterrows()
    ]


def summarise_activity(summaries: pd.DataFrame) -> dict:
    """Aggregate principal activity summaries for the top-level KPI cards.

    Returns
    -------
    Dict with structure:
    {
        "total_principals": 12,
        "active_principals": 5,
        "principals_with_products": 9,
        "principals_with_opportunities": 8,
        "average_products_per_principal": 2.4,
        "average_engagement_score": 61.3,
        "pending_follow_ups": 7,
        "activity_status_distribution": {"ACTIVE": 5, ...},
        "engagement_breakdown": {"high_engagement": 3, ...},
        "top_performers": [...],
    }
    """
    if summaries.empty:
        logger.warning("Empty activity summary — returning zeroed KPI summary")
        return {
            "total_principals": 0,
            "active_principals": 0,
            "principals_with_products": 0,
            "principals_with_opportunities": 0,
            "average_products_per_principal": 0.0,
            "average_engagement_score": 0.0,
            "pending_follow_ups": 0,
            "activity_status_distribution": get_status_distribution(summaries),
            "engagement_breakdown": get_engagement_breakdown(summaries),
            "top_performers": [],
        }

    distribution = get_status_distribution(summaries)
    return {
        "total_principals": int(len(summaries)),
        "active_principals": distribution["ACTIVE"],
        "principals_with_products": int((summaries["product_count"] > 0).sum()),
        "principals_with_opportunities": int((summaries["total_opportunities"] > 0).sum()),
        "average_products_per_principal": round(float(summaries["product_count"].mean()), 2),
        "average_engagement_score": round(float(summaries["engagement_score"].mean()), 2),
        "pending_follow_ups": int(summaries["follow_ups_required"].sum()),
        "activity_status_distribution": distribution,
        "engagement_breakdown": get_engagement_breakdown(summaries),
        "top_performers": get_top_performers(summaries),
    }


def calculate_conversion_funnel(summaries: pd.DataFrame) -> list[dict]:
    """Principal funnel: all → contacted → with opportunities → with wins.

    Each stage carries its count and the conversion rate from the stage
    before it.
    """
    if summaries.empty:
        counts = [0, 0, 0, 0]
    else:
        counts = [
            int(len(summaries)),
            int((summaries["total_interactions"] > 0).sum()),
            int((summaries["total_opportunities"] > 0).sum()),
            int((summaries["won_opportunities"] > 0).sum()),
        ]
    labels = ["Principals", "Contacted", "With Opportunities", "With Wins"]

    funnel = []
    previous = None
    for label, count in zip(labels, counts):
        rate = 100.0 if previous is None else calc_win_rate(count, previous)
        funnel.append({"stage": label, "count": count, "conversion_pct": rate})
        previous = count
    return funnel


# ---------------------------------------------------------------------------
# Interaction metrics
# ---------------------------------------------------------------------------

def calculate_interaction_priority(interaction: dict | pd.Series, now=None) -> str:
    """Return 'High', 'Medium' or 'Low' follow-up priority for one interaction.

    High: overdue follow-up, or a demo tied to an opportunity.
    Medium: follow-up needed, a call tied to an opportunity, or in person.
    """
    ref = resolve_now(now)
    interaction_type = interaction.get("interaction_type")
    follow_up_needed = bool(interaction.get("follow_up_needed"))
    follow_up_date = normalise_date(interaction.get("follow_up_date"))
    has_opportunity = pd.notna(interaction.get("opportunity_id")) and bool(
        interaction.get("opportunity_id")
    )

    is_overdue = follow_up_needed and follow_up_date is not None and follow_up_date < ref
    if is_overdue or (interaction_type == "DEMO" and has_opportunity):
        return "High"
    if follow_up_needed or (interaction_type == "CALL" and has_opportunity) or interaction_type == "IN_PERSON":
        return "Medium"
    return "Low"


def compute_type_distribution(interactions: pd.DataFrame) -> dict[str, dict]:
    """Count and percentage of interactions per interaction type."""
    counts = {t: 0 for t in INTERACTION_TYPES}
    if not interactions.empty:
        for t, count in interactions["interaction_type"].value_counts().items():
            counts[t] = int(count)

    total = sum(counts.values())
    return {
        t: {
            "count": c,
            "percentage": round(c / total * 100) if total else 0,
        }
        for t, c in counts.items()
    }


def compute_follow_up_metrics(interactions: pd.DataFrame, now=None) -> dict:
    """Follow-up workload: overdue, due today / this week / next week, completion rate."""
    ref = resolve_now(now)
    today = ref.normalize()
    next_week = today + pd.Timedelta(days=7)
    week_after = next_week + pd.Timedelta(days=7)

    metrics = {
        "total_follow_ups_needed": 0,
        "overdue_count": 0,
        "due_today": 0,
        "due_this_week": 0,
        "due_next_week": 0,
        "completion_rate": 100,
        "overdue_by_type": {t: 0 for t in INTERACTION_TYPES},
    }
    if interactions.empty:
        return metrics

    needed = interactions[interactions["follow_up_needed"].fillna(False).astype(bool)]
    dates = pd.to_datetime(needed["follow_up_date"])
    overdue = needed[dates < ref]

    metrics["total_follow_ups_needed"] = int(len(needed))
    metrics["overdue_count"] = int(len(overdue))
    metrics["due_today"] = int((dates.dt.normalize() == today).sum())
    metrics["due_this_week"] = int(((dates >= today) & (dates <= next_week)).sum())
    metrics["due_next_week"] = int(((dates > next_week) & (dates <= week_after)).sum())
    if len(needed):
        metrics["completion_rate"] = round((len(needed) - len(overdue)) / len(needed) * 100)
    for t, count in overdue["interaction_type"].value_counts().items():
        metrics["overdue_by_type"][t] = int(count)

    return metrics
