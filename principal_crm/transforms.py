"""
Data transforms: normalise raw API/mock records into schema-stable
DataFrames, and build the distributor relationship hierarchy.
"""

import logging
from typing import Iterable

import pandas as pd

from .config import RELATIONSHIP_TYPES
from .kpis import (
    calc_win_rate,
    calculate_engagement_score,
    calculate_product_performance_score,
    clamp_score,
    determine_activity_status,
    determine_contract_status,
    normalise_activity_status,
)
from .loaders.utils import normalise_date, safe_bool, safe_float, safe_int, safe_str

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------
ACTIVITY_SUMMARY_COLUMNS = [
    "principal_id", "principal_name", "organization", "organization_type",
    "principal_status", "industry", "country", "lead_score",
    "is_principal", "is_distributor",
    "engagement_score", "activity_status",
    "contact_count", "total_interactions", "interactions_last_30_days",
    "last_interaction_date", "next_follow_up_date", "follow_ups_required",
    "total_opportunities", "active_opportunities", "won_opportunities",
    "product_count", "active_product_count", "primary_product_category",
    "last_activity_date", "principal_created_at",
]

TIMELINE_COLUMNS = [
    "principal_id", "principal_name", "activity_date", "activity_type",
    "activity_subject", "activity_details", "source_id", "source_table",
    "activity_status", "follow_up_required", "follow_up_date", "timeline_rank",
]

RELATIONSHIP_COLUMNS = [
    "principal_id", "principal_name", "distributor_id", "distributor_name",
    "relationship_type", "status",
    "principal_last_contact", "distributor_last_contact",
]

PRODUCT_PERFORMANCE_COLUMNS = [
    "principal_id", "product_id", "product_name", "product_category",
    "total_opportunities", "won_opportunities", "active_opportunities",
    "recent_interactions", "exclusive_rights",
    "contract_start_date", "contract_end_date",
    "win_rate", "total_value", "performance_score", "contract_status",
]

INTERACTION_COLUMNS = [
    "interaction_id", "principal_id", "interaction_date", "interaction_type",
    "subject", "opportunity_id", "follow_up_needed", "follow_up_date",
]

OPPORTUNITY_COLUMNS = [
    "opportunity_id", "principal_id", "product_id", "name", "stage",
    "probability_percent", "estimated_value", "is_won", "created_at",
]

HIERARCHY_TABLE_COLUMNS = [
    "key", "parent_key", "depth", "principal_id", "principal_name",
    "distributor_id", "distributor_name", "relationship_type", "status",
    "child_count", "last_contact",
]

_SUMMARY_COUNT_COLUMNS = [
    "contact_count", "total_interactions", "interactions_last_30_days",
    "follow_ups_required", "total_opportunities", "active_opportunities",
    "won_opportunities", "product_count", "active_product_count",
]

# Field aliases seen in upstream views
_SUMMARY_ALIASES = {
    "id": "principal_id",
    "name": "principal_name",
    "opportunity_count": "total_opportunities",
    "interaction_count": "total_interactions",
}


def _empty(columns: list[str]) -> pd.DataFrame:
    return pd.DataFrame(columns=columns)


def _to_records(records) -> list[dict]:
    if records is None:
        return []
    if isinstance(records, pd.DataFrame):
        return records.to_dict("records")
    return [dict(r) for r in records]


def _apply_aliases(record: dict, aliases: dict[str, str]) -> dict:
    out = dict(record)
    for alias, canonical in aliases.items():
        if alias in out and canonical not in out:
            out[canonical] = out[alias]
    return out


# ---------------------------------------------------------------------------
# Record normalisers
# ---------------------------------------------------------------------------

def build_activity_summary(records, now=None) -> pd.DataFrame:
    """Normalise principal activity summary records.

    - Scores are clamped to 0-100; a missing engagement score is computed
      from lead score and activity counts.
    - Activity status is normalised (STALE -> LOW); a missing status is
      derived from last_activity_date.
    - Count columns default to 0.

    Returns
    -------
    DataFrame with ACTIVITY_SUMMARY_COLUMNS.
    """
    rows = []
    for raw in _to_records(records):
        rec = _apply_aliases(raw, _SUMMARY_ALIASES)
        if safe_str(rec.get("principal_id")) is None:
            logger.warning("Skipping activity summary without principal_id: %s", rec.get("principal_name"))
            continue

        row = {col: rec.get(col) for col in ACTIVITY_SUMMARY_COLUMNS}
        row["principal_id"] = safe_str(rec.get("principal_id"))
        row["principal_name"] = safe_str(rec.get("principal_name")) or "Unnamed principal"
        row["organization"] = safe_str(rec.get("organization")) or row["principal_name"]
        for col in _SUMMARY_COUNT_COLUMNS:
            row[col] = safe_int(rec.get(col))

        lead = safe_float(rec.get("lead_score"))
        row["lead_score"] = clamp_score(lead) if lead is not None else None
        row["is_principal"] = safe_bool(rec.get("is_principal")) is not False
        row["is_distributor"] = bool(safe_bool(rec.get("is_distributor")))

        for col in ("last_interaction_date", "next_follow_up_date",
                    "last_activity_date", "principal_created_at"):
            row[col] = normalise_date(rec.get(col))

        score = safe_float(rec.get("engagement_score"))
        if score is None:
            score = calculate_engagement_score(
                row["lead_score"],
                row["interactions_last_30_days"],
                row["active_opportunities"],
                row["active_product_count"],
            )
        row["engagement_score"] = clamp_score(score)

        if safe_str(rec.get("activity_status")) is None:
            row["activity_status"] = determine_activity_status(row["last_activity_date"], now)
        else:
            row["activity_status"] = normalise_activity_status(rec.get("activity_status"))

        rows.append(row)

    if not rows:
        logger.warning("No activity summary records — returning empty frame with schema")
        return _empty(ACTIVITY_SUMMARY_COLUMNS)

    df = pd.DataFrame(rows, columns=ACTIVITY_SUMMARY_COLUMNS)
    duplicated = df["principal_id"].duplicated()
    if duplicated.any():
        logger.warning("Dropping %d duplicate activity summary rows", int(duplicated.sum()))
        df = df[~duplicated].reset_index(drop=True)
    for col in ("last_interaction_date", "next_follow_up_date",
                "last_activity_date", "principal_created_at"):
        df[col] = pd.to_datetime(df[col])
    logger.info("Built activity summary with %d rows", len(df))
    return df


def assign_timeline_rank(df: pd.DataFrame) -> pd.DataFrame:
    """Rank entries per principal by activity date, newest = 1."""
    if df.empty:
        return df
    out = df.copy()
    out["timeline_rank"] = (
        out.groupby("principal_id", dropna=False)["activity_date"]
        .rank(method="first", ascending=False)
        .astype(int)
    )
    return out


def build_timeline(records) -> pd.DataFrame:
    """Normalise timeline entries; rows without a valid activity date are dropped.

    timeline_rank is kept when supplied, otherwise assigned per principal.
    """
    rows = []
    dropped = 0
    for rec in _to_records(records):
        activity_date = normalise_date(rec.get("activity_date"))
        if activity_date is None:
            dropped += 1
            continue
        row = {col: rec.get(col) for col in TIMELINE_COLUMNS}
        row["principal_id"] = safe_str(rec.get("principal_id"))
        row["principal_name"] = safe_str(rec.get("principal_name")) or ""
        row["activity_date"] = activity_date
        row["activity_type"] = (safe_str(rec.get("activity_type")) or "INTERACTION").upper()
        row["activity_subject"] = safe_str(rec.get("activity_subject")) or ""
        row["activity_details"] = safe_str(rec.get("activity_details")) or ""
        row["source_id"] = safe_str(rec.get("source_id"))
        row["source_table"] = safe_str(rec.get("source_table"))
        row["activity_status"] = safe_str(rec.get("activity_status"))
        row["follow_up_required"] = bool(safe_bool(rec.get("follow_up_required")))
        row["follow_up_date"] = normalise_date(rec.get("follow_up_date"))
        rank = safe_float(rec.get("timeline_rank"))
        row["timeline_rank"] = int(rank) if rank is not None else None
        rows.append(row)

    if dropped:
        logger.warning("Dropped %d timeline entries without a valid activity date", dropped)
    if not rows:
        return _empty(TIMELINE_COLUMNS)

    df = pd.DataFrame(rows, columns=TIMELINE_COLUMNS)
    df["activity_date"] = pd.to_datetime(df["activity_date"])
    df["follow_up_date"] = pd.to_datetime(df["follow_up_date"])
    if df["timeline_rank"].isna().any():
        computed = assign_timeline_rank(df)["timeline_rank"]
        df["timeline_rank"] = df["timeline_rank"].fillna(computed)
    df["timeline_rank"] = df["timeline_rank"].astype(int)

    logger.info("Built timeline with %d rows", len(df))
    return df


def build_distributor_relationships(records) -> pd.DataFrame:
    """Normalise principal/distributor links.

    relationship_type is derived when absent or unrecognised:
    HAS_DISTRIBUTOR when a distributor_id is present, DIRECT otherwise.
    """
    rows = []
    for rec in _to_records(records):
        distributor_id = safe_str(rec.get("distributor_id"))
        rel_type = (safe_str(rec.get("relationship_type")) or "").upper()
        if rel_type not in RELATIONSHIP_TYPES:
            rel_type = "HAS_DISTRIBUTOR" if distributor_id else "DIRECT"

        rows.append({
            "principal_id": safe_str(rec.get("principal_id")),
            "principal_name": safe_str(rec.get("principal_name")) or "",
            "distributor_id": distributor_id,
            "distributor_name": safe_str(rec.get("distributor_name")),
            "relationship_type": rel_type,
            "status": safe_str(rec.get("status")) or safe_str(rec.get("principal_status")),
            "principal_last_contact": normalise_date(rec.get("principal_last_contact")),
            "distributor_last_contact": normalise_date(rec.get("distributor_last_contact")),
        })

    if not rows:
        return _empty(RELATIONSHIP_COLUMNS)

    df = pd.DataFrame(rows, columns=RELATIONSHIP_COLUMNS)
    df["principal_last_contact"] = pd.to_datetime(df["principal_last_contact"])
    df["distributor_last_contact"] = pd.to_datetime(df["distributor_last_contact"])
    logger.info("Built distributor relationships with %d rows", len(df))
    return df


def build_product_performance(records, now=None) -> pd.DataFrame:
    """Normalise product performance rows, filling derived metrics when absent."""
    rows = []
    for rec in _to_records(records):
        total = safe_int(rec.get("total_opportunities", rec.get("opportunities_for_product")))
        won = safe_int(rec.get("won_opportunities", rec.get("won_opportunities_for_product")))
        recent = safe_int(rec.get("recent_interactions", rec.get("recent_interactions_for_product")))
        exclusive = bool(safe_bool(rec.get("exclusive_rights")))

        win_rate = safe_float(rec.get("win_rate"))
        score = safe_float(rec.get("performance_score", rec.get("product_performance_score")))
        contract_status = safe_str(rec.get("contract_status"))

        rows.append({
            "principal_id": safe_str(rec.get("principal_id")),
            "product_id": safe_str(rec.get("product_id")),
            "product_name": safe_str(rec.get("product_name")) or "",
            "product_category": safe_str(rec.get("product_category")) or "Other",
            "total_opportunities": total,
            "won_opportunities": won,
            "active_opportunities": safe_int(rec.get("active_opportunities")),
            "recent_interactions": recent,
            "exclusive_rights": exclusive,
            "contract_start_date": normalise_date(rec.get("contract_start_date")),
            "contract_end_date": normalise_date(rec.get("contract_end_date")),
            "win_rate": clamp_score(win_rate) if win_rate is not None else calc_win_rate(won, total),
            "total_value": safe_float(rec.get("total_value")) or 0.0,
            "performance_score": (
                clamp_score(score) if score is not None
                else calculate_product_performance_score(total, won, recent, exclusive)
            ),
            "contract_status": (
                contract_status.upper() if contract_status
                else determine_contract_status(
                    rec.get("contract_start_date"), rec.get("contract_end_date"), now
                )
            ),
        })

    if not rows:
        return _empty(PRODUCT_PERFORMANCE_COLUMNS)

    df = pd.DataFrame(rows, columns=PRODUCT_PERFORMANCE_COLUMNS)
    df["contract_start_date"] = pd.to_datetime(df["contract_start_date"])
    df["contract_end_date"] = pd.to_datetime(df["contract_end_date"])
    logger.info("Built product performance with %d rows", len(df))
    return df


def build_interactions(records) -> pd.DataFrame:
    """Normalise logged interactions."""
    rows = []
    for rec in _to_records(records):
        rows.append({
            "interaction_id": safe_str(rec.get("interaction_id", rec.get("id"))),
            "principal_id": safe_str(rec.get("principal_id", rec.get("organization_id"))),
            "interaction_date": normalise_date(rec.get("interaction_date", rec.get("date"))),
            "interaction_type": (safe_str(rec.get("interaction_type")) or "EMAIL").upper(),
            "subject": safe_str(rec.get("subject")) or "",
            "opportunity_id": safe_str(rec.get("opportunity_id")),
            "follow_up_needed": bool(safe_bool(rec.get("follow_up_needed"))),
            "follow_up_date": normalise_date(rec.get("follow_up_date")),
        })

    if not rows:
        return _empty(INTERACTION_COLUMNS)

    df = pd.DataFrame(rows, columns=INTERACTION_COLUMNS)
    df["interaction_date"] = pd.to_datetime(df["interaction_date"])
    df["follow_up_date"] = pd.to_datetime(df["follow_up_date"])
    logger.info("Built interactions with %d rows", len(df))
    return df


def build_opportunities(records) -> pd.DataFrame:
    """Normalise opportunities; probability clamped to 0-100, is_won derived from stage."""
    rows = []
    for rec in _to_records(records):
        stage = safe_str(rec.get("stage")) or "New Lead"
        is_won = safe_bool(rec.get("is_won"))
        rows.append({
            "opportunity_id": safe_str(rec.get("opportunity_id", rec.get("id"))),
            "principal_id": safe_str(rec.get("principal_id", rec.get("principal_organization_id"))),
            "product_id": safe_str(rec.get("product_id")),
            "name": safe_str(rec.get("name")) or "",
            "stage": stage,
            "probability_percent": clamp_score(rec.get("probability_percent")),
            "estimated_value": safe_float(rec.get("estimated_value")) or 0.0,
            "is_won": is_won if is_won is not None else stage == "Closed - Won",
            "created_at": normalise_date(rec.get("created_at")),
        })

    if not rows:
        return _empty(OPPORTUNITY_COLUMNS)

    df = pd.DataFrame(rows, columns=OPPORTUNITY_COLUMNS)
    df["created_at"] = pd.to_datetime(df["created_at"])
    logger.info("Built opportunities with %d rows", len(df))
    return df


# ---------------------------------------------------------------------------
# Distributor hierarchy
# ---------------------------------------------------------------------------

def relationship_key(principal_id, distributor_id=None) -> str:
    """Stable row key for the relationship table.

    Root rows use the principal id; child rows append the distributor id,
    and direct relationships append 'direct'.
    """
    distributor = safe_str(distributor_id)
    return f"{principal_id}:{distributor if distributor else 'direct'}"


def build_distributor_hierarchy(relationships: pd.DataFrame) -> list[dict]:
    """Partition flat relationships into principal roots with distributor children.

    Returns
    -------
    List of root dicts, sorted by principal name:
    {
        "key": "<principal_id>",
        "principal_id": ..., "principal_name": ..., "status": ...,
        "relationship_type": "HAS_DISTRIBUTOR" | "DIRECT",
        "last_contact": Timestamp | None,
        "children": [
            {"key": "<principal_id>:<distributor_id>", "distributor_id": ...,
             "distributor_name": ..., "last_contact": ...},
        ],
    }

    A principal that only has DIRECT rows yields a root with no children.
    Duplicate (principal, distributor) rows collapse into one child.
    """
    if relationships is None or relationships.empty:
        return []

    roots: dict[str, dict] = {}
    for _, row in relationships.iterrows():
        pid = row["principal_id"]
        if pid is None or pd.isna(pid):
            continue

        root = roots.get(pid)
        if root is None:
            root = {
                "key": str(pid),
                "principal_id": pid,
                "principal_name": safe_str(row.get("principal_name")) or "",
                "status": safe_str(row.get("status")),
                "relationship_type": "DIRECT",
                "last_contact": None,
                "children": {},
            }
            roots[pid] = root

        last_contact = normalise_date(row.get("principal_last_contact"))
        if last_contact is not None and (root["last_contact"] is None or last_contact > root["last_contact"]):
            root["last_contact"] = last_contact

        distributor_id = safe_str(row.get("distributor_id"))
        if distributor_id is None:
            continue

        root["relationship_type"] = "HAS_DISTRIBUTOR"
        key = relationship_key(pid, distributor_id)
        if key not in root["children"]:
            root["children"][key] = {
                "key": key,
                "parent_key": root["key"],
                "distributor_id": distributor_id,
                "distributor_name": safe_str(row.get("distributor_name")) or distributor_id,
                "status": safe_str(row.get("status")),
                "last_contact": normalise_date(row.get("distributor_last_contact")),
            }

    tree = []
    for root in sorted(roots.values(), key=lambda r: str(r["principal_name"]).lower()):
        children = sorted(root["children"].values(), key=lambda c: str(c["distributor_name"]).lower())
        tree.append({**root, "children": children})

    logger.info(
        "Built distributor hierarchy: %d principals, %d distributor links",
        len(tree), sum(len(r["children"]) for r in tree),
    )
    return tree


def flatten_hierarchy(
    tree: list[dict],
    expanded: Iterable[str] | None = None,
) -> pd.DataFrame:
    """Flatten the hierarchy into relationship-table rows.

    Parameters
    ----------
    tree : Output of build_distributor_hierarchy().
    expanded : Root keys whose children are shown. None expands every root.

    Returns
    -------
    DataFrame with HIERARCHY_TABLE_COLUMNS; depth 0 for principals,
    depth 1 for distributors.
    """
    if not tree:
        return _empty(HIERARCHY_TABLE_COLUMNS)

    expanded_keys = None if expanded is None else set(expanded)
    rows = []
    for root in tree:
        rows.append({
            "key": root["key"],
            "parent_key": None,
            "depth": 0,
            "principal_id": root["principal_id"],
            "principal_name": root["principal_name"],
            "distributor_id": None,
            "distributor_name": None,
            "relationship_type": root["relationship_type"],
            "status": root["status"],
            "child_count": len(root["children"]),
            "last_contact": root["last_contact"],
        })
        if expanded_keys is not None and root["key"] not in expanded_keys:
            continue
        for child in root["children"]:
            rows.append({
                "key": child["key"],
                "parent_key": root["key"],
                "depth": 1,
                "principal_id": root["principal_id"],
                "principal_name": root["principal_name"],
                "distributor_id": child["distributor_id"],
                "distributor_name": child["distributor_name"],
                "relationship_type": "HAS_DISTRIBUTOR",
                "status": child["status"],
                "child_count": 0,
                "last_contact": child["last_contact"],
            })

    return pd.DataFrame(rows, columns=HIERARCHY_TABLE_COLUMNS)
