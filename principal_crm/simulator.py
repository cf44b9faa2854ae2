"""
Simulated data generator for the principal CRM dashboard.

Produces API-shaped records (plain dicts, as the PostgREST views return
them) for a small food-service principal portfolio. All names and values
are synthetic. generate_dataset() runs the records through the normalisers
in transforms.py and returns dashboard-ready DataFrames.
"""

import logging

import numpy as np
import pandas as pd

from .config import OPPORTUNITY_STAGES, ORGANIZATION_STATUSES
from .kpis import determine_contract_status
from .loaders.utils import resolve_now
from .transforms import (
    build_activity_summary,
    build_distributor_relationships,
    build_interactions,
    build_opportunities,
    build_product_performance,
    build_timeline,
)

logger = logging.getLogger(__name__)

# Seed for reproducibility
_RNG = np.random.default_rng(42)

# ---------------------------------------------------------------------------
# Portfolio tables
# ---------------------------------------------------------------------------
_PRINCIPALS = [
    # name, industry, country, primary category
    ("Harvest Ridge Foods", "Meat Processing", "US", "Protein"),
    ("Coastal Catch Seafood", "Seafood", "US", "Protein"),
    ("Golden Prairie Mills", "Grain & Milling", "CA", "Bakery"),
    ("Sierra Spice Co", "Spices", "MX", "Seasoning"),
    ("Blue Valley Dairy", "Dairy", "US", "Dairy"),
    ("Northwind Beverages", "Beverages", "CA", "Beverage"),
    ("Crescent Sauce Works", "Condiments", "US", "Sauce"),
    ("Ember & Oak Smokehouse", "Meat Processing", "US", "Protein"),
    ("Polar Peak Frozen", "Frozen Foods", "US", "Frozen"),
    ("Orchard Lane Snacks", "Snacks", "US", "Snack"),
    ("Riverbend Creamery", "Dairy", "US", "Dairy"),
    ("Saffron Table Imports", "Specialty Foods", "GB", "Seasoning"),
    ("Cedar Hollow Bakery", "Bakery", "US", "Bakery"),
    ("Redrock Hot Sauce", "Condiments", "US", "Sauce"),
    ("Glacier Springs Water", "Beverages", "CA", "Beverage"),
    ("Pioneer Poultry", "Poultry", "US", "Protein"),
]

_DISTRIBUTORS = [
    "Sysco Metro", "US Foods Central", "Performance Foodservice",
    "Gordon Food Service", "Shamrock Foods", "Ben E. Keith",
    "Reinhart Foodservice", "Cheney Brothers",
]

_PRODUCT_NAMES = {
    "Protein": ["Smoked Brisket", "Pulled Pork", "Chicken Thighs", "Wild Salmon Fillet"],
    "Sauce": ["Chipotle BBQ Sauce", "Garlic Aioli", "Sriracha Glaze"],
    "Seasoning": ["Steak Rub", "Cajun Blend", "Saffron Threads"],
    "Beverage": ["Sparkling Lemonade", "Cold Brew Concentrate", "Mineral Water"],
    "Snack": ["Kettle Chips", "Trail Mix", "Pretzel Bites"],
    "Frozen": ["Frozen Pierogi", "Vegetable Medley", "Waffle Fries"],
    "Dairy": ["Aged Cheddar", "Greek Yogurt", "Cultured Butter"],
    "Bakery": ["Brioche Buns", "Sourdough Loaf", "Flour Tortillas"],
    "Other": ["Compostable Trays"],
}

_SUBJECTS = {
    "EMAIL": ["Pricing sheet sent", "Menu feedback request", "Catalog update"],
    "CALL": ["Quarterly check-in", "Volume forecast call", "Pricing discussion"],
    "IN_PERSON": ["Kitchen visit", "Trade show meeting", "Chef tasting"],
    "DEMO": ["Product demo", "Sample cutting", "Menu trial"],
    "FOLLOW_UP": ["Sample follow-up", "Proposal follow-up", "Contract follow-up"],
}

# Activity profile -> (probability, max days since last touch, interactions range)
_ACTIVITY_PROFILES = {
    "hot": (0.35, 20, (4, 10)),
    "warm": (0.30, 75, (2, 6)),
    "cold": (0.20, 300, (1, 3)),
    "dormant": (0.15, None, (0, 0)),
}

_INTERACTION_TYPE_WEIGHTS = {
    "EMAIL": 0.35, "CALL": 0.30, "IN_PERSON": 0.15, "DEMO": 0.10, "FOLLOW_UP": 0.10,
}


def _rng(rng: np.random.Generator | None) -> np.random.Generator:
    return rng if rng is not None else _RNG


def _days_ago(now: pd.Timestamp, days: float) -> pd.Timestamp:
    return (now - pd.Timedelta(days=float(days))).floor("min")


def generate_principals(
    now=None,
    n_principals: int = 12,
    rng: np.random.Generator | None = None,
) -> list[dict]:
    """Base principal organisations with an activity profile.

    The profile drives how recent and how dense the generated activity is:
    hot principals were touched in the last 20 days, dormant ones never.
    """
    ref = resolve_now(now)
    rng = _rng(rng)
    profiles = list(_ACTIVITY_PROFILES)
    weights = [p[0] for p in _ACTIVITY_PROFILES.values()]

    principals = []
    for i, (name, industry, country, category) in enumerate(_PRINCIPALS[:n_principals], start=1):
        profile = str(rng.choice(profiles, p=weights))
        principals.append({
            "principal_id": f"p-{i:03d}",
            "principal_name": name,
            "organization": name,
            "organization_type": "Principal",
            "principal_status": str(rng.choice(ORGANIZATION_STATUSES, p=[0.45, 0.05, 0.2, 0.15, 0.1, 0.05])),
            "industry": industry,
            "country": country,
            "primary_product_category": category,
            "lead_score": int(rng.integers(20, 100)),
            "is_principal": True,
            "is_distributor": False,
            "contact_count": int(rng.integers(1, 8)),
            "principal_created_at": _days_ago(ref, rng.uniform(200, 900)),
            "profile": profile,
        })
    return principals


def generate_interactions(
    principals: list[dict],
    now=None,
    rng: np.random.Generator | None = None,
) -> list[dict]:
    """Logged interactions, roughly a third with a follow-up a week out."""
    ref = resolve_now(now)
    rng = _rng(rng)
    types = list(_INTERACTION_TYPE_WEIGHTS)
    type_weights = list(_INTERACTION_TYPE_WEIGHTS.values())

    records = []
    seq = 0
    for principal in principals:
        _, max_days, (low, high) = _ACTIVITY_PROFILES[principal["profile"]]
        if max_days is None:
            continue
        count = int(rng.integers(low, high + 1))
        # anchor the most recent touch inside the profile window
        latest = rng.uniform(0, max_days)
        for k in range(count):
            seq += 1
            age = latest + (0 if k == 0 else rng.uniform(1, 120))
            interaction_type = str(rng.choice(types, p=type_weights))
            date = _days_ago(ref, age)
            follow_up = bool(rng.random() < 0.3)
            records.append({
                "interaction_id": f"int-{seq:04d}",
                "principal_id": principal["principal_id"],
                "interaction_date": date,
                "interaction_type": interaction_type,
                "subject": str(rng.choice(_SUBJECTS[interaction_type])),
                "opportunity_id": None,
                "follow_up_needed": follow_up,
                "follow_up_date": date + pd.Timedelta(days=7) if follow_up else None,
            })

    logger.info("Generated %d interactions", len(records))
    return records


def generate_products(
    principals: list[dict],
    now=None,
    rng: np.random.Generator | None = None,
) -> list[dict]:
    """Products carried for each principal, with contract windows."""
    ref = resolve_now(now)
    rng = _rng(rng)

    records = []
    seq = 0
    for principal in principals:
        category = principal["primary_product_category"]
        names = _PRODUCT_NAMES.get(category, _PRODUCT_NAMES["Other"])
        count = int(rng.integers(1, len(names) + 1))
        for name in names[:count]:
            seq += 1
            start = _days_ago(ref, rng.uniform(-30, 500))
            end = start + pd.Timedelta(days=int(rng.choice([180, 365, 730])))
            records.append({
                "principal_id": principal["principal_id"],
                "product_id": f"prod-{seq:03d}",
                "product_name": name,
                "product_category": category,
                "exclusive_rights": bool(rng.random() < 0.35),
                "contract_start_date": start,
                "contract_end_date": end,
            })
    return records


def generate_opportunities(
    principals: list[dict],
    products: list[dict],
    now=None,
    rng: np.random.Generator | None = None,
) -> list[dict]:
    """Opportunities per active principal, each tied to one of its products."""
    ref = resolve_now(now)
    rng = _rng(rng)
    by_principal: dict[str, list[dict]] = {}
    for product in products:
        by_principal.setdefault(product["principal_id"], []).append(product)

    records = []
    seq = 0
    for principal in principals:
        _, max_days, _ = _ACTIVITY_PROFILES[principal["profile"]]
        own_products = by_principal.get(principal["principal_id"], [])
        if max_days is None or not own_products:
            continue
        for _ in range(int(rng.integers(0, 4))):
            seq += 1
            stage_idx = int(rng.integers(0, len(OPPORTUNITY_STAGES)))
            stage = OPPORTUNITY_STAGES[stage_idx]
            product = own_products[int(rng.integers(0, len(own_products)))]
            records.append({
                "opportunity_id": f"opp-{seq:04d}",
                "principal_id": principal["principal_id"],
                "product_id": product["product_id"],
                "name": f"{principal['principal_name']} - {product['product_name']}",
                "stage": stage,
                "probability_percent": 100 if stage == "Closed - Won" else min(90, 10 + stage_idx * 15),
                "estimated_value": round(float(rng.uniform(5_000, 150_000)), -2),
                "created_at": _days_ago(ref, rng.uniform(0, max_days * 2)),
            })

    logger.info("Generated %d opportunities", len(records))
    return records


def generate_product_performance(
    products: list[dict],
    opportunities: list[dict],
    now=None,
    rng: np.random.Generator | None = None,
) -> list[dict]:
    """Product rows with opportunity counts and value rolled up per product.

    Win rate, performance score and contract status are left for the
    normaliser to derive.
    """
    rng = _rng(rng)
    records = []
    for product in products:
        opps = [o for o in opportunities if o["product_id"] == product["product_id"]]
        won = [o for o in opps if o["stage"] == "Closed - Won"]
        records.append({
            **product,
            "total_opportunities": len(opps),
            "won_opportunities": len(won),
            "active_opportunities": len(opps) - len(won),
            "recent_interactions": int(rng.integers(0, 6)) if opps else 0,
            "total_value": float(sum(o["estimated_value"] for o in won)),
        })
    return records


def generate_distributor_relationships(
    principals: list[dict],
    interactions: list[dict],
    now=None,
    rng: np.random.Generator | None = None,
) -> list[dict]:
    """Zero to three distributors per principal; principals with none are DIRECT."""
    ref = resolve_now(now)
    rng = _rng(rng)
    last_contact: dict[str, pd.Timestamp] = {}
    for i in interactions:
        pid = i["principal_id"]
        if pid not in last_contact or i["interaction_date"] > last_contact[pid]:
            last_contact[pid] = i["interaction_date"]

    records = []
    for principal in principals:
        count = int(rng.integers(0, 4))
        picks = rng.choice(len(_DISTRIBUTORS), size=count, replace=False) if count else []
        base = {
            "principal_id": principal["principal_id"],
            "principal_name": principal["principal_name"],
            "status": principal["principal_status"],
            "principal_last_contact": last_contact.get(principal["principal_id"]),
        }
        if not count:
            records.append({**base, "distributor_id": None, "distributor_name": None,
                            "relationship_type": "DIRECT", "distributor_last_contact": None})
            continue
        for idx in picks:
            records.append({
                **base,
                "distributor_id": f"d-{int(idx) + 1:03d}",
                "distributor_name": _DISTRIBUTORS[int(idx)],
                "relationship_type": "HAS_DISTRIBUTOR",
                "distributor_last_contact": _days_ago(ref, rng.uniform(1, 180)),
            })
    return records


def generate_timeline(
    principals: list[dict],
    interactions: list[dict],
    opportunities: list[dict],
    products: list[dict],
    now=None,
    rng: np.random.Generator | None = None,
) -> list[dict]:
    """Unified activity feed built from interactions, opportunities, products and contact edits."""
    ref = resolve_now(now)
    rng = _rng(rng)
    names = {p["principal_id"]: p["principal_name"] for p in principals}

    records = []
    for i in interactions:
        records.append({
            "principal_id": i["principal_id"],
            "principal_name": names.get(i["principal_id"]),
            "activity_date": i["interaction_date"],
            "activity_type": "INTERACTION",
            "activity_subject": i["subject"],
            "activity_details": f"{i['interaction_type'].replace('_', ' ').title()} interaction",
            "source_id": i["interaction_id"],
            "source_table": "interactions",
            "activity_status": "FOLLOW_UP_REQUIRED" if i["follow_up_needed"] else "COMPLETED",
            "follow_up_required": i["follow_up_needed"],
            "follow_up_date": i["follow_up_date"],
        })
    for o in opportunities:
        records.append({
            "principal_id": o["principal_id"],
            "principal_name": names.get(o["principal_id"]),
            "activity_date": o["created_at"],
            "activity_type": "OPPORTUNITY_CREATED",
            "activity_subject": o["name"],
            "activity_details": f"Stage: {o['stage']}",
            "source_id": o["opportunity_id"],
            "source_table": "opportunities",
            "activity_status": o["stage"],
        })
    for p in products:
        if p["contract_start_date"] > ref:
            continue
        records.append({
            "principal_id": p["principal_id"],
            "principal_name": names.get(p["principal_id"]),
            "activity_date": p["contract_start_date"],
            "activity_type": "PRODUCT_ASSOCIATION",
            "activity_subject": f"{p['product_name']} added",
            "activity_details": p["product_category"],
            "source_id": p["product_id"],
            "source_table": "principal_products",
            "activity_status": "ACTIVE",
        })
    for principal in principals:
        if principal["profile"] == "dormant":
            continue
        records.append({
            "principal_id": principal["principal_id"],
            "principal_name": principal["principal_name"],
            "activity_date": _days_ago(ref, rng.uniform(0, 60)),
            "activity_type": "CONTACT_UPDATE",
            "activity_subject": "Contact details updated",
            "activity_details": "",
            "source_id": f"c-{principal['principal_id']}",
            "source_table": "contacts",
            "activity_status": "UPDATED",
        })

    logger.info("Generated %d timeline entries", len(records))
    return records


def generate_activity_summaries(
    principals: list[dict],
    interactions: list[dict],
    opportunities: list[dict],
    products: list[dict],
    now=None,
) -> list[dict]:
    """Roll interactions, opportunities and products up to one summary per principal.

    Engagement score and activity status are left blank so the normaliser
    derives them from the counts and last activity date.
    """
    ref = resolve_now(now)
    cutoff_30 = ref - pd.Timedelta(days=30)

    records = []
    for principal in principals:
        pid = principal["principal_id"]
        its = [i for i in interactions if i["principal_id"] == pid]
        opps = [o for o in opportunities if o["principal_id"] == pid]
        prods = [p for p in products if p["principal_id"] == pid]
        won = [o for o in opps if o["stage"] == "Closed - Won"]
        pending = [i for i in its if i["follow_up_needed"]]
        upcoming = [i["follow_up_date"] for i in pending if i["follow_up_date"] >= ref]
        active_products = [
            p for p in prods
            if determine_contract_status(p["contract_start_date"], p["contract_end_date"], ref)
            in ("ACTIVE", "EXPIRING_SOON")
        ]

        last_interaction = max((i["interaction_date"] for i in its), default=None)
        activity_dates = [i["interaction_date"] for i in its] + [o["created_at"] for o in opps]

        records.append({
            key: principal[key] for key in (
                "principal_id", "principal_name", "organization", "organization_type",
                "principal_status", "industry", "country", "lead_score",
                "is_principal", "is_distributor", "contact_count",
                "primary_product_category", "principal_created_at",
            )
        } | {
            "total_interactions": len(its),
            "interactions_last_30_days": sum(1 for i in its if i["interaction_date"] >= cutoff_30),
            "last_interaction_date": last_interaction,
            "next_follow_up_date": min(upcoming, default=None),
            "follow_ups_required": len(pending),
            "total_opportunities": len(opps),
            "active_opportunities": len(opps) - len(won),
            "won_opportunities": len(won),
            "product_count": len(prods),
            "active_product_count": len(active_products),
            "last_activity_date": max(activity_dates, default=None),
        })
    return records


def generate_raw_dataset(now=None, n_principals: int = 12, seed: int | None = 42) -> dict[str, list[dict]]:
    """All mock record sets, keyed like the API views."""
    ref = resolve_now(now)
    rng = np.random.default_rng(seed) if seed is not None else _RNG

    principals = generate_principals(ref, n_principals, rng)
    interactions = generate_interactions(principals, ref, rng)
    products = generate_products(principals, ref, rng)
    opportunities = generate_opportunities(principals, products, ref, rng)
    summaries = generate_activity_summaries(principals, interactions, opportunities, products, ref)

    return {
        "summaries": summaries,
        "timeline": generate_timeline(principals, interactions, opportunities, products, ref, rng),
        "relationships": generate_distributor_relationships(principals, interactions, ref, rng),
        "products": generate_product_performance(products, opportunities, ref, rng),
        "interactions": interactions,
        "opportunities": opportunities,
    }


def generate_dataset(now=None, n_principals: int = 12, seed: int | None = 42) -> dict[str, pd.DataFrame]:
    """Normalised mock dataset for the dashboard.

    Returns
    -------
    Dict of DataFrames keyed summaries, timeline, relationships, products,
    interactions, opportunities.
    """
    ref = resolve_now(now)
    raw = generate_raw_dataset(ref, n_principals, seed)
    dataset = {
        "summaries": build_activity_summary(raw["summaries"], ref),
        "timeline": build_timeline(raw["timeline"]),
        "relationships": build_distributor_relationships(raw["relationships"]),
        "products": build_product_performance(raw["products"], ref),
        "interactions": build_interactions(raw["interactions"]),
        "opportunities": build_opportunities(raw["opportunities"]),
    }
    logger.info("Generated mock dataset for %d principals", len(dataset["summaries"]))
    return dataset
