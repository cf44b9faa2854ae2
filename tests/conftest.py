import pandas as pd
import pytest

from principal_crm.transforms import (
    build_activity_summary,
    build_distributor_relationships,
    build_interactions,
    build_opportunities,
    build_product_performance,
    build_timeline,
)

# Tuesday
NOW = pd.Timestamp("2025-03-04 12:00:00")


def days_ago(days: float) -> pd.Timestamp:
    return NOW - pd.Timedelta(days=days)


SUMMARY_RECORDS = [
    {
        "principal_id": "p-1",
        "principal_name": "Acme Foods",
        "industry": "Meat Processing",
        "country": "US",
        "principal_status": "Active",
        "lead_score": 90,
        "engagement_score": 85,
        "activity_status": "ACTIVE",
        "contact_count": 4,
        "total_interactions": 10,
        "interactions_last_30_days": 4,
        "last_interaction_date": days_ago(2),
        "follow_ups_required": 1,
        "next_follow_up_date": "2025-03-06",
        "total_opportunities": 3,
        "active_opportunities": 2,
        "won_opportunities": 1,
        "product_count": 2,
        "active_product_count": 2,
        "primary_product_category": "Protein",
        "last_activity_date": days_ago(5),
        "principal_created_at": "2024-01-10",
    },
    {
        "principal_id": "p-2",
        "principal_name": "Beta Sauces",
        "industry": "Condiments",
        "country": "CA",
        "principal_status": "Prospect",
        "lead_score": 60,
        "engagement_score": 55,
        "activity_status": "MODERATE",
        "contact_count": 2,
        "total_interactions": 3,
        "last_interaction_date": days_ago(40),
        "total_opportunities": 1,
        "active_opportunities": 1,
        "product_count": 1,
        "primary_product_category": "Sauce",
        "last_activity_date": days_ago(45),
        "principal_created_at": "2024-06-01",
    },
    {
        "principal_id": "p-3",
        "principal_name": "Acme Dairy",
        "industry": "Dairy",
        "country": "US",
        "principal_status": "Active",
        "lead_score": None,
        "engagement_score": 30,
        "activity_status": "STALE",
        "contact_count": 1,
        "total_interactions": 1,
        "follow_ups_required": 2,
        "primary_product_category": "Dairy",
        "last_activity_date": days_ago(120),
        "principal_created_at": "2023-05-01",
    },
    {
        "principal_id": "p-4",
        "principal_name": "Delta Drinks",
        "industry": "Beverages",
        "country": "US",
        "principal_status": "Customer",
        "lead_score": 95,
        "engagement_score": 90,
        "activity_status": "NO_ACTIVITY",
        "primary_product_category": "Beverage",
        "principal_created_at": "2025-01-01",
    },
]

TIMELINE_RECORDS = [
    {
        "principal_id": "p-1", "principal_name": "Acme Foods",
        "activity_date": "2025-03-04T09:00:00", "activity_type": "INTERACTION",
        "activity_subject": "Pricing call", "activity_details": "Quarterly pricing",
        "source_id": "i-1", "source_table": "interactions",
        "follow_up_required": True, "follow_up_date": "2025-03-01",
    },
    {
        "principal_id": "p-1", "principal_name": "Acme Foods",
        "activity_date": "2025-03-04T10:00:00", "activity_type": "INTERACTION",
        "activity_subject": "Menu review", "activity_details": "",
        "source_id": "i-2", "source_table": "interactions",
    },
    {
        "principal_id": "p-2", "principal_name": "Beta Sauces",
        "activity_date": "2025-03-04T11:00:00", "activity_type": "OPPORTUNITY_CREATED",
        "activity_subject": "New listing", "activity_details": "Stage: New Lead",
        "source_id": "o-1", "source_table": "opportunities",
    },
    {
        "principal_id": "p-1", "principal_name": "Acme Foods",
        "activity_date": "2025-03-02T08:00:00", "activity_type": "CONTACT_UPDATE",
        "activity_subject": "Phone updated", "activity_details": "",
        "source_id": "c-1", "source_table": "contacts",
    },
    {
        "principal_id": "p-2", "principal_name": "Beta Sauces",
        "activity_date": "2025-02-20T08:00:00", "activity_type": "PRODUCT_ASSOCIATION",
        "activity_subject": "Sriracha added", "activity_details": "Sauce",
        "source_id": "prod-3", "source_table": "principal_products",
        "follow_up_required": True, "follow_up_date": "2025-03-10",
    },
]

RELATIONSHIP_RECORDS = [
    {"principal_id": "p-1", "principal_name": "Acme Foods", "distributor_id": "d-2",
     "distributor_name": "Zeta Distribution", "status": "Active",
     "principal_last_contact": days_ago(2), "distributor_last_contact": days_ago(10)},
    {"principal_id": "p-1", "principal_name": "Acme Foods", "distributor_id": "d-1",
     "distributor_name": "Alpha Distribution", "status": "Active",
     "principal_last_contact": days_ago(2), "distributor_last_contact": days_ago(30)},
    {"principal_id": "p-1", "principal_name": "Acme Foods", "distributor_id": "d-1",
     "distributor_name": "Alpha Distribution", "status": "Active"},
    {"principal_id": "p-2", "principal_name": "Beta Sauces", "distributor_id": None,
     "status": "Prospect", "principal_last_contact": days_ago(40)},
]

PRODUCT_RECORDS = [
    {"principal_id": "p-1", "product_id": "prod-1", "product_name": "Smoked Brisket",
     "product_category": "Protein", "total_opportunities": 4, "won_opportunities": 2,
     "recent_interactions": 1, "exclusive_rights": True, "total_value": 50000,
     "contract_start_date": days_ago(300), "contract_end_date": NOW + pd.Timedelta(days=10)},
    {"principal_id": "p-1", "product_id": "prod-2", "product_name": "Pulled Pork",
     "product_category": "Protein", "total_opportunities": 0, "won_opportunities": 0,
     "recent_interactions": 0, "exclusive_rights": False, "total_value": 0,
     "contract_start_date": days_ago(100), "contract_end_date": NOW + pd.Timedelta(days=200)},
    {"principal_id": "p-2", "product_id": "prod-3", "product_name": "Sriracha Glaze",
     "product_category": "Sauce", "total_opportunities": 2, "won_opportunities": 2,
     "recent_interactions": 3, "exclusive_rights": False, "total_value": 20000,
     "contract_start_date": days_ago(400), "contract_end_date": days_ago(5)},
]

INTERACTION_RECORDS = [
    {"interaction_id": "i-1", "principal_id": "p-1", "interaction_date": "2025-02-20",
     "interaction_type": "EMAIL", "subject": "Price list", "follow_up_needed": True,
     "follow_up_date": "2025-03-01"},
    {"interaction_id": "i-2", "principal_id": "p-1", "interaction_date": "2025-03-03",
     "interaction_type": "CALL", "subject": "Volume call", "follow_up_needed": True,
     "follow_up_date": "2025-03-04T15:00:00"},
    {"interaction_id": "i-3", "principal_id": "p-2", "interaction_date": "2025-03-01",
     "interaction_type": "DEMO", "subject": "Sauce demo", "opportunity_id": "o-1",
     "follow_up_needed": False},
    {"interaction_id": "i-4", "principal_id": "p-3", "interaction_date": "2025-03-02",
     "interaction_type": "IN_PERSON", "subject": "Plant visit", "follow_up_needed": True,
     "follow_up_date": "2025-03-13"},
]

OPPORTUNITY_RECORDS = [
    {"opportunity_id": "o-1", "principal_id": "p-2", "product_id": "prod-3",
     "name": "Beta - Sriracha", "stage": "Closed - Won", "probability_percent": 100,
     "estimated_value": 20000, "created_at": "2025-01-15"},
    {"opportunity_id": "o-2", "principal_id": "p-1", "product_id": "prod-1",
     "name": "Acme - Brisket", "stage": "Demo Scheduled", "probability_percent": 70,
     "estimated_value": 40000, "created_at": "2025-02-10"},
]


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def summaries():
    return build_activity_summary(SUMMARY_RECORDS, NOW)


@pytest.fixture()
def timeline():
    return build_timeline(TIMELINE_RECORDS)


@pytest.fixture()
def relationships():
    return build_distributor_relationships(RELATIONSHIP_RECORDS)


@pytest.fixture()
def products():
    return build_product_performance(PRODUCT_RECORDS, NOW)


@pytest.fixture()
def interactions():
    return build_interactions(INTERACTION_RECORDS)


@pytest.fixture()
def opportunities():
    return build_opportunities(OPPORTUNITY_RECORDS)


@pytest.fixture()
def dataset(summaries, timeline, relationships, products, interactions, opportunities):
    return {
        "summaries": summaries,
        "timeline": timeline,
        "relationships": relationships,
        "products": products,
        "interactions": interactions,
        "opportunities": opportunities,
    }
