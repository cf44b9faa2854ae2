import pandas as pd

from conftest import NOW, days_ago
from principal_crm.transforms import (
    ACTIVITY_SUMMARY_COLUMNS,
    HIERARCHY_TABLE_COLUMNS,
    OPPORTUNITY_COLUMNS,
    PRODUCT_PERFORMANCE_COLUMNS,
    TIMELINE_COLUMNS,
    assign_timeline_rank,
    build_activity_summary,
    build_distributor_hierarchy,
    build_distributor_relationships,
    build_interactions,
    build_opportunities,
    build_product_performance,
    build_timeline,
    flatten_hierarchy,
    relationship_key,
)


class TestActivitySummary:
    def test_duplicate_principals_keep_first(self):
        df = build_activity_summary(
            [
                {"principal_id": "p", "principal_name": "First", "engagement_score": 60},
                {"principal_id": "p", "principal_name": "Second", "engagement_score": 20},
            ],
            NOW,
        )
        assert list(df["principal_name"]) == ["First"]
        assert list(df.index) == [0]

    def test_schema_and_normalisation(self, summaries):
        assert list(summaries.columns) == ACTIVITY_SUMMARY_COLUMNS
        assert list(summaries["activity_status"]) == ["ACTIVE", "MODERATE", "LOW", "NO_ACTIVITY"]
        # organization falls back to the principal name
        assert summaries.iloc[0]["organization"] == "Acme Foods"
        assert summaries.iloc[3]["product_count"] == 0
        assert pd.api.types.is_datetime64_any_dtype(summaries["last_activity_date"])

    def test_missing_score_and_status_are_derived(self):
        df = build_activity_summary(
            [{
                "id": "p-9",
                "name": "Gamma Grains",
                "lead_score": 50,
                "interactions_last_30_days": 2,
                "active_opportunities": 1,
                "active_product_count": 1,
                "last_activity_date": days_ago(45),
            }],
            NOW,
        )
        row = df.iloc[0]
        assert row["principal_id"] == "p-9"
        assert row["principal_name"] == "Gamma Grains"
        assert row["engagement_score"] == 25.2
        assert row["activity_status"] == "MODERATE"

    def test_scores_are_clamped(self):
        df = build_activity_summary(
            [{"principal_id": "p-9", "engagement_score": 140, "lead_score": -10}], NOW
        )
        assert df.iloc[0]["engagement_score"] == 100.0
        assert df.iloc[0]["lead_score"] == 0.0
        assert df.iloc[0]["activity_status"] == "NO_ACTIVITY"

    def test_rows_without_id_are_skipped(self):
        df = build_activity_summary([{"principal_name": "Orphan"}], NOW)
        assert df.empty
        assert list(df.columns) == ACTIVITY_SUMMARY_COLUMNS

    def test_empty_input(self):
        assert build_activity_summary(None, NOW).empty
        assert build_activity_summary([], NOW).empty


class TestTimeline:
    def test_rank_assigned_per_principal(self, timeline):
        assert list(timeline.columns) == TIMELINE_COLUMNS
        ranks = dict(zip(timeline["source_id"], timeline["timeline_rank"]))
        assert ranks == {"i-1": 2, "i-2": 1, "o-1": 1, "c-1": 3, "prod-3": 2}

    def test_supplied_rank_is_kept(self):
        df = build_timeline([
            {"principal_id": "p-1", "activity_date": "2025-03-01", "timeline_rank": 7},
        ])
        assert df.iloc[0]["timeline_rank"] == 7
        assert df.iloc[0]["activity_type"] == "INTERACTION"

    def test_missing_ranks_filled_around_supplied_ones(self):
        df = build_timeline([
            {"principal_id": "p-1", "activity_date": "2025-03-01", "timeline_rank": 7},
            {"principal_id": "p-1", "activity_date": "2025-03-02"},
        ])
        assert list(df["timeline_rank"]) == [7, 1]

    def test_assign_rank_newest_first(self, timeline):
        ranked = assign_timeline_rank(timeline.drop(columns="timeline_rank"))
        p1 = ranked[ranked["principal_id"] == "p-1"].sort_values("timeline_rank")
        assert list(p1["source_id"]) == ["i-2", "i-1", "c-1"]
        assert assign_timeline_rank(timeline.iloc[0:0]).empty

    def test_invalid_dates_are_dropped(self):
        df = build_timeline([
            {"principal_id": "p-1", "activity_date": "not a date"},
            {"principal_id": "p-1", "activity_date": None},
            {"principal_id": "p-1", "activity_date": "2025-03-04T10:00:00Z"},
        ])
        assert len(df) == 1
        assert df.iloc[0]["activity_date"] == pd.Timestamp("2025-03-04 10:00")

    def test_empty(self):
        df = build_timeline([])
        assert df.empty
        assert list(df.columns) == TIMELINE_COLUMNS


class TestProductsAndOpportunities:
    def test_derived_product_metrics(self, products):
        assert list(products.columns) == PRODUCT_PERFORMANCE_COLUMNS
        by_id = products.set_index("product_id")
        assert by_id.loc["prod-1", "win_rate"] == 50.0
        assert by_id.loc["prod-1", "performance_score"] == 38.0
        assert by_id.loc["prod-1", "contract_status"] == "EXPIRING_SOON"
        assert by_id.loc["prod-2", "contract_status"] == "ACTIVE"
        assert by_id.loc["prod-3", "performance_score"] == 61.0
        assert by_id.loc["prod-3", "contract_status"] == "EXPIRED"

    def test_upstream_field_names(self):
        df = build_product_performance(
            [{
                "product_id": "x",
                "opportunities_for_product": 5,
                "won_opportunities_for_product": 1,
                "product_performance_score": 77,
                "contract_status": "pending",
            }],
            NOW,
        )
        row = df.iloc[0]
        assert row["total_opportunities"] == 5
        assert row["win_rate"] == 20.0
        assert row["performance_score"] == 77.0
        assert row["contract_status"] == "PENDING"
        assert row["product_category"] == "Other"

    def test_opportunities(self, opportunities):
        assert list(opportunities.columns) == OPPORTUNITY_COLUMNS
        assert list(opportunities["is_won"]) == [True, False]

    def test_opportunity_api_fields(self):
        df = build_opportunities([
            {"id": "o-9", "principal_organization_id": "p-1", "probability_percent": 140},
        ])
        row = df.iloc[0]
        assert row["opportunity_id"] == "o-9"
        assert row["principal_id"] == "p-1"
        assert row["stage"] == "New Lead"
        assert row["probability_percent"] == 100.0
        assert not row["is_won"]

    def test_interaction_api_fields(self):
        df = build_interactions([
            {"id": "i-9", "organization_id": "p-1", "interaction_type": "call", "follow_up_needed": "yes"},
        ])
        row = df.iloc[0]
        assert row["interaction_id"] == "i-9"
        assert row["principal_id"] == "p-1"
        assert row["interaction_type"] == "CALL"
        assert row["follow_up_needed"]


class TestHierarchy:
    def test_relationship_type_derived(self, relationships):
        assert list(relationships["relationship_type"]) == [
            "HAS_DISTRIBUTOR", "HAS_DISTRIBUTOR", "HAS_DISTRIBUTOR", "DIRECT",
        ]

    def test_keys(self):
        assert relationship_key("p-1", "d-1") == "p-1:d-1"
        assert relationship_key("p-1", None) == "p-1:direct"
        assert relationship_key("p-1", "") == "p-1:direct"

    def test_tree_dedupes_children(self, relationships):
        tree = build_distributor_hierarchy(relationships)
        assert [r["key"] for r in tree] == ["p-1", "p-2"]
        acme = tree[0]
        assert [c["distributor_name"] for c in acme["children"]] == ["Alpha Distribution", "Zeta Distribution"]
        assert acme["last_contact"] == days_ago(2)
        assert acme["children"][0]["last_contact"] == days_ago(30)
        assert tree[1]["children"] == []
        assert tree[1]["relationship_type"] == "DIRECT"

    def test_flatten(self, relationships):
        tree = build_distributor_hierarchy(relationships)
        flat = flatten_hierarchy(tree)
        assert list(flat.columns) == HIERARCHY_TABLE_COLUMNS
        assert list(flat["parent_key"].fillna("")) == ["", "p-1", "p-1", ""]

    def test_empty(self):
        assert build_distributor_hierarchy(build_distributor_relationships([])) == []
        assert flatten_hierarchy([]).empty
