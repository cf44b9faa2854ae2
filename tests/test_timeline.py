import pandas as pd
import pytest

from conftest import NOW
from principal_crm.timeline import (
    TimelineFilter,
    activity_type_distribution,
    apply_timeline_filters,
    get_entries_for_date,
    group_by,
    group_by_date,
    group_by_date_and_type,
    follow_up_entries,
    overdue_entries,
    paginate,
    recent_activity,
    sort_timeline,
    summarise_timeline,
)
from principal_crm.transforms import TIMELINE_COLUMNS, build_timeline


def test_group_by_date_and_type(timeline):
    grouped = group_by_date_and_type(timeline)

    assert len(grouped) == 4
    first = grouped.iloc[0]
    assert first["group_key"] == "2025-03-04|INTERACTION"
    assert first["count"] == 2
    assert first["principal_count"] == 1
    assert first["latest_activity"] == pd.Timestamp("2025-03-04 10:00")
    assert list(grouped["group_key"])[-1] == "2025-02-20|PRODUCT_ASSOCIATION"


def test_group_by_date_and_type_empty():
    grouped = group_by_date_and_type(pd.DataFrame(columns=TIMELINE_COLUMNS))
    assert grouped.empty
    assert "group_key" in grouped.columns


def test_group_by_date_newest_first(timeline):
    groups = group_by_date(timeline)

    assert [g["group_id"] for g in groups] == ["2025-03-04", "2025-03-02", "2025-02-20"]
    today = groups[0]
    assert today["label"] == "Tuesday, March 4, 2025"
    assert today["count"] == 3
    assert today["summary"] == {"interactions": 2, "opportunities": 1, "contacts": 0, "products": 0}
    assert "_day" not in today["entries"].columns


def test_group_by_principal_busiest_first(timeline):
    groups = group_by(timeline, "principal")
    assert [g["group_id"] for g in groups] == ["p-1", "p-2"]
    assert groups[0]["label"] == "Acme Foods"
    assert groups[0]["count"] == 3


def test_group_by_rejects_unknown_criteria(timeline):
    with pytest.raises(ValueError):
        group_by(timeline, "weekday")


class TestFilters:
    def test_no_filter_returns_everything(self, timeline):
        assert len(apply_timeline_filters(timeline, None, NOW)) == 5
        assert not TimelineFilter().is_active()

    def test_activity_types(self, timeline):
        filt = TimelineFilter(activity_types=["INTERACTION"])
        assert filt.is_active()
        assert len(apply_timeline_filters(timeline, filt, NOW)) == 2

    def test_search_matches_subject_and_principal(self, timeline):
        assert list(apply_timeline_filters(timeline, TimelineFilter(search="menu"), NOW)["source_id"]) == ["i-2"]
        assert len(apply_timeline_filters(timeline, TimelineFilter(search="BETA"), NOW)) == 2

    def test_search_matches_details(self, timeline):
        result = apply_timeline_filters(timeline, TimelineFilter(search="quarterly"), NOW)
        assert list(result["source_id"]) == ["i-1"]

    def test_date_range_includes_whole_end_day(self, timeline):
        filt = TimelineFilter(start_date="2025-03-02", end_date="2025-03-02")
        assert list(apply_timeline_filters(timeline, filt, NOW)["source_id"]) == ["c-1"]

    def test_date_range_needs_both_bounds(self, timeline):
        filt = TimelineFilter(start_date="2025-03-03")
        assert len(apply_timeline_filters(timeline, filt, NOW)) == 5

    def test_overdue_only(self, timeline):
        filt = TimelineFilter(overdue_only=True)
        assert list(apply_timeline_filters(timeline, filt, NOW)["source_id"]) == ["i-1"]

    def test_follow_up_required(self, timeline):
        filt = TimelineFilter(follow_up_required=True)
        assert len(apply_timeline_filters(timeline, filt, NOW)) == 2
        filt = TimelineFilter(follow_up_required=False)
        assert len(apply_timeline_filters(timeline, filt, NOW)) == 3

    def test_principal_and_source(self, timeline):
        filt = TimelineFilter(principal_ids=["p-1"], source_tables=["interactions"])
        assert len(apply_timeline_filters(timeline, filt, NOW)) == 2


class TestSortAndPaginate:
    def test_sort_ascending(self, timeline):
        ordered = sort_timeline(timeline, "activity_date", "asc")
        assert ordered.iloc[0]["source_id"] == "prod-3"
        assert ordered.iloc[-1]["source_id"] == "o-1"

    def test_sort_rejects_unknown_field(self, timeline):
        with pytest.raises(ValueError):
            sort_timeline(timeline, "principal_name")
        with pytest.raises(ValueError):
            sort_timeline(timeline, "activity_date", "sideways")

    def test_paginate_middle_page(self, timeline):
        rows, page = paginate(timeline, page=2, limit=2)
        assert len(rows) == 2
        assert page.total == 5
        assert page.total_pages == 3
        assert page.has_next
        assert page.has_previous

    def test_paginate_last_page(self, timeline):
        rows, page = paginate(timeline, page=3, limit=2)
        assert len(rows) == 1
        assert not page.has_next

    def test_paginate_empty(self):
        rows, page = paginate(pd.DataFrame(columns=TIMELINE_COLUMNS), page=1, limit=10)
        assert rows.empty
        assert page.total_pages == 0
        assert not page.has_next
        assert not page.has_previous

    def test_paginate_rejects_bad_page(self, timeline):
        with pytest.raises(ValueError):
            paginate(timeline, page=0)
        with pytest.raises(ValueError):
            paginate(timeline, limit=0)


class TestSummary:
    def test_summary(self, timeline):
        summary = summarise_timeline(timeline, NOW)
        assert summary["total_entries"] == 5
        assert summary["unique_principals"] == 2
        assert summary["most_active_day"] == {"date": "2025-03-04", "count": 3}
        assert summary["activity_trend"] == "increasing"
        assert summary["follow_ups_required"] == 2
        assert summary["overdue_follow_ups"] == 1
        assert summary["date_range"]["start"] == pd.Timestamp("2025-02-20 08:00")

    def test_empty_summary(self):
        summary = summarise_timeline(pd.DataFrame(columns=TIMELINE_COLUMNS), NOW)
        assert summary["total_entries"] == 0
        assert summary["activity_trend"] == "stable"
        assert summary["most_active_day"]["date"] is None

    def test_recent_activity(self, timeline):
        recent = recent_activity(timeline, NOW, limit=2)
        assert list(recent["source_id"]) == ["o-1", "i-2"]

    def test_future_entries_are_not_recent(self, timeline):
        future = build_timeline([
            {"principal_id": "p-9", "principal_name": "Zeta", "activity_date": "2025-03-20T09:00:00",
             "activity_type": "INTERACTION", "activity_subject": "Planned visit"},
        ])
        combined = pd.concat([timeline, future], ignore_index=True)
        assert "Planned visit" not in set(recent_activity(combined, NOW)["activity_subject"])

        quiet = future.assign(activity_date=[pd.Timestamp("2025-03-05 09:00")])
        assert summarise_timeline(quiet, NOW)["activity_trend"] == "stable"

    def test_follow_up_entries(self, timeline):
        assert list(follow_up_entries(timeline)["source_id"]) == ["i-1", "prod-3"]

    def test_overdue_entries(self, timeline):
        assert list(overdue_entries(timeline, NOW)["source_id"]) == ["i-1"]

    def test_type_distribution(self, timeline):
        dist = activity_type_distribution(timeline)
        assert dist["INTERACTION"]["count"] == 2
        assert dist["INTERACTION"]["percentage"] == 40.0
        assert dist["INTERACTION"]["icon"] == "chat"
        assert dist["PRODUCT_ASSOCIATION"]["color"] == "orange"

    def test_entries_for_date(self, timeline):
        assert len(get_entries_for_date(timeline, "2025-03-04")) == 3
        assert get_entries_for_date(timeline, None).empty
