"""
Principal CRM — end-to-end analytics run.

Loads the dataset (simulated by default, or the REST views when
CRM_DATA_SOURCE=api), builds the dashboard outputs and prints smoke-test
summaries. Optionally writes timeline CSV/JSON/Word exports.

Usage:
    python main.py
    python main.py --export-dir out/
"""

import argparse
import logging
from pathlib import Path

from principal_crm.config import load_settings
from principal_crm.dashboard import (
    get_distributor_table,
    get_follow_up_queue,
    get_principal_detail,
    get_principal_overview,
    get_product_table,
    get_selector_options,
    load_dataset_from_api,
)
from principal_crm.filters import PrincipalFilters, SortState, to_query_params
from principal_crm.formatting import format_number, format_relative_date
from principal_crm.loaders import PrincipalActivityApi
from principal_crm.loaders.utils import utc_now
from principal_crm.reports import (
    export_timeline_csv,
    export_timeline_json,
    generate_timeline_report,
    write_docx_report,
)
from principal_crm.simulator import generate_dataset
from principal_crm.timeline import group_by_date_and_type, summarise_timeline

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _load(now) -> tuple[dict, dict]:
    settings = load_settings()
    if not settings.use_api:
        return generate_dataset(now), {}
    api = PrincipalActivityApi.from_settings(settings)
    try:
        return load_dataset_from_api(api, now)
    finally:
        api.close()


def main(export_dir: Path | None = None) -> None:
    """Run the analytics pipeline and print smoke-test outputs."""
    now = utc_now()

    print("=" * 70)
    print("  PRINCIPAL CRM — Activity Dashboard")
    print("  Analytics Pipeline Smoke Test")
    print("=" * 70)
    print()

    # ------------------------------------------------------------------
    # 1. Load data
    # ------------------------------------------------------------------
    print("[ 1 ] LOADING DATA")
    print("-" * 40)

    dataset, errors = _load(now)
    for view, frame in dataset.items():
        print(f"  {view:14s} {len(frame):5d} rows")
    for view, message in errors.items():
        print(f"  [ERROR] {view}: {message}")

    summaries = dataset["summaries"]

    # ------------------------------------------------------------------
    # 2. Overview
    # ------------------------------------------------------------------
    print("\n")
    print("[ 2 ] PORTFOLIO OVERVIEW")
    print("-" * 40)

    overview = get_principal_overview(summaries)
    for card in overview["cards"]:
        print(f"  {card['label']:22s} {card['value']!s:>8}  ({card['color']})")
    print(f"\n  Status distribution:  {overview['kpis']['activity_status_distribution']}")
    print(f"  Engagement breakdown: {overview['engagement_breakdown']}")
    print("\n  Funnel:")
    for stage in overview["funnel"]:
        print(f"    {stage['stage']:20s} {stage['count']:4d}  {format_number(stage['conversion_pct'], 'percentage')}")

    # ------------------------------------------------------------------
    # 3. Principal selector
    # ------------------------------------------------------------------
    print("\n")
    print("[ 3 ] PRINCIPAL SELECTOR")
    print("-" * 40)

    filters = PrincipalFilters(activity_status=["ACTIVE", "MODERATE"])
    sort = SortState()
    options = get_selector_options(summaries, filters, sort, now)
    print(f"\n  Filters: {to_query_params(filters, sort)}")
    if not options.empty:
        print(options[[
            "principal_name", "activity_status", "engagement_score",
            "engagement_color", "last_activity", "is_recommended",
        ]].to_string(index=False))

    # ------------------------------------------------------------------
    # 4. Principal detail
    # ------------------------------------------------------------------
    print("\n")
    print("[ 4 ] PRINCIPAL DETAIL")
    print("-" * 40)

    if not summaries.empty:
        top_id = summaries.sort_values("engagement_score", ascending=False).iloc[0]["principal_id"]
        detail = get_principal_detail(top_id, dataset, now)
        s = detail["summary"]
        print(f"\n  {s['principal_name']} ({s['activity_status']}, score {s['engagement_score']:.1f})")
        print(f"  Last activity: {format_relative_date(s['last_activity_date'], now)}")
        print(f"  Products: {detail['product_summary']}")
        print(f"  Metrics:  win rate {detail['kpi_metrics']['win_rate']}%, "
              f"pipeline {format_number(detail['kpi_metrics']['pipeline_value'], 'currency')}")
        for group in detail["timeline"][:3]:
            print(f"    {group['label']}: {group['count']} entries {group['summary']}")

    print("\n  Distributor relationships:")
    table = get_distributor_table(dataset["relationships"], now=now)
    if not table.empty:
        print(table[["depth", "principal_name", "distributor_name", "relationship_type", "child_count"]]
              .head(15).to_string(index=False))

    print("\n  Top products:")
    products = get_product_table(dataset["products"])
    if not products.empty:
        print(products[["product_name", "product_category", "win_rate", "performance_score", "contract_status"]]
              .head(10).to_string(index=False))

    # ------------------------------------------------------------------
    # 5. Timeline and follow-ups
    # ------------------------------------------------------------------
    print("\n")
    print("[ 5 ] TIMELINE & FOLLOW-UPS")
    print("-" * 40)

    timeline = dataset["timeline"]
    print(f"\n  Summary: {summarise_timeline(timeline, now)}")
    grouped = group_by_date_and_type(timeline)
    if not grouped.empty:
        print(grouped.head(10).to_string(index=False))

    queue = get_follow_up_queue(dataset["interactions"], summaries, now)
    print(f"\n  Follow-up queue: {len(queue)} items")
    if not queue.empty:
        print(queue[["principal_name", "interaction_type", "due", "priority"]].head(10).to_string(index=False))

    # ------------------------------------------------------------------
    # 6. Exports
    # ------------------------------------------------------------------
    if export_dir is not None:
        print("\n")
        print("[ 6 ] EXPORTS")
        print("-" * 40)
        export_dir.mkdir(parents=True, exist_ok=True)
        (export_dir / "timeline.csv").write_text(export_timeline_csv(timeline), encoding="utf-8")
        (export_dir / "timeline.json").write_text(export_timeline_json(timeline, now=now), encoding="utf-8")
        report = generate_timeline_report(timeline, "summary", now=now)
        write_docx_report(report, export_dir / "timeline_summary.docx")
        print(f"  Wrote exports to {export_dir}")

    print("\n" + "=" * 70)
    print("  Pipeline complete.")
    print("=" * 70)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Principal CRM analytics smoke run")
    parser.add_argument("--export-dir", type=Path, default=None, help="Write timeline exports here")
    args = parser.parse_args()
    main(args.export_dir)
