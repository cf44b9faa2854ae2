"""
Timeline exports: CSV and JSON strings for download buttons, a plain
summary/detailed report dict, and a Word document version of the report.
"""

import csv
import json
import logging
from dataclasses import asdict
from pathlib import Path

import pandas as pd
from docx import Document

from .formatting import format_activity_date
from .loaders.utils import resolve_now
from .timeline import TimelineFilter, follow_up_entries, overdue_entries, summarise_timeline

logger = logging.getLogger(__name__)

CSV_HEADERS = [
    "Principal Name",
    "Activity Date",
    "Activity Type",
    "Subject",
    "Details",
    "Follow-up Required",
    "Follow-up Date",
]


def _active_filters(filt: TimelineFilter | None) -> dict:
    if filt is None or not filt.is_active():
        return {}
    out = {}
    for key, value in asdict(filt).items():
        if value is None or value is False or value == "" or value == []:
            continue
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        elif isinstance(value, pd.Timestamp):
            value = value.strftime("%Y-%m-%d")
        out[key] = str(value)
    return out


def export_timeline_csv(entries: pd.DataFrame, filt: TimelineFilter | None = None) -> str:
    """Timeline as quoted CSV; active filters are appended after a blank line."""
    table = pd.DataFrame(
        {
            "Principal Name": entries["principal_name"],
            "Activity Date": entries["activity_date"].map(lambda d: format_activity_date(d, "short")),
            "Activity Type": entries["activity_type"],
            "Subject": entries["activity_subject"],
            "Details": entries["activity_details"],
            "Follow-up Required": entries["follow_up_required"].map(lambda v: "Yes" if v else "No"),
            "Follow-up Date": entries["follow_up_date"].map(lambda d: format_activity_date(d, "short")),
        },
        columns=CSV_HEADERS,
    ) if not entries.empty else pd.DataFrame(columns=CSV_HEADERS)

    text = table.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")

    applied = _active_filters(filt)
    if applied:
        text += "\nFilters Applied:\n"
        text += "\n".join(f"{key}: {value}" for key, value in applied.items()) + "\n"
    return text


def export_timeline_json(
    entries: pd.DataFrame,
    filt: TimelineFilter | None = None,
    now=None,
) -> str:
    """Timeline entries, summary and export timestamp as indented JSON."""
    ref = resolve_now(now)
    records = json.loads(entries.to_json(orient="records", date_format="iso")) if not entries.empty else []
    summary = summarise_timeline(entries, ref)
    data = {
        "timeline_entries": records,
        "summary": summary,
        "export_date": ref.isoformat(),
    }
    applied = _active_filters(filt)
    if applied:
        data["applied_filters"] = applied
    return json.dumps(data, indent=2, default=str)


def generate_timeline_report(
    entries: pd.DataFrame,
    report_format: str = "summary",
    filt: TimelineFilter | None = None,
    now=None,
) -> dict:
    """Build a 'summary' or 'detailed' timeline report.

    Returns
    -------
    {"title": str, "content": list[str], "metadata": dict}
    """
    ref = resolve_now(now)
    summary = summarise_timeline(entries, ref)

    if report_format == "summary":
        start = summary["date_range"]["start"]
        end = summary["date_range"]["end"]
        busiest = summary["most_active_day"]
        content = [
            f"Total Entries: {summary['total_entries']}",
            f"Unique Principals: {summary['unique_principals']}",
            f"Date Range: {format_activity_date(start)} - {format_activity_date(end)}",
            f"Most Active Day: {busiest['date'] or 'N/A'} ({busiest['count']} activities)",
            f"Activity Trend: {summary['activity_trend']}",
            f"Follow-ups Required: {len(follow_up_entries(entries))}",
            f"Overdue Follow-ups: {len(overdue_entries(entries, ref))}",
        ]
        return {
            "title": "Principal Timeline Summary Report",
            "content": content,
            "metadata": {
                "generated_at": ref.isoformat(),
                "entry_count": summary["total_entries"],
                "principal_count": summary["unique_principals"],
            },
        }

    if report_format == "detailed":
        content = []
        ordered = entries.sort_values("activity_date", ascending=False) if not entries.empty else entries
        for _, entry in ordered.iterrows():
            lines = [
                f"{format_activity_date(entry['activity_date'], 'long')} - {entry['principal_name']}",
                f"Type: {entry['activity_type']}",
                f"Subject: {entry['activity_subject']}",
                f"Details: {entry['activity_details']}",
                f"Follow-up: {'Required' if entry['follow_up_required'] else 'Not required'}",
            ]
            if pd.notna(entry["follow_up_date"]):
                lines.append(f"Due: {format_activity_date(entry['follow_up_date'])}")
            content.append("\n".join(lines))
        return {
            "title": "Principal Timeline Detailed Report",
            "content": content,
            "metadata": {
                "generated_at": ref.isoformat(),
                "entry_count": int(len(entries)),
                "filters_applied": _active_filters(filt) or None,
            },
        }

    raise ValueError(f"Unknown report format: {report_format!r}")


def write_docx_report(report: dict, path: str | Path) -> Path:
    """Write a report from generate_timeline_report() to a .docx file."""
    path = Path(path)
    doc = Document()
    doc.add_heading(report["title"], level=1)
    doc.add_paragraph(f"Generated: {report['metadata']['generated_at']}")

    for block in report["content"]:
        lines = block.split("\n")
        doc.add_paragraph(lines[0], style="List Bullet" if len(lines) == 1 else None)
        for line in lines[1:]:
            doc.add_paragraph(line)

    meta = doc.add_table(rows=0, cols=2)
    for key, value in report["metadata"].items():
        cells = meta.add_row().cells
        cells[0].text = key
        cells[1].text = "" if value is None else str(value)

    try:
        doc.save(str(path))
    except OSError:
        logger.exception("Failed to write report to %s", path)
        raise
    logger.info("Wrote timeline report to %s", path)
    return path
