"""
Loader for view exports saved from the CRM (Excel or CSV).

Exports carry a title block above the header row, so the header is
located by matching known column names rather than by position. Column
names are snake_cased; values are returned raw for the transforms layer
to normalise.
"""

import logging
from pathlib import Path

import openpyxl
import pandas as pd

from .utils import find_header_row, to_snake_case

logger = logging.getLogger(__name__)

# Columns that identify each view's header row
VIEW_SIGNATURES: dict[str, set[str]] = {
    "summaries": {"principal_id", "principal_name", "engagement_score", "activity_status", "lead_score"},
    "timeline": {"principal_id", "activity_date", "activity_type", "activity_subject", "source_table"},
    "relationships": {"principal_id", "distributor_id", "distributor_name", "relationship_type"},
    "products": {"product_id", "product_name", "product_category", "win_rate", "contract_status"},
    "interactions": {"interaction_id", "interaction_date", "interaction_type", "subject", "follow_up_needed"},
    "opportunities": {"opportunity_id", "stage", "probability_percent", "estimated_value"},
}


def _load_excel(path: Path, signature: set[str], sheet_name: str | None) -> pd.DataFrame:
    try:
        wb = openpyxl.load_workbook(path, data_only=True)
    except Exception:
        logger.exception("Failed to open export workbook: %s", path)
        raise

    if sheet_name is not None and sheet_name in wb.sheetnames:
        ws = wb[sheet_name]
    else:
        if sheet_name is not None:
            logger.warning("Sheet '%s' not found, using '%s'", sheet_name, wb.sheetnames[0])
        ws = wb[wb.sheetnames[0]]

    header_row = find_header_row(ws, signature)
    if header_row is None:
        logger.warning("No header row found in %s, assuming row 1", path.name)
        header_row = 1

    headers = [to_snake_case(c.value) if c.value is not None else None for c in ws[header_row]]
    rows = []
    for values in ws.iter_rows(min_row=header_row + 1, values_only=True):
        if all(v is None for v in values):
            continue
        rows.append({h: v for h, v in zip(headers, values) if h})

    columns = [h for h in headers if h]
    df = pd.DataFrame(rows, columns=columns, dtype=object)
    return df.where(df.notna(), None)


def _load_csv(path: Path) -> pd.DataFrame:
    try:
        df = pd.read_csv(path, dtype=object, keep_default_na=True)
    except (OSError, pd.errors.ParserError, UnicodeDecodeError):
        logger.exception("Failed to read export CSV: %s", path)
        raise
    df.columns = [to_snake_case(c) for c in df.columns]
    return df.dropna(how="all").astype(object).where(lambda d: d.notna(), None)


def load_view_export(path: str | Path, view: str, sheet_name: str | None = None) -> list[dict]:
    """Load an exported view as raw records.

    Parameters
    ----------
    path : .xlsx or .csv file.
    view : One of VIEW_SIGNATURES (summaries, timeline, relationships,
        products, interactions, opportunities).
    sheet_name : Excel sheet to read; the first sheet when omitted.

    Returns
    -------
    List of dicts with snake_case keys, one per non-empty data row. Missing
    cells are None.
    """
    if view not in VIEW_SIGNATURES:
        raise ValueError(f"Unknown view: {view!r}")

    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in (".xlsx", ".xlsm"):
        df = _load_excel(path, VIEW_SIGNATURES[view], sheet_name)
    elif suffix == ".csv":
        df = _load_csv(path)
    else:
        raise ValueError(f"Unsupported export format: {path.suffix or path.name}")

    records = df.to_dict("records")
    logger.info("Loaded %d %s records from %s", len(records), view, path.name)
    return records
