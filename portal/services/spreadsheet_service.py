"""
CSV / Excel result sheets, read into the same shape the PDF extractor returns.
"""
import logging
import os
from typing import Any, Dict, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

SPREADSHEET_EXTENSIONS = {"csv", "xlsx"}


def file_extension(filename: str) -> str:
    return filename.rsplit(".", 1)[1].lower() if "." in (filename or "") else ""


def _read_frame(path: str, ext: str) -> pd.DataFrame:
    if ext == "csv":
        return pd.read_csv(path, header=None, dtype=str, keep_default_na=False, skip_blank_lines=True)
    return pd.read_excel(path, header=None, dtype=str, engine="openpyxl")


def frame_to_rows(df: pd.DataFrame) -> List[List[str]]:
    """All cells as stripped strings; rows with no content are dropped."""
    df = df.fillna("")
    rows: List[List[str]] = []
    for values in df.itertuples(index=False, name=None):
        row = [str(v).strip() for v in values]
        if any(row):
            rows.append(row)
    return rows


def read_spreadsheet(path: str, filename: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Read a CSV or XLSX file into `{rawText, structuredTables, metadata}`.

    Raises ValueError for an unsupported extension; returns None when the
    file cannot be parsed.
    """
    ext = file_extension(filename or os.path.basename(path))
    if ext not in SPREADSHEET_EXTENSIONS:
        raise ValueError(f"Unsupported spreadsheet type: {ext or 'unknown'}")

    try:
        df = _read_frame(path, ext)
    except Exception as e:
        logger.error("Error reading spreadsheet %s: %s", filename or path, e)
        return None

    rows = frame_to_rows(df)
    logger.info("Spreadsheet %s: %d rows, %d columns", filename or path, len(rows), df.shape[1])

    tables = []
    if rows:
        tables.append({"page": 1, "rows": rows, "totalRows": len(rows), "source": "spreadsheet"})
    return {
        "rawText": "\n".join("\t".join(r) for r in rows),
        "structuredTables": tables,
        "metadata": {
            "pageCount": 1,
            "extractionMethod": "spreadsheet",
        },
    }
