"""Heuristic table structuring for extracted result sheets.

Every function here is pure: rows in, headers/rows/scores out. The PDF,
OCR and spreadsheet readers all produce candidate tables in the same shape
(a list of rows, each a list of cell strings) and hand them to
`clean_and_structure_data`.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

HEADER_SCORE_THRESHOLD = 0.5
HEADER_SCAN_ROWS = 3
SAMPLE_ROWS = 5
OCR_CONFIDENCE_FACTOR = 0.7
TEXT_FALLBACK_CONFIDENCE = 0.3
MULTI_PAGE_HEADER_CONFIDENCE = 0.8
MULTI_PAGE_NO_HEADER_CONFIDENCE = 0.3

HEADER_KEYWORD_RE = re.compile(
    r"\b(s\.?\s?no|sl|sno|roll|reg|regd|register|registration|name|student|subject|code|"
    r"marks?|grade|score|result|id|no|number|credits?|total|status|sem|semester)\b",
    re.IGNORECASE,
)
SUBJECT_CODE_RE = re.compile(r"^[A-Z]{2,4}\d{3,4}[A-Z]?$")
NUMERIC_SUBJECT_CODE_RE = re.compile(r"^\d{3,6}$")
GRADE_RE = re.compile(r"^(?:[A-F][+-]?|O|RA|AB|ABS|U|W|PASS|FAIL)$", re.IGNORECASE)
MARK_RE = re.compile(r"^\d{1,3}(?:\.\d+)?$")
NUMERIC_RE = re.compile(r"^\d+(?:\.\d+)?$")
SERIAL_RE = re.compile(r"^\d{1,3}$")
NAME_RE = re.compile(r"^[A-Z][a-z]+\.? [A-Z]")
UPPER_NAME_RE = re.compile(r"^[A-Z][A-Z.]+(?: [A-Z][A-Z.]*)+$")
REGISTRATION_RES = (
    re.compile(r"^\d{10,}"),
    # longer than any numeric subject code
    re.compile(r"^\d{7,}$"),
    re.compile(r"^[A-Z]{1,3}\d{5,}"),
    re.compile(r"^\d{4}[A-Z]{2}\d{4}"),
)
GENERIC_HEADER_RE = re.compile(r"^Column \d+$")
EXAM_KEYWORD_RE = re.compile(r"reg|registration|student|name|subject|mark|grade|result|examination", re.IGNORECASE)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


# ============ Value patterns ============

def is_registration_number(text: str) -> bool:
    s = _cell(text)
    return any(p.match(s) for p in REGISTRATION_RES)


def is_student_name(text: str) -> bool:
    s = _cell(text)
    if NAME_RE.match(s):
        return True
    return bool(UPPER_NAME_RE.match(s)) and not SUBJECT_CODE_RE.match(s)


def is_grade(text: str) -> bool:
    return bool(GRADE_RE.match(_cell(text)))


def is_subject_code(text: str) -> bool:
    return bool(SUBJECT_CODE_RE.match(_cell(text).upper()))


def looks_like_data(text: str) -> bool:
    """True for cells shaped like a student record value rather than a label."""
    s = _cell(text)
    if not s:
        return False
    if s[0].isdigit():
        return True
    return is_registration_number(s) or is_grade(s) or is_student_name(s) or bool(NUMERIC_RE.match(s))


# ============ Header detection ============

def calculate_header_score(row: Sequence[Any]) -> float:
    """
    Likelihood that `row` is a header row.

    Keyword cells count 1.0, subject-code cells 0.75, other plain labels 0.25
    and data-shaped cells nothing. The sum is divided by the total cell count,
    so sparse rows (titles spread over padded columns) stay low.
    """
    cells = [_cell(c) for c in row]
    if not cells:
        return 0.0

    score = 0.0
    for text in cells:
        if not text:
            continue
        if HEADER_KEYWORD_RE.search(text):
            score += 1.0
        elif SUBJECT_CODE_RE.match(text):
            score += 0.75
        elif looks_like_data(text):
            continue
        else:
            score += 0.25
    return score / len(cells)


def find_header_row(rows: Sequence[Sequence[Any]]) -> int:
    """Index of the best header among the first rows, or -1 when none scores above the threshold."""
    if not rows:
        return -1

    best_index = -1
    best_score = HEADER_SCORE_THRESHOLD
    for i, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        score = calculate_header_score(row)
        logger.debug("Row %d header score: %.2f - %s", i, score, list(row))
        if score > best_score:
            best_score = score
            best_index = i
    return best_index


def clean_header_text(header: Any) -> str:
    text = re.sub(r"[^\w\s]", " ", _cell(header))
    words = []
    for word in text.split():
        if any(ch.isdigit() for ch in word) and any(ch.isalpha() for ch in word):
            words.append(word.upper())
        else:
            words.append(word[:1].upper() + word[1:].lower())
    return " ".join(words) or "Column"


def unique_headers(headers: Sequence[str]) -> List[str]:
    seen: Dict[str, int] = {}
    out = []
    for h in headers:
        if h in seen:
            seen[h] += 1
            candidate = f"{h} ({seen[h]})"
            while candidate in seen:
                seen[h] += 1
                candidate = f"{h} ({seen[h]})"
            seen[candidate] = 1
            out.append(candidate)
        else:
            seen[h] = 1
            out.append(h)
    return out


def _column_values(rows: Sequence[Sequence[Any]], col_index: int) -> List[str]:
    values = []
    for row in rows:
        value = _cell(row[col_index]) if col_index < len(row) else ""
        if value:
            values.append(value)
    return values


def guess_column_header(values: Sequence[str], col_index: int) -> Optional[str]:
    """Label for a column from its sample values, None when nothing matches."""
    if not values:
        return None
    if any(is_registration_number(v) for v in values):
        return "Registration Number"
    if any(is_student_name(v) for v in values):
        return "Student Name"
    if any(is_grade(v) for v in values):
        return "Grade"
    if col_index == 0 and all(SERIAL_RE.match(v) for v in values):
        return "S.No"
    if any(NUMERIC_SUBJECT_CODE_RE.match(v) for v in values):
        return "Subject Code"
    if any(NUMERIC_RE.match(v) for v in values):
        return "Marks"
    if col_index == 0:
        return "S.No"
    return None


def generate_smart_headers(rows: Sequence[Sequence[Any]], max_columns: int) -> List[str]:
    sample = rows[:SAMPLE_ROWS]
    headers = []
    for col_index in range(max_columns):
        label = guess_column_header(_column_values(sample, col_index), col_index)
        headers.append(label or f"Column {col_index + 1}")
    return unique_headers(headers)


# ============ Multi-page consolidation ============

def _same_row(a: Sequence[Any], b: Sequence[Any]) -> bool:
    left = [_cell(c).lower() for c in a if _cell(c)]
    right = [_cell(c).lower() for c in b if _cell(c)]
    return bool(left) and left == right


def consolidate_multi_page_table(pages: Sequence[Sequence[Sequence[Any]]]) -> Dict[str, Any]:
    """
    Merge per-page rows into one table.

    The first page that has a detectable header supplies the master header;
    later pages drop a leading row that repeats it or scores as a header.
    """
    master_header: Optional[List[str]] = None
    data_rows: List[List[str]] = []
    page_breakdown: Dict[str, Dict[str, Any]] = {}

    for page_number, page_rows in enumerate(pages, start=1):
        rows = [[_cell(c) for c in r] for r in page_rows if any(_cell(c) for c in r)]
        header_row = None
        body = rows
        if rows:
            if master_header is None:
                idx = find_header_row(rows)
                if idx >= 0:
                    header_row = rows[idx]
                    body = rows[idx + 1:]
            elif _same_row(rows[0], master_header) or calculate_header_score(rows[0]) > HEADER_SCORE_THRESHOLD:
                header_row = rows[0]
                body = rows[1:]
        if header_row is not None and master_header is None:
            master_header = header_row

        page_breakdown[str(page_number)] = {
            "totalRows": len(rows),
            "hasHeader": header_row is not None,
            "dataRows": len(body),
        }
        data_rows.extend(body)

    widths = [len(r) for r in data_rows]
    if master_header:
        widths.append(len(master_header))
    max_columns = max(widths) if widths else 0
    padded = [row + [""] * (max_columns - len(row)) for row in data_rows]

    if master_header:
        headers = [
            clean_header_text(master_header[i]) if i < len(master_header) and master_header[i] else f"Column {i + 1}"
            for i in range(max_columns)
        ]
        confidence = MULTI_PAGE_HEADER_CONFIDENCE
    else:
        headers = generate_smart_headers(padded, max_columns)
        confidence = MULTI_PAGE_NO_HEADER_CONFIDENCE

    logger.info("Consolidated %d pages into %d rows with %d columns", len(pages), len(padded), max_columns)
    return {
        "page": "all",
        "rows": padded,
        "headerInfo": {
            "detectedHeaders": unique_headers(headers),
            "hasHeader": master_header is not None,
            "confidence": confidence,
        },
        "pageBreakdown": page_breakdown,
    }


# ============ Table selection and structuring ============

def score_table(table: Dict[str, Any]) -> float:
    rows = table.get("rows") or []
    if not rows:
        return 0.0
    counts = [len(r) for r in rows]
    avg = sum(counts) / len(counts)
    if avg == 0:
        return 0.0
    variance = sum((c - avg) ** 2 for c in counts) / len(counts)
    consistency = max(0.0, 1 - variance / avg)
    quality = sum(1 for r in rows if any(_cell(c) for c in r)) / len(rows)
    return consistency * 0.6 + quality * 0.4


def find_best_table(tables: Sequence[Dict[str, Any]]) -> Tuple[Optional[Dict[str, Any]], float]:
    best = None
    best_score = 0.0
    for table in tables:
        if not table.get("rows"):
            continue
        if table.get("page") == "all":
            return table, score_table(table)
        score = score_table(table)
        if score > best_score:
            best = table
            best_score = score
    return best, best_score


def _build_row(headers: Sequence[str], raw_row: Sequence[Any], width: int, original_index: int, source: str) -> Dict[str, Any]:
    normalized = [_cell(raw_row[i]) if i < len(raw_row) else "" for i in range(width)]
    data = {h: normalized[i] if i < len(normalized) else "" for i, h in enumerate(headers)}
    issues = []
    if not any(data.values()):
        issues.append(f"Row {original_index}: Completely empty row")
    return {
        "data": data,
        "issues": issues,
        "originalIndex": original_index,
        "originalRow": [_cell(c) for c in raw_row],
        "columnCount": width,
        "source": source,
    }


def structure_table_data(table: Dict[str, Any]) -> Dict[str, Any]:
    result = {"headers": [], "rows": [], "metadata": {"confidence": 0.0, "totalRows": 0, "issues": []}}
    rows = table.get("rows") or []
    if not rows:
        return result

    if table.get("page") == "all" and table.get("headerInfo"):
        header_info = table["headerInfo"]
        headers = unique_headers(header_info.get("detectedHeaders") or [])
        width = len(headers)
        built = [_build_row(headers, row, width, i + 1, "multi-page") for i, row in enumerate(rows)]
        result["headers"] = headers
        result["rows"] = [r for r in built if any(r["data"].values())]
        result["metadata"].update({
            "isMultiPage": True,
            "pageBreakdown": table.get("pageBreakdown") or {},
            "totalPages": len(table.get("pageBreakdown") or {}),
            "headerRowIndex": 0 if header_info.get("hasHeader") else -1,
            "maxColumns": width,
            "confidence": header_info.get("confidence", MULTI_PAGE_NO_HEADER_CONFIDENCE),
        })
    else:
        source = table.get("source") or "single-page"
        max_columns = max(len(r) for r in rows)
        header_index = find_header_row(rows)
        if header_index >= 0:
            header_row = rows[header_index]
            headers = [
                clean_header_text(header_row[i]) if i < len(header_row) and _cell(header_row[i]) else f"Column {i + 1}"
                for i in range(max_columns)
            ]
            headers = unique_headers(headers)
            data_rows = rows[header_index + 1:]
            offset = header_index + 1
        else:
            headers = generate_smart_headers(rows, max_columns)
            data_rows = rows
            offset = 0
        logger.debug("Headers for page %s: %s", table.get("page"), headers)

        built = [_build_row(headers, row, max_columns, offset + i + 1, source) for i, row in enumerate(data_rows)]
        result["headers"] = headers
        result["rows"] = [r for r in built if any(r["data"].values())]
        result["metadata"].update({
            "isMultiPage": False,
            "headerRowIndex": header_index,
            "maxColumns": max_columns,
        })

    result["metadata"]["totalRows"] = len(result["rows"])
    return post_process_table_structure(result)


def structure_from_text(raw_text: str) -> Dict[str, Any]:
    result = {
        "headers": ["Content"],
        "rows": [],
        "metadata": {
            "confidence": TEXT_FALLBACK_CONFIDENCE,
            "totalRows": 0,
            "extractionMethod": "text",
            "issues": ["No table structure detected, displaying as text"],
        },
    }
    if not raw_text:
        return result

    lines = [ln.strip() for ln in raw_text.splitlines() if ln.strip()]
    result["rows"] = [
        {
            "data": {"Content": line},
            "issues": [],
            "originalIndex": i + 1,
            "originalRow": [line],
            "columnCount": 1,
            "source": "text_fallback",
        }
        for i, line in enumerate(lines)
    ]
    result["metadata"]["totalRows"] = len(result["rows"])
    return result


# ============ Exam-result post-processing ============

def analyze_data_patterns(headers: Sequence[str], sample_rows: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    patterns = {
        "isExamResult": False,
        "hasRegistrationNumbers": False,
        "hasStudentNames": False,
        "hasGrades": False,
    }
    if not sample_rows:
        return patterns

    values = [v for row in sample_rows for v in (row.get("data") or {}).values() if v]
    patterns["hasRegistrationNumbers"] = any(is_registration_number(v) for v in values)
    patterns["hasStudentNames"] = any(is_student_name(v) for v in values)
    patterns["hasGrades"] = any(is_grade(v) for v in values)
    text = " ".join(list(headers) + values)
    patterns["isExamResult"] = bool(EXAM_KEYWORD_RE.search(text)) and (
        patterns["hasRegistrationNumbers"] or patterns["hasStudentNames"]
    )
    return patterns


def post_process_table_structure(result: Dict[str, Any]) -> Dict[str, Any]:
    """Rename generic `Column N` headers of exam-result tables from their values."""
    headers = result.get("headers") or []
    rows = result.get("rows") or []
    if not rows or not any(GENERIC_HEADER_RE.match(h) for h in headers):
        return result

    sample = rows[:SAMPLE_ROWS]
    if not analyze_data_patterns(headers, sample)["isExamResult"]:
        return result

    renamed = []
    for col_index, header in enumerate(headers):
        if GENERIC_HEADER_RE.match(header):
            values = [_cell((r.get("data") or {}).get(header)) for r in sample]
            label = guess_column_header([v for v in values if v], col_index)
            renamed.append(label or header)
        else:
            renamed.append(header)
    renamed = unique_headers(renamed)
    if renamed == list(headers):
        return result

    mapping = dict(zip(headers, renamed))
    for row in rows:
        row["data"] = {mapping.get(k, k): v for k, v in (row.get("data") or {}).items()}
    result["headers"] = renamed
    logger.info("Improved exam result headers: %s", renamed)
    return result


def clean_and_structure_data(extracted_data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Turn extractor output (`rawText`, `structuredTables`, `metadata`) into an
    ExtractedResult: `{headers, rows, metadata}` with a confidence in [0, 1].
    """
    if not extracted_data:
        return None

    base_meta = dict(extracted_data.get("metadata") or {})
    result = {
        "headers": [],
        "rows": [],
        "metadata": {**base_meta, "confidence": 0.0, "totalRows": 0, "issues": list(base_meta.get("issues") or [])},
    }
    method = base_meta.get("extractionMethod") or "spatial"

    try:
        structured = None
        table_score = 0.0
        tables = extracted_data.get("structuredTables") or []
        if tables:
            best, table_score = find_best_table(tables)
            if best is not None:
                structured = structure_table_data(best)

        if structured and structured["rows"]:
            meta = structured["metadata"]
            if meta.get("isMultiPage"):
                confidence = meta.get("confidence") or 0.0
            else:
                confidence = table_score * (1.0 if meta.get("headerRowIndex", -1) >= 0 else 0.8)
            if method == "ocr":
                confidence *= OCR_CONFIDENCE_FACTOR
            result["headers"] = structured["headers"]
            result["rows"] = structured["rows"]
            result["metadata"].update({k: v for k, v in meta.items() if k != "issues"})
            result["metadata"]["issues"].extend(meta.get("issues") or [])
            result["metadata"]["confidence"] = confidence
        elif extracted_data.get("rawText"):
            structured = structure_from_text(extracted_data["rawText"])
            result["headers"] = structured["headers"]
            result["rows"] = structured["rows"]
            result["metadata"]["issues"].extend(structured["metadata"]["issues"])
            result["metadata"]["extractionMethod"] = "text"
            confidence = structured["metadata"]["confidence"]
            if method == "ocr":
                confidence *= OCR_CONFIDENCE_FACTOR
            result["metadata"]["confidence"] = confidence
    except Exception as e:
        logger.exception("Data structuring failed")
        result["metadata"]["issues"].append(f"Structuring error: {e}")

    result["metadata"]["confidence"] = round(min(1.0, max(0.0, float(result["metadata"]["confidence"]))), 3)
    result["metadata"]["totalRows"] = len(result["rows"])
    return result
