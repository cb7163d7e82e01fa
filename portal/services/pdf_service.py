"""PDF text extraction: positional table reconstruction with an OCR fallback.

PyMuPDF supplies word boxes, which are merged into phrases, grouped into
rows by vertical position and into columns by horizontal position. When a
PDF has no text layer (scanned sheets) the pages are rendered and passed
through tesseract instead.
"""
from __future__ import annotations

import io
import logging
import os
import re
import shutil
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF
import PyPDF2
import pytesseract
from PIL import Image

from portal.services.table_service import consolidate_multi_page_table

logger = logging.getLogger(__name__)

# Distances in PDF points
PHRASE_GAP = 6.0
Y_TOLERANCE = 3.0
X_TOLERANCE = 12.0

OCR_DPI = 220
SKIPPABLE_HEADER_KEYWORDS = (
    "anna university",
    "bonafide certificate",
    "provisional certificate",
    "consolidated statement",
)

# Ensure pytesseract can find the tesseract binary
try:
    if shutil.which("tesseract") is None:
        for cand in ("/usr/bin/tesseract", "/usr/local/bin/tesseract"):
            if os.path.exists(cand):
                pytesseract.pytesseract.tesseract_cmd = cand
                break
except Exception:
    pass


@dataclass
class TextElement:
    x: float
    y: float
    text: str
    width: float = 0.0
    height: float = 0.0


# ============ Spatial grouping ============

def page_text_elements(page: "fitz.Page", phrase_gap: float = PHRASE_GAP) -> List[TextElement]:
    """Words on the same line closer than `phrase_gap` become one element."""
    words = sorted(page.get_text("words"), key=lambda w: (w[5], w[6], w[0]))
    elements: List[TextElement] = []
    current: Optional[TextElement] = None
    current_line = None
    for x0, y0, x1, y1, word, block_no, line_no, _ in words:
        text = (word or "").strip()
        if not text:
            continue
        line = (block_no, line_no)
        if current is not None and line == current_line and x0 - (current.x + current.width) <= phrase_gap:
            current.text = f"{current.text} {text}"
            current.width = x1 - current.x
            current.height = max(current.height, y1 - y0)
            continue
        current = TextElement(x=x0, y=(y0 + y1) / 2, text=text, width=x1 - x0, height=y1 - y0)
        current_line = line
        elements.append(current)
    return elements


def group_rows(elements: Sequence[TextElement], y_tolerance: float = Y_TOLERANCE) -> List[List[TextElement]]:
    groups: List[Tuple[float, List[TextElement]]] = []
    for element in sorted(elements, key=lambda e: e.y):
        for group_y, members in groups:
            if abs(group_y - element.y) <= y_tolerance:
                members.append(element)
                break
        else:
            groups.append((element.y, [element]))
    groups.sort(key=lambda g: g[0])
    return [sorted(members, key=lambda e: e.x) for _, members in groups]


def determine_column_boundaries(x_positions: Sequence[float], x_tolerance: float = X_TOLERANCE) -> List[float]:
    unique_x = sorted(set(x_positions))
    if not unique_x:
        return []
    boundaries = [unique_x[0]]
    for x in unique_x[1:]:
        if x - boundaries[-1] > x_tolerance:
            boundaries.append(x)
    return boundaries


def assign_elements_to_columns(
    row: Sequence[TextElement], boundaries: Sequence[float], x_tolerance: float = X_TOLERANCE
) -> List[str]:
    if not boundaries:
        return [el.text for el in row]

    cells = [""] * len(boundaries)
    for element in row:
        index = next((i for i, b in enumerate(boundaries) if abs(element.x - b) < x_tolerance), None)
        if index is None:
            index = min(range(len(boundaries)), key=lambda i: abs(element.x - boundaries[i]))
        cells[index] = f"{cells[index]} {element.text}".strip()
    return cells


def is_skippable_header(cells: Sequence[str]) -> bool:
    row_text = " ".join(cells).lower()
    return any(keyword in row_text for keyword in SKIPPABLE_HEADER_KEYWORDS)


def create_table_from_spatial_grouping(elements: Sequence[TextElement], page_number: int) -> Optional[Dict[str, Any]]:
    if not elements:
        return None

    rows = group_rows(elements)
    boundaries = determine_column_boundaries([el.x for row in rows for el in row])
    logger.debug("Page %d: %d rows, %d column boundaries", page_number, len(rows), len(boundaries))

    table_rows = []
    for row in rows:
        cells = assign_elements_to_columns(row, boundaries)
        if is_skippable_header(cells):
            logger.debug("Page %d: skipped boilerplate row %s", page_number, cells)
            continue
        table_rows.append(cells)

    if not table_rows:
        return None
    return {
        "page": page_number,
        "rows": table_rows,
        "totalRows": len(table_rows),
        "metadata": {
            "originalElements": len(elements),
            "columnCount": len(boundaries),
        },
    }


# ============ Text layer ============

def extract_pdf_text(file_storage) -> str:
    try:
        reader = PyPDF2.PdfReader(file_storage)
        parts: List[str] = []
        for page in reader.pages:
            parts.append(page.extract_text() or "")
        return "\n".join(parts).strip()
    except Exception as e:
        logger.warning("PyPDF2 text extraction failed: %s", e)
        return ""


def extract_pdf_data(pdf_bytes: bytes) -> Optional[Dict[str, Any]]:
    """
    Positional extraction. Returns `{rawText, structuredTables, metadata}` or
    None when the document cannot be opened or parsed.
    """
    if not pdf_bytes:
        return None
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        logger.error("Could not open PDF: %s", e)
        return None

    try:
        if doc.needs_pass:
            logger.error("PDF is password-protected")
            return None

        page_tables = []
        for page_index in range(len(doc)):
            page = doc.load_page(page_index)
            elements = page_text_elements(page)
            table = create_table_from_spatial_grouping(elements, page_index + 1)
            if table:
                page_tables.append(table)
                logger.info("Page %d: created table with %d rows", page_index + 1, table["totalRows"])

        if len(page_tables) > 1:
            tables = [consolidate_multi_page_table([t["rows"] for t in page_tables])]
        else:
            tables = page_tables

        return {
            "rawText": extract_pdf_text(io.BytesIO(pdf_bytes)),
            "structuredTables": tables,
            "metadata": {
                "pageCount": len(doc),
                "extractionMethod": "spatial",
            },
        }
    except Exception:
        logger.exception("PDF spatial processing failed")
        return None
    finally:
        try:
            doc.close()
        except Exception:
            pass


# ============ OCR fallback ============

def ocr_ready() -> Tuple[bool, str]:
    try:
        _ = pytesseract.get_tesseract_version()
    except Exception as e:
        return False, f"tesseract not available: {e}"
    return True, ""


def ocr_pdf_bytes(pdf_bytes: bytes, max_pages: int = 12) -> Tuple[str, str]:
    ok, why = ocr_ready()
    if not ok:
        return "", f"OCR engine not available: {why}"
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        return "", f"Could not open PDF for OCR: {e}"

    def prep(img):
        try:
            g = img.convert("L")
        except Exception:
            g = img
        try:
            g = Image.eval(g, lambda x: 0 if x < 15 else (255 if x > 240 else x))
        except Exception:
            pass
        return g

    parts: List[str] = []
    try:
        pages = min(len(doc), max_pages)
        for i in range(pages):
            try:
                page = doc.load_page(i)
                pix = page.get_pixmap(dpi=OCR_DPI, alpha=False)
                img = prep(Image.open(io.BytesIO(pix.tobytes("png"))))
                txt = pytesseract.image_to_string(img, config="--psm 6 -c preserve_interword_spaces=1") or ""
                parts.append(txt)
            except Exception as e:
                logger.warning("OCR failed on page %d: %s", i + 1, e)
                parts.append("")
    except Exception as e:
        return "", f"OCR failed: {e}"
    finally:
        try:
            doc.close()
        except Exception:
            pass
    return "\n".join(parts).strip(), ""


def extract_tables_from_ocr_text(text: str) -> List[Dict[str, Any]]:
    lines = [ln.strip() for ln in (text or "").splitlines() if ln.strip()]
    tables: List[Dict[str, Any]] = []
    current: List[List[str]] = []

    def flush() -> None:
        if len(current) >= 2:
            tables.append({"page": 1, "rows": list(current), "totalRows": len(current)})

    for line in lines:
        words = line.split()
        has_indicators = bool(re.search(r"\||\t| {2,}", line))
        if len(words) >= 2 and (has_indicators or len(words) >= 3):
            if "|" in line:
                columns = line.split("|")
            elif "\t" in line:
                columns = line.split("\t")
            else:
                columns = re.split(r" {2,}", line)
            current.append([c.strip() for c in columns if c.strip()])
        else:
            flush()
            current = []
    flush()

    logger.info("OCR found %d table structures", len(tables))
    return tables


def extract_with_ocr(pdf_bytes: bytes, max_pages: int = 12) -> Optional[Dict[str, Any]]:
    text, err = ocr_pdf_bytes(pdf_bytes, max_pages=max_pages)
    if err:
        logger.warning("OCR fallback unavailable: %s", err)
        return None
    if not text:
        return None
    return {
        "rawText": text,
        "structuredTables": extract_tables_from_ocr_text(text),
        "metadata": {
            "pageCount": None,
            "extractionMethod": "ocr",
        },
    }
