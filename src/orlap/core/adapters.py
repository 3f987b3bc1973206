"""Document adapters.

Every supported format is turned into a `DocumentText`: flattened text for
the free-text extractor, plus table rows and embedded photos where the
format carries them. Content problems never raise out of here; they come
back as a tagged status (ok, degraded, empty, failed).
"""
import csv
import io
import logging
import re
from pathlib import Path
from typing import Optional, List, Tuple

import pandas as pd
import pdfplumber
from docx import Document
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph

from .models import DocumentText, DocumentFormat, ExtractionStatus, ExtractedImage, FieldKey

logger = logging.getLogger(__name__)

EXTENSIONS = {
    ".pdf": DocumentFormat.PDF,
    ".docx": DocumentFormat.DOCX,
    ".xlsx": DocumentFormat.XLSX,
    ".xls": DocumentFormat.XLS,
    ".csv": DocumentFormat.CSV,
}

PDF_PLACEHOLDER = "PDF text extraction failed"
PDF_SCAN_BYTES = 10000
CSV_ENCODINGS = ("utf-8", "utf-8-sig", "latin1", "cp1252")
SHEET_KEYWORDS = ("product", "produk", "data")

TEXT_BLOCK = re.compile(r"BT(.*?)ET", re.DOTALL)
STRING_LITERAL = re.compile(r"\(((?:\\.|[^\\)])*)\)", re.DOTALL)
ORDER_MARKER = re.compile(r"No\s*\.?\s*ORDER", re.IGNORECASE)
PHOTO_MARKERS = (
    (re.compile(r"Foto\s*KTP", re.IGNORECASE), FieldKey.UPLOAD_FOTO_ID),
    (re.compile(r"Foto\s*Selfie", re.IGNORECASE), FieldKey.UPLOAD_FOTO_SELFIE),
)


def detect_format(path: Path) -> Optional[DocumentFormat]:
    return EXTENSIONS.get(Path(path).suffix.lower())


# --- PDF ---------------------------------------------------------------

def _unescape(literal: str) -> str:
    return re.sub(r"\\(.)", lambda m: {"n": "\n", "r": "", "t": "\t"}.get(m.group(1), m.group(1)), literal)


def scan_pdf_text(data: bytes) -> str:
    """Best-effort text from uncompressed BT ... ET blocks in the file head."""
    head = data[:PDF_SCAN_BYTES].decode("latin-1")
    lines = []
    for block in TEXT_BLOCK.findall(head):
        pieces = [_unescape(s) for s in STRING_LITERAL.findall(block)]
        line = "".join(pieces).strip()
        if line:
            lines.append(line)
    return "\n".join(lines)


def read_pdf(data: bytes) -> DocumentText:
    error = None
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
        text = "\n".join(p for p in pages if p.strip())
        if text.strip():
            return DocumentText(success=True, status=ExtractionStatus.OK,
                                format=DocumentFormat.PDF, text=text)
        logger.warning("pdfplumber found no text layer, scanning raw bytes")
    except Exception as e:
        error = f"PDF parser error: {e}"
        logger.warning("pdfplumber failed (%s), scanning raw bytes", e)

    scanned = scan_pdf_text(data)
    if len(scanned) > 10:
        return DocumentText(success=True, status=ExtractionStatus.DEGRADED,
                            format=DocumentFormat.PDF, text=scanned, error=error)
    if error is None:
        return DocumentText(success=True, status=ExtractionStatus.EMPTY, format=DocumentFormat.PDF)
    return DocumentText(success=True, status=ExtractionStatus.DEGRADED, format=DocumentFormat.PDF,
                        text=PDF_PLACEHOLDER, error=error)


# --- Word --------------------------------------------------------------

def _paragraph_text(p) -> str:
    return "".join(t.text or "" for t in p.iter(qn("w:t")))


def _docx_images(doc) -> List[ExtractedImage]:
    """Inline photos that follow a "Foto KTP" / "Foto Selfie" marker.

    An order-number marker opens the next record; content before the first
    marker is ignored. Each marker arms exactly one image.
    """
    images = []
    record_index = -1
    expecting = None
    for p in doc.element.body.iter(qn("w:p")):
        text = _paragraph_text(p)
        if ORDER_MARKER.search(text):
            record_index += 1
            expecting = None
        if record_index < 0:
            continue
        for pattern, field in PHOTO_MARKERS:
            if pattern.search(text):
                expecting = field
        if expecting is None:
            continue
        for rid in p.xpath(".//a:blip/@r:embed"):
            part = doc.part.related_parts.get(rid)
            if part is None:
                continue
            images.append(ExtractedImage(
                record_index=record_index, field=expecting,
                content=part.blob, content_type=part.content_type,
            ))
            expecting = None
            break
    return images


def read_docx(data: bytes) -> DocumentText:
    doc = Document(io.BytesIO(data))
    lines = []
    for child in doc.element.body.iterchildren():
        if child.tag == qn("w:p"):
            text = Paragraph(child, doc).text
            if text.strip():
                lines.append(text)
        elif child.tag == qn("w:tbl"):
            for row in Table(child, doc).rows:
                cells = [c.text.strip() for c in row.cells]
                if any(cells):
                    lines.append("\t".join(cells))

    table_rows = None
    if doc.tables:
        table_rows = [[c.text.strip() for c in row.cells] for row in doc.tables[0].rows]

    images = _docx_images(doc)
    text = "\n".join(lines)
    logger.info("DOCX: %d text lines, %d table rows, %d photos",
                len(lines), len(table_rows or []), len(images))
    return DocumentText(
        success=True,
        status=ExtractionStatus.OK if text.strip() else ExtractionStatus.EMPTY,
        format=DocumentFormat.DOCX,
        text=text,
        table_rows=table_rows,
        images=images,
    )


# --- Spreadsheets ------------------------------------------------------

def _pick_sheet(sheet_names: List[str]) -> str:
    for name in sheet_names:
        if any(k in name.lower() for k in SHEET_KEYWORDS):
            return name
    return sheet_names[0]


def _read_csv(data: bytes, encoding: str) -> pd.DataFrame:
    options = dict(header=None, dtype=str, encoding=encoding, keep_default_na=False)
    try:
        return pd.read_csv(io.BytesIO(data), sep=None, engine="python", **options)
    except csv.Error:
        # single-column files give the delimiter sniffer nothing to go on
        return pd.read_csv(io.BytesIO(data), **options)


def _load_frame(data: bytes, fmt: DocumentFormat) -> Tuple[pd.DataFrame, Optional[str]]:
    if fmt == DocumentFormat.CSV:
        for encoding in CSV_ENCODINGS:
            try:
                df = _read_csv(data, encoding)
                logger.debug("CSV decoded as %s", encoding)
                return df, None
            except UnicodeDecodeError:
                continue
        raise ValueError(f"Could not decode CSV with any of: {', '.join(CSV_ENCODINGS)}")

    engine = "xlrd" if fmt == DocumentFormat.XLS else "openpyxl"
    with pd.ExcelFile(io.BytesIO(data), engine=engine) as xls:
        sheet = _pick_sheet(xls.sheet_names)
        df = xls.parse(sheet, header=None, dtype=str, keep_default_na=False)
    return df, sheet


def read_spreadsheet(data: bytes, fmt: DocumentFormat) -> DocumentText:
    df, sheet = _load_frame(data, fmt)
    df = df.fillna("")
    rows = []
    for values in df.values.tolist():
        cells = [str(v).strip() for v in values]
        if any(cells):
            rows.append(cells)

    if sheet:
        logger.info("Using sheet %r: %d rows", sheet, len(rows))
    text = "\n".join("\t".join(cells).rstrip("\t") for cells in rows)
    return DocumentText(
        success=True,
        status=ExtractionStatus.OK if rows else ExtractionStatus.EMPTY,
        format=fmt,
        text=text,
        table_rows=rows or None,
    )


# --- Dispatch ----------------------------------------------------------

def read_bytes(data: bytes, fmt: DocumentFormat) -> DocumentText:
    try:
        if fmt == DocumentFormat.PDF:
            return read_pdf(data)
        if fmt == DocumentFormat.DOCX:
            return read_docx(data)
        return read_spreadsheet(data, fmt)
    except Exception as e:
        logger.error("Could not read %s document: %s", fmt.value, e)
        return DocumentText(success=False, status=ExtractionStatus.FAILED, format=fmt, error=str(e))


def read_document(path: Path, fmt: Optional[DocumentFormat] = None) -> DocumentText:
    fmt = fmt or detect_format(path)
    if fmt is None:
        raise ValueError(f"Unsupported file type: {Path(path).suffix}")
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        logger.error("Could not open %s: %s", path, e)
        return DocumentText(success=False, status=ExtractionStatus.FAILED, format=fmt, error=str(e))
    return read_bytes(data, fmt)
