"""
Text extraction from uploaded files.

Supports:
- .txt: UTF-8 text (with fallback for encoding errors)
- .csv: one document per row, serialized as JSON
- .pdf: Best-effort per-page extraction using PyMuPDF
"""
import csv
import io
import json
import logging
from pathlib import Path
from typing import List, Optional

from apps.indexing.chunker import SourceDocument
from apps.workspaces.models import SourceKind

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Raised when text extraction fails."""
    pass


def decode_text(data: bytes, label: str) -> str:
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError:
        logger.warning(f"UTF-8 decode failed for {label}, using errors='ignore'")
        return data.decode('utf-8', errors='ignore')


def extract_txt(data: bytes, filename: str) -> List[SourceDocument]:
    """The whole file as a single document."""
    text = decode_text(data, filename)
    if not text.strip():
        raise ExtractionError("No content in text file")
    return [SourceDocument(text=text, metadata={'source': filename})]


def extract_csv(data: bytes, filename: str) -> List[SourceDocument]:
    """
    One document per CSV row.

    Rows are serialized as JSON objects keyed by the header so column names
    stay next to their values in the embedded text.
    """
    text = decode_text(data, filename)
    try:
        reader = csv.DictReader(io.StringIO(text))
        documents = []
        for row_number, row in enumerate(reader, 1):
            if not any((value or '').strip() for value in row.values() if isinstance(value, str)):
                continue
            documents.append(SourceDocument(
                text=json.dumps(row, ensure_ascii=False),
                metadata={'row': row_number, 'source': filename},
            ))
    except csv.Error as e:
        raise ExtractionError(f"Failed to parse CSV: {e}")

    if not documents:
        raise ExtractionError("No rows found in CSV")
    return documents


def extract_pdf(data: bytes, filename: str) -> List[SourceDocument]:
    """
    One document per PDF page using PyMuPDF.

    Scanned, image-only pages yield no text; there is no OCR.
    """
    import fitz  # PyMuPDF

    documents = []
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            for page_number, page in enumerate(doc, 1):
                page_text = page.get_text()
                if page_text.strip():
                    documents.append(SourceDocument(
                        text=page_text,
                        metadata={'page': page_number, 'source': filename},
                    ))
    except Exception as e:
        raise ExtractionError(f"Failed to extract text from PDF: {e}")

    if not documents:
        raise ExtractionError("No content found in the PDF (it may be image-based)")
    return documents


def detect_kind(filename: str, content_type: Optional[str] = None) -> Optional[str]:
    """Map a MIME type or file extension to a SourceKind value."""
    suffix = Path(filename).suffix.lower()
    mime = (content_type or '').lower()

    if mime == 'application/pdf' or suffix == '.pdf':
        return SourceKind.PDF
    if mime == 'text/csv' or suffix == '.csv':
        return SourceKind.CSV
    if mime == 'text/plain' or suffix == '.txt':
        return SourceKind.TXT
    return None


def extract_documents(kind: str, data: bytes, filename: str) -> List[SourceDocument]:
    """
    Extract documents from an uploaded file of the given kind.

    Raises:
        ExtractionError: If extraction fails or the kind is unsupported
    """
    logger.info(f"Extracting {kind} content from {filename} ({len(data)} bytes)")

    if kind == SourceKind.TXT:
        return extract_txt(data, filename)
    elif kind == SourceKind.CSV:
        return extract_csv(data, filename)
    elif kind == SourceKind.PDF:
        return extract_pdf(data, filename)
    else:
        raise ExtractionError(f"Unsupported file type: {kind}")
