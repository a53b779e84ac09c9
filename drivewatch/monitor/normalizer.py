"""
Content normalization for Drive Watch.

Turns a document of any supported MIME type into one plain-text string.
Each format is a ContentSource; ContentNormalizer picks the source for a
MIME type and falls back to a placeholder for types it does not know.
"""

import csv
import io
import logging
from typing import Optional

from openpyxl import load_workbook

from ..constants import (
    MIME_CSV,
    MIME_FOLDER,
    MIME_GOOGLE_DOC,
    MIME_GOOGLE_SHEET,
    MIME_XLSX,
    UNSUPPORTED_TEMPLATE,
)
from ..errors import MonitorError, NormalizationError

logger = logging.getLogger(__name__)


def extract_plain_text(document: dict) -> str:
    """
    Extract plain text from a Google Docs document resource.

    Text runs of a paragraph are concatenated and every paragraph is
    followed by a newline. Tables and section breaks carry no text here.
    """
    content = (document.get("body") or {}).get("content") or []
    parts = []
    for element in content:
        paragraph = element.get("paragraph")
        if not paragraph or "elements" not in paragraph:
            continue
        for item in paragraph["elements"]:
            text = (item.get("textRun") or {}).get("content")
            if text:
                parts.append(text)
        parts.append("\n")
    return "".join(parts).rstrip()


def _format_cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def workbook_to_text(data: bytes) -> str:
    """
    Render every sheet of an .xlsx workbook as CSV.

    Sheets are joined with a blank line; no per-sheet header appears in
    the output.
    """
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as e:
        # openpyxl raises a mix of zipfile, KeyError and its own errors
        raise NormalizationError(f"Not a readable workbook: {e}")

    sheets = []
    try:
        for worksheet in workbook.worksheets:
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            for row in worksheet.iter_rows(values_only=True):
                writer.writerow([_format_cell(v) for v in row])
            sheets.append(buffer.getvalue().rstrip("\n"))
    except Exception as e:
        raise NormalizationError(f"Could not read workbook sheets: {e}")
    finally:
        workbook.close()

    return "\n\n".join(sheets).strip()


class ContentSource:
    """Produces plain text for one document format."""

    def produce(self, client, document_id: str) -> Optional[str]:
        raise NotImplementedError


class GoogleDocSource(ContentSource):
    def produce(self, client, document_id: str) -> Optional[str]:
        return extract_plain_text(client.get_document(document_id))


class CsvSource(ContentSource):
    def produce(self, client, document_id: str) -> Optional[str]:
        return client.download(document_id).decode("utf-8")


class WorkbookSource(ContentSource):
    def produce(self, client, document_id: str) -> Optional[str]:
        return workbook_to_text(client.download(document_id))


class GoogleSheetSource(ContentSource):
    """Exports each sheet separately; a sheet that fails is left out."""

    def produce(self, client, document_id: str) -> Optional[str]:
        texts = []
        for title in client.get_sheet_titles(document_id):
            try:
                texts.append(client.export_sheet_csv(document_id, title).decode("utf-8"))
            except MonitorError as e:
                logger.warning("Skipping sheet %r of %s: %s", title, document_id, e)
        return "\n\n".join(texts)


class FolderSource(ContentSource):
    def produce(self, client, document_id: str) -> Optional[str]:
        return None


class UnsupportedSource(ContentSource):
    def __init__(self, mime_type: str):
        self.mime_type = mime_type

    def produce(self, client, document_id: str) -> Optional[str]:
        return UNSUPPORTED_TEMPLATE.format(mime_type=self.mime_type)


SOURCES: dict[str, ContentSource] = {
    MIME_GOOGLE_DOC: GoogleDocSource(),
    MIME_CSV: CsvSource(),
    MIME_XLSX: WorkbookSource(),
    MIME_GOOGLE_SHEET: GoogleSheetSource(),
    MIME_FOLDER: FolderSource(),
}


class ContentNormalizer:
    """Fetches a document and converts it to plain text."""

    def __init__(self, client, sources: Optional[dict[str, ContentSource]] = None):
        self.client = client
        self.sources = sources if sources is not None else SOURCES

    def source_for(self, mime_type: str) -> ContentSource:
        return self.sources.get(mime_type) or UnsupportedSource(mime_type)

    def normalize(self, document_id: str, mime_type: str) -> Optional[str]:
        """
        Return the document's plain text, or None when there is nothing to
        report (folders, empty content, or any fetch/conversion failure).
        """
        try:
            text = self.source_for(mime_type).produce(self.client, document_id)
        except UnicodeDecodeError as e:
            logger.error("Content of %s is not valid UTF-8: %s", document_id, e)
            return None
        except MonitorError as e:
            logger.error("Could not normalize %s (%s): %s", document_id, mime_type, e)
            return None
        except Exception as e:
            logger.error("Unexpected error normalizing %s (%s): %s", document_id, mime_type, e, exc_info=True)
            return None
        return text or None
