from __future__ import annotations

import io
from pathlib import Path
from zipfile import BadZipFile

from docx import Document
from docx.opc.exceptions import PackageNotFoundError

from lexdraft.parsers.base import ParseResult

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _table_rows(document) -> list[str]:
    rows: list[str] = []
    for table in document.tables:
        for row in table.rows:
            cells = (" ".join(cell.text.split()) for cell in row.cells)
            joined = " | ".join(cell for cell in cells if cell)
            if joined:
                rows.append(joined)
    return rows


class DocxDocumentParser:
    parser_id = "docx"

    def supports(self, *, file_name: str, content_type: str) -> bool:
        return content_type.lower() == DOCX_CONTENT_TYPE or Path(file_name).suffix.lower() == ".docx"

    def parse(self, *, content: bytes, file_name: str, content_type: str) -> ParseResult:
        try:
            document = Document(io.BytesIO(content))
        except (PackageNotFoundError, BadZipFile, KeyError, ValueError) as exc:
            return ParseResult.failed(self.parser_id, f"DOCX parsing failed: {exc}")

        body = [paragraph.text for paragraph in document.paragraphs if paragraph.text.strip()]
        return ParseResult.single_page(self.parser_id, "\n".join(body + _table_rows(document)).strip())
