from __future__ import annotations

import io
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from lexdraft.parsers.base import ParseResult, ParsedPage


class PdfDocumentParser:
    parser_id = "pdf"

    def supports(self, *, file_name: str, content_type: str) -> bool:
        return content_type.lower() == "application/pdf" or Path(file_name).suffix.lower() == ".pdf"

    def parse(self, *, content: bytes, file_name: str, content_type: str) -> ParseResult:
        try:
            reader = PdfReader(io.BytesIO(content), strict=False)
            extracted = [(number, page.extract_text() or "") for number, page in enumerate(reader.pages, start=1)]
        except (PdfReadError, ValueError, OSError) as exc:
            return ParseResult.failed(self.parser_id, f"PDF parsing failed: {exc}")

        # scanned pages come back empty; their page numbers are kept for the rest
        pages = [ParsedPage(page=number, text=text) for number, text in extracted if text.strip()]
        return ParseResult(parser_id=self.parser_id, pages=pages)
