from __future__ import annotations

import re
from pathlib import Path

from lexdraft.parsers.base import DocumentParser, ParseResult
from lexdraft.parsers.docx_parser import DocxDocumentParser
from lexdraft.parsers.html_parser import HtmlDocumentParser
from lexdraft.parsers.pdf_parser import PdfDocumentParser
from lexdraft.parsers.text_parser import TextDocumentParser

LEGACY_WORD_CONTENT_TYPE = "application/msword"

_INLINE_WHITESPACE = re.compile(r"[ \t\r\f\v\u00a0]+")
_BLANK_LINES = re.compile(r"\n{3,}")


def normalize_extracted_text(text: str) -> str:
    cleaned = text.replace("\x00", "")
    lines = [_INLINE_WHITESPACE.sub(" ", line).strip() for line in cleaned.split("\n")]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


class ParserRegistry:
    def __init__(self, parsers: list[DocumentParser] | None = None) -> None:
        # html must be checked before the generic text/* parser
        self._parsers = parsers or [
            PdfDocumentParser(),
            DocxDocumentParser(),
            HtmlDocumentParser(),
            TextDocumentParser(),
        ]

    def parse(self, *, content: bytes, file_name: str, content_type: str) -> ParseResult:
        if content_type.lower() == LEGACY_WORD_CONTENT_TYPE or Path(file_name).suffix.lower() == ".doc":
            return ParseResult.failed(
                "none",
                "Legacy .doc files are not supported for text extraction. Please convert to .docx.",
                supported=False,
            )

        parser = next(
            (item for item in self._parsers if item.supports(file_name=file_name, content_type=content_type)),
            None,
        )
        if parser is None:
            return ParseResult.failed(
                "none", f"Unsupported content type: {content_type or 'unknown'}", supported=False
            )
        return parser.parse(content=content, file_name=file_name, content_type=content_type)
