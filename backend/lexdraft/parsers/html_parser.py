from __future__ import annotations

from pathlib import Path

from bs4 import BeautifulSoup

from lexdraft.parsers.base import ParseResult
from lexdraft.parsers.text_parser import decode_text

HTML_CONTENT_TYPES = {"text/html", "application/xhtml+xml"}
NON_CONTENT_TAGS = ["script", "style", "noscript"]


class HtmlDocumentParser:
    parser_id = "html"

    def supports(self, *, file_name: str, content_type: str) -> bool:
        return content_type.lower() in HTML_CONTENT_TYPES or Path(file_name).suffix.lower() in {".html", ".htm"}

    def parse(self, *, content: bytes, file_name: str, content_type: str) -> ParseResult:
        markup = decode_text(content)
        if markup is None:
            return ParseResult.failed(self.parser_id, "HTML decode failed using utf-8 and latin-1")

        soup = BeautifulSoup(markup, "html.parser")
        for element in soup(NON_CONTENT_TAGS):
            element.decompose()
        return ParseResult.single_page(self.parser_id, soup.get_text("\n").strip())
