from __future__ import annotations

from pathlib import Path

from lexdraft.parsers.base import ParseResult, ParsedPage

TEXT_FILE_EXTENSIONS = {".txt", ".md", ".markdown", ".csv", ".json"}
FALLBACK_ENCODINGS = ("utf-8", "latin-1")


def decode_text(content: bytes) -> str | None:
    for encoding in FALLBACK_ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            pass
    return None


class TextDocumentParser:
    parser_id = "text"

    def supports(self, *, file_name: str, content_type: str) -> bool:
        return content_type.lower().startswith("text/") or Path(file_name).suffix.lower() in TEXT_FILE_EXTENSIONS

    def parse(self, *, content: bytes, file_name: str, content_type: str) -> ParseResult:
        text = decode_text(content)
        if text is None:
            return ParseResult.failed(self.parser_id, "text decode failed using utf-8 and latin-1")

        # form feeds delimit pages in plain-text exports
        chunks = (chunk.strip() for chunk in text.replace("\r\n", "\n").split("\f"))
        pages = [ParsedPage(page=number, text=chunk) for number, chunk in enumerate(chunks, start=1) if chunk]
        return ParseResult(parser_id=self.parser_id, pages=pages)
