from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class ParsedPage:
    page: int
    text: str


@dataclass(frozen=True)
class ParseResult:
    """Outcome of one extraction attempt.

    ``supported`` is False when no parser claims the file; ``error`` is set when a
    parser claimed it but could not read it.
    """

    parser_id: str
    pages: list[ParsedPage] = field(default_factory=list)
    supported: bool = True
    error: str | None = None

    @classmethod
    def failed(cls, parser_id: str, error: str, *, supported: bool = True) -> "ParseResult":
        return cls(parser_id=parser_id, supported=supported, error=error)

    @classmethod
    def single_page(cls, parser_id: str, text: str) -> "ParseResult":
        return cls(parser_id=parser_id, pages=[ParsedPage(page=1, text=text)] if text else [])

    @property
    def text(self) -> str:
        return "\n\n".join(page.text for page in self.pages if page.text)


class DocumentParser(Protocol):
    parser_id: str

    def supports(self, *, file_name: str, content_type: str) -> bool:
        ...

    def parse(self, *, content: bytes, file_name: str, content_type: str) -> ParseResult:
        ...
