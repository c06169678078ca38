from lexdraft.parsers.base import ParseResult, ParsedPage
from lexdraft.parsers.registry import ParserRegistry, normalize_extracted_text

__all__ = ["ParseResult", "ParsedPage", "ParserRegistry", "normalize_extracted_text"]
