from __future__ import annotations

import io
import re
from dataclasses import dataclass, replace

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString
from docx import Document
from docx.shared import RGBColor
from docx.text.paragraph import Paragraph

from lexdraft.templates import VARIABLE_NAME_ATTR

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
VARIABLE_COLOR = RGBColor(0xFF, 0x66, 0x00)

_HEADING_LEVELS = {"h1": 1, "h2": 2, "h3": 3, "h4": 3, "h5": 3, "h6": 3}
_LIST_STYLES = {"ul": "List Bullet", "ol": "List Number"}
_BLOCK_TAGS = {"p", "div", "blockquote", "li", "ul", "ol", "table", *_HEADING_LEVELS}
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


class DocxExportError(RuntimeError):
    """Raised when HTML content cannot be converted into a DOCX document."""


@dataclass(frozen=True)
class RunFormat:
    bold: bool = False
    italic: bool = False
    underline: bool = False
    variable: bool = False


def sanitize_docx_filename(file_name: str | None) -> str:
    base = (file_name or "").strip() or "document"
    safe = _UNSAFE_FILENAME_CHARS.sub("_", base)
    if not safe.lower().endswith(".docx"):
        safe = f"{safe}.docx"
    return safe


def _inline_format(tag: Tag, current: RunFormat) -> RunFormat:
    name = tag.name
    if name in {"strong", "b"}:
        return replace(current, bold=True)
    if name in {"em", "i"}:
        return replace(current, italic=True)
    if name == "u":
        return replace(current, underline=True)
    if name == "span" and tag.has_attr(VARIABLE_NAME_ATTR):
        return replace(current, variable=True)
    return current


def _add_run(paragraph: Paragraph, text: str, run_format: RunFormat) -> None:
    run = paragraph.add_run(text)
    run.bold = run_format.bold or run_format.variable or None
    run.italic = run_format.italic or None
    run.underline = run_format.underline or None
    if run_format.variable:
        run.font.color.rgb = VARIABLE_COLOR


def _write_inline(paragraph: Paragraph, node: Tag | NavigableString, run_format: RunFormat) -> None:
    if isinstance(node, PreformattedString):
        return
    if isinstance(node, NavigableString):
        text = re.sub(r"\s+", " ", str(node))
        if text.strip() or (text and paragraph.runs):
            _add_run(paragraph, text, run_format)
        return
    if node.name == "br":
        paragraph.add_run().add_break()
        return
    nested_format = _inline_format(node, run_format)
    for child in node.children:
        if isinstance(child, (Tag, NavigableString)):
            _write_inline(paragraph, child, nested_format)


class _DocxWriter:
    def __init__(self) -> None:
        self.document = Document()

    def write_blocks(self, parent: Tag, *, list_style: str | None = None) -> None:
        pending_inline: list[Tag | NavigableString] = []

        def flush_inline() -> None:
            if any(not isinstance(item, NavigableString) or item.strip() for item in pending_inline):
                paragraph = self.document.add_paragraph()
                for item in pending_inline:
                    _write_inline(paragraph, item, RunFormat())
            pending_inline.clear()

        for child in parent.children:
            if isinstance(child, Tag) and child.name in _BLOCK_TAGS:
                flush_inline()
                self._write_block(child, list_style=list_style)
            elif isinstance(child, (Tag, NavigableString)):
                pending_inline.append(child)
        flush_inline()

    def _write_block(self, tag: Tag, *, list_style: str | None) -> None:
        name = tag.name
        if name in _HEADING_LEVELS:
            paragraph = self.document.add_heading(level=_HEADING_LEVELS[name])
            self._write_paragraph_content(paragraph, tag)
        elif name in _LIST_STYLES:
            self.write_blocks(tag, list_style=_LIST_STYLES[name])
        elif name == "li":
            paragraph = self.document.add_paragraph(style=list_style or "List Bullet")
            nested = [child for child in tag.children if isinstance(child, Tag) and child.name in _LIST_STYLES]
            self._write_paragraph_content(paragraph, tag, skip=nested)
            for nested_list in nested:
                self.write_blocks(nested_list, list_style=_LIST_STYLES[nested_list.name])
        elif name == "table":
            for row in tag.find_all("tr"):
                cells = [cell.get_text(" ", strip=True) for cell in row.find_all(["td", "th"])]
                if any(cells):
                    self.document.add_paragraph(" | ".join(cells))
        elif name == "blockquote":
            paragraph = self.document.add_paragraph(style="Quote")
            self._write_paragraph_content(paragraph, tag)
        elif any(isinstance(child, Tag) and child.name in _BLOCK_TAGS for child in tag.children):
            self.write_blocks(tag, list_style=list_style)
        else:
            paragraph = self.document.add_paragraph()
            self._write_paragraph_content(paragraph, tag)

    @staticmethod
    def _write_paragraph_content(paragraph: Paragraph, tag: Tag, *, skip: list[Tag] | None = None) -> None:
        skipped = skip or []
        for child in tag.children:
            if any(child is item for item in skipped):
                continue
            if isinstance(child, (Tag, NavigableString)):
                _write_inline(paragraph, child, RunFormat())


def html_to_docx_bytes(html_content: str) -> bytes:
    if not html_content or not html_content.strip():
        raise DocxExportError("HTML content is empty.")

    soup = BeautifulSoup(html_content, "html.parser")
    root = soup.body or soup
    writer = _DocxWriter()
    try:
        writer.write_blocks(root)
        buffer = io.BytesIO()
        writer.document.save(buffer)
    except (KeyError, ValueError) as exc:
        raise DocxExportError(f"Failed to build DOCX document: {exc}") from exc
    return buffer.getvalue()
