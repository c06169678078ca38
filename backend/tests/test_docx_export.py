from __future__ import annotations

from io import BytesIO

import pytest
from docx import Document

from lexdraft.docx_export import DocxExportError, html_to_docx_bytes, sanitize_docx_filename


def _load(html: str):
    return Document(BytesIO(html_to_docx_bytes(html)))


def test_headings_paragraphs_and_inline_formatting() -> None:
    document = _load(
        "<h1>Demand Letter</h1>"
        "<h2>Background</h2>"
        "<p>The <strong>Tenant</strong> failed to pay <em>rent</em> on <u>time</u>.</p>"
    )
    paragraphs = document.paragraphs

    assert paragraphs[0].text == "Demand Letter"
    assert paragraphs[0].style.name == "Heading 1"
    assert paragraphs[1].style.name == "Heading 2"
    body = paragraphs[2]
    assert body.text == "The Tenant failed to pay rent on time."
    runs = {run.text: run for run in body.runs}
    assert runs["Tenant"].bold is True
    assert runs["rent"].italic is True
    assert runs["time"].underline is True


def test_lists_and_nested_lists_use_list_styles() -> None:
    document = _load(
        "<ol><li>Pay rent</li><li>Maintain premises<ul><li>Gardens</li></ul></li></ol>"
    )
    styled = [(paragraph.text, paragraph.style.name) for paragraph in document.paragraphs]
    assert styled == [
        ("Pay rent", "List Number"),
        ("Maintain premises", "List Number"),
        ("Gardens", "List Bullet"),
    ]


def test_template_variables_are_highlighted() -> None:
    document = _load('<p>Dear <span data-variable-name="client_name">[client_name]</span>,</p>')
    variable_run = next(run for run in document.paragraphs[0].runs if run.text == "[client_name]")
    assert variable_run.bold is True
    assert str(variable_run.font.color.rgb) == "FF6600"


def test_tables_blockquotes_and_line_breaks() -> None:
    document = _load(
        "<table><tr><th>Party</th><th>Role</th></tr><tr><td>Acme</td><td>Seller</td></tr></table>"
        "<blockquote>Time is of the essence.</blockquote>"
        "<p>Line one<br>Line two</p>"
    )
    texts = [paragraph.text for paragraph in document.paragraphs]
    assert texts[:3] == ["Party | Role", "Acme | Seller", "Time is of the essence."]
    assert document.paragraphs[2].style.name == "Quote"
    assert texts[3] == "Line one\nLine two"


def test_loose_inline_content_becomes_a_paragraph() -> None:
    document = _load("Plain <b>text</b> without wrapper")
    assert [paragraph.text for paragraph in document.paragraphs] == ["Plain text without wrapper"]


def test_empty_html_is_rejected() -> None:
    with pytest.raises(DocxExportError):
        html_to_docx_bytes("   ")


def test_sanitize_docx_filename() -> None:
    assert sanitize_docx_filename(None) == "document.docx"
    assert sanitize_docx_filename("Demand Letter (final)") == "Demand_Letter__final_.docx"
    assert sanitize_docx_filename("../contract.DOCX") == ".._contract.DOCX"
