from __future__ import annotations

from io import BytesIO

from lexdraft.parsers import ParserRegistry, normalize_extracted_text


def _build_pdf_bytes(text: str) -> bytes:
    from pypdf import PdfWriter
    from pypdf.generic import DecodedStreamObject, DictionaryObject, NameObject

    writer = PdfWriter()
    page = writer.add_blank_page(width=612, height=792)

    font = DictionaryObject(
        {
            NameObject("/Type"): NameObject("/Font"),
            NameObject("/Subtype"): NameObject("/Type1"),
            NameObject("/BaseFont"): NameObject("/Helvetica"),
        }
    )
    font_ref = writer._add_object(font)
    resources = DictionaryObject({NameObject("/Font"): DictionaryObject({NameObject("/F1"): font_ref})})
    page[NameObject("/Resources")] = resources

    safe_text = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
    content_stream = DecodedStreamObject()
    content_stream.set_data(f"BT /F1 12 Tf 72 720 Td ({safe_text}) Tj ET".encode("utf-8"))
    content_ref = writer._add_object(content_stream)
    page[NameObject("/Contents")] = content_ref

    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def _build_docx_bytes(text: str) -> bytes:
    from docx import Document

    doc = Document()
    doc.add_paragraph(text)
    table = doc.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Party"
    table.rows[0].cells[1].text = "Acme Corp"
    buffer = BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def test_pdf_docx_html_and_text_parsers_extract_text() -> None:
    registry = ParserRegistry()
    scenarios = [
        ("pdf", "lease.pdf", "application/pdf", _build_pdf_bytes("Lease term is twelve months"), "Lease term"),
        (
            "docx",
            "nda.docx",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            _build_docx_bytes("Confidential information excludes public data."),
            "Party | Acme Corp",
        ),
        (
            "html",
            "brief.html",
            "text/html",
            b"<html><head><style>p{}</style></head><body><h1>Brief</h1><p>Motion to dismiss.</p></body></html>",
            "Motion to dismiss.",
        ),
        ("text", "notes.txt", "text/plain", b"Call opposing counsel\fFile by Friday", "File by Friday"),
    ]

    for parser_id, file_name, content_type, content, expected in scenarios:
        result = registry.parse(content=content, file_name=file_name, content_type=content_type)
        assert result.parser_id == parser_id
        assert result.supported is True
        assert result.error is None
        assert expected in result.text


def test_html_parser_drops_script_and_style_content() -> None:
    result = ParserRegistry().parse(
        content=b"<p>Visible</p><script>alert('x')</script><style>.a{}</style>",
        file_name="page.htm",
        content_type="",
    )
    assert result.text == "Visible"


def test_text_parser_splits_form_feed_pages() -> None:
    result = ParserRegistry().parse(content=b"Page one\r\n\fPage two", file_name="doc.md", content_type="")
    assert [page.page for page in result.pages] == [1, 2]
    assert result.text == "Page one\n\nPage two"


def test_malformed_pdf_reports_parser_error() -> None:
    result = ParserRegistry().parse(
        content=b"%PDF-1.7\nthis-is-not-a-valid-pdf-structure",
        file_name="broken.pdf",
        content_type="application/pdf",
    )
    assert result.parser_id == "pdf"
    assert result.supported is True
    assert result.error is not None
    assert result.pages == []


def test_legacy_word_documents_are_rejected_with_guidance() -> None:
    result = ParserRegistry().parse(content=b"\xd0\xcf\x11\xe0", file_name="old.doc", content_type="")
    assert result.supported is False
    assert "convert to .docx" in (result.error or "")


def test_unsupported_binary_content_is_graceful() -> None:
    result = ParserRegistry().parse(
        content=b"\x00\x10\x20\x30\x40binary",
        file_name="blob.bin",
        content_type="application/octet-stream",
    )
    assert result.supported is False
    assert result.error == "Unsupported content type: application/octet-stream"


def test_normalize_extracted_text_collapses_whitespace() -> None:
    raw = "  Clause\x00 1.\t\tTerm  \r\n\n\n\n  Clause 2. Fees  "
    assert normalize_extracted_text(raw) == "Clause 1. Term\n\nClause 2. Fees"
