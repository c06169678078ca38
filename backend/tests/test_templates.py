from datetime import datetime

import pytest
from fastapi.testclient import TestClient

import lexdraft.auth as auth_module
from lexdraft.config import settings
from lexdraft.db import create_case
from lexdraft.main import app, create_app
from lexdraft.templates import (
    ensure_span_format,
    extract_variable_names_from_html,
    extract_variables_from_json,
    map_variable_to_path,
    node_size,
    prefill_variables,
    resolve_case_value,
    sanitize_template_name,
)


def _variable_text(text: str, name: str, description: str | None = None) -> dict[str, object]:
    attrs: dict[str, object] = {"data-variable-name": name}
    if description is not None:
        attrs["data-variable-description"] = description
    return {"type": "text", "text": text, "marks": [{"type": "variable", "attrs": attrs}]}


def _sample_doc() -> dict[str, object]:
    return {
        "type": "doc",
        "content": [
            {
                "type": "paragraph",
                "content": [
                    {"type": "text", "text": "Dear "},
                    _variable_text("[client_name]", "client_name", "Client full name"),
                    {"type": "text", "text": ","},
                ],
            },
            {"type": "horizontalRule"},
            {
                "type": "paragraph",
                "content": [
                    {"type": "text", "text": "Re: ", "marks": [{"type": "bold"}]},
                    _variable_text("[case_number]", "case_number"),
                    {"type": "text", "text": " for "},
                    _variable_text("[client_name]", "client_name"),
                ],
            },
        ],
    }


def test_node_size_counts_text_and_open_close_tokens() -> None:
    assert node_size({"type": "text", "text": "abc"}) == 3
    assert node_size({"type": "paragraph", "content": [{"type": "text", "text": "abc"}]}) == 5
    assert node_size({"type": "paragraph", "content": []}) == 2
    assert node_size({"type": "hardBreak"}) == 1


def test_extract_variables_reports_first_occurrence_with_positions() -> None:
    variables = extract_variables_from_json(_sample_doc())

    assert [variable["name"] for variable in variables] == ["client_name", "case_number"]
    client, case_number = variables
    # first paragraph starts at 1, its text at 2; "Dear " occupies 2..7
    assert client["position"] == {"from": 7, "to": 20}
    assert client["description"] == "Client full name"
    # paragraph one spans 21 (1..21), the rule sits at 22, the second paragraph opens at 23
    assert case_number["position"] == {"from": 28, "to": 41}
    assert case_number["description"] is None


def test_extract_variables_handles_empty_and_non_doc_roots() -> None:
    assert extract_variables_from_json(None) == []
    assert extract_variables_from_json({}) == []

    paragraph = {"type": "paragraph", "content": [_variable_text("X", "judge_name")]}
    assert extract_variables_from_json(paragraph) == [
        {"name": "judge_name", "description": None, "position": {"from": 2, "to": 3}}
    ]


def test_extract_variables_ignores_marks_without_name() -> None:
    doc = {
        "type": "doc",
        "content": [
            {
                "type": "paragraph",
                "content": [
                    {"type": "text", "text": "x", "marks": [{"type": "variable", "attrs": {}}]},
                    {"type": "text", "text": "y", "marks": [{"type": "italic"}]},
                ],
            }
        ],
    }
    assert extract_variables_from_json(doc) == []


def test_map_variable_to_path_uses_known_names_and_splits_the_rest() -> None:
    assert map_variable_to_path("client_name") == ["client", "name"]
    assert map_variable_to_path("case.case_number") == ["case_number"]
    assert map_variable_to_path("case_date") == ["created_at"]
    assert map_variable_to_path("court_address_city") == ["court", "address", "city"]
    assert map_variable_to_path("client.address.zip") == ["address.zip"]


def test_resolve_case_value_prefers_exact_top_level_key() -> None:
    case_data = {
        "filing_date": "2024-01-01",
        "filing": {"date": "2023-05-05"},
        "hearing": {"date": "2024-06-01"},
        "name": "Doe v. Roe",
        "case_name": "ignored",
    }

    assert resolve_case_value("filing_date", case_data) == "2024-01-01"
    assert resolve_case_value("case.hearing_date", case_data) == "2024-06-01"
    # well-known names keep their fixed mapping even when a same-named key exists
    assert resolve_case_value("case_name", case_data) == "Doe v. Roe"
    assert resolve_case_value("unknown_field", case_data) == ""


def test_prefill_variables_marks_prefilled_and_missing() -> None:
    case_data = {
        "client": {"name": "Jane Doe"},
        "case_number": "CV-2024-001",
        "created_at": datetime(2024, 3, 5, 10, 30),
    }
    doc = _sample_doc()
    doc["content"].append(  # type: ignore[union-attr]
        {
            "type": "paragraph",
            "content": [
                _variable_text("[case_date]", "case_date"),
                _variable_text("[judge_name]", "judge_name"),
            ],
        }
    )

    states = {state["name"]: state for state in prefill_variables(doc, case_data)}

    assert states["client_name"]["value"] == "Jane Doe"
    assert states["client_name"]["status"] == "prefilled"
    assert states["case_number"]["value"] == "CV-2024-001"
    assert states["case_date"]["value"] == "2024-03-05"
    assert states["judge_name"]["value"] == ""
    assert states["judge_name"]["status"] == "missing"
    assert states["client_name"]["position"] == {"from": 7, "to": 20}


def test_prefill_variables_without_case_data_returns_empty() -> None:
    assert prefill_variables(_sample_doc(), None) == []
    assert prefill_variables(None, {"case_number": "1"}) == []


def test_prefill_formats_structured_values_as_json() -> None:
    doc = {"type": "doc", "content": [{"type": "paragraph", "content": [_variable_text("x", "parties")]}]}
    states = prefill_variables(doc, {"parties": ["A", "B"]})
    assert states[0]["value"] == '["A", "B"]'


def test_ensure_span_format_converts_placeholders_and_normalizes_spans() -> None:
    markup = (
        "<p>Between {{ client_name }} and "
        '<span data-variable-name="opposing_party">Opponent</span>.</p>'
    )
    normalized = ensure_span_format(markup)

    assert 'data-variable-name="client_name"' in normalized
    assert 'data-variable-description="Value for client_name"' in normalized
    assert 'data-variable-description="Value for opposing_party"' in normalized
    assert normalized.count("variable-highlight") == 2
    assert "{{" not in normalized
    assert extract_variable_names_from_html(normalized) == ["client_name", "opposing_party"]


def test_extract_variable_names_deduplicates_in_document_order() -> None:
    markup = (
        '<p><span data-variable-name="b">b</span><span data-variable-name="a">a</span>'
        '<span data-variable-name="b">b</span></p>'
    )
    assert extract_variable_names_from_html(markup) == ["b", "a"]


def test_sanitize_template_name() -> None:
    assert sanitize_template_name("  NDA <Mutual> (v2)!  ") == "NDA Mutual (v2)"
    assert len(sanitize_template_name("x" * 300)) == 100


def test_extract_and_prefill_endpoints() -> None:
    with TestClient(app) as client:
        extract_response = client.post("/templates/extract-variables", json={"content": _sample_doc()})
        assert extract_response.status_code == 200
        assert [item["name"] for item in extract_response.json()["variables"]] == ["client_name", "case_number"]

        case = create_case(
            "user-1",
            "Doe v. Roe",
            case_number="CV-9",
            details={"client": {"name": "Jane Doe"}},
        )
        prefill_response = client.post(
            "/api/templates/prefill-variables",
            json={"content": _sample_doc(), "case_id": case["id"]},
        )
        assert prefill_response.status_code == 200
        values = {item["name"]: item["value"] for item in prefill_response.json()["variables"]}
        assert values == {"client_name": "Jane Doe", "case_number": "CV-9"}

        missing_case = client.post(
            "/templates/prefill-variables",
            json={"content": _sample_doc(), "case_id": "does-not-exist"},
        )
        assert missing_case.status_code == 404


def test_generate_template_from_instructions(install_runtime) -> None:
    fake_client = install_runtime(
        '{"name": "Engagement <Letter>", "content": "<p>Dear {{ client_name }}, re {{case_number}}</p>"}'
    )
    with TestClient(app) as client:
        response = client.post(
            "/templates/generate",
            json={"instructions": "Draft an engagement letter", "category": "Letters", "user_id": "user-1"},
        )
        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is True

        template = client.get(f"/templates/{payload['template_id']}").json()

    assert template["name"] == "Engagement Letter"
    assert template["category"] == "letters"
    assert template["tags"] == ["ai-generated"]
    assert template["variables"] == ["client_name", "case_number"]
    assert template["description"] == 'AI-generated based on instructions: "Draft an engagement letter..."'
    call = fake_client.chat.completions.calls[0]
    assert call["response_format"] == {"type": "json_object"}
    assert call["model"] == "gpt-4o-mini"
    assert call["temperature"] == 0.4


def test_generate_template_rejects_empty_content(install_runtime) -> None:
    install_runtime('{"name": "", "content": "  "}')
    with TestClient(app) as client:
        response = client.post(
            "/templates/generate",
            json={"instructions": "Anything", "category": "General", "user_id": "user-1"},
        )
    assert response.status_code == 502


def test_generate_template_requires_identity(install_runtime) -> None:
    install_runtime('{"name": "x", "content": "<p>x</p>"}')
    with TestClient(app) as client:
        response = client.post("/templates/generate", json={"instructions": "Anything", "category": "General"})
    assert response.status_code == 401


def test_prefill_rejects_case_owned_by_another_user(monkeypatch: pytest.MonkeyPatch) -> None:
    settings.auth_enabled = True
    settings.supabase_jwt_secret = "test-jwt-secret-with-enough-length"
    monkeypatch.setattr(auth_module, "decode_and_validate_supabase_token", lambda token: {"sub": "intruder"})
    with TestClient(create_app()) as client:
        case = create_case("owner", "Doe v. Roe", details={"client": {"name": "Hidden Client"}})
        response = client.post(
            "/templates/prefill-variables",
            json={"content": _sample_doc(), "case_id": case["id"]},
            headers={"Authorization": "Bearer test-token"},
        )
        monkeypatch.setattr(auth_module, "decode_and_validate_supabase_token", lambda token: {"sub": "owner"})
        owner_response = client.post(
            "/templates/prefill-variables",
            json={"content": _sample_doc(), "case_id": case["id"]},
            headers={"Authorization": "Bearer test-token"},
        )

    assert response.status_code == 404
    assert "Hidden Client" not in response.text
    assert owner_response.status_code == 200
    assert owner_response.json()["variables"][0]["value"] == "Hidden Client"
