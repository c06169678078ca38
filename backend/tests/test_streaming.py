from typing import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from lexdraft.main import app
from lexdraft.streaming import (
    SSE_DONE,
    StreamCallbacks,
    ThoughtStreamSplitter,
    consume_function_stream,
    encode_data_stream_part,
    encode_sse_data,
    parse_data_stream_line,
    parse_sse_chunks,
    relay_sse,
)


def test_encode_sse_data_json_encodes_content() -> None:
    assert encode_sse_data('He said "hi"\n') == 'data: "He said \\"hi\\"\\n"\n\n'
    assert SSE_DONE == "data: [DONE]\n\n"


def test_relay_sse_skips_empty_deltas_and_terminates_with_done() -> None:
    frames = list(relay_sse(iter(["Hel", "", "lo"])))
    assert frames == ['data: "Hel"\n\n', 'data: "lo"\n\n', SSE_DONE]


def test_relay_sse_emits_error_event_when_upstream_fails() -> None:
    def upstream() -> Iterator[str]:
        yield "partial"
        raise RuntimeError("connection reset")

    frames = list(relay_sse(upstream()))
    assert frames[0] == 'data: "partial"\n\n'
    assert frames[-1] == 'event: error\ndata: {"error": "connection reset"}\n\n'
    assert SSE_DONE not in frames


def test_parse_sse_chunks_decodes_json_and_skips_control_lines() -> None:
    payload = 'event: snippets\ndata: "first"\n\ndata: plain text\n\ndata: [DONE]\n\n'
    assert parse_sse_chunks(payload) == ["first", "plain text"]


def test_parse_data_stream_line() -> None:
    assert parse_data_stream_line('0:"Hello"') == ("0", "Hello")
    assert parse_data_stream_line('4:"Thinking"\r') == ("4", "Thinking")
    assert parse_data_stream_line('0:{"content": "nested"}') == ("0", "nested")
    assert parse_data_stream_line("not a part") is None
    assert encode_data_stream_part("0", "a\nb") == '0:"a\\nb"\n'


def test_splitter_passes_content_through_when_thoughts_disabled() -> None:
    splitter = ThoughtStreamSplitter(thoughts_enabled=False)
    assert splitter.feed("THOUGHT: x\n") == [("0", "THOUGHT: x\n")]
    assert splitter.finish() == []


def test_splitter_separates_thoughts_and_answer_across_chunk_boundaries() -> None:
    splitter = ThoughtStreamSplitter(thoughts_enabled=True)
    parts: list[tuple[str, str]] = []
    for delta in [
        "THOUGHT: Check ju",
        "risdiction\nTHOUGHT: Consider statute\nFINAL_ANS",
        "WER: The claim is ",
        "time-barred.",
    ]:
        parts.extend(splitter.feed(delta))
    parts.extend(splitter.finish())

    thoughts = [text for part_type, text in parts if part_type == "4"]
    content = "".join(text for part_type, text in parts if part_type == "0")
    assert thoughts == ["Check jurisdiction", "Consider statute"]
    assert content == "The claim is time-barred."


def test_splitter_holds_partial_thought_until_line_completes() -> None:
    splitter = ThoughtStreamSplitter(thoughts_enabled=True)
    assert splitter.feed("THOUGHT: half") == []
    assert splitter.feed(" done\n") == [("4", "half done")]


def test_splitter_finish_drops_dangling_marker_lines() -> None:
    splitter = ThoughtStreamSplitter(thoughts_enabled=True)
    splitter.feed("THOUGHT: never finished")
    assert splitter.finish() == []


def test_consume_function_stream_reads_sse_relay(install_runtime) -> None:
    install_runtime(deltas=["The ", "revised ", "clause."])
    chunks: list[str] = []
    with TestClient(app) as client:
        text = consume_function_stream(
            client,
            "/ai/rewrite-text",
            {"text_to_rewrite": "the clause", "mode": "formal"},
            StreamCallbacks(on_chunk=chunks.append),
        )
    assert text == "The revised clause."
    assert chunks == ["The ", "revised ", "clause."]


def test_consume_function_stream_reads_data_stream_with_thoughts(install_runtime) -> None:
    install_runtime(deltas=["THOUGHT: Look at the lease\n", "FINAL_ANSWER: ", "Thirty days."])
    thoughts: list[str] = []
    with TestClient(app) as client:
        text = consume_function_stream(
            client,
            "/chat",
            {
                "messages": [{"role": "user", "content": "Notice period?"}],
                "case_id": "case-1",
                "user_id": "user-1",
            },
            StreamCallbacks(on_thought=thoughts.append),
            headers={"X-Experimental-Stream-Thoughts": "true"},
        )
    assert thoughts == ["Look at the lease"]
    assert text == "Thirty days."


def test_consume_function_stream_reports_http_errors(install_runtime) -> None:
    install_runtime(deltas=["unused"])
    errors: list[str] = []
    with TestClient(app) as client:
        with pytest.raises(httpx.HTTPStatusError):
            consume_function_stream(
                client,
                "/ai/rewrite-text",
                {"text_to_rewrite": "   "},
                StreamCallbacks(on_error=errors.append),
            )
    assert errors == ["Missing required parameter: text_to_rewrite"]


def test_consume_function_stream_stops_on_error_event() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = 'data: "ok"\n\nevent: error\ndata: {"error": "upstream closed"}\n\n'
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, text=body)

    errors: list[str] = []
    with httpx.Client(transport=httpx.MockTransport(handler), base_url="http://functions.test") as client:
        text = consume_function_stream(client, "/ai/agent-draft", {}, StreamCallbacks(on_error=errors.append))
    assert text == "ok"
    assert errors == ["upstream closed"]
