"""
Tests for the frame splitter and payload decoder.
"""
import pytest
from grappa import should

from k2proxy.sse import (
    SSELineSplitter,
    iter_event_lines,
    decode_payload,
    ChoiceDeltaPayload,
    LiteralPayload,
    PlainContentPayload,
    TerminalPayload,
    UnrecognizedPayload,
    UsagePayload,
)


async def _chunks(*chunks):
    for chunk in chunks:
        yield chunk


async def _collect(*chunks):
    return [payload async for payload in iter_event_lines(_chunks(*chunks))]


def test_splitter_complete_lines():
    splitter = SSELineSplitter()
    splitter.feed(b'data: {"content": "a"}\n\ndata: {"content": "b"}\n\n') | should.equal(
        ['{"content": "a"}', '{"content": "b"}']
    )
    splitter.buffer | should.equal("")


def test_splitter_carries_partial_line_over():
    splitter = SSELineSplitter()
    splitter.feed(b'data: {"content": "hel') | should.equal([])
    splitter.buffer | should.equal('data: {"content": "hel')
    splitter.feed(b'lo"}\n') | should.equal(['{"content": "hello"}'])


def test_splitter_multibyte_character_split_across_chunks():
    encoded = 'data: {"content": "思考"}\n'.encode()
    split_at = encoded.index("思".encode()) + 1
    splitter = SSELineSplitter()
    splitter.feed(encoded[:split_at]) | should.equal([])
    splitter.feed(encoded[split_at:]) | should.equal(['{"content": "思考"}'])


def test_splitter_discards_non_data_lines():
    splitter = SSELineSplitter()
    body = b"event: message\nid: 7\n: comment\nretry: 100\ndata: kept\n\n"
    splitter.feed(body) | should.equal(["kept"])


def test_splitter_filters_sentinels_and_empty_payloads():
    splitter = SSELineSplitter()
    body = b"data: -1\ndata: [DONE]\ndata: DONE\ndata: done\ndata:\ndata:   \ndata: Done\n"
    # Sentinels are matched case-sensitively, so "Done" is ordinary content.
    splitter.feed(body) | should.equal(["Done"])


def test_splitter_strips_carriage_returns():
    splitter = SSELineSplitter()
    splitter.feed(b"data: [DONE]\r\ndata: text\r\n") | should.equal(["text"])


def test_splitter_flush_returns_unterminated_line():
    splitter = SSELineSplitter()
    splitter.feed(b'data: {"content": "tail"}') | should.equal([])
    splitter.flush() | should.equal(['{"content": "tail"}'])
    splitter.flush() | should.equal([])


@pytest.mark.asyncio
async def test_iter_event_lines_across_arbitrary_chunks():
    body = b'data: {"content": "a"}\n\ndata: [DONE]\n\ndata: {"content": "b"}'
    chunks = [body[i:i + 3] for i in range(0, len(body), 3)]
    payloads = await _collect(*chunks)
    payloads | should.equal(['{"content": "a"}', '{"content": "b"}'])


def test_decode_usage_takes_precedence():
    decoded = decode_payload('{"usage": {"total_tokens": 5}, "done": true, "content": "x"}')
    decoded | should.equal(UsagePayload(usage={"total_tokens": 5}))
    decoded.as_tuple() | should.equal(("", False, {"total_tokens": 5}, None))


def test_decode_terminal():
    decoded = decode_payload('{"done": true}')
    decoded | should.equal(TerminalPayload(is_terminal=True))
    decoded.as_tuple() | should.equal(("", True, None, None))


def test_decode_done_must_be_true():
    decode_payload('{"done": "true", "content": "x"}') | should.equal(
        PlainContentPayload(content="x")
    )


def test_decode_choice_delta():
    decoded = decode_payload(
        '{"choices": [{"delta": {"role": "assistant", "content": "hi"}}]}'
    )
    decoded | should.equal(ChoiceDeltaPayload(content="hi", role="assistant"))


def test_decode_choice_delta_defaults():
    decode_payload('{"choices": [{"index": 0}]}').as_tuple() | should.equal(
        ("", False, None, None)
    )
    decode_payload('{"choices": [{"delta": {"content": null}}]}').content | should.equal("")


def test_decode_empty_choices_falls_through_to_content():
    decode_payload('{"choices": [], "content": "plain"}') | should.equal(
        PlainContentPayload(content="plain")
    )


def test_decode_plain_content():
    decode_payload('{"content": "<answer>hi</answer>"}') | should.equal(
        PlainContentPayload(content="<answer>hi</answer>")
    )


def test_decode_unrecognized():
    decode_payload('{"content": 5}') | should.equal(UnrecognizedPayload())
    decode_payload('{"something": "else"}') | should.equal(UnrecognizedPayload())
    decode_payload("[1, 2]") | should.equal(UnrecognizedPayload())
    decode_payload('"quoted"') | should.equal(UnrecognizedPayload())


def test_decode_malformed_json_is_literal_content():
    decoded = decode_payload("{not json")
    decoded | should.equal(LiteralPayload(content="{not json"))
    decoded.as_tuple() | should.equal(("{not json", False, None, None))


def test_decode_deeply_nested_json_is_literal_content():
    payload = "[" * 100_000
    decode_payload(payload) | should.equal(LiteralPayload(content=payload))


def test_decode_empty_usage_object_still_counts_as_usage():
    decode_payload('{"usage": {}, "done": true}') | should.equal(UsagePayload(usage={}))
    decode_payload('{"usage": null, "done": true}') | should.equal(
        TerminalPayload(is_terminal=True)
    )
