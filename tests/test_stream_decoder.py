"""
Tests for the Local (NDJSON) and Compatible (SSE) stream decoders:
- chunk-boundary invariance (every byte split)
- stop at the first final delta
- lenient skipping of malformed lines
- end-of-stream handling (synthesized final, mid-frame close)
- provider error payloads and the non-streaming wrapper
"""

import pytest

from chatstream.core.ai.base import Dialect
from chatstream.core.errors import DecodeError
from chatstream.core.models import Delta
from chatstream.core.stream_decoder import (
    CompatibleStreamDecoder,
    LocalStreamDecoder,
    decode_complete,
    decoder_for,
)

from conftest import SSE_DONE, local_line, run_async, sse_frame


def feed_all(decoder, chunks):
    deltas = []
    for chunk in chunks:
        deltas.extend(decoder.feed(chunk))
    deltas.extend(decoder.finish())
    return deltas


async def chunks_of(*chunks: bytes):
    for chunk in chunks:
        yield chunk


async def collect(decoder, byte_stream):
    return [d async for d in decoder.decode(byte_stream)]


# ---------------------------------------------------------------------------
# Local dialect
# ---------------------------------------------------------------------------

def test_local_stops_at_done_and_never_reads_the_next_line():
    data = (
        b'{"message":{"content":"A"},"done":false}\n'
        b'{"message":{"content":"B"},"done":true}\n'
        b'{"message":{"content":"C"},"done":false}\n'
    )
    decoder = LocalStreamDecoder()
    deltas = decoder.feed(data)

    assert deltas == [Delta("A", False), Delta("B", True)]
    assert decoder.finished
    assert decoder.feed(local_line("D")) == []
    assert decoder.finish() == []


def test_local_every_byte_split_yields_same_text():
    data = local_line("Grüße, ") + local_line("日本語 ") + local_line("ok", done=True)
    whole = "".join(d.text for d in feed_all(LocalStreamDecoder(), [data]))
    assert whole == "Grüße, 日本語 ok"

    for i in range(len(data) + 1):
        deltas = feed_all(LocalStreamDecoder(), [data[:i], data[i:]])
        assert "".join(d.text for d in deltas) == whole
        assert [d.final for d in deltas].count(True) == 1


def test_local_byte_at_a_time():
    data = local_line("slow ") + local_line("drip", done=True)
    deltas = feed_all(LocalStreamDecoder(), [data[i:i + 1] for i in range(len(data))])
    assert [d.text for d in deltas] == ["slow ", "drip"]
    assert deltas[-1].final


def test_local_incomplete_line_is_carried_forward():
    decoder = LocalStreamDecoder()
    line = local_line("half")
    assert decoder.feed(line[:10]) == []
    assert decoder.feed(line[10:]) == [Delta("half", False)]


def test_local_skips_malformed_lines():
    data = b"not json\n" + b"{broken\n" + b"[1, 2]\n" + local_line("fine", done=True)
    deltas = feed_all(LocalStreamDecoder(), [data])
    assert deltas == [Delta("fine", True)]


def test_local_completion_shape_is_accepted():
    data = b'{"response":"gen","done":false}\n{"response":"erate","done":true}\n'
    deltas = feed_all(LocalStreamDecoder(), [data])
    assert [d.text for d in deltas] == ["gen", "erate"]


def test_local_prefers_chat_shape_over_completion_shape():
    data = b'{"message":{"content":"chat"},"response":"completion","done":true}\n'
    assert feed_all(LocalStreamDecoder(), [data]) == [Delta("chat", True)]


def test_local_error_payload_is_final_with_message():
    deltas = feed_all(LocalStreamDecoder(), [b'{"error":"model \\"x\\" not found"}\n'])
    assert len(deltas) == 1
    assert deltas[0].final
    assert deltas[0].error_message == 'model "x" not found'


def test_local_eof_without_done_synthesizes_final():
    deltas = feed_all(LocalStreamDecoder(), [local_line("a"), local_line("b")])
    assert deltas == [Delta("a", False), Delta("b", False), Delta("", True)]


def test_local_unterminated_last_line_is_still_decoded():
    data = local_line("a") + b'{"message":{"content":"b"},"done":true}'
    deltas = feed_all(LocalStreamDecoder(), [data])
    assert deltas == [Delta("a", False), Delta("b", True)]


def test_local_stream_closed_mid_frame_raises_decode_error():
    decoder = LocalStreamDecoder()
    decoder.feed(local_line("a") + b'{"message":{"cont')
    with pytest.raises(DecodeError):
        decoder.finish()


def test_crlf_line_endings_are_tolerated():
    data = b'{"message":{"content":"x"},"done":false}\r\n{"done":true}\r\n'
    deltas = feed_all(LocalStreamDecoder(), [data])
    assert deltas == [Delta("x", False), Delta("", True)]


# ---------------------------------------------------------------------------
# Compatible dialect
# ---------------------------------------------------------------------------

def test_compatible_minimal_stream_yields_two_deltas():
    data = b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\ndata: [DONE]\n\n'
    deltas = feed_all(CompatibleStreamDecoder(), [data])
    assert deltas == [Delta("Hi", False), Delta("", True)]


def test_compatible_every_byte_split_yields_same_deltas():
    data = sse_frame("Hel") + sse_frame("lo ") + sse_frame("wörld") + SSE_DONE
    expected = feed_all(CompatibleStreamDecoder(), [data])
    for i in range(len(data) + 1):
        assert feed_all(CompatibleStreamDecoder(), [data[:i], data[i:]]) == expected


def test_compatible_ignores_non_data_lines():
    data = (
        b": keep-alive\n"
        b"event: message\n"
        b"id: 7\n"
        + sse_frame("x")
        + SSE_DONE
    )
    assert feed_all(CompatibleStreamDecoder(), [data]) == [Delta("x", False), Delta("", True)]


def test_compatible_missing_or_null_content_is_empty_text():
    data = (
        sse_frame(None)
        + b'data: {"choices":[{"delta":{"content":null}}]}\n\n'
        + b'data: {"choices":[]}\n\n'
        + SSE_DONE
    )
    deltas = feed_all(CompatibleStreamDecoder(), [data])
    assert deltas == [Delta("", False), Delta("", False), Delta("", False), Delta("", True)]


def test_compatible_skips_malformed_data_frames():
    data = b"data: {not json\n\n" + sse_frame("ok") + SSE_DONE
    assert feed_all(CompatibleStreamDecoder(), [data]) == [Delta("ok", False), Delta("", True)]


def test_compatible_stops_at_done():
    decoder = CompatibleStreamDecoder()
    deltas = decoder.feed(SSE_DONE + sse_frame("late"))
    assert deltas == [Delta("", True)]
    assert decoder.feed(sse_frame("later")) == []


def test_compatible_error_frame():
    data = b'data: {"error":{"message":"Incorrect API key provided"}}\n\n'
    deltas = feed_all(CompatibleStreamDecoder(), [data])
    assert deltas == [Delta("", True, "Incorrect API key provided")]


def test_compatible_eof_without_done_synthesizes_final():
    deltas = feed_all(CompatibleStreamDecoder(), [sse_frame("partial")])
    assert deltas == [Delta("partial", False), Delta("", True)]


def test_compatible_stream_closed_mid_frame_raises_decode_error():
    decoder = CompatibleStreamDecoder()
    decoder.feed(sse_frame("a") + b'data: {"choices":[{"delta":')
    with pytest.raises(DecodeError):
        decoder.finish()


def test_compatible_trailing_non_data_fragment_is_not_an_error():
    deltas = feed_all(CompatibleStreamDecoder(), [sse_frame("a") + b": ping"])
    assert deltas == [Delta("a", False), Delta("", True)]


# ---------------------------------------------------------------------------
# Async decode()
# ---------------------------------------------------------------------------

def test_decode_closes_source_after_final_delta():
    pulled = []
    closed = []

    async def source():
        try:
            for chunk in (local_line("a"), local_line("b", done=True), local_line("never")):
                pulled.append(chunk)
                yield chunk
        finally:
            closed.append(True)

    deltas = run_async(collect(LocalStreamDecoder(), source()))
    assert [d.text for d in deltas] == ["a", "b"]
    assert len(pulled) == 2
    assert closed == [True]


def test_decode_synthesizes_final_at_stream_close():
    deltas = run_async(collect(CompatibleStreamDecoder(), chunks_of(sse_frame("x")[:5], sse_frame("x")[5:])))
    assert deltas == [Delta("x", False), Delta("", True)]


def test_decode_raises_on_mid_frame_close():
    with pytest.raises(DecodeError):
        run_async(collect(LocalStreamDecoder(), chunks_of(b'{"message":')))


# ---------------------------------------------------------------------------
# Non-streaming and factory
# ---------------------------------------------------------------------------

def test_decode_complete_local_payload_is_single_final_delta():
    payload = {"message": {"role": "assistant", "content": "whole answer"}, "done": True}
    assert decode_complete(Dialect.LOCAL, payload) == Delta("whole answer", True)


def test_decode_complete_local_without_done_is_still_final():
    assert decode_complete(Dialect.LOCAL, {"response": "x"}) == Delta("x", True)


def test_decode_complete_compatible_payload():
    payload = {"choices": [{"message": {"role": "assistant", "content": "hello"}}]}
    assert decode_complete(Dialect.COMPATIBLE, payload) == Delta("hello", True)


def test_decode_complete_error_payload():
    delta = decode_complete(Dialect.COMPATIBLE, {"error": {"message": "quota exceeded"}})
    assert delta.final and delta.error_message == "quota exceeded"


def test_decode_complete_rejects_non_object():
    with pytest.raises(DecodeError):
        decode_complete(Dialect.COMPATIBLE, ["not", "an", "object"])


def test_decoder_for_returns_fresh_decoder_per_dialect():
    assert isinstance(decoder_for(Dialect.LOCAL), LocalStreamDecoder)
    assert isinstance(decoder_for(Dialect.COMPATIBLE), CompatibleStreamDecoder)
    assert decoder_for(Dialect.LOCAL) is not decoder_for(Dialect.LOCAL)
