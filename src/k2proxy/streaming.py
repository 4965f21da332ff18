"""Streaming translation for the K2 proxy.

Upstream events carry the whole generated document every time. The
``DeltaEngine`` re-extracts the reasoning and answer sections from each
snapshot and emits only what was appended since the previous one, first for
the reasoning phase and then, after a single transition, for the answer phase.
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, AsyncIterable, Dict, List, Optional

import httpx

from .backends import UpstreamStream
from .errors import StreamFailure
from .sse import iter_event_lines, decode_payload
from .utils import extract_reasoning_and_answer, calculate_delta_content

logger = logging.getLogger(__name__)

DONE_FRAME = b"data: [DONE]\n\n"


class Phase(str, Enum):
    REASONING = "reasoning"
    ANSWERING = "answering"


class DeltaKind(str, Enum):
    ROLE = "role"
    REASONING = "reasoning"
    ANSWER = "answer"
    STOP = "stop"
    DONE = "done"


@dataclass(frozen=True)
class DeltaEvent:
    kind: DeltaKind
    text: str = ""


ROLE_ANNOUNCE = DeltaEvent(DeltaKind.ROLE)
STOP = DeltaEvent(DeltaKind.STOP)
DONE = DeltaEvent(DeltaKind.DONE)


def reasoning_delta(text: str) -> DeltaEvent:
    return DeltaEvent(DeltaKind.REASONING, text)


def answer_delta(text: str) -> DeltaEvent:
    return DeltaEvent(DeltaKind.ANSWER, text)


def new_stream_id() -> str:
    return f"chatcmpl-{uuid.uuid4()}"


@dataclass
class TranslationState:
    """Mutable state owned by exactly one client request."""

    previous_reasoning: str = ""
    previous_answer: str = ""
    phase: Phase = Phase.REASONING
    stream_id: str = field(default_factory=new_stream_id)
    created_at: int = field(default_factory=lambda: int(time.time()))


class DeltaEngine:
    """
    Two-phase state machine turning cumulative snapshots into delta events.

    The engine starts in ``Phase.REASONING`` and moves to ``Phase.ANSWERING``
    the first time a snapshot contains a complete answer block. There is no
    way back. Empty-after-trim deltas are never emitted; the tracked previous
    value only advances when a delta is emitted, so suppressed whitespace is
    carried into the next delta.
    """

    def __init__(self, state: Optional[TranslationState] = None):
        self.state = state or TranslationState()

    @property
    def phase(self) -> Phase:
        return self.state.phase

    def update(self, snapshot: str) -> List[DeltaEvent]:
        """Process one snapshot and return the events it produces, in order."""
        state = self.state
        current_reasoning, current_answer = extract_reasoning_and_answer(snapshot)
        events: List[DeltaEvent] = []

        if state.phase is Phase.REASONING and current_reasoning:
            delta = calculate_delta_content(state.previous_reasoning, current_reasoning)
            if delta.strip():
                events.append(reasoning_delta(delta))
                state.previous_reasoning = current_reasoning

        if state.phase is Phase.REASONING and current_answer:
            if current_reasoning and current_reasoning != state.previous_reasoning:
                residual = calculate_delta_content(
                    state.previous_reasoning, current_reasoning
                )
                if residual.strip():
                    events.append(reasoning_delta(residual))
            self._start_answering()

        if state.phase is Phase.ANSWERING and current_answer:
            delta = calculate_delta_content(state.previous_answer, current_answer)
            if delta.strip():
                events.append(answer_delta(delta))
                state.previous_answer = current_answer

        return events

    def _start_answering(self) -> None:
        if self.state.phase is not Phase.REASONING:
            raise RuntimeError("Answer phase can only be entered once")
        logger.debug(f"Stream {self.state.stream_id} switching to answer phase")
        self.state.phase = Phase.ANSWERING


async def translate_stream(
    chunks: AsyncIterable[bytes], state: Optional[TranslationState] = None
) -> AsyncGenerator[DeltaEvent, None]:
    """
    Turn raw upstream bytes into the ordered sequence of delta events.

    Always starts with a role announcement and, unless the transport fails,
    always ends with ``STOP`` then ``DONE`` whether or not the upstream sent an
    explicit terminal signal. Nothing after a terminal signal is read.

    Raises:
        StreamFailure: the upstream connection broke mid-stream
    """
    engine = DeltaEngine(state)
    yield ROLE_ANNOUNCE

    lines = iter_event_lines(chunks)
    try:
        async for payload in lines:
            decoded = decode_payload(payload)
            if decoded.is_terminal:
                logger.info(f"Upstream signalled completion for {engine.state.stream_id}")
                break
            if decoded.usage:
                logger.debug(f"Upstream usage report: {decoded.usage}")
            if not decoded.content:
                continue
            for event in engine.update(decoded.content):
                yield event
    except httpx.HTTPError as e:
        raise StreamFailure(f"Stream error: {str(e)}") from e
    finally:
        await lines.aclose()

    yield STOP
    yield DONE


def create_stream_chunk(
    stream_id: str,
    created: int,
    model: str,
    delta: Dict[str, Any],
    finish_reason: Optional[str] = None,
) -> bytes:
    """Render one ``chat.completion.chunk`` SSE frame."""
    choice: Dict[str, Any] = {"delta": delta, "index": 0}
    if finish_reason:
        choice["finish_reason"] = finish_reason
    chunk = {
        "id": stream_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model,
        "choices": [choice],
    }
    return f"data: {json.dumps(chunk, ensure_ascii=False)}\n\n".encode()


def encode_event(event: DeltaEvent, state: TranslationState, model: str) -> bytes:
    """Map a delta event onto its wire frame."""
    if event.kind is DeltaKind.DONE:
        return DONE_FRAME
    if event.kind is DeltaKind.ROLE:
        delta: Dict[str, Any] = {"role": "assistant"}
    elif event.kind is DeltaKind.REASONING:
        delta = {"reasoning_content": event.text}
    elif event.kind is DeltaKind.ANSWER:
        delta = {"content": event.text}
    else:
        return create_stream_chunk(state.stream_id, state.created_at, model, {}, "stop")
    return create_stream_chunk(state.stream_id, state.created_at, model, delta)


def create_error_frame(error: Exception) -> bytes:
    message = getattr(error, "message", None) or str(error)
    content = {"error": {"message": message, "type": getattr(error, "error_type", "proxy_error")}}
    return f"data: {json.dumps(content, ensure_ascii=False)}\n\n".encode()


async def stream_chat_completion(
    upstream: UpstreamStream, model: str
) -> AsyncGenerator[bytes, None]:
    """
    SSE body for a streaming chat completion.

    Owns ``upstream`` and closes it on every exit path, including
    cancellation when the client disconnects.
    """
    state = TranslationState()
    logger.info(f"Starting stream {state.stream_id} for model: {model}")
    events = translate_stream(upstream.aiter_bytes(), state)
    try:
        async for event in events:
            yield encode_event(event, state, model)
        logger.info(f"Stream {state.stream_id} completed")
    except StreamFailure as e:
        logger.error(f"Stream {state.stream_id} failed: {e.message}")
        yield create_error_frame(e)
    finally:
        await upstream.aclose()
        await events.aclose()
