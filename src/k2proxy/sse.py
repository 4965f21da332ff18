"""Upstream SSE framing and payload decoding.

The upstream body is a sequence of ``data: <payload>`` lines. ``SSELineSplitter``
turns arbitrarily chunked bytes into payload strings, and ``decode_payload``
classifies each payload into one of the variants below, in precedence order:

1. ``UsagePayload``: the object carries a usage field
2. ``TerminalPayload``: the object has ``done: true``
3. ``ChoiceDeltaPayload``: OpenAI-style ``choices[0].delta``
4. ``PlainContentPayload``: a top-level string ``content``
5. ``UnrecognizedPayload``: anything else that parsed as JSON

A payload that is not JSON at all becomes a ``LiteralPayload`` whose content
is the raw text.
"""

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
COMPLETION_SENTINELS = frozenset({"-1", "[DONE]", "DONE", "done"})


class SSELineSplitter:
    """
    Incrementally splits raw upstream bytes into ``data:`` payloads.

    Bytes are decoded with an incremental UTF-8 decoder so multi-byte
    characters split across chunks survive. The last, possibly incomplete,
    line of every chunk is carried over to the next one. Non-``data:`` lines,
    empty payloads and completion sentinels never leave the splitter.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self.buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        """Add a chunk and return the payloads of every completed line."""
        self.buffer += self._decoder.decode(chunk)
        lines = self.buffer.split("\n")
        self.buffer = lines.pop()
        return self._payloads(lines)

    def flush(self) -> List[str]:
        """Finish decoding and return the payload of a trailing unterminated line."""
        self.buffer += self._decoder.decode(b"", final=True)
        lines = self.buffer.split("\n")
        self.buffer = ""
        return self._payloads(lines)

    def _payloads(self, lines: List[str]) -> List[str]:
        payloads = []
        for line in lines:
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX):].strip()
            if not payload or payload in COMPLETION_SENTINELS:
                continue
            payloads.append(payload)
        return payloads


async def iter_event_lines(chunks: AsyncIterable[bytes]) -> AsyncGenerator[str, None]:
    """Yield the payload of every ``data:`` line in an async byte stream."""
    splitter = SSELineSplitter()
    async for chunk in chunks:
        for payload in splitter.feed(chunk):
            yield payload
    for payload in splitter.flush():
        yield payload


@dataclass(frozen=True)
class DecodedPayload:
    """Normalized view of one upstream payload."""

    content: str = ""
    is_terminal: bool = False
    usage: Optional[Dict[str, Any]] = None
    role: Optional[str] = None

    def as_tuple(self) -> Tuple[str, bool, Optional[Dict[str, Any]], Optional[str]]:
        return self.content, self.is_terminal, self.usage, self.role


class UsagePayload(DecodedPayload):
    pass


class TerminalPayload(DecodedPayload):
    pass


class ChoiceDeltaPayload(DecodedPayload):
    pass


class PlainContentPayload(DecodedPayload):
    pass


class UnrecognizedPayload(DecodedPayload):
    pass


class LiteralPayload(DecodedPayload):
    pass


def _is_set(value: Any) -> bool:
    """Presence test for upstream fields; an empty object or list still counts."""
    return isinstance(value, (dict, list)) or bool(value)


def classify_payload(obj: Any) -> DecodedPayload:
    """Map a parsed JSON value onto its payload variant."""
    if not isinstance(obj, dict):
        return UnrecognizedPayload()

    if _is_set(obj.get("usage")):
        return UsagePayload(usage=obj["usage"])

    if obj.get("done") is True:
        return TerminalPayload(is_terminal=True, usage=obj.get("usage") or None)

    choices = obj.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0] if isinstance(choices[0], dict) else {}
        delta = first.get("delta")
        if not isinstance(delta, dict):
            delta = {}
        content = delta.get("content")
        role = delta.get("role")
        return ChoiceDeltaPayload(
            content=content if isinstance(content, str) else "",
            role=role if isinstance(role, str) and role else None,
        )

    if isinstance(obj.get("content"), str):
        return PlainContentPayload(content=obj["content"])

    return UnrecognizedPayload()


def decode_payload(payload: str) -> DecodedPayload:
    """Decode one event payload; text that is not JSON is kept as literal content."""
    try:
        obj = json.loads(payload)
    except (ValueError, RecursionError):
        logger.debug("Treating non-JSON payload as literal content: %.80s", payload)
        return LiteralPayload(content=payload)
    return classify_payload(obj)
