"""Aggregation mode for non-streaming clients."""

import logging
import time
from typing import AsyncIterable, List

import httpx

from .errors import StreamFailure
from .models import ChatCompletionResponse, Choice, Message, Usage
from .sse import iter_event_lines, decode_payload
from .streaming import new_stream_id
from .utils import extract_reasoning_and_answer, normalize_newlines

logger = logging.getLogger(__name__)


async def aggregate_stream(chunks: AsyncIterable[bytes]) -> str:
    """
    Read the whole upstream stream and return only the final answer text.

    Every decoded content piece is concatenated, the sections are extracted
    once from the concatenation and the reasoning is discarded. Literal
    ``\\n`` sequences in the answer become real newlines.

    Raises:
        StreamFailure: the upstream connection broke before completion
    """
    pieces: List[str] = []
    lines = iter_event_lines(chunks)
    try:
        async for payload in lines:
            decoded = decode_payload(payload)
            if decoded.is_terminal:
                break
            if decoded.content:
                pieces.append(decoded.content)
    except httpx.HTTPError as e:
        logger.error(f"Error aggregating upstream stream: {str(e)}")
        raise StreamFailure(f"Stream error: {str(e)}") from e
    finally:
        await lines.aclose()

    _, answer = extract_reasoning_and_answer("".join(pieces))
    logger.info(f"Aggregated {len(pieces)} content pieces into {len(answer)} answer characters")
    return normalize_newlines(answer)


def build_completion_response(content: str, model: str) -> ChatCompletionResponse:
    """Wrap an aggregated answer in a ``chat.completion`` body; usage is always zero."""
    return ChatCompletionResponse(
        id=new_stream_id(),
        created=int(time.time()),
        model=model,
        choices=[
            Choice(
                index=0,
                message=Message(role="assistant", content=content),
                finish_reason="stop",
            )
        ],
        usage=Usage(),
    )
