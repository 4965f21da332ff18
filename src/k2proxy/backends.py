"""Upstream handling for the K2 proxy."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .config import ProxyConfig
from .errors import StreamFailure, UpstreamHTTPError

logger = logging.getLogger(__name__)


def build_upstream_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Convert OpenAI chat messages into the upstream's user/assistant list.

    The upstream has no system role: the last system message is prepended to
    the first user message, or sent as a leading user message when there is
    no user message at all. Messages with other roles are dropped.
    """
    upstream_messages: List[Dict[str, Any]] = []
    system_prompt = ""

    for message in messages:
        role = message.get("role")
        if role == "system":
            system_prompt = message.get("content") or ""
        elif role in ("user", "assistant"):
            upstream_messages.append({"role": role, "content": message.get("content")})

    if system_prompt:
        for message in upstream_messages:
            if message["role"] == "user":
                message["content"] = f"{system_prompt}\n\n{message['content']}"
                break
        else:
            upstream_messages.insert(0, {"role": "user", "content": system_prompt})

    return upstream_messages


def build_upstream_payload(
    messages: List[Dict[str, Any]], model: Optional[str]
) -> Dict[str, Any]:
    """The upstream is always asked for a stream, even for non-streaming clients."""
    return {
        "stream": True,
        "model": model,
        "messages": build_upstream_messages(messages),
        "params": {},
    }


class UpstreamStream:
    """
    An open upstream response together with the client that owns it.

    ``aclose`` releases both; callers must call it on every exit path.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self.client = client
        self.response = response

    @property
    def status_code(self) -> int:
        return self.response.status_code

    def aiter_bytes(self) -> AsyncIterator[bytes]:
        return self.response.aiter_bytes()

    async def aclose(self) -> None:
        try:
            await self.response.aclose()
        finally:
            await self.client.aclose()


async def open_upstream_stream(
    payload: Dict[str, Any],
    config: ProxyConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> UpstreamStream:
    """
    Send the single upstream request and return its still-unread body.

    Args:
        payload: Upstream request body
        config: Proxy configuration carrying the upstream URL and headers
        transport: Optional httpx transport, used by tests to fake the upstream

    Raises:
        UpstreamHTTPError: the upstream answered with a non-success status
        StreamFailure: the request could not be sent
    """
    client = httpx.AsyncClient(transport=transport, timeout=config.timeout)
    logger.info(f"Calling upstream at {config.upstream_url}")
    try:
        request = client.build_request(
            "POST", config.upstream_url, json=payload, headers=config.upstream_headers
        )
        response = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        await client.aclose()
        logger.error(f"Error calling upstream: {str(e)}")
        raise StreamFailure(f"Stream error: {str(e)}") from e

    if not response.is_success:
        try:
            body = (await response.aread()).decode(errors="replace")
        except httpx.HTTPError:
            body = ""
        finally:
            await response.aclose()
            await client.aclose()
        logger.error(f"K2Think API error: {response.status_code} {body}")
        raise UpstreamHTTPError(response.status_code, body)

    return UpstreamStream(client, response)
