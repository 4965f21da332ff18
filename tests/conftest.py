import json

import httpx
import pytest
from fastapi.testclient import TestClient

from k2proxy.api import create_app
from k2proxy.config import ProxyConfig

UPSTREAM_URL = "http://upstream.test/api/guest/chat/completions"

REASONING_OPEN = (
    '<details type="reasoning" done="false">'
    "<summary>Thinking…</summary>"
)


def snapshot(reasoning, answer=None, closed=None):
    """Build one cumulative upstream document."""
    text = REASONING_OPEN + reasoning
    if closed or (closed is None and answer is not None):
        text += "</details>"
    if answer is not None:
        text += f"<answer>{answer}</answer>"
    return text


def sse_event(payload):
    if not isinstance(payload, str):
        payload = json.dumps(payload, ensure_ascii=False)
    return f"data: {payload}\n\n".encode()


def sse_body(*payloads):
    return b"".join(sse_event(payload) for payload in payloads)


def choice_event(content):
    return {"choices": [{"delta": {"content": content}, "index": 0}]}


def parse_frames(lines):
    """Split SSE text lines into decoded chunk dicts and raw sentinel lines."""
    frames = []
    for line in lines:
        if not line.strip():
            continue
        data = line[len("data: "):]
        frames.append(data if data == "[DONE]" else json.loads(data))
    return frames


# Cumulative snapshots: reasoning grows, then the answer appears and grows.
MOCK_SNAPSHOTS = [
    snapshot("Let me think", closed=True),
    snapshot("Let me think about 2+2.", closed=True),
    snapshot("Let me think about 2+2.", answer="The answer"),
    snapshot("Let me think about 2+2.", answer="The answer is 4."),
]

MOCK_STREAM_BODY = sse_body(
    *[{"content": text} for text in MOCK_SNAPSHOTS], {"done": True}
)


class MockUpstream:
    """Fake upstream for httpx.MockTransport that records what it was sent."""

    def __init__(self, status_code=200, body=b"", chunks=None, error=None):
        self.status_code = status_code
        self.body = body
        self.chunks = chunks
        self.error = error
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        headers = {"content-type": "text/event-stream"}
        if self.chunks is not None:
            return httpx.Response(
                self.status_code, content=self._iter_chunks(), headers=headers
            )
        return httpx.Response(self.status_code, content=self.body, headers=headers)

    async def _iter_chunks(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    @property
    def last_payload(self):
        return json.loads(self.requests[-1].content)


@pytest.fixture
def proxy_config():
    return ProxyConfig(upstream_url=UPSTREAM_URL)


@pytest.fixture
def make_client(proxy_config):
    """Create a test client whose upstream calls go to ``upstream``."""

    def _make_client(upstream, **overrides):
        config = proxy_config.model_copy(update=overrides)
        app = create_app(config, transport=httpx.MockTransport(upstream))
        return TestClient(app)

    return _make_client


@pytest.fixture
def mock_upstream():
    return MockUpstream(body=MOCK_STREAM_BODY)


@pytest.fixture
def test_client(make_client, mock_upstream):
    return make_client(mock_upstream)
