"""Error kinds raised by the K2 proxy.

Malformed upstream payloads and unparseable sections are recovered where they
occur and never show up here.
"""

from typing import Any, Dict, Optional


class ProxyError(Exception):
    """Base error rendered to clients as ``{"error": {"message", "type"}}``."""

    error_type = "proxy_error"
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"message": self.message, "type": self.error_type}}


class UpstreamHTTPError(ProxyError):
    """The upstream answered with a non-success status."""

    error_type = "upstream_error"

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"K2Think API error: {status_code}", status_code=status_code)
        self.upstream_status = status_code
        self.body = body

    def to_dict(self) -> Dict[str, Any]:
        content = super().to_dict()
        content["error"]["status_code"] = self.upstream_status
        return content


class StreamFailure(ProxyError):
    """Network failure while talking to the upstream."""

    error_type = "stream_error"
    status_code = 502


class AuthenticationError(ProxyError):
    error_type = "auth_error"
    status_code = 401


class InvalidRequestError(ProxyError):
    error_type = "invalid_request_error"
    status_code = 400
