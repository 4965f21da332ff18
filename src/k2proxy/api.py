"""FastAPI application and routes for the K2 proxy."""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Iterable, Optional

import httpx
from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .aggregation import aggregate_stream, build_completion_response
from .backends import build_upstream_payload, open_upstream_stream
from .config import ProxyConfig
from .errors import AuthenticationError, InvalidRequestError, ProxyError
from .models import ChatCompletionRequest, ModelCard, ModelList
from .streaming import stream_chat_completion

logger = logging.getLogger(__name__)

router = APIRouter()


def check_api_key(authorization: Optional[str], valid_keys: Iterable[str]) -> None:
    """
    Validate the client key from the Authorization header.

    Accepts a bare key or ``Bearer <key>``. Nothing is checked when no keys
    are configured.

    Raises:
        AuthenticationError: the header is missing or carries an unknown key
    """
    keys = set(valid_keys)
    if not keys:
        return
    if not authorization:
        raise AuthenticationError("API key required")
    api_key = authorization
    if authorization.startswith("Bearer "):
        api_key = authorization[len("Bearer "):]
    if not api_key or api_key not in keys:
        raise AuthenticationError("Invalid API key")


def parse_chat_request(body: bytes) -> ChatCompletionRequest:
    try:
        request_data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidRequestError("Invalid JSON")
    if not isinstance(request_data, dict):
        raise InvalidRequestError("Invalid JSON")
    try:
        chat_request = ChatCompletionRequest.model_validate(request_data)
    except ValidationError as e:
        raise InvalidRequestError(f"Invalid request: {e.errors()[0]['msg']}")
    if not chat_request.messages:
        raise InvalidRequestError("Messages required")
    return chat_request


@router.post("/v1/chat/completions")
@router.post("/chat/completions")
async def proxy_chat_completions(request: Request) -> Response:
    """
    Chat completions endpoint:
    - Checks the client API key when keys are configured
    - Makes exactly one streaming call to the upstream
    - Re-emits it as OpenAI chunks, or aggregates it into one answer
    """
    config: ProxyConfig = request.app.state.config
    transport = request.app.state.transport

    check_api_key(request.headers.get("authorization"), config.client_api_keys)
    chat_request = parse_chat_request(await request.body())

    model = chat_request.model or config.model_id
    payload = build_upstream_payload(
        [message.model_dump() for message in chat_request.messages], model
    )

    upstream = await open_upstream_stream(payload, config, transport)

    if chat_request.stream:
        return StreamingResponse(
            stream_chat_completion(upstream, model),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    try:
        content = await aggregate_stream(upstream.aiter_bytes())
    finally:
        await upstream.aclose()

    completion = build_completion_response(content, model)
    return JSONResponse(completion.model_dump(exclude_none=True))


@router.get("/v1/models")
@router.get("/models")
async def list_models(request: Request):
    config: ProxyConfig = request.app.state.config
    models = ModelList(
        data=[
            ModelCard(
                id=config.model_id,
                created=int(time.time()),
                owned_by=config.model_owner,
            )
        ]
    )
    return models.model_dump()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


async def handle_proxy_error(request: Request, exc: ProxyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"Error in proxy: {exc.message}")
    else:
        logger.warning(f"Rejected request to {request.url.path}: {exc.message}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_type = "not_found" if exc.status_code == 404 else "http_error"
    return JSONResponse(
        {"error": {"message": str(exc.detail), "type": error_type}},
        status_code=exc.status_code,
    )


def create_app(
    config: ProxyConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """
    Build the proxy application.

    Args:
        config: Proxy configuration, kept on ``app.state``
        transport: Optional httpx transport for upstream calls, used by tests
    """
    app = FastAPI(title="K2 Proxy")
    app.state.config = config
    app.state.transport = transport

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ProxyError, handle_proxy_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.include_router(router)
    return app
