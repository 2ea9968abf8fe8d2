"""
FastAPI application.

Thin HTTP shim over the chat orchestrator. Route handlers are plain
functions so FastAPI runs them in its thread pool, one request per thread.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from chat_relay import __version__
from chat_relay.config.loader import load_relay_config
from chat_relay.config.settings import Settings, get_settings
from chat_relay.core.errors import InvalidRequest, RelayError
from chat_relay.core.orchestrator import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    DEFAULT_USER_ID,
    ChatOrchestrator,
    ChatRequest,
    create_orchestrator,
)
from chat_relay.log import get_logger, setup_logging

logger = get_logger(__name__)

# Request bodies above this size are rejected outright
MAX_BODY_BYTES = 200 * 1024

UNLIMITED = "unlimited"


class ChatBody(BaseModel):
    userId: str = Field(DEFAULT_USER_ID, description="Opaque user identifier")
    message: Optional[str] = Field(None, description="User's latest message")
    system: Optional[str] = Field(None, description="System prompt override")
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS


class EntitlementBody(BaseModel):
    userId: Optional[str] = None
    level: Optional[str] = None
    tier: Optional[str] = Field(None, description="Alias of level")
    bonusRequests: Optional[int] = None


def _error_response(error: RelayError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=jsonable_encoder(error.to_dict()))


class BodySizeLimitMiddleware:
    """Reject request bodies larger than ``max_body_size`` bytes.

    A declared Content-Length is checked up front. Bodies without one
    (chunked uploads) are buffered while counting and replayed to the app
    only when they stay under the limit.
    """

    def __init__(self, app: ASGIApp, max_body_size: int = MAX_BODY_BYTES):
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length")
        if length is not None and length.isdigit():
            if int(length) > self.max_body_size:
                await self._reject(scope, receive, send, int(length))
                return
            await self.app(scope, receive, send)
            return

        chunks = []
        size = 0
        while True:
            message = await receive()
            if message["type"] != "http.request":
                return
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.max_body_size:
                await self._reject(scope, receive, send, size)
                return
            chunks.append(chunk)
            if not message.get("more_body", False):
                break

        body = b"".join(chunks)
        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if replayed:
                return await receive()
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}

        await self.app(scope, replay, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send, size: int) -> None:
        logger.warning("body_too_large", path=scope.get("path"), size=size)
        response = _error_response(InvalidRequest("request body too large"))
        await response(scope, receive, send)


def create_app(
    orchestrator: Optional[ChatOrchestrator] = None,
    settings: Optional[Settings] = None
) -> FastAPI:
    """Build the relay application.

    Args:
        orchestrator: Pre-wired orchestrator. Built from settings when omitted.
        settings: Process settings. Read from the environment when omitted.

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    if orchestrator is None:
        setup_logging(settings.log_level, settings.log_format)
        config = load_relay_config(settings.config_path)
        orchestrator = create_orchestrator(settings, config)

    app = FastAPI(title="Chat Relay", version=__version__)
    app.state.orchestrator = orchestrator

    app.add_middleware(BodySizeLimitMiddleware, max_body_size=MAX_BODY_BYTES)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RelayError)
    async def handle_relay_error(request: Request, exc: RelayError):
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return _error_response(
            InvalidRequest("invalid request body", {"errors": jsonable_encoder(exc.errors())})
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "server_error", "message": "internal server error"},
        )

    @app.post("/api/chat")
    def chat(body: ChatBody) -> Dict[str, Any]:
        result = orchestrator.submit(ChatRequest(
            message=body.message,
            user_id=body.userId,
            system=body.system,
            temperature=body.temperature,
            max_tokens=body.max_tokens,
        ))
        remaining = UNLIMITED if result.remaining is None else result.remaining
        return {
            "ok": True,
            "reply": result.reply,
            "meta": {
                "userId": result.user_id,
                "model": result.model,
                "remainingRequests": remaining,
            },
        }

    @app.get("/api/history")
    def history(userId: Optional[str] = Query(None)) -> Dict[str, Any]:
        messages = orchestrator.history(userId)
        return {"history": [message.to_dict() for message in messages]}

    @app.post("/api/user/updateTier")
    def update_tier(body: EntitlementBody) -> Dict[str, Any]:
        user = orchestrator.update_entitlement(
            body.userId,
            level=body.level if body.level is not None else body.tier,
            bonus_requests=body.bonusRequests,
        )
        return {"ok": True, "user": user.to_dict()}

    @app.post("/api/admin/resetUsage")
    def reset_usage(x_admin_key: Optional[str] = Header(None)) -> Dict[str, Any]:
        count = orchestrator.bulk_reset(x_admin_key)
        return {"ok": True, "reset": count}

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True}

    return app
