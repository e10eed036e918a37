"""Chat relay between a storefront widget and a hosted text-generation service."""
from __future__ import annotations

import argparse
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from config import Settings, load_settings
from genai_client import GenAIClient
from prompt_builder import StoreMeta, build_prompt
from session_manager import SessionManager, Turn
from utils import (
    LOGGER,
    ClientInputError,
    ConfigError,
    InternalError,
    RelayError,
    UpstreamError,
    configure_logging,
    uvicorn_log_level,
)

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
configure_logging(level=os.environ.get("RELAY_LOGLEVEL"), log_dir=os.environ.get("RELAY_LOGDIR"))

# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    store_meta: Optional[StoreMeta] = Field(default=None, alias="storeMeta")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Optional[Settings] = None,
    session_manager: Optional[SessionManager] = None,
    genai_client: Optional[GenAIClient] = None,
) -> FastAPI:
    """Build the application. Raises :class:`ConfigError` without an API key."""

    if settings is None:
        settings = load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.genai_client.aclose()

    app = FastAPI(title="Storefront Chat Relay", version="0.1.0", lifespan=lifespan)

    app.state.settings = settings
    if session_manager is None:
        session_manager = SessionManager(
            max_turns=settings.session_max_turns,
            ttl_seconds=settings.session_ttl_seconds,
        )
    if genai_client is None:
        genai_client = GenAIClient(settings)
    app.state.session_manager = session_manager
    app.state.genai_client = genai_client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    register_routes(app)
    register_exception_handlers(app)
    LOGGER.info("Relay configured for %s (model=%s)", settings.api_url, settings.model)
    return app


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_genai_client(request: Request) -> GenAIClient:
    return request.app.state.genai_client


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health(request: Request) -> Dict[str, Any]:
        return {"status": "ok", "sessions": len(get_session_manager(request))}

    @app.post("/api/chat")
    async def chat(request: Request, body: Optional[ChatRequest] = None) -> Dict[str, str]:
        if body is None or not body.message:
            raise ClientInputError()

        sessions = get_session_manager(request)
        genai = get_genai_client(request)
        session_id, _ = sessions.get_or_create(body.session_id)

        # Same-session requests run one at a time; other sessions are not blocked.
        async with sessions.lock(session_id):
            sessions.append(session_id, Turn(role="user", text=body.message))
            history = sessions.history(session_id)
            LOGGER.info(
                "Incoming chat",
                extra={
                    "session_id": session_id,
                    "message_len": len(body.message),
                    "history_turns": len(history),
                },
            )
            try:
                prompt = build_prompt(body.store_meta, history, body.message)
                reply = await genai.generate(prompt)
            except UpstreamError as exc:
                LOGGER.warning(
                    "Upstream failure",
                    extra={"session_id": session_id, "upstream_status": exc.upstream_status},
                )
                raise
            except RelayError:
                raise
            except Exception as exc:
                LOGGER.exception("Chat processing failed: %s", exc, extra={"session_id": session_id})
                raise InternalError(str(exc)) from exc

            sessions.append(session_id, Turn(role="assistant", text=reply))

        LOGGER.info("Replied", extra={"session_id": session_id, "reply_len": len(reply)})
        return {"sessionId": session_id, "reply": reply}


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RelayError)
    async def handle_relay_error(_: Request, exc: RelayError):  # type: ignore[override]
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def handle_validation(_: Request, exc: RequestValidationError):  # type: ignore[override]
        detail = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": "invalid_request", "detail": detail})

    @app.exception_handler(Exception)
    async def handle_generic(_: Request, exc: Exception):  # type: ignore[override]
        LOGGER.exception("Unhandled error: %s", exc)
        return JSONResponse(status_code=500, content={"error": "server_error", "detail": str(exc)})


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        sys.exit(1)

    parser = argparse.ArgumentParser(description="Storefront chat relay")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--log-level", default=settings.log_level or "info")
    args = parser.parse_args()

    configure_logging(level=args.log_level, log_dir=settings.log_dir)
    app = create_app(settings)

    import uvicorn

    uvicorn.run(app, host=args.host, port=args.port, log_level=uvicorn_log_level(args.log_level))


if __name__ == "__main__":
    main()
