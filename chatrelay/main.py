from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.concurrency import run_in_threadpool

from .llm import ChatRelay
from .providers import ProviderRegistry
from .settings import SettingsManager, default_data_dir
from .storage import ChatMessage, HistoryStore, JsonFileStore, normalise_history
from .templates import render_index

INVALID_MESSAGE_ERROR = "Message must be an object or a string."


def _configure_logging(log_file: Path) -> logging.Logger:
    logger = logging.getLogger("chatrelay")
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.INFO)
    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False
    logger.debug("Logging initialised, writing to %s", log_file)
    return logger


async def _json_body(request: Request) -> Any:
    body = await request.body()
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        logging.getLogger("chatrelay").debug("Ignoring malformed JSON body on %s", request.url.path)
        return None


def create_app(
    data_dir: Optional[Path] = None,
    *,
    registry: Optional[ProviderRegistry] = None,
    history: Optional[HistoryStore] = None,
    relay: Optional[ChatRelay] = None,
) -> FastAPI:
    """
    Build the API and page around a data directory.

    The registry, history store and relay default to JSON files under
    ``data_dir``; any of them can be injected instead.
    """
    data_dir = data_dir or default_data_dir()
    settings_manager = SettingsManager(data_dir / "settings.json")
    logger = _configure_logging(settings_manager.data_path("log_file"))

    registry = registry or ProviderRegistry(JsonFileStore(settings_manager.data_path("providers_file")))
    history = history or HistoryStore(JsonFileStore(settings_manager.data_path("history_file")))
    relay = relay or ChatRelay(registry, timeout=settings_manager.request_timeout)

    app = FastAPI(title="Chat Relay")
    app.state.settings_manager = settings_manager
    app.state.registry = registry
    app.state.history = history
    app.state.relay = relay

    @app.get("/", response_class=HTMLResponse)
    async def index(provider: Optional[str] = None) -> HTMLResponse:
        html = render_index(
            providers=registry.list_valid_providers(),
            history=history.load(),
            active_provider=provider,
        )
        return HTMLResponse(html)

    @app.get("/health", response_class=JSONResponse)
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @app.get("/api/providers", response_class=JSONResponse)
    async def list_providers() -> JSONResponse:
        return JSONResponse(registry.list_valid_providers())

    @app.post("/api/providers", response_class=JSONResponse)
    async def add_provider(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if not isinstance(body, dict):
            body = {}
        result = registry.add_provider(body.get("model"), body.get("url"), body.get("token"))
        return JSONResponse(result.to_response())

    @app.get("/api/history", response_class=JSONResponse)
    async def get_history() -> JSONResponse:
        return JSONResponse([message.to_dict() for message in history.load()])

    @app.post("/api/history", response_class=JSONResponse)
    async def save_history(request: Request) -> JSONResponse:
        messages = normalise_history(await _json_body(request))
        history.save(messages)
        logger.info("History replaced with %d messages.", len(messages))
        return JSONResponse({"status": "ok"})

    @app.get("/api/history/export", response_class=JSONResponse)
    async def export_history() -> JSONResponse:
        return JSONResponse(history.export())

    @app.post("/api/message", response_class=JSONResponse)
    async def append_message(request: Request) -> JSONResponse:
        body = await _json_body(request)
        entry = body.get("message") if isinstance(body, dict) else None
        message = ChatMessage.from_dict(entry)
        if message is None:
            return JSONResponse({"status": "error", "message": INVALID_MESSAGE_ERROR})
        updated = history.append(message)
        return JSONResponse(
            {"status": "ok", "history": [item.to_dict() for item in updated]}
        )

    @app.post("/api/chat", response_class=JSONResponse)
    async def chat(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if not isinstance(body, dict):
            body = {}
        outcome = await run_in_threadpool(relay.relay, body.get("provider"), body.get("message"))
        logger.info("Chat via %s finished with status %s.", outcome.message.provider, outcome.status)
        return JSONResponse(outcome.message.to_dict())

    return app


__all__ = ["create_app"]
