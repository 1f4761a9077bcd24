import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from chatrelay.llm import ChatRelay  # noqa: E402
from chatrelay.main import create_app  # noqa: E402
from chatrelay.providers import ProviderRegistry  # noqa: E402
from chatrelay.storage import HistoryStore, MemoryStore  # noqa: E402


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, text: Optional[str] = None) -> None:
        self.payload = payload
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    def json(self) -> Any:
        return json.loads(self.text)


class RecordingPost:
    """Stand-in for ``requests.post`` that records calls and replays a canned result."""

    def __init__(self, result: Any) -> None:
        self.result = result
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


class InlineClient(requests.Session):
    """Drives an ASGI app in-process and hands back real ``requests.Response`` objects."""

    def __init__(self, app: Any) -> None:
        super().__init__()
        self.app = app
        self.base_url = "http://testserver"

    def request(self, method, url, **kwargs):  # type: ignore[override]
        parsed = urlparse(url)
        path = parsed.path or "/"
        query = parsed.query.encode("utf-8")
        headers = [
            (b"accept", b"*/*"),
        ]
        body = kwargs.get("data") or kwargs.get("content") or b""
        if kwargs.get("json") is not None:
            body = json.dumps(kwargs["json"])
            headers.append((b"content-type", b"application/json"))
        if isinstance(body, str):
            body = body.encode("utf-8")
        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": method.upper(),
            "scheme": parsed.scheme or "http",
            "path": path,
            "raw_path": path.encode("utf-8"),
            "root_path": "",
            "query_string": query,
            "headers": headers,
            "server": (parsed.hostname or "testserver", parsed.port or 80),
            "client": ("testclient", 50000),
        }
        request_messages = [
            {
                "type": "http.request",
                "body": body,
                "more_body": False,
            }
        ]

        async def receive() -> dict:
            return request_messages.pop(0) if request_messages else {"type": "http.disconnect"}

        collected: list[dict] = []

        async def send(message: dict) -> None:
            collected.append(message)

        asyncio.run(self.app(scope, receive, send))

        status = 500
        response_headers = requests.structures.CaseInsensitiveDict()
        chunks: list[bytes] = []
        for message in collected:
            if message["type"] == "http.response.start":
                status = message["status"]
                for header_key, header_value in message.get("headers", []):
                    response_headers[header_key.decode("latin-1")] = header_value.decode("latin-1")
            elif message["type"] == "http.response.body":
                chunks.append(message.get("body", b""))
        response = requests.Response()
        response.status_code = status
        response._content = b"".join(chunks)
        response.url = url
        response.headers = response_headers
        if "content-type" in response_headers:
            response.encoding = requests.utils.get_encoding_from_headers(response_headers)
        return response


@pytest.fixture
def environ() -> Dict[str, str]:
    return {"API_KEY": "abc123"}


@pytest.fixture
def provider_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def registry(provider_store: MemoryStore, environ: Dict[str, str]) -> ProviderRegistry:
    return ProviderRegistry(provider_store, environ=environ)


@pytest.fixture
def history() -> HistoryStore:
    return HistoryStore(MemoryStore())


@pytest.fixture
def relay(registry: ProviderRegistry) -> ChatRelay:
    return ChatRelay(registry, timeout=5)


@pytest.fixture
def client(tmp_path: Path, registry: ProviderRegistry, history: HistoryStore, relay: ChatRelay):
    app = create_app(tmp_path, registry=registry, history=history, relay=relay)
    session = InlineClient(app)
    try:
        yield session
    finally:
        session.close()
