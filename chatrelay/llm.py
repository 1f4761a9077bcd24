from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from .providers import ProviderRegistry
from .storage import ChatMessage

logger = logging.getLogger("chatrelay.relay")

NO_PROVIDER_MESSAGE = "no valid provider found for selected model"
UPSTREAM_FAILURE_MESSAGE = "request could not complete — check URL and token"

DEFAULT_TIMEOUT = 30.0

STATUS_OK = "ok"
STATUS_PROVIDER_NOT_FOUND = "provider_not_found"
STATUS_PROVIDER_INVALID = "provider_invalid"
STATUS_UPSTREAM_FAILURE = "upstream_failure"


class ProviderRequestError(RuntimeError):
    """Raised when a provider endpoint is unreachable or returns an error or malformed response."""


class ProviderClient:
    """
    Minimal HTTP client for OpenAI-compatible chat endpoints.
    """

    def __init__(self, url: str, token: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.url = url
        self.token = token
        self.timeout = timeout

    def chat(self, *, model: str, messages: List[Dict[str, Any]]) -> Any:
        payload = {"model": model, "messages": messages}
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.token}",
        }
        try:
            response = requests.post(
                self.url,
                headers=headers,
                data=json.dumps(payload),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ProviderRequestError(f"Request to {self.url} failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise ProviderRequestError(
                f"{self.url} returned {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderRequestError(f"Failed to decode response from {self.url} as JSON.") from exc


Extractor = Callable[[Any], Any]


def _dig(data: Any, *path: Any) -> Any:
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def chat_completion_content(data: Any) -> Any:
    return _dig(data, "choices", 0, "message", "content")


def completion_text(data: Any) -> Any:
    return _dig(data, "choices", 0, "text")


def output_text(data: Any) -> Any:
    return _dig(data, "output_text")


DEFAULT_EXTRACTORS: List[Extractor] = [chat_completion_content, completion_text, output_text]


def _pretty(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def extract_content(data: Any, extractors: Optional[List[Extractor]] = None) -> str:
    """
    Pull the assistant text out of a provider response.

    Extractors run in order and the first non-``None`` value wins. Non-string
    values are pretty-printed; when nothing matches the whole body is. An
    extractor that raises is logged and skipped.
    """
    for extractor in extractors if extractors is not None else DEFAULT_EXTRACTORS:
        try:
            value = extractor(data)
        except Exception:
            logger.warning(
                "Extractor %s failed on %s response; skipping.",
                getattr(extractor, "__name__", repr(extractor)),
                type(data).__name__,
                exc_info=True,
            )
            continue
        if value is not None:
            return value if isinstance(value, str) else _pretty(value)
    return _pretty(data)


@dataclass(frozen=True)
class RelayOutcome:
    message: ChatMessage
    status: str = STATUS_OK
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


ClientFactory = Callable[[str, str, float], ProviderClient]


class ChatRelay:
    """
    Sends a single user message to a registered provider and normalises the reply.

    Failures never escape: a missing or invalid provider and any upstream
    error are reported as an assistant message with a fixed text.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client_factory: ClientFactory = ProviderClient,
    ) -> None:
        self.registry = registry
        self.timeout = timeout
        self.client_factory = client_factory
        self.extractors: List[Extractor] = list(DEFAULT_EXTRACTORS)

    def register_extractor(self, extractor: Extractor, *, first: bool = False) -> None:
        if first:
            self.extractors.insert(0, extractor)
        else:
            self.extractors.append(extractor)

    def send_message(self, provider_name: Any, user_text: Any) -> ChatMessage:
        return self.relay(provider_name, user_text).message

    def relay(self, provider_name: Any, user_text: Any) -> RelayOutcome:
        provider_name = provider_name if isinstance(provider_name, str) else ""
        user_text = user_text if isinstance(user_text, str) else ""
        provider = self.registry.find(provider_name)
        if provider is None or not provider.is_valid(self.registry.environ):
            status = STATUS_PROVIDER_NOT_FOUND if provider is None else STATUS_PROVIDER_INVALID
            logger.info("No usable provider for %r (%s).", provider_name, status)
            return RelayOutcome(
                message=ChatMessage.create("assistant", NO_PROVIDER_MESSAGE, provider_name),
                status=status,
            )

        client = self.client_factory(
            provider.url, provider.resolved_token(self.registry.environ), self.timeout
        )
        try:
            data = client.chat(
                model=provider.model,
                messages=[{"role": "user", "content": user_text}],
            )
        except ProviderRequestError as exc:
            logger.warning("Provider %s request failed: %s", provider.model, exc)
            return RelayOutcome(
                message=ChatMessage.create("assistant", UPSTREAM_FAILURE_MESSAGE, provider.model),
                status=STATUS_UPSTREAM_FAILURE,
                detail=str(exc),
            )

        content = extract_content(data, self.extractors)
        logger.debug("Provider %s replied with %d characters.", provider.model, len(content))
        return RelayOutcome(message=ChatMessage.create("assistant", content, provider.model))
