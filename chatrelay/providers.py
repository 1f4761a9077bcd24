from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from .storage import RecordStore

logger = logging.getLogger("chatrelay.registry")

# ${NAME}, {NAME}, $NAME or env:NAME
TOKEN_REFERENCE = re.compile(
    r"^(?:\$?\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}"
    r"|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)"
    r"|env:(?P<prefixed>[A-Za-z_][A-Za-z0-9_]*))$"
)

INVALID_PROVIDER_MESSAGE = "Provide a valid model, URL and token."


def resolve_token(token: Any, environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Resolve a provider credential.

    Environment references resolve to the variable's value, or ``""`` when it
    is unset. Any other string is a literal secret and comes back trimmed.
    """
    if not isinstance(token, str):
        return ""
    env = os.environ if environ is None else environ
    trimmed = token.strip()
    match = TOKEN_REFERENCE.match(trimmed)
    if not match:
        return trimmed
    name = match.group("braced") or match.group("bare") or match.group("prefixed")
    return env.get(name, "")


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


@dataclass(frozen=True)
class Provider:
    model: str
    url: str
    token: str

    @classmethod
    def from_dict(cls, entry: Any) -> Optional[Provider]:
        if not isinstance(entry, dict):
            return None
        return cls(
            model=_text(entry.get("model")),
            url=_text(entry.get("url")),
            token=_text(entry.get("token")),
        )

    def resolved_token(self, environ: Optional[Mapping[str, str]] = None) -> str:
        return resolve_token(self.token, environ)

    def is_valid(self, environ: Optional[Mapping[str, str]] = None) -> bool:
        return bool(
            self.model
            and self.url
            and _is_http_url(self.url)
            and self.resolved_token(environ)
        )

    def sanitized(self) -> Dict[str, str]:
        return {"model": self.model, "url": self.url}

    def to_dict(self) -> Dict[str, str]:
        return {"model": self.model, "url": self.url, "token": self.token}


@dataclass(frozen=True)
class AddResult:
    provider: Optional[Dict[str, str]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_response(self) -> Dict[str, Any]:
        if self.ok:
            return {"status": "ok", "provider": self.provider}
        return {"status": "error", "message": self.error}


class ProviderRegistry:
    """
    Named LLM endpoints keyed by model, persisted through a record store.

    Every operation reads the full store and, when it changes anything,
    writes the full store back.
    """

    def __init__(self, store: RecordStore, environ: Optional[Mapping[str, str]] = None) -> None:
        self.store = store
        self.environ = environ

    def _load(self) -> List[Provider]:
        providers: List[Provider] = []
        for entry in self.store.load():
            provider = Provider.from_dict(entry)
            if provider is not None:
                providers.append(provider)
        return providers

    def list_valid_providers(self) -> List[Dict[str, str]]:
        return [
            provider.sanitized()
            for provider in self._load()
            if provider.is_valid(self.environ)
        ]

    def find(self, model: Any) -> Optional[Provider]:
        for provider in self._load():
            if provider.model == model:
                return provider
        return None

    def add_provider(self, model: Any, url: Any, token: Any) -> AddResult:
        candidate = Provider(model=_text(model), url=_text(url), token=_text(token))
        if not candidate.is_valid(self.environ):
            logger.info("Rejected provider %r: incomplete or unresolvable fields.", candidate.model)
            return AddResult(error=INVALID_PROVIDER_MESSAGE)
        existing = self._load()
        providers = [item for item in existing if item.model != candidate.model]
        replaced = len(providers) != len(existing)
        providers.append(candidate)
        self.store.save(provider.to_dict() for provider in providers)
        logger.info(
            "%s provider %s -> %s",
            "Replaced" if replaced else "Added",
            candidate.model,
            candidate.url,
        )
        return AddResult(provider=candidate.sanitized())
