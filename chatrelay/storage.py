from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol
from uuid import uuid4

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

ROLES = ("user", "assistant")
IMPORTED_PROVIDER = "imported"


def utcnow() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


def new_id() -> str:
    return str(uuid4())


class StorageError(RuntimeError):
    """Raised when a backing store holds something other than a JSON array."""


class RecordStore(Protocol):
    """A whole-document store of JSON records: read everything, write everything."""

    def load(self) -> List[Dict[str, Any]]:
        ...

    def save(self, records: Iterable[Dict[str, Any]]) -> None:
        ...


class JsonFileStore:
    """
    Record store backed by a single pretty-printed JSON array on disk.

    A missing file is created empty on first load. Any other read failure
    propagates to the caller.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> List[Dict[str, Any]]:
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            self.save([])
            return []
        if not isinstance(data, list):
            raise StorageError(f"{self.path} does not contain a JSON array.")
        return data

    def save(self, records: Iterable[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(list(records), handle, indent=2, ensure_ascii=False)
                handle.write("\n")
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        os.replace(tmp_path, self.path)


class MemoryStore:
    """In-process record store; records are copied on the way in and out."""

    def __init__(self, records: Optional[Iterable[Dict[str, Any]]] = None) -> None:
        self._records: Optional[List[Dict[str, Any]]] = None
        if records is not None:
            self.save(records)

    @property
    def exists(self) -> bool:
        return self._records is not None

    def load(self) -> List[Dict[str, Any]]:
        if self._records is None:
            self._records = []
        return json.loads(json.dumps(self._records))

    def save(self, records: Iterable[Dict[str, Any]]) -> None:
        self._records = json.loads(json.dumps(list(records)))


@dataclass(frozen=True)
class ChatMessage:
    id: str
    timestamp: str
    role: str
    content: str
    provider: str

    @classmethod
    def create(cls, role: str, content: str, provider: str) -> ChatMessage:
        return cls(
            id=new_id(),
            timestamp=utcnow(),
            role=role,
            content=content,
            provider=provider,
        )

    @classmethod
    def from_dict(cls, entry: Any, default_provider: str = IMPORTED_PROVIDER) -> Optional[ChatMessage]:
        """
        Build a message from a stored or posted entry, filling gaps.

        Bare strings become user messages. Anything that is neither a string
        nor a mapping yields ``None``.
        """
        if isinstance(entry, str):
            return cls.create("user", entry, default_provider)
        if not isinstance(entry, dict):
            return None
        role = entry.get("role")
        content = entry.get("content")
        if content is None:
            content = ""
        elif not isinstance(content, str):
            content = json.dumps(content, indent=2, ensure_ascii=False)
        return cls(
            id=str(entry.get("id") or new_id()),
            timestamp=str(entry.get("timestamp") or utcnow()),
            role=role if role in ROLES else "user",
            content=content,
            provider=str(entry.get("provider") or default_provider),
        )

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def normalise_history(entries: Any, default_provider: str = IMPORTED_PROVIDER) -> List[ChatMessage]:
    if not isinstance(entries, list):
        return []
    messages: List[ChatMessage] = []
    for entry in entries:
        message = ChatMessage.from_dict(entry, default_provider)
        if message is not None:
            messages.append(message)
    return messages


class HistoryStore:
    """
    Conversation history persisted as one document, replaced on every save.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def load(self) -> List[ChatMessage]:
        return normalise_history(self.store.load())

    def save(self, history: Iterable[ChatMessage]) -> None:
        self.store.save(message.to_dict() for message in history)

    def append(self, message: ChatMessage) -> List[ChatMessage]:
        history = self.load()
        history.append(message)
        self.save(history)
        return history

    def export(self) -> List[Dict[str, str]]:
        return [{"role": message.role, "content": message.content} for message in self.load()]
