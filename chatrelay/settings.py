import json
import os
from pathlib import Path
from typing import Any, Dict


DATA_DIR_ENV = "CHATRELAY_DATA_DIR"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "request_timeout": 30,
    "providers_file": "providers.json",
    "history_file": "history.json",
    "log_file": "server.log",
    "server": {
        "host": "127.0.0.1",
        "port": 5174,
    },
}


def default_data_dir() -> Path:
    return Path(os.environ.get(DATA_DIR_ENV) or "data")


class SettingsManager:
    """
    Handles loading and persisting the editable configuration file.

    The file is stored as pretty-printed JSON so it can be edited by hand.
    Keys missing from the file are backfilled from ``DEFAULT_SETTINGS``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._settings: Dict[str, Any] | None = None
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def settings(self) -> Dict[str, Any]:
        if self._settings is None:
            self._settings = self._load_from_disk()
        return self._settings

    @property
    def data_dir(self) -> Path:
        return self.path.parent

    @property
    def request_timeout(self) -> float:
        return float(self.settings.get("request_timeout") or DEFAULT_SETTINGS["request_timeout"])

    def data_path(self, key: str) -> Path:
        """Resolve a file setting such as ``providers_file`` against the data directory."""
        name = self.settings.get(key) or DEFAULT_SETTINGS[key]
        path = Path(name)
        if path.is_absolute():
            return path
        return self.data_dir / path

    def _load_from_disk(self) -> Dict[str, Any]:
        if not self.path.exists():
            self._write(DEFAULT_SETTINGS)
            return json.loads(json.dumps(DEFAULT_SETTINGS))
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        # Merge with defaults to backfill new keys without overwriting manual edits.
        merged = json.loads(json.dumps(DEFAULT_SETTINGS))
        _deep_update(merged, data)
        return merged

    def save(self, payload: Dict[str, Any]) -> None:
        config = json.loads(json.dumps(self.settings))
        _deep_update(config, payload)
        self._write(config)
        self._settings = config

    def reload(self) -> Dict[str, Any]:
        self._settings = self._load_from_disk()
        return self._settings

    def _write(self, data: Dict[str, Any]) -> None:
        with self.path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
            handle.write("\n")


def _deep_update(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    """
    Recursively update a mapping, preserving nested structures.
    """
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value
