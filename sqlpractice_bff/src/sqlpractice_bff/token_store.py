# src/sqlpractice_bff/token_store.py

import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from .config import settings
from .session_data import TokenPair


class KeyValueStore(Protocol):
    """Passive string key-value persistence, the shape of browser localStorage."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class MemoryStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """
    Keeps every key in a single JSON object on disk.
    Writes go through a temp file and os.replace so a crash never leaves half a file behind.
    A missing or unreadable file reads as an empty store.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            print(f"TOKEN_STORE: Ignoring unreadable store at {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get_item(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


class TokenStorage:
    """The session token pair, kept under two keys of a KeyValueStore."""

    def __init__(
            self,
            store: KeyValueStore,
            access_key: Optional[str] = None,
            refresh_key: Optional[str] = None,
    ):
        self.store = store
        self.access_key = access_key or settings.ACCESS_TOKEN_KEY
        self.refresh_key = refresh_key or settings.REFRESH_TOKEN_KEY

    @property
    def access_token(self) -> Optional[str]:
        return self.store.get_item(self.access_key) or None

    @property
    def refresh_token(self) -> Optional[str]:
        return self.store.get_item(self.refresh_key) or None

    def load(self) -> Optional[TokenPair]:
        access_token = self.access_token
        if not access_token:
            return None
        return TokenPair(access_token=access_token, refresh_token=self.refresh_token)

    def save(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        self.store.set_item(self.access_key, access_token)
        # The upstream does not always rotate the refresh token; keep the old one then
        if refresh_token:
            self.store.set_item(self.refresh_key, refresh_token)

    def remove_access_token(self) -> None:
        self.store.remove_item(self.access_key)

    def clear(self) -> None:
        self.store.remove_item(self.access_key)
        self.store.remove_item(self.refresh_key)


def build_token_storage(path: Optional[Union[str, Path]] = None) -> TokenStorage:
    path = path or settings.TOKEN_STORE_PATH
    store: KeyValueStore = JsonFileStore(path) if path else MemoryStore()
    return TokenStorage(store)
