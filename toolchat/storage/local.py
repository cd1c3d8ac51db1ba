import asyncio
import base64
import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from toolchat.storage.base import KeyValueStore, StoreEntry

# Leaves room for the ".json" suffix under the usual 255-byte filename limit.
MAX_ENCODED_NAME = 200
HASHED_NAME_MARKER = "~"


def _encode_key(key: str) -> str:
    encoded = base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii").rstrip("=")
    if len(encoded) <= MAX_ENCODED_NAME:
        return encoded
    return HASHED_NAME_MARKER + hashlib.sha256(key.encode("utf-8")).hexdigest()


def _decode_key(name: str) -> str:
    padding = "=" * (-len(name) % 4)
    return base64.urlsafe_b64decode(name + padding).decode("utf-8")


class LocalFileStore(KeyValueStore):
    """Stores each key as a JSON envelope file under <root>/<namespace>/."""

    def __init__(self, root_dir: str | Path, namespace: str):
        self.namespace = namespace
        self.directory = Path(root_dir) / namespace

    def _path(self, key: str) -> Path:
        return self.directory / f"{_encode_key(key)}.json"

    def _read(self, key: str) -> Optional[dict]:
        path = self._path(key)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def _write(self, key: str, value: str, metadata: Optional[dict]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        envelope = {"key": key, "value": value, "metadata": metadata or {}}
        # One temp file per writer so concurrent saves of a key never share it.
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=self.directory, suffix=".tmp", delete=False
        ) as handle:
            json.dump(envelope, handle, ensure_ascii=False)
        try:
            os.replace(handle.name, path)
        except OSError:
            Path(handle.name).unlink(missing_ok=True)
            raise

    def _remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def _scan(self, prefix: Optional[str]) -> List[StoreEntry]:
        if not self.directory.exists():
            return []
        entries = []
        for path in sorted(self.directory.glob("*.json")):
            if path.stem.startswith(HASHED_NAME_MARKER):
                key = None
            else:
                key = _decode_key(path.stem)
                if prefix and not key.startswith(prefix):
                    continue
            with path.open("r", encoding="utf-8") as handle:
                envelope = json.load(handle)
            key = key or envelope.get("key")
            if not key or (prefix and not key.startswith(prefix)):
                continue
            entries.append(StoreEntry(key=key, metadata=envelope.get("metadata") or {}))
        return entries

    async def get(self, key: str) -> Optional[str]:
        envelope = await asyncio.to_thread(self._read, key)
        return None if envelope is None else envelope.get("value")

    async def set(self, key: str, value: str, metadata: Optional[dict] = None) -> None:
        await asyncio.to_thread(self._write, key, value, metadata)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    async def list(self, prefix: Optional[str] = None) -> List[StoreEntry]:
        return await asyncio.to_thread(self._scan, prefix)
