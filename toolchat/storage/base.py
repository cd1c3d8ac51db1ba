import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional


@dataclass
class StoreEntry:
    key: str
    metadata: dict = field(default_factory=dict)


class KeyValueStore(ABC):
    """Async key-value store scoped to one namespace."""

    namespace: str

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the raw stored value or None."""

    @abstractmethod
    async def set(self, key: str, value: str, metadata: Optional[dict] = None) -> None:
        """Create or overwrite a value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""

    @abstractmethod
    async def list(self, prefix: Optional[str] = None) -> List[StoreEntry]:
        """List entries, optionally filtered by key prefix."""

    async def get_json(self, key: str) -> Any:
        raw = await self.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set_json(self, key: str, value: Any, metadata: Optional[dict] = None) -> None:
        await self.set(key, json.dumps(value, ensure_ascii=False), metadata=metadata)
