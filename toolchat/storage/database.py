import asyncio
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from toolchat.models import KVEntry
from toolchat.storage.base import KeyValueStore, StoreEntry


class DatabaseStore(KeyValueStore):
    """Key-value namespace backed by the kv_entries table."""

    def __init__(self, session_factory: sessionmaker, namespace: str):
        self.namespace = namespace
        self.session_factory = session_factory

    def _get(self, key: str) -> Optional[str]:
        db: Session = self.session_factory()
        try:
            row = db.get(KVEntry, (self.namespace, key))
            return row.value if row else None
        finally:
            db.close()

    def _set(self, key: str, value: str, metadata: Optional[dict]) -> None:
        db: Session = self.session_factory()
        try:
            db.merge(
                KVEntry(
                    namespace=self.namespace,
                    key=key,
                    value=value,
                    metadata_json=metadata or {},
                    updated_at=datetime.now(timezone.utc),
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _delete(self, key: str) -> None:
        db: Session = self.session_factory()
        try:
            db.query(KVEntry).filter(KVEntry.namespace == self.namespace, KVEntry.key == key).delete()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _list(self, prefix: Optional[str]) -> List[StoreEntry]:
        db: Session = self.session_factory()
        try:
            query = db.query(KVEntry.key, KVEntry.metadata_json).filter(KVEntry.namespace == self.namespace)
            if prefix:
                query = query.filter(KVEntry.key.startswith(prefix, autoescape=True))
            rows = query.order_by(KVEntry.key).all()
            return [StoreEntry(key=row.key, metadata=row.metadata_json or {}) for row in rows]
        finally:
            db.close()

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: str, metadata: Optional[dict] = None) -> None:
        await asyncio.to_thread(self._set, key, value, metadata)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def list(self, prefix: Optional[str] = None) -> List[StoreEntry]:
        return await asyncio.to_thread(self._list, prefix)
