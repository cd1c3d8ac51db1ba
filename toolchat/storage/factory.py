from typing import Dict, Optional

from sqlalchemy.engine import Engine

from toolchat.config import Settings
from toolchat.database import create_db_engine, create_session_factory, init_db
from toolchat.logging_config import get_logger
from toolchat.storage.base import KeyValueStore
from toolchat.storage.database import DatabaseStore
from toolchat.storage.local import LocalFileStore

logger = get_logger("storage")

NAMESPACES = ("sessions", "whatsapp", "sync", "usage", "link-codes", "tools", "summaries")
SUPPORTED_BACKENDS = {"local", "database"}


class StoreFactory:
    """Builds and caches one store per namespace for the configured backend."""

    def __init__(self, settings: Settings, engine: Optional[Engine] = None):
        backend = settings.storage_backend.strip().lower()
        if backend not in SUPPORTED_BACKENDS:
            raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")
        self.backend = backend
        self.settings = settings
        self._stores: Dict[str, KeyValueStore] = {}
        self._engine = engine
        self._session_factory = None

        if backend == "database":
            if self._engine is None:
                self._engine = create_db_engine(settings.database_url)
            init_db(self._engine)
            self._session_factory = create_session_factory(self._engine)

        logger.info(f"Storage backend ready: {backend}")

    def get(self, namespace: str) -> KeyValueStore:
        if namespace not in NAMESPACES:
            raise ValueError(f"Unknown store namespace: {namespace}")
        store = self._stores.get(namespace)
        if store is None:
            if self.backend == "database":
                store = DatabaseStore(self._session_factory, namespace)
            else:
                store = LocalFileStore(self.settings.storage_dir, namespace)
            self._stores[namespace] = store
        return store

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
