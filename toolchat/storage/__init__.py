from toolchat.storage.base import KeyValueStore, StoreEntry
from toolchat.storage.database import DatabaseStore
from toolchat.storage.factory import NAMESPACES, StoreFactory
from toolchat.storage.local import LocalFileStore

__all__ = ["KeyValueStore", "StoreEntry", "DatabaseStore", "LocalFileStore", "StoreFactory", "NAMESPACES"]
