from services.townintel.storage.base import GraphStore
from services.townintel.storage.factory import create_store

__all__ = ["GraphStore", "create_store"]
