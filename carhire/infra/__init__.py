# carhire/infra/__init__.py
"""
Инфраструктурный слой.
Документное хранилище (память / Redis) и шина событий RabbitMQ.
"""

from carhire.infra.document_store import (
    DocumentStore,
    InMemoryDocumentStore,
    StoreError,
    DocumentNotFound,
    DocumentExists,
    ArrayIndexError,
    TransientStoreError,
)
from carhire.infra.redis_client import RedisClient, get_redis
from carhire.infra.redis_store import RedisDocumentStore
from carhire.infra.event_bus import EventBus, get_event_bus

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "StoreError",
    "DocumentNotFound",
    "DocumentExists",
    "ArrayIndexError",
    "TransientStoreError",
    "RedisClient",
    "get_redis",
    "RedisDocumentStore",
    "EventBus",
    "get_event_bus",
    "create_store",
]


def create_store() -> DocumentStore:
    """Создаёт хранилище согласно settings.store.STORE_BACKEND."""
    from carhire.config import settings

    if settings.store.STORE_BACKEND == "redis":
        return RedisDocumentStore(collection=settings.store.STORE_COLLECTION)
    return InMemoryDocumentStore(collection=settings.store.STORE_COLLECTION)
