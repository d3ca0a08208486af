# carhire/infra/redis_store.py
"""
Документное хранилище поверх Redis.

Раскладка ключей (с namespace клиента):
- {collection}:doc:{id} — JSON документа
- {collection}:ids — множество id коллекции
- {collection}:changes — pub/sub канал изменений {"id", "before", "after"}

Атомарность одного документа — оптимистичная транзакция WATCH/MULTI
на ключе документа, поэтому разные документы не конкурируют.
"""

from __future__ import annotations

import copy
import json
from contextlib import contextmanager
from typing import Any, AsyncIterator, Iterator
from uuid import uuid4

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from carhire.common.constants import TypeMsg
from carhire.common.logger import get_logger, log_info
from carhire.infra.document_store import (
    Document,
    DocumentExists,
    DocumentNotFound,
    DocumentStore,
    Filters,
    Mutator,
    TransientStoreError,
    affects,
    matches_filters,
)
from carhire.infra.redis_client import RedisClient, get_redis

logger = get_logger("redis_store")


def _dumps(doc: Document) -> str:
    return json.dumps(doc, ensure_ascii=False, default=str)


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Сетевые ошибки redis превращаются в TransientStoreError."""
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as e:
        raise TransientStoreError(str(e)) from e


class RedisDocumentStore(DocumentStore):
    """Реализация DocumentStore на redis.asyncio."""

    def __init__(self, collection: str = "booking_requests", client: RedisClient | None = None) -> None:
        self.collection = collection
        self._redis = client or get_redis()

    async def health_check(self) -> bool:
        return await self._redis.health_check()

    # =========================================================================
    # КЛЮЧИ
    # =========================================================================

    def _doc_key(self, doc_id: str) -> str:
        return f"{self.collection}:doc:{doc_id}"

    @property
    def _ids_key(self) -> str:
        return f"{self.collection}:ids"

    @property
    def _channel(self) -> str:
        return f"{self.collection}:changes"

    async def _publish_change(self, doc_id: str, before: Document | None, after: Document | None) -> None:
        await self._redis.publish(
            self._channel,
            json.dumps({"id": doc_id, "before": before, "after": after}, ensure_ascii=False, default=str),
        )

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create(self, doc: Document, doc_id: str | None = None) -> str:
        doc_id = doc_id or str(uuid4())
        stored = copy.deepcopy(doc)
        stored["id"] = doc_id

        with _translate_errors():
            async with self._redis.pipeline() as pipe:
                pipe.set(self._redis.make_key(self._doc_key(doc_id)), _dumps(stored), nx=True)
                pipe.sadd(self._redis.make_key(self._ids_key), doc_id)
                created, _ = await pipe.execute()

            if not created:
                raise DocumentExists(doc_id)

            await self._publish_change(doc_id, None, stored)
        return doc_id

    async def get(self, doc_id: str) -> Document | None:
        with _translate_errors():
            raw = await self._redis.get(self._doc_key(doc_id))
        return json.loads(raw) if raw is not None else None

    async def delete(self, doc_id: str) -> bool:
        with _translate_errors():
            before = await self.get(doc_id)
            async with self._redis.pipeline() as pipe:
                pipe.delete(self._redis.make_key(self._doc_key(doc_id)))
                pipe.srem(self._redis.make_key(self._ids_key), doc_id)
                deleted, _ = await pipe.execute()

            if not deleted:
                return False

            await self._publish_change(doc_id, before, None)
        return True

    async def query(self, filters: Filters | None = None) -> list[Document]:
        with _translate_errors():
            ids = sorted(await self._redis.smembers(self._ids_key))
            if not ids:
                return []
            raws = await self._redis.mget([self._doc_key(doc_id) for doc_id in ids])

        docs = [json.loads(raw) for raw in raws if raw is not None]
        return [doc for doc in docs if matches_filters(doc, filters)]

    async def mutate(self, doc_id: str, mutator: Mutator) -> tuple[Document, Any]:
        key = self._redis.make_key(self._doc_key(doc_id))

        with _translate_errors():
            async with self._redis.pipeline() as pipe:
                while True:
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        if raw is None:
                            await pipe.unwatch()
                            raise DocumentNotFound(doc_id)

                        before = json.loads(raw)
                        after = copy.deepcopy(before)
                        result = mutator(after)
                        after["id"] = doc_id
                        if after == before:
                            await pipe.unwatch()
                            return after, result

                        pipe.multi()
                        pipe.set(key, _dumps(after))
                        await pipe.execute()
                        break
                    except WatchError:
                        # Документ изменён параллельно
                        await log_info(f"WATCH конфликт на {doc_id}, повтор", type_msg=TypeMsg.DEBUG)
                        continue

            await self._publish_change(doc_id, before, after)
        return after, result

    # =========================================================================
    # ПОТОК ИЗМЕНЕНИЙ
    # =========================================================================

    async def watch(self, filters: Filters | None = None) -> AsyncIterator[list[Document]]:
        pubsub = self._redis.pubsub()
        with _translate_errors():
            await pubsub.subscribe(self._redis.make_key(self._channel))
        try:
            yield await self.query(filters)
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                change = json.loads(message["data"])
                if affects(change.get("before"), change.get("after"), filters):
                    yield await self.query(filters)
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()
