# tests/infra/test_document_store.py
"""
Тесты для документного хранилища в памяти и декоратора retry.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from carhire.common.exceptions import StoreUnavailableError
from carhire.infra.document_store import (
    ArrayIndexError,
    DocumentExists,
    DocumentNotFound,
    InMemoryDocumentStore,
    TransientStoreError,
    affects,
    matches_filters,
    retry_on_store_error,
)


class TestFilters:
    """Тесты фильтров равенства."""

    def test_matches_filters(self) -> None:
        doc = {"status": "active", "urgent": True, "userId": "U1"}

        assert matches_filters(doc, None) is True
        assert matches_filters(doc, {"status": "active", "urgent": True}) is True
        assert matches_filters(doc, {"status": "active", "urgent": False}) is False
        assert matches_filters(None, {}) is False

    def test_affects(self) -> None:
        """Изменение затрагивает поток, если документ входил в фильтр до или после."""
        active = {"status": "active"}
        fulfilled = {"status": "fulfilled"}
        filters = {"status": "active"}

        assert affects(active, fulfilled, filters) is True
        assert affects(None, active, filters) is True
        assert affects(fulfilled, None, filters) is False


class TestInMemoryDocumentStore:
    """Тесты для InMemoryDocumentStore."""

    @pytest.fixture
    def store(self) -> InMemoryDocumentStore:
        return InMemoryDocumentStore(collection="test")

    @pytest.mark.asyncio
    async def test_create_and_get(self, store) -> None:
        doc_id = await store.create({"name": "a"})

        doc = await store.get(doc_id)

        assert doc == {"name": "a", "id": doc_id}

    @pytest.mark.asyncio
    async def test_create_duplicate_id(self, store) -> None:
        await store.create({"name": "a"}, doc_id="X")

        with pytest.raises(DocumentExists):
            await store.create({"name": "b"}, doc_id="X")

    @pytest.mark.asyncio
    async def test_get_returns_copy(self, store) -> None:
        """Изменение возвращённого документа не меняет хранилище."""
        doc_id = await store.create({"items": [1]})

        doc = await store.get(doc_id)
        doc["items"].append(2)

        assert (await store.get(doc_id))["items"] == [1]

    @pytest.mark.asyncio
    async def test_delete(self, store) -> None:
        doc_id = await store.create({"name": "a"})

        assert await store.delete(doc_id) is True
        assert await store.delete(doc_id) is False
        assert await store.get(doc_id) is None

    @pytest.mark.asyncio
    async def test_update_missing(self, store) -> None:
        with pytest.raises(DocumentNotFound):
            await store.update("missing", {"a": 1})

    @pytest.mark.asyncio
    async def test_health_check(self, store) -> None:
        assert await store.health_check() is True

    @pytest.mark.asyncio
    async def test_missing_ids_leave_no_locks(self, store) -> None:
        """Обращения к несуществующим документам не накапливают блокировки."""
        for n in range(50):
            with pytest.raises(DocumentNotFound):
                await store.increment(f"missing-{n}", "views")
            assert await store.delete(f"missing-{n}") is False

        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_delete_racing_mutation_drops_lock(self, store) -> None:
        doc_id = await store.create({"views": 0})

        results = await asyncio.gather(
            store.delete(doc_id),
            store.increment(doc_id, "views"),
            return_exceptions=True,
        )

        assert results[0] is True
        assert isinstance(results[1], DocumentNotFound)
        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_update_cannot_change_id(self, store) -> None:
        doc_id = await store.create({"name": "a"})

        doc = await store.update(doc_id, {"id": "other", "name": "b"})

        assert doc == {"id": doc_id, "name": "b"}

    @pytest.mark.asyncio
    async def test_increment_with_extra(self, store) -> None:
        doc_id = await store.create({"views": 0})

        doc = await store.increment(doc_id, "views", 2, extra={"updatedAt": "t1"})

        assert doc["views"] == 2
        assert doc["updatedAt"] == "t1"

    @pytest.mark.asyncio
    async def test_concurrent_array_appends(self, store) -> None:
        """Параллельные добавления в массив не теряются."""
        doc_id = await store.create({"items": []})

        await asyncio.gather(*(store.array_append(doc_id, "items", {"n": n}) for n in range(25)))

        doc = await store.get(doc_id)
        assert sorted(item["n"] for item in doc["items"]) == list(range(25))

    @pytest.mark.asyncio
    async def test_array_remove_at(self, store) -> None:
        doc_id = await store.create({"items": ["a", "b", "c"]})

        doc, removed = await store.array_remove_at(doc_id, "items", 1)

        assert removed == "b"
        assert doc["items"] == ["a", "c"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", [-1, 3])
    async def test_array_remove_at_out_of_range(self, store, index) -> None:
        doc_id = await store.create({"items": ["a", "b", "c"]})

        with pytest.raises(ArrayIndexError):
            await store.array_remove_at(doc_id, "items", index)

        assert (await store.get(doc_id))["items"] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_array_remove_where(self, store) -> None:
        doc_id = await store.create({"items": [{"k": 1}, {"k": 2}, {"k": 1}]})

        doc, removed = await store.array_remove_where(doc_id, "items", "k", 1)

        assert removed == 2
        assert doc["items"] == [{"k": 2}]

    @pytest.mark.asyncio
    async def test_array_replace_where_no_match(self, store) -> None:
        """Без совпадений документ не меняется и подписчики не уведомляются."""
        doc_id = await store.create({"items": [{"k": 1}]})
        stream = store.watch()
        try:
            await stream.__anext__()

            doc, replaced = await store.array_replace_where(doc_id, "items", "k", 9, {"k": 9})

            assert replaced == 0
            assert doc["items"] == [{"k": 1}]
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(stream.__anext__(), timeout=0.05)
        finally:
            await stream.aclose()


class TestWatch:
    """Тесты потоков изменений."""

    @pytest.fixture
    def store(self) -> InMemoryDocumentStore:
        return InMemoryDocumentStore(collection="test")

    @pytest.mark.asyncio
    async def test_initial_snapshot(self, store) -> None:
        await store.create({"status": "active"}, doc_id="A")
        await store.create({"status": "fulfilled"}, doc_id="B")

        stream = store.watch({"status": "active"})
        try:
            snapshot = await stream.__anext__()
        finally:
            await stream.aclose()

        assert [doc["id"] for doc in snapshot] == ["A"]

    @pytest.mark.asyncio
    async def test_leaving_filter_emits_snapshot(self, store) -> None:
        """Документ, покинувший фильтр, вызывает новый снимок."""
        await store.create({"status": "active"}, doc_id="A")
        stream = store.watch({"status": "active"})
        try:
            await stream.__anext__()

            await store.update("A", {"status": "fulfilled"})
            snapshot = await asyncio.wait_for(stream.__anext__(), timeout=1)
        finally:
            await stream.aclose()

        assert snapshot == []

    @pytest.mark.asyncio
    async def test_unrelated_change_ignored(self, store) -> None:
        stream = store.watch({"status": "active"})
        try:
            await stream.__anext__()

            await store.create({"status": "fulfilled"})
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(stream.__anext__(), timeout=0.05)
        finally:
            await stream.aclose()

    @pytest.mark.asyncio
    async def test_slow_subscriber_gets_latest(self, store) -> None:
        """Медленный подписчик получает только последний снимок."""
        stream = store.watch()
        try:
            await stream.__anext__()

            for n in range(5):
                await store.create({"n": n})
            snapshot = await asyncio.wait_for(stream.__anext__(), timeout=1)

            assert len(snapshot) == 5
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(stream.__anext__(), timeout=0.05)
        finally:
            await stream.aclose()

    @pytest.mark.asyncio
    async def test_unsubscribe_on_close(self, store) -> None:
        stream = store.watch()
        await stream.__anext__()
        assert store.subscriber_count == 1

        await stream.aclose()

        assert store.subscriber_count == 0


class TestRetryOnStoreError:
    """Тесты для декоратора retry_on_store_error."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        calls = AsyncMock(return_value="ok")

        @retry_on_store_error(max_attempts=3, delay=0, timeout=1)
        async def operation() -> str:
            return await calls()

        assert await operation() == "ok"
        assert calls.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self) -> None:
        calls = AsyncMock(side_effect=[TransientStoreError("down"), ConnectionError("reset"), "ok"])

        @retry_on_store_error(max_attempts=3, delay=0, timeout=1)
        async def operation() -> str:
            return await calls()

        assert await operation() == "ok"
        assert calls.await_count == 3

    @pytest.mark.asyncio
    async def test_exhausted_attempts(self) -> None:
        """После последней попытки поднимается StoreUnavailableError."""
        calls = AsyncMock(side_effect=TransientStoreError("down"))

        @retry_on_store_error(max_attempts=2, delay=0, timeout=1)
        async def operation() -> None:
            await calls()

        with pytest.raises(StoreUnavailableError) as exc_info:
            await operation()

        assert calls.await_count == 2
        assert isinstance(exc_info.value.__cause__, TransientStoreError)

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        @retry_on_store_error(max_attempts=1, delay=0, timeout=0.01)
        async def operation() -> None:
            await asyncio.sleep(1)

        with pytest.raises(StoreUnavailableError):
            await operation()

    @pytest.mark.asyncio
    async def test_business_errors_not_retried(self) -> None:
        calls = AsyncMock(side_effect=DocumentNotFound("X"))

        @retry_on_store_error(max_attempts=3, delay=0, timeout=1)
        async def operation() -> None:
            await calls()

        with pytest.raises(DocumentNotFound):
            await operation()

        assert calls.await_count == 1

    @pytest.mark.asyncio
    async def test_defaults_from_settings(self) -> None:
        """Непереданные параметры читаются из settings.store."""
        calls = AsyncMock(side_effect=TransientStoreError("down"))

        @retry_on_store_error()
        async def operation() -> None:
            await calls()

        with patch("carhire.config.settings") as mock_settings:
            mock_settings.store.STORE_RETRY_ATTEMPTS = 4
            mock_settings.store.STORE_RETRY_DELAY = 0
            mock_settings.store.STORE_OPERATION_TIMEOUT = 1
            with pytest.raises(StoreUnavailableError):
                await operation()

        assert calls.await_count == 4
