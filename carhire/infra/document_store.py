# carhire/infra/document_store.py
"""
Абстрактное документное хранилище с потоками изменений.

Документ — JSON-совместимый словарь с ключом "id".
Хранилище привязано к одной коллекции и гарантирует атомарность
операций в пределах одного документа. Между документами транзакций нет.
"""

from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from functools import wraps
from typing import Any, AsyncIterator, Callable, TypeVar
from uuid import uuid4

from carhire.common.constants import TypeMsg
from carhire.common.exceptions import StoreUnavailableError
from carhire.common.logger import get_logger, log_error, log_info

logger = get_logger("document_store")

T = TypeVar("T")

Document = dict[str, Any]
Filters = dict[str, Any]
Mutator = Callable[[Document], Any]


# =============================================================================
# ОШИБКИ ХРАНИЛИЩА
# =============================================================================

class StoreError(Exception):
    """Базовая ошибка хранилища."""


class DocumentNotFound(StoreError):
    """Документ с указанным id не существует."""


class DocumentExists(StoreError):
    """Документ с указанным id уже существует."""


class ArrayIndexError(StoreError):
    """Индекс элемента массива вне диапазона."""


class TransientStoreError(StoreError):
    """Временная недоступность хранилища (сеть, соединение)."""


# =============================================================================
# RETRY + TIMEOUT
# =============================================================================

def retry_on_store_error(
    max_attempts: int | None = None,
    delay: float | None = None,
    timeout: float | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Декоратор: ограничивает вызов таймаутом и ретраит транзиентные ошибки.

    Параметры, не переданные явно, читаются из settings.store в момент вызова.
    После исчерпания попыток поднимается StoreUnavailableError.

    Args:
        max_attempts: Максимальное количество попыток (1 = без ретраев)
        delay: Базовая задержка между попытками (линейный backoff)
        timeout: Таймаут одной попытки в секундах
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempts, pause, limit = _resolve_retry_options(max_attempts, delay, timeout)
            last_error: Exception | None = None

            for attempt in range(1, attempts + 1):
                try:
                    return await asyncio.wait_for(func(*args, **kwargs), timeout=limit)
                except (TransientStoreError, asyncio.TimeoutError, ConnectionError) as e:
                    last_error = e
                    if attempt < attempts:
                        await log_info(
                            f"Хранилище недоступно, {func.__name__} (попытка {attempt}/{attempts}): {e!r}",
                            type_msg=TypeMsg.WARNING,
                        )
                        await asyncio.sleep(pause * attempt)
                    else:
                        await log_error(
                            f"Операция {func.__name__} не выполнена после {attempts} попыток: {e!r}"
                        )

            raise StoreUnavailableError(f"Document store unavailable: {last_error!r}") from last_error

        return wrapper  # type: ignore

    return decorator


def _resolve_retry_options(
    max_attempts: int | None,
    delay: float | None,
    timeout: float | None,
) -> tuple[int, float, float]:
    from carhire.config import settings

    store = settings.store
    return (
        max(1, max_attempts if max_attempts is not None else store.STORE_RETRY_ATTEMPTS),
        delay if delay is not None else store.STORE_RETRY_DELAY,
        timeout if timeout is not None else store.STORE_OPERATION_TIMEOUT,
    )


# =============================================================================
# ФИЛЬТРЫ
# =============================================================================

def matches_filters(doc: Document | None, filters: Filters | None) -> bool:
    """Проверяет документ на соответствие конъюнкции равенств."""
    if doc is None:
        return False
    if not filters:
        return True
    return all(doc.get(key) == value for key, value in filters.items())


def affects(before: Document | None, after: Document | None, filters: Filters | None) -> bool:
    """Изменение затрагивает поток, если документ входил в фильтр до или после."""
    return matches_filters(before, filters) or matches_filters(after, filters)


# =============================================================================
# АБСТРАКТНОЕ ХРАНИЛИЩЕ
# =============================================================================

class DocumentStore(ABC):
    """
    Контракт документного хранилища одной коллекции.

    Все изменения существующего документа сводятся к mutate():
    атомарному read-modify-write над одним документом. Массивные операции
    и инкременты реализованы поверх него и потому атомарны для любого бэкенда.
    """

    collection: str

    @abstractmethod
    async def create(self, doc: Document, doc_id: str | None = None) -> str:
        """Создаёт документ. Поднимает DocumentExists, если id занят."""

    @abstractmethod
    async def get(self, doc_id: str) -> Document | None:
        """Возвращает копию документа или None."""

    @abstractmethod
    async def delete(self, doc_id: str) -> bool:
        """Удаляет документ. Возвращает False, если его не было."""

    @abstractmethod
    async def query(self, filters: Filters | None = None) -> list[Document]:
        """Разовый снимок документов, удовлетворяющих фильтру."""

    @abstractmethod
    def watch(self, filters: Filters | None = None) -> AsyncIterator[list[Document]]:
        """
        Живой поток снимков.
        Первый снимок отдаётся сразу, далее полный снимок после каждого
        изменения, затрагивающего фильтр.
        """

    @abstractmethod
    async def mutate(self, doc_id: str, mutator: Mutator) -> tuple[Document, Any]:
        """
        Атомарно применяет mutator к документу.

        Returns:
            (новая копия документа, результат mutator)
        """

    async def close(self) -> None:
        """Освобождает ресурсы хранилища."""

    async def health_check(self) -> bool:
        """Проверяет доступность бэкенда."""
        return True

    # =========================================================================
    # ОПЕРАЦИИ НАД ПОЛЯМИ
    # =========================================================================

    async def update(self, doc_id: str, fields: Document) -> Document:
        """Частичное слияние полей верхнего уровня."""
        def apply(doc: Document) -> None:
            doc.update(copy.deepcopy(fields))

        doc, _ = await self.mutate(doc_id, apply)
        return doc

    async def increment(
        self,
        doc_id: str,
        field: str,
        amount: int = 1,
        extra: Document | None = None,
    ) -> Document:
        """Коммутативный инкремент числового поля."""
        def apply(doc: Document) -> None:
            doc[field] = int(doc.get(field) or 0) + amount
            if extra:
                doc.update(extra)

        doc, _ = await self.mutate(doc_id, apply)
        return doc

    # =========================================================================
    # ОПЕРАЦИИ НАД МАССИВАМИ
    # =========================================================================

    async def array_append(
        self,
        doc_id: str,
        field: str,
        item: Any,
        extra: Document | None = None,
    ) -> Document:
        """Добавляет элемент в конец массива."""
        def apply(doc: Document) -> None:
            doc.setdefault(field, []).append(copy.deepcopy(item))
            if extra:
                doc.update(extra)

        doc, _ = await self.mutate(doc_id, apply)
        return doc

    async def array_remove_at(
        self,
        doc_id: str,
        field: str,
        index: int,
        extra: Document | None = None,
    ) -> tuple[Document, Any]:
        """
        Удаляет элемент массива по позиции.
        Индекс проверяется в момент записи; поднимает ArrayIndexError.
        """
        def apply(doc: Document) -> Any:
            items = doc.setdefault(field, [])
            if index < 0 or index >= len(items):
                raise ArrayIndexError(f"{field}[{index}] out of range (len={len(items)})")
            removed = items.pop(index)
            if extra:
                doc.update(extra)
            return removed

        return await self.mutate(doc_id, apply)

    async def array_remove_where(
        self,
        doc_id: str,
        field: str,
        key: str,
        value: Any,
        extra: Document | None = None,
    ) -> tuple[Document, int]:
        """Удаляет все элементы массива с item[key] == value. Возвращает их число."""
        def apply(doc: Document) -> int:
            items = doc.setdefault(field, [])
            kept = [item for item in items if item.get(key) != value]
            removed = len(items) - len(kept)
            if removed:
                doc[field] = kept
                if extra:
                    doc.update(extra)
            return removed

        return await self.mutate(doc_id, apply)

    async def array_replace_where(
        self,
        doc_id: str,
        field: str,
        key: str,
        value: Any,
        item: Any,
        extra: Document | None = None,
    ) -> tuple[Document, int]:
        """
        Удаляет элементы с item[key] == value и добавляет новый в конец.
        Одна атомарная запись; если удалять нечего, документ не меняется.
        """
        def apply(doc: Document) -> int:
            items = doc.setdefault(field, [])
            kept = [existing for existing in items if existing.get(key) != value]
            removed = len(items) - len(kept)
            if removed:
                kept.append(copy.deepcopy(item))
                doc[field] = kept
                if extra:
                    doc.update(extra)
            return removed

        return await self.mutate(doc_id, apply)


# =============================================================================
# IN-MEMORY РЕАЛИЗАЦИЯ
# =============================================================================

class _Mailbox:
    """Почтовый ящик подписчика на один снимок: новый вытесняет устаревший."""

    def __init__(self, filters: Filters | None) -> None:
        self.filters = filters
        self.queue: asyncio.Queue[list[Document]] = asyncio.Queue(maxsize=1)

    def push(self, snapshot: list[Document]) -> None:
        if self.queue.full():
            self.queue.get_nowait()
        self.queue.put_nowait(snapshot)


class InMemoryDocumentStore(DocumentStore):
    """
    Хранилище в памяти процесса.
    Атомарность обеспечивается asyncio.Lock на каждый документ.
    """

    def __init__(self, collection: str = "booking_requests") -> None:
        self.collection = collection
        self._docs: dict[str, Document] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._mailboxes: set[_Mailbox] = set()

    def _lock_for(self, doc_id: str) -> asyncio.Lock:
        lock = self._locks.get(doc_id)
        if lock is None:
            lock = self._locks[doc_id] = asyncio.Lock()
        return lock

    def _snapshot(self, filters: Filters | None) -> list[Document]:
        return [copy.deepcopy(doc) for doc in self._docs.values() if matches_filters(doc, filters)]

    def _notify(self, before: Document | None, after: Document | None) -> None:
        for mailbox in list(self._mailboxes):
            if affects(before, after, mailbox.filters):
                mailbox.push(self._snapshot(mailbox.filters))

    async def create(self, doc: Document, doc_id: str | None = None) -> str:
        doc_id = doc_id or str(uuid4())
        async with self._lock_for(doc_id):
            if doc_id in self._docs:
                raise DocumentExists(doc_id)
            stored = copy.deepcopy(doc)
            stored["id"] = doc_id
            self._docs[doc_id] = stored
            self._notify(None, stored)
        return doc_id

    async def get(self, doc_id: str) -> Document | None:
        doc = self._docs.get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def delete(self, doc_id: str) -> bool:
        if doc_id not in self._docs:
            return False
        async with self._lock_for(doc_id):
            before = self._docs.pop(doc_id, None)
            if before is None:
                return False
            self._notify(before, None)
        self._locks.pop(doc_id, None)
        return True

    async def query(self, filters: Filters | None = None) -> list[Document]:
        return self._snapshot(filters)

    async def mutate(self, doc_id: str, mutator: Mutator) -> tuple[Document, Any]:
        # Блокировка заводится только для существующего документа
        if doc_id not in self._docs:
            raise DocumentNotFound(doc_id)
        async with self._lock_for(doc_id):
            before = self._docs.get(doc_id)
            if before is None:
                self._locks.pop(doc_id, None)
                raise DocumentNotFound(doc_id)
            after = copy.deepcopy(before)
            result = mutator(after)
            after["id"] = doc_id
            if after == before:
                return copy.deepcopy(after), result
            self._docs[doc_id] = after
            self._notify(before, after)
            return copy.deepcopy(after), result

    async def watch(self, filters: Filters | None = None) -> AsyncIterator[list[Document]]:
        mailbox = _Mailbox(filters)
        self._mailboxes.add(mailbox)
        try:
            yield self._snapshot(filters)
            while True:
                yield await mailbox.queue.get()
        finally:
            self._mailboxes.discard(mailbox)

    @property
    def subscriber_count(self) -> int:
        """Количество открытых потоков."""
        return len(self._mailboxes)

    async def close(self) -> None:
        self._mailboxes.clear()
