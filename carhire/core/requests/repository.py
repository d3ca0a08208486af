# carhire/core/requests/repository.py
"""
Репозиторий заявок поверх документного хранилища.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Optional
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from carhire.common.constants import TypeMsg
from carhire.common.exceptions import IndexOutOfRangeError, NotFoundError, ValidationError
from carhire.common.logger import log_info
from carhire.core.requests.models import (
    EDITABLE_FIELDS,
    BookingRequest,
    BookingRequestCreateDTO,
    BookingRequestUpdateDTO,
    Offer,
    RequestQuery,
)
from carhire.infra.document_store import (
    ArrayIndexError,
    DocumentNotFound,
    DocumentStore,
    retry_on_store_error,
)

Clock = Callable[[], datetime]

OFFERS_FIELD = "offers"


def utc_now() -> datetime:
    """Текущее время в UTC."""
    return datetime.now(timezone.utc)


def to_validation_error(error: PydanticValidationError) -> ValidationError:
    """Конвертирует ошибку pydantic в доменную ValidationError."""
    errors = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in error.errors()
    ]
    summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
    return ValidationError(f"Invalid booking request: {summary}", errors=errors)


def sort_newest_first(requests: list[BookingRequest]) -> list[BookingRequest]:
    """Сортирует заявки по createdAt по убыванию."""
    return sorted(requests, key=lambda r: r.created_at, reverse=True)


class RequestRepository:
    """Репозиторий заявок."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock = utc_now,
        ttl_days: int | None = None,
    ) -> None:
        """
        Инициализация репозитория.

        Args:
            store: Документное хранилище (Dependency Injection)
            clock: Источник текущего времени (UTC)
            ttl_days: Время жизни заявки в днях (по умолчанию из конфига)
        """
        if ttl_days is None:
            from carhire.config import settings
            ttl_days = settings.booking.REQUEST_TTL_DAYS

        self._store = store
        self._clock = clock
        self._ttl = timedelta(days=ttl_days)

    @property
    def clock(self) -> Clock:
        return self._clock

    async def health_check(self) -> bool:
        """Доступность хранилища."""
        return await self._store.health_check()

    def _stamp(self) -> dict[str, Any]:
        return {"updatedAt": self._clock().isoformat()}

    def _model(self, doc: dict[str, Any]) -> BookingRequest:
        return BookingRequest.from_document(doc)

    # =========================================================================
    # CRUD
    # =========================================================================

    @retry_on_store_error(max_attempts=1)
    async def create(
        self,
        dto: BookingRequestCreateDTO | dict[str, Any],
        *,
        request_id: Optional[str] = None,
    ) -> BookingRequest:
        """
        Создаёт заявку: назначает id, временные метки и значения по умолчанию.
        Не ретраится: повтор без ключа идемпотентности может создать дубль.

        Args:
            dto: Поля заявки (DTO или словарь в camelCase)
            request_id: Заранее вычисленный id (ключ идемпотентности)

        Returns:
            Созданная заявка

        Raises:
            ValidationError: отсутствуют или некорректны обязательные поля
            DocumentExists: заявка с таким id уже есть
        """
        try:
            if not isinstance(dto, BookingRequestCreateDTO):
                dto = BookingRequestCreateDTO.model_validate(dto)
        except PydanticValidationError as e:
            raise to_validation_error(e) from e

        now = self._clock()
        request = BookingRequest(
            id=request_id or str(uuid4()),
            created_at=now,
            updated_at=now,
            expires_at=now + self._ttl,
            **dto.model_dump(),
        )
        await self._store.create(request.to_document(), doc_id=request.id)

        await log_info(f"Заявка {request.id} создана пользователем {request.user_id}", type_msg=TypeMsg.DEBUG)
        return request

    @retry_on_store_error()
    async def find(self, request_id: str) -> Optional[BookingRequest]:
        """Получает заявку по ID или None."""
        doc = await self._store.get(request_id)
        return self._model(doc) if doc is not None else None

    async def get(self, request_id: str) -> BookingRequest:
        """
        Получает заявку по ID.

        Raises:
            NotFoundError: заявки нет
        """
        request = await self.find(request_id)
        if request is None:
            raise NotFoundError(f"Booking request {request_id} not found")
        return request

    @retry_on_store_error()
    async def update(
        self,
        request_id: str,
        patch: BookingRequestUpdateDTO | dict[str, Any],
    ) -> BookingRequest:
        """
        Частичное слияние редактируемых полей.
        Статус, срок действия, предложения и просмотры не меняются.

        Raises:
            ValidationError: некорректный патч или endDate < startDate после слияния
            NotFoundError: заявка удалена (например, гонка с delete)
        """
        try:
            if not isinstance(patch, BookingRequestUpdateDTO):
                patch = BookingRequestUpdateDTO.model_validate(patch)
        except PydanticValidationError as e:
            raise to_validation_error(e) from e

        fields = {k: v for k, v in patch.to_patch().items() if k in EDITABLE_FIELDS}
        fields.update(self._stamp())

        def apply(doc: dict[str, Any]) -> None:
            merged = {**doc, **fields}
            # Проверяем итоговый документ до записи
            try:
                validated = BookingRequest.from_document(merged)
            except PydanticValidationError as e:
                raise to_validation_error(e) from e
            doc.update(fields)
            doc["destination"] = validated.destination

        try:
            doc, _ = await self._store.mutate(request_id, apply)
        except DocumentNotFound as e:
            raise NotFoundError(f"Booking request {request_id} not found") from e

        return self._model(doc)

    @retry_on_store_error()
    async def set_status(self, request_id: str, status: str) -> BookingRequest:
        """Меняет хранимый статус заявки."""
        try:
            doc = await self._store.update(request_id, {"status": status, **self._stamp()})
        except DocumentNotFound as e:
            raise NotFoundError(f"Booking request {request_id} not found") from e
        return self._model(doc)

    @retry_on_store_error()
    async def delete(self, request_id: str) -> bool:
        """
        Удаляет заявку. Идемпотентно: отсутствие id не ошибка.

        Returns:
            True если документ был удалён
        """
        deleted = await self._store.delete(request_id)
        if deleted:
            await log_info(f"Заявка {request_id} удалена", type_msg=TypeMsg.DEBUG)
        return deleted

    # =========================================================================
    # ЗАПРОСЫ
    # =========================================================================

    @retry_on_store_error()
    async def fetch(self, query: RequestQuery | None = None) -> list[BookingRequest]:
        """Разовый снимок заявок по фильтру, новые первыми."""
        docs = await self._store.query((query or RequestQuery()).to_filters())
        return sort_newest_first([self._model(doc) for doc in docs])

    async def query(self, query: RequestQuery | None = None) -> AsyncIterator[list[BookingRequest]]:
        """
        Живой поток снимков по фильтру.
        Каждый элемент — полный результат (не дифф), новые первыми.
        """
        stream = self._store.watch((query or RequestQuery()).to_filters())
        try:
            async for docs in stream:
                yield sort_newest_first([self._model(doc) for doc in docs])
        finally:
            await stream.aclose()

    # =========================================================================
    # СЧЁТЧИКИ И МАССИВ ПРЕДЛОЖЕНИЙ
    # =========================================================================

    @retry_on_store_error(max_attempts=1)
    async def increment_views(self, request_id: str) -> int:
        """Атомарный коммутативный инкремент просмотров. Возвращает новое значение."""
        try:
            doc = await self._store.increment(request_id, "views", 1, extra=self._stamp())
        except DocumentNotFound as e:
            raise NotFoundError(f"Booking request {request_id} not found") from e
        return int(doc["views"])

    @retry_on_store_error(max_attempts=1)
    async def append_offer(self, request_id: str, offer: Offer) -> BookingRequest:
        """
        Добавляет предложение в конец массива.
        Не ретраится: повторный append создаст второе предложение.
        """
        try:
            doc = await self._store.array_append(
                request_id, OFFERS_FIELD, offer.to_document(), extra=self._stamp()
            )
        except DocumentNotFound as e:
            raise NotFoundError(f"Booking request {request_id} not found") from e
        return self._model(doc)

    @retry_on_store_error(max_attempts=1)
    async def remove_offer_at(self, request_id: str, index: int) -> Offer:
        """
        Удаляет предложение по позиции (индекс проверяется в момент записи).

        Raises:
            IndexOutOfRangeError: индекс вне диапазона
            NotFoundError: заявки нет
        """
        try:
            _, removed = await self._store.array_remove_at(
                request_id, OFFERS_FIELD, index, extra=self._stamp()
            )
        except ArrayIndexError as e:
            raise IndexOutOfRangeError(f"Offer index {index} is out of range") from e
        except DocumentNotFound as e:
            raise NotFoundError(f"Booking request {request_id} not found") from e
        return Offer.model_validate(removed)

    @retry_on_store_error()
    async def remove_offers_by_driver(self, request_id: str, driver_id: str) -> int:
        """Удаляет все предложения водителя. Возвращает число удалённых."""
        try:
            _, removed = await self._store.array_remove_where(
                request_id, OFFERS_FIELD, "driverId", driver_id, extra=self._stamp()
            )
        except DocumentNotFound as e:
            raise NotFoundError(f"Booking request {request_id} not found") from e
        return removed

    @retry_on_store_error()
    async def replace_offer_by_driver(self, request_id: str, driver_id: str, offer: Offer) -> int:
        """
        Заменяет предложения водителя новым одной атомарной записью.
        Возвращает число заменённых (0 — предложения не было, запись не выполнена).
        """
        try:
            _, replaced = await self._store.array_replace_where(
                request_id, OFFERS_FIELD, "driverId", driver_id, offer.to_document(), extra=self._stamp()
            )
        except DocumentNotFound as e:
            raise NotFoundError(f"Booking request {request_id} not found") from e
        return replaced
