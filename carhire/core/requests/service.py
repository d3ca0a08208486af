# carhire/core/requests/service.py
"""
Сервис заявок: операции для внешнего слоя (API, UI) и доменные события.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timezone
from typing import Any, AsyncIterator, Optional
from uuid import NAMESPACE_URL, uuid5

from pydantic import ValidationError as PydanticValidationError

from carhire.common.constants import RequestFilter, RequestStatus, TypeMsg, UserRole
from carhire.common.exceptions import NotOwnerError
from carhire.common.logger import log_error, log_info
from carhire.core.matching.location import DriverLocation, LocationMatcher
from carhire.core.notifications.aggregator import NotificationAggregator
from carhire.core.requests.lifecycle import RequestLifecycleManager
from carhire.core.requests.models import (
    BookingRequest,
    BookingRequestCreateDTO,
    BookingRequestUpdateDTO,
    NotificationCounts,
    Offer,
    OfferCreateDTO,
    RequestQuery,
)
from carhire.core.requests.offers import OfferLedger
from carhire.core.requests.repository import RequestRepository, to_validation_error
from carhire.infra.document_store import DocumentExists
from carhire.infra.event_bus import DomainEvent, EventBus, EventTypes

# Пространство имён для id заявок, выведенных из ключа идемпотентности
IDEMPOTENCY_NAMESPACE = uuid5(NAMESPACE_URL, "carhire:booking-requests")


def request_id_for_key(owner_id: str, idempotency_key: str) -> str:
    """Детерминированный id заявки для (владелец, ключ идемпотентности)."""
    return str(uuid5(IDEMPOTENCY_NAMESPACE, f"{owner_id}:{idempotency_key}"))


@dataclass
class FeedStats:
    """Сводка по ленте: активные, срочные и начинающиеся сегодня."""
    active: int = 0
    urgent: int = 0
    starting_today: int = 0


def feed_stats(requests: list[BookingRequest], today: date) -> FeedStats:
    """Считает сводку по списку фактически активных заявок."""
    return FeedStats(
        active=len(requests),
        urgent=sum(1 for r in requests if r.urgent),
        starting_today=sum(1 for r in requests if r.start_date == today),
    )


@dataclass
class ActiveSnapshot:
    """Разовый снимок ленты заявок."""
    requests: list[BookingRequest] = field(default_factory=list)
    unfiltered_count: int = 0
    stats: FeedStats = field(default_factory=FeedStats)


class BookingRequestService:
    """
    Сервис заявок.
    Управляет созданием, редактированием, предложениями и счётчиками.
    """

    def __init__(
        self,
        repository: RequestRepository,
        event_bus: EventBus | None = None,
        lifecycle: RequestLifecycleManager | None = None,
        matcher: LocationMatcher | None = None,
        aggregator: NotificationAggregator | None = None,
    ) -> None:
        """
        Инициализация сервиса.

        Args:
            repository: Репозиторий заявок
            event_bus: Шина событий (None — события не публикуются)
            lifecycle: Менеджер жизненного цикла
            matcher: Сопоставление местоположений
            aggregator: Пересчёт счётчиков уведомлений
        """
        self._repo = repository
        self._event_bus = event_bus
        self._lifecycle = lifecycle or RequestLifecycleManager(repository)
        self._ledger = OfferLedger(repository, self._lifecycle)
        self._matcher = matcher or LocationMatcher()
        self._aggregator = aggregator or NotificationAggregator(repository, self._lifecycle)

    @property
    def lifecycle(self) -> RequestLifecycleManager:
        return self._lifecycle

    @property
    def ledger(self) -> OfferLedger:
        return self._ledger

    @property
    def aggregator(self) -> NotificationAggregator:
        return self._aggregator

    async def store_healthy(self) -> bool:
        return await self._repo.health_check()

    async def event_bus_state(self) -> str:
        """Состояние шины событий: disabled, connected или disconnected."""
        if self._event_bus is None:
            return "disabled"
        return "connected" if await self._event_bus.health_check() else "disconnected"

    async def _publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """Публикует событие; ошибки логируются и не прерывают операцию."""
        if self._event_bus is None:
            return
        try:
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
        except Exception as pub_error:
            await log_error(f"Не удалось опубликовать {event_type}: {pub_error}")

    async def _get_owned(self, request_id: str, owner_id: str) -> BookingRequest:
        request = await self._repo.get(request_id)
        if not request.is_owned_by(owner_id):
            await log_info(
                f"Отказ: {owner_id} не владелец заявки {request_id}",
                type_msg=TypeMsg.WARNING,
            )
            raise NotOwnerError("Only the owner can modify this request")
        return request

    # =========================================================================
    # ЗАЯВКИ
    # =========================================================================

    async def create_request(
        self,
        dto: BookingRequestCreateDTO | dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> str:
        """
        Создаёт заявку клиента.

        Повторный вызов с тем же ключом идемпотентности возвращает id уже
        созданной заявки без повторной проверки квоты.

        Args:
            dto: Поля заявки
            idempotency_key: Клиентский ключ идемпотентности

        Returns:
            ID заявки

        Raises:
            ValidationError: некорректные поля
            QuotaExceededError: у клиента уже максимум активных заявок
        """
        try:
            if not isinstance(dto, BookingRequestCreateDTO):
                dto = BookingRequestCreateDTO.model_validate(dto)
        except PydanticValidationError as e:
            raise to_validation_error(e) from e

        request_id: Optional[str] = None
        if idempotency_key:
            request_id = request_id_for_key(dto.user_id, idempotency_key)
            existing = await self._repo.find(request_id)
            if existing is not None:
                await log_info(f"Повтор создания заявки {request_id} по ключу идемпотентности", type_msg=TypeMsg.DEBUG)
                return existing.id

        await self._lifecycle.ensure_can_create(dto.user_id)

        try:
            created = await self._repo.create(dto, request_id=request_id)
        except DocumentExists:
            # Параллельный повтор с тем же ключом успел первым
            return request_id  # type: ignore[return-value]

        await self._publish(EventTypes.REQUEST_CREATED, {
            "request_id": created.id,
            "user_id": created.user_id,
            "location": created.location,
            "urgent": created.urgent,
            "budget": created.budget,
        })
        await log_info(f"Заявка {created.id} создана клиентом {created.user_id}", type_msg=TypeMsg.INFO)
        return created.id

    async def get_request(self, request_id: str) -> BookingRequest:
        """Заявка по ID (NotFoundError, если её нет)."""
        return await self._repo.get(request_id)

    def _feed_query(self, filter: RequestFilter) -> RequestQuery:
        if RequestFilter(filter) == RequestFilter.URGENT:
            return RequestQuery(status=RequestStatus.ACTIVE, urgent=True)
        return RequestQuery(status=RequestStatus.ACTIVE)

    def _apply_filter(
        self,
        requests: list[BookingRequest],
        filter: RequestFilter,
        driver_location: Optional[DriverLocation],
    ) -> list[BookingRequest]:
        live = self._lifecycle.live(requests)
        if RequestFilter(filter) == RequestFilter.NEARBY:
            return self._matcher.filter_nearby(live, driver_location or DriverLocation())
        return live

    async def list_active(
        self,
        filter: RequestFilter = RequestFilter.ALL,
        driver_location: Optional[DriverLocation] = None,
    ) -> AsyncIterator[list[BookingRequest]]:
        """
        Живая лента фактически активных заявок, новые первыми.
        Фильтр nearby может отдавать пустые списки: переключение на all —
        решение клиента.
        """
        stream = self._repo.query(self._feed_query(filter))
        try:
            async for snapshot in stream:
                yield self._apply_filter(snapshot, filter, driver_location)
        finally:
            await stream.aclose()

    async def snapshot_active(
        self,
        filter: RequestFilter = RequestFilter.ALL,
        driver_location: Optional[DriverLocation] = None,
    ) -> ActiveSnapshot:
        """
        Разовый снимок ленты плюс размер и сводка нефильтрованного набора
        активных заявок. "Сегодня" считается по дате часов в UTC.
        """
        snapshot = await self._repo.fetch(self._feed_query(filter))
        live = self._lifecycle.live(snapshot)
        today = self._lifecycle.now().astimezone(timezone.utc).date()
        return ActiveSnapshot(
            requests=self._apply_filter(live, filter, driver_location),
            unfiltered_count=len(live),
            stats=feed_stats(live, today),
        )

    async def update_request(
        self,
        request_id: str,
        owner_id: str,
        patch: BookingRequestUpdateDTO | dict[str, Any],
    ) -> BookingRequest:
        """
        Редактирует заявку владельцем.

        Raises:
            NotFoundError: заявки нет
            NotOwnerError: вызывающий не владелец
            ValidationError: некорректный патч
        """
        await self._get_owned(request_id, owner_id)
        updated = await self._repo.update(request_id, patch)

        await self._publish(EventTypes.REQUEST_UPDATED, {"request_id": request_id, "user_id": owner_id})
        await log_info(f"Заявка {request_id} обновлена", type_msg=TypeMsg.DEBUG)
        return updated

    async def delete_request(self, request_id: str, owner_id: str) -> None:
        """
        Удаляет заявку владельцем. Отсутствующая заявка — не ошибка.

        Raises:
            NotOwnerError: заявка существует, но вызывающий не владелец
        """
        request = await self._repo.find(request_id)
        if request is None:
            return
        if not request.is_owned_by(owner_id):
            raise NotOwnerError("Only the owner can delete this request")

        if await self._repo.delete(request_id):
            await self._publish(EventTypes.REQUEST_DELETED, {"request_id": request_id, "user_id": owner_id})
            await log_info(f"Заявка {request_id} удалена владельцем", type_msg=TypeMsg.INFO)

    async def mark_fulfilled(self, request_id: str, owner_id: str) -> BookingRequest:
        """Переводит заявку в fulfilled (только владелец)."""
        updated = await self._lifecycle.mark_fulfilled(request_id, owner_id)
        await self._publish(EventTypes.REQUEST_FULFILLED, {"request_id": request_id, "user_id": owner_id})
        return updated

    async def increment_views(self, request_id: str) -> int:
        """Увеличивает счётчик просмотров. Возвращает новое значение."""
        return await self._repo.increment_views(request_id)

    # =========================================================================
    # ПРЕДЛОЖЕНИЯ
    # =========================================================================

    def _build_offer(self, driver_id: str, fields: OfferCreateDTO | dict[str, Any]) -> Offer:
        try:
            if not isinstance(fields, OfferCreateDTO):
                fields = OfferCreateDTO.model_validate(fields)
            return Offer.from_dto(fields, driver_id=driver_id, created_at=self._lifecycle.now())
        except PydanticValidationError as e:
            raise to_validation_error(e) from e

    async def submit_offer(
        self,
        request_id: str,
        driver_id: str,
        fields: OfferCreateDTO | dict[str, Any],
    ) -> Offer:
        """
        Подаёт предложение водителя.

        Raises:
            ValidationError: некорректные поля предложения
            NotFoundError: заявки нет
            RequestClosedError: заявка выполнена или истекла
            SelfOfferError: водитель — владелец заявки
            DuplicateOfferError: у водителя уже есть предложение
        """
        offer = self._build_offer(driver_id, fields)
        request = await self._ledger.append_offer(request_id, offer)

        await self._publish(EventTypes.OFFER_SUBMITTED, {
            "request_id": request_id,
            "customer_id": request.user_id,
            "driver_id": driver_id,
            "offer_id": offer.id,
            "price": offer.price,
        })
        await log_info(
            f"Предложение {offer.id} водителя {driver_id} на заявку {request_id}: {offer.price}",
            type_msg=TypeMsg.INFO,
        )
        return offer

    async def edit_offer(
        self,
        request_id: str,
        driver_id: str,
        fields: OfferCreateDTO | dict[str, Any],
    ) -> Offer:
        """
        Заменяет предложение водителя одной записью.

        Raises:
            NotFoundError: заявки нет или у водителя нет предложения
        """
        offer = self._build_offer(driver_id, fields)
        await self._ledger.replace_offer(request_id, driver_id, offer)

        await self._publish(EventTypes.OFFER_UPDATED, {
            "request_id": request_id,
            "driver_id": driver_id,
            "offer_id": offer.id,
            "price": offer.price,
        })
        return offer

    async def withdraw_offer(self, request_id: str, driver_id: str) -> None:
        """
        Отзывает предложение водителя (удаление по ключу водителя).

        Raises:
            NotFoundError: заявки нет или у водителя нет предложения
        """
        await self._ledger.remove_driver_offer(request_id, driver_id)

        await self._publish(EventTypes.OFFER_WITHDRAWN, {"request_id": request_id, "driver_id": driver_id})
        await log_info(f"Водитель {driver_id} отозвал предложение на {request_id}", type_msg=TypeMsg.DEBUG)

    # =========================================================================
    # СЧЁТЧИКИ
    # =========================================================================

    async def get_notification_counts(self, user_id: str, role: UserRole) -> NotificationCounts:
        """Счётчики уведомлений пользователя в его роли."""
        return await self._aggregator.get_counts(user_id, role)

    def watch_notification_counts(self, user_id: str, role: UserRole) -> AsyncIterator[NotificationCounts]:
        """Живой поток счётчиков уведомлений."""
        return self._aggregator.watch_counts(user_id, role)
