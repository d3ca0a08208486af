# carhire/core/requests/lifecycle.py
"""
Жизненный цикл заявки: квота активных заявок, срок действия, переходы статусов.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from carhire.common.constants import RequestStatus, TypeMsg
from carhire.common.exceptions import NotOwnerError, QuotaExceededError, RequestClosedError
from carhire.common.logger import log_info
from carhire.core.requests.models import BookingRequest, RequestQuery
from carhire.core.requests.repository import RequestRepository


class RequestStateMachine:
    """
    Переходы статусов заявки.

    - active → fulfilled (резерв для внешнего сервиса)
    - active → expired (лениво, по expiresAt)
    - fulfilled, expired — терминальные
    Удаление не статус: документ просто исчезает.
    """

    ALLOWED_TRANSITIONS: dict[RequestStatus, list[RequestStatus]] = {
        RequestStatus.ACTIVE: [RequestStatus.FULFILLED, RequestStatus.EXPIRED],
        RequestStatus.FULFILLED: [],
        RequestStatus.EXPIRED: [],
    }

    @classmethod
    def can_transition(cls, from_status: RequestStatus | str, to_status: RequestStatus | str) -> bool:
        """Проверяет, допустим ли переход."""
        try:
            current = RequestStatus(from_status)
            target = RequestStatus(to_status)
        except ValueError:
            return False
        return target in cls.ALLOWED_TRANSITIONS.get(current, [])

    @classmethod
    def is_terminal(cls, status: RequestStatus | str) -> bool:
        return not cls.ALLOWED_TRANSITIONS.get(RequestStatus(status), [])


class RequestLifecycleManager:
    """
    Менеджер жизненного цикла заявок.

    Квота — мягкая проверка read-then-decide: две параллельные
    попытки создания у одного владельца могут обе пройти.
    """

    def __init__(
        self,
        repository: RequestRepository,
        max_active: int | None = None,
        ttl_days: int | None = None,
    ) -> None:
        """
        Args:
            repository: Репозиторий заявок
            max_active: Лимит активных заявок на владельца (по умолчанию из конфига)
            ttl_days: Срок действия заявки в днях (по умолчанию из конфига)
        """
        if max_active is None or ttl_days is None:
            from carhire.config import settings
            max_active = max_active if max_active is not None else settings.booking.MAX_ACTIVE_REQUESTS
            ttl_days = ttl_days if ttl_days is not None else settings.booking.REQUEST_TTL_DAYS

        self._repository = repository
        self._max_active = max_active
        self._ttl = timedelta(days=ttl_days)

    @property
    def max_active(self) -> int:
        return self._max_active

    def now(self) -> datetime:
        """Текущее время по часам репозитория."""
        return self._repository.clock()

    # =========================================================================
    # СРОК ДЕЙСТВИЯ
    # =========================================================================

    def expires_at_for(self, created_at: datetime) -> datetime:
        """Время истечения заявки, созданной в created_at."""
        return created_at + self._ttl

    @staticmethod
    def effective_status(request: BookingRequest, now: datetime) -> RequestStatus:
        """
        Фактический статус заявки.
        Просроченная заявка считается expired независимо от хранимого статуса.
        """
        if now > request.expires_at:
            return RequestStatus.EXPIRED
        return request.status

    def is_live(self, request: BookingRequest, now: datetime | None = None) -> bool:
        """Заявка фактически активна."""
        return self.effective_status(request, now or self.now()) == RequestStatus.ACTIVE

    def live(self, requests: Iterable[BookingRequest], now: datetime | None = None) -> list[BookingRequest]:
        """Оставляет только фактически активные заявки, сохраняя порядок."""
        moment = now or self.now()
        return [r for r in requests if self.effective_status(r, moment) == RequestStatus.ACTIVE]

    def ensure_open(self, request: BookingRequest, now: datetime | None = None) -> None:
        """
        Проверяет, что заявка принимает предложения.

        Raises:
            RequestClosedError: заявка выполнена или истекла
        """
        status = self.effective_status(request, now or self.now())
        if status != RequestStatus.ACTIVE:
            raise RequestClosedError(f"Booking request {request.id} is {status.value}")

    # =========================================================================
    # КВОТА
    # =========================================================================

    async def count_active(self, owner_id: str) -> int:
        """Число фактически активных заявок владельца."""
        requests = await self._repository.fetch(
            RequestQuery(status=RequestStatus.ACTIVE, owner_id=owner_id)
        )
        return len(self.live(requests))

    async def can_create(self, owner_id: str) -> bool:
        """Владелец может создать ещё одну заявку."""
        return await self.count_active(owner_id) < self._max_active

    async def ensure_can_create(self, owner_id: str) -> None:
        """
        Raises:
            QuotaExceededError: у владельца уже max_active активных заявок
        """
        count = await self.count_active(owner_id)
        if count >= self._max_active:
            await log_info(
                f"Квота заявок исчерпана: {owner_id} ({count}/{self._max_active})",
                type_msg=TypeMsg.WARNING,
            )
            raise QuotaExceededError(
                f"You have reached the maximum of {self._max_active} active requests. "
                "Please delete one to create a new request."
            )

    # =========================================================================
    # ПЕРЕХОДЫ
    # =========================================================================

    async def mark_fulfilled(self, request_id: str, owner_id: str) -> BookingRequest:
        """
        Переводит заявку в fulfilled. Только владелец.

        Raises:
            NotFoundError: заявки нет
            NotOwnerError: вызывающий не владелец
            RequestClosedError: заявка уже в терминальном состоянии
        """
        request = await self._repository.get(request_id)
        if not request.is_owned_by(owner_id):
            raise NotOwnerError("Only the owner can modify this request")

        current = self.effective_status(request, self.now())
        if not RequestStateMachine.can_transition(current, RequestStatus.FULFILLED):
            raise RequestClosedError(f"Booking request {request_id} is {current.value}")

        updated = await self._repository.set_status(request_id, RequestStatus.FULFILLED.value)
        await log_info(f"Заявка {request_id} выполнена", type_msg=TypeMsg.INFO)
        return updated
