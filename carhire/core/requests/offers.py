# carhire/core/requests/offers.py
"""
Учёт предложений водителей внутри заявки.

Предложение меняется только удалением и повторной вставкой.
Проверка дубля — read-then-write: двойной клик водителя может
оставить два его предложения в одной заявке.
"""

from __future__ import annotations

from typing import Optional

from carhire.common.constants import TypeMsg
from carhire.common.exceptions import DuplicateOfferError, NotFoundError, SelfOfferError
from carhire.common.logger import log_info
from carhire.core.requests.lifecycle import RequestLifecycleManager
from carhire.core.requests.models import BookingRequest, Offer
from carhire.core.requests.repository import RequestRepository


class OfferLedger:
    """Массив предложений заявки."""

    def __init__(self, repository: RequestRepository, lifecycle: RequestLifecycleManager) -> None:
        self._repository = repository
        self._lifecycle = lifecycle

    async def append_offer(self, request_id: str, offer: Offer) -> BookingRequest:
        """
        Добавляет предложение в конец массива.

        Args:
            request_id: ID заявки
            offer: Предложение водителя

        Returns:
            Заявка после записи

        Raises:
            NotFoundError: заявки нет
            RequestClosedError: заявка выполнена или истекла
            SelfOfferError: водитель — владелец заявки
            DuplicateOfferError: у водителя уже есть предложение
        """
        request = await self._repository.get(request_id)
        self._lifecycle.ensure_open(request)

        if request.is_owned_by(offer.driver_id):
            await log_info(
                f"Отклонено предложение на собственную заявку {request_id}: {offer.driver_id}",
                type_msg=TypeMsg.WARNING,
            )
            raise SelfOfferError("Drivers cannot make offers on their own request")

        if request.has_offer_from(offer.driver_id):
            await log_info(
                f"Повторное предложение водителя {offer.driver_id} на {request_id}",
                type_msg=TypeMsg.WARNING,
            )
            raise DuplicateOfferError(
                "You have already made an offer on this request. Withdraw it before submitting a new one."
            )

        return await self._repository.append_offer(request_id, offer)

    async def find_offer_index(self, request_id: str, driver_id: str) -> Optional[int]:
        """Текущая позиция предложения водителя (заявка перечитывается)."""
        request = await self._repository.get(request_id)
        return request.offer_index(driver_id)

    async def remove_offer(self, request_id: str, index: int) -> Offer:
        """
        Удаляет предложение по позиции.
        Позицию нужно вычислять по свежему снимку непосредственно перед вызовом.

        Raises:
            IndexOutOfRangeError: индекс вне диапазона на момент записи
            NotFoundError: заявки нет
        """
        return await self._repository.remove_offer_at(request_id, index)

    async def remove_driver_offer(self, request_id: str, driver_id: str) -> int:
        """
        Удаляет предложения водителя по ключу (requestId, driverId) одной записью.

        Raises:
            NotFoundError: заявки нет или у водителя нет предложения
        """
        removed = await self._repository.remove_offers_by_driver(request_id, driver_id)
        if not removed:
            raise NotFoundError(f"No offer from driver {driver_id} on request {request_id}")
        return removed

    async def replace_offer(self, request_id: str, driver_id: str, new_offer: Offer) -> Offer:
        """
        Заменяет предложение водителя одной атомарной записью документа:
        читатель никогда не видит заявку без предложения этого водителя.

        Raises:
            NotFoundError: заявки нет или у водителя нет предложения
            RequestClosedError: заявка выполнена или истекла
        """
        request = await self._repository.get(request_id)
        self._lifecycle.ensure_open(request)

        replaced = await self._repository.replace_offer_by_driver(request_id, driver_id, new_offer)
        if not replaced:
            raise NotFoundError(f"No offer from driver {driver_id} on request {request_id}")
        return new_offer
