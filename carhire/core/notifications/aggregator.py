# carhire/core/notifications/aggregator.py
"""
Счётчики уведомлений для водителей и клиентов.

Счётчики всегда пересчитываются целиком из авторитетного снимка,
инкрементального учёта нет.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import datetime
from typing import AsyncIterator, Iterable

from carhire.common.constants import RequestStatus, TypeMsg, UserRole
from carhire.common.logger import log_info
from carhire.core.requests.lifecycle import RequestLifecycleManager
from carhire.core.requests.models import BookingRequest, NotificationCounts, RequestQuery
from carhire.core.requests.repository import RequestRepository


class NotificationAggregator:
    """Пересчёт счётчиков уведомлений по снимкам заявок."""

    def __init__(
        self,
        repository: RequestRepository,
        lifecycle: RequestLifecycleManager,
        cap: int | None = None,
        debounce_seconds: float | None = None,
    ) -> None:
        """
        Args:
            repository: Репозиторий заявок
            lifecycle: Менеджер жизненного цикла (фильтр истёкших)
            cap: Верхняя граница счётчика (по умолчанию из конфига)
            debounce_seconds: Окно склейки всплесков изменений
        """
        if cap is None or debounce_seconds is None:
            from carhire.config import settings
            cap = cap if cap is not None else settings.booking.NOTIFICATION_CAP
            if debounce_seconds is None:
                debounce_seconds = settings.booking.NOTIFICATION_DEBOUNCE_SECONDS

        self._repository = repository
        self._lifecycle = lifecycle
        self._cap = cap
        self._debounce = debounce_seconds

    def _clamp(self, value: int) -> int:
        return max(0, min(value, self._cap))

    # =========================================================================
    # ЧИСТЫЙ ПЕРЕСЧЁТ
    # =========================================================================

    def driver_count(
        self,
        requests: Iterable[BookingRequest],
        driver_id: str,
        now: datetime | None = None,
    ) -> int:
        """Активные заявки чужих владельцев без предложения этого водителя."""
        count = sum(
            1
            for r in self._lifecycle.live(requests, now)
            if not r.is_owned_by(driver_id) and not r.has_offer_from(driver_id)
        )
        return self._clamp(count)

    def customer_count(
        self,
        requests: Iterable[BookingRequest],
        customer_id: str,
        now: datetime | None = None,
    ) -> int:
        """Сумма предложений по собственным активным заявкам клиента."""
        count = sum(len(r.offers) for r in self._lifecycle.live(requests, now) if r.is_owned_by(customer_id))
        return self._clamp(count)

    def counts_for(
        self,
        requests: Iterable[BookingRequest],
        user_id: str,
        role: UserRole,
        now: datetime | None = None,
    ) -> NotificationCounts:
        """Счётчики пользователя в его роли (второй счётчик равен нулю)."""
        if UserRole(role) == UserRole.DRIVER:
            return NotificationCounts(driver_count=self.driver_count(requests, user_id, now))
        return NotificationCounts(customer_count=self.customer_count(requests, user_id, now))

    @staticmethod
    def acknowledge_offers(counts: NotificationCounts) -> NotificationCounts:
        """
        Локальное уменьшение счётчика клиента на одну просмотренную заявку.
        Перекрывается следующим авторитетным пересчётом.
        """
        return counts.model_copy(update={"customer_count": max(0, counts.customer_count - 1)})

    # =========================================================================
    # СНИМОК И ПОТОК
    # =========================================================================

    @staticmethod
    def _query_for(user_id: str, role: UserRole) -> RequestQuery:
        if UserRole(role) == UserRole.DRIVER:
            return RequestQuery(status=RequestStatus.ACTIVE)
        return RequestQuery(status=RequestStatus.ACTIVE, owner_id=user_id)

    async def get_counts(self, user_id: str, role: UserRole) -> NotificationCounts:
        """Разовый пересчёт по текущему снимку."""
        requests = await self._repository.fetch(self._query_for(user_id, role))
        return self.counts_for(requests, user_id, role)

    async def watch_counts(self, user_id: str, role: UserRole) -> AsyncIterator[NotificationCounts]:
        """
        Живой поток счётчиков.

        Снимки репозитория попадают в почтовый ящик на одно место;
        после первого снимка всплеска ждём debounce и берём последний.
        """
        mailbox: asyncio.Queue[list[BookingRequest]] = asyncio.Queue(maxsize=1)
        stream = self._repository.query(self._query_for(user_id, role))

        async def pump() -> None:
            async for snapshot in stream:
                if mailbox.full():
                    mailbox.get_nowait()
                mailbox.put_nowait(snapshot)

        pump_task = asyncio.create_task(pump())
        await log_info(f"Подписка на счётчики: {user_id} ({UserRole(role).value})", type_msg=TypeMsg.DEBUG)
        try:
            while True:
                snapshot = await self._next_snapshot(mailbox, pump_task)
                if snapshot is None:
                    return
                if self._debounce > 0:
                    await asyncio.sleep(self._debounce)
                    while not mailbox.empty():
                        snapshot = mailbox.get_nowait()
                yield self.counts_for(snapshot, user_id, role)
        finally:
            if not pump_task.done():
                pump_task.cancel()
                with suppress(asyncio.CancelledError):
                    await pump_task
            await stream.aclose()

    @staticmethod
    async def _next_snapshot(
        mailbox: asyncio.Queue[list[BookingRequest]],
        pump_task: asyncio.Task,
    ) -> list[BookingRequest] | None:
        """
        Ждёт следующий снимок. Ошибка потока пробрасывается;
        None — поток завершился.
        """
        if not mailbox.empty():
            return mailbox.get_nowait()

        getter = asyncio.ensure_future(mailbox.get())
        done, _ = await asyncio.wait({getter, pump_task}, return_when=asyncio.FIRST_COMPLETED)
        if getter in done:
            return getter.result()

        getter.cancel()
        with suppress(asyncio.CancelledError):
            await getter
        pump_task.result()
        return None
