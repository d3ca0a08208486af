# tests/core/test_offer_ledger.py
"""
Тесты для OfferLedger: подача, удаление и замена предложений.
"""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from carhire.common.exceptions import (
    DuplicateOfferError,
    IndexOutOfRangeError,
    NotFoundError,
    RequestClosedError,
    SelfOfferError,
)
from carhire.core.requests.models import BookingRequest, Offer


class TestOfferLedger:
    """Тесты для OfferLedger."""

    @pytest.fixture
    def offer(self, clock):
        def make(driver_id: str, price: int = 15000) -> Offer:
            return Offer(driver_id=driver_id, car_make="Toyota Camry", price=price, created_at=clock())

        return make

    @pytest.fixture
    async def request_id(self, repository, request_factory) -> str:
        return (await repository.create(request_factory())).id

    # =========================================================================
    # ПОДАЧА
    # =========================================================================

    @pytest.mark.asyncio
    async def test_append_offer(self, ledger, request_id, offer):
        updated = await ledger.append_offer(request_id, offer("D1"))

        assert len(updated.offers) == 1
        assert updated.offers[0].driver_id == "D1"

    @pytest.mark.asyncio
    async def test_self_offer_rejected(self, ledger, request_id, offer, repository):
        """Проверяет, что владелец не может предлагать на свою заявку."""
        with pytest.raises(SelfOfferError):
            await ledger.append_offer(request_id, offer("U1"))

        assert (await repository.get(request_id)).offers == []

    @pytest.mark.asyncio
    async def test_duplicate_offer_rejected(self, ledger, request_id, offer, repository):
        await ledger.append_offer(request_id, offer("D1"))

        with pytest.raises(DuplicateOfferError):
            await ledger.append_offer(request_id, offer("D1", price=9000))

        assert len((await repository.get(request_id)).offers) == 1

    @pytest.mark.asyncio
    async def test_offer_on_missing_request(self, ledger, offer):
        with pytest.raises(NotFoundError):
            await ledger.append_offer("missing", offer("D1"))

    @pytest.mark.asyncio
    async def test_offer_on_expired_request(self, ledger, request_id, offer, clock):
        """Проверяет, что истёкшая заявка не принимает предложения."""
        clock.advance(days=8)

        with pytest.raises(RequestClosedError):
            await ledger.append_offer(request_id, offer("D1"))

    @pytest.mark.asyncio
    async def test_offer_on_fulfilled_request(self, ledger, request_id, offer, lifecycle):
        await lifecycle.mark_fulfilled(request_id, "U1")

        with pytest.raises(RequestClosedError):
            await ledger.append_offer(request_id, offer("D1"))

    # =========================================================================
    # УДАЛЕНИЕ
    # =========================================================================

    @pytest.mark.asyncio
    async def test_remove_by_fresh_index(self, ledger, request_id, offer, repository):
        """Проверяет удаление по позиции, вычисленной по свежему снимку."""
        await ledger.append_offer(request_id, offer("D1"))
        await ledger.append_offer(request_id, offer("D2"))

        index = await ledger.find_offer_index(request_id, "D2")
        removed = await ledger.remove_offer(request_id, index)

        assert index == 1
        assert removed.driver_id == "D2"
        assert [o.driver_id for o in (await repository.get(request_id)).offers] == ["D1"]

    @pytest.mark.asyncio
    async def test_remove_stale_index(self, ledger, request_id, offer):
        """Проверяет, что устаревший индекс отклоняется в момент записи."""
        await ledger.append_offer(request_id, offer("D1"))
        index = await ledger.find_offer_index(request_id, "D1")
        await ledger.remove_driver_offer(request_id, "D1")

        with pytest.raises(IndexOutOfRangeError):
            await ledger.remove_offer(request_id, index)

    @pytest.mark.asyncio
    async def test_remove_driver_offer(self, ledger, request_id, offer, repository):
        await ledger.append_offer(request_id, offer("D1"))
        await ledger.append_offer(request_id, offer("D2"))

        removed = await ledger.remove_driver_offer(request_id, "D1")

        assert removed == 1
        assert [o.driver_id for o in (await repository.get(request_id)).offers] == ["D2"]

    @pytest.mark.asyncio
    async def test_remove_driver_offer_missing(self, ledger, request_id):
        with pytest.raises(NotFoundError):
            await ledger.remove_driver_offer(request_id, "D1")

    @pytest.mark.asyncio
    async def test_withdraw_then_resubmit(self, ledger, request_id, offer, repository):
        """Проверяет, что после отзыва водитель может подать снова."""
        await ledger.append_offer(request_id, offer("D1"))
        await ledger.remove_driver_offer(request_id, "D1")

        await ledger.append_offer(request_id, offer("D1", price=12000))

        offers = (await repository.get(request_id)).offers
        assert [(o.driver_id, o.price) for o in offers] == [("D1", 12000)]

    # =========================================================================
    # ЗАМЕНА
    # =========================================================================

    @pytest.mark.asyncio
    async def test_replace_offer(self, ledger, request_id, offer, repository):
        await ledger.append_offer(request_id, offer("D1"))
        await ledger.append_offer(request_id, offer("D2"))

        new_offer = offer("D1", price=11000)
        result = await ledger.replace_offer(request_id, "D1", new_offer)

        offers = (await repository.get(request_id)).offers
        assert result == new_offer
        assert [(o.driver_id, o.price) for o in offers] == [("D2", 15000), ("D1", 11000)]

    @pytest.mark.asyncio
    async def test_replace_is_single_write(self, ledger, request_id, offer, store):
        """Проверяет, что подписчик не видит заявку без предложения водителя."""
        await ledger.append_offer(request_id, offer("D1"))
        stream = store.watch()
        try:
            await stream.__anext__()

            await ledger.replace_offer(request_id, "D1", offer("D1", price=11000))
            snapshot = await stream.__anext__()

            offers = snapshot[0]["offers"]
            assert [(o["driverId"], o["price"]) for o in offers] == [("D1", 11000)]
            assert store.subscriber_count == 1
        finally:
            await stream.aclose()

        assert store.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_replace_without_offer(self, ledger, request_id, offer):
        with pytest.raises(NotFoundError):
            await ledger.replace_offer(request_id, "D1", offer("D1"))

    @pytest.mark.asyncio
    async def test_replace_on_expired_request(self, ledger, request_id, offer, clock):
        await ledger.append_offer(request_id, offer("D1"))
        clock.advance(days=8)

        with pytest.raises(RequestClosedError):
            await ledger.replace_offer(request_id, "D1", offer("D1", price=100))

    # =========================================================================
    # ПАРАЛЛЕЛЬНАЯ ПОДАЧА
    # =========================================================================

    @pytest.fixture
    def interleaved_reads(self, repository):
        """Чтение заявки уступает цикл событий: обе проверки идут до обеих записей."""
        original_get = repository.get

        async def slow_get(request_id: str):
            request = await original_get(request_id)
            await asyncio.sleep(0.01)
            return request

        with patch.object(repository, "get", slow_get):
            yield

    @pytest.mark.asyncio
    async def test_concurrent_drivers_both_land(self, ledger, request_id, offer, repository, interleaved_reads):
        """Одновременные предложения разных водителей не теряются."""
        results = await asyncio.gather(
            ledger.append_offer(request_id, offer("D1")),
            ledger.append_offer(request_id, offer("D2", price=14000)),
        )

        assert all(isinstance(result, BookingRequest) for result in results)
        offers = (await repository.find(request_id)).offers
        assert sorted(o.driver_id for o in offers) == ["D1", "D2"]

    @pytest.mark.asyncio
    async def test_same_driver_double_submit_lands_twice(
        self, ledger, request_id, offer, repository, interleaved_reads
    ):
        """Двойной клик водителя: проверка дубля read-then-write пропускает оба предложения."""
        await asyncio.gather(
            ledger.append_offer(request_id, offer("D1")),
            ledger.append_offer(request_id, offer("D1", price=14000)),
        )

        offers = (await repository.find(request_id)).offers
        assert [o.driver_id for o in offers] == ["D1", "D1"]

    @pytest.mark.asyncio
    async def test_double_submit_cleaned_by_driver_removal(
        self, ledger, request_id, offer, repository, interleaved_reads
    ):
        await asyncio.gather(
            ledger.append_offer(request_id, offer("D1")),
            ledger.append_offer(request_id, offer("D1", price=14000)),
        )

        assert await ledger.remove_driver_offer(request_id, "D1") == 2
        assert (await repository.find(request_id)).offers == []
