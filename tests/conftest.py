# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("STORE_BACKEND", "memory")

from carhire.core.notifications.aggregator import NotificationAggregator
from carhire.core.requests.lifecycle import RequestLifecycleManager
from carhire.core.requests.offers import OfferLedger
from carhire.core.requests.repository import RequestRepository
from carhire.core.requests.service import BookingRequestService
from carhire.infra.document_store import InMemoryDocumentStore
from carhire.infra.event_bus import EventBus


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "PROJECT_NAME": "carhire_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "DEBUG",
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "colored",
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_NAMESPACE": "carhire_test",
        "REDIS_MAX_CONNECTIONS": 10,
        "RABBITMQ_ENABLED": False,
        "RABBITMQ_HOST": "localhost",
        "RABBITMQ_PORT": 5672,
        "RABBITMQ_USER": "guest",
        "RABBITMQ_PASSWORD": "guest",
        "RABBITMQ_VHOST": "/",
        "RABBITMQ_EXCHANGE": "carhire.test",
        "STORE_BACKEND": "memory",
        "STORE_COLLECTION": "booking_requests_test",
        "STORE_OPERATION_TIMEOUT": 2.0,
        "STORE_RETRY_ATTEMPTS": 2,
        "STORE_RETRY_DELAY": 0.01,
        "MAX_ACTIVE_REQUESTS": 3,
        "REQUEST_TTL_DAYS": 7,
        "NOTIFICATION_CAP": 99,
        "NOTIFICATION_DEBOUNCE_SECONDS": 0,
        "API_HOST": "127.0.0.1",
        "API_PORT": 8095,
    }


# =============================================================================
# ВРЕМЯ
# =============================================================================

class FakeClock:
    """Управляемые часы (UTC)."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    """Часы, стартующие 2026-03-02 09:00 UTC."""
    return FakeClock()


# =============================================================================
# ДОМЕН
# =============================================================================

@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Пустое хранилище в памяти."""
    return InMemoryDocumentStore(collection="booking_requests_test")


@pytest.fixture
def repository(store: InMemoryDocumentStore, clock: FakeClock) -> RequestRepository:
    return RequestRepository(store, clock=clock, ttl_days=7)


@pytest.fixture
def lifecycle(repository: RequestRepository) -> RequestLifecycleManager:
    return RequestLifecycleManager(repository, max_active=3, ttl_days=7)


@pytest.fixture
def ledger(repository: RequestRepository, lifecycle: RequestLifecycleManager) -> OfferLedger:
    return OfferLedger(repository, lifecycle)


@pytest.fixture
def aggregator(repository: RequestRepository, lifecycle: RequestLifecycleManager) -> NotificationAggregator:
    """Агрегатор без debounce."""
    return NotificationAggregator(repository, lifecycle, cap=99, debounce_seconds=0)


@pytest.fixture
def mock_event_bus() -> MagicMock:
    """Мок шины событий."""
    bus = MagicMock(spec=EventBus)
    bus.publish = AsyncMock()
    bus.health_check = AsyncMock(return_value=True)
    return bus


@pytest.fixture
def service(
    repository: RequestRepository,
    lifecycle: RequestLifecycleManager,
    aggregator: NotificationAggregator,
    mock_event_bus: MagicMock,
) -> BookingRequestService:
    return BookingRequestService(
        repository,
        event_bus=mock_event_bus,
        lifecycle=lifecycle,
        aggregator=aggregator,
    )


# =============================================================================
# ДАННЫЕ
# =============================================================================

@pytest.fixture
def request_factory() -> Callable[..., dict[str, Any]]:
    """Фабрика полей заявки (camelCase, как приходит от клиента)."""
    def make(**overrides: Any) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "userId": "U1",
            "userName": "Ada Obi",
            "userEmail": "ada@example.com",
            "userPhone": "+2348000000001",
            "userCity": "Lagos",
            "carType": "Sedan (Toyota Corolla, Honda Civic)",
            "startDate": "2026-03-05",
            "endDate": "2026-03-06",
            "budget": 25000,
            "location": "Lagos, Victoria Island",
            "passengers": "1-4",
            "tripType": "Airport",
            "description": "Pickup at the Eko Hotel",
            "negotiable": True,
            "urgent": False,
            "isSameCity": True,
        }
        fields.update(overrides)
        return fields

    return make


@pytest.fixture
def offer_factory() -> Callable[..., dict[str, Any]]:
    """Фабрика полей предложения водителя."""
    def make(**overrides: Any) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "driverName": "Tunde Bello",
            "driverPhone": "+2348000000002",
            "carMake": "Toyota Camry",
            "hasAC": True,
            "price": 15000,
            "message": "Available all day",
        }
        fields.update(overrides)
        return fields

    return make
