# carhire/services/booking_api/app.py
"""
FastAPI приложение Booking API.

HTTP endpoints (/api/v1):
- /requests — создание, лента, редактирование, удаление, предложения
- /notifications — счётчики уведомлений

WebSocket endpoints:
- /ws/requests — живая лента заявок
- /ws/notifications — живые счётчики
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from carhire.common.constants import TypeMsg
from carhire.common.exceptions import (
    BookingError,
    DuplicateOfferError,
    IndexOutOfRangeError,
    NotFoundError,
    NotOwnerError,
    QuotaExceededError,
    RequestClosedError,
    SelfOfferError,
    StoreUnavailableError,
    ValidationError,
)
from carhire.common.logger import log_error, log_info, setup_logging
from carhire.config import settings
from carhire.core.requests.repository import RequestRepository
from carhire.core.requests.service import BookingRequestService
from carhire.infra import create_store
from carhire.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from carhire.infra.redis_client import close_redis, init_redis
from carhire.services.booking_api.dependencies import get_booking_service
from carhire.services.booking_api.routes import notifications_router, router, ws_router
from carhire.services.booking_api.schemas import HealthStatus


ERROR_STATUS: dict[type[BookingError], int] = {
    ValidationError: 422,
    QuotaExceededError: 409,
    DuplicateOfferError: 409,
    SelfOfferError: 403,
    NotOwnerError: 403,
    NotFoundError: 404,
    IndexOutOfRangeError: 409,
    RequestClosedError: 409,
    StoreUnavailableError: 503,
}


def status_for(error: BookingError) -> int:
    """HTTP статус доменной ошибки."""
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 400


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        await log_error(f"{request.method} {request.url.path}: {exc.code} {exc.message}")
    else:
        await log_info(f"{request.method} {request.url.path}: {exc.code} {exc.message}", type_msg=TypeMsg.WARNING)
    return JSONResponse(status_code=status, content={"error": exc.code, "detail": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content={"error": ValidationError.code, "detail": details},
    )


def build_service() -> BookingRequestService:
    """Собирает сервис заявок по конфигурации."""
    store = create_store()
    event_bus = get_event_bus() if settings.rabbitmq.RABBITMQ_ENABLED else None
    return BookingRequestService(RequestRepository(store), event_bus=event_bus)


def create_app(service: BookingRequestService | None = None) -> FastAPI:
    """
    Создаёт приложение.

    Args:
        service: Готовый сервис заявок (тесты); иначе собирается в lifespan
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging()
        owns_infra = service is None

        if owns_infra:
            if settings.store.STORE_BACKEND == "redis":
                await init_redis()
            await init_event_bus()
            app.state.booking_service = build_service()
        else:
            app.state.booking_service = service

        await log_info(
            f"Booking API запущен (store={settings.store.STORE_BACKEND})",
            type_msg=TypeMsg.INFO,
        )
        yield

        if owns_infra:
            await close_event_bus()
            if settings.store.STORE_BACKEND == "redis":
                await close_redis()
        await log_info("Booking API остановлен", type_msg=TypeMsg.INFO)

    app = FastAPI(
        title="Booking API",
        description="Заявки клиентов на аренду автомобилей и предложения водителей.",
        version=settings.system.VERSION,
        lifespan=lifespan,
    )

    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(router, prefix="/api/v1")
    app.include_router(notifications_router, prefix="/api/v1")
    app.include_router(ws_router)

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check(
        booking_service: BookingRequestService = Depends(get_booking_service),
    ) -> HealthStatus:
        """Проверка здоровья сервиса: хранилище и шина событий."""
        store_ok = await booking_service.store_healthy()
        return HealthStatus(
            status="healthy" if store_ok else "degraded",
            version=settings.system.VERSION,
            store=settings.store.STORE_BACKEND,
            store_healthy=store_ok,
            event_bus=await booking_service.event_bus_state(),
        )

    return app


app = create_app()
