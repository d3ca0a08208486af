# carhire/services/booking_api/schemas.py
"""
Схемы ответов Booking API.
"""

from __future__ import annotations

from pydantic import Field

from carhire.core.requests.models import BookingRequest, CamelModel


class CreatedResponse(CamelModel):
    """Ответ на создание заявки."""
    id: str = Field(..., description="ID заявки")


class FeedStatsResponse(CamelModel):
    """Сводка по ленте."""
    active: int = 0
    urgent: int = 0
    starting_today: int = Field(0, description="Заявки с startDate = сегодня (UTC)")


class RequestListResponse(CamelModel):
    """Снимок ленты заявок."""
    requests: list[BookingRequest] = Field(default_factory=list)
    unfiltered_count: int = Field(0, description="Число активных заявок без фильтра nearby")
    stats: FeedStatsResponse = Field(default_factory=FeedStatsResponse)


class ViewsResponse(CamelModel):
    """Новое значение счётчика просмотров."""
    views: int


class ErrorResponse(CamelModel):
    """Тело ответа с ошибкой."""
    error: str = Field(..., description="Код ошибки")
    detail: str = Field("", description="Сообщение")


class HealthStatus(CamelModel):
    """Статус здоровья сервиса."""
    status: str = "healthy"
    service: str = "booking_api"
    version: str = "1.0.0"
    store: str = "memory"
    store_healthy: bool = True
    event_bus: str = Field("disabled", description="disabled, connected или disconnected")
