# carhire/services/booking_api/dependencies.py
"""
Зависимости FastAPI для Booking API.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException
from starlette.requests import HTTPConnection

from carhire.core.matching.location import DriverLocation, LocationMatcher
from carhire.core.requests.service import BookingRequestService

_matcher = LocationMatcher()


def get_booking_service(connection: HTTPConnection) -> BookingRequestService:
    """Сервис заявок, созданный в lifespan приложения."""
    service = getattr(connection.app.state, "booking_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Booking service is not initialized")
    return service


def get_user_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> str:
    """ID вызывающего пользователя (доверенный заголовок от шлюза аутентификации)."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


def resolve_driver_location(
    state: Optional[str] = None,
    city: Optional[str] = None,
    location: Optional[str] = None,
) -> DriverLocation:
    """Местоположение водителя из query-параметров (state, city, свободный текст профиля)."""
    return _matcher.resolve_driver_location(location, state=state, city=city)
