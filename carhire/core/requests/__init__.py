# carhire/core/requests/__init__.py
"""
Домен заявок.
Модели, репозиторий, жизненный цикл и предложения водителей.
Сервис заявок экспортируется из carhire.core.
"""

from carhire.core.requests.models import (
    BookingRequest,
    BookingRequestCreateDTO,
    BookingRequestUpdateDTO,
    Offer,
    OfferCreateDTO,
    RequestQuery,
    NotificationCounts,
)
from carhire.core.requests.repository import RequestRepository
from carhire.core.requests.lifecycle import RequestLifecycleManager, RequestStateMachine
from carhire.core.requests.offers import OfferLedger

__all__ = [
    "BookingRequest",
    "BookingRequestCreateDTO",
    "BookingRequestUpdateDTO",
    "Offer",
    "OfferCreateDTO",
    "RequestQuery",
    "NotificationCounts",
    "RequestRepository",
    "RequestLifecycleManager",
    "RequestStateMachine",
    "OfferLedger",
]
