# carhire/core/__init__.py
"""
Доменный слой (Core Domain).
Заявки клиентов, предложения водителей, сопоставление и счётчики.
"""

from carhire.core.requests import BookingRequest, Offer, RequestRepository
from carhire.core.matching import LocationMatcher
from carhire.core.notifications import NotificationAggregator
from carhire.core.requests.service import BookingRequestService

__all__ = [
    "BookingRequest",
    "Offer",
    "RequestRepository",
    "LocationMatcher",
    "NotificationAggregator",
    "BookingRequestService",
]
