# carhire/core/notifications/__init__.py
"""
Счётчики уведомлений водителей и клиентов.
"""

from carhire.core.notifications.aggregator import NotificationAggregator

__all__ = [
    "NotificationAggregator",
]
