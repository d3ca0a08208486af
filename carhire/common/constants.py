# carhire/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей."""
    CUSTOMER = "customer"
    DRIVER = "driver"


class RequestStatus(str, Enum):
    """Статусы заявки."""
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"


class OfferStatus(str, Enum):
    """Статусы предложения водителя."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RequestFilter(str, Enum):
    """Фильтры ленты заявок."""
    ALL = "all"
    URGENT = "urgent"
    NEARBY = "nearby"


# Допустимые значения полей формы заявки
TRIP_TYPES: tuple[str, ...] = (
    "Quick Drop",
    "Airport",
    "Wedding/Event",
    "Monthly",
    "Tourism",
    "Custom",
)

PASSENGER_OPTIONS: tuple[str, ...] = ("1-4", "5-7", "8-10", "10+")

CAR_TYPES: tuple[str, ...] = (
    "Sedan (Toyota Corolla, Honda Civic)",
    "Bus",
    "SUV (Toyota RAV4, Honda CR-V)",
    "Minivan (Toyota Sienna, Honda Odyssey)",
    "Keke Napep",
    "Luxury (Mercedes, BMW)",
    "Pickup Truck",
    "Any available car",
)

# Версия схемы документа заявки
REQUEST_SCHEMA_VERSION = 1
