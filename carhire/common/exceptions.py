# carhire/common/exceptions.py
"""
Исключения домена заявок.

Все ошибки ограничены одной операцией и не фатальны для процесса.
Бизнес-ошибки не ретраятся; ретраятся только транзиентные ошибки хранилища
для идемпотентных операций.
"""


class BookingError(Exception):
    """Базовая ошибка домена."""

    code: str = "booking_error"
    retryable: bool = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code)


class ValidationError(BookingError):
    """Missing or malformed required field."""

    code = "validation_error"

    def __init__(self, message: str = "", errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class QuotaExceededError(BookingError):
    """Active request quota reached."""

    code = "quota_exceeded"


class DuplicateOfferError(BookingError):
    """Driver already has an offer on this request."""

    code = "duplicate_offer"


class SelfOfferError(BookingError):
    """Drivers cannot make offers on their own request."""

    code = "self_offer"


class NotFoundError(BookingError):
    """Request or offer not found."""

    code = "not_found"


class NotOwnerError(BookingError):
    """Only the owner can modify this request."""

    code = "not_owner"


class IndexOutOfRangeError(BookingError):
    """Offer index is out of range."""

    code = "index_out_of_range"


class RequestClosedError(BookingError):
    """Request no longer accepts offers."""

    code = "request_closed"


class StoreUnavailableError(BookingError):
    """Document store is temporarily unavailable."""

    code = "store_unavailable"
    retryable = True
