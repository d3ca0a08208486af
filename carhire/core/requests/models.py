# carhire/core/requests/models.py
"""
Модели данных заявок и предложений водителей.

Хранимая форма — JSON с camelCase ключами (model_dump(by_alias=True)).
Необязательные поля — настоящие Optional, а не проверки наличия ключа.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel

from carhire.common.constants import (
    CAR_TYPES,
    PASSENGER_OPTIONS,
    REQUEST_SCHEMA_VERSION,
    TRIP_TYPES,
    OfferStatus,
    RequestStatus,
)


class CamelModel(BaseModel):
    """База моделей с camelCase алиасами."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_document(self) -> dict[str, Any]:
        """Сериализует модель в JSON-совместимый документ хранилища."""
        return self.model_dump(mode="json", by_alias=True)


def _check_choice(value: Optional[str], options: tuple[str, ...], field_name: str) -> Optional[str]:
    if value is not None and value not in options:
        raise ValueError(f"{field_name} must be one of {list(options)}")
    return value


def _check_not_blank(value: Optional[str], field_name: str) -> Optional[str]:
    # Значение хранится как передано, пробелы не обрезаются
    if value is not None and not value.strip():
        raise ValueError(f"{field_name} must not be blank")
    return value


# =============================================================================
# ПРЕДЛОЖЕНИЕ ВОДИТЕЛЯ
# =============================================================================

class OfferCreateDTO(CamelModel):
    """Поля предложения, которые заполняет водитель."""

    driver_name: str = ""
    driver_phone: str = ""
    car_make: str = Field(..., min_length=1, description="Марка/модель автомобиля")
    car_model: Optional[str] = None
    car_year: Optional[str] = None
    car_color: Optional[str] = None
    has_ac: bool = Field(True, alias="hasAC")
    price: int = Field(..., gt=0, description="Цена предложения")
    message: str = ""

    @field_validator("car_make")
    @classmethod
    def check_car_make(cls, v: str) -> str:
        return _check_not_blank(v, "carMake")


class Offer(OfferCreateDTO):
    """Предложение водителя, встроенное в заявку."""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Стабильный id предложения")
    driver_id: str = Field(..., min_length=1, description="ID водителя")
    status: OfferStatus = Field(OfferStatus.PENDING, description="Статус предложения")
    created_at: datetime = Field(..., description="Время подачи")

    @classmethod
    def from_dto(cls, dto: OfferCreateDTO, driver_id: str, created_at: datetime) -> Offer:
        """Собирает предложение из DTO водителя."""
        return cls(driver_id=driver_id, created_at=created_at, **dto.model_dump())


# =============================================================================
# ЗАЯВКА
# =============================================================================

class BookingRequestCreateDTO(CamelModel):
    """DTO для создания заявки."""

    # Владелец
    user_id: str = Field(..., min_length=1, description="ID клиента")
    user_name: str = ""
    user_email: Optional[str] = None
    user_phone: str = ""
    user_city: str = ""

    # Поездка
    car_type: str = Field(..., min_length=1, description="Тип автомобиля")
    start_date: date
    end_date: date
    budget: int = Field(..., gt=0, description="Бюджет")
    location: str = Field(..., min_length=1, description="Место подачи, свободный текст")
    destination: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    is_same_city: bool = True
    passengers: str = "1-4"
    trip_type: str = "Quick Drop"
    description: str = ""
    negotiable: bool = True
    urgent: bool = False

    @field_validator("user_id", "location")
    @classmethod
    def check_not_blank(cls, v: str, info: ValidationInfo) -> str:
        return _check_not_blank(v, to_camel(info.field_name))

    @field_validator("car_type")
    @classmethod
    def check_car_type(cls, v: str) -> str:
        return _check_choice(v, CAR_TYPES, "carType")

    @field_validator("passengers")
    @classmethod
    def check_passengers(cls, v: str) -> str:
        return _check_choice(v, PASSENGER_OPTIONS, "passengers")

    @field_validator("trip_type")
    @classmethod
    def check_trip_type(cls, v: str) -> str:
        return _check_choice(v, TRIP_TYPES, "tripType")

    @model_validator(mode="after")
    def check_trip(self) -> BookingRequestCreateDTO:
        if self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        # Поездка по городу: назначение всегда совпадает с местом подачи
        if self.is_same_city:
            self.destination = self.location
        return self


class BookingRequestUpdateDTO(CamelModel):
    """DTO для редактирования заявки владельцем. Все поля необязательны."""

    car_type: Optional[str] = Field(None, min_length=1)
    budget: Optional[int] = Field(None, gt=0)
    location: Optional[str] = Field(None, min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    passengers: Optional[str] = None
    trip_type: Optional[str] = None
    description: Optional[str] = None
    negotiable: Optional[bool] = None
    urgent: Optional[bool] = None
    is_same_city: Optional[bool] = None
    destination: Optional[str] = None

    @field_validator("location")
    @classmethod
    def check_location(cls, v: Optional[str]) -> Optional[str]:
        return _check_not_blank(v, "location")

    @field_validator("car_type")
    @classmethod
    def check_car_type(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, CAR_TYPES, "carType")

    @field_validator("passengers")
    @classmethod
    def check_passengers(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, PASSENGER_OPTIONS, "passengers")

    @field_validator("trip_type")
    @classmethod
    def check_trip_type(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, TRIP_TYPES, "tripType")

    def to_patch(self) -> dict[str, Any]:
        """Только явно переданные поля, в camelCase."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True, exclude_none=True)


class BookingRequest(BookingRequestCreateDTO):
    """Модель заявки клиента."""

    id: str = Field(..., description="UUID заявки")

    # Жизненный цикл
    status: RequestStatus = Field(RequestStatus.ACTIVE, description="Хранимый статус")
    created_at: datetime = Field(..., description="Время создания")
    updated_at: datetime = Field(..., description="Время последнего изменения")
    expires_at: datetime = Field(..., description="Время истечения, фиксируется при создании")

    # Вовлечённость
    views: int = Field(0, ge=0, description="Счётчик просмотров")
    offers: list[Offer] = Field(default_factory=list, description="Предложения в порядке подачи")

    schema_version: int = Field(REQUEST_SCHEMA_VERSION, description="Версия схемы документа")

    def offer_index(self, driver_id: str) -> Optional[int]:
        """Позиция первого предложения водителя или None."""
        for index, offer in enumerate(self.offers):
            if offer.driver_id == driver_id:
                return index
        return None

    def has_offer_from(self, driver_id: str) -> bool:
        return self.offer_index(driver_id) is not None

    def is_owned_by(self, user_id: str) -> bool:
        return self.user_id == user_id

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> BookingRequest:
        """Восстанавливает заявку из документа хранилища."""
        return cls.model_validate(doc)


# Поля, которые владелец может менять после создания
EDITABLE_FIELDS: frozenset[str] = frozenset(
    BookingRequestUpdateDTO.model_fields[name].alias or name
    for name in BookingRequestUpdateDTO.model_fields
)


# =============================================================================
# ЗАПРОСЫ И СЧЁТЧИКИ
# =============================================================================

class RequestQuery(BaseModel):
    """Конъюнкция фильтров по status, urgent и владельцу."""

    status: Optional[RequestStatus] = None
    urgent: Optional[bool] = None
    owner_id: Optional[str] = None

    def to_filters(self) -> dict[str, Any]:
        """Фильтры равенства в ключах документа."""
        filters: dict[str, Any] = {}
        if self.status is not None:
            filters["status"] = self.status.value
        if self.urgent is not None:
            filters["urgent"] = self.urgent
        if self.owner_id is not None:
            filters["userId"] = self.owner_id
        return filters


class NotificationCounts(CamelModel):
    """Производные счётчики уведомлений."""

    driver_count: int = Field(0, ge=0)
    customer_count: int = Field(0, ge=0)
