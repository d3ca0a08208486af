# carhire/core/matching/location.py
"""
Грубое текстовое сопоставление местоположения водителя и заявки.
Никакой геодезии: только вхождение подстрок и справочник штат → города.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, TypeVar


# Справочник штатов Нигерии и их основных городов
NIGERIA_LOCATIONS: dict[str, tuple[str, ...]] = {
    "Lagos": ("Lagos", "Ikeja", "Victoria Island", "Lekki", "Ajah", "Surulere"),
    "Abuja": ("Abuja", "Garki", "Wuse", "Maitama", "Asokoro"),
    "Ogun": ("Abeokuta", "Sagamu", "Ijebu-Ode", "Ifo", "Mowe"),
    "Rivers": ("Port Harcourt", "Obio-Akpor", "Eleme"),
    "Oyo": ("Ibadan", "Ogbomoso", "Iseyin"),
    "Kano": ("Kano", "Nassarawa", "Fagge"),
    "Delta": ("Asaba", "Warri", "Sapele"),
    "Enugu": ("Enugu", "Nsukka", "Agbani"),
    "Kaduna": ("Kaduna", "Zaria"),
    "Edo": ("Benin", "Auchi"),
    "Imo": ("Owerri", "Orlu"),
    "Akwa Ibom": ("Uyo", "Eket", "Ikot Ekpene"),
    "Cross River": ("Calabar", "Ogoja"),
    "Anambra": ("Awka", "Onitsha", "Nnewi"),
    "Plateau": ("Jos", "Bukuru"),
}


class LocationFields(Protocol):
    """Поля местоположения заявки, нужные для сопоставления."""
    location: str
    state: Optional[str]
    city: Optional[str]


R = TypeVar("R", bound=LocationFields)


@dataclass(frozen=True)
class DriverLocation:
    """Заявленное местоположение водителя."""
    state: str = ""
    city: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.state and not self.city


class LocationMatcher:
    """Чистые функции сопоставления местоположений."""

    def __init__(self, gazetteer: dict[str, tuple[str, ...]] | None = None) -> None:
        self._gazetteer = gazetteer if gazetteer is not None else NIGERIA_LOCATIONS

    def matches(self, request: LocationFields, driver_state: str | None, driver_city: str | None) -> bool:
        """
        Подходит ли заявка водителю.

        Регистронезависимое вхождение подстрок в фиксированном порядке,
        побеждает первое совпадение:
        1. штат водителя в поле state заявки
        2. город водителя в поле city заявки
        3. штат водителя в свободном тексте location
        4. город водителя в location
        5. для штатов справочника, входящих в штат водителя: любой их город
           в location или city заявки

        Args:
            request: Заявка (или любой объект с location/state/city)
            driver_state: Штат водителя
            driver_city: Город водителя

        Returns:
            True, если заявка считается «рядом»
        """
        driver_state = (driver_state or "").strip().lower()
        driver_city = (driver_city or "").strip().lower()
        if not driver_state and not driver_city:
            return False

        request_state = (request.state or "").lower()
        request_city = (request.city or "").lower()
        request_location = (request.location or "").lower()

        if driver_state and driver_state in request_state:
            return True
        if driver_city and driver_city in request_city:
            return True
        if driver_state and driver_state in request_location:
            return True
        if driver_city and driver_city in request_location:
            return True

        if driver_state:
            for state, cities in self._gazetteer.items():
                if state.lower() not in driver_state:
                    continue
                for city in cities:
                    city = city.lower()
                    if city in request_location or city in request_city:
                        return True

        return False

    def filter_nearby(self, requests: Iterable[R], driver: DriverLocation) -> list[R]:
        """Оставляет заявки, подходящие водителю, сохраняя порядок."""
        return [r for r in requests if self.matches(r, driver.state, driver.city)]

    def resolve_driver_location(
        self,
        profile_location: str | None,
        state: str | None = None,
        city: str | None = None,
    ) -> DriverLocation:
        """
        Местоположение водителя для фильтра «рядом».

        Структурные state/city берутся как есть. Если чего-то не хватает,
        штат и город выводятся из свободного текста профиля по справочнику.
        """
        state = (state or "").strip()
        city = (city or "").strip()
        if state and city:
            return DriverLocation(state=state, city=city)

        text = (profile_location or "").lower()
        if text:
            for gazetteer_state, cities in self._gazetteer.items():
                if gazetteer_state.lower() not in text:
                    continue
                state = gazetteer_state
                for gazetteer_city in cities:
                    if gazetteer_city.lower() in text:
                        city = gazetteer_city

        return DriverLocation(state=state, city=city)


_matcher = LocationMatcher()


def matches(request: LocationFields, driver_state: str | None, driver_city: str | None) -> bool:
    """Сопоставление со справочником по умолчанию."""
    return _matcher.matches(request, driver_state, driver_city)
