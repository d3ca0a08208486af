# tests/core/test_location_matcher.py
"""
Тесты для текстового сопоставления местоположений.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import pytest

from carhire.core.matching.location import DriverLocation, LocationMatcher, matches


@dataclass
class Place:
    """Минимальная заявка для сопоставления."""
    location: str
    state: Optional[str] = None
    city: Optional[str] = None


class TestMatches:
    """Тесты для LocationMatcher.matches."""

    @pytest.fixture
    def matcher(self) -> LocationMatcher:
        return LocationMatcher()

    def test_state_in_request_state(self, matcher):
        assert matcher.matches(Place("somewhere", state="Lagos State"), "lagos", None) is True

    def test_city_in_request_city(self, matcher):
        assert matcher.matches(Place("somewhere", city="Ikeja GRA"), None, "Ikeja") is True

    def test_state_in_location_text(self, matcher):
        """Проверяет вхождение штата в свободный текст."""
        assert matcher.matches(Place("Lagos, Victoria Island"), "Lagos", "") is True

    def test_city_in_location_text(self, matcher):
        assert matcher.matches(Place("Garki Area 11"), "", "garki") is True

    def test_gazetteer_city_of_driver_state(self, matcher):
        """Проверяет шаг справочника: город штата водителя в тексте заявки."""
        assert matcher.matches(Place("Lekki Phase 1"), "Lagos", "Ikeja") is True

    def test_gazetteer_city_in_request_city(self, matcher):
        assert matcher.matches(Place("near the market", city="Surulere"), "Lagos", "") is True

    def test_different_state(self, matcher):
        assert matcher.matches(Place("Abuja, Wuse"), "Lagos", "Ikeja") is False

    def test_empty_driver_location(self, matcher):
        """Водитель без местоположения ничего не видит в фильтре «рядом»."""
        assert matcher.matches(Place("Lagos"), "", "") is False
        assert matcher.matches(Place("Lagos"), None, None) is False

    def test_case_insensitive(self, matcher):
        assert matcher.matches(Place("PORT HARCOURT"), "rivers", None) is True

    def test_custom_gazetteer(self):
        matcher = LocationMatcher({"Greater Accra": ("Accra", "Tema")})

        assert matcher.matches(Place("Tema harbour"), "Greater Accra", None) is True
        assert matcher.matches(Place("Ikeja"), "Lagos", None) is False

    def test_module_level_matches(self):
        assert matches(Place("Ibadan ring road"), "Oyo", None) is True


class TestFilterNearby:
    """Тесты для filter_nearby."""

    def test_keeps_order(self):
        places = [Place("Ikeja"), Place("Abuja"), Place("Lekki")]

        result = LocationMatcher().filter_nearby(places, DriverLocation(state="Lagos"))

        assert result == [places[0], places[2]]

    def test_empty_driver(self):
        assert LocationMatcher().filter_nearby([Place("Lagos")], DriverLocation()) == []


class TestResolveDriverLocation:
    """Тесты для resolve_driver_location."""

    @pytest.fixture
    def matcher(self) -> LocationMatcher:
        return LocationMatcher()

    def test_structured_fields_win(self, matcher):
        location = matcher.resolve_driver_location("Abuja", state="Lagos", city="Ikeja")

        assert location == DriverLocation(state="Lagos", city="Ikeja")

    def test_inferred_from_profile_text(self, matcher):
        """Проверяет вывод штата и города из текста профиля."""
        location = matcher.resolve_driver_location("Lagos, Lekki Phase 1")

        assert location.state == "Lagos"
        assert location.city == "Lekki"

    def test_missing_city_filled(self, matcher):
        location = matcher.resolve_driver_location("Wuse 2, Abuja", state="Abuja")

        assert location == DriverLocation(state="Abuja", city="Wuse")

    def test_unknown_text(self, matcher):
        location = matcher.resolve_driver_location("Somewhere far")

        assert location.is_empty is True

    def test_nothing_given(self, matcher):
        assert matcher.resolve_driver_location(None).is_empty is True
