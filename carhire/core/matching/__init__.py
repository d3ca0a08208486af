# carhire/core/matching/__init__.py
"""
Сопоставление заявок с местоположением водителя.
"""

from carhire.core.matching.location import DriverLocation, LocationMatcher, NIGERIA_LOCATIONS

__all__ = [
    "DriverLocation",
    "LocationMatcher",
    "NIGERIA_LOCATIONS",
]
