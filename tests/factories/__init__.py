"""Factories for domain models used in tests."""

from .domain import LocationSampleFactory, TrackingSessionFactory, UserFactory

__all__ = [
    "LocationSampleFactory",
    "TrackingSessionFactory",
    "UserFactory",
]
