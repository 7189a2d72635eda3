"""Domain layer with business entities and rules."""

from . import errors, geo, models

__all__ = ["errors", "geo", "models"]
