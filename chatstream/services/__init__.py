"""
Service Layer

Service classes for configuration and provider availability.
"""

from chatstream.services.config_service import ConfigService
from chatstream.services.availability_service import (
    AvailabilityResolver,
    ConfigAvailabilityResolver,
    StaticAvailabilityResolver,
)

__all__ = [
    "ConfigService",
    "AvailabilityResolver",
    "ConfigAvailabilityResolver",
    "StaticAvailabilityResolver",
]
