# app/core/errors.py
from __future__ import annotations


class FuelAppError(Exception):
    """Base class for every error raised by the pricing core."""


class ConfigurationError(FuelAppError):
    """Required configuration (e.g. API credentials) is missing. Never retried."""


class ServiceFormatError(FuelAppError):
    """An upstream payload failed schema validation. Never retried."""

    def __init__(self, service: str, message: str, details=None) -> None:
        super().__init__(f"{service} returned an invalid payload: {message}")
        self.service = service
        self.details = details


class InvalidResponseError(ServiceFormatError):
    pass


class ExternalServiceError(FuelAppError):
    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{service} error: {message}")
        self.service = service
        self.status_code = status_code


class NotFoundError(FuelAppError):
    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class RuleConfigurationError(FuelAppError):
    """An alert rule does not resolve to exactly one search origin."""


class InvalidQueryError(FuelAppError):
    """Search or rule parameters outside their allowed range."""
