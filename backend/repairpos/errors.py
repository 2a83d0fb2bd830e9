# Overview: Error taxonomy shared by the monetary engine and the inventory ledger.

"""
Every failure raised by this package is an AppError subclass carrying:
- status_code: the HTTP-class status a controller should answer with
- identifier: a stable machine-readable code (returned as "errorCode")
- details: optional structured context for the caller

None of these are retried by the services themselves. Retry policy, if any,
belongs to the caller (see services.concurrency.run_with_retry for the
database-level exception).
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for domain failures returned to the immediate caller."""

    status_code = 500
    default_identifier = "app_error"

    def __init__(self, message: str, *, identifier: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.reason = message
        self.identifier = identifier or self.default_identifier
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {
            "error": True,
            "reason": self.reason,
            "errorCode": self.identifier,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigurationError(AppError):
    """500-level: master data is missing. Operator action required, never retried."""

    status_code = 500
    default_identifier = "configuration_error"


class ValidationError(AppError):
    """400-level input problem the caller can correct."""

    status_code = 400
    default_identifier = "validation_error"


class StateError(AppError):
    """409-level: the request conflicts with the current state of a record."""

    status_code = 409
    default_identifier = "state_error"


class NotFoundError(AppError):
    """404-level: a referenced id does not resolve."""

    status_code = 404
    default_identifier = "not_found"

    @classmethod
    def for_entity(cls, entity: str, entity_id) -> "NotFoundError":
        return cls(
            f"{entity} {entity_id} not found",
            identifier=f"{entity.lower().replace(' ', '_')}_not_found",
            details={"id": entity_id},
        )
