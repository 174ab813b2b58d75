"""Error taxonomy shared by the engine, the storage adapter and the API.

Every user-visible failure resolves to a status code plus a short message.
Internal detail (tracebacks, driver messages) stays in the logs.
"""

from __future__ import annotations


class SmartLightError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(SmartLightError):
    """Missing or malformed input."""

    status_code = 400


class NotFoundError(SmartLightError):
    status_code = 404


class PersistenceError(SmartLightError):
    """A required store operation failed or timed out; the reconciliation is aborted."""

    status_code = 500


class AuxiliaryWriteFailure(SmartLightError):
    """A log or reading append failed. Observed, never surfaced to callers."""


def normalize_device_id(value: str) -> str:
    device_id = (value or "").strip()
    if not device_id:
        raise ValidationError("deviceId must be non-empty")
    if len(device_id) > 64:
        raise ValidationError("deviceId must be at most 64 characters")
    return device_id
