# app/exceptions.py
"""
Exception types shared by the ingestion and notification paths.

PingRejected is expected and frequent: it never escapes LocationProcessor.
DeliveryError only ever changes an event's delivery_status.
"""

from enum import Enum


class RejectionReason(str, Enum):
    MISSING_IDENTITY = "missing_identity"
    INVALID_COORDINATES = "invalid_coordinates"
    MISSING_TIMESTAMP = "missing_timestamp"
    FUTURE_TIMESTAMP = "future_timestamp"
    STALE_TIMESTAMP = "stale_timestamp"
    UNKNOWN_IDENTITY = "unknown_identity"
    SYSTEM_PAUSED = "system_paused"
    OUTSIDE_WORK_HOURS = "outside_work_hours"
    LOW_ACCURACY = "low_accuracy"
    OUT_OF_ORDER = "out_of_order"
    PROCESSING_TIMEOUT = "processing_timeout"

    @property
    def message(self) -> str:
        return REJECTION_MESSAGES[self]


REJECTION_MESSAGES = {
    RejectionReason.MISSING_IDENTITY: "missing tracker id",
    RejectionReason.INVALID_COORDINATES: "missing or invalid coordinates",
    RejectionReason.MISSING_TIMESTAMP: "missing timestamp",
    RejectionReason.FUTURE_TIMESTAMP: "timestamp is in the future",
    RejectionReason.STALE_TIMESTAMP: "timestamp is too old",
    RejectionReason.UNKNOWN_IDENTITY: "unknown or inactive tracker",
    RejectionReason.SYSTEM_PAUSED: "tracking is paused",
    RejectionReason.OUTSIDE_WORK_HOURS: "outside working hours",
    RejectionReason.LOW_ACCURACY: "GPS accuracy too low",
    RejectionReason.OUT_OF_ORDER: "older than the last processed ping",
    RejectionReason.PROCESSING_TIMEOUT: "processing timed out",
}


class PingRejected(Exception):
    """A location ping failed validation. Carries the first failing reason."""

    def __init__(self, reason: RejectionReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class DeliveryError(Exception):
    """The messaging channel could not deliver a notification."""


class ConfigError(ValueError):
    """An admin tried to store a config value the store cannot parse."""
