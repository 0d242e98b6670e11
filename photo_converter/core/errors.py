"""Error codes and exceptions shared across the converter core."""

from __future__ import annotations

from enum import Enum

__all__ = [
    "ConverterError",
    "EncodeError",
    "ExportFailed",
    "FailureReason",
    "PurchaseFailureReason",
    "Rejection",
    "StoreError",
    "StorefrontError",
    "VerificationFailed",
]


class FailureReason(str, Enum):
    """Reason codes carried by a failed conversion."""

    unsupported_input = "unsupported_input"
    encoding_failed = "encoding_failed"
    unsupported_format = "unsupported_format"
    encode_timeout = "encode_timeout"
    persistence_failed = "persistence_failed"


class Rejection(str, Enum):
    """Why a workflow event was refused without changing state."""

    event_not_allowed = "event_not_allowed"
    invalid_image = "invalid_image"
    invalid_quality = "invalid_quality"
    incomplete_selection = "incomplete_selection"
    encode_in_flight = "encode_in_flight"
    stale_completion = "stale_completion"


class PurchaseFailureReason(str, Enum):
    """Failure codes for ``failed`` purchase outcomes."""

    verification_failed = "verification_failed"
    storefront_error = "storefront_error"
    unknown_product = "unknown_product"
    manager_closed = "manager_closed"


class ConverterError(Exception):
    """Base class for application specific errors."""


class EncodeError(ConverterError):
    """Raised by the image encoder; ``code`` is the failure reason for the session."""

    def __init__(self, code: FailureReason, message: str | None = None) -> None:
        super().__init__(message or code.value)
        self.code = code


class StoreError(ConverterError):
    """Raised when a job record could not be written or read."""


class VerificationFailed(ConverterError):
    """Raised when a transaction fails its authenticity check."""


class StorefrontError(ConverterError):
    """Raised by storefront adapters when the platform call fails."""


class ExportFailed(ConverterError):
    """Raised when converted bytes cannot be written to the export sink."""
