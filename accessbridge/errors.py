"""Error taxonomy surfaced to callers of the sync engine and issuer.

Every error carries a stable `code` and an HTTP `status_code` so the API
layer can render it without inspecting message text.
"""

from typing import Any


class SyncError(Exception):
    """Base class for caller-facing failures."""

    code = "SYNC_ERROR"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.code, "message": self.message, **self.details}


class ConfigurationError(SyncError):
    """Vendor credentials or endpoint are missing or malformed."""

    code = "CONFIGURATION_ERROR"
    status_code = 500


class ValidationError(SyncError):
    """Malformed or out-of-range input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class DateValidationError(ValidationError):
    """A validity date could not be parsed or the range is unusable."""

    code = "DATE_VALIDATION_ERROR"


class InvalidRange(DateValidationError):
    """Start of a validity window lies after its end."""

    code = "INVALID_RANGE"


class NotFound(SyncError):
    """No active local record for the given key."""

    code = "NOT_FOUND"
    status_code = 404


class NotSynced(SyncError):
    """The local record has no vendor identifier for this operation."""

    code = "NOT_SYNCED"
    status_code = 409


class VendorError(SyncError):
    """The vendor answered with a non-success envelope."""

    code = "VENDOR_ERROR"
    status_code = 502

    def __init__(self, message: str, vendor_code: str | None = None, **details: Any):
        super().__init__(message, vendor_code=vendor_code, **details)
        self.vendor_code = vendor_code


class VendorUnavailable(SyncError):
    """Transport-level failure talking to the vendor (timeout, refused, garbage)."""

    code = "VENDOR_UNAVAILABLE"
    status_code = 503


class StorageConflict(SyncError):
    """Unique-constraint violation while persisting a newly allocated local code.

    Retryable: a new attempt allocates the next free code.
    """

    code = "STORAGE_CONFLICT"
    status_code = 409
    retryable = True


class InternalInconsistency(SyncError):
    """Vendor accepted the person but the local write failed.

    The vendor-side person is orphaned and must be reconciled by an operator;
    an `inconsistency` audit row is written when possible.
    """

    code = "INTERNAL_INCONSISTENCY"
    status_code = 500
