from typing import Optional, Sequence, Tuple


class RetryableException(Exception):
    """Exception for errors that can be retried (storage timeouts, temporary service unavailability)."""

class FatalException(Exception):
    """Exception for non-recoverable errors (malformed input, illegal state changes)."""


class RegistryDomainError(Exception):
    """Base class for all vehicle registry domain errors."""
    status_code = 400
    code = "registry_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class MalformedInput(RegistryDomainError, FatalException):
    """Raised when a raw VIN cannot be normalized into 17 VIN characters."""
    status_code = 422
    code = "malformed_input"

    def __init__(
        self,
        message: str,
        value: str = "",
        offending: Sequence[Tuple[int, str]] = (),
        stripped: Sequence[Tuple[int, str]] = (),
    ):
        super().__init__(message)
        self.value = value
        self.length = len(value)
        self.offending = list(offending)
        # Separators removed during normalization, by position in the raw input
        self.stripped = list(stripped)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["value"] = self.value
        data["length"] = self.length
        data["offending"] = [
            {"position": position, "character": char} for position, char in self.offending
        ]
        data["stripped"] = [
            {"position": position, "character": char} for position, char in self.stripped
        ]
        return data


class StorageUnavailable(RegistryDomainError, RetryableException):
    """Raised when the database rejects or cannot complete a registry transaction."""
    status_code = 503
    code = "storage_unavailable"
    retry_after_seconds = 1


class InvalidStateTransition(RegistryDomainError, FatalException):
    """Raised when a grant is moved to a status its current status does not allow."""
    status_code = 409
    code = "invalid_state_transition"

    def __init__(self, message: str, current: Optional[str] = None, requested: Optional[str] = None):
        super().__init__(message)
        self.current = current
        self.requested = requested


class InvalidGrant(RegistryDomainError, FatalException):
    """Raised when a grant request is structurally invalid (e.g. a tenant sharing with itself)."""
    status_code = 422
    code = "invalid_grant"


class AccessDenied(RegistryDomainError, FatalException):
    """Raised when a tenant acts on a vehicle or grant it has no claim to."""
    status_code = 403
    code = "access_denied"


class VehicleNotFound(RegistryDomainError, FatalException):
    status_code = 404
    code = "vehicle_not_found"


class GrantNotFound(RegistryDomainError, FatalException):
    status_code = 404
    code = "grant_not_found"


class MileageRegression(RegistryDomainError, FatalException):
    """Raised when an odometer update is lower than the recorded mileage."""
    status_code = 422
    code = "mileage_regression"
