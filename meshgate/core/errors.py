# meshgate/core/errors.py
"""
Error taxonomy for the gateway controller

Every failure a caller must react to has its own class. The API layer maps
them to HTTP responses through `error_code` and `status_code`.
"""

from dataclasses import dataclass
from typing import List, Optional


@dataclass
class FieldError:
    """A single field-level validation problem"""
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class GatewayError(Exception):
    """Base class for all controller errors"""

    error_code = "GATEWAY_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class NotFound(GatewayError):
    error_code = "NOT_FOUND"
    status_code = 404


class Immutable(GatewayError):
    """Mutation attempted on the local node"""
    error_code = "IMMUTABLE"
    status_code = 400


class InvalidNode(GatewayError):
    """Operation not applicable to this node (e.g. client config of the local node)"""
    error_code = "INVALID_NODE"
    status_code = 400


class ValidationFailed(GatewayError):
    error_code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, errors: List[FieldError], message: Optional[str] = None):
        self.errors = list(errors)
        if message is None:
            message = "; ".join(f"{e.field}: {e.message}" for e in self.errors) or "Validation failed"
        super().__init__(message, {"errors": [e.to_dict() for e in self.errors]})

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationFailed":
        return cls([FieldError(field, message)])


class AllocationExhausted(GatewayError):
    error_code = "ALLOCATION_EXHAUSTED"
    status_code = 409


class DomainUnavailable(GatewayError):
    error_code = "DOMAIN_UNAVAILABLE"
    status_code = 400


class CommandError(GatewayError):
    """A host command exited non-zero or timed out"""
    error_code = "COMMAND_FAILED"
    status_code = 502

    def __init__(self, cmd: List[str], returncode: int, stderr: str):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"{' '.join(self.cmd)} failed ({returncode}): {stderr.strip()}",
            {"returncode": returncode},
        )


class RouteSyncFailed(GatewayError):
    error_code = "ROUTE_SYNC_FAILED"
    status_code = 502


class ReconciliationFailed(GatewayError):
    """VPN apply or proxy reload failed after the registry was written"""
    error_code = "RECONCILIATION_FAILED"
    status_code = 502
