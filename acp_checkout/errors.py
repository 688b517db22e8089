"""
ACP error taxonomy.

Every error a merchant returns to an agent is an ``ACPSellerError`` carrying
the HTTP status and a flat ``{type, code, message, param?}`` body, where
``param`` is a JSONPath to the offending field.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Union

from acp_checkout.models import ACPError


INVALID_REQUEST = "invalid_request"
REQUEST_NOT_IDEMPOTENT = "request_not_idempotent"
PROCESSING_ERROR = "processing_error"
SERVICE_UNAVAILABLE = "service_unavailable"


def json_path(root: str, loc: Iterable[Union[str, int]]) -> str:
    """Render a pydantic error location as a JSONPath below ``root``."""
    path = root
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}"
    return path


class ACPSellerError(Exception):
    """Raise inside the lifecycle to return a structured ACP error."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        code: str,
        message: str,
        param: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = ACPError(type=error_type, code=code, message=message, param=param)
        super().__init__(message)

    @property
    def code(self) -> str:
        return self.body.code

    @property
    def param(self) -> Optional[str]:
        return self.body.param

    @property
    def retryable(self) -> bool:
        """Server-side failures may succeed on a fresh attempt."""
        return self.status_code >= 500

    def to_body(self) -> dict[str, Any]:
        return self.body.model_dump(exclude_none=True)

    @classmethod
    def from_body(cls, status_code: int, body: dict[str, Any]) -> ACPSellerError:
        """Rebuild an error from a stored or received response body."""
        return cls(
            status_code,
            body.get("type", PROCESSING_ERROR),
            body.get("code", PROCESSING_ERROR),
            body.get("message", ""),
            body.get("param"),
        )


class ValidationError(ACPSellerError):
    """Malformed input: bad types, unknown items, dangling references."""

    def __init__(self, message: str, code: str = "invalid", param: Optional[str] = None):
        super().__init__(400, INVALID_REQUEST, code, message, param)


class AuthenticationError(ACPSellerError):
    """Missing or invalid bearer token or request signature."""

    def __init__(self, message: str, code: str = "unauthorized", param: Optional[str] = None):
        super().__init__(401, INVALID_REQUEST, code, message, param)


class NotFoundError(ACPSellerError):
    def __init__(self, message: str, param: Optional[str] = None):
        super().__init__(404, INVALID_REQUEST, "not_found", message, param)


class TerminalStateError(ACPSellerError):
    """Mutation attempted on a completed or canceled session."""

    def __init__(self, message: str):
        super().__init__(405, INVALID_REQUEST, "invalid_state", message, "$.status")


class AuthenticationRequiredError(ACPSellerError):
    """Completion attempted without reporting the required 3DS result."""

    def __init__(
        self,
        message: str = "authentication_result is required to complete this checkout",
    ):
        super().__init__(400, INVALID_REQUEST, "requires_3ds", message, "$.authentication_result")


class IdempotencyConflictError(ACPSellerError):
    def __init__(
        self,
        message: str = "Idempotency key reused with different request parameters",
    ):
        super().__init__(
            409,
            REQUEST_NOT_IDEMPOTENT,
            "idempotency_conflict",
            message,
            "$.headers.Idempotency-Key",
        )


class ProcessingError(ACPSellerError):
    """A downstream collaborator failed; safe to retry."""

    def __init__(self, message: str, code: str = PROCESSING_ERROR):
        super().__init__(500, PROCESSING_ERROR, code, message)


class ServiceUnavailableError(ACPSellerError):
    def __init__(self, message: str, code: str = SERVICE_UNAVAILABLE):
        super().__init__(503, SERVICE_UNAVAILABLE, code, message)
