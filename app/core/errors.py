from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """
    Base for errors the service surfaces to callers.

    Each subclass carries a stable machine code and the HTTP status the API
    layer renders it with (see app.main exception handlers).
    """

    code = "domain_error"
    http_status = 400

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFound(DomainError):
    code = "not_found"
    http_status = 404


class InvalidTransition(DomainError):
    code = "invalid_transition"
    http_status = 409

    def __init__(self, from_status: str, to_status: str, message: str | None = None, *, expected: str | None = None):
        detail = {"from": from_status, "to": to_status}
        if expected is not None:
            # set when a concurrent write moved the row off the status this writer read
            detail["expected"] = expected
        super().__init__(message or f"Invalid transition: {from_status} -> {to_status}", details=[detail])
        self.from_status = from_status
        self.to_status = to_status
        self.expected = expected


class TerminalState(InvalidTransition):
    code = "terminal_state"

    def __init__(self, from_status: str, to_status: str):
        super().__init__(from_status, to_status, f"Delivery is already {from_status}")


class ValidationError(DomainError):
    code = "validation_error"
    http_status = 422

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message, details=[{"field": field}] if field else None)
        self.field = field


class DeleteRejected(DomainError):
    code = "delete_rejected"
    http_status = 409


class ExternalServiceDegraded(DomainError):
    # Raised by provider clients; absorbed by the caches, never rendered.
    code = "external_service_degraded"
    http_status = 502

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class PersistenceError(DomainError):
    code = "persistence_error"
    http_status = 503
