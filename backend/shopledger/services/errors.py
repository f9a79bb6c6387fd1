# Overview: Typed failures raised by the ledger services and mapped to HTTP at the route boundary.

"""
Ledger error taxonomy

Every service failure is one of these classes. Routes catch LedgerError and
return `to_dict()` with `http_status`; nothing inside the services uses them
for normal control flow.

- NotFound: missing entity, or an entity owned by another shop
- InvalidInput: empty item list, non-positive quantity/amount, missing field
- InsufficientStock: POS floor check (never raised by offline sync)
- ExceedsBalance / AlreadySettled: payment ledger
- InvalidTransition: purchase order lifecycle violation
- RemainingExceeded: receiving more than is left on a purchase order line
- Conflict: serialization failure that survived the bounded retry
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger failures."""
    code = "LEDGER_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        if self.retryable:
            body["retryable"] = True
        return body


class NotFound(LedgerError):
    code = "NOT_FOUND"
    http_status = 404


class InvalidInput(LedgerError):
    code = "INVALID_INPUT"
    http_status = 400


class InsufficientStock(LedgerError):
    code = "INSUFFICIENT_STOCK"
    http_status = 422


class ExceedsBalance(LedgerError):
    code = "EXCEEDS_BALANCE"
    http_status = 422


class AlreadySettled(LedgerError):
    code = "ALREADY_SETTLED"
    http_status = 422


class InvalidTransition(LedgerError):
    code = "INVALID_TRANSITION"
    http_status = 409


class RemainingExceeded(InvalidTransition):
    code = "REMAINING_EXCEEDED"


class Conflict(LedgerError):
    code = "CONFLICT"
    http_status = 409
    retryable = True
