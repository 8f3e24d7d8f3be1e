# Overview: Typed domain errors shared by services and routes.

"""
Commerce error taxonomy.

Every service failure is raised as a subclass of CommerceError. Each class
carries a machine-readable ``code`` and the HTTP status the API layer answers
with, so routes catch by type and never parse messages.

    CommerceError
    +-- NotFound
    |   +-- OrderNotFound
    +-- ValidationError
    |   +-- InvalidAmount
    |   +-- InvalidDecision
    +-- InsufficientStock
    +-- CreditLimitExceeded
    +-- AmountExceedsRemaining
    +-- AlreadyProcessed
    +-- InvalidTransition
    +-- Unauthorized
    |   +-- OrderOwnershipMismatch
    +-- PaymentVerificationFailed
    +-- PersistenceConflict
"""

from __future__ import annotations


class CommerceError(Exception):
    code = "commerce_error"
    status_code = 400

    def __init__(self, message: str | None = None, **details):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class NotFound(CommerceError):
    code = "not_found"
    status_code = 404


class OrderNotFound(NotFound):
    code = "order_not_found"


class ValidationError(CommerceError):
    """Malformed or missing required input."""
    code = "validation_error"
    status_code = 400


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class InvalidDecision(ValidationError):
    code = "invalid_decision"


class InsufficientStock(CommerceError):
    code = "insufficient_stock"
    status_code = 409


class CreditLimitExceeded(CommerceError):
    code = "credit_limit_exceeded"
    status_code = 400


class AmountExceedsRemaining(CommerceError):
    code = "amount_exceeds_remaining"
    status_code = 400


class AlreadyProcessed(CommerceError):
    code = "already_processed"
    status_code = 409


class InvalidTransition(CommerceError):
    code = "invalid_transition"
    status_code = 409


class Unauthorized(CommerceError):
    code = "unauthorized"
    status_code = 403


class OrderOwnershipMismatch(Unauthorized):
    code = "order_ownership_mismatch"


class PaymentVerificationFailed(CommerceError):
    code = "payment_verification_failed"
    status_code = 402


class PersistenceConflict(CommerceError):
    """Lost a concurrent-update race; the caller may retry."""
    code = "persistence_conflict"
    status_code = 409
