"""Error hierarchy for the payment gateway.

Every error carries a stable code, a category and the HTTP status the API
layer renders it with. Client-facing messages never include internal details.
"""

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""

    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFLICT = "conflict"
    PAYMENT = "payment"
    PERSISTENCE = "persistence"
    CONFIGURATION = "configuration"


class PaygateError(Exception):
    """Base exception for all gateway errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        http_status: int = 500,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.http_status = http_status

    def to_response(self) -> dict[str, Any]:
        """Convert to the standard JSON error envelope."""
        return {
            "ok": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
            },
        }


# ─── Client errors ──────────────────────────────────────────────


class InvalidInputError(PaygateError):
    """Malformed quantity, price or reference. No side effects."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "INVALID_INPUT", ErrorCategory.VALIDATION, 400)


class NotFoundError(PaygateError):
    """Unknown invoice."""

    def __init__(self, invoice_id: str) -> None:
        super().__init__(
            f"Invoice '{invoice_id}' not found",
            "INVOICE_NOT_FOUND",
            ErrorCategory.RESOURCE_NOT_FOUND,
            404,
        )
        self.invoice_id = invoice_id


class InvalidTransitionError(PaygateError):
    """Invoice is not in a state that permits the requested change.

    Always safe to retry by re-reading the invoice.
    """

    def __init__(self, message: str, code: str = "INVALID_TRANSITION") -> None:
        super().__init__(message, code, ErrorCategory.CONFLICT, 409)


class InvoiceNotPaidError(InvalidTransitionError):
    """A receipt was requested for an invoice that is not PAID."""

    def __init__(self, invoice_id: str) -> None:
        super().__init__(f"Invoice '{invoice_id}' is not paid", code="INVOICE_NOT_PAID")
        self.invoice_id = invoice_id


class InvoiceAlreadyPaidError(InvalidTransitionError):
    """A PAID invoice was referenced without the transaction that settled it."""

    def __init__(self, invoice_id: str) -> None:
        super().__init__(
            f"Invoice '{invoice_id}' is already paid; retry with the settling x-tx-hash",
            code="INVOICE_ALREADY_PAID",
        )
        self.invoice_id = invoice_id


# ─── Payment verification ───────────────────────────────────────


class VerificationInconclusiveError(PaygateError):
    """Chain observation has not confirmed payment yet. Retryable."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason, "PAYMENT_NOT_VERIFIED_YET", ErrorCategory.PAYMENT, 402)


class VerificationRejectedError(PaygateError):
    """Transaction reverted or was observed on the wrong network.

    Not retryable with the same transaction reference.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason, "PAYMENT_REJECTED", ErrorCategory.PAYMENT, 402)


# ─── Infrastructure ─────────────────────────────────────────────


class PersistenceFailureError(PaygateError):
    """A durable write failed; no partial state was left behind."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "PERSISTENCE_FAILURE", ErrorCategory.PERSISTENCE, 503)


class ConfigurationError(PaygateError):
    """Startup configuration is missing or malformed. Fatal."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "CONFIGURATION_ERROR", ErrorCategory.CONFIGURATION, 500)
