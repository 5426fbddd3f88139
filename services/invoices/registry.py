"""In-memory invoice registry.

Sole owner of invoice records and the only place their status changes.
Expiry is evaluated lazily on every read and before every mark-paid attempt;
nothing runs in the background.
"""

import logging
import secrets
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from services.invoices.schema import Invoice, InvoiceStatus, InvoiceTerms
from services.shared.errors import InvalidTransitionError, NotFoundError

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_invoice_id() -> str:
    return f"INV-{secrets.token_hex(6)}"


class InvoiceRegistry:
    """Invoice store with PENDING -> PAID | EXPIRED transitions.

    Every read-modify-write happens under one lock, so concurrent mark_paid
    calls for the same invoice cannot both succeed.
    """

    def __init__(
        self,
        ttl: timedelta,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_invoice_id,
    ) -> None:
        """Initialize registry.

        Args:
            ttl: Time-to-live of a new invoice
            clock: Returns the current UTC time
            id_factory: Generates candidate invoice identifiers
        """
        self.ttl = ttl
        self._clock = clock
        self._id_factory = id_factory
        self._invoices: dict[str, Invoice] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._invoices)

    def create(self, terms: InvoiceTerms) -> Invoice:
        """Store a new PENDING invoice.

        Args:
            terms: Commercial and settlement terms fixed at creation

        Returns:
            The stored invoice
        """
        with self._lock:
            invoice_id = self._id_factory()
            while invoice_id in self._invoices:
                invoice_id = self._id_factory()

            now = self._clock()
            invoice = Invoice(
                **terms.model_dump(),
                invoice_id=invoice_id,
                status=InvoiceStatus.PENDING,
                created_at=now,
                expires_at=now + self.ttl,
            )
            self._invoices[invoice_id] = invoice

        logger.info(
            f"Created invoice {invoice_id} for {invoice.total} {invoice.token} "
            f"to {invoice.pay_to_address}"
        )
        return invoice

    def get(self, invoice_id: str) -> Invoice:
        """Return the invoice after evaluating its expiry.

        Raises:
            NotFoundError: If no such invoice exists
        """
        return self.evaluate_expiry(invoice_id)

    def evaluate_expiry(self, invoice_id: str) -> Invoice:
        """Flip a PENDING invoice to EXPIRED once its expiry has passed.

        Raises:
            NotFoundError: If no such invoice exists
        """
        with self._lock:
            return self._evaluate_expiry_locked(invoice_id)

    def mark_paid(self, invoice_id: str, tx_hash: str) -> Invoice:
        """Transition a PENDING invoice to PAID.

        Args:
            invoice_id: Invoice to settle
            tx_hash: Transaction that paid it

        Returns:
            The PAID invoice

        Raises:
            NotFoundError: If no such invoice exists
            InvalidTransitionError: If the invoice is EXPIRED or already PAID
        """
        with self._lock:
            invoice = self._evaluate_expiry_locked(invoice_id)
            if invoice.status is not InvoiceStatus.PENDING:
                raise InvalidTransitionError(
                    f"Invoice '{invoice_id}' is {invoice.status.value}, cannot mark PAID"
                )

            paid = invoice.model_copy(
                update={
                    "status": InvoiceStatus.PAID,
                    "tx_hash": tx_hash,
                    "paid_at": self._clock(),
                }
            )
            self._invoices[invoice_id] = paid

        logger.info(f"Invoice {invoice_id} PAID by {tx_hash}")
        return paid

    def _evaluate_expiry_locked(self, invoice_id: str) -> Invoice:
        invoice = self._invoices.get(invoice_id)
        if invoice is None:
            raise NotFoundError(invoice_id)

        if invoice.status is InvoiceStatus.PENDING and self._clock() > invoice.expires_at:
            invoice = invoice.model_copy(update={"status": InvoiceStatus.EXPIRED})
            self._invoices[invoice_id] = invoice
            logger.info(f"Invoice {invoice_id} EXPIRED")

        return invoice
