"""Payment-required handshake for priced fuel purchases.

Per invoice: NEW -> PENDING (instructions issued) -> PAID | EXPIRED.

- No invoice reference: quote, allocate an address, create a PENDING
  invoice, answer "payment required" with instructions.
- Unknown invoice: NotFoundError.
- EXPIRED invoice: answer "expired" without touching the chain.
- PENDING invoice, no transaction: answer "payment required" again with the
  same instructions (never re-quotes or re-allocates).
- PENDING invoice with a transaction: verify on chain; on match mark PAID
  and grant, otherwise answer "payment required" with the verifier's reason.
- PAID invoice: grant again, but only to a proof carrying the settling
  transaction; anything else is InvoiceAlreadyPaidError.
"""

import logging
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel

from services.allocation.allocator import KeyDerivationAllocator
from services.chain.verifier import ChainPaymentVerifier, VerificationResult
from services.gateway.requests import GateRequest, InvoiceCheck, NewPurchase, PaymentProof
from services.invoices.registry import InvoiceRegistry
from services.invoices.schema import (
    Invoice,
    InvoiceStatus,
    InvoiceTerms,
    PaymentRequired,
    Receipt,
)
from services.pricing.policy import PricingPolicy, to_base_units
from services.shared.config import Settings
from services.shared.errors import (
    InvalidInputError,
    InvalidTransitionError,
    InvoiceAlreadyPaidError,
    InvoiceNotPaidError,
)

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    GRANTED = "GRANTED"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    EXPIRED = "EXPIRED"


class GateOutcome(BaseModel):
    """Result of one purchase request.

    Attributes:
        kind: Granted, payment still required, or invoice expired
        invoice: Invoice the request resolved to
        code: Stable outcome code for clients
        reason: Verifier reason when a proof did not verify
        retryable: Whether the same proof may still verify later
        verification: Raw verifier result when a proof was checked
    """

    kind: OutcomeKind
    invoice: Invoice
    code: str
    reason: str | None = None
    retryable: bool | None = None
    verification: VerificationResult | None = None

    @property
    def payment_required(self) -> PaymentRequired | None:
        if self.kind is not OutcomeKind.PAYMENT_REQUIRED:
            return None
        return PaymentRequired.for_invoice(self.invoice)


class PaymentGateProtocol:
    """Orchestrates pricing, allocation, the registry and the verifier."""

    def __init__(
        self,
        settings: Settings,
        pricing: PricingPolicy,
        allocator: KeyDerivationAllocator,
        registry: InvoiceRegistry,
        verifier: ChainPaymentVerifier,
    ) -> None:
        self.settings = settings
        self.pricing = pricing
        self.allocator = allocator
        self.registry = registry
        self.verifier = verifier

    async def handle(self, request: GateRequest) -> GateOutcome:
        """Advance the handshake for one purchase request.

        Raises:
            InvalidInputError: On invalid quantity or price ceiling
            NotFoundError: If the referenced invoice does not exist
            InvoiceAlreadyPaidError: If a PAID invoice is referenced without its settling
                transaction
            PersistenceFailureError: If address allocation could not be persisted
        """
        if isinstance(request, NewPurchase):
            return await self._create(request)

        invoice = self.registry.get(request.invoice_id)
        if invoice.status is InvoiceStatus.PAID:
            return self._regrant(invoice, request)
        if invoice.status is not InvoiceStatus.PENDING or isinstance(request, InvoiceCheck):
            return self._outcome_for(invoice)

        return await self._settle(invoice, request)

    def describe(self, invoice_id: str) -> tuple[Invoice, PaymentRequired]:
        """Return an invoice (expiry evaluated) with its payment instructions."""
        invoice = self.registry.get(invoice_id)
        return invoice, PaymentRequired.for_invoice(invoice)

    def issue_receipt(self, invoice_id: str) -> Receipt:
        """Issue a receipt for a PAID invoice.

        Raises:
            NotFoundError: If the invoice does not exist
            InvoiceNotPaidError: If the invoice is not PAID
        """
        invoice = self.registry.get(invoice_id)
        if invoice.status is not InvoiceStatus.PAID or invoice.tx_hash is None:
            raise InvoiceNotPaidError(invoice_id)

        return Receipt(
            invoice_id=invoice.invoice_id,
            car_id=invoice.metadata.car_id,
            station_id=invoice.metadata.station_id,
            total=invoice.total,
            token=invoice.token,
            tx_hash=invoice.tx_hash,
            issued_at=datetime.now(UTC),
        )

    async def _create(self, request: NewPurchase) -> GateOutcome:
        quote = self.pricing.quote(request.quantity, request.price_ceiling)
        try:
            amount_base_units = to_base_units(quote.total, self.settings.token_decimals)
        except ValueError as e:
            raise InvalidInputError(str(e)) from None

        allocation = await self.allocator.allocate()
        invoice = self.registry.create(
            InvoiceTerms(
                quantity=request.quantity,
                unit_price=quote.unit_price,
                total=quote.total,
                metadata=request.metadata,
                chain=self.settings.chain,
                chain_id=self.settings.chain_id,
                token=self.settings.token_symbol,
                token_contract=self.settings.token_contract,
                token_decimals=self.settings.token_decimals,
                amount_base_units=amount_base_units,
                pay_to_address=allocation.address,
                pay_to_index=allocation.index,
                pay_to_derivation_path=allocation.derivation_path,
            )
        )
        return self._outcome_for(invoice)

    async def _settle(self, invoice: Invoice, proof: PaymentProof) -> GateOutcome:
        result = await self.verifier.verify(invoice, proof.tx_hash)

        if not result.matched:
            error = result.to_error()
            logger.info(
                f"Proof {proof.tx_hash} for {invoice.invoice_id} not verified: {result.reason}"
            )
            return GateOutcome(
                kind=OutcomeKind.PAYMENT_REQUIRED,
                invoice=invoice,
                code=error.code if error else "PAYMENT_REQUIRED",
                reason=result.reason,
                retryable=result.retryable,
                verification=result,
            )

        try:
            paid = self.registry.mark_paid(invoice.invoice_id, proof.tx_hash)
        except InvalidTransitionError:
            # Another request settled it first, or it expired while we were
            # reading the chain; answer from whatever state won.
            current = self.registry.get(invoice.invoice_id)
            logger.warning(
                f"Invoice {invoice.invoice_id} became {current.status.value} during verification"
            )
            if current.status is InvoiceStatus.PAID:
                return self._regrant(current, proof, verification=result)
            return self._outcome_for(current, verification=result)

        return self._outcome_for(paid, verification=result)

    def _regrant(
        self,
        invoice: Invoice,
        request: InvoiceCheck | PaymentProof,
        verification: VerificationResult | None = None,
    ) -> GateOutcome:
        """Grant a PAID invoice again only against its settling transaction.

        Raises:
            InvoiceAlreadyPaidError: If the request does not carry that transaction
        """
        tx_hash = request.tx_hash if isinstance(request, PaymentProof) else None
        settled_by = (invoice.tx_hash or "").lower()
        if tx_hash is None or tx_hash.lower() != settled_by:
            raise InvoiceAlreadyPaidError(invoice.invoice_id)
        return self._outcome_for(invoice, verification=verification)

    def _outcome_for(
        self, invoice: Invoice, verification: VerificationResult | None = None
    ) -> GateOutcome:
        if invoice.status is InvoiceStatus.PAID:
            return GateOutcome(
                kind=OutcomeKind.GRANTED,
                invoice=invoice,
                code="FUEL_PURCHASE_CONFIRMED",
                verification=verification,
            )
        if invoice.status is InvoiceStatus.EXPIRED:
            return GateOutcome(
                kind=OutcomeKind.EXPIRED,
                invoice=invoice,
                code="INVOICE_EXPIRED",
                reason="invoice expired",
                retryable=False,
                verification=verification,
            )
        return GateOutcome(
            kind=OutcomeKind.PAYMENT_REQUIRED,
            invoice=invoice,
            code="PAYMENT_REQUIRED",
            verification=verification,
        )
