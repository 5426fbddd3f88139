"""Typed purchase requests.

A purchase request is exactly one of:
- NewPurchase: no invoice yet, quote and issue one
- InvoiceCheck: invoice reference only, re-issue instructions
- PaymentProof: invoice reference plus the transaction that paid it
"""

from dataclasses import dataclass, field
from decimal import Decimal

from services.invoices.schema import PurchaseMetadata
from services.shared.errors import InvalidInputError


@dataclass(frozen=True, slots=True)
class NewPurchase:
    quantity: Decimal
    price_ceiling: Decimal
    metadata: PurchaseMetadata = field(default_factory=PurchaseMetadata)


@dataclass(frozen=True, slots=True)
class InvoiceCheck:
    invoice_id: str


@dataclass(frozen=True, slots=True)
class PaymentProof:
    invoice_id: str
    tx_hash: str


GateRequest = NewPurchase | InvoiceCheck | PaymentProof


def build_gate_request(
    quantity: Decimal,
    price_ceiling: Decimal,
    metadata: PurchaseMetadata | None = None,
    invoice_id: str | None = None,
    tx_hash: str | None = None,
) -> GateRequest:
    """Pick the request variant from the optional invoice and transaction references.

    Raises:
        InvalidInputError: If a transaction reference arrives without an invoice reference
    """
    invoice_id = (invoice_id or "").strip() or None
    tx_hash = (tx_hash or "").strip() or None

    if invoice_id is None:
        if tx_hash is not None:
            raise InvalidInputError("Transaction hash supplied without an invoice id")
        return NewPurchase(
            quantity=quantity,
            price_ceiling=price_ceiling,
            metadata=metadata or PurchaseMetadata(),
        )

    if tx_hash is None:
        return InvoiceCheck(invoice_id=invoice_id)

    return PaymentProof(invoice_id=invoice_id, tx_hash=tx_hash)
