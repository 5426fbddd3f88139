"""Invoice data models.

An invoice is immutable once built; the registry replaces whole records on
status changes.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from services.pricing.policy import to_base_units


class InvoiceStatus(str, Enum):
    """Invoice lifecycle state. PAID and EXPIRED are terminal."""

    PENDING = "PENDING"
    PAID = "PAID"
    EXPIRED = "EXPIRED"


class PurchaseMetadata(BaseModel):
    """Who is buying what, echoed on confirmations and receipts."""

    car_id: str = "car-001"
    station_id: str = "station-777"
    fuel_type: str = "GASOLINE"


class InvoiceTerms(BaseModel):
    """Everything fixed at invoice creation, before identity and lifecycle."""

    model_config = ConfigDict(frozen=True)

    # Commercial terms
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    currency: str = "USD"
    metadata: PurchaseMetadata = Field(default_factory=PurchaseMetadata)

    # Settlement terms
    chain: str
    chain_id: int
    token: str
    token_contract: str
    token_decimals: int
    amount_base_units: int

    # Receiving address (audit only; verification needs just the address)
    pay_to_address: str
    pay_to_index: int
    pay_to_derivation_path: str

    @model_validator(mode="after")
    def _amounts_agree(self) -> "InvoiceTerms":
        expected = to_base_units(self.total, self.token_decimals)
        if self.amount_base_units != expected:
            raise ValueError(
                f"amount_base_units {self.amount_base_units} does not equal "
                f"{self.total} at {self.token_decimals} decimals ({expected})"
            )
        return self


class Invoice(InvoiceTerms):
    """A single payment obligation."""

    invoice_id: str
    status: InvoiceStatus = InvoiceStatus.PENDING
    created_at: datetime
    expires_at: datetime
    tx_hash: str | None = None
    paid_at: datetime | None = None


class PaymentRequired(BaseModel):
    """Machine-readable payment instructions returned with HTTP 402."""

    protocol: str = "x402"
    invoice_id: str
    chain: str
    token: str
    token_contract: str
    decimals: int
    amount_decimal: Decimal
    amount_base_units: str  # string: exceeds JS safe integers for large amounts
    pay_to_address: str
    expires_at: datetime
    instructions: str

    @classmethod
    def for_invoice(cls, invoice: Invoice) -> "PaymentRequired":
        return cls(
            invoice_id=invoice.invoice_id,
            chain=invoice.chain,
            token=invoice.token,
            token_contract=invoice.token_contract,
            decimals=invoice.token_decimals,
            amount_decimal=invoice.total,
            amount_base_units=str(invoice.amount_base_units),
            pay_to_address=invoice.pay_to_address,
            expires_at=invoice.expires_at,
            instructions=(
                f"Send exactly {invoice.total} {invoice.token} on {invoice.chain} "
                f"to {invoice.pay_to_address}. Then retry POST /api/v1/fuel/purchase "
                f"with headers: x-invoice-id and x-tx-hash."
            ),
        )


class Receipt(BaseModel):
    """Proof of a settled purchase."""

    event: str = "RECEIPT_ISSUED"
    invoice_id: str
    car_id: str
    station_id: str
    total: Decimal
    token: str
    tx_hash: str
    issued_at: datetime
