"""On-chain payment verification.

Confirms an invoice was paid by reading the settling transaction's receipt
from the node and looking for an ERC-20 Transfer of exactly the invoiced
amount to the invoice's receiving address. Client-supplied proofs are never
trusted beyond the transaction hash used to look the receipt up.

Each call makes one observation of the chain. A result that is not matched
says why; the caller decides whether that reason is worth retrying.
"""

import logging
import re
from enum import Enum

from pydantic import BaseModel

from services.chain.base import ChainReader, ChainReadError
from services.chain.transfer import canonical_address, decode_transfer
from services.invoices.schema import Invoice
from services.shared.errors import (
    InvalidInputError,
    PaygateError,
    VerificationInconclusiveError,
    VerificationRejectedError,
)

logger = logging.getLogger(__name__)

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


class VerificationFailure(str, Enum):
    """Why a transaction did not verify an invoice."""

    INVALID_REFERENCE = "invalid_reference"
    UNPAYABLE_AMOUNT = "unpayable_amount"
    WRONG_NETWORK = "wrong_network"
    NODE_UNAVAILABLE = "node_unavailable"
    RECEIPT_NOT_FOUND = "receipt_not_found"
    TRANSACTION_FAILED = "transaction_failed"
    NO_MATCHING_TRANSFER = "no_matching_transfer"


_REJECTED = {
    VerificationFailure.UNPAYABLE_AMOUNT,
    VerificationFailure.WRONG_NETWORK,
    VerificationFailure.TRANSACTION_FAILED,
}


class VerificationResult(BaseModel):
    """Outcome of one verification attempt.

    Attributes:
        matched: Whether a qualifying transfer was found
        failure: Failure kind when not matched
        reason: Human-readable reason when not matched
    """

    matched: bool
    failure: VerificationFailure | None = None
    reason: str | None = None

    @classmethod
    def ok(cls) -> "VerificationResult":
        return cls(matched=True)

    @classmethod
    def fail(cls, failure: VerificationFailure, reason: str) -> "VerificationResult":
        return cls(matched=False, failure=failure, reason=reason)

    @property
    def retryable(self) -> bool:
        """Whether the same transaction reference may still verify later."""
        return isinstance(self.to_error(), VerificationInconclusiveError)

    def to_error(self) -> PaygateError | None:
        """Classify a failed result into the error taxonomy."""
        if self.matched or self.failure is None:
            return None
        reason = self.reason or self.failure.value
        if self.failure is VerificationFailure.INVALID_REFERENCE:
            return InvalidInputError(reason)
        if self.failure in _REJECTED:
            return VerificationRejectedError(reason)
        return VerificationInconclusiveError(reason)


class ChainPaymentVerifier:
    """Matches a transaction's Transfer logs against an invoice."""

    def __init__(self, reader: ChainReader, expected_chain_id: int) -> None:
        """Initialize verifier.

        Args:
            reader: Node access
            expected_chain_id: Chain id the node must report
        """
        self.reader = reader
        self.expected_chain_id = expected_chain_id

    async def verify(self, invoice: Invoice, tx_hash: str) -> VerificationResult:
        """Check whether tx_hash pays the invoice exactly.

        Args:
            invoice: Invoice carrying token contract, recipient and base-unit amount
            tx_hash: Transaction reference supplied by the client

        Returns:
            VerificationResult, matched or with a failure kind and reason
        """
        if not isinstance(tx_hash, str) or not TX_HASH_PATTERN.match(tx_hash):
            return VerificationResult.fail(
                VerificationFailure.INVALID_REFERENCE, "invalid transaction hash format"
            )

        # Zero-amount invoices never settle
        if invoice.amount_base_units <= 0:
            return VerificationResult.fail(
                VerificationFailure.UNPAYABLE_AMOUNT, "invoice amount must be greater than zero"
            )

        try:
            chain_id = await self.reader.get_chain_id()
            if chain_id != self.expected_chain_id:
                logger.error(
                    f"Node reports chain {chain_id}, expected {self.expected_chain_id}"
                )
                return VerificationResult.fail(
                    VerificationFailure.WRONG_NETWORK,
                    f"wrong network: expected {self.expected_chain_id}, got {chain_id}",
                )

            receipt = await self.reader.get_transaction_receipt(tx_hash)
        except ChainReadError as e:
            logger.warning(f"Chain read failed while verifying {invoice.invoice_id}: {e}")
            return VerificationResult.fail(
                VerificationFailure.NODE_UNAVAILABLE, "chain node unavailable"
            )

        if receipt is None:
            return VerificationResult.fail(
                VerificationFailure.RECEIPT_NOT_FOUND, "transaction not found yet (no receipt)"
            )

        if receipt.status != 1:
            return VerificationResult.fail(
                VerificationFailure.TRANSACTION_FAILED, "transaction failed"
            )

        token_contract = canonical_address(invoice.token_contract)
        expected_to = canonical_address(invoice.pay_to_address)

        for log in receipt.logs:
            if canonical_address(log.address) != token_contract:
                continue

            transfer = decode_transfer(log.address, log.topics, log.data)
            if transfer is None:
                continue

            if transfer.recipient == expected_to and transfer.value == invoice.amount_base_units:
                logger.info(
                    f"Verified {tx_hash} pays invoice {invoice.invoice_id} "
                    f"({transfer.value} base units from {transfer.sender})"
                )
                return VerificationResult.ok()

        return VerificationResult.fail(
            VerificationFailure.NO_MATCHING_TRANSFER,
            "no matching transfer found in receipt logs",
        )
