"""Abstract chain reader and receipt models.

The verifier only needs two observations from a node: its chain id and a
transaction receipt. Keeping them behind an interface lets tests substitute
a fake node and lets the transport change without touching matching logic.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field


class ChainReadError(Exception):
    """The node could not be reached or returned a JSON-RPC error."""


class LogEntry(BaseModel):
    """A single event log emitted by a transaction.

    Attributes:
        address: Contract that emitted the log
        topics: Indexed topics as 0x-prefixed hex strings
        data: Non-indexed data as a 0x-prefixed hex string
    """

    address: str
    topics: list[str] = Field(default_factory=list)
    data: str = "0x"


class TransactionReceipt(BaseModel):
    """Subset of an Ethereum transaction receipt used for verification.

    Attributes:
        transaction_hash: Hash of the transaction
        status: Execution status (1 success, 0 failure/revert)
        block_number: Block the transaction was included in
        logs: Event logs emitted during execution
    """

    transaction_hash: str
    status: int
    block_number: int | None = None
    logs: list[LogEntry] = Field(default_factory=list)


class ChainReader(ABC):
    """Read-only access to a blockchain node."""

    @abstractmethod
    async def get_chain_id(self) -> int:
        """Return the chain id reported by the node.

        Raises:
            ChainReadError: If the node cannot be queried
        """
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        """Return the receipt for a transaction, or None if not yet observed.

        Raises:
            ChainReadError: If the node cannot be queried
        """
        pass

    @abstractmethod
    async def is_available(self, expected_chain_id: int) -> bool:
        """Check that the node answers and reports the expected chain."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Reader identifier for logging/metrics."""
        pass
