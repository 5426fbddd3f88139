"""Shared fixtures for gateway tests."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from services.chain.base import ChainReader, LogEntry, TransactionReceipt
from services.chain.transfer import TRANSFER_TOPIC
from services.invoices.schema import Invoice, InvoiceStatus
from services.shared.config import Settings

# Well-known development mnemonic (Hardhat/Anvil default accounts)
TEST_MNEMONIC = "test test test test test test test test test test test junk"
ACCOUNT_0 = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ACCOUNT_1 = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
ACCOUNT_2 = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"

USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
OTHER_TOKEN = "0x" + "b" * 40
PAY_TO = "0x" + "A" * 40
SENDER = "0x" + "c" * 40
TX_HASH = "0x" + "ab" * 32


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def address_topic(address: str) -> str:
    return "0x" + "00" * 12 + address[2:].lower()


def transfer_log(
    to: str = PAY_TO, value: int = 9_500_000, contract: str = USDC, sender: str = SENDER
) -> LogEntry:
    return LogEntry(
        address=contract.lower(),
        topics=[TRANSFER_TOPIC, address_topic(sender), address_topic(to)],
        data="0x" + f"{value:064x}",
    )


def receipt(logs: list[LogEntry], status: int = 1, tx_hash: str = TX_HASH) -> TransactionReceipt:
    return TransactionReceipt(transaction_hash=tx_hash, status=status, block_number=100, logs=logs)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create test settings with a throwaway state file."""
    return Settings(
        rpc_url="http://localhost:8545",
        station_mnemonic=TEST_MNEMONIC,
        allocation_state_path=str(tmp_path / "station_state.json"),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_invoice(clock: FakeClock) -> Callable[..., Invoice]:
    """Build a PENDING invoice for 9.50 USDC to PAY_TO."""

    def _make(**overrides: object) -> Invoice:
        fields: dict[str, object] = {
            "invoice_id": "INV-000000000001",
            "quantity": Decimal("10"),
            "unit_price": Decimal("0.95"),
            "total": Decimal("9.50"),
            "chain": "eip155:84532",
            "chain_id": 84532,
            "token": "USDC",
            "token_contract": USDC,
            "token_decimals": 6,
            "amount_base_units": 9_500_000,
            "pay_to_address": PAY_TO,
            "pay_to_index": 0,
            "pay_to_derivation_path": "m/44'/60'/0'/0/0",
            "status": InvoiceStatus.PENDING,
            "created_at": clock(),
            "expires_at": clock() + timedelta(seconds=120),
        }
        fields.update(overrides)
        return Invoice(**fields)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def mock_reader() -> AsyncMock:
    """Chain reader on the expected network with no receipts yet."""
    reader = AsyncMock(spec=ChainReader)
    reader.provider_name = "mock"
    reader.get_chain_id.return_value = 84532
    reader.get_transaction_receipt.return_value = None
    reader.is_available.return_value = True
    return reader
