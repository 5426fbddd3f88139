"""ERC-20 Transfer event decoding.

Transfer(address indexed from, address indexed to, uint256 value) puts both
addresses in topics[1..2] and the value in the 32-byte data word. Logs that
do not have that shape decode to None instead of raising.
"""

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from pydantic import BaseModel
from web3 import Web3

TRANSFER_TOPIC = Web3.to_hex(Web3.keccak(text="Transfer(address,address,uint256)"))


class TransferEvent(BaseModel):
    """Decoded ERC-20 transfer with checksummed addresses."""

    contract: str
    sender: str
    recipient: str
    value: int


def canonical_address(address: str) -> str | None:
    """Return the EIP-55 checksum form of an address, or None if it is not one."""
    if not isinstance(address, str) or not Web3.is_address(address):
        return None
    return Web3.to_checksum_address(address)


def _topic_to_address(topic: str) -> str:
    raw = Web3.to_bytes(hexstr=topic)
    if len(raw) != 32 or any(raw[:12]):
        raise ValueError(f"Not an address topic: {topic}")
    return Web3.to_checksum_address(raw[12:])


def decode_transfer(address: str, topics: list[str], data: str) -> TransferEvent | None:
    """Decode a log as an ERC-20 Transfer.

    Args:
        address: Emitting contract address
        topics: Log topics as hex strings
        data: Log data as a hex string

    Returns:
        TransferEvent, or None if the log is not a well-formed Transfer
    """
    if len(topics) != 3 or topics[0].lower() != TRANSFER_TOPIC:
        return None

    contract = canonical_address(address)
    if contract is None:
        return None

    try:
        sender = _topic_to_address(topics[1])
        recipient = _topic_to_address(topics[2])
        (value,) = abi_decode(["uint256"], Web3.to_bytes(hexstr=data))
    except (ValueError, DecodingError):
        return None

    return TransferEvent(contract=contract, sender=sender, recipient=recipient, value=value)
