"""Deterministic per-invoice receiving address allocation.

Derives a fresh EVM address for every invoice from the station's BIP-39
mnemonic along m/44'/60'/0'/0/{index}, where the index comes from a durable
counter. The counter is persisted before the in-memory index advances, so a
crash or failed write can never lead to the same address being handed out
twice.

Based on eth-account HD wallet support:
https://eth-account.readthedocs.io/en/stable/eth_account.html#eth_account.account.Account.from_mnemonic
"""

import asyncio
import logging

from eth_account import Account
from eth_utils import ValidationError
from pydantic import BaseModel

from services.allocation.store import CounterStore, JsonFileCounterStore
from services.shared.config import Settings
from services.shared.errors import ConfigurationError, PersistenceFailureError

logger = logging.getLogger(__name__)

Account.enable_unaudited_hdwallet_features()


class Allocation(BaseModel):
    """A receiving address and the derivation parameters that produced it."""

    address: str
    index: int
    derivation_path: str


class KeyDerivationAllocator:
    """Allocates a unique receiving address per call.

    The read-derive-persist-advance sequence is serialized with an
    asyncio.Lock; it is the only critical section around the counter.
    """

    def __init__(
        self,
        mnemonic: str,
        store: CounterStore,
        start_index: int = 0,
        path_template: str = "m/44'/60'/0'/0/{index}",
    ) -> None:
        """Initialize the allocator and validate the master secret.

        Args:
            mnemonic: BIP-39 master mnemonic
            store: Durable store for the next derivation index
            start_index: Index to use when the store is empty
            path_template: HD path with an {index} placeholder for the leaf

        Raises:
            ConfigurationError: If the mnemonic or path template is missing or malformed
        """
        if not mnemonic or not mnemonic.strip():
            raise ConfigurationError("Master mnemonic is not configured")
        if "{index}" not in path_template:
            raise ConfigurationError(f"Derivation path template lacks {{index}}: {path_template}")

        self._mnemonic = mnemonic.strip()
        self._path_template = path_template
        self._store = store
        self._lock = asyncio.Lock()

        # Derive once so a bad mnemonic fails at startup, not on the first request
        try:
            self._derive(start_index)
        except (ValidationError, ValueError) as e:
            raise ConfigurationError(f"Master mnemonic is malformed: {e}") from None

        try:
            stored = store.load()
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        self._next_index = stored if stored is not None else start_index
        logger.info(f"Address allocator ready at index {self._next_index}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyDerivationAllocator":
        return cls(
            mnemonic=settings.station_mnemonic.get_secret_value(),
            store=JsonFileCounterStore(settings.allocation_state_path),
            start_index=settings.derivation_start,
            path_template=settings.derivation_path_template,
        )

    @property
    def next_index(self) -> int:
        """Index the next allocation will use."""
        return self._next_index

    def derivation_path(self, index: int) -> str:
        return self._path_template.format(index=index)

    def _derive(self, index: int) -> str:
        account = Account.from_mnemonic(self._mnemonic, account_path=self.derivation_path(index))
        return str(account.address)

    async def allocate(self) -> Allocation:
        """Derive the next receiving address and durably advance the counter.

        Returns:
            Allocation with checksummed address, index and derivation path

        Raises:
            PersistenceFailureError: If the counter could not be persisted; the
                in-memory index is left unchanged and no address is returned
        """
        async with self._lock:
            index = self._next_index
            path = self.derivation_path(index)
            address = await asyncio.to_thread(self._derive, index)

            try:
                await asyncio.to_thread(self._store.save, index + 1)
            except OSError as e:
                logger.error(f"Failed to persist allocation counter at index {index}: {e}")
                raise PersistenceFailureError("Could not persist address allocation") from e

            self._next_index = index + 1

        logger.info(f"Allocated address {address} at {path}")
        return Allocation(address=address, index=index, derivation_path=path)
