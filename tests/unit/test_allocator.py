"""Unit tests for KeyDerivationAllocator and the counter store."""

import asyncio
import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from services.allocation.allocator import KeyDerivationAllocator
from services.allocation.store import CounterStore, JsonFileCounterStore
from services.shared.config import Settings
from services.shared.errors import ConfigurationError, PersistenceFailureError
from tests.conftest import ACCOUNT_0, ACCOUNT_1, ACCOUNT_2, TEST_MNEMONIC


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "station_state.json"


@pytest.fixture
def allocator(state_path: Path) -> KeyDerivationAllocator:
    return KeyDerivationAllocator(TEST_MNEMONIC, JsonFileCounterStore(state_path))


class TestJsonFileCounterStore:
    """Test the persisted counter record."""

    def test_load_missing_file_returns_none(self, state_path: Path) -> None:
        assert JsonFileCounterStore(state_path).load() is None

    def test_save_then_load(self, state_path: Path) -> None:
        store = JsonFileCounterStore(state_path)
        store.save(7)

        assert store.load() == 7
        assert json.loads(state_path.read_text()) == {"nextIndex": 7}

    def test_save_leaves_no_temp_files(self, state_path: Path) -> None:
        store = JsonFileCounterStore(state_path)
        store.save(1)
        store.save(2)

        assert [p.name for p in state_path.parent.iterdir()] == [state_path.name]

    def test_load_corrupt_file_raises(self, state_path: Path) -> None:
        state_path.write_text("{not json")

        with pytest.raises(ValueError):
            JsonFileCounterStore(state_path).load()

    def test_save_retries_transient_os_errors(self, state_path: Path) -> None:
        store = JsonFileCounterStore(state_path)
        real_replace = os.replace
        calls = {"n": 0}

        def flaky_replace(src: str, dst: Path) -> None:
            calls["n"] += 1
            if calls["n"] == 1:
                raise OSError("disk busy")
            real_replace(src, dst)

        with patch("services.allocation.store.os.replace", side_effect=flaky_replace):
            store.save(3)

        assert calls["n"] == 2
        assert store.load() == 3


class TestAllocatorStartup:
    """Test master secret validation and counter loading."""

    def test_missing_mnemonic_is_fatal(self, state_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            KeyDerivationAllocator("", JsonFileCounterStore(state_path))

    def test_malformed_mnemonic_is_fatal(self, state_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            KeyDerivationAllocator("not a real mnemonic phrase", JsonFileCounterStore(state_path))

    def test_template_without_index_is_fatal(self, state_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            KeyDerivationAllocator(
                TEST_MNEMONIC, JsonFileCounterStore(state_path), path_template="m/44'/60'/0'/0/0"
            )

    def test_defaults_to_start_index_without_state(self, state_path: Path) -> None:
        allocator = KeyDerivationAllocator(
            TEST_MNEMONIC, JsonFileCounterStore(state_path), start_index=5
        )

        assert allocator.next_index == 5

    def test_resumes_from_persisted_state(self, state_path: Path) -> None:
        state_path.write_text(json.dumps({"nextIndex": 42}))

        allocator = KeyDerivationAllocator(TEST_MNEMONIC, JsonFileCounterStore(state_path))

        assert allocator.next_index == 42

    def test_corrupt_state_is_fatal(self, state_path: Path) -> None:
        state_path.write_text(json.dumps({"wrong": 1}))

        with pytest.raises(ConfigurationError):
            KeyDerivationAllocator(TEST_MNEMONIC, JsonFileCounterStore(state_path))

    def test_from_settings(self, settings: Settings) -> None:
        allocator = KeyDerivationAllocator.from_settings(settings)

        assert allocator.next_index == settings.derivation_start


class TestAllocate:
    """Test address allocation."""

    @pytest.mark.asyncio
    async def test_derives_standard_ethereum_path(
        self, allocator: KeyDerivationAllocator
    ) -> None:
        allocation = await allocator.allocate()

        assert allocation.index == 0
        assert allocation.derivation_path == "m/44'/60'/0'/0/0"
        assert allocation.address == ACCOUNT_0

    @pytest.mark.asyncio
    async def test_sequential_allocations_strictly_increase(
        self, allocator: KeyDerivationAllocator, state_path: Path
    ) -> None:
        allocations = [await allocator.allocate() for _ in range(3)]

        assert [a.index for a in allocations] == [0, 1, 2]
        assert [a.address for a in allocations] == [ACCOUNT_0, ACCOUNT_1, ACCOUNT_2]
        assert json.loads(state_path.read_text()) == {"nextIndex": 3}

    @pytest.mark.asyncio
    async def test_restart_never_reuses_addresses(self, state_path: Path) -> None:
        first = KeyDerivationAllocator(TEST_MNEMONIC, JsonFileCounterStore(state_path))
        before = [await first.allocate() for _ in range(2)]

        restarted = KeyDerivationAllocator(TEST_MNEMONIC, JsonFileCounterStore(state_path))
        after = [await restarted.allocate() for _ in range(2)]

        indices = [a.index for a in before + after]
        addresses = [a.address for a in before + after]
        assert indices == [0, 1, 2, 3]
        assert len(set(addresses)) == 4

    @pytest.mark.asyncio
    async def test_concurrent_allocations_are_unique(
        self, allocator: KeyDerivationAllocator
    ) -> None:
        allocations = await asyncio.gather(*(allocator.allocate() for _ in range(8)))

        assert sorted(a.index for a in allocations) == list(range(8))
        assert len({a.address for a in allocations}) == 8
        assert allocator.next_index == 8

    @pytest.mark.asyncio
    async def test_persistence_failure_does_not_advance(self) -> None:
        store = MagicMock(spec=CounterStore)
        store.load.return_value = 4
        store.save.side_effect = OSError("read-only file system")
        allocator = KeyDerivationAllocator(TEST_MNEMONIC, store)

        with pytest.raises(PersistenceFailureError):
            await allocator.allocate()

        assert allocator.next_index == 4

        # Once the store recovers the same index is handed out, never skipped or reused
        store.save.side_effect = None
        allocation = await allocator.allocate()
        assert allocation.index == 4
        store.save.assert_called_with(5)
