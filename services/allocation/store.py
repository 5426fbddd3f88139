"""Durable storage for the address allocation counter.

The persisted record is a single JSON object: {"nextIndex": <int>}.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = logging.getLogger(__name__)


class CounterStore(ABC):
    """Single-value store for the next derivation index."""

    @abstractmethod
    def load(self) -> int | None:
        """Return the persisted next index, or None if nothing is stored yet."""
        pass

    @abstractmethod
    def save(self, next_index: int) -> None:
        """Durably replace the persisted next index.

        Raises:
            OSError: If the write could not be made durable
        """
        pass


class JsonFileCounterStore(CounterStore):
    """Counter persisted to a JSON file.

    Writes go to a temp file in the same directory, are fsynced, then renamed
    over the target, so readers see either the old or the new record.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> int | None:
        if not self.path.exists():
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return int(data["nextIndex"])
        except (ValueError, KeyError, TypeError) as e:
            raise ValueError(f"Corrupt allocation state in {self.path}: {e}") from e

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=0.05, max=1),
        reraise=True,
    )
    def save(self, next_index: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                json.dump({"nextIndex": next_index}, tmp, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug(f"Persisted nextIndex={next_index} to {self.path}")
