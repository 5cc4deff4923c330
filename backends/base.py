"""Storage contract every benchmarked backend implements."""

from __future__ import annotations

import argparse
from abc import ABC, abstractmethod

from dbtest.schema import Record


class BackendError(Exception):
    """A backend call failed (transport, malformed response, or server error)."""


class StorageBackend(ABC):
    """Abstract base for all storage backends.

    Only ``write`` and ``read`` are timed by the driver. Both must be safe to
    call concurrently from many threads for different keys.

    ``setup`` and ``close`` run outside the timed phases. ``register_args``
    and ``from_args`` let each backend expose its own CLI options.
    """

    name: str = ""

    @abstractmethod
    def write(self, record: Record) -> None:
        """Durably persist *record*. Raises on failure."""

    @abstractmethod
    def read(self, key: int) -> Record | None:
        """Return the record stored under *key*. Raises on failure."""

    def setup(self) -> None:
        """Prepare the backend (schema creation, truncation). Not timed."""

    def close(self) -> None:
        """Release connections."""

    # ---- CLI wiring -------------------------------------------------------

    @classmethod
    def register_args(cls, parser: argparse.ArgumentParser) -> None:
        """Add backend-specific CLI arguments to *parser*."""

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> StorageBackend:
        """Construct the backend from parsed CLI arguments."""
        return cls()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
