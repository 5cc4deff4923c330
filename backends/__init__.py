"""Backend registry -- lazy imports so a missing client library doesn't crash the CLI."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .base import StorageBackend


def get_backends() -> dict[str, type[StorageBackend]]:
    """Return available backend classes, skipping those with missing deps."""
    registry: dict[str, type[StorageBackend]] = {}

    def _try_register(name: str, module: str, cls_name: str) -> None:
        try:
            mod = __import__(module, fromlist=[cls_name])
            registry[name] = getattr(mod, cls_name)
        except ImportError as e:
            # Only skip quietly when an optional client library is missing.
            # Anything else is a real bug and gets reported.
            missing = getattr(e, "name", None)
            # httpx ships with the "http" extra.
            expected_missing = {"httpx"}
            if missing and missing.split(".")[0] in expected_missing:
                pass
            else:
                print(f"Warning: failed to load {name} backend: {e}", file=sys.stderr)

    _try_register("mock", "backends.mock", "MockBackend")
    _try_register("upstash", "backends.upstash", "UpstashBackend")
    _try_register("planetscale", "backends.planetscale", "PlanetScaleBackend")
    _try_register("turso", "backends.turso", "TursoBackend")

    return registry
