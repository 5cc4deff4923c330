"""Upstash Redis backend -- records stored as hashes via the REST pipeline API."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from dbtest.config import require_env
from dbtest.schema import Record

from .base import BackendError, StorageBackend


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@dataclass
class Command:
    """A Redis command, serialized as a JSON array ``[action, *args]``."""

    action: str
    args: list[str] = field(default_factory=list)

    @classmethod
    def hset(cls, key: str, mapping: dict[str, str]) -> Command:
        args = [key]
        for name, value in mapping.items():
            args.extend([name, value])
        return cls("HSET", args)

    @classmethod
    def hget(cls, key: str, name: str) -> Command:
        return cls("HGET", [key, name])

    @classmethod
    def custom(cls, action: str, *args: str) -> Command:
        return cls(action, list(args))

    def parts(self) -> list[str]:
        return [self.action, *self.args]

    def __str__(self) -> str:
        return " ".join(self.parts())


def record_key(key: int) -> str:
    return f"testdata:{key}"


def _to_unix_ns(ts: datetime) -> int:
    # Naive timestamps are taken as UTC.
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    delta = ts - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1000


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class UpstashBackend(StorageBackend):
    """Each record is a hash ``testdata:<key>`` with key, text and timestamp
    (unix nanoseconds) fields."""

    name = "upstash"

    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    # ---- Storage contract -------------------------------------------------

    def write(self, record: Record) -> None:
        if record.timestamp is None:
            raise BackendError(f"Record {record.key} has no timestamp")
        self.pipeline(Command.hset(record_key(record.key), {
            "key": str(record.key),
            "text": record.text,
            "timestamp": str(_to_unix_ns(record.timestamp)),
        }))

    def read(self, key: int) -> Record | None:
        lookup = record_key(key)
        results = self.pipeline(
            Command.hget(lookup, "key"),
            Command.hget(lookup, "text"),
            Command.hget(lookup, "timestamp"),
        )
        found_key, text, timestamp = results
        try:
            ns = int(timestamp)
            return Record(
                key=int(found_key),
                text=text,
                timestamp=datetime.fromtimestamp(ns // 1_000_000_000, tz=timezone.utc).replace(
                    microsecond=(ns % 1_000_000_000) // 1000
                ),
            )
        except (TypeError, ValueError) as e:
            raise BackendError(f"Malformed record {lookup}: {results}") from e

    def setup(self) -> None:
        self.pipeline(Command.custom("FLUSHALL"))

    def close(self) -> None:
        self._client.close()

    # ---- Transport --------------------------------------------------------

    def pipeline(self, *commands: Command) -> list:
        """Send *commands* in one pipeline request and return their results."""
        payload = json.dumps([c.parts() for c in commands])
        try:
            response = self._client.post("/pipeline", content=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise BackendError(f"Upstash request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise BackendError(f"Upstash returned malformed JSON: {e}") from e

        if not isinstance(body, list):
            raise BackendError(f"Unexpected pipeline response: {body!r}")
        if len(body) != len(commands):
            raise BackendError(
                f"There should have been {len(commands)} results. Found [{len(body)}]."
            )
        results = []
        for command, entry in zip(commands, body):
            if not isinstance(entry, dict):
                raise BackendError(f"Unexpected pipeline entry: {entry!r}")
            if "error" in entry:
                raise BackendError(f"{command.action} failed: {entry['error']}")
            results.append(entry.get("result"))
        return results

    # ---- CLI wiring -------------------------------------------------------

    @classmethod
    def register_args(cls, parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--url", default=None,
                            help="REST URL (default: $UPSTASH_REDIS_URL)")
        parser.add_argument("--token", default=None,
                            help="REST token (default: $UPSTASH_REDIS_TOKEN)")
        parser.add_argument("--timeout", type=float, default=30.0,
                            help="HTTP timeout in seconds (default: 30)")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> UpstashBackend:
        return cls(
            url=require_env("UPSTASH_REDIS_URL", args.url),
            token=require_env("UPSTASH_REDIS_TOKEN", args.token),
            timeout=args.timeout,
        )
