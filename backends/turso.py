"""Turso (libSQL) backend -- parameterized SQL over the HTTP pipeline API."""

from __future__ import annotations

import argparse
import json
import os
from datetime import datetime, timezone

import httpx

from dbtest.config import require_env
from dbtest.schema import Record

from .base import BackendError, StorageBackend

DROP_TABLE = "DROP TABLE IF EXISTS testdata"
CREATE_TABLE = (
    "CREATE TABLE IF NOT EXISTS testdata "
    "(key INT PRIMARY KEY, text VARCHAR(255), timestamp DATETIME)"
)
INSERT = "INSERT INTO testdata(key, text, timestamp) VALUES (?, ?, ?)"
SELECT = "SELECT key, text, timestamp FROM testdata WHERE key = ?"


def http_url(url: str) -> str:
    """``libsql://`` URLs are served over HTTPS."""
    if url.startswith("libsql://"):
        return "https://" + url[len("libsql://"):]
    return url.rstrip("/")


def encode_arg(value) -> dict:
    if value is None:
        return {"type": "null"}
    if isinstance(value, bool):
        return {"type": "integer", "value": str(int(value))}
    if isinstance(value, int):
        # Integers travel as strings to keep 64-bit precision.
        return {"type": "integer", "value": str(value)}
    if isinstance(value, float):
        return {"type": "float", "value": value}
    if isinstance(value, datetime):
        return {"type": "text", "value": value.isoformat()}
    return {"type": "text", "value": str(value)}


def decode_value(cell: dict):
    kind = cell.get("type")
    if kind == "null":
        return None
    if kind == "integer":
        return int(cell["value"])
    if kind == "float":
        return float(cell["value"])
    if kind == "text":
        return cell["value"]
    raise BackendError(f"Unsupported value type: {kind}")


def _parse_timestamp(value) -> datetime | None:
    if value is None:
        return None
    ts = datetime.fromisoformat(str(value))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class TursoBackend(StorageBackend):
    name = "turso"

    def __init__(
        self,
        url: str,
        auth_token: str | None = None,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = http_url(url)
        headers = {"Content-Type": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self._client = httpx.Client(
            base_url=self.url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def write(self, record: Record) -> None:
        self.execute(INSERT, [record.key, record.text, record.timestamp])

    def read(self, key: int) -> Record | None:
        result = self.execute(SELECT, [key])
        rows = result.get("rows") or []
        if not rows:
            return None
        try:
            found_key, text, timestamp = (decode_value(cell) for cell in rows[0])
            return Record(key=found_key, text=text, timestamp=_parse_timestamp(timestamp))
        except (KeyError, ValueError) as e:
            raise BackendError(f"Malformed row for key {key}: {rows[0]!r}") from e

    def setup(self) -> None:
        self.execute(DROP_TABLE)
        self.execute(CREATE_TABLE)

    def close(self) -> None:
        self._client.close()

    def execute(self, sql: str, args: list | None = None) -> dict:
        """Execute one statement and return its ``result`` object."""
        stmt: dict = {"sql": sql}
        if args:
            stmt["args"] = [encode_arg(a) for a in args]
        payload = {"requests": [{"type": "execute", "stmt": stmt}, {"type": "close"}]}

        try:
            response = self._client.post("/v2/pipeline", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise BackendError(f"Turso request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise BackendError(f"Turso returned malformed JSON: {e}") from e

        results = body.get("results") if isinstance(body, dict) else None
        if not results:
            raise BackendError(f"Unexpected pipeline response: {body!r}")
        first = results[0]
        if first.get("type") == "error":
            error = first.get("error") or {}
            raise BackendError(f"Turso error executing {sql!r}: {error.get('message', error)}")
        try:
            return first["response"]["result"]
        except (KeyError, TypeError) as e:
            raise BackendError(f"Unexpected execute result: {first!r}") from e

    @classmethod
    def register_args(cls, parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--url", default=None,
                            help="Database URL, libsql:// or https:// (default: $TURSO_URL)")
        parser.add_argument("--auth-token", default=None,
                            help="Database token (default: $TURSO_AUTH_TOKEN)")
        parser.add_argument("--timeout", type=float, default=30.0,
                            help="HTTP timeout in seconds (default: 30)")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> TursoBackend:
        return cls(
            url=require_env("TURSO_URL", args.url),
            auth_token=args.auth_token or os.environ.get("TURSO_AUTH_TOKEN"),
            timeout=args.timeout,
        )
