"""PlanetScale backend -- SQL over the HTTP query endpoint.

Result rows come back column-packed: each row carries a base64 ``values``
blob and a ``lengths`` list giving the byte length of every column in order
(``-1`` for NULL). Column types are taken from ``result.fields``.
"""

from __future__ import annotations

import argparse
import base64
import binascii
import json
from datetime import datetime, timezone

import httpx

from dbtest.config import require_env
from dbtest.schema import Record

from .base import BackendError, StorageBackend

_INT_TYPES = {
    "INT8", "INT16", "INT24", "INT32", "INT64",
    "UINT8", "UINT16", "UINT24", "UINT32", "UINT64", "YEAR",
}
_TEXT_TYPES = {"VARCHAR", "CHAR", "TEXT", "VARBINARY", "BINARY", "BLOB"}
_TIME_TYPES = {"DATETIME", "TIMESTAMP"}

DROP_TABLE = "DROP TABLE IF EXISTS testdata"
CREATE_TABLE = (
    "CREATE TABLE IF NOT EXISTS testdata "
    "(id INT PRIMARY KEY, text VARCHAR(255), timestamp DATETIME)"
)


# ---------------------------------------------------------------------------
# Row decoding
# ---------------------------------------------------------------------------

def convert_value(sql_type: str, raw: str | None):
    """Convert one column value from its textual wire form."""
    if raw is None:
        return None
    if sql_type in _INT_TYPES:
        return int(raw)
    if sql_type in _TEXT_TYPES:
        return raw
    if sql_type in _TIME_TYPES:
        return datetime.fromisoformat(raw).replace(tzinfo=timezone.utc)
    raise BackendError(f"No type found for {sql_type}.")


def parse_rows(result: dict) -> list[dict]:
    """Decode ``result.rows`` into ``{column_name: value}`` dicts."""
    fields = result.get("fields") or []
    rows = result.get("rows") or []

    parsed: list[dict] = []
    for row in rows:
        try:
            decoded = base64.b64decode(row.get("values", ""), validate=True)
            lengths = [int(n) for n in row.get("lengths", [])]
        except (binascii.Error, ValueError) as e:
            raise BackendError(f"Malformed row {row!r}: {e}") from e
        if len(lengths) != len(fields):
            raise BackendError(
                f"Row has {len(lengths)} columns but result has {len(fields)} fields"
            )

        offset = 0
        values: dict = {}
        for column, length in zip(fields, lengths):
            if length < 0:
                raw = None
            else:
                raw = decoded[offset:offset + length].decode("utf-8")
                offset += length
            try:
                values[column["name"]] = convert_value(column["type"], raw)
            except ValueError as e:
                raise BackendError(f"Cannot decode column {column['name']}: {e}") from e
        parsed.append(values)
    return parsed


def row_to_record(row: dict) -> Record:
    return Record(key=row["id"], text=row["text"], timestamp=row["timestamp"])


def _quote(text: str) -> str:
    return "'" + text.replace("\\", "\\\\").replace("'", "''") + "'"


def _format_timestamp(ts: datetime) -> str:
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts.strftime("%Y-%m-%d %H:%M:%S.%f")


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class PlanetScaleBackend(StorageBackend):
    name = "planetscale"

    def __init__(
        self,
        url: str,
        auth: str,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self._client = httpx.Client(
            headers={
                "Authorization": f"Basic {auth}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def write(self, record: Record) -> None:
        if record.timestamp is None:
            raise BackendError(f"Record {record.key} has no timestamp")
        self.execute(
            "INSERT INTO testdata (id, text, timestamp) VALUES "
            f"({int(record.key)}, {_quote(record.text)}, {_quote(_format_timestamp(record.timestamp))})"
        )

    def read(self, key: int) -> Record | None:
        result = self.execute(f"SELECT id, text, timestamp FROM testdata WHERE id = {int(key)}")
        rows = parse_rows(result)
        if not rows:
            return None
        return row_to_record(rows[0])

    def setup(self) -> None:
        self.execute(DROP_TABLE)
        self.execute(CREATE_TABLE)

    def close(self) -> None:
        self._client.close()

    def execute(self, sql: str) -> dict:
        """Run *sql* and return the ``result`` object of the response."""
        try:
            response = self._client.post(self.url, json={"query": sql, "session": None})
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise BackendError(f"PlanetScale request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise BackendError(f"PlanetScale returned malformed JSON: {e}") from e

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            message = error.get("message", error) if isinstance(error, dict) else error
            raise BackendError(f"PlanetScale error: {message}")
        if not isinstance(body, dict):
            raise BackendError(f"Unexpected response: {body!r}")
        return body.get("result") or {}

    @classmethod
    def register_args(cls, parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--url", default=None,
                            help="HTTP query endpoint (default: $PLANETSCALE_DB_URL)")
        parser.add_argument("--auth", default=None,
                            help="Base64 basic-auth credentials (default: $PLANETSCALE_AUTH)")
        parser.add_argument("--timeout", type=float, default=30.0,
                            help="HTTP timeout in seconds (default: 30)")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> PlanetScaleBackend:
        return cls(
            url=require_env("PLANETSCALE_DB_URL", args.url),
            auth=require_env("PLANETSCALE_AUTH", args.auth),
            timeout=args.timeout,
        )
