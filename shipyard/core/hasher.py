"""Canonical hashing helpers for content addressing and audit sealing."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes for hashing.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_address(data: bytes) -> str:
    """Return the ``sha256:<hex>`` address of raw bytes."""
    return f"sha256:{sha256_hex(data)}"


def normalize_address(address: str) -> str:
    """Accept ``sha256:<hex>`` or bare hex and return ``sha256:<hex>``."""
    return f"sha256:{address.removeprefix('sha256:')}"


def short(address: str | None, length: int = 12) -> str:
    """Abbreviate a content address for display."""
    if not address:
        return "-"
    return address.removeprefix("sha256:")[:length]


def recipe_hash(steps: list[str], output: str) -> str:
    """SHA-256 of canonical(recipe).  Recorded with every built artifact."""
    return sha256_hex(canonical_json_bytes({"steps": steps, "output": output}))


def compute_record_hash(record: dict[str, Any]) -> str:
    """SHA-256 of an audit record, excluding the ``record_hash`` field itself.

    This is the seal that makes each record tamper-evident.
    """
    d = {k: v for k, v in record.items() if k != "record_hash"}
    return sha256_hex(canonical_json_bytes(d))
