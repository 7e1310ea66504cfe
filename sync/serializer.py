"""Canonical shard serialization and record identity."""

from __future__ import annotations

import json
from typing import Any

from storage.errors import ParseError

Record = dict[str, Any]


def public_fields(record: Record) -> Record:
    """Drop local-only markers (keys starting with ``_``)."""
    return {k: v for k, v in record.items() if not k.startswith("_")}


def dump_records(records: list[Record]) -> bytes:
    """Serialize a complete shard: sorted keys, 2-space indent, trailing newline."""
    text = json.dumps([public_fields(r) for r in records], indent=2, sort_keys=True, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


def load_records(content: bytes, path: str = "") -> list[Record]:
    """Parse a shard document. Empty content is an empty shard."""
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"{path}: not valid UTF-8", path=path) from e
    if not text.strip():
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"{path}: invalid JSON ({e.msg} at line {e.lineno})", path=path) from e
    if not isinstance(data, list):
        raise ParseError(f"{path}: expected a JSON array, got {type(data).__name__}", path=path)
    bad = [i for i, item in enumerate(data) if not isinstance(item, dict)]
    if bad:
        raise ParseError(f"{path}: items {bad[:5]} are not objects", path=path)
    return data


def record_key(record: Record) -> str:
    """Identity used for merging: ``id`` when present, else the canonical content."""
    if record.get("id") is not None:
        return f"id:{record['id']}"
    return "content:" + json.dumps(public_fields(record), sort_keys=True, ensure_ascii=False)
