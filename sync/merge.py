"""Merge policies applied when a shard write hits a newer remote revision.

union: keep every local record (local wins on identity clash), then append
remote records the local side has neither seen nor deleted.

last_write_wins: resubmit the local records unchanged; the concurrent
writer's content is overwritten.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from sync.serializer import Record, record_key

MergeFn = Callable[[list[Record], list[Record], set[str]], list[Record]]


def union_merge(local: list[Record], remote: list[Record], removed: Iterable[str] = ()) -> list[Record]:
    removed = set(removed)
    seen = {record_key(r) for r in local}
    merged = list(local)
    for record in remote:
        key = record_key(record)
        if key in seen or key in removed:
            continue
        seen.add(key)
        merged.append(record)
    return merged


def last_write_wins(local: list[Record], remote: list[Record], removed: Iterable[str] = ()) -> list[Record]:
    return list(local)


MERGE_POLICIES: dict[str, MergeFn] = {
    "union": union_merge,
    "last_write_wins": last_write_wins,
}


def get_merge_policy(name: str) -> MergeFn:
    try:
        return MERGE_POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown merge policy: {name}. Available: {', '.join(MERGE_POLICIES)}") from None
