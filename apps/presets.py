"""Per-app hooks for the bundled collections (calorie / todo / notes).

Paths, debounce windows and credential namespaces live in
config/defaults/gitshelf.json; this module holds the code-level hooks.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from storage.content_store import ContentStore
from sync.collection import DateShardedCollection
from sync.coordinator import SyncCoordinator
from sync.serializer import Record
from sync.session import SessionContext


def normalize_todo(record: Record) -> Record:
    # Older todo files predate these fields.
    return {"important": False, "description": "", **record}


def mark_published(record: Record) -> Record:
    record["_published"] = True
    return record


@dataclass(frozen=True)
class AppPreset:
    name: str
    description: str
    normalize: Callable[[Record], Record] | None = None


PRESETS: dict[str, AppPreset] = {
    "calorie": AppPreset("calorie", "Calorie tracker, one JSON file per day", normalize=mark_published),
    "todo": AppPreset("todo", "Todo list, single todos.json", normalize=normalize_todo),
    "notes": AppPreset("notes", "Markdown notes index"),
}


def open_collection(
    session: SessionContext,
    store: ContentStore,
    name: str,
) -> tuple[DateShardedCollection, SyncCoordinator]:
    """Build a collection and its coordinator; unknown names get no hooks."""
    preset = PRESETS.get(name)
    collection = DateShardedCollection(
        session,
        store,
        name,
        normalize=preset.normalize if preset else None,
    )
    return collection, SyncCoordinator(session, collection)
