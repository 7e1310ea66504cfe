"""NoteStore - Markdown note bodies plus a JSON index collection.

Saving uploads ``<data_dir>/<file>`` first, then upserts the note's metadata
into the index and flushes it. A failed body upload leaves the index alone.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from posixpath import dirname

from storage.content_store import ContentStore
from storage.errors import StoreError
from storage.models import DirectoryListing, FailureReason, FileContent
from sync.collection import WHOLE_SHARD
from sync.coordinator import SyncCoordinator
from sync.session import SessionContext

logger = logging.getLogger(__name__)


class NoteSyncError(StoreError):
    def __init__(self, message: str, reason: FailureReason | None, *, path: str | None = None):
        super().__init__(message, path=path)
        self.reason = reason


@dataclass
class Note:
    id: str
    title: str
    file: str
    folder: str = ""
    created_at: str = ""
    updated_at: str = ""
    content: str = field(default="", repr=False)

    def index_entry(self) -> dict[str, str]:
        entry = asdict(self)
        entry.pop("content")
        return entry


class NoteStore:
    def __init__(self, session: SessionContext, store: ContentStore, sync: SyncCoordinator):
        index = sync.collection
        if index.per_day:
            raise ValueError("note index must be a whole-collection shard")
        self._session = session
        self._store = store
        self._sync = sync
        self.index = index
        self.data_dir = dirname(index.shard_path(WHOLE_SHARD))
        self._revisions: dict[str, str | None] = {}

    def body_path(self, note: Note) -> str:
        return f"{self.data_dir}/{note.file}" if self.data_dir else note.file

    def new_note(self, title: str, folder: str = "", content: str = "") -> Note:
        now = self._session.clock().isoformat()
        note_id = uuid.uuid4().hex[:12]
        return Note(
            id=note_id,
            title=title,
            file=f"{note_id}.md",
            folder=folder,
            created_at=now,
            updated_at=now,
            content=content,
        )

    async def list_notes(self) -> list[Note]:
        records = await self.index.load_all()
        return [
            Note(**{k: str(v) for k, v in r.items() if k in Note.__dataclass_fields__ and k != "content"})
            for r in records
            if r.get("id") and r.get("file")
        ]

    async def read_note(self, note: Note) -> Note:
        path = self.body_path(note)
        result = await self._store.read(path)
        if result is None:
            raise NoteSyncError(f"note body missing: {path}", None, path=path)
        if isinstance(result, DirectoryListing):
            raise NoteSyncError(f"{path} is a directory", None, path=path)
        self._revisions[path] = result.revision
        note.content = result.content.decode("utf-8")
        return note

    async def save_note(self, note: Note) -> Note:
        path = self.body_path(note)
        note.updated_at = self._session.clock().isoformat()

        if path not in self._revisions:
            existing = await self._store.read(path)
            self._revisions[path] = existing.revision if isinstance(existing, FileContent) else None

        result = await self._store.write(
            path,
            note.content.encode("utf-8"),
            self._revisions[path],
            message=f"Save note {note.title}: {note.updated_at}",
        )
        if not result.ok:
            raise NoteSyncError(f"failed to upload {path}: {result.detail or result.reason}", result.reason, path=path)
        self._revisions[path] = result.revision

        shard = self.index.shard(WHOLE_SHARD)
        if shard is None or not shard.loaded:
            await self.index.load_all()
        entry = note.index_entry()
        try:
            await self.index.update(lambda r: r.get("id") == note.id, entry)
        except LookupError:
            await self.index.append(entry)
        await self._flush_index()
        logger.info("Saved note %s (%s)", note.id, path)
        return note

    async def delete_note(self, note: Note) -> None:
        path = self.body_path(note)
        revision = self._revisions.get(path)
        if revision is None:
            existing = await self._store.read(path)
            revision = existing.revision if isinstance(existing, FileContent) else None
        if revision is not None:
            result = await self._store.delete(path, revision, message=f"Delete note {note.title}")
            if not result.ok:
                raise NoteSyncError(f"failed to delete {path}: {result.detail or result.reason}", result.reason, path=path)
        self._revisions.pop(path, None)

        shard = self.index.shard(WHOLE_SHARD)
        if shard is None or not shard.loaded:
            await self.index.load_all()
        try:
            self.index.remove(lambda r: r.get("id") == note.id)
        except LookupError:
            logger.debug("Note %s not in index", note.id)
            return
        await self._flush_index()

    async def _flush_index(self) -> None:
        outcome = await self._sync.save()
        if outcome.in_flight:
            # Another flush was running; ours may have missed the newest edit.
            await self._sync.wait_idle()
            outcome = await self._sync.save()
        if not outcome.ok:
            failed = outcome.failed[0] if outcome.failed else None
            reason = failed.reason if failed else None
            raise NoteSyncError(f"failed to update index: {reason}", reason, path=failed.path if failed else None)
