"""
DateShardedCollection - one ordered record set stored as N remote shards.

Two layouts:
- per_day: ``<dir>/YYYY-MM-DD.json``, one shard per calendar day
- whole:   a single fixed file holding the whole collection

Each Shard keeps its records and the RevisionTag they were read/written at on
the same object; the two are only ever replaced together.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from storage.content_store import ContentStore
from storage.errors import ParseError, StoreError
from storage.models import DirectoryListing, FailureReason, FileContent
from sync.merge import get_merge_policy
from sync.serializer import Record, dump_records, load_records, record_key
from sync.session import SessionContext

logger = logging.getLogger(__name__)

WHOLE_SHARD = "all"
DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DATE_FILE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})\.json$")

Target = int | Callable[[Record], bool]


@dataclass
class Shard:
    key: str
    path: str
    records: list[Record] = field(default_factory=list)
    revision: str | None = None
    pending: bool = False
    loaded: bool = False
    generation: int = 0
    removed: set[str] = field(default_factory=set)

    def replace(self, records: list[Record], revision: str | None) -> None:
        self.records = records
        self.revision = revision
        self.loaded = True

    def touch(self) -> None:
        self.generation += 1
        self.pending = True


@dataclass(frozen=True)
class FlushResult:
    shard_key: str
    path: str
    ok: bool
    revision: str | None = None
    reason: FailureReason | None = None
    detail: str = ""


class DateShardedCollection:
    def __init__(
        self,
        session: SessionContext,
        store: ContentStore,
        name: str,
        *,
        normalize: Callable[[Record], Record] | None = None,
    ):
        self.name = name
        self.config = session.settings.collection(name)
        self._session = session
        self._store = store
        self._normalize = normalize
        self._merge = get_merge_policy(self.config.merge_policy)
        self._shards: dict[str, Shard] = {}
        self._listeners: list[Callable[[str], Any]] = []
        self._loading: asyncio.Future | None = None
        if self.config.persist_local:
            self._restore_snapshots()

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def per_day(self) -> bool:
        return self.config.mode == "per_day"

    def shard_path(self, key: str) -> str:
        if self.per_day:
            return f"{self.config.full_path}/{key}.json"
        return self.config.full_path

    def shard_key_for(self, record: Record) -> str:
        """Owning shard: the record's date, else its timestamp's local date, else today."""
        if not self.per_day:
            return WHOLE_SHARD
        return _record_day(record) or self._session.today()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def records(self) -> list[Record]:
        """All records in ascending shard order, insertion order within a shard."""
        out: list[Record] = []
        for key in sorted(self._shards):
            out.extend(self._shards[key].records)
        return out

    @property
    def pending_keys(self) -> list[str]:
        return sorted(k for k, s in self._shards.items() if s.pending)

    @property
    def is_pending(self) -> bool:
        return any(s.pending for s in self._shards.values())

    def shard(self, key: str) -> Shard | None:
        return self._shards.get(key)

    def on_change(self, listener: Callable[[str], Any]) -> None:
        """Register a callback invoked with the shard key after every local mutation."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def load_all(self) -> list[Record]:
        # Concurrent callers share one in-flight load.
        if self._loading is None:
            self._loading = asyncio.ensure_future(self._load_all())
        loading = self._loading
        try:
            return await loading
        finally:
            if self._loading is loading:
                self._loading = None

    async def _load_all(self) -> list[Record]:
        if self.per_day:
            await self._load_directory()
        else:
            result = await self._store.read(self.shard_path(WHOLE_SHARD))
            self._apply_remote(WHOLE_SHARD, result)
        records = self.records
        logger.info("Loaded %s: %d records in %d shards", self.name, len(records), len(self._shards))
        return records

    async def _load_directory(self) -> None:
        directory = self.config.full_path
        listing = await self._store.read(directory)
        if listing is None:
            logger.info("Collection %s: %s not found, starting empty", self.name, directory)
            keys: list[str] = []
        elif isinstance(listing, FileContent):
            raise StoreError(f"{directory} is a file, expected a directory", path=directory)
        else:
            keys = sorted(m.group(1) for e in listing.files() if (m := DATE_FILE_RE.match(e.name)))

        # @@@stale-shards - days deleted remotely disappear locally unless they hold unsaved edits.
        for key in list(self._shards):
            if key not in keys and not self._shards[key].pending:
                del self._shards[key]

        semaphore = asyncio.Semaphore(self.config.max_parallel_reads)

        async def fetch(key: str):
            async with semaphore:
                return key, await self._store.read(self.shard_path(key))

        for key, result in await asyncio.gather(*(fetch(k) for k in keys)):
            self._apply_remote(key, result)

    async def _ensure_shard(self, key: str) -> Shard:
        shard = self._shards.get(key)
        if shard is not None and shard.loaded:
            return shard
        result = await self._store.read(self.shard_path(key))
        self._apply_remote(key, result)
        return self._shards[key]

    def _apply_remote(self, key: str, result: FileContent | DirectoryListing | None) -> None:
        shard = self._shards.setdefault(key, Shard(key=key, path=self.shard_path(key)))
        if shard.pending:
            # Never clobber unflushed local edits with a reload.
            logger.debug("Collection %s: keeping pending shard %s over remote copy", self.name, key)
            return
        if result is None:
            shard.replace([], None)
            return
        if isinstance(result, DirectoryListing):
            logger.warning("Collection %s: %s is a directory, treating shard as empty", self.name, shard.path)
            shard.replace([], None)
            return
        try:
            records = load_records(result.content, shard.path)
        except ParseError as e:
            logger.warning("Collection %s: %s, treating shard as empty", self.name, e)
            records = []
        if self._normalize:
            records = [self._normalize(r) for r in records]
        # Keep the revision even for an unparseable shard so the next write is still a valid swap.
        shard.replace(records, result.revision)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def append(self, record: Record) -> str:
        """Append to the owning shard (loaded first if needed). Returns the shard key."""
        key = self.shard_key_for(record)
        shard = await self._ensure_shard(key)
        shard.records.append(record)
        self._mutated(shard)
        return key

    def remove(self, target: Target) -> Record:
        """Remove by global index or by the first record matching a predicate."""
        key, index = self._resolve(target)
        shard = self._shards[key]
        record = shard.records.pop(index)
        shard.removed.add(record_key(record))
        self._mutated(shard)
        return record

    async def update(self, target: Target, changes: dict[str, Any]) -> Record:
        """Apply field changes; a record whose day changes moves to its new shard."""
        key, index = self._resolve(target)
        shard = self._shards[key]
        record = shard.records[index]
        new_key = self.shard_key_for({**record, **changes})
        if new_key == key:
            if record.get("id") is None:
                # Content-keyed records change identity; the old version must not come back on merge.
                shard.removed.add(record_key(record))
            record.update(changes)
            self._mutated(shard)
            return record

        dest = await self._ensure_shard(new_key)
        self._move(shard, dest, record, changes)
        return record

    async def reshard(self) -> int:
        """Move every record whose date no longer matches its shard. Returns the number moved."""
        if not self.per_day:
            return 0
        await self.load_all()
        misplaced = [
            (key, record)
            for key in sorted(self._shards)
            for record in self._shards[key].records
            if _record_day(record) not in (None, key)
        ]
        for key, record in misplaced:
            dest = await self._ensure_shard(_record_day(record))
            self._move(self._shards[key], dest, record)
        if misplaced:
            logger.info("Collection %s: moved %d records to their day shards", self.name, len(misplaced))
        return len(misplaced)

    def _move(self, source: Shard, dest: Shard, record: Record, changes: dict[str, Any] | None = None) -> None:
        # Located by identity: the source may have changed while the destination loaded.
        index = next((i for i, r in enumerate(source.records) if r is record), None)
        if index is None:
            raise LookupError(f"record no longer in shard {source.key} of {self.name}")
        # @@@move-tombstone - the old day file must not merge the record back in.
        source.removed.add(record_key(record))
        del source.records[index]
        if changes:
            record.update(changes)
        dest.records.append(record)
        self._mutated(source)
        self._mutated(dest)
        logger.debug("Collection %s: moved record from %s to %s", self.name, source.key, dest.key)

    def locate(self, index: int) -> tuple[str, int]:
        """Translate a global index into (shard_key, local_index)."""
        if index < 0:
            raise IndexError(f"negative index not supported: {index}")
        offset = index
        for key in sorted(self._shards):
            size = len(self._shards[key].records)
            if offset < size:
                return key, offset
            offset -= size
        raise IndexError(f"record index out of range: {index}")

    def _resolve(self, target: Target) -> tuple[str, int]:
        if isinstance(target, int):
            return self.locate(target)
        for key in sorted(self._shards):
            for i, record in enumerate(self._shards[key].records):
                if target(record):
                    return key, i
        raise LookupError(f"no record in {self.name} matches")

    def _mutated(self, shard: Shard) -> None:
        shard.touch()
        self._save_snapshot(shard)
        for listener in list(self._listeners):
            listener(shard.key)

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    async def flush(self, key: str) -> FlushResult:
        shard = self._shards.get(key)
        if shard is None:
            raise KeyError(f"unknown shard {key!r} in {self.name}")

        written_generation = shard.generation
        policy = self.config.merge_policy

        def rebase(latest: FileContent | None) -> bytes:
            nonlocal written_generation
            remote: list[Record] = []
            if latest is not None:
                try:
                    remote = load_records(latest.content, shard.path)
                except ParseError as e:
                    logger.warning("Collection %s: remote %s unreadable during merge: %s", self.name, key, e)
            if self._normalize:
                remote = [self._normalize(r) for r in remote]
            merged = self._merge(shard.records, remote, shard.removed)
            if policy == "last_write_wins" and remote:
                logger.warning(
                    "Collection %s: overwriting concurrent changes to %s (last_write_wins)", self.name, shard.path
                )
            # @@@rebase-atomic - merged records and the revision they were merged against move together.
            shard.records = merged
            shard.revision = latest.revision if latest else None
            written_generation = shard.generation
            return dump_records(merged)

        message = self.config.commit_message.format(
            path=shard.path,
            timestamp=self._session.clock().isoformat(),
        )
        logger.debug("Flushing %s (%d records, revision %s)", shard.path, len(shard.records), shard.revision)
        result = await self._store.write(
            shard.path,
            dump_records(shard.records),
            shard.revision,
            message=message,
            rebase=rebase,
        )

        if not result.ok:
            logger.error("Flush of %s failed: %s %s", shard.path, result.reason, result.detail[:200])
            return FlushResult(key, shard.path, ok=False, reason=result.reason, detail=result.detail)

        shard.revision = result.revision
        shard.loaded = True
        if shard.generation == written_generation:
            shard.pending = False
            shard.removed.clear()
        else:
            logger.debug("Shard %s changed during flush; staying pending", shard.path)
        self._save_snapshot(shard)
        return FlushResult(key, shard.path, ok=True, revision=result.revision)

    async def flush_pending(self) -> list[FlushResult]:
        """Flush every pending shard; different shards are written concurrently."""
        keys = self.pending_keys
        if not keys:
            return []
        return list(await asyncio.gather(*(self.flush(k) for k in keys)))

    # ------------------------------------------------------------------
    # Local snapshots
    # ------------------------------------------------------------------

    def _snapshot_key(self, key: str) -> str:
        return f"{self.name}.shard.{key}"

    def _save_snapshot(self, shard: Shard) -> None:
        if not self.config.persist_local:
            return
        self._session.config.set(
            self._snapshot_key(shard.key),
            json.dumps(
                {
                    "records": shard.records,
                    "revision": shard.revision,
                    "pending": shard.pending,
                    "removed": sorted(shard.removed),
                },
                ensure_ascii=False,
            ),
        )

    def _restore_snapshots(self) -> None:
        prefix = self._snapshot_key("")
        for config_key in self._session.config.keys(prefix):
            key = config_key[len(prefix):]
            raw = self._session.config.get(config_key)
            try:
                data = json.loads(raw or "")
                records = data["records"]
                if not isinstance(records, list):
                    raise TypeError("records must be a list")
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning("Dropping unreadable snapshot %s: %s", config_key, e)
                self._session.config.delete(config_key)
                continue
            shard = Shard(key=key, path=self.shard_path(key))
            shard.replace(records, data.get("revision"))
            shard.pending = bool(data.get("pending"))
            shard.removed = set(data.get("removed") or [])
            self._shards[key] = shard
        if self._shards:
            logger.debug("Restored %d local shards for %s", len(self._shards), self.name)


def _record_day(record: Record) -> str | None:
    date = record.get("date")
    if isinstance(date, str) and _is_calendar_day(date[:10]):
        return date[:10]
    return _local_date(record.get("timestamp"))


def _is_calendar_day(value: str) -> bool:
    if not DATE_KEY_RE.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def _local_date(value: Any) -> str | None:
    """Local YYYY-MM-DD for an ISO-8601 string or epoch (seconds or milliseconds)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            seconds = value / 1000 if value > 1e11 else value
            dt = datetime.fromtimestamp(seconds).astimezone()
        elif isinstance(value, str):
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            if dt.tzinfo is not None:
                dt = dt.astimezone()
        else:
            return None
    except (ValueError, OverflowError, OSError):
        return None
    return dt.strftime("%Y-%m-%d")
