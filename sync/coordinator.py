"""
SyncCoordinator - decides when a collection flushes.

State machine: CLEAN -> DIRTY -> FLUSHING -> CLEAN | DIRTY

- Mutations mark the collection DIRTY and, with auto-save, (re)arm a debounce
  timer; only the last mutation in the window triggers a flush.
- At most one flush per collection is in flight. flush_now() while FLUSHING
  submits nothing and returns immediately.
- The dirty flag is persisted through the ConfigProvider and cleared only
  after a flush succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sync.collection import DateShardedCollection, FlushResult
from sync.session import SessionContext

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    FLUSHING = "flushing"


@dataclass(frozen=True)
class FlushOutcome:
    ok: bool
    in_flight: bool = False
    results: list[FlushResult] = field(default_factory=list)

    @property
    def failed(self) -> list[FlushResult]:
        return [r for r in self.results if not r.ok]


class SyncCoordinator:
    def __init__(self, session: SessionContext, collection: DateShardedCollection):
        self._session = session
        self.collection = collection
        self._dirty_key = f"{collection.name}.dirty"
        self._timer: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None
        self._mutated_while_flushing = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._listeners: list[Callable[[SyncState], Any]] = []

        persisted_dirty = session.config.get_bool(self._dirty_key, False)
        self._state = SyncState.DIRTY if (persisted_dirty or collection.is_pending) else SyncState.CLEAN
        collection.on_change(self._on_mutation)

    # ------------------------------------------------------------------
    # Policy (runtime overrides in the config provider win over settings)
    # ------------------------------------------------------------------

    @property
    def auto_save(self) -> bool:
        return self._session.config.get_bool(f"{self.collection.name}.auto_save", self.collection.config.auto_save)

    @property
    def debounce_seconds(self) -> float:
        return self._session.config.get_float(
            f"{self.collection.name}.debounce_seconds", self.collection.config.debounce_seconds
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def dirty(self) -> bool:
        return self._state is not SyncState.CLEAN

    def on_state_change(self, listener: Callable[[SyncState], Any]) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: SyncState) -> None:
        if state is self._state:
            return
        logger.debug("%s: %s -> %s", self.collection.name, self._state.value, state.value)
        self._state = state
        if state is SyncState.CLEAN:
            self._session.config.delete(self._dirty_key)
        else:
            self._session.config.set(self._dirty_key, "1")
        for listener in list(self._listeners):
            listener(state)

    def needs_unsaved_warning(self) -> bool:
        """True when closing now would lose edits: dirty and auto-save off."""
        return self.dirty and not self.auto_save

    def _on_mutation(self, shard_key: str) -> None:
        if self._state is SyncState.FLUSHING:
            self._mutated_while_flushing = True
        else:
            self._set_state(SyncState.DIRTY)
        if self.auto_save:
            self.schedule_flush()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule_flush(self) -> None:
        """(Re)arm the debounce timer; only the last call in the window flushes."""
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._idle.clear()
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._flush_task = asyncio.ensure_future(self.flush_now())
        self._flush_task.add_done_callback(self._on_scheduled_flush_done)

    def _on_scheduled_flush_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s: scheduled flush failed: %s", self.collection.name, exc, exc_info=exc)

    def cancel_scheduled(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            self._update_idle()

    async def flush_now(self) -> FlushOutcome:
        if self._state is SyncState.FLUSHING:
            logger.debug("%s: flush already in flight, skipping", self.collection.name)
            return FlushOutcome(ok=False, in_flight=True)
        if self._state is SyncState.CLEAN and not self.collection.is_pending:
            self._update_idle()
            return FlushOutcome(ok=True)

        self._mutated_while_flushing = False
        self._idle.clear()
        self._set_state(SyncState.FLUSHING)
        try:
            results = await self.collection.flush_pending()
        except Exception:
            logger.exception("%s: flush raised", self.collection.name)
            self._finish_flush(ok=False)
            raise

        ok = all(r.ok for r in results)
        if ok:
            logger.info("%s: flushed %d shards", self.collection.name, len(results))
        else:
            logger.error(
                "%s: %d of %d shards failed to flush",
                self.collection.name,
                sum(1 for r in results if not r.ok),
                len(results),
            )
        self._finish_flush(ok=ok)
        return FlushOutcome(ok=ok, results=results)

    def _finish_flush(self, ok: bool) -> None:
        still_dirty = not ok or self._mutated_while_flushing or self.collection.is_pending
        self._set_state(SyncState.DIRTY if still_dirty else SyncState.CLEAN)
        # Edits made during the flush get their own debounced write.
        if ok and still_dirty and self.auto_save and self._timer is None:
            self.schedule_flush()
        self._update_idle()

    async def save(self) -> FlushOutcome:
        """Manual save: skip the debounce window, keep the single-flight guard."""
        self.cancel_scheduled()
        return await self.flush_now()

    async def refresh(self) -> bool:
        """Reload from the remote store unless local edits are unsaved."""
        if self._state is not SyncState.CLEAN:
            logger.warning("%s: refresh skipped, local changes not yet saved", self.collection.name)
            return False
        await self.collection.load_all()
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _update_idle(self) -> None:
        if self._timer is None and self._state is not SyncState.FLUSHING:
            self._idle.set()

    async def wait_idle(self) -> None:
        """Wait until no debounce timer is armed and no flush is running."""
        await self._idle.wait()

    async def aclose(self) -> FlushOutcome | None:
        """Stop the timer; with auto-save, push remaining edits before teardown."""
        self.cancel_scheduled()
        if self._flush_task is not None and not self._flush_task.done():
            # Failures were already logged by the done callback.
            await asyncio.wait([self._flush_task])
        if self.dirty and self.auto_save:
            return await self.flush_now()
        if self.needs_unsaved_warning():
            logger.warning("%s: closing with unsaved changes", self.collection.name)
        return None
