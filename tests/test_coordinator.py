import asyncio

import pytest

from storage.content_store import ContentStore
from sync.collection import WHOLE_SHARD, DateShardedCollection
from sync.coordinator import SyncCoordinator, SyncState


class GatedStore(ContentStore):
    """Delegates to a real store but holds every write until the gate opens."""

    def __init__(self, inner: ContentStore):
        self.inner = inner
        self.gate = asyncio.Event()
        self.gate.set()
        self.writing = asyncio.Event()
        self.error: Exception | None = None

    async def read(self, path):
        return await self.inner.read(path)

    async def write(self, path, content, revision, *, message=None, rebase=None):
        self.writing.set()
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return await self.inner.write(path, content, revision, message=message, rebase=rebase)

    async def delete(self, path, revision, *, message=None):
        return await self.inner.delete(path, revision, message=message)


@pytest.fixture
def open_todos(make_session, make_store):
    def _open(session=None, **collection):
        session = session or make_session({"todo": {"mode": "whole", "path": "todos.json", **collection}})
        store = GatedStore(make_store(session))
        todos = DateShardedCollection(session, store, "todo")
        return session, store, todos, SyncCoordinator(session, todos)

    return _open


@pytest.mark.asyncio
async def test_second_flush_while_in_flight_submits_nothing(api, open_todos):
    _, store, todos, coordinator = open_todos()
    await todos.append({"id": 1})
    store.gate.clear()

    first = asyncio.create_task(coordinator.flush_now())
    await store.writing.wait()
    second = await coordinator.flush_now()
    store.gate.set()
    first_outcome = await first

    assert second.in_flight and not second.ok
    assert first_outcome.ok
    assert len(api.writes()) == 1
    assert coordinator.state is SyncState.CLEAN


@pytest.mark.asyncio
async def test_burst_of_mutations_collapses_into_one_flush(api, open_todos):
    _, _, todos, coordinator = open_todos(auto_save=True, debounce_seconds=0.01)

    for i in range(10):
        await todos.append({"id": i})
    await coordinator.wait_idle()

    assert len(api.writes()) == 1
    assert [r["id"] for r in api.json("todos.json")] == list(range(10))
    assert coordinator.state is SyncState.CLEAN


@pytest.mark.asyncio
async def test_without_auto_save_nothing_is_scheduled(api, open_todos):
    _, _, todos, coordinator = open_todos(debounce_seconds=0.01)

    await todos.append({"id": 1})
    await coordinator.wait_idle()

    assert api.writes() == []
    assert coordinator.state is SyncState.DIRTY
    assert coordinator.needs_unsaved_warning()


@pytest.mark.asyncio
async def test_runtime_override_enables_auto_save(api, open_todos):
    session, _, todos, coordinator = open_todos(debounce_seconds=0.01)
    session.config.set("todo.auto_save", "true")
    session.config.set("todo.debounce_seconds", "0.02")

    assert coordinator.auto_save
    assert coordinator.debounce_seconds == 0.02
    await todos.append({"id": 1})
    await coordinator.wait_idle()

    assert len(api.writes()) == 1


@pytest.mark.asyncio
async def test_successful_save_clears_persisted_dirty_flag(api, open_todos):
    session, _, todos, coordinator = open_todos()
    states = []
    coordinator.on_state_change(states.append)

    await todos.append({"id": 1})
    assert session.config.get("todo.dirty") == "1"
    outcome = await coordinator.save()

    assert outcome.ok
    assert session.config.get("todo.dirty") is None
    assert states == [SyncState.DIRTY, SyncState.FLUSHING, SyncState.CLEAN]


@pytest.mark.asyncio
async def test_failed_save_stays_dirty(api, open_todos):
    session, _, todos, coordinator = open_todos()
    await todos.append({"id": 1})
    session.config.set("gitshelf_token", "revoked")

    outcome = await coordinator.save()

    assert not outcome.ok
    assert outcome.failed[0].shard_key == WHOLE_SHARD
    assert coordinator.state is SyncState.DIRTY
    assert session.config.get("todo.dirty") == "1"
    assert todos.records == [{"id": 1}]


@pytest.mark.asyncio
async def test_dirty_flag_survives_restart(open_todos):
    session, _, _, first = open_todos()
    session.config.set("todo.dirty", "1")

    _, _, _, restarted = open_todos(session=session)

    assert restarted.state is SyncState.DIRTY


@pytest.mark.asyncio
async def test_flush_when_clean_sends_nothing(api, open_todos):
    _, _, _, coordinator = open_todos()

    outcome = await coordinator.flush_now()

    assert outcome.ok
    assert api.requests == []


@pytest.mark.asyncio
async def test_edit_during_flush_stays_dirty_and_is_written_next(api, open_todos):
    _, store, todos, coordinator = open_todos()
    await todos.append({"id": 1})
    store.gate.clear()

    flushing = asyncio.create_task(coordinator.flush_now())
    await store.writing.wait()
    assert coordinator.state is SyncState.FLUSHING
    await todos.append({"id": 2})
    store.gate.set()
    await flushing

    assert coordinator.state is SyncState.DIRTY
    assert todos.pending_keys == [WHOLE_SHARD]

    assert (await coordinator.save()).ok
    assert [r["id"] for r in api.json("todos.json")] == [1, 2]
    assert coordinator.state is SyncState.CLEAN


@pytest.mark.asyncio
async def test_refresh_is_skipped_while_dirty(api, open_todos):
    _, _, todos, coordinator = open_todos()
    await todos.append({"id": 1})
    api.seed("todos.json", [{"id": 9}])

    assert await coordinator.refresh() is False
    assert todos.records == [{"id": 1}]


@pytest.mark.asyncio
async def test_refresh_when_clean_reloads(api, open_todos):
    _, _, todos, coordinator = open_todos()
    api.seed("todos.json", [{"id": 9}])

    assert await coordinator.refresh() is True
    assert todos.records == [{"id": 9}]


@pytest.mark.asyncio
async def test_close_with_auto_save_pushes_pending_edits(api, open_todos):
    _, _, todos, coordinator = open_todos(auto_save=True, debounce_seconds=60)
    await todos.append({"id": 1})

    outcome = await coordinator.aclose()

    assert outcome.ok
    assert api.json("todos.json") == [{"id": 1}]


@pytest.mark.asyncio
async def test_scheduled_flush_failure_is_logged_and_stays_dirty(api, open_todos, caplog):
    _, store, todos, coordinator = open_todos(auto_save=True, debounce_seconds=0.01)
    store.error = RuntimeError("disk on fire")

    await todos.append({"id": 1})
    await coordinator.wait_idle()
    await asyncio.wait([coordinator._flush_task])
    await asyncio.sleep(0)

    assert "scheduled flush failed: disk on fire" in caplog.text
    assert coordinator.state is SyncState.DIRTY
    assert todos.pending_keys == [WHOLE_SHARD]

    store.error = None
    assert await coordinator.aclose() is not None
    assert api.json("todos.json") == [{"id": 1}]
