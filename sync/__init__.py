"""Record collections synchronized against a revision-tagged content store."""

from .collection import WHOLE_SHARD, DateShardedCollection, FlushResult, Shard
from .coordinator import FlushOutcome, SyncCoordinator, SyncState
from .merge import last_write_wins, union_merge
from .session import SessionContext

__all__ = [
    "DateShardedCollection",
    "FlushOutcome",
    "FlushResult",
    "SessionContext",
    "Shard",
    "SyncCoordinator",
    "SyncState",
    "WHOLE_SHARD",
    "last_write_wins",
    "union_merge",
]
