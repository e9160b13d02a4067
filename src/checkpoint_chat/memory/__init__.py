from checkpoint_chat.memory.activity import ActivityLog
from checkpoint_chat.memory.checkpoints import (
    CheckpointNotFoundError,
    CheckpointStore,
    CheckpointStoreError,
    InvalidCheckpointTransitionError,
)
from checkpoint_chat.memory.pruning import prune_checkpoints
from checkpoint_chat.memory.store import MemoryStore

__all__ = [
    "ActivityLog",
    "CheckpointNotFoundError",
    "CheckpointStore",
    "CheckpointStoreError",
    "InvalidCheckpointTransitionError",
    "MemoryStore",
    "prune_checkpoints",
]
