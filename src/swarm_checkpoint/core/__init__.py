"""Core checkpoint storage, integrity and error handling."""

from .errors import (
    CheckpointError,
    CheckpointStoreError,
    CheckpointPathError,
    CheckpointSizeError,
    CheckpointCorruptionError,
    CompressionError,
    CheckpointIntegrityError,
    CheckpointNotFoundError,
    RecoveryError,
    CheckpointDisabledError,
)
from .interfaces import (
    RestorableStateGraph,
    RestorableAgent,
    RestorableAgentRegistry,
    RestorableContextManager,
    StateGraphProvider,
    AgentStateRegistry,
    ContextProvider,
)
from .store import FileCheckpointStore

__all__ = [
    "CheckpointError",
    "CheckpointStoreError",
    "CheckpointPathError",
    "CheckpointSizeError",
    "CheckpointCorruptionError",
    "CompressionError",
    "CheckpointIntegrityError",
    "CheckpointNotFoundError",
    "RecoveryError",
    "CheckpointDisabledError",
    "RestorableStateGraph",
    "RestorableAgent",
    "RestorableAgentRegistry",
    "RestorableContextManager",
    "StateGraphProvider",
    "AgentStateRegistry",
    "ContextProvider",
    "FileCheckpointStore",
]
