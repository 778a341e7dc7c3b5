"""Models package for the checkpoint system."""

from .checkpoint_models import (
    CheckpointTrigger,
    CheckpointStatus,
    AgentStatus,
    CompressionType,
    StateHistoryEntry,
    WorkflowStateSnapshot,
    TokenUsage,
    AgentStateSnapshot,
    DecisionRecord,
    ContextSnapshot,
    CheckpointChecksums,
    CheckpointMetadata,
    RecoveryInfo,
    Checkpoint,
    CheckpointIndexEntry,
    CheckpointStoreStats,
    CheckpointSnapshot,
    AgentRestoreState,
    RecoveryOptions,
    RecoveryResult,
    RecoveryStatus,
    RecoveryPoint,
)

__all__ = [
    "CheckpointTrigger",
    "CheckpointStatus",
    "AgentStatus",
    "CompressionType",
    "StateHistoryEntry",
    "WorkflowStateSnapshot",
    "TokenUsage",
    "AgentStateSnapshot",
    "DecisionRecord",
    "ContextSnapshot",
    "CheckpointChecksums",
    "CheckpointMetadata",
    "RecoveryInfo",
    "Checkpoint",
    "CheckpointIndexEntry",
    "CheckpointStoreStats",
    "CheckpointSnapshot",
    "AgentRestoreState",
    "RecoveryOptions",
    "RecoveryResult",
    "RecoveryStatus",
    "RecoveryPoint",
]
