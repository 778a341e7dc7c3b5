"""Checkpoint data models for workflow state persistence and recovery."""

from pydantic import BaseModel, Field
from typing import Dict, List, Any, Optional
from enum import Enum
from datetime import datetime

# Checkpoint ids are UUID v4; they double as on-disk filename stems.
UUID4_PATTERN = (
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-4[0-9a-fA-F]{3}-"
    r"[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$"
)

CHECKPOINT_FORMAT_VERSION = "1.0.0"


class CheckpointTrigger(str, Enum):
    """Reason a checkpoint was created."""

    MANUAL = "manual"
    STATE_TRANSITION = "state_transition"
    ERROR = "error"
    PERIODIC = "periodic"
    APPROVAL_PENDING = "approval_pending"
    AGENT_COMPLETE = "agent_complete"
    BEFORE_DESTRUCTIVE = "before_destructive"


class CheckpointStatus(str, Enum):
    """Checkpoint lifecycle status."""

    ACTIVE = "active"
    ARCHIVED = "archived"


class AgentStatus(str, Enum):
    """Agent execution status recorded in a checkpoint."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class CompressionType(str, Enum):
    """On-disk encoding of a checkpoint file."""

    NONE = "none"
    GZIP = "gzip"


class StateHistoryEntry(BaseModel):
    """One visit of the workflow state machine to a state."""

    state: str = Field(min_length=1)
    entered_at: datetime
    exited_at: Optional[datetime] = None
    trigger: str = Field(min_length=1)


class WorkflowStateSnapshot(BaseModel):
    """Position of the workflow state machine."""

    current_state: str = Field(min_length=1, description="Active state")
    previous_state: Optional[str] = None
    state_history: List[StateHistoryEntry] = Field(default_factory=list)
    pending_transitions: List[str] = Field(default_factory=list)
    rollback_target: Optional[str] = Field(
        default=None,
        description="State to resume from when current_state is a failure state",
    )


class TokenUsage(BaseModel):
    """LLM token usage of an agent."""

    input: int = Field(ge=0)
    output: int = Field(ge=0)


class AgentStateSnapshot(BaseModel):
    """Execution substate of a single agent."""

    agent_id: str = Field(min_length=1)
    status: AgentStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    input: Optional[Dict[str, Any]] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    attempts: int = Field(default=0, ge=0)
    token_usage: Optional[TokenUsage] = None

    model_config = {"use_enum_values": True}


class DecisionRecord(BaseModel):
    """Decision taken during the workflow, kept for agent reasoning."""

    id: str = Field(min_length=1)
    decision: str = Field(min_length=1)
    rationale: str = ""
    made_at: datetime


class ContextSnapshot(BaseModel):
    """Shared context the agents reason over."""

    project_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    task_description: str = ""
    work_breakdown: Optional[Dict[str, Any]] = None
    lessons: List[str] = Field(default_factory=list)
    decisions: List[DecisionRecord] = Field(default_factory=list)


class CheckpointChecksums(BaseModel):
    """Truncated SHA-256 digests of the checkpoint sections."""

    workflow: str = Field(min_length=1)
    agents: str = Field(min_length=1)
    context: str = Field(min_length=1)
    overall: str = Field(min_length=1)


class CheckpointMetadata(BaseModel):
    """Storage metadata of a checkpoint."""

    orchestrator_version: str = Field(min_length=1)
    checkpoint_size: int = Field(
        default=0, ge=0, description="Persisted byte length, stamped by the store"
    )
    compression_type: CompressionType = CompressionType.NONE.value
    checksums: CheckpointChecksums

    model_config = {"use_enum_values": True}


class RecoveryInfo(BaseModel):
    """Resumability verdict computed when the checkpoint is created."""

    can_resume: bool
    blockers: List[str] = Field(default_factory=list)
    resume_from_agent: Optional[str] = None
    resume_from_state: Optional[str] = None


class Checkpoint(BaseModel):
    """
    Durable snapshot of workflow engine state.

    Created once by the checkpoint manager and persisted by the store.
    Only ``status`` ever changes afterwards (on archive).
    """

    id: str = Field(pattern=UUID4_PATTERN, description="UUID v4 identifier")
    version: str = Field(default=CHECKPOINT_FORMAT_VERSION, min_length=1)
    created_at: datetime
    trigger: CheckpointTrigger
    trigger_reason: str = ""
    status: CheckpointStatus = CheckpointStatus.ACTIVE.value

    workflow: WorkflowStateSnapshot
    agents: List[AgentStateSnapshot] = Field(default_factory=list)
    context: ContextSnapshot

    metadata: CheckpointMetadata
    recovery: RecoveryInfo

    model_config = {"use_enum_values": True}


class CheckpointIndexEntry(BaseModel):
    """Lightweight projection of a checkpoint kept in index.json."""

    id: str
    created_at: datetime
    trigger: str
    status: str
    state: str
    can_resume: bool
    size: int = Field(ge=0)
    path: str


class CheckpointStoreStats(BaseModel):
    """Aggregate statistics of the checkpoint store."""

    count: int = 0
    total_size: int = 0
    oldest_checkpoint: Optional[str] = None
    newest_checkpoint: Optional[str] = None


class CheckpointSnapshot(BaseModel):
    """Engine state handed to the manager for checkpointing."""

    workflow: WorkflowStateSnapshot
    agents: List[AgentStateSnapshot] = Field(default_factory=list)
    context: ContextSnapshot


class AgentRestoreState(BaseModel):
    """State handed to a live agent on recovery."""

    status: AgentStatus
    input: Optional[Dict[str, Any]] = None
    output: Optional[Dict[str, Any]] = None
    attempts: int = Field(default=0, ge=0)
    token_usage: Optional[TokenUsage] = None

    model_config = {"use_enum_values": True}


class RecoveryOptions(BaseModel):
    """Recovery request."""

    checkpoint_id: str = Field(pattern=UUID4_PATTERN)
    skip_failed_agent: bool = Field(
        default=False, description="Do not restore agents recorded as failed"
    )
    reset_to_state: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=100,
        description="Roll the workflow back to this state instead",
    )
    replay_mode: bool = Field(
        default=False, description="Enter single-step replay after recovery"
    )
    dry_run: bool = Field(default=False, description="Report only, change nothing")


class RecoveryResult(BaseModel):
    """Outcome of a recovery attempt."""

    success: bool
    checkpoint: Optional[Checkpoint] = None
    restored_state: str = ""
    skipped_agents: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class RecoveryStatus(BaseModel):
    """Diagnostic view of whether a checkpoint can be recovered."""

    can_recover: bool
    blockers: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class RecoveryPoint(BaseModel):
    """Listing entry for operator tooling."""

    id: str
    created_at: datetime
    trigger: str
    state: str
    can_resume: bool
