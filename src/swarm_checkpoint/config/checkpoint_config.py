"""Checkpoint system configuration with environment variable loading."""

import os
from typing import List
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

MB = 1024 * 1024


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class CheckpointStoreConfig(BaseModel):
    """Configuration for the file-based checkpoint store."""

    base_path: str = Field(
        default_factory=lambda: os.getenv("CHECKPOINT_BASE_PATH", ".checkpoints"),
        min_length=1,
        description="Directory holding checkpoint files and the index",
    )
    compression: bool = Field(
        default_factory=lambda: _env_flag("CHECKPOINT_COMPRESSION", "true"),
        description="Gzip checkpoint files on disk",
    )
    index_enabled: bool = Field(
        default_factory=lambda: _env_flag("CHECKPOINT_INDEX_ENABLED", "true"),
        description="Maintain index.json for fast listing",
    )

    # Security limits
    max_checkpoint_size: int = Field(
        default_factory=lambda: int(os.getenv("CHECKPOINT_MAX_SIZE", str(100 * MB))),
        gt=0,
        description="Maximum serialized (and on-disk) checkpoint size in bytes",
    )
    max_decompressed_size: int = Field(
        default_factory=lambda: int(
            os.getenv("CHECKPOINT_MAX_DECOMPRESSED_SIZE", str(500 * MB))
        ),
        gt=0,
        description="Maximum decompressed checkpoint size in bytes",
    )
    max_compression_ratio: float = Field(
        default_factory=lambda: float(
            os.getenv("CHECKPOINT_MAX_COMPRESSION_RATIO", "1000")
        ),
        gt=0,
        description="Reject gzip payloads expanding by more than this factor",
    )


class CheckpointConfig(BaseModel):
    """Configuration for checkpoint creation, resumability and retention."""

    enabled: bool = Field(
        default_factory=lambda: _env_flag("CHECKPOINT_ENABLED", "true"),
        description="Enable the checkpoint system",
    )
    max_checkpoints: int = Field(
        default_factory=lambda: int(os.getenv("CHECKPOINT_MAX_ACTIVE", "50")),
        ge=1,
        description="Active checkpoints kept before the oldest are archived",
    )
    retention_days: int = Field(
        default_factory=lambda: int(os.getenv("CHECKPOINT_RETENTION_DAYS", "30")),
        ge=1,
        description="Days to retain checkpoints before deletion",
    )
    max_agent_attempts: int = Field(
        default_factory=lambda: int(os.getenv("CHECKPOINT_MAX_AGENT_ATTEMPTS", "3")),
        ge=1,
        description="Attempts after which a failed agent blocks resumption",
    )
    orchestrator_version: str = Field(
        default="1.0.0",
        description="Orchestrator version recorded in checkpoint metadata",
    )
    terminal_failure_states: List[str] = Field(
        default_factory=lambda: ["ERROR", "ABORTED"],
        description="Workflow states that block resumption without a rollback target",
    )
    complete_state: str = Field(
        default="COMPLETE",
        description="Workflow state meaning a clean finish (no auto-recovery)",
    )


class TriggerConfig(BaseModel):
    """Configuration for event-driven checkpoint creation."""

    on_state_transition: bool = Field(default=True)
    on_agent_complete: bool = Field(default=True)
    on_user_approval: bool = Field(default=True)
    on_error: bool = Field(default=True)
    on_periodic: bool = Field(default=True)
    before_destructive: bool = Field(default=True)
    destructive_operations: List[str] = Field(
        default_factory=lambda: [
            "git_push",
            "git_force_push",
            "file_delete",
            "database_migrate",
            "deploy",
            "publish",
        ],
        description="Operations that get a checkpoint before they run",
    )
