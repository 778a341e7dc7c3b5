"""Checksum and timestamp helpers shared by the manager and the store."""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, List

from ..models.checkpoint_models import (
    AgentStateSnapshot,
    CheckpointChecksums,
    ContextSnapshot,
    StateHistoryEntry,
    WorkflowStateSnapshot,
)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime for comparison.

    Naive values are taken to be UTC.

    Args:
        value: Datetime to normalize

    Returns:
        Aware datetime in UTC
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def calculate_checksum(data: Any) -> str:
    """
    Calculate a SHA-256 checksum truncated to 16 hex chars.

    Args:
        data: JSON-serializable data

    Returns:
        Hex digest prefix
    """
    encoded = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:16]


def calculate_checksums(
    workflow: WorkflowStateSnapshot,
    agents: List[AgentStateSnapshot],
    context: ContextSnapshot,
) -> CheckpointChecksums:
    """
    Calculate checksums for every checkpoint section.

    Args:
        workflow: Workflow snapshot
        agents: Agent snapshots
        context: Context snapshot

    Returns:
        Per-section and overall checksums
    """
    workflow_checksum = calculate_checksum(workflow.model_dump(mode="json"))
    agents_checksum = calculate_checksum([a.model_dump(mode="json") for a in agents])
    context_checksum = calculate_checksum(context.model_dump(mode="json"))

    overall = calculate_checksum(
        {
            "workflow": workflow_checksum,
            "agents": agents_checksum,
            "context": context_checksum,
        }
    )

    return CheckpointChecksums(
        workflow=workflow_checksum,
        agents=agents_checksum,
        context=context_checksum,
        overall=overall,
    )


def is_history_ordered(history: List[StateHistoryEntry]) -> bool:
    """Check that history entries are ordered by entered_at."""
    return all(
        as_utc(earlier.entered_at) <= as_utc(later.entered_at)
        for earlier, later in zip(history, history[1:])
    )
