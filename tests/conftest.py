"""Shared fixtures for checkpoint tests."""

import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import pytest_asyncio

from swarm_checkpoint.config.checkpoint_config import (
    CheckpointConfig,
    CheckpointStoreConfig,
)
from swarm_checkpoint.core.integrity import calculate_checksums
from swarm_checkpoint.core.interfaces import (
    RestorableAgent,
    RestorableAgentRegistry,
    RestorableContextManager,
    RestorableStateGraph,
)
from swarm_checkpoint.core.store import FileCheckpointStore
from swarm_checkpoint.models.checkpoint_models import (
    AgentRestoreState,
    AgentStateSnapshot,
    Checkpoint,
    CheckpointMetadata,
    CheckpointSnapshot,
    ContextSnapshot,
    DecisionRecord,
    RecoveryInfo,
    StateHistoryEntry,
    WorkflowStateSnapshot,
)
from swarm_checkpoint.services.checkpoint_service import CheckpointManager

BASE_TIME = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)


class FakeStateGraph(RestorableStateGraph):
    """State graph recording every call made during recovery."""

    def __init__(self, fail_on_transition: bool = False):
        self.calls: List[tuple] = []
        self.history: List[StateHistoryEntry] = []
        self.current_state: Optional[str] = None
        self.replay_mode = False
        self.fail_on_transition = fail_on_transition

    async def reset(self) -> None:
        self.calls.append(("reset",))
        self.current_state = None
        self.history = []

    async def transition_to(self, state: str, trigger: str) -> None:
        self.calls.append(("transition_to", state, trigger))
        if self.fail_on_transition:
            raise RuntimeError(f"Invalid transition to {state}")
        self.current_state = state

    def record_history(self, entry: StateHistoryEntry) -> None:
        self.calls.append(("record_history", entry.state))
        self.history.append(entry)

    def set_replay_mode(self, enabled: bool) -> None:
        self.calls.append(("set_replay_mode", enabled))
        self.replay_mode = enabled


class FakeAgent(RestorableAgent):
    """Agent remembering the state it was restored with."""

    def __init__(self, agent_id: str, fail: bool = False):
        self.agent_id = agent_id
        self.fail = fail
        self.restored: List[AgentRestoreState] = []

    async def restore_state(self, state: AgentRestoreState) -> None:
        if self.fail:
            raise RuntimeError(f"{self.agent_id} cannot be restored")
        self.restored.append(state)


class FakeAgentRegistry(RestorableAgentRegistry):
    """Registry over a fixed set of fake agents."""

    def __init__(self, agents: List[FakeAgent]):
        self.agents: Dict[str, FakeAgent] = {a.agent_id: a for a in agents}

    def get_agent(self, agent_id: str) -> Optional[FakeAgent]:
        return self.agents.get(agent_id)


class FakeContextManager(RestorableContextManager):
    """Context owner storing the restored context."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.context: Optional[ContextSnapshot] = None

    async def restore(self, context: ContextSnapshot) -> None:
        if self.fail:
            raise RuntimeError("context store unavailable")
        self.context = context


def build_snapshot(
    state: str = "EXECUTING",
    agents: Optional[List[AgentStateSnapshot]] = None,
    history: Optional[List[str]] = None,
    rollback_target: Optional[str] = None,
) -> CheckpointSnapshot:
    """Build an engine snapshot whose history ends in ``state``."""
    history = history if history is not None else ["PLANNING", state]
    entries = [
        StateHistoryEntry(
            state=name,
            entered_at=BASE_TIME + timedelta(minutes=i),
            exited_at=BASE_TIME + timedelta(minutes=i + 1) if i < len(history) - 1 else None,
            trigger="next" if i else "start",
        )
        for i, name in enumerate(history)
    ]

    if agents is None:
        agents = [
            AgentStateSnapshot(
                agent_id="planner",
                status="completed",
                input={"task": "build feature"},
                output={"plan": ["step 1", "step 2"]},
                attempts=1,
                token_usage={"input": 120, "output": 80},
            )
        ]

    return CheckpointSnapshot(
        workflow=WorkflowStateSnapshot(
            current_state=state,
            previous_state=history[-2] if len(history) > 1 else None,
            state_history=entries,
            rollback_target=rollback_target,
        ),
        agents=agents,
        context=ContextSnapshot(
            project_id="proj-1",
            session_id="session-1",
            task_description="Build the feature",
            work_breakdown={"tasks": ["design", "implement"]},
            lessons=["run tests before pushing"],
            decisions=[
                DecisionRecord(
                    id="d1",
                    decision="Use SQLite",
                    rationale="Simple local storage",
                    made_at=BASE_TIME,
                )
            ],
        ),
    )


def build_checkpoint(
    created_at: Optional[datetime] = None,
    snapshot: Optional[CheckpointSnapshot] = None,
    checkpoint_id: Optional[str] = None,
) -> Checkpoint:
    """Build a checkpoint directly, bypassing the manager."""
    snapshot = snapshot or build_snapshot()
    return Checkpoint(
        id=checkpoint_id or str(uuid.uuid4()),
        created_at=created_at or datetime.now(timezone.utc),
        trigger="manual",
        trigger_reason="test",
        workflow=snapshot.workflow,
        agents=snapshot.agents,
        context=snapshot.context,
        metadata=CheckpointMetadata(
            orchestrator_version="1.0.0",
            checksums=calculate_checksums(
                snapshot.workflow, snapshot.agents, snapshot.context
            ),
        ),
        recovery=RecoveryInfo(
            can_resume=True, resume_from_state=snapshot.workflow.current_state
        ),
    )


@pytest.fixture
def snapshot_factory():
    """Factory for engine snapshots."""
    return build_snapshot


@pytest.fixture
def checkpoint_factory():
    """Factory for checkpoints built without the manager."""
    return build_checkpoint


@pytest.fixture
def store_config(tmp_path):
    """Store configuration rooted in a temporary directory."""
    return CheckpointStoreConfig(base_path=str(tmp_path / "checkpoints"))


@pytest_asyncio.fixture
async def store(store_config):
    """Initialized checkpoint store."""
    checkpoint_store = FileCheckpointStore(store_config)
    await checkpoint_store.initialize()
    return checkpoint_store


@pytest.fixture
def checkpoint_config():
    """Checkpoint configuration independent of the environment."""
    return CheckpointConfig(
        enabled=True,
        max_checkpoints=50,
        retention_days=30,
        max_agent_attempts=3,
    )


@pytest_asyncio.fixture
async def manager(store, checkpoint_config):
    """Checkpoint manager over the temporary store."""
    return CheckpointManager(store, checkpoint_config)
