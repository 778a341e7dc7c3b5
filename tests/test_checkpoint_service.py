"""Unit tests for the checkpoint manager."""

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from swarm_checkpoint.config.checkpoint_config import CheckpointConfig, CheckpointStoreConfig
from swarm_checkpoint.core.errors import (
    CheckpointDisabledError,
    CheckpointIntegrityError,
    CheckpointNotFoundError,
)
from swarm_checkpoint.core.interfaces import (
    AgentStateRegistry,
    ContextProvider,
    StateGraphProvider,
)
from swarm_checkpoint.core.store import FileCheckpointStore
from swarm_checkpoint.models.checkpoint_models import (
    AgentStateSnapshot,
    CheckpointTrigger,
    ContextSnapshot,
    WorkflowStateSnapshot,
)
from swarm_checkpoint import create_checkpoint_system
from swarm_checkpoint.services.checkpoint_service import CheckpointManager


def _agent(agent_id, status, attempts=1, **kwargs):
    return AgentStateSnapshot(agent_id=agent_id, status=status, attempts=attempts, **kwargs)


class _Workflow(StateGraphProvider):
    def get_workflow_snapshot(self):
        return WorkflowStateSnapshot(current_state="PLANNING")


class _Agents(AgentStateRegistry):
    def get_agent_snapshots(self):
        return [_agent("coder", "pending", attempts=0)]


class _Context(ContextProvider):
    def get_context_snapshot(self):
        return ContextSnapshot(project_id="proj-9", session_id="ignored")


class TestRecoveryAnalysis:
    """Test resumability analysis."""

    def setup_method(self):
        store = FileCheckpointStore(CheckpointStoreConfig(base_path="unused"))
        self.manager = CheckpointManager(store, CheckpointConfig(max_agent_attempts=3))

    def test_resumable(self):
        """Test a healthy workflow can resume from its current state."""
        recovery = self.manager.analyze_recovery_capability(
            WorkflowStateSnapshot(current_state="EXECUTING"),
            [_agent("a", "completed")],
        )

        assert recovery.can_resume is True
        assert recovery.blockers == []
        assert recovery.resume_from_state == "EXECUTING"

    def test_running_agent(self):
        """Test an in-progress agent is reported but does not block."""
        recovery = self.manager.analyze_recovery_capability(
            WorkflowStateSnapshot(current_state="EXECUTING"),
            [_agent("a", "running")],
        )

        assert recovery.can_resume is True
        assert recovery.blockers == ["Agent a was in progress"]
        assert recovery.resume_from_agent == "a"

    def test_failed_agent_over_retry_budget(self):
        """Test an agent that used up its attempts blocks resumption."""
        recovery = self.manager.analyze_recovery_capability(
            WorkflowStateSnapshot(current_state="EXECUTING"),
            [_agent("z", "failed", attempts=3)],
        )

        assert recovery.can_resume is False
        assert recovery.blockers == ["z exceeded retry limit (3/3 attempts)"]

    def test_failed_agent_within_retry_budget(self):
        """Test a failed agent with attempts left does not block."""
        recovery = self.manager.analyze_recovery_capability(
            WorkflowStateSnapshot(current_state="EXECUTING"),
            [_agent("z", "failed", attempts=2)],
        )

        assert recovery.can_resume is True

    def test_terminal_state_without_rollback_target(self):
        """Test ERROR and ABORTED block resumption."""
        for state in ("ERROR", "ABORTED"):
            recovery = self.manager.analyze_recovery_capability(
                WorkflowStateSnapshot(current_state=state), []
            )

            assert recovery.can_resume is False
            assert recovery.blockers == [f"Workflow in {state} state"]

    def test_terminal_state_with_rollback_target(self):
        """Test a declared rollback target keeps the checkpoint resumable."""
        recovery = self.manager.analyze_recovery_capability(
            WorkflowStateSnapshot(current_state="ERROR", rollback_target="TESTING"),
            [],
        )

        assert recovery.can_resume is True
        assert recovery.resume_from_state == "TESTING"


@pytest.mark.asyncio
class TestCreateCheckpoint:
    """Test checkpoint creation."""

    async def test_create_checkpoint(self, manager, store, snapshot_factory):
        """Test a checkpoint is built and persisted."""
        checkpoint = await manager.create_checkpoint(
            CheckpointTrigger.STATE_TRANSITION, snapshot_factory(), reason="PLANNING -> EXECUTING"
        )

        assert uuid.UUID(checkpoint.id).version == 4
        assert checkpoint.trigger == "state_transition"
        assert checkpoint.trigger_reason == "PLANNING -> EXECUTING"
        assert checkpoint.status == "active"
        assert checkpoint.recovery.can_resume is True
        assert checkpoint.metadata.orchestrator_version == "1.0.0"
        assert len(checkpoint.metadata.checksums.overall) == 16

        loaded = await store.get(checkpoint.id)
        assert loaded.model_dump() == checkpoint.model_dump()

    async def test_create_checkpoint_redacts_secrets(self, manager, store, snapshot_factory):
        """Test secrets in agent payloads and context are redacted."""
        agents = [
            _agent(
                "deployer",
                "completed",
                input={"env": "api_key=abc123"},
                output={"log": "connected to postgres://admin:hunter2@db"},
                error="password=letmein",
            )
        ]
        snapshot = snapshot_factory(agents=agents)
        snapshot.context.lessons.append("token ghp_" + "a" * 36 + " leaked")

        checkpoint = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot)
        loaded = await store.get(checkpoint.id)

        agent = loaded.agents[0]
        assert agent.input == {"env": "[REDACTED]"}
        assert "hunter2" not in agent.output["log"]
        assert agent.error == "[REDACTED]"
        assert "ghp_" not in loaded.context.lessons[-1]
        # Caller's snapshot is left untouched
        assert snapshot.agents[0].input == {"env": "api_key=abc123"}

    async def test_create_checkpoint_disabled(self, store, snapshot_factory):
        """Test creating while disabled raises."""
        manager = CheckpointManager(store, CheckpointConfig(enabled=False))

        with pytest.raises(CheckpointDisabledError):
            await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())

    async def test_capture_from_providers(self, store, checkpoint_config):
        """Test snapshots are captured from providers when none is given."""
        manager = CheckpointManager(
            store,
            checkpoint_config,
            state_graph_provider=_Workflow(),
            agent_registry=_Agents(),
            context_provider=_Context(),
        )

        checkpoint = await manager.create_checkpoint(CheckpointTrigger.PERIODIC)

        assert checkpoint.workflow.current_state == "PLANNING"
        assert [a.agent_id for a in checkpoint.agents] == ["coder"]
        assert checkpoint.context.project_id == "proj-9"
        assert checkpoint.context.session_id == manager.get_session_id()

    async def test_capture_without_providers(self, manager):
        """Test an empty snapshot is used without providers."""
        checkpoint = await manager.create_checkpoint(CheckpointTrigger.MANUAL)

        assert checkpoint.workflow.current_state == "UNKNOWN"
        assert checkpoint.agents == []
        assert checkpoint.context.session_id == manager.get_session_id()

    async def test_enforce_checkpoint_limit(self, store, snapshot_factory):
        """Test the oldest active checkpoints are archived beyond the limit."""
        manager = CheckpointManager(store, CheckpointConfig(max_checkpoints=2))

        created = [
            await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())
            for _ in range(3)
        ]

        statuses = {e.id: e.status for e in await manager.list_index_entries()}
        assert statuses[created[0].id] == "archived"
        assert statuses[created[1].id] == "active"
        assert statuses[created[2].id] == "active"


@pytest.mark.asyncio
class TestValidateCheckpoint:
    """Test semantic checkpoint validation."""

    async def test_valid(self, manager, snapshot_factory):
        """Test a freshly created checkpoint validates."""
        checkpoint = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())

        assert await manager.validate_checkpoint(checkpoint.id) is True

    async def test_missing(self, manager):
        """Test a missing checkpoint returns False."""
        assert await manager.validate_checkpoint(str(uuid.uuid4())) is False

    async def test_tampered_payload(self, tmp_path, checkpoint_config, snapshot_factory):
        """Test edited agent output fails the checksum check."""
        store = FileCheckpointStore(
            CheckpointStoreConfig(base_path=str(tmp_path / "cp"), compression=False)
        )
        await store.initialize()
        manager = CheckpointManager(store, checkpoint_config)
        checkpoint = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())

        path = store.base_dir / f"{checkpoint.id}.json"
        data = json.loads(path.read_text())
        data["agents"][0]["output"] = {"plan": ["something else"]}
        path.write_text(json.dumps(data))

        with pytest.raises(CheckpointIntegrityError) as exc_info:
            await manager.validate_checkpoint(checkpoint.id)

        assert "Checksum mismatch in agents" in exc_info.value.problems
        assert "Checksum mismatch in overall" in exc_info.value.problems

    async def test_empty_agent_list(self, manager, snapshot_factory):
        """Test a checkpoint without agents is invalid."""
        checkpoint = await manager.create_checkpoint(
            CheckpointTrigger.MANUAL, snapshot_factory(agents=[])
        )

        with pytest.raises(CheckpointIntegrityError) as exc_info:
            await manager.validate_checkpoint(checkpoint.id)

        assert exc_info.value.problems == ["Checkpoint has no agents"]

    async def test_unordered_history(self, manager, snapshot_factory):
        """Test out-of-order history is reported."""
        snapshot = snapshot_factory()
        history = snapshot.workflow.state_history
        history[0].entered_at, history[1].entered_at = (
            history[1].entered_at,
            history[0].entered_at,
        )
        checkpoint = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot)

        with pytest.raises(CheckpointIntegrityError) as exc_info:
            await manager.validate_checkpoint(checkpoint.id)

        assert "State history is not ordered by entered_at" in exc_info.value.problems

    async def test_current_state_not_last_history_entry(self, manager, snapshot_factory):
        """Test current state must match the last history entry."""
        snapshot = snapshot_factory(state="TESTING", history=["PLANNING", "EXECUTING"])
        checkpoint = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot)

        with pytest.raises(CheckpointIntegrityError) as exc_info:
            await manager.validate_checkpoint(checkpoint.id)

        assert any("does not match last history entry" in p for p in exc_info.value.problems)

    async def test_duplicate_agent_ids(self, manager, snapshot_factory):
        """Test duplicate agent ids are reported."""
        snapshot = snapshot_factory(
            agents=[_agent("a", "completed"), _agent("a", "pending", attempts=0)]
        )
        checkpoint = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot)

        with pytest.raises(CheckpointIntegrityError) as exc_info:
            await manager.validate_checkpoint(checkpoint.id)

        assert "Duplicate agent id a" in exc_info.value.problems

    async def test_inconsistent_can_resume(self, store, checkpoint_config, checkpoint_factory, snapshot_factory):
        """Test can_resume must match the agent statuses."""
        manager = CheckpointManager(store, checkpoint_config)
        # Factory marks every checkpoint resumable, even with an exhausted agent
        checkpoint = checkpoint_factory(
            snapshot=snapshot_factory(agents=[_agent("z", "failed", attempts=5)])
        )
        await store.save(checkpoint)

        with pytest.raises(CheckpointIntegrityError) as exc_info:
            await manager.validate_checkpoint(checkpoint.id)

        assert any("can_resume" in p for p in exc_info.value.problems)


@pytest.mark.asyncio
class TestCheckpointQueries:
    """Test latest lookup, archiving and retention."""

    async def test_get_latest_checkpoint(self, manager, snapshot_factory):
        """Test the newest active checkpoint is returned."""
        await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())
        latest = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())

        assert (await manager.get_latest_checkpoint()).id == latest.id

    async def test_get_latest_skips_archived(self, manager, snapshot_factory):
        """Test archived checkpoints are not considered."""
        first = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())
        second = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())

        await manager.archive_checkpoint(second.id)

        assert (await manager.get_latest_checkpoint()).id == first.id

    async def test_get_latest_empty(self, manager):
        """Test no checkpoint yields None."""
        assert await manager.get_latest_checkpoint() is None

    async def test_archive_missing(self, manager):
        """Test archiving an unknown checkpoint raises."""
        with pytest.raises(CheckpointNotFoundError):
            await manager.archive_checkpoint(str(uuid.uuid4()))

    async def test_cleanup_expired(self, manager, store, checkpoint_factory):
        """Test checkpoints beyond the retention horizon are deleted."""
        now = datetime.now(timezone.utc)
        expired = checkpoint_factory(created_at=now - timedelta(days=31))
        fresh = checkpoint_factory(created_at=now - timedelta(days=29))
        await store.save(expired)
        await store.save(fresh)

        assert await manager.cleanup_expired_checkpoints() == 1
        assert [c.id for c in await manager.list_checkpoints()] == [fresh.id]

    async def test_initialize_runs_retention(self, store_config, checkpoint_config, checkpoint_factory):
        """Test initialize sweeps expired checkpoints."""
        seed = FileCheckpointStore(store_config)
        await seed.initialize()
        expired = checkpoint_factory(created_at=datetime.now(timezone.utc) - timedelta(days=90))
        await seed.save(expired)

        manager = CheckpointManager(FileCheckpointStore(store_config), checkpoint_config)
        await manager.initialize()

        assert await manager.get_checkpoint(expired.id) is None


def _checkpoint_file(store, checkpoint_id):
    return next(store.base_dir.glob(f"{checkpoint_id}.json*"))


@pytest.mark.asyncio
class TestUnreadableCheckpoints:
    """Test queries and retention survive missing or damaged files."""

    async def test_get_latest_skips_corrupt_newest(self, manager, store, snapshot_factory):
        """Test a corrupt newest file falls back to the older checkpoint."""
        older = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())
        newer = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())
        _checkpoint_file(store, newer.id).write_bytes(b"garbage")

        assert (await manager.get_latest_checkpoint()).id == older.id

    async def test_get_latest_skips_missing_newest(self, manager, store, snapshot_factory):
        """Test a stale index entry does not hide an older checkpoint."""
        older = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())
        newer = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())
        _checkpoint_file(store, newer.id).unlink()

        assert (await manager.get_latest_checkpoint()).id == older.id

    async def test_get_latest_all_unreadable(self, manager, store, snapshot_factory):
        """Test None is returned when no active checkpoint loads."""
        checkpoint = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())
        _checkpoint_file(store, checkpoint.id).write_bytes(b"garbage")

        assert await manager.get_latest_checkpoint() is None

    async def test_limit_skips_corrupt_entry(self, store, snapshot_factory):
        """Test a corrupt old checkpoint does not fail later creates."""
        manager = CheckpointManager(store, CheckpointConfig(max_checkpoints=1))
        first = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())
        _checkpoint_file(store, first.id).write_bytes(b"garbage")

        second = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())
        third = await manager.create_checkpoint(CheckpointTrigger.MANUAL, snapshot_factory())

        statuses = {e.id: e.status for e in await manager.list_index_entries()}
        assert statuses[second.id] == "archived"
        assert statuses[third.id] == "active"

    async def test_validate_loaded_checkpoint(self, manager, snapshot_factory):
        """Test validate works on an in-memory checkpoint."""
        checkpoint = await manager.create_checkpoint(
            CheckpointTrigger.MANUAL, snapshot_factory(agents=[])
        )

        with pytest.raises(CheckpointIntegrityError) as exc_info:
            manager.validate(checkpoint)

        assert exc_info.value.checkpoint_id == checkpoint.id


@pytest.mark.asyncio
class TestCheckpointSystemFactory:
    """Test the wired checkpoint system."""

    async def test_trigger_checkpoint_captures_providers(self, store_config, checkpoint_config):
        """Test trigger checkpoints from the factory are recoverable."""
        system = create_checkpoint_system(
            store_config=store_config,
            config=checkpoint_config,
            state_graph_provider=_Workflow(),
            agent_state_registry=_Agents(),
            context_provider=_Context(),
        )
        await system["manager"].initialize()

        checkpoint = await system["triggers"].on_periodic()

        assert checkpoint.workflow.current_state == "PLANNING"
        assert [a.agent_id for a in checkpoint.agents] == ["coder"]
        assert await system["manager"].validate_checkpoint(checkpoint.id) is True
