"""Checkpoint management service for workflow state persistence."""

import logging
from typing import Optional, List
from datetime import timedelta
import uuid

from ..config.checkpoint_config import CheckpointConfig
from ..core.errors import (
    CheckpointDisabledError,
    CheckpointError,
    CheckpointIntegrityError,
    CheckpointNotFoundError,
)
from ..core.integrity import as_utc, calculate_checksums, is_history_ordered, utc_now
from ..core.interfaces import AgentStateRegistry, ContextProvider, StateGraphProvider
from ..core.redaction import redact_secrets
from ..core.store import FileCheckpointStore
from ..models.checkpoint_models import (
    AgentStateSnapshot,
    AgentStatus,
    Checkpoint,
    CheckpointIndexEntry,
    CheckpointMetadata,
    CheckpointSnapshot,
    CheckpointStatus,
    CheckpointTrigger,
    ContextSnapshot,
    RecoveryInfo,
    WorkflowStateSnapshot,
)

logger = logging.getLogger(__name__)

UNKNOWN_STATE = "UNKNOWN"


class CheckpointManager:
    """
    Checkpoint manager for workflow state persistence.

    Decides when a checkpoint is taken and whether it is safe to resume
    from. Snapshots are either handed in by the caller or captured from
    the optional providers.
    """

    def __init__(
        self,
        store: FileCheckpointStore,
        config: Optional[CheckpointConfig] = None,
        state_graph_provider: Optional[StateGraphProvider] = None,
        agent_registry: Optional[AgentStateRegistry] = None,
        context_provider: Optional[ContextProvider] = None,
    ):
        """
        Initialize checkpoint manager.

        Args:
            store: Checkpoint store
            config: Checkpoint configuration (defaults from environment)
            state_graph_provider: Optional source of the workflow position
            agent_registry: Optional source of agent substates
            context_provider: Optional source of the shared context
        """
        self.store = store
        self.config = config or CheckpointConfig()
        self.state_graph_provider = state_graph_provider
        self.agent_registry = agent_registry
        self.context_provider = context_provider
        self._session_id = str(uuid.uuid4())

    async def initialize(self) -> None:
        """Initialize the store and sweep expired checkpoints."""
        if not self.config.enabled:
            logger.info("Checkpoint system disabled, skipping initialization")
            return

        await self.store.initialize()
        await self.cleanup_expired_checkpoints()

    def get_session_id(self) -> str:
        """Get the session id stamped on captured contexts."""
        return self._session_id

    async def create_checkpoint(
        self,
        trigger: CheckpointTrigger,
        snapshot: Optional[CheckpointSnapshot] = None,
        reason: str = "",
    ) -> Checkpoint:
        """
        Create and persist a checkpoint.

        Args:
            trigger: Why the checkpoint is taken
            snapshot: Engine state (captured from providers if omitted)
            reason: Human-readable trigger reason

        Returns:
            Saved checkpoint

        Raises:
            CheckpointDisabledError: Checkpoint system is disabled
        """
        if not self.config.enabled:
            raise CheckpointDisabledError()

        if snapshot is None:
            snapshot = self._capture_snapshot()

        workflow = snapshot.workflow.model_copy(deep=True)
        agents = [self._redact_agent(agent) for agent in snapshot.agents]
        context = self._redact_context(snapshot.context)

        checkpoint = Checkpoint(
            id=str(uuid.uuid4()),
            created_at=utc_now(),
            trigger=trigger,
            trigger_reason=reason,
            status=CheckpointStatus.ACTIVE,
            workflow=workflow,
            agents=agents,
            context=context,
            metadata=CheckpointMetadata(
                orchestrator_version=self.config.orchestrator_version,
                checksums=calculate_checksums(workflow, agents, context),
            ),
            recovery=self.analyze_recovery_capability(workflow, agents),
        )

        await self.store.save(checkpoint)

        logger.info(
            f"Created checkpoint {checkpoint.id} "
            f"(trigger: {checkpoint.trigger}, state: {workflow.current_state}, "
            f"can_resume: {checkpoint.recovery.can_resume})"
        )

        await self.enforce_checkpoint_limit()

        return checkpoint

    def _capture_snapshot(self) -> CheckpointSnapshot:
        if self.state_graph_provider:
            workflow = self.state_graph_provider.get_workflow_snapshot()
        else:
            workflow = WorkflowStateSnapshot(current_state=UNKNOWN_STATE)

        agents = self.agent_registry.get_agent_snapshots() if self.agent_registry else []

        if self.context_provider:
            context = self.context_provider.get_context_snapshot().model_copy(
                update={"session_id": self._session_id}
            )
        else:
            context = ContextSnapshot(project_id="unknown", session_id=self._session_id)

        return CheckpointSnapshot(workflow=workflow, agents=agents, context=context)

    def _redact_agent(self, agent: AgentStateSnapshot) -> AgentStateSnapshot:
        return agent.model_copy(
            deep=True,
            update={
                "input": redact_secrets(agent.input),
                "output": redact_secrets(agent.output),
                "error": redact_secrets(agent.error),
            },
        )

    def _redact_context(self, context: ContextSnapshot) -> ContextSnapshot:
        return context.model_copy(
            deep=True,
            update={
                "work_breakdown": redact_secrets(context.work_breakdown),
                "lessons": redact_secrets(context.lessons),
            },
        )

    def analyze_recovery_capability(
        self,
        workflow: WorkflowStateSnapshot,
        agents: List[AgentStateSnapshot],
    ) -> RecoveryInfo:
        """
        Decide whether a snapshot can be resumed from.

        Args:
            workflow: Workflow snapshot
            agents: Agent snapshots

        Returns:
            Resumability verdict with blockers
        """
        blockers: List[str] = []
        can_resume = True
        resume_from_agent: Optional[str] = None
        resume_from_state: Optional[str] = workflow.current_state

        for agent in agents:
            if agent.status == AgentStatus.RUNNING.value:
                blockers.append(f"Agent {agent.agent_id} was in progress")
                resume_from_agent = agent.agent_id

            if (
                agent.status == AgentStatus.FAILED.value
                and agent.attempts >= self.config.max_agent_attempts
            ):
                blockers.append(
                    f"{agent.agent_id} exceeded retry limit "
                    f"({agent.attempts}/{self.config.max_agent_attempts} attempts)"
                )
                can_resume = False

        if workflow.current_state in self.config.terminal_failure_states:
            if workflow.rollback_target:
                resume_from_state = workflow.rollback_target
            else:
                blockers.append(f"Workflow in {workflow.current_state} state")
                can_resume = False

        return RecoveryInfo(
            can_resume=can_resume,
            blockers=blockers,
            resume_from_agent=resume_from_agent,
            resume_from_state=resume_from_state,
        )

    async def validate_checkpoint(self, checkpoint_id: str) -> bool:
        """
        Semantically validate a stored checkpoint.

        Args:
            checkpoint_id: Checkpoint UUID

        Returns:
            True if valid, False if the checkpoint does not exist

        Raises:
            CheckpointIntegrityError: One or more problems were found
        """
        checkpoint = await self.store.get(checkpoint_id)
        if checkpoint is None:
            return False

        return self.validate(checkpoint)

    def validate(self, checkpoint: Checkpoint) -> bool:
        """
        Semantically validate an already loaded checkpoint.

        Args:
            checkpoint: Checkpoint to check

        Returns:
            True if valid

        Raises:
            CheckpointIntegrityError: One or more problems were found
        """
        problems: List[str] = []

        expected = calculate_checksums(
            checkpoint.workflow, checkpoint.agents, checkpoint.context
        )
        actual = checkpoint.metadata.checksums
        for section in ("workflow", "agents", "context", "overall"):
            if getattr(expected, section) != getattr(actual, section):
                problems.append(f"Checksum mismatch in {section}")

        workflow = checkpoint.workflow
        if not is_history_ordered(workflow.state_history):
            problems.append("State history is not ordered by entered_at")

        if workflow.state_history and (
            workflow.state_history[-1].state != workflow.current_state
        ):
            problems.append(
                f"Current state {workflow.current_state} does not match last "
                f"history entry {workflow.state_history[-1].state}"
            )

        if not checkpoint.agents:
            problems.append("Checkpoint has no agents")

        seen = set()
        for agent in checkpoint.agents:
            if agent.agent_id in seen:
                problems.append(f"Duplicate agent id {agent.agent_id}")
            seen.add(agent.agent_id)

        recomputed = self.analyze_recovery_capability(workflow, checkpoint.agents)
        if recomputed.can_resume != checkpoint.recovery.can_resume:
            problems.append(
                f"Recorded can_resume={checkpoint.recovery.can_resume} does not "
                f"match agent and workflow status (expected {recomputed.can_resume})"
            )

        if problems:
            raise CheckpointIntegrityError(checkpoint.id, problems)

        logger.debug(f"Checkpoint {checkpoint.id} passed validation")
        return True

    async def get_checkpoint(self, checkpoint_id: str) -> Optional[Checkpoint]:
        """
        Get a checkpoint.

        Args:
            checkpoint_id: Checkpoint UUID

        Returns:
            Checkpoint if found
        """
        return await self.store.get(checkpoint_id)

    async def list_checkpoints(self) -> List[Checkpoint]:
        """List all loadable checkpoints, oldest first."""
        return await self.store.list_checkpoints()

    async def list_index_entries(self) -> List[CheckpointIndexEntry]:
        """List checkpoint index entries, oldest first."""
        return await self.store.list_index_entries()

    async def get_latest_checkpoint(self) -> Optional[Checkpoint]:
        """
        Get the most recent loadable active checkpoint.

        Index entries are tried newest first. Entries whose file is missing
        or unreadable are skipped so an older checkpoint can still be used.

        Returns:
            Checkpoint with the latest created_at among active ones, or None
        """
        active = sorted(
            (
                entry
                for entry in await self.store.list_index_entries()
                if entry.status == CheckpointStatus.ACTIVE.value
            ),
            key=lambda e: as_utc(e.created_at),
            reverse=True,
        )

        for entry in active:
            try:
                checkpoint = await self.store.get(entry.id)
            except CheckpointError as e:
                logger.warning(f"Skipping unreadable checkpoint {entry.id}: [{e.code}] {e}")
                continue

            if checkpoint is None:
                logger.warning(f"Skipping checkpoint {entry.id}: file not found")
                continue

            if checkpoint.status == CheckpointStatus.ACTIVE.value:
                return checkpoint

        return None

    async def archive_checkpoint(self, checkpoint_id: str) -> None:
        """
        Archive a checkpoint.

        Args:
            checkpoint_id: Checkpoint UUID

        Raises:
            CheckpointNotFoundError: Checkpoint does not exist
        """
        if not await self.store.archive(checkpoint_id):
            raise CheckpointNotFoundError(checkpoint_id)

    async def enforce_checkpoint_limit(self) -> int:
        """
        Archive the oldest active checkpoints beyond max_checkpoints.

        Returns:
            Number of checkpoints archived
        """
        active = sorted(
            (
                entry
                for entry in await self.store.list_index_entries()
                if entry.status == CheckpointStatus.ACTIVE.value
            ),
            key=lambda e: as_utc(e.created_at),
        )

        excess = len(active) - self.config.max_checkpoints
        if excess <= 0:
            return 0

        archived = 0
        for entry in active[:excess]:
            try:
                if await self.store.archive(entry.id):
                    archived += 1
            except CheckpointError as e:
                logger.warning(f"Could not archive checkpoint {entry.id}: [{e.code}] {e}")

        logger.info(
            f"Archived {archived} checkpoints over the limit of "
            f"{self.config.max_checkpoints}"
        )
        return archived

    async def cleanup_expired_checkpoints(self) -> int:
        """
        Delete checkpoints older than the retention horizon.

        Returns:
            Number of checkpoints deleted
        """
        cutoff = utc_now() - timedelta(days=self.config.retention_days)
        deleted = await self.store.delete_older_than(cutoff)

        logger.info(
            f"Retention sweep removed {deleted} checkpoints "
            f"(retention: {self.config.retention_days} days)"
        )
        return deleted
