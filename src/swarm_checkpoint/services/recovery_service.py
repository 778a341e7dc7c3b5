"""Recovery service for rebuilding live engine state from checkpoints."""

import logging
from typing import Optional, List, Dict, Any

from .checkpoint_service import CheckpointManager
from ..core.errors import CheckpointError, CheckpointIntegrityError, RecoveryError
from ..core.integrity import utc_now
from ..core.interfaces import (
    RestorableAgentRegistry,
    RestorableContextManager,
    RestorableStateGraph,
)
from ..models.checkpoint_models import (
    AgentRestoreState,
    AgentStatus,
    Checkpoint,
    RecoveryOptions,
    RecoveryPoint,
    RecoveryResult,
    RecoveryStatus,
)

logger = logging.getLogger(__name__)

RECOVERY_TRIGGER = "recovery"


class RecoveryManager:
    """
    Recovery manager for resuming interrupted workflows.

    Restores the state graph, agents and shared context from a checkpoint
    and keeps a history of recovery attempts. Collaborators are optional;
    whatever is not wired is reported as a warning in the result.
    """

    def __init__(
        self,
        checkpoint_manager: CheckpointManager,
        state_graph: Optional[RestorableStateGraph] = None,
        agent_registry: Optional[RestorableAgentRegistry] = None,
        context_manager: Optional[RestorableContextManager] = None,
    ):
        """
        Initialize recovery manager.

        Args:
            checkpoint_manager: Checkpoint manager
            state_graph: Optional workflow state machine
            agent_registry: Optional live agent registry
            context_manager: Optional shared context owner
        """
        self.checkpoint_manager = checkpoint_manager
        self.state_graph = state_graph
        self.agent_registry = agent_registry
        self.context_manager = context_manager
        self._recovery_history: List[Dict[str, Any]] = []

    async def recover(self, options: RecoveryOptions) -> RecoveryResult:
        """
        Recover engine state from a checkpoint.

        Args:
            options: Recovery request

        Returns:
            Recovery result; failures are reported in ``errors``, not raised
        """
        logger.info(
            f"Recovering from checkpoint {options.checkpoint_id} "
            f"(skip_failed_agent={options.skip_failed_agent}, "
            f"reset_to_state={options.reset_to_state}, dry_run={options.dry_run})"
        )

        result = await self._recover(options)
        self._record(options, result)

        if result.success:
            logger.info(
                f"Recovered checkpoint {options.checkpoint_id} to state "
                f"{result.restored_state} ({len(result.warnings)} warnings)"
            )
        else:
            logger.warning(
                f"Recovery from checkpoint {options.checkpoint_id} failed: "
                f"{'; '.join(result.errors)}"
            )

        return result

    async def _recover(self, options: RecoveryOptions) -> RecoveryResult:
        checkpoint_id = options.checkpoint_id

        try:
            checkpoint = await self.checkpoint_manager.get_checkpoint(checkpoint_id)
        except CheckpointError as e:
            return RecoveryResult(success=False, errors=[f"[{e.code}] {e.message}"])

        if checkpoint is None:
            return RecoveryResult(
                success=False, errors=[f"Checkpoint {checkpoint_id} not found"]
            )

        try:
            self.checkpoint_manager.validate(checkpoint)
        except CheckpointIntegrityError as e:
            return RecoveryResult(
                success=False,
                checkpoint=checkpoint,
                errors=[
                    "Checkpoint integrity validation failed: " + "; ".join(e.problems)
                ],
            )
        except CheckpointError as e:
            return RecoveryResult(
                success=False, checkpoint=checkpoint, errors=[f"[{e.code}] {e.message}"]
            )

        # The manager's verdict stands unless the caller explicitly overrides it
        if not checkpoint.recovery.can_resume and not (
            options.skip_failed_agent or options.reset_to_state
        ):
            return RecoveryResult(
                success=False,
                checkpoint=checkpoint,
                errors=list(checkpoint.recovery.blockers),
            )

        target_state = (
            options.reset_to_state
            or checkpoint.recovery.resume_from_state
            or checkpoint.workflow.current_state
        )

        if options.dry_run:
            return RecoveryResult(
                success=True,
                checkpoint=checkpoint,
                restored_state=target_state,
                warnings=[
                    f"Dry run: would restore state {target_state}, no changes made"
                ],
            )

        warnings: List[str] = []
        skipped_agents: List[str] = []

        try:
            await self._restore_workflow(checkpoint, target_state, warnings)
            await self._restore_agents(checkpoint, options, skipped_agents, warnings)
            await self._restore_context(checkpoint, warnings)
        except RecoveryError as e:
            return RecoveryResult(
                success=False,
                checkpoint=checkpoint,
                restored_state=target_state,
                skipped_agents=skipped_agents,
                warnings=warnings,
                errors=[f"[{e.phase}] {e.message}"],
            )

        if options.replay_mode and self.state_graph:
            self.state_graph.set_replay_mode(True)
            warnings.append(
                "Replay mode enabled: advance the workflow manually step by step"
            )

        return RecoveryResult(
            success=True,
            checkpoint=checkpoint,
            restored_state=target_state,
            skipped_agents=skipped_agents,
            warnings=warnings,
        )

    async def _restore_workflow(
        self, checkpoint: Checkpoint, target_state: str, warnings: List[str]
    ) -> None:
        if self.state_graph is None:
            warnings.append("No state graph configured, workflow state not restored")
            return

        try:
            await self.state_graph.reset()
            await self.state_graph.transition_to(target_state, RECOVERY_TRIGGER)

            # Audit only; replaying history must not re-run transitions
            for entry in checkpoint.workflow.state_history:
                self.state_graph.record_history(entry)
        except Exception as e:
            raise RecoveryError(
                f"Failed to restore workflow state {target_state}: {e}",
                checkpoint.id,
                "workflow",
            ) from e

    async def _restore_agents(
        self,
        checkpoint: Checkpoint,
        options: RecoveryOptions,
        skipped_agents: List[str],
        warnings: List[str],
    ) -> None:
        if self.agent_registry is None:
            warnings.append("No agent registry configured, agent states not restored")
            return

        for snapshot in checkpoint.agents:
            agent = self.agent_registry.get_agent(snapshot.agent_id)
            if agent is None:
                warnings.append(f"Agent {snapshot.agent_id} not found in registry")
                continue

            if options.skip_failed_agent and snapshot.status == AgentStatus.FAILED.value:
                skipped_agents.append(snapshot.agent_id)
                logger.info(f"Skipping failed agent {snapshot.agent_id}")
                continue

            # A run that was in flight no longer exists after a restart
            status = (
                AgentStatus.PENDING.value
                if snapshot.status == AgentStatus.RUNNING.value
                else snapshot.status
            )

            try:
                await agent.restore_state(
                    AgentRestoreState(
                        status=status,
                        input=snapshot.input,
                        output=snapshot.output,
                        attempts=snapshot.attempts,
                        token_usage=snapshot.token_usage,
                    )
                )
            except Exception as e:
                logger.warning(f"Failed to restore agent {snapshot.agent_id}: {e}")
                warnings.append(f"Failed to restore agent {snapshot.agent_id}: {e}")

    async def _restore_context(self, checkpoint: Checkpoint, warnings: List[str]) -> None:
        if self.context_manager is None:
            warnings.append("No context manager configured, context not restored")
            return

        try:
            await self.context_manager.restore(checkpoint.context.model_copy(deep=True))
        except Exception as e:
            raise RecoveryError(
                f"Failed to restore context: {e}", checkpoint.id, "context"
            ) from e

    def _record(self, options: RecoveryOptions, result: RecoveryResult) -> None:
        self._recovery_history.append(
            {
                "timestamp": utc_now(),
                "checkpoint_id": options.checkpoint_id,
                "success": result.success,
                "dry_run": options.dry_run,
                "restored_state": result.restored_state,
                "skipped_agents": list(result.skipped_agents),
                "errors": list(result.errors),
            }
        )

    async def attempt_auto_recovery(self) -> Optional[RecoveryResult]:
        """
        Recover from the latest checkpoint at startup.

        Returns:
            Recovery result, or None when there is nothing to recover
        """
        checkpoint = await self.checkpoint_manager.get_latest_checkpoint()

        if checkpoint is None:
            logger.info("No checkpoint found, starting fresh")
            return None

        if checkpoint.workflow.current_state == self.checkpoint_manager.config.complete_state:
            logger.info(
                f"Latest checkpoint {checkpoint.id} is {checkpoint.workflow.current_state}, "
                f"nothing to recover"
            )
            return None

        return await self.recover(
            RecoveryOptions(checkpoint_id=checkpoint.id, skip_failed_agent=False)
        )

    async def get_recovery_status(self, checkpoint_id: str) -> RecoveryStatus:
        """
        Diagnose whether a checkpoint can be recovered.

        Args:
            checkpoint_id: Checkpoint UUID

        Returns:
            Verdict, blockers and suggested recovery options
        """
        checkpoint = await self.checkpoint_manager.get_checkpoint(checkpoint_id)

        if checkpoint is None:
            return RecoveryStatus(can_recover=False, blockers=["Checkpoint not found"])

        suggestions: List[str] = []
        for blocker in checkpoint.recovery.blockers:
            if "exceeded retry limit" in blocker:
                suggestions.append(
                    "Use skip_failed_agent to continue without the failed agent"
                )
            elif "ERROR state" in blocker or "ABORTED state" in blocker:
                suggestions.append(
                    "Use reset_to_state to roll back to a state before the failure"
                )
            elif "was in progress" in blocker:
                suggestions.append("The in-progress agent will be restarted as pending")

        return RecoveryStatus(
            can_recover=checkpoint.recovery.can_resume,
            blockers=list(checkpoint.recovery.blockers),
            suggestions=list(dict.fromkeys(suggestions)),
        )

    async def list_recovery_points(self) -> List[RecoveryPoint]:
        """
        List checkpoints available for recovery.

        Returns:
            Lightweight recovery points, oldest first
        """
        return [
            RecoveryPoint(
                id=entry.id,
                created_at=entry.created_at,
                trigger=entry.trigger,
                state=entry.state,
                can_resume=entry.can_resume,
            )
            for entry in await self.checkpoint_manager.list_index_entries()
        ]

    def get_recovery_history(self) -> List[Dict[str, Any]]:
        """
        Get recovery attempts made by this manager.

        Returns:
            List of recovery records, oldest first
        """
        return list(self._recovery_history)
