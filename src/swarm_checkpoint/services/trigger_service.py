"""Event-driven checkpoint creation for workflow hooks."""

import logging
from typing import Any, Optional

from .checkpoint_service import CheckpointManager
from ..config.checkpoint_config import TriggerConfig
from ..core.errors import CheckpointError
from ..models.checkpoint_models import Checkpoint, CheckpointTrigger

logger = logging.getLogger(__name__)


class CheckpointTriggerManager:
    """
    Creates checkpoints in response to workflow events.

    A failed checkpoint is logged and never interrupts the workflow;
    hooks return the created checkpoint, or None when skipped or failed.
    """

    def __init__(
        self,
        checkpoint_manager: CheckpointManager,
        config: Optional[TriggerConfig] = None,
    ):
        """
        Initialize trigger manager.

        Args:
            checkpoint_manager: Checkpoint manager
            config: Trigger configuration
        """
        self.checkpoint_manager = checkpoint_manager
        self.config = config or TriggerConfig()
        self._enabled = True

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable all triggers."""
        self._enabled = enabled
        logger.info(f"Checkpoint triggers {'enabled' if enabled else 'disabled'}")

    def is_enabled(self) -> bool:
        return self._enabled

    async def on_state_transition(
        self, from_state: str, to_state: str, trigger: str
    ) -> Optional[Checkpoint]:
        """
        Checkpoint after a workflow state transition.

        Args:
            from_state: State left
            to_state: State entered
            trigger: Transition trigger

        Returns:
            Created checkpoint if any
        """
        if not self._enabled or not self.config.on_state_transition:
            return None

        return await self._create(
            CheckpointTrigger.STATE_TRANSITION,
            f"State transition: {from_state} -> {to_state} ({trigger})",
        )

    async def on_agent_complete(
        self, agent_id: str, success: bool, result: Any = None
    ) -> Optional[Checkpoint]:
        """
        Checkpoint after an agent finishes.

        Args:
            agent_id: Agent identifier
            success: Whether the agent succeeded
            result: Agent result (not persisted here)

        Returns:
            Created checkpoint if any
        """
        if not self._enabled or not self.config.on_agent_complete:
            return None

        status = "completed" if success else "failed"
        return await self._create(
            CheckpointTrigger.AGENT_COMPLETE, f"Agent {agent_id} {status}"
        )

    async def on_user_approval(
        self, approved: bool, item_type: str, item_id: str
    ) -> Optional[Checkpoint]:
        """
        Checkpoint around a human approval decision.

        Args:
            approved: Whether the item was approved
            item_type: Kind of item (plan, code, deployment...)
            item_id: Item identifier

        Returns:
            Created checkpoint if any
        """
        if not self._enabled or not self.config.on_user_approval:
            return None

        action = "approved" if approved else "rejected"
        return await self._create(
            CheckpointTrigger.APPROVAL_PENDING, f"User {action} {item_type}: {item_id}"
        )

    async def on_error(self, error: Exception, context: str) -> Optional[Checkpoint]:
        """
        Checkpoint after an error.

        Args:
            error: Raised exception
            context: Where the error happened

        Returns:
            Created checkpoint if any
        """
        if not self._enabled or not self.config.on_error:
            return None

        return await self._create(
            CheckpointTrigger.ERROR, f"Error in {context}: {error}"
        )

    async def on_periodic(self) -> Optional[Checkpoint]:
        """Checkpoint on a timer; scheduling is up to the caller."""
        if not self._enabled or not self.config.on_periodic:
            return None

        return await self._create(CheckpointTrigger.PERIODIC, "Periodic checkpoint")

    async def before_destructive_operation(self, operation: str, target: str) -> bool:
        """
        Checkpoint before a destructive operation runs.

        Args:
            operation: Operation name (git_push, deploy...)
            target: What the operation acts on

        Returns:
            True; the operation is never blocked
        """
        if not self._enabled or not self.config.before_destructive:
            return True

        if operation in self.config.destructive_operations:
            await self._create(
                CheckpointTrigger.BEFORE_DESTRUCTIVE, f"Before {operation}: {target}"
            )

        return True

    async def create_manual_checkpoint(self, reason: str) -> Optional[Checkpoint]:
        return await self._create(CheckpointTrigger.MANUAL, reason)

    async def _create(
        self, trigger: CheckpointTrigger, reason: str
    ) -> Optional[Checkpoint]:
        try:
            return await self.checkpoint_manager.create_checkpoint(
                trigger, reason=reason
            )
        except CheckpointError as e:
            logger.error(
                f"Failed to create {trigger.value} checkpoint: [{e.code}] {e.message}"
            )
        except Exception as e:
            logger.error(f"Failed to create {trigger.value} checkpoint: {e}")
        return None

    def get_config(self) -> TriggerConfig:
        """Get a copy of the trigger configuration."""
        return self.config.model_copy(deep=True)

    def update_config(self, **updates: Any) -> None:
        """
        Update trigger configuration.

        Args:
            **updates: TriggerConfig fields to change

        Raises:
            pydantic.ValidationError: Invalid field values
        """
        self.config = TriggerConfig.model_validate(
            {**self.config.model_dump(), **updates}
        )

    def add_destructive_operation(self, operation: str) -> None:
        if operation not in self.config.destructive_operations:
            self.config.destructive_operations.append(operation)

    def remove_destructive_operation(self, operation: str) -> None:
        if operation in self.config.destructive_operations:
            self.config.destructive_operations.remove(operation)
