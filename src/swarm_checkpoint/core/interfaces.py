"""Interfaces of the orchestrator components checkpoints are taken from and restored into."""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models.checkpoint_models import (
    AgentRestoreState,
    AgentStateSnapshot,
    ContextSnapshot,
    StateHistoryEntry,
    WorkflowStateSnapshot,
)


class RestorableStateGraph(ABC):
    """Workflow state machine that can be rebuilt from a checkpoint."""

    @abstractmethod
    async def reset(self) -> None:
        """Return the state machine to its initial state."""
        pass

    @abstractmethod
    async def transition_to(self, state: str, trigger: str) -> None:
        """
        Move the state machine directly to a state.

        Args:
            state: Target state
            trigger: Reason recorded for the transition
        """
        pass

    @abstractmethod
    def record_history(self, entry: StateHistoryEntry) -> None:
        """
        Append an entry to the state history without running its side effects.

        Args:
            entry: Recorded history entry
        """
        pass

    @abstractmethod
    def set_replay_mode(self, enabled: bool) -> None:
        """
        Toggle single-step replay.

        Args:
            enabled: Whether the operator advances the machine manually
        """
        pass


class RestorableAgent(ABC):
    """Live agent whose execution substate can be restored."""

    @abstractmethod
    async def restore_state(self, state: AgentRestoreState) -> None:
        """
        Restore agent execution state.

        Args:
            state: Status, payloads and usage to restore
        """
        pass


class RestorableAgentRegistry(ABC):
    """Lookup of live agents by id."""

    @abstractmethod
    def get_agent(self, agent_id: str) -> Optional[RestorableAgent]:
        """
        Get a live agent.

        Args:
            agent_id: Agent identifier

        Returns:
            Agent if registered, None otherwise
        """
        pass


class RestorableContextManager(ABC):
    """Owner of the shared agent context."""

    @abstractmethod
    async def restore(self, context: ContextSnapshot) -> None:
        """
        Replace the shared context.

        Args:
            context: Project, session, task, work breakdown, lessons and decisions
        """
        pass


class StateGraphProvider(ABC):
    """Source of the current workflow position for checkpoint capture."""

    @abstractmethod
    def get_workflow_snapshot(self) -> WorkflowStateSnapshot:
        pass


class AgentStateRegistry(ABC):
    """Source of all agent substates for checkpoint capture."""

    @abstractmethod
    def get_agent_snapshots(self) -> List[AgentStateSnapshot]:
        pass


class ContextProvider(ABC):
    """Source of the shared context for checkpoint capture."""

    @abstractmethod
    def get_context_snapshot(self) -> ContextSnapshot:
        pass
