"""Checkpoint persistence and recovery for the agent swarm orchestrator."""

from typing import Optional

from .config.checkpoint_config import (
    CheckpointConfig,
    CheckpointStoreConfig,
    TriggerConfig,
)
from .core.store import FileCheckpointStore
from .core.interfaces import (
    AgentStateRegistry,
    ContextProvider,
    RestorableAgentRegistry,
    RestorableContextManager,
    RestorableStateGraph,
    StateGraphProvider,
)
from .services.checkpoint_service import CheckpointManager
from .services.recovery_service import RecoveryManager
from .services.trigger_service import CheckpointTriggerManager

__version__ = "0.1.0"

__all__ = [
    "CheckpointConfig",
    "CheckpointStoreConfig",
    "TriggerConfig",
    "FileCheckpointStore",
    "CheckpointManager",
    "RecoveryManager",
    "CheckpointTriggerManager",
    "create_checkpoint_system",
]


def create_checkpoint_system(
    store_config: Optional[CheckpointStoreConfig] = None,
    config: Optional[CheckpointConfig] = None,
    trigger_config: Optional[TriggerConfig] = None,
    state_graph: Optional[RestorableStateGraph] = None,
    agent_registry: Optional[RestorableAgentRegistry] = None,
    context_manager: Optional[RestorableContextManager] = None,
    state_graph_provider: Optional[StateGraphProvider] = None,
    agent_state_registry: Optional[AgentStateRegistry] = None,
    context_provider: Optional[ContextProvider] = None,
):
    """
    Factory function to wire the checkpoint components together.

    The providers feed snapshots to checkpoints created without one, which
    is how every trigger hook creates them.

    Args:
        store_config: Store configuration (defaults from environment)
        config: Checkpoint configuration (defaults from environment)
        trigger_config: Trigger configuration
        state_graph: Optional state machine restored on recovery
        agent_registry: Optional live agent registry restored on recovery
        context_manager: Optional shared context restored on recovery
        state_graph_provider: Optional source of the workflow position
        agent_state_registry: Optional source of agent substates
        context_provider: Optional source of the shared context

    Returns:
        Dictionary with store, manager, recovery and triggers instances
    """
    store = FileCheckpointStore(store_config)
    manager = CheckpointManager(
        store,
        config,
        state_graph_provider=state_graph_provider,
        agent_registry=agent_state_registry,
        context_provider=context_provider,
    )

    return {
        "store": store,
        "manager": manager,
        "recovery": RecoveryManager(
            manager,
            state_graph=state_graph,
            agent_registry=agent_registry,
            context_manager=context_manager,
        ),
        "triggers": CheckpointTriggerManager(manager, trigger_config),
    }
