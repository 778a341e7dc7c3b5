"""Services package for checkpoint management and recovery."""

from .checkpoint_service import CheckpointManager
from .recovery_service import RecoveryManager
from .trigger_service import CheckpointTriggerManager

__all__ = [
    "CheckpointManager",
    "RecoveryManager",
    "CheckpointTriggerManager",
]
