"""Configuration package for the checkpoint system."""

from .checkpoint_config import CheckpointConfig, CheckpointStoreConfig, TriggerConfig

__all__ = [
    "CheckpointConfig",
    "CheckpointStoreConfig",
    "TriggerConfig",
]
