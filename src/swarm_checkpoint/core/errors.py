"""Typed error hierarchy for checkpoint and recovery operations."""

from typing import Any, Dict, List, Optional


class CheckpointError(Exception):
    """Base error for all checkpoint-related failures."""

    code = "CHECKPOINT_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Render the error for API and CLI callers.

        Returns:
            Dictionary with code, message and context
        """
        return {"code": self.code, "message": self.message, "context": self.context}


class CheckpointStoreError(CheckpointError):
    """Raised on store initialization or generic I/O failures."""

    code = "CHECKPOINT_STORE_ERROR"

    def __init__(self, message: str, operation: str):
        super().__init__(message, {"operation": operation})
        self.operation = operation


class CheckpointPathError(CheckpointError):
    """Raised on invalid ids, path traversal or symlinked checkpoint paths."""

    code = "CHECKPOINT_PATH_ERROR"

    def __init__(self, message: str, path: str, reason: str):
        super().__init__(message, {"path": path, "reason": reason})
        self.path = path
        self.reason = reason  # outside_root, symlink, invalid_id


class CheckpointSizeError(CheckpointError):
    """Raised when a size limit or the compression ratio limit is exceeded."""

    code = "CHECKPOINT_SIZE_ERROR"

    def __init__(self, message: str, limit_type: str, limit: float, actual: float):
        super().__init__(
            message, {"limit_type": limit_type, "limit": limit, "actual": actual}
        )
        self.limit_type = limit_type  # checkpoint_size, decompressed_size, compression_ratio
        self.limit = limit
        self.actual = actual


class CheckpointCorruptionError(CheckpointError):
    """Raised when a checkpoint file is not valid JSON or fails the schema."""

    code = "CHECKPOINT_CORRUPTION_ERROR"

    def __init__(self, checkpoint_id: str, message: str):
        super().__init__(message, {"checkpoint_id": checkpoint_id})
        self.checkpoint_id = checkpoint_id


class CompressionError(CheckpointError):
    """Raised when gzip compression or decompression fails."""

    code = "COMPRESSION_ERROR"

    def __init__(self, message: str, operation: str):
        super().__init__(message, {"operation": operation})
        self.operation = operation


class CheckpointIntegrityError(CheckpointError):
    """Raised when semantic validation of a checkpoint fails."""

    code = "CHECKPOINT_INTEGRITY_ERROR"

    def __init__(self, checkpoint_id: str, problems: List[str]):
        super().__init__(
            f"Checkpoint {checkpoint_id} failed integrity validation: "
            + "; ".join(problems),
            {"checkpoint_id": checkpoint_id, "problems": problems},
        )
        self.checkpoint_id = checkpoint_id
        self.problems = problems


class CheckpointNotFoundError(CheckpointError):
    """Raised when an operation requires a checkpoint that does not exist."""

    code = "CHECKPOINT_NOT_FOUND"

    def __init__(self, checkpoint_id: str):
        super().__init__(
            f"Checkpoint not found: {checkpoint_id}", {"checkpoint_id": checkpoint_id}
        )
        self.checkpoint_id = checkpoint_id


class RecoveryError(CheckpointError):
    """Raised when a specific restoration step fails."""

    code = "RECOVERY_ERROR"

    def __init__(self, message: str, checkpoint_id: str, phase: str):
        super().__init__(message, {"checkpoint_id": checkpoint_id, "phase": phase})
        self.checkpoint_id = checkpoint_id
        self.phase = phase  # workflow, agents, context


class CheckpointDisabledError(CheckpointError):
    """Raised when creating a checkpoint while the system is disabled."""

    code = "CHECKPOINT_DISABLED"

    def __init__(self):
        super().__init__("Checkpoint system is disabled")
