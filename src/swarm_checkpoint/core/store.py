"""File-based checkpoint store with path, size and compression-bomb hardening."""

import asyncio
import errno
import gzip
import json
import logging
import os
import re
import zlib
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os
from pydantic import TypeAdapter, ValidationError

from .errors import (
    CheckpointError,
    CheckpointStoreError,
    CheckpointPathError,
    CheckpointSizeError,
    CheckpointCorruptionError,
    CompressionError,
)
from .integrity import as_utc
from ..config.checkpoint_config import CheckpointStoreConfig
from ..models.checkpoint_models import (
    UUID4_PATTERN,
    Checkpoint,
    CheckpointIndexEntry,
    CheckpointStatus,
    CheckpointStoreStats,
    CompressionType,
)

logger = logging.getLogger(__name__)

UUID4_REGEX = re.compile(UUID4_PATTERN)

INDEX_FILENAME = "index.json"
PLAIN_SUFFIX = ".json"
GZIP_SUFFIX = ".json.gz"
TEMP_SUFFIX = ".tmp"

_O_NOFOLLOW = getattr(os, "O_NOFOLLOW", 0)
_INDEX_ADAPTER = TypeAdapter(List[CheckpointIndexEntry])


def _secure_opener(path: str, flags: int) -> int:
    """Open without following symlinks; files we create are owner-only."""
    fd = os.open(path, flags | _O_NOFOLLOW, 0o600)
    if flags & os.O_CREAT and hasattr(os, "fchmod"):
        os.fchmod(fd, 0o600)
    return fd


def _gunzip_bounded(data: bytes, limit: int) -> bytes:
    """
    Decompress a gzip stream without ever producing more than limit + 1 bytes.

    Args:
        data: Gzip-compressed bytes
        limit: Maximum decompressed size

    Returns:
        Decompressed bytes

    Raises:
        CheckpointSizeError: Output exceeds limit
        CompressionError: Stream is invalid, truncated or has trailing data
    """
    decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
    try:
        output = decompressor.decompress(data, limit + 1)
    except zlib.error as e:
        raise CompressionError(
            f"Failed to decompress checkpoint: {e}", "decompress"
        ) from e

    if len(output) > limit:
        raise CheckpointSizeError(
            f"Decompressed checkpoint exceeds maximum size of {limit} bytes",
            "decompressed_size",
            limit,
            len(output),
        )
    if not decompressor.eof:
        raise CompressionError("Truncated gzip stream in checkpoint", "decompress")
    if decompressor.unused_data:
        raise CompressionError("Trailing data after gzip stream", "decompress")

    return output


class FileCheckpointStore:
    """
    Durable checkpoint persistence on the local filesystem.

    One ``<uuid>.json`` or ``<uuid>.json.gz`` file per checkpoint plus an
    ``index.json`` cache. The files are ground truth; the index only speeds
    up listing and can be rebuilt with ``rebuild_from_disk()``.

    Every path is re-validated (inside the base directory, not a symlink)
    right before it is touched.
    """

    def __init__(self, config: Optional[CheckpointStoreConfig] = None):
        """
        Initialize checkpoint store.

        Args:
            config: Store configuration (defaults from environment)
        """
        self.config = config or CheckpointStoreConfig()
        self.base_dir = Path(self.config.base_path).resolve()
        self.index_path = self.base_dir / INDEX_FILENAME
        self._index: Dict[str, CheckpointIndexEntry] = {}

    @property
    def suffix(self) -> str:
        """File suffix for newly written checkpoints."""
        return GZIP_SUFFIX if self.config.compression else PLAIN_SUFFIX

    async def initialize(self) -> None:
        """
        Create the base directory and load the index.

        An unreadable index is replaced by an empty one; it is never fatal.
        """
        try:
            created = not await aiofiles.os.path.exists(self.base_dir)
            await aiofiles.os.makedirs(self.base_dir, mode=0o700, exist_ok=True)
            if created:
                # makedirs applies the umask
                os.chmod(self.base_dir, 0o700)

            if not await aiofiles.os.path.isdir(self.base_dir):
                raise CheckpointStoreError(
                    f"Checkpoint path is not a directory: {self.base_dir}",
                    "initialize",
                )
        except CheckpointStoreError:
            raise
        except OSError as e:
            raise CheckpointStoreError(
                f"Failed to initialize checkpoint store: {e}", "initialize"
            ) from e

        if self.config.index_enabled:
            await self._load_index()

        logger.info(
            f"Checkpoint store ready at {self.base_dir} "
            f"({len(self._index)} indexed checkpoints)"
        )

    # ------------------------------------------------------------------
    # Path safety
    # ------------------------------------------------------------------

    def _validate_checkpoint_id(self, checkpoint_id: str) -> None:
        if not isinstance(checkpoint_id, str) or not UUID4_REGEX.fullmatch(
            checkpoint_id
        ):
            raise CheckpointPathError(
                f"Invalid checkpoint ID format: {checkpoint_id!r}",
                str(checkpoint_id),
                "invalid_id",
            )

    def _validate_path(self, file_path) -> Path:
        """
        Validate a path lies directly inside the base directory.

        Args:
            file_path: Path to check

        Returns:
            Normalized absolute path

        Raises:
            CheckpointPathError: Path escapes the base directory or is a symlink
        """
        candidate = Path(os.path.abspath(file_path))

        if candidate.parent != self.base_dir:
            raise CheckpointPathError(
                f"Path traversal detected: {file_path}", str(file_path), "outside_root"
            )

        if os.path.islink(candidate):
            raise CheckpointPathError(
                f"Symlinks are not allowed: {file_path}", str(file_path), "symlink"
            )

        return candidate

    def _checkpoint_path(self, checkpoint_id: str, suffix: Optional[str] = None) -> Path:
        self._validate_checkpoint_id(checkpoint_id)
        return self._validate_path(self.base_dir / f"{checkpoint_id}{suffix or self.suffix}")

    def _entry_path(self, entry: CheckpointIndexEntry) -> Path:
        path = self._validate_path(entry.path)
        if path.name not in (f"{entry.id}{PLAIN_SUFFIX}", f"{entry.id}{GZIP_SUFFIX}"):
            raise CheckpointPathError(
                f"Index entry path does not belong to checkpoint {entry.id}",
                entry.path,
                "invalid_id",
            )
        return path

    def _candidate_paths(self, checkpoint_id: str) -> List[Path]:
        """Paths a checkpoint may live at, most likely first."""
        self._validate_checkpoint_id(checkpoint_id)

        paths: List[Path] = []
        entry = self._index.get(checkpoint_id)
        if entry is not None:
            paths.append(self._entry_path(entry))

        alternate = PLAIN_SUFFIX if self.config.compression else GZIP_SUFFIX
        for suffix in (self.suffix, alternate):
            path = self._checkpoint_path(checkpoint_id, suffix)
            if path not in paths:
                paths.append(path)

        return paths

    @staticmethod
    def _raise_if_symlink(path: Path, error: OSError) -> None:
        # O_NOFOLLOW reports a swapped-in symlink as ELOOP
        if error.errno == errno.ELOOP:
            raise CheckpointPathError(
                f"Symlinks are not allowed: {path}", str(path), "symlink"
            ) from error

    # ------------------------------------------------------------------
    # Raw file I/O
    # ------------------------------------------------------------------

    async def _write_file(self, path: Path, data: bytes) -> None:
        """Write via a temp file and atomic replace, mode 0600."""
        temp_path = self._validate_path(path.with_name(path.name + TEMP_SUFFIX))
        try:
            async with aiofiles.open(temp_path, "wb", opener=_secure_opener) as f:
                await f.write(data)

            self._validate_path(path)
            await aiofiles.os.replace(temp_path, path)
        except OSError as e:
            self._raise_if_symlink(temp_path, e)
            raise

    async def _read_file(self, path: Path) -> bytes:
        """Read a checkpoint file, refusing anything over max_checkpoint_size."""
        limit = self.config.max_checkpoint_size
        path = self._validate_path(path)

        try:
            stat = await aiofiles.os.stat(path)
            if stat.st_size > limit:
                raise CheckpointSizeError(
                    f"Checkpoint file exceeds maximum size of {limit} bytes",
                    "checkpoint_size",
                    limit,
                    stat.st_size,
                )

            async with aiofiles.open(path, "rb", opener=_secure_opener) as f:
                raw = await f.read(limit + 1)
        except OSError as e:
            self._raise_if_symlink(path, e)
            raise

        # The file may have grown after stat
        if len(raw) > limit:
            raise CheckpointSizeError(
                f"Checkpoint file exceeds maximum size of {limit} bytes",
                "checkpoint_size",
                limit,
                len(raw),
            )

        return raw

    async def _compress(self, data: bytes) -> bytes:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, gzip.compress, data)
        except Exception as e:
            raise CompressionError(
                f"Failed to compress checkpoint: {e}", "compress"
            ) from e

    async def _decompress(self, raw: bytes) -> bytes:
        """Gunzip with decompressed-size and expansion-ratio checks."""
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(
            None, _gunzip_bounded, raw, self.config.max_decompressed_size
        )

        ratio = len(data) / max(len(raw), 1)
        if ratio > self.config.max_compression_ratio:
            raise CheckpointSizeError(
                f"Suspicious compression ratio detected ({ratio:.1f}:1)",
                "compression_ratio",
                self.config.max_compression_ratio,
                ratio,
            )

        return data

    def _parse(self, checkpoint_id: str, data: bytes) -> Checkpoint:
        try:
            payload = json.loads(data.decode("utf-8"))
        except (ValueError, RecursionError) as e:
            raise CheckpointCorruptionError(
                checkpoint_id, f"Invalid JSON in checkpoint file: {e}"
            ) from e

        try:
            checkpoint = Checkpoint.model_validate(payload)
        except ValidationError as e:
            raise CheckpointCorruptionError(
                checkpoint_id, f"Checkpoint schema validation failed: {e}"
            ) from e

        if checkpoint.id != checkpoint_id:
            raise CheckpointCorruptionError(
                checkpoint_id,
                f"Checkpoint file {checkpoint_id} contains checkpoint {checkpoint.id}",
            )

        return checkpoint

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save(self, checkpoint: Checkpoint) -> None:
        """
        Persist a checkpoint.

        Stamps ``metadata.compression_type`` and ``metadata.checkpoint_size``
        on the passed checkpoint.

        Args:
            checkpoint: Checkpoint to save

        Raises:
            CheckpointPathError: Invalid id, traversal or symlink
            CheckpointSizeError: Serialized checkpoint too large
            CompressionError: Gzip failed
            CheckpointStoreError: Write failed
        """
        path = self._checkpoint_path(checkpoint.id)

        compression = (
            CompressionType.GZIP if self.config.compression else CompressionType.NONE
        )
        checkpoint.metadata.compression_type = compression.value

        buffer = checkpoint.model_dump_json(indent=2).encode("utf-8")

        limit = self.config.max_checkpoint_size
        if len(buffer) > limit:
            raise CheckpointSizeError(
                f"Checkpoint exceeds maximum size: {len(buffer)} > {limit}",
                "checkpoint_size",
                limit,
                len(buffer),
            )

        if self.config.compression:
            buffer = await self._compress(buffer)

        checkpoint.metadata.checkpoint_size = len(buffer)

        try:
            await self._write_file(path, buffer)
            await self._remove_stale_copy(checkpoint.id, path)
        except CheckpointError:
            raise
        except OSError as e:
            raise CheckpointStoreError(
                f"Failed to save checkpoint {checkpoint.id}: {e}", "save"
            ) from e

        if self.config.index_enabled:
            self._index[checkpoint.id] = self._make_entry(checkpoint, path)
            await self._save_index("save")

        logger.info(
            f"Saved checkpoint {checkpoint.id} "
            f"({len(buffer)} bytes, {compression.value})"
        )

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        """
        Load a checkpoint by id.

        Args:
            checkpoint_id: Checkpoint UUID

        Returns:
            Checkpoint, or None if no file exists

        Raises:
            CheckpointPathError: Invalid id, traversal or symlink
            CheckpointSizeError: File, decompressed payload or ratio too large
            CompressionError: Gunzip failed
            CheckpointCorruptionError: Invalid JSON or schema mismatch
            CheckpointStoreError: Read failed
        """
        loaded = await self._load(checkpoint_id)
        return loaded[0] if loaded else None

    async def _load(self, checkpoint_id: str) -> Optional[Tuple[Checkpoint, Path]]:
        for path in self._candidate_paths(checkpoint_id):
            if not await aiofiles.os.path.exists(path):
                continue

            try:
                raw = await self._read_file(path)
            except CheckpointError:
                raise
            except FileNotFoundError:
                continue
            except OSError as e:
                raise CheckpointStoreError(
                    f"Failed to load checkpoint {checkpoint_id}: {e}", "load"
                ) from e

            data = await self._decompress(raw) if path.name.endswith(GZIP_SUFFIX) else raw
            checkpoint = self._parse(checkpoint_id, data)
            checkpoint.metadata.checkpoint_size = len(raw)

            logger.debug(f"Loaded checkpoint {checkpoint_id} from {path.name}")
            return checkpoint, path

        return None

    async def list_checkpoints(self) -> List[Checkpoint]:
        """
        List all checkpoints, oldest first.

        Uses the index when populated, otherwise scans the directory.
        A checkpoint that fails to load is skipped, never fatal.

        Returns:
            Loadable checkpoints
        """
        use_index = self.config.index_enabled and bool(self._index)
        ids = list(self._index) if use_index else await self._scan_ids()

        checkpoints = [checkpoint for checkpoint, _ in await self._load_many(ids, use_index)]
        checkpoints.sort(key=lambda c: as_utc(c.created_at))
        return checkpoints

    async def _load_many(
        self, ids: List[str], prune_index: bool
    ) -> List[Tuple[Checkpoint, Path]]:
        loaded: List[Tuple[Checkpoint, Path]] = []
        stale: List[str] = []

        for checkpoint_id in ids:
            try:
                result = await self._load(checkpoint_id)
            except CheckpointError as e:
                logger.warning(
                    f"Skipping unreadable checkpoint {checkpoint_id}: "
                    f"[{e.code}] {e.message}"
                )
                continue

            if result is None:
                stale.append(checkpoint_id)
                continue

            loaded.append(result)

        if prune_index and stale:
            for checkpoint_id in stale:
                self._index.pop(checkpoint_id, None)
            logger.warning(f"Pruned {len(stale)} stale entries from checkpoint index")
            await self._save_index("list")

        return loaded

    async def _scan_ids(self) -> List[str]:
        try:
            names = await aiofiles.os.listdir(self.base_dir)
        except OSError as e:
            raise CheckpointStoreError(
                f"Failed to list checkpoints: {e}", "list"
            ) from e

        ids: List[str] = []
        for name in sorted(names):
            if name.endswith(GZIP_SUFFIX):
                stem = name[: -len(GZIP_SUFFIX)]
            elif name.endswith(PLAIN_SUFFIX):
                stem = name[: -len(PLAIN_SUFFIX)]
            else:
                continue

            if UUID4_REGEX.fullmatch(stem) and stem not in ids:
                ids.append(stem)

        return ids

    async def list_index_entries(self) -> List[CheckpointIndexEntry]:
        """
        List index entries without loading full checkpoints when possible.

        Returns:
            Index entries, oldest first
        """
        if self.config.index_enabled and self._index:
            return sorted(self._index.values(), key=lambda e: as_utc(e.created_at))

        return [
            self._make_entry(checkpoint, path)
            for checkpoint, path in await self._load_many(await self._scan_ids(), False)
        ]

    async def delete(self, checkpoint_id: str) -> bool:
        """
        Delete a checkpoint.

        Args:
            checkpoint_id: Checkpoint UUID

        Returns:
            True if a file was removed, False if none existed
        """
        removed = False

        for path in self._candidate_paths(checkpoint_id):
            try:
                await aiofiles.os.remove(self._validate_path(path))
                removed = True
            except FileNotFoundError:
                continue
            except OSError as e:
                raise CheckpointStoreError(
                    f"Failed to delete checkpoint {checkpoint_id}: {e}", "delete"
                ) from e

        if checkpoint_id in self._index:
            del self._index[checkpoint_id]
            if self.config.index_enabled:
                await self._save_index("delete")

        if removed:
            logger.info(f"Deleted checkpoint {checkpoint_id}")

        return removed

    async def _remove_stale_copy(self, checkpoint_id: str, current: Path) -> None:
        """Remove a copy written earlier with the other compression setting."""
        for path in self._candidate_paths(checkpoint_id):
            if path == current:
                continue
            try:
                await aiofiles.os.remove(self._validate_path(path))
                logger.debug(f"Removed stale copy {path.name}")
            except FileNotFoundError:
                continue

    async def archive(self, checkpoint_id: str) -> bool:
        """
        Mark a checkpoint archived by re-saving it in full.

        Args:
            checkpoint_id: Checkpoint UUID

        Returns:
            True if archived, False if not found
        """
        checkpoint = await self.get(checkpoint_id)
        if checkpoint is None:
            return False

        checkpoint.status = CheckpointStatus.ARCHIVED.value
        await self.save(checkpoint)

        logger.info(f"Archived checkpoint {checkpoint_id}")
        return True

    async def delete_older_than(self, date: datetime) -> int:
        """
        Delete checkpoints created before a date.

        Args:
            date: Cutoff (naive values are taken as UTC)

        Returns:
            Number of checkpoints deleted
        """
        cutoff = as_utc(date)
        deleted = 0

        for checkpoint in await self.list_checkpoints():
            if as_utc(checkpoint.created_at) < cutoff:
                if await self.delete(checkpoint.id):
                    deleted += 1

        if deleted:
            logger.info(f"Deleted {deleted} checkpoints older than {cutoff.isoformat()}")

        return deleted

    async def get_stats(self) -> CheckpointStoreStats:
        """
        Get store statistics.

        Returns:
            Count, total persisted size, oldest and newest checkpoint ids
        """
        checkpoints = await self.list_checkpoints()

        if not checkpoints:
            return CheckpointStoreStats()

        return CheckpointStoreStats(
            count=len(checkpoints),
            total_size=sum(c.metadata.checkpoint_size for c in checkpoints),
            oldest_checkpoint=checkpoints[0].id,
            newest_checkpoint=checkpoints[-1].id,
        )

    async def rebuild_from_disk(self) -> int:
        """
        Rebuild the index from the checkpoint files on disk.

        Returns:
            Number of checkpoints indexed
        """
        self._index = {}

        for checkpoint, path in await self._load_many(await self._scan_ids(), False):
            self._index[checkpoint.id] = self._make_entry(checkpoint, path)

        if self.config.index_enabled:
            await self._save_index("rebuild")

        logger.info(f"Rebuilt checkpoint index with {len(self._index)} entries")
        return len(self._index)

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    def _make_entry(self, checkpoint: Checkpoint, path: Path) -> CheckpointIndexEntry:
        return CheckpointIndexEntry(
            id=checkpoint.id,
            created_at=checkpoint.created_at,
            trigger=checkpoint.trigger,
            status=checkpoint.status,
            state=checkpoint.workflow.current_state,
            can_resume=checkpoint.recovery.can_resume,
            size=checkpoint.metadata.checkpoint_size,
            path=str(path),
        )

    async def _load_index(self) -> None:
        try:
            path = self._validate_path(self.index_path)
            if not await aiofiles.os.path.exists(path):
                self._index = {}
                return

            async with aiofiles.open(path, "rb", opener=_secure_opener) as f:
                raw = await f.read()

            entries = _INDEX_ADAPTER.validate_json(raw)
            self._index = {entry.id: entry for entry in entries}

        except (CheckpointPathError, OSError, ValidationError) as e:
            logger.warning(f"Checkpoint index unreadable, starting empty: {e}")
            self._index = {}

    async def _save_index(self, operation: str) -> None:
        entries = [entry.model_dump(mode="json") for entry in self._index.values()]
        data = json.dumps(entries, indent=2).encode("utf-8")

        try:
            await self._write_file(self._validate_path(self.index_path), data)
        except CheckpointError:
            raise
        except OSError as e:
            raise CheckpointStoreError(
                f"Failed to write checkpoint index: {e}", operation
            ) from e
