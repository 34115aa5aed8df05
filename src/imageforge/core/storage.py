"""Two-tier artifact store with a file-backed metadata index.

This module keeps artifact persistence out of ``imageforge.api.main`` so the
route handlers only deal with HTTP concerns while the store remains testable
as a small unit.

Layout
------
- ``metadata_dir/<id>.json``: one :class:`ArtifactDescriptor` per artifact.
  This index is the single source of truth for whether an artifact exists.
- local tier (``images_dir/<filename>``): every binary, written first.
- remote tier (bucket object ``<filename>``): best-effort public mirror.

Save Order
----------
The local write happens first and is required: if it fails, ``save`` fails.
The remote upload is attempted afterwards and its failure only downgrades the
artifact's URL to the local tier.  The upload step returns an explicit
:class:`UploadOutcome` so the fallback is a visible branch in ``save``.

Deletion and Retention
----------------------
``delete`` removes the local binary, the remote object and the metadata record
independently; a failure in one is logged and does not stop the others.  The
artifact counts as deleted once its metadata record is gone.

``cleanup`` and ``cleanup_older_than`` work from a ``list`` snapshot, so an
artifact saved while a cleanup is running is never one of its targets.

Two saves under the content-hash policy with identical bytes share one binary.
``delete`` leaves a binary in place while any other metadata record still
names it; the last artifact referencing it removes it.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from imageforge.core.artifacts import ArtifactDescriptor, NamingPolicy, make_filename
from imageforge.core.local_tier import LocalTier
from imageforge.core.remote_tier import RemoteTier

if TYPE_CHECKING:
    from imageforge.core.config import ImageforgeConfig

logger = logging.getLogger(__name__)


class LocalWriteError(OSError):
    """The local tier or metadata index could not be written."""


class DeleteStatus(str, Enum):
    """Result of :meth:`ArtifactStore.delete`."""

    DELETED = "deleted"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadOutcome:
    """Which tier an artifact's URL comes from after the upload step.

    Attributes:
        tier: ``"remote"`` if the upload succeeded, otherwise ``"local"``.
        url: URL to record in the descriptor.
        error: The remote failure, if there was one.
    """

    tier: Literal["remote", "local"]
    url: str
    error: Exception | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArtifactStore:
    """Persist binary artifacts and their metadata across two tiers.

    Attributes:
        metadata_dir: Directory holding ``<id>.json`` records.
        local_tier: Filesystem tier; the synchronous write path.
        remote_tier: Optional remote tier; ``None`` disables uploads.
    """

    def __init__(
        self,
        metadata_dir: Path,
        local_tier: LocalTier,
        remote_tier: RemoteTier | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.metadata_dir = Path(metadata_dir)
        self.local_tier = local_tier
        self.remote_tier = remote_tier
        self._clock = clock
        self.ensure_directories()

    @classmethod
    def from_config(cls, config: ImageforgeConfig) -> ArtifactStore:
        """Build a store from application configuration.

        The remote tier is only constructed when ``config.remote_enabled`` is
        set; the storage client is created here, once, from the configured
        credential source.  If the client cannot be built (for example no
        credentials are available) the store runs local-only.
        """
        from imageforge.core.remote_tier import GcsRemoteTier, build_storage_client

        local_tier = LocalTier(config.images_dir, url_prefix=config.local_url_prefix)

        remote_tier = None
        if config.remote_enabled:
            try:
                client = build_storage_client(config.credential_source, project=config.gcs_project)
                remote_tier = GcsRemoteTier(
                    client,
                    config.bucket_name,
                    timeout=config.remote_timeout_seconds,
                )
            except Exception as e:
                logger.warning(f"Remote tier unavailable, storing artifacts locally only: {e}")

        return cls(config.metadata_dir, local_tier, remote_tier)

    def ensure_directories(self) -> None:
        self.metadata_dir.mkdir(parents=True, exist_ok=True)
        self.local_tier.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized metadata directory: {self.metadata_dir}")

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(
        self,
        content: bytes,
        prompt: str | None = None,
        mime_type: str = "image/png",
        naming: NamingPolicy = NamingPolicy.PROMPT_TIMESTAMP,
    ) -> ArtifactDescriptor:
        """Persist ``content`` and return its descriptor.

        Args:
            content: Raw artifact bytes.
            prompt: Originating prompt, ``None`` for plain uploads.
            mime_type: MIME type of ``content``.
            naming: Filename policy; content hash for deduplicating uploads,
                prompt plus timestamp for generations.

        Returns:
            The persisted :class:`ArtifactDescriptor`.

        Raises:
            LocalWriteError: If the binary or the metadata record cannot be
                written locally.
        """
        artifact_id = str(uuid.uuid4())
        created_at = self._clock()
        filename = make_filename(naming, content, prompt, created_at, mime_type)

        try:
            local_path = self.local_tier.write(filename, content)
        except OSError as e:
            raise LocalWriteError(f"Failed to write {filename} to the local tier: {e}") from e
        logger.info(f"Image saved locally to: {local_path}")

        outcome = self._upload(artifact_id, filename, content, mime_type, prompt, created_at)
        if outcome.tier == "local":
            logger.warning(
                f"Remote upload failed for {filename}, using local tier as fallback: {outcome.error}"
            )

        descriptor = ArtifactDescriptor(
            id=artifact_id,
            prompt=prompt,
            created_at=created_at,
            filename=filename,
            mime_type=mime_type,
            size=len(content),
            url=outcome.url,
        )
        self._write_record(descriptor)
        logger.info(f"Saved artifact {artifact_id} ({filename}, {len(content)} bytes)")
        return descriptor

    def _upload(
        self,
        artifact_id: str,
        filename: str,
        content: bytes,
        mime_type: str,
        prompt: str | None,
        created_at: datetime,
    ) -> UploadOutcome:
        local_url = self.local_tier.url_for(filename)
        if self.remote_tier is None:
            return UploadOutcome(tier="local", url=local_url)

        metadata = {
            "id": artifact_id,
            "prompt": prompt or "",
            "generatedAt": created_at.isoformat(),
        }
        try:
            url = self.remote_tier.upload(filename, content, mime_type, metadata)
        except Exception as e:
            return UploadOutcome(tier="local", url=local_url, error=e)
        return UploadOutcome(tier="remote", url=url)

    def _record_path(self, artifact_id: str) -> Path:
        return self.metadata_dir / f"{artifact_id}.json"

    def _write_record(self, descriptor: ArtifactDescriptor) -> None:
        target = self._record_path(descriptor.id)
        tmp_path = self.metadata_dir / f".{descriptor.id}.json.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as handle:
                handle.write(descriptor.to_json())
            os.replace(tmp_path, target)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise LocalWriteError(f"Failed to write metadata for {descriptor.id}: {e}") from e

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, artifact_id: str) -> ArtifactDescriptor | None:
        """Return the descriptor for ``artifact_id``, or ``None`` if unknown.

        Ids that are not UUIDs are treated as unknown, which also keeps
        arbitrary path fragments out of the metadata directory lookup.
        """
        try:
            uuid.UUID(artifact_id)
        except (TypeError, ValueError):
            return None

        path = self._record_path(artifact_id)
        if not path.exists():
            return None
        try:
            return ArtifactDescriptor.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable metadata record {path.stem}: {e}")
            return None

    def list(self, limit: int | None = None) -> list[ArtifactDescriptor]:
        """Return descriptors newest first.

        Records that cannot be read or parsed are skipped and logged; one bad
        file never aborts the listing.

        Args:
            limit: Maximum number of descriptors to return; ``None`` for all.

        Returns:
            Descriptors sorted by ``created_at`` descending.
        """
        if limit is not None and limit <= 0:
            return []

        descriptors: list[ArtifactDescriptor] = []
        for path in self.metadata_dir.glob("*.json"):
            try:
                descriptors.append(
                    ArtifactDescriptor.model_validate_json(path.read_text(encoding="utf-8"))
                )
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping corrupt metadata record {path.stem}: {e}")

        descriptors.sort(key=lambda d: d.created_at, reverse=True)
        if limit is not None:
            return descriptors[:limit]
        return descriptors

    def read_bytes(self, descriptor: ArtifactDescriptor) -> bytes:
        """Read an artifact's content from the local tier.

        Raises:
            FileNotFoundError: If the local binary no longer exists.
        """
        return self.local_tier.read(descriptor.filename)

    # ------------------------------------------------------------------
    # Deletion and retention
    # ------------------------------------------------------------------

    def delete(self, artifact_id: str) -> DeleteStatus:
        """Delete an artifact from both tiers and the metadata index.

        The binary is kept when another artifact still references the same
        filename.

        Returns:
            ``NOT_FOUND`` for an unknown id, ``DELETED`` once the metadata
            record is gone, ``FAILED`` if the metadata record could not be
            removed.
        """
        descriptor = self.get(artifact_id)
        if descriptor is None:
            return DeleteStatus.NOT_FOUND

        if self._is_shared(descriptor):
            logger.info(f"Keeping binary {descriptor.filename}, still referenced by another artifact")
        else:
            self._delete_binaries(descriptor.filename)

        try:
            self._record_path(artifact_id).unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete metadata record {artifact_id}: {e}", exc_info=True)
            return DeleteStatus.FAILED

        logger.info(f"Deleted artifact {artifact_id}")
        return DeleteStatus.DELETED

    def _is_shared(self, descriptor: ArtifactDescriptor) -> bool:
        return any(
            other.filename == descriptor.filename and other.id != descriptor.id
            for other in self.list()
        )

    def _delete_binaries(self, filename: str) -> None:
        try:
            self.local_tier.delete(filename)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to delete local binary {filename}: {e}")

        if self.remote_tier is not None:
            try:
                self.remote_tier.delete(filename)
            except Exception as e:
                logger.warning(f"Failed to delete remote object {filename}: {e}")

    def cleanup(self, retention_count: int) -> int:
        """Delete every artifact beyond the ``retention_count`` newest.

        Returns:
            Number of artifacts targeted for deletion.  Individual failures
            are logged, not subtracted.

        Raises:
            ValueError: If ``retention_count`` is negative.
        """
        if retention_count < 0:
            raise ValueError(f"retention_count must be >= 0, got {retention_count}")

        targets = self.list()[retention_count:]
        self._delete_all(targets)
        if targets:
            logger.info(f"Cleanup removed {len(targets)} artifacts beyond the newest {retention_count}")
        return len(targets)

    def cleanup_older_than(self, max_age: timedelta) -> int:
        """Delete every artifact created before ``now - max_age``.

        Returns:
            Number of artifacts targeted for deletion.
        """
        cutoff = self._clock() - max_age
        targets = [d for d in self.list() if d.created_at < cutoff]
        self._delete_all(targets)
        if targets:
            logger.info(f"Cleanup removed {len(targets)} artifacts older than {max_age}")
        return len(targets)

    def _delete_all(self, targets: list[ArtifactDescriptor]) -> None:
        for descriptor in targets:
            status = self.delete(descriptor.id)
            if status is DeleteStatus.FAILED:
                logger.warning(f"Cleanup could not delete artifact {descriptor.id}")
