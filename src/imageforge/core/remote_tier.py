"""Durable remote tier backed by Google Cloud Storage.

The remote tier mirrors artifact binaries by filename inside a single bucket
and serves them publicly.  It is an availability optimisation, never a
correctness dependency: :class:`~imageforge.core.storage.ArtifactStore` treats
every exception raised here as a non-fatal remote failure.

Credential Resolution
---------------------
Which credentials the storage client uses is decided by
:func:`resolve_credential_source`, an ordered lookup over plain values:

1. ``production`` environment -> platform default credentials (the runtime's
   attached service account)
2. an explicit service account key file -> that file
3. otherwise -> default credential discovery as a fallback

The function takes its inputs as arguments rather than reading the process
environment, so each branch can be exercised directly in tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Protocol

logger = logging.getLogger(__name__)

PUBLIC_URL_BASE = "https://storage.googleapis.com"

CredentialKind = Literal["platform-default", "service-account-file", "default-fallback"]


@dataclass(frozen=True)
class CredentialSource:
    """Where the storage client should take its credentials from.

    Attributes:
        kind: Which lookup branch matched.
        credentials_file: Key file path, only set for ``service-account-file``.
    """

    kind: CredentialKind
    credentials_file: Path | None = None


def resolve_credential_source(
    environment: str,
    credentials_file: str | Path | None,
) -> CredentialSource:
    """Pick the credential source for the storage client.

    Args:
        environment: Deployment environment name.
        credentials_file: Explicit service account key file, if configured.

    Returns:
        The first matching :class:`CredentialSource` in lookup order.
    """
    if environment == "production":
        return CredentialSource(kind="platform-default")
    if credentials_file:
        return CredentialSource(kind="service-account-file", credentials_file=Path(credentials_file))
    return CredentialSource(kind="default-fallback")


def build_storage_client(source: CredentialSource, project: str | None = None) -> Any:
    """Create a ``google.cloud.storage.Client`` for a credential source.

    ``google.cloud.storage`` is imported here rather than at module level so
    that the rest of the package (and deployments with the remote tier
    disabled) never pay for the import.

    Args:
        source: Resolved credential source.
        project: Optional GCP project override.

    Returns:
        A configured storage client.
    """
    from google.cloud import storage

    if source.kind == "service-account-file":
        logger.info(f"Using explicit credentials from: {source.credentials_file}")
        return storage.Client.from_service_account_json(
            str(source.credentials_file), project=project
        )

    if source.kind == "platform-default":
        logger.info("Using platform default credentials for GCS")
    else:
        logger.info("No explicit credentials found, using default credentials")
    return storage.Client(project=project)


class RemoteTier(Protocol):
    """Binary sink keyed by filename with publicly resolvable URLs."""

    def upload(
        self,
        filename: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
    ) -> str:
        """Store ``data`` under ``filename`` and return its public URL."""
        ...

    def delete(self, filename: str) -> None:
        """Remove the object stored under ``filename``."""
        ...


class GcsRemoteTier:
    """Remote tier writing to a single Google Cloud Storage bucket.

    Attributes:
        bucket_name: Name of the bucket holding the artifacts.
        timeout: Seconds allowed for each upload or delete call.
    """

    def __init__(self, client: Any, bucket_name: str, timeout: float = 30.0) -> None:
        self._client = client
        self.bucket_name = bucket_name
        self.timeout = timeout
        self._bucket = client.bucket(bucket_name)
        logger.info(f"Initialized Google Cloud Storage with bucket: {bucket_name}")

    def public_url(self, filename: str) -> str:
        return f"{PUBLIC_URL_BASE}/{self.bucket_name}/{filename}"

    def upload(
        self,
        filename: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
    ) -> str:
        blob = self._bucket.blob(filename)
        # Custom metadata must be set before the upload to be sent with it.
        blob.metadata = metadata
        blob.upload_from_string(data, content_type=content_type, timeout=self.timeout)
        return self.public_url(filename)

    def delete(self, filename: str) -> None:
        self._bucket.blob(filename).delete(timeout=self.timeout)
