"""imageforge - rate-governed image generation service with two-tier artifact storage."""

__version__ = "0.1.0"

from imageforge.core.artifacts import ArtifactDescriptor, NamingPolicy
from imageforge.core.rate_limit import RateGovernor, RateLimitResult
from imageforge.core.storage import ArtifactStore, DeleteStatus, LocalWriteError

__all__ = [
    "ArtifactDescriptor",
    "ArtifactStore",
    "DeleteStatus",
    "LocalWriteError",
    "NamingPolicy",
    "RateGovernor",
    "RateLimitResult",
]
