"""Core components of the imageforge service.

- **RateGovernor**: fixed-window request counter per client key
- **ArtifactStore**: two-tier binary storage with a JSON metadata index
- **LocalTier** / **GcsRemoteTier**: the binary sinks behind the store
- **ImageforgeConfig**: configuration using Pydantic Settings

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with IMAGEFORGE_ in .env files

2. **Admission Layer** (rate_limit.py):
   - Per-client fixed-window counters, consulted before expensive work

3. **Storage Layer** (storage.py, local_tier.py, remote_tier.py, artifacts.py):
   - Local-first writes, best-effort Google Cloud Storage mirror
   - One JSON descriptor per artifact; listing, lookup, deletion, retention

4. **Support Utilities**:
   - images.py: MIME detection for uploaded bytes
   - generator.py: protocol for the hosted image model

Usage Example
-------------
    from imageforge.core import ArtifactStore, RateGovernor, config

    governor = RateGovernor(config.rate_limit, config.rate_limit_window_ms)
    store = ArtifactStore.from_config(config)

    if governor.check("203.0.113.7").allowed:
        descriptor = store.save(png_bytes, prompt="a lighthouse at dusk")
"""

from imageforge.core.artifacts import ArtifactDescriptor, NamingPolicy
from imageforge.core.config import ImageforgeConfig, config
from imageforge.core.local_tier import LocalTier
from imageforge.core.rate_limit import RateGovernor, RateLimitResult, ThrottleWindow
from imageforge.core.remote_tier import GcsRemoteTier, RemoteTier
from imageforge.core.storage import ArtifactStore, DeleteStatus, LocalWriteError, UploadOutcome

__all__ = [
    "ArtifactDescriptor",
    "ArtifactStore",
    "DeleteStatus",
    "GcsRemoteTier",
    "ImageforgeConfig",
    "LocalTier",
    "LocalWriteError",
    "NamingPolicy",
    "RateGovernor",
    "RateLimitResult",
    "RemoteTier",
    "ThrottleWindow",
    "UploadOutcome",
    "config",
]
