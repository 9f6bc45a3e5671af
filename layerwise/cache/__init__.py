"""Layer cache keys, planning and manifest persistence."""

from .layer_cache import CachePlan, CacheStatus, LayerCachePlanner, LayerPlan, expand_variables
from .manifest_store import (
    CacheManifest,
    FileManifestStorage,
    InMemoryManifestStorage,
    LayerRecord,
    ManifestStorage,
)

__all__ = [
    "CacheManifest",
    "CachePlan",
    "CacheStatus",
    "FileManifestStorage",
    "InMemoryManifestStorage",
    "LayerCachePlanner",
    "LayerPlan",
    "LayerRecord",
    "ManifestStorage",
    "expand_variables",
]
