"""
Cache manifest persistence.

A manifest records the layer keys and source digests of a previous run so
the next run can tell which layers the builder would reuse.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import structlog

from layerwise.utils.error_handler import ManifestError


logger = structlog.get_logger(__name__)


MANIFEST_VERSION = 1


@dataclass
class LayerRecord:
    """Cache key of one layer from a previous run"""
    stage: int
    offset: int
    instruction: str
    key: str
    sources: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LayerRecord":
        record = cls(**data)
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in (record.stage, record.offset)):
            raise ManifestError("layer stage and offset must be integers")
        if not isinstance(record.instruction, str) or not isinstance(record.key, str):
            raise ManifestError("layer instruction and key must be strings")
        if not isinstance(record.sources, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in record.sources.items()):
            raise ManifestError("layer sources must map paths to digests")
        return record


@dataclass
class CacheManifest:
    """Layer keys for one Dockerfile"""
    layers: List[LayerRecord] = field(default_factory=list)
    dockerfile: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    version: int = MANIFEST_VERSION

    def keys(self) -> Set[str]:
        return {layer.key for layer in self.layers}

    def at(self, stage: int, offset: int) -> Optional[LayerRecord]:
        """Layer record at a position within a stage."""
        return self._positions().get((stage, offset))

    def _positions(self) -> Dict[Tuple[int, int], LayerRecord]:
        return {(layer.stage, layer.offset): layer for layer in self.layers}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "dockerfile": self.dockerfile,
            "created_at": self.created_at,
            "layers": [layer.to_dict() for layer in self.layers],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheManifest":
        version = data.get("version")
        if version != MANIFEST_VERSION:
            raise ManifestError(f"unsupported manifest version: {version!r}")
        return cls(
            layers=[LayerRecord.from_dict(layer) for layer in data.get("layers", [])],
            dockerfile=data.get("dockerfile"),
            created_at=data.get("created_at", ""),
            version=version,
        )


class ManifestStorage:
    """Abstract base for manifest storage backends"""

    def save(self, manifest: CacheManifest) -> None:
        """Save manifest"""
        raise NotImplementedError

    def load(self) -> Optional[CacheManifest]:
        """Load manifest, None when there is none"""
        raise NotImplementedError

    def clear(self) -> None:
        """Remove the stored manifest"""
        raise NotImplementedError


class FileManifestStorage(ManifestStorage):
    """File-based manifest storage with atomic writes"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.temp_path = self.path.with_name(self.path.name + ".tmp")

    def save(self, manifest: CacheManifest) -> None:
        """Save manifest atomically"""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)

            # Write to temp file first
            with open(self.temp_path, "w", encoding="utf-8") as f:
                json.dump(manifest.to_dict(), f, indent=2, sort_keys=True)

            # Atomic rename
            os.replace(self.temp_path, self.path)

        except OSError as e:
            logger.error("manifest_save_failed", path=str(self.path), error=str(e))
            raise ManifestError(f"cannot write cache manifest {self.path}: {e}") from e

        logger.info("manifest_saved", path=str(self.path), layers=len(manifest.layers))

    def load(self) -> Optional[CacheManifest]:
        """Load manifest from file"""
        if not self.path.exists():
            logger.info("manifest_absent", path=str(self.path))
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            manifest = CacheManifest.from_dict(data)

        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("manifest_corrupted", path=str(self.path), error=str(e))
            return None
        except (ManifestError, TypeError, AttributeError) as e:
            logger.error("manifest_unreadable", path=str(self.path), error=str(e))
            return None

        logger.info("manifest_loaded", path=str(self.path), layers=len(manifest.layers))
        return manifest

    def clear(self) -> None:
        """Delete the manifest file"""
        if self.path.exists():
            self.path.unlink()
            logger.info("manifest_cleared", path=str(self.path))


class InMemoryManifestStorage(ManifestStorage):
    """In-memory manifest storage (for testing)"""

    def __init__(self, manifest: Optional[CacheManifest] = None):
        self._manifest = manifest

    def save(self, manifest: CacheManifest) -> None:
        self._manifest = manifest

    def load(self) -> Optional[CacheManifest]:
        return self._manifest

    def clear(self) -> None:
        self._manifest = None
