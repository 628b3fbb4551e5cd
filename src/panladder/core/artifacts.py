"""Typed storage for intermediate pipeline tables."""

import copy
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from panladder.core.exceptions import ConfigurationError, PipelineError


logger = logging.getLogger(__name__)

Rows = List[List[str]]


class ArtifactKind(Enum):
    """Kinds of intermediate tables; the value is the file name pattern."""
    DEFLATION_CLUSTERS = "{sample}.cdhit_clusters"
    CORE_CLUSTERS = "{sample}.core_clusters.tab"
    EDGES = "{sample}.blast.output"
    FILTERED_EDGES = "{sample}.{threshold}.blast"
    CLUSTERS = "{sample}.mcl_{threshold}.clusters"
    REINFLATED = "{sample}.{threshold}.reclustered.reinflated"

    @property
    def per_threshold(self) -> bool:
        return "{threshold}" in self.value


def artifact_filename(sample: str, kind: ArtifactKind, threshold: Optional[int] = None) -> str:
    """File name an artifact is stored under on disk."""
    if kind.per_threshold and threshold is None:
        raise PipelineError(f"Artifact {kind.name} requires a threshold")
    return kind.value.format(sample=sample, threshold=threshold)


class ArtifactStore:
    """
    Interface shared by the in-memory and disk-backed stores.

    Tables are lists of rows, each row a list of string fields.
    """

    def __init__(self, sample: str) -> None:
        self.sample = sample

    def put_rows(self, kind: ArtifactKind, rows: Sequence[Sequence[str]],
                 threshold: Optional[int] = None) -> None:
        raise NotImplementedError

    def get_rows(self, kind: ArtifactKind, threshold: Optional[int] = None) -> Rows:
        raise NotImplementedError

    def has(self, kind: ArtifactKind, threshold: Optional[int] = None) -> bool:
        raise NotImplementedError

    def location(self, kind: ArtifactKind, threshold: Optional[int] = None) -> Optional[Path]:
        """Path of the artifact on disk, or None for in-memory artifacts."""
        return None

    def _missing(self, kind: ArtifactKind, threshold: Optional[int]) -> PipelineError:
        name = artifact_filename(self.sample, kind, threshold)
        return PipelineError(f"Artifact not found: {name}")


class InMemoryArtifactStore(ArtifactStore):
    """Keeps tables in a dictionary; suited to small datasets."""

    def __init__(self, sample: str) -> None:
        super().__init__(sample)
        self._tables: Dict[Tuple[ArtifactKind, Optional[int]], Rows] = {}

    def put_rows(self, kind, rows, threshold=None):
        artifact_filename(self.sample, kind, threshold)
        self._tables[(kind, threshold)] = [list(row) for row in rows]

    def get_rows(self, kind, threshold=None):
        try:
            return copy.deepcopy(self._tables[(kind, threshold)])
        except KeyError:
            raise self._missing(kind, threshold)

    def has(self, kind, threshold=None):
        return (kind, threshold) in self._tables


class DiskArtifactStore(ArtifactStore):
    """Writes each table as a tab-separated file under ``root``."""

    def __init__(self, root: Path, sample: str) -> None:
        super().__init__(sample)
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def location(self, kind, threshold=None):
        return self.root / artifact_filename(self.sample, kind, threshold)

    def put_rows(self, kind, rows, threshold=None):
        path = self.location(kind, threshold)
        with open(path, 'w') as f:
            for row in rows:
                f.write("\t".join(row) + "\n")
        logger.debug(f"Wrote {len(rows)} rows to {path}")

    def get_rows(self, kind, threshold=None):
        path = self.location(kind, threshold)
        if not path.exists():
            raise self._missing(kind, threshold)
        with open(path, 'r') as f:
            return [line.rstrip("\n").split("\t") for line in f if line.strip()]

    def has(self, kind, threshold=None):
        return self.location(kind, threshold).exists()


def create_artifact_store(
    sample: str,
    root: Path,
    storage: str = "auto",
    n_loci: int = 0,
    in_memory_max_loci: int = 50000
) -> ArtifactStore:
    """
    Pick an artifact store for a dataset.

    Args:
        sample: Dataset name used in artifact file names
        root: Directory for disk-backed artifacts
        storage: "memory", "disk" or "auto"
        n_loci: Number of input loci (used by "auto")
        in_memory_max_loci: Largest dataset kept in memory by "auto"
    """
    if storage == "auto":
        storage = "memory" if n_loci <= in_memory_max_loci else "disk"
    if storage == "memory":
        logger.info(f"Keeping intermediate artifacts for {sample} in memory")
        return InMemoryArtifactStore(sample)
    if storage == "disk":
        logger.info(f"Writing intermediate artifacts for {sample} to {root}")
        return DiskArtifactStore(root, sample)
    raise ConfigurationError(f"Unknown artifact storage: {storage}")
