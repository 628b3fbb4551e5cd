"""Explicit state handed from one pipeline stage to the next."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Any

from panladder.core.artifacts import ArtifactStore
from panladder.core.types import (
    CoreSet, DeflationMap, Locus, PartitionTree, SequenceType, SimilarityEdge
)


@dataclass
class PipelineContext:
    """Everything one dataset's run accumulates, passed to every stage."""
    sample: str
    config: Dict[str, Any]
    loci: Dict[str, Locus]
    sequence_type: SequenceType
    dedup_ladder: List[float]
    cluster_ladder: List[int]
    output_dir: Path
    work_dir: Path
    artifacts: ArtifactStore
    n_genomes: int = 0
    deflation_map: Optional[DeflationMap] = None
    core_set: CoreSet = field(default_factory=CoreSet)
    edges: List[SimilarityEdge] = field(default_factory=list)
    partition_tree: PartitionTree = field(default_factory=PartitionTree)
    reinflated: Dict[int, List[Tuple[str, ...]]] = field(default_factory=dict)

    @property
    def total_loci(self) -> int:
        return len(self.loci)

    @property
    def has_genome_map(self) -> bool:
        return self.n_genomes > 0

    @property
    def threads(self) -> int:
        return int(self.config.get("resources", {}).get("threads", 2))

    def representative_loci(self) -> List[Locus]:
        """Representative loci in deflation order (core loci excluded)."""
        if self.deflation_map is None:
            return []
        return [self.loci[rep] for rep in self.deflation_map.representatives]
