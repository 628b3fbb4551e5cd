"""Core data types and structures for the pangenome construction pipeline."""

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple, Any, Iterable, Iterator, Sequence, FrozenSet
from enum import Enum

from panladder.core.exceptions import ConfigurationError, InvariantViolation


class SequenceType(Enum):
    """Alphabet the pangenome is built on."""
    PROTEIN = "protein"
    NUCLEOTIDE = "nucleotide"


@dataclass(frozen=True)
class Locus:
    """A single input gene/protein sequence."""
    locus_id: str
    sequence: str
    genome_id: Optional[str] = None

    @property
    def length(self) -> int:
        return len(self.sequence)


# Placeholder self-hit values used when the search tool reports no self alignment
PLACEHOLDER_LENGTH = 1234
PLACEHOLDER_BIT_SCORE = 2335.0


@dataclass(frozen=True)
class SimilarityEdge:
    """One tabular alignment row (BLAST outfmt 6, optionally with qlen/slen)."""
    query_id: str
    subject_id: str
    identity: float
    alignment_length: int
    mismatches: int
    gap_openings: int
    query_start: int
    query_end: int
    subject_start: int
    subject_end: int
    evalue: float
    bit_score: float
    query_length: Optional[int] = None
    subject_length: Optional[int] = None

    @property
    def is_self_hit(self) -> bool:
        return self.query_id == self.subject_id

    @property
    def query_span(self) -> int:
        return abs(self.query_end - self.query_start) + 1

    @property
    def subject_span(self) -> int:
        return abs(self.subject_end - self.subject_start) + 1

    @classmethod
    def from_row(cls, fields: Sequence[str]) -> "SimilarityEdge":
        """
        Build an edge from the columns of a tab-separated search result row.

        Raises:
            ValueError: Row has fewer than 12 columns or non-numeric values
        """
        if len(fields) < 12:
            raise ValueError(f"Expected at least 12 columns, got {len(fields)}")
        lengths = (int(fields[12]), int(fields[13])) if len(fields) >= 14 else (None, None)
        return cls(
            query_id=fields[0],
            subject_id=fields[1],
            identity=float(fields[2]),
            alignment_length=int(fields[3]),
            mismatches=int(fields[4]),
            gap_openings=int(fields[5]),
            query_start=int(fields[6]),
            query_end=int(fields[7]),
            subject_start=int(fields[8]),
            subject_end=int(fields[9]),
            evalue=float(fields[10]),
            bit_score=float(fields[11]),
            query_length=lengths[0],
            subject_length=lengths[1]
        )

    def to_row(self) -> List[str]:
        row = [
            self.query_id, self.subject_id, f"{self.identity:g}",
            str(self.alignment_length), str(self.mismatches), str(self.gap_openings),
            str(self.query_start), str(self.query_end),
            str(self.subject_start), str(self.subject_end),
            f"{self.evalue:g}", f"{self.bit_score:g}"
        ]
        if self.query_length is not None and self.subject_length is not None:
            row.extend([str(self.query_length), str(self.subject_length)])
        return row


def placeholder_self_hit(locus_id: str, include_lengths: bool = False) -> SimilarityEdge:
    """Create the neutral 100% self alignment used for representatives without one."""
    return SimilarityEdge(
        query_id=locus_id,
        subject_id=locus_id,
        identity=100.0,
        alignment_length=PLACEHOLDER_LENGTH,
        mismatches=0,
        gap_openings=0,
        query_start=1,
        query_end=PLACEHOLDER_LENGTH,
        subject_start=1,
        subject_end=PLACEHOLDER_LENGTH,
        evalue=0.0,
        bit_score=PLACEHOLDER_BIT_SCORE,
        query_length=PLACEHOLDER_LENGTH if include_lengths else None,
        subject_length=PLACEHOLDER_LENGTH if include_lengths else None
    )


@dataclass(frozen=True)
class Cluster:
    """Cluster of loci (or representatives) at one identity threshold."""
    threshold: int
    cluster_id: int
    members: Tuple[str, ...]
    parent_id: Optional[int] = None

    def __len__(self) -> int:
        return len(self.members)


class DeflationMap:
    """
    Representative locus -> absorbed loci produced by deflation.

    Every representative is a member of its own group and no locus belongs
    to two groups.
    """

    def __init__(self, groups: Optional[Dict[str, Sequence[str]]] = None) -> None:
        self._groups: Dict[str, Tuple[str, ...]] = {}
        seen = set()
        for representative, members in (groups or {}).items():
            members = tuple(members)
            if representative not in members:
                raise InvariantViolation(
                    f"Representative {representative} is not a member of its own cluster",
                    stage="deflation"
                )
            overlap = seen.intersection(members)
            if overlap:
                raise InvariantViolation(
                    f"Loci assigned to more than one representative: {sorted(overlap)[:5]}",
                    stage="deflation"
                )
            seen.update(members)
            self._groups[representative] = members
        self._n_loci = len(seen)

    def __contains__(self, representative: str) -> bool:
        return representative in self._groups

    def __len__(self) -> int:
        return len(self._groups)

    def __iter__(self) -> Iterator[str]:
        return iter(self._groups)

    @property
    def representatives(self) -> List[str]:
        return list(self._groups)

    @property
    def n_loci(self) -> int:
        """Total number of absorbed loci across all representatives."""
        return self._n_loci

    def members_of(self, representative: str) -> Tuple[str, ...]:
        return self._groups[representative]

    def items(self) -> Iterable[Tuple[str, Tuple[str, ...]]]:
        return self._groups.items()


class CoreSet:
    """
    Single-copy loci present in every genome, kept as whole clusters.

    Clusters are collected while deflating and frozen afterwards; every
    threshold reports them unchanged.
    """

    def __init__(self) -> None:
        self._clusters: List[Tuple[str, ...]] = []
        self._loci: set = set()
        self._frozen = False

    def add_cluster(self, members: Sequence[str]) -> None:
        if self._frozen:
            raise InvariantViolation("Core set is frozen and cannot be extended", stage="deflation")
        members = tuple(members)
        overlap = self._loci.intersection(members)
        if overlap:
            raise InvariantViolation(
                f"Loci already assigned to a core cluster: {sorted(overlap)[:5]}",
                stage="deflation"
            )
        self._clusters.append(members)
        self._loci.update(members)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def clusters(self) -> Tuple[Tuple[str, ...], ...]:
        return tuple(self._clusters)

    @property
    def loci(self) -> FrozenSet[str]:
        return frozenset(self._loci)

    @property
    def n_clusters(self) -> int:
        return len(self._clusters)

    def __contains__(self, locus_id: str) -> bool:
        return locus_id in self._loci

    def __len__(self) -> int:
        return len(self._loci)


class PartitionTree:
    """
    Arena of clusters indexed by threshold.

    Each cluster records the id of the cluster containing it at the previous
    (looser) threshold, so the nesting is explicit rather than implied by
    file names.
    """

    def __init__(self) -> None:
        self._levels: Dict[int, List[Cluster]] = {}

    @property
    def thresholds(self) -> List[int]:
        return list(self._levels)

    def add_level(self, threshold: int, clusters: Sequence[Cluster]) -> None:
        if threshold in self._levels:
            raise InvariantViolation(f"Threshold {threshold} already clustered", stage="clustering")
        if self._levels and threshold <= max(self._levels):
            raise InvariantViolation(
                f"Threshold {threshold} is not tighter than {max(self._levels)}",
                stage="clustering"
            )
        self._levels[threshold] = list(clusters)

    def clusters_at(self, threshold: int) -> List[Cluster]:
        return list(self._levels[threshold])

    def children_of(self, threshold: int, cluster_id: int) -> List[Cluster]:
        """Clusters at the next threshold contained in the given cluster."""
        thresholds = self.thresholds
        position = thresholds.index(threshold)
        if position + 1 >= len(thresholds):
            return []
        child_threshold = thresholds[position + 1]
        return [c for c in self._levels[child_threshold] if c.parent_id == cluster_id]

    def verify_refinement(self, parent_threshold: int, child_threshold: int) -> None:
        """
        Check that the clusters at child_threshold exactly subdivide those at
        parent_threshold.

        Raises:
            InvariantViolation: A child spans several parents, names the wrong
                parent, or the children do not cover the parents' members
        """
        owner = {}
        for parent in self._levels[parent_threshold]:
            for member in parent.members:
                owner[member] = parent.cluster_id

        member_counts = Counter()
        for child in self._levels[child_threshold]:
            parents = {owner.get(member) for member in child.members}
            if len(parents) != 1 or None in parents:
                raise InvariantViolation(
                    f"Cluster {child.cluster_id} at {child_threshold}% is not contained in a "
                    f"single cluster at {parent_threshold}% (parents: {sorted(map(str, parents))})",
                    stage="clustering"
                )
            if child.parent_id not in parents:
                raise InvariantViolation(
                    f"Cluster {child.cluster_id} at {child_threshold}% names parent "
                    f"{child.parent_id} but lies in {parents.pop()}",
                    stage="clustering"
                )
            member_counts.update(child.members)

        observed = sum(member_counts.values())
        if observed != len(owner) or len(member_counts) != len(owner):
            raise InvariantViolation(
                f"Clusters at {child_threshold}% do not cover the members at {parent_threshold}%",
                expected=len(owner),
                observed=observed,
                stage="clustering"
            )


def _to_decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(f"{name} value {value} is not numeric")


def build_dedup_ladder(low: float, step: float) -> List[float]:
    """
    Descending deduplication cutoffs from 100% down to ``low``.

    Args:
        low: Lowest cutoff (percent), inclusive
        step: Decrement between cutoffs (percent)

    Returns:
        Cutoffs as floats, e.g. [100.0, 99.5, 99.0, 98.5, 98.0]
    """
    low_d = _to_decimal(low, "Deflation floor")
    step_d = _to_decimal(step, "Deflation step")
    if not Decimal(0) < low_d <= Decimal(100):
        raise ConfigurationError(f"Deflation floor must be in (0, 100], got {low}")
    if step_d <= 0:
        raise ConfigurationError(f"Deflation step must be positive, got {step}")

    ladder = []
    current = Decimal(100)
    while current >= low_d:
        ladder.append(float(current))
        current -= step_d
    return ladder


def build_cluster_ladder(steps: Optional[Sequence[Any]], single: Any = 98) -> List[int]:
    """
    Ascending, de-duplicated integer clustering thresholds.

    A single threshold is used when no steps are supplied.
    """
    values = list(steps) if steps else [single]
    ladder = set()
    for value in values:
        text = str(value).strip()
        if not text.isdigit():
            raise ConfigurationError(f"Threshold value {value} is not numeric")
        threshold = int(text)
        if not 0 < threshold <= 100:
            raise ConfigurationError(f"Threshold value {threshold} must be in (0, 100]")
        ladder.add(threshold)
    return sorted(ladder)


def format_threshold(value: float) -> str:
    """Render a percent cutoff for file names and log messages (100.0 -> '100')."""
    return f"{value:g}"


@dataclass
class ValidationResult:
    """Result of validation operation."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
