"""
Shared fixtures: in-process stand-ins for CD-HIT, BLAST and MCL.
"""

import random
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from panladder.core.artifacts import InMemoryArtifactStore
from panladder.core.context import PipelineContext
from panladder.core.types import Locus, SimilarityEdge
from panladder.modules.tools import (
    DedupResult, DedupTool, GraphClusterTool, SearchTool, ToolSet
)
from panladder.utils.config import create_default_configuration, validate_pipeline_settings

AMINO_ACIDS = "ACDEFGHIKLMNPQRSTVWY"


def percent_identity(a: str, b: str) -> float:
    """Position-wise identity relative to the longer sequence."""
    matches = sum(1 for x, y in zip(a, b) if x == y)
    return 100.0 * matches / max(len(a), len(b))


def random_sequence(rng: random.Random, length: int = 60) -> str:
    return "".join(rng.choice(AMINO_ACIDS) for _ in range(length))


def mutate(sequence: str, positions: Sequence[int]) -> str:
    """Substitute residues at the given positions with a different amino acid."""
    residues = list(sequence)
    for position in positions:
        current = residues[position]
        residues[position] = AMINO_ACIDS[(AMINO_ACIDS.index(current) + 7) % len(AMINO_ACIDS)]
    return "".join(residues)


class FakeDedupTool(DedupTool):
    """Greedy incremental clustering, CD-HIT style: loci join the first representative they match."""
    name = "fake-cd-hit"

    def __init__(self) -> None:
        self.calls: List[Dict] = []

    def run(self, loci, work_dir, label, cutoff, word_size, threads, memory_mb, log_file):
        self.calls.append({
            "loci": [locus.locus_id for locus in loci],
            "cutoff": cutoff,
            "word_size": word_size,
            "label": label
        })
        clusters: Dict[str, List[str]] = {}
        sequences = {}
        for locus in loci:
            for representative in clusters:
                if percent_identity(locus.sequence, sequences[representative]) >= cutoff * 100:
                    clusters[representative].append(locus.locus_id)
                    break
            else:
                clusters[locus.locus_id] = [locus.locus_id]
                sequences[locus.locus_id] = locus.sequence
        return DedupResult(clusters=clusters)


class FakeSearchTool(SearchTool):
    """
    Position-wise identity search reporting pairs at or above ``min_identity``.

    With ``canned`` edges the tool returns those rows for the queried loci instead.
    """
    name = "fake-blast"

    def __init__(self, min_identity: float = 30.0, canned: Optional[List[SimilarityEdge]] = None,
                 report_self: bool = True) -> None:
        self.min_identity = min_identity
        self.canned = canned
        self.report_self = report_self
        self.database: List[Locus] = []
        self.searched: List[str] = []
        self.chunk_calls = 0
        self._lock = threading.Lock()

    def make_database(self, loci, work_dir):
        self.database = list(loci)
        return Path(work_dir) / "fake_db"

    def search(self, queries, database, output_file, evalue, threads, include_lengths):
        with self._lock:
            self.chunk_calls += 1
            self.searched.extend(locus.locus_id for locus in queries)

        query_ids = {locus.locus_id for locus in queries}
        if self.canned is not None:
            return [edge for edge in self.canned if edge.query_id in query_ids]

        edges = []
        for query in queries:
            for subject in self.database:
                if query.locus_id == subject.locus_id and not self.report_self:
                    continue
                identity = percent_identity(query.sequence, subject.sequence)
                if identity < self.min_identity:
                    continue
                length = min(query.length, subject.length)
                edges.append(SimilarityEdge(
                    query_id=query.locus_id,
                    subject_id=subject.locus_id,
                    identity=round(identity, 2),
                    alignment_length=length,
                    mismatches=length - int(round(identity * length / 100)),
                    gap_openings=0,
                    query_start=1,
                    query_end=length,
                    subject_start=1,
                    subject_end=length,
                    evalue=1e-30,
                    bit_score=2.0 * identity,
                    query_length=query.length if include_lengths else None,
                    subject_length=subject.length if include_lengths else None
                ))
        return edges


class FakeGraphTool(GraphClusterTool):
    """Connected components of the weighted graph, in order of first appearance."""
    name = "fake-mcl"

    def __init__(self) -> None:
        self.calls: List[Dict] = []
        self._lock = threading.Lock()

    def cluster(self, edges, work_dir, inflation, threads):
        nodes: List[str] = []
        parent: Dict[str, str] = {}

        def find(node):
            while parent[node] != node:
                parent[node] = parent[parent[node]]
                node = parent[node]
            return node

        for query, subject, _ in edges:
            for node in (query, subject):
                if node not in parent:
                    parent[node] = node
                    nodes.append(node)
            root_q, root_s = find(query), find(subject)
            if root_q != root_s:
                parent[root_s] = root_q

        components: Dict[str, List[str]] = {}
        for node in nodes:
            components.setdefault(find(node), []).append(node)

        with self._lock:
            self.calls.append({"nodes": set(nodes), "threads": threads, "work_dir": work_dir})
        return list(components.values())


@pytest.fixture
def fake_tools():
    return ToolSet(dedup=FakeDedupTool(), search=FakeSearchTool(), graph=FakeGraphTool())


@pytest.fixture
def base_config():
    config = create_default_configuration()
    config["resources"]["threads"] = 2
    return config


def make_context(tmp_path: Path, loci: Sequence[Locus], config: Dict,
                 n_genomes: int = 0, sample: str = "sample") -> PipelineContext:
    """Build a pipeline context with an in-memory artifact store."""
    settings = validate_pipeline_settings(config)
    work_dir = tmp_path / f"{sample}.tmp"
    work_dir.mkdir(parents=True, exist_ok=True)
    return PipelineContext(
        sample=sample,
        config=config,
        loci={locus.locus_id: locus for locus in loci},
        sequence_type=settings["sequence_type"],
        dedup_ladder=settings["dedup_ladder"],
        cluster_ladder=settings["cluster_ladder"],
        output_dir=tmp_path,
        work_dir=work_dir,
        artifacts=InMemoryArtifactStore(sample),
        n_genomes=n_genomes
    )


@pytest.fixture
def core_family_loci():
    """
    3 genomes x 4 loci: one identical single-copy family (fam_*) in every
    genome, the other nine loci unrelated.
    """
    rng = random.Random(11)
    family = random_sequence(rng)
    loci = []
    for genome in ["g1", "g2", "g3"]:
        loci.append(Locus(f"{genome}_fam", family, genome))
        for index in range(1, 4):
            loci.append(Locus(f"{genome}_{index}", random_sequence(rng), genome))
    return loci


@pytest.fixture
def graded_family_loci():
    """
    A family with decreasing identity to a base sequence plus unrelated loci:
    base, v95 (95%), v85 (85%), v65 (65%), an identical copy of base, and two
    unrelated sequences.
    """
    rng = random.Random(5)
    base = random_sequence(rng)
    return [
        Locus("base", base),
        Locus("base_copy", base),
        Locus("v95", mutate(base, range(0, 3))),
        Locus("v85", mutate(base, range(0, 9))),
        Locus("v65", mutate(base, range(0, 21))),
        Locus("other_1", random_sequence(rng)),
        Locus("other_2", random_sequence(rng)),
    ]
