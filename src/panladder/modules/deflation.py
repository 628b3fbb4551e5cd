"""Redundancy reduction with iterative CD-HIT runs and core locus extraction."""

import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

from panladder.core.context import PipelineContext
from panladder.core.exceptions import InvariantViolation, ValidationError
from panladder.core.artifacts import ArtifactKind
from panladder.core.types import DeflationMap, CoreSet, Locus, SequenceType, format_threshold
from panladder.modules.tools import DedupTool


logger = logging.getLogger(__name__)

# (exclusive lower bound of the cutoff, word size), checked in order
PROTEIN_WORD_SIZES = ((0.7, 5), (0.6, 4), (0.5, 3), (0.4, 2))
PROTEIN_FLOOR = (0.4, 2)

# CD-HIT-EST documents -n 10,11 above 0.95 and -n 8,9 from 0.90; a single
# 11 above 0.90 would leave the 9 entry unreachable
NUCLEOTIDE_WORD_SIZES = ((0.95, 11), (0.90, 9), (0.88, 7), (0.85, 6), (0.80, 5))
NUCLEOTIDE_FLOOR = (0.8, 4)


def select_word_size(cutoff: float, sequence_type: SequenceType) -> Tuple[float, int]:
    """
    Pick the CD-HIT word size for an identity cutoff.

    Cutoffs below the lowest supported range are raised to the table floor.

    Args:
        cutoff: Identity cutoff as a fraction (e.g. 0.98)
        sequence_type: Protein or nucleotide

    Returns:
        Tuple of (cutoff actually used, word size)
    """
    if sequence_type == SequenceType.PROTEIN:
        table, floor = PROTEIN_WORD_SIZES, PROTEIN_FLOOR
    else:
        table, floor = NUCLEOTIDE_WORD_SIZES, NUCLEOTIDE_FLOOR

    for lower_bound, word_size in table:
        if cutoff > lower_bound:
            return cutoff, word_size

    floor_cutoff, floor_word_size = floor
    logger.warning(
        f"Cluster threshold ({cutoff:g}) below recommended setting - setting cluster "
        f"threshold to {floor_cutoff:g} and word size to {floor_word_size}"
    )
    return floor_cutoff, floor_word_size


def extract_core_clusters(
    clusters: Dict[str, List[str]],
    genome_of: Dict[str, Optional[str]],
    n_genomes: int
) -> List[List[str]]:
    """
    Find clusters holding exactly one locus from every genome.

    Args:
        clusters: Representative -> members from a dedup run
        genome_of: Locus id -> genome id
        n_genomes: Total number of genomes

    Returns:
        Member lists of the core clusters, in cluster order

    Raises:
        ValidationError: A clustered locus has no genome assigned
    """
    core = []
    for members in clusters.values():
        genomes = set()
        for locus_id in members:
            genome = genome_of.get(locus_id)
            if genome is None:
                raise ValidationError(f"no genome found for loci {locus_id}", stage="deflation")
            genomes.add(genome)

        if len(genomes) == n_genomes and len(members) == n_genomes:
            core.append(list(members))
    return core


def check_deflation(deflation_map: DeflationMap, core_set: CoreSet, locus_ids: Sequence[str]) -> None:
    """
    Check that deflated groups and core clusters partition the input loci.

    Raises:
        InvariantViolation: Loci missing, duplicated or unknown
    """
    expected = set(locus_ids)
    deflated = set()
    for _, members in deflation_map.items():
        deflated.update(members)

    overlap = deflated & core_set.loci
    if overlap:
        raise InvariantViolation(
            f"{len(overlap)} loci are both core and deflated", stage="deflation"
        )

    observed = deflation_map.n_loci + len(core_set)
    if observed != len(expected) or (deflated | core_set.loci) != expected:
        raise InvariantViolation(
            "number of sequences clustered via cd-hit does not match number of input sequences",
            expected=len(expected),
            observed=observed,
            stage="deflation"
        )


def deflate_loci(context: PipelineContext, dedup_tool: DedupTool) -> DeflationMap:
    """
    Collapse near-identical loci down the dedup ladder, freezing core clusters.

    Every step clusters all loci that are not yet core. The last step's
    clusters, minus core, become the deflation map. Results are stored on
    the context (deflation_map, core_set).

    Args:
        context: Pipeline context holding loci and the dedup ladder
        dedup_tool: Near-duplicate clustering adapter

    Returns:
        DeflationMap of the non-core loci
    """
    start_time = time.time()
    deflation_config = context.config.get("deflation", {})
    memory_mb = deflation_config.get("memory_mb")
    core_requested = deflation_config.get("core_extraction", True)

    extract_core = core_requested and context.has_genome_map

    # Longest sequences first so CD-HIT picks them as representatives
    ordered = sorted(context.loci.values(), key=lambda locus: locus.length, reverse=True)
    genome_of = {locus.locus_id: locus.genome_id for locus in ordered}

    core_set = context.core_set
    deflate_dir = context.work_dir / "deflation"
    log_file = context.output_dir / f"{context.sample}.cdhit_log.txt"
    log_file.touch()

    clusters: Dict[str, List[str]] = {}
    for percent in context.dedup_ladder:
        working: List[Locus] = [locus for locus in ordered if locus.locus_id not in core_set]
        expected = context.total_loci - len(core_set)
        if len(working) != expected:
            raise InvariantViolation(
                f"Loci passed to deduplication at {format_threshold(percent)}% do not match "
                f"included loci",
                expected=expected,
                observed=len(working),
                stage="deflation"
            )
        if not working:
            logger.info("All loci are core - skipping remaining deduplication steps")
            clusters = {}
            break

        cutoff, word_size = select_word_size(percent / 100, context.sequence_type)
        logger.info(f"Passing {len(working)} loci to {dedup_tool.name} at {format_threshold(percent)}%")

        result = dedup_tool.run(
            loci=working,
            work_dir=deflate_dir,
            label=f"{context.sample}.{format_threshold(percent)}",
            cutoff=cutoff,
            word_size=word_size,
            threads=context.threads,
            memory_mb=memory_mb,
            log_file=log_file
        )
        clusters = result.clusters

        clustered = sum(len(members) for members in clusters.values())
        if clustered != len(working):
            raise InvariantViolation(
                f"{dedup_tool.name} at {format_threshold(percent)}% did not cluster every locus",
                expected=len(working),
                observed=clustered,
                stage="deflation"
            )

        if extract_core:
            new_core = extract_core_clusters(clusters, genome_of, context.n_genomes)
            for members in new_core:
                core_set.add_cluster(members)
            logger.info(f"{len(new_core)} core clusters found at {format_threshold(percent)}%")

    core_set.freeze()

    deflation_map = DeflationMap({
        representative: members
        for representative, members in clusters.items()
        if representative not in core_set
    })
    check_deflation(deflation_map, core_set, list(context.loci))
    context.deflation_map = deflation_map

    context.artifacts.put_rows(ArtifactKind.CORE_CLUSTERS, [list(c) for c in core_set.clusters])
    context.artifacts.put_rows(
        ArtifactKind.DEFLATION_CLUSTERS,
        [list(members) for _, members in deflation_map.items()]
    )

    total = context.total_loci
    if extract_core:
        logger.info(f"{len(core_set)} core loci ({len(core_set) / total * 100:.1f}%)")
    logger.info(f"{deflation_map.n_loci} non-core loci ({deflation_map.n_loci / total * 100:.1f}%)")
    logger.info(f"{len(deflation_map)} representative loci passed to homology search")
    logger.info(f"Deflation completed in {time.time() - start_time:.1f} secs")

    return deflation_map
