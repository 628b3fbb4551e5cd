"""Expanding representative clusters back to every input locus."""

import logging
from typing import Dict, List, Sequence, Tuple

from panladder.core.artifacts import ArtifactKind
from panladder.core.context import PipelineContext
from panladder.core.exceptions import InvariantViolation
from panladder.core.types import CoreSet, DeflationMap


logger = logging.getLogger(__name__)


def reinflate_partition(
    clusters: Sequence[Sequence[str]],
    deflation_map: DeflationMap,
    core_set: CoreSet,
    total_loci: int,
    threshold: int
) -> List[Tuple[str, ...]]:
    """
    Replace each representative with the loci it absorbed and append the core clusters.

    Args:
        clusters: Representative-level clusters at one threshold
        deflation_map: Representative -> absorbed loci
        core_set: Frozen core clusters
        total_loci: Number of input loci
        threshold: Threshold being reinflated (for messages)

    Returns:
        Locus-level clusters, core clusters last

    Raises:
        InvariantViolation: Unknown representative, or the clusters do not
            account for every input locus exactly once
    """
    reinflated = []
    n_reinflated = 0
    for members in clusters:
        expanded = []
        for representative in members:
            if representative not in deflation_map:
                raise InvariantViolation(
                    f"{representative} not in a deflated cluster at {threshold}%",
                    stage="reinflation"
                )
            expanded.extend(deflation_map.members_of(representative))
        reinflated.append(tuple(expanded))
        n_reinflated += len(expanded)

    reinflated.extend(core_set.clusters)

    observed = n_reinflated + len(core_set)
    if observed != total_loci:
        raise InvariantViolation(
            f"Reinflated sequences do not match input number of sequences at {threshold}%",
            expected=total_loci,
            observed=observed,
            stage="reinflation"
        )

    distinct = {locus for cluster in reinflated for locus in cluster}
    if len(distinct) != observed:
        raise InvariantViolation(
            f"Loci appear in more than one cluster at {threshold}%",
            expected=observed,
            observed=len(distinct),
            stage="reinflation"
        )
    return reinflated


def reinflate_clusters(context: PipelineContext) -> Dict[int, List[Tuple[str, ...]]]:
    """
    Reinflate every threshold of the partition tree independently.

    A failing threshold does not stop the others; once all thresholds have
    been attempted, any failures are raised together.

    Returns:
        Threshold -> locus-level clusters (also stored on the context)
    """
    deflation_map = context.deflation_map or DeflationMap()
    failures: Dict[int, InvariantViolation] = {}

    logger.info(f"Reinflating clusters for {context.sample}")
    for threshold in context.cluster_ladder:
        clusters = [cluster.members for cluster in context.partition_tree.clusters_at(threshold)]
        try:
            rows = reinflate_partition(
                clusters, deflation_map, context.core_set, context.total_loci, threshold
            )
        except InvariantViolation as e:
            logger.error(f"Reinflation failed at {threshold}%: {e}")
            failures[threshold] = e
            continue

        context.reinflated[threshold] = rows
        context.artifacts.put_rows(ArtifactKind.REINFLATED, [list(row) for row in rows], threshold)
        logger.info(f"{len(rows)} clusters ({context.core_set.n_clusters} core) at {threshold}%")

    if failures:
        details = "; ".join(f"{t}%: {e}" for t, e in sorted(failures.items()))
        raise InvariantViolation(
            f"Reinflation failed at {len(failures)} threshold(s): {details}",
            stage="reinflation"
        )
    return context.reinflated
