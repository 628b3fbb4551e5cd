"""Divisive MCL clustering over the identity threshold ladder."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from panladder.core.artifacts import ArtifactKind
from panladder.core.context import PipelineContext
from panladder.core.exceptions import InvariantViolation, PipelineError
from panladder.core.types import Cluster, PartitionTree, SimilarityEdge
from panladder.modules.tools import GraphClusterTool, WeightedEdge


logger = logging.getLogger(__name__)


def filter_by_identity(edges: Sequence[SimilarityEdge], threshold: float) -> List[SimilarityEdge]:
    """Edges with percent identity at or above the threshold."""
    return [edge for edge in edges if edge.identity >= threshold]


def edge_weights(edges: Sequence[SimilarityEdge]) -> List[WeightedEdge]:
    """
    Convert alignments to graph edges weighted by bit score per aligned
    position. Repeated (query, subject) pairs keep their best weight.
    """
    best: Dict[Tuple[str, str], float] = {}
    for edge in edges:
        weight = edge.bit_score / edge.alignment_length if edge.alignment_length else edge.bit_score
        key = (edge.query_id, edge.subject_id)
        if key not in best or weight > best[key]:
            best[key] = weight
    return [(query, subject, weight) for (query, subject), weight in best.items()]


def split_by_partition(
    edges: Sequence[SimilarityEdge],
    clusters: Sequence[Cluster]
) -> Dict[int, List[SimilarityEdge]]:
    """Group edges by the cluster holding both endpoints; edges between clusters are dropped."""
    cluster_of = {}
    for cluster in clusters:
        for member in cluster.members:
            cluster_of[member] = cluster.cluster_id

    groups: Dict[int, List[SimilarityEdge]] = {cluster.cluster_id: [] for cluster in clusters}
    for edge in edges:
        query_cluster = cluster_of.get(edge.query_id)
        if query_cluster is not None and query_cluster == cluster_of.get(edge.subject_id):
            groups[query_cluster].append(edge)
    return groups


def check_partition(clusters: Sequence[Cluster], nodes: Sequence[str], threshold: int) -> None:
    """
    Check that clusters partition the node set exactly.

    Raises:
        InvariantViolation: Nodes missing, duplicated or unknown
    """
    members = [member for cluster in clusters for member in cluster.members]
    if len(members) != len(nodes) or set(members) != set(nodes):
        raise InvariantViolation(
            f"Clusters at {threshold}% do not partition the representative loci",
            expected=len(nodes),
            observed=len(members),
            stage="clustering"
        )


def _cluster_subproblem(
    graph_tool: GraphClusterTool,
    parent: Cluster,
    edges: Sequence[SimilarityEdge],
    work_dir: Path,
    inflation: float
) -> List[List[str]]:
    # A lone representative cannot be split further
    if len(parent.members) == 1:
        return [list(parent.members)]
    return graph_tool.cluster(edge_weights(edges), work_dir, inflation, 1)


def refine_clusters(
    parents: Sequence[Cluster],
    edges: Sequence[SimilarityEdge],
    threshold: int,
    graph_tool: GraphClusterTool,
    work_dir: Path,
    inflation: float,
    max_workers: int
) -> List[Cluster]:
    """
    Re-cluster each parent cluster independently on its own edges.

    Sub-problems run on a bounded worker pool; results are concatenated in
    parent id order and relabelled 1..n.

    Args:
        parents: Clusters at the previous (looser) threshold
        edges: Edges already filtered at ``threshold``
        threshold: Identity threshold being clustered
        graph_tool: Graph clustering adapter
        work_dir: Directory for per-parent working files
        inflation: MCL inflation value
        max_workers: Size of the worker pool

    Returns:
        Clusters at ``threshold`` with parent ids set
    """
    sub_edges = split_by_partition(edges, parents)
    results: Dict[int, List[List[str]]] = {}

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        future_to_parent = {
            executor.submit(
                _cluster_subproblem,
                graph_tool,
                parent,
                sub_edges[parent.cluster_id],
                work_dir / f"cluster_{parent.cluster_id}",
                inflation
            ): parent.cluster_id
            for parent in parents
        }

        for future in as_completed(future_to_parent):
            parent_id = future_to_parent[future]
            try:
                results[parent_id] = future.result()
            except PipelineError as e:
                logger.error(f"Clustering of cluster {parent_id} at {threshold}% failed: {e}")
                raise

    clusters = []
    for parent in sorted(parents, key=lambda c: c.cluster_id):
        for members in results[parent.cluster_id]:
            clusters.append(Cluster(
                threshold=threshold,
                cluster_id=len(clusters) + 1,
                members=tuple(members),
                parent_id=parent.cluster_id
            ))
    return clusters


def _cluster_level(
    context: PipelineContext,
    graph_tool: GraphClusterTool,
    tree: PartitionTree,
    level: int
) -> None:
    ladder = context.cluster_ladder
    if level >= len(ladder):
        return

    start_time = time.time()
    threshold = ladder[level]
    inflation = float(context.config.get("clustering", {}).get("inflation", 1.5))
    work_dir = context.work_dir / "mcl" / str(threshold)
    logger.info(f"Running {graph_tool.name} at {threshold}%")

    # Always filtered from the full edge set, never from the previous level's subset
    filtered = filter_by_identity(context.edges, threshold)
    context.artifacts.put_rows(
        ArtifactKind.FILTERED_EDGES, [edge.to_row() for edge in filtered], threshold
    )

    if level == 0:
        groups = graph_tool.cluster(edge_weights(filtered), work_dir, inflation, context.threads)
        clusters = [
            Cluster(threshold=threshold, cluster_id=index, members=tuple(members))
            for index, members in enumerate(groups, 1)
        ]
        check_partition(clusters, context.deflation_map.representatives, threshold)
        tree.add_level(threshold, clusters)
    else:
        parent_threshold = ladder[level - 1]
        parents = tree.clusters_at(parent_threshold)
        if not parents:
            raise InvariantViolation(f"No clusters at {parent_threshold}%", stage="clustering")
        clusters = refine_clusters(
            parents, filtered, threshold, graph_tool, work_dir, inflation, context.threads
        )
        tree.add_level(threshold, clusters)
        tree.verify_refinement(parent_threshold, threshold)
        n_split = sum(
            1 for parent in parents
            if len(tree.children_of(parent_threshold, parent.cluster_id)) > 1
        )
        logger.info(f"{n_split} of {len(parents)} clusters at {parent_threshold}% split at {threshold}%")

    context.artifacts.put_rows(
        ArtifactKind.CLUSTERS, [list(cluster.members) for cluster in clusters], threshold
    )
    logger.info(
        f"{len(clusters)} clusters at {threshold}% - completed in "
        f"{time.time() - start_time:.1f} secs"
    )

    _cluster_level(context, graph_tool, tree, level + 1)


def cluster_hierarchy(context: PipelineContext, graph_tool: GraphClusterTool) -> PartitionTree:
    """
    Cluster representatives at every ladder threshold, coarse to fine.

    The lowest threshold is clustered globally; each tighter threshold
    re-clusters within the clusters of the previous one. Results are kept on
    the context's partition tree.
    """
    tree = context.partition_tree
    if not context.deflation_map:
        logger.info("No representative loci - every threshold has only core clusters")
        for threshold in context.cluster_ladder:
            tree.add_level(threshold, [])
            context.artifacts.put_rows(ArtifactKind.CLUSTERS, [], threshold)
        return tree

    _cluster_level(context, graph_tool, tree, 0)
    return tree
