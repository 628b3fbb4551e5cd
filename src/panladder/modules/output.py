"""Output generation: per-threshold cluster tables and run summary."""

import logging
from pathlib import Path
from typing import Dict

import numpy as np
import pandas as pd

from panladder.core.artifacts import ArtifactKind, DiskArtifactStore
from panladder.core.context import PipelineContext


logger = logging.getLogger(__name__)


def write_deliverables(context: PipelineContext, output_dir: Path) -> Dict[str, Path]:
    """
    Write the reinflated cluster tables, core clusters and deflation clusters.

    Args:
        context: Pipeline context after reinflation
        output_dir: Directory for the final tables

    Returns:
        Dictionary mapping output name to file path
    """
    store = DiskArtifactStore(output_dir, context.sample)
    output_files = {}

    for kind in (ArtifactKind.CORE_CLUSTERS, ArtifactKind.DEFLATION_CLUSTERS):
        store.put_rows(kind, context.artifacts.get_rows(kind))
        output_files[kind.name.lower()] = store.location(kind)

    for threshold, rows in context.reinflated.items():
        store.put_rows(ArtifactKind.REINFLATED, [list(row) for row in rows], threshold)
        output_files[f"reinflated_{threshold}"] = store.location(ArtifactKind.REINFLATED, threshold)

    logger.info(f"Saved {len(context.reinflated)} reinflated cluster tables to {output_dir}")
    return output_files


def summarize_clusters(context: PipelineContext) -> pd.DataFrame:
    """Cluster counts and sizes for every reinflated threshold."""
    records = []
    for threshold in sorted(context.reinflated):
        sizes = np.array([len(row) for row in context.reinflated[threshold]], dtype=int)
        records.append({
            "threshold": threshold,
            "clusters": len(sizes),
            "core_clusters": context.core_set.n_clusters,
            "loci": int(sizes.sum()) if len(sizes) else 0,
            "largest_cluster": int(sizes.max()) if len(sizes) else 0,
            "mean_cluster_size": round(float(sizes.mean()), 3) if len(sizes) else 0.0,
            "singletons": int(np.count_nonzero(sizes == 1))
        })

    columns = ["threshold", "clusters", "core_clusters", "loci",
               "largest_cluster", "mean_cluster_size", "singletons"]
    return pd.DataFrame.from_records(records, columns=columns)


def write_summary(context: PipelineContext, output_dir: Path) -> Path:
    summary = summarize_clusters(context)
    summary_file = output_dir / f"{context.sample}.cluster_summary.tsv"
    summary.to_csv(summary_file, sep="\t", index=False)
    logger.info(f"Saved cluster summary to {summary_file}")
    return summary_file
