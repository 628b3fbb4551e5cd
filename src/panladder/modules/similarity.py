"""All-vs-all homology search over representative loci."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Sequence, TypeVar

from panladder.core.artifacts import ArtifactKind
from panladder.core.context import PipelineContext
from panladder.core.exceptions import ConfigurationError, PipelineError, ValidationError
from panladder.core.types import Locus, SimilarityEdge, placeholder_self_hit
from panladder.modules.tools import SearchTool


logger = logging.getLogger(__name__)

T = TypeVar("T")


def split_into_chunks(items: Sequence[T], n_chunks: int) -> List[List[T]]:
    """Split items into at most n_chunks contiguous, non-empty chunks of near-equal size."""
    n_chunks = max(1, min(n_chunks, len(items)))
    size, remainder = divmod(len(items), n_chunks)
    chunks = []
    start = 0
    for i in range(n_chunks):
        end = start + size + (1 if i < remainder else 0)
        if end > start:
            chunks.append(list(items[start:end]))
        start = end
    return chunks


def _reflect(ratio: float) -> float:
    # ratios above 1 are folded back below 1
    return 1 - (ratio - 1) if ratio > 1 else ratio


def _require_lengths(edge: SimilarityEdge) -> None:
    if edge.query_length is None:
        raise ValidationError(
            f"Search row {edge.query_id} -> {edge.subject_id} lacks query length",
            stage="similarity"
        )


def passes_query_span(edge: SimilarityEdge, min_fraction: float) -> bool:
    """HSP span on the query must exceed ``min_fraction`` of the query length."""
    _require_lengths(edge)
    return _reflect(edge.query_span / edge.query_length) > min_fraction


def passes_reciprocal_span(edge: SimilarityEdge, min_fraction: float) -> bool:
    """
    Query length and query span, each relative to the subject span, must
    both exceed ``min_fraction``.
    """
    _require_lengths(edge)
    query_vs_subject = _reflect(edge.query_length / edge.subject_span)
    span_vs_span = _reflect(edge.query_span / edge.subject_span)
    return query_vs_subject > min_fraction and span_vs_span > min_fraction


def filter_edges(
    edges: Sequence[SimilarityEdge],
    hsp_length: float = 0.0,
    hsp_prop: float = 0.0
) -> List[SimilarityEdge]:
    """
    Drop alignments with short HSPs; self hits are always kept.

    Args:
        edges: Raw search rows
        hsp_length: Minimum query span as a fraction of query length (0 disables)
        hsp_prop: Minimum reciprocal span fraction (0 disables)

    Returns:
        Edges passing the active filter

    Raises:
        ConfigurationError: Both filters are active
    """
    if hsp_length > 0 and hsp_prop > 0:
        raise ConfigurationError("hsp_length and hsp_prop filters are mutually exclusive")

    if hsp_length > 0:
        kept = [e for e in edges if e.is_self_hit or passes_query_span(e, hsp_length)]
    elif hsp_prop > 0:
        kept = [e for e in edges if e.is_self_hit or passes_reciprocal_span(e, hsp_prop)]
    else:
        kept = list(edges)

    if len(kept) != len(edges):
        logger.info(f"Removed {len(edges) - len(kept)} alignments with short HSPs")
    return kept


def repair_self_hits(
    edges: Sequence[SimilarityEdge],
    representatives: Sequence[str],
    include_lengths: bool = False
) -> List[SimilarityEdge]:
    """
    Make every representative similar to itself at exactly 100% identity.

    Existing self rows have their identity forced to 100; representatives the
    search tool reported no self row for get a placeholder row.
    """
    repaired = []
    has_self_hit = set()
    for edge in edges:
        if edge.is_self_hit:
            has_self_hit.add(edge.query_id)
            edge = replace(edge, identity=100.0)
        repaired.append(edge)

    missing = [rep for rep in representatives if rep not in has_self_hit]
    for rep in missing:
        repaired.append(placeholder_self_hit(rep, include_lengths))

    if missing:
        logger.info(f"Added placeholder self hits for {len(missing)} representatives")
    return repaired


def run_chunked_search(
    search_tool: SearchTool,
    queries: Sequence[Locus],
    database: Path,
    search_dir: Path,
    evalue: float,
    threads: int,
    n_chunks: int,
    include_lengths: bool
) -> List[SimilarityEdge]:
    """
    Search query chunks against the database with a bounded worker pool.

    Each chunk writes its own output file; results are concatenated in chunk
    order.
    """
    chunks = split_into_chunks(queries, n_chunks)
    workers = max(1, min(threads, len(chunks)))
    threads_per_chunk = max(1, threads // workers)

    if len(chunks) == 1:
        return search_tool.search(chunks[0], database, search_dir / "chunk_1.tsv",
                                  evalue, threads, include_lengths)

    logger.info(f"Searching {len(chunks)} chunks using {workers} workers")
    results: Dict[int, List[SimilarityEdge]] = {}

    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_chunk = {
            executor.submit(
                search_tool.search,
                chunk,
                database,
                search_dir / f"chunk_{index}.tsv",
                evalue,
                threads_per_chunk,
                include_lengths
            ): index
            for index, chunk in enumerate(chunks, 1)
        }

        for future in as_completed(future_to_chunk):
            index = future_to_chunk[future]
            try:
                results[index] = future.result()
            except PipelineError as e:
                logger.error(f"Search of chunk {index} failed: {e}")
                raise

    edges = []
    for index in sorted(results):
        edges.extend(results[index])
    return edges


def build_similarity_graph(context: PipelineContext, search_tool: SearchTool) -> List[SimilarityEdge]:
    """
    All-vs-all search of the representatives, filtered and self-repaired.

    The resulting edges are stored on the context and as the EDGES artifact.
    """
    start_time = time.time()
    representatives = context.representative_loci()
    if not representatives:
        logger.info("No representative loci - skipping homology search")
        context.edges = []
        context.artifacts.put_rows(ArtifactKind.EDGES, [])
        return []

    similarity_config = context.config.get("similarity", {})
    evalue = similarity_config.get("evalue") or search_tool.default_evalue
    hsp_length = float(similarity_config.get("hsp_length", 0.0) or 0.0)
    hsp_prop = float(similarity_config.get("hsp_prop", 0.0) or 0.0)
    include_lengths = hsp_length > 0 or hsp_prop > 0
    n_chunks = similarity_config.get("chunks") or context.threads

    logger.info(
        f"Running all-vs-all {search_tool.name} on {len(representatives)} representatives "
        f"(e-value {evalue:g})"
    )
    search_dir = context.work_dir / "search"
    database = search_tool.make_database(representatives, search_dir)

    raw_edges = run_chunked_search(
        search_tool=search_tool,
        queries=representatives,
        database=database,
        search_dir=search_dir,
        evalue=float(evalue),
        threads=context.threads,
        n_chunks=int(n_chunks),
        include_lengths=include_lengths
    )
    logger.info(f"{len(raw_edges)} alignments reported")

    edges = filter_edges(raw_edges, hsp_length=hsp_length, hsp_prop=hsp_prop)
    edges = repair_self_hits(
        edges, [locus.locus_id for locus in representatives], include_lengths
    )

    context.edges = edges
    context.artifacts.put_rows(ArtifactKind.EDGES, [edge.to_row() for edge in edges])
    logger.info(f"Similarity graph built in {time.time() - start_time:.1f} secs")
    return edges
