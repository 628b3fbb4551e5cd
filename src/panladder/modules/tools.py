"""Adapters for the external dedup, homology search and graph clustering tools."""

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Any, Optional, Sequence, Tuple

import psutil

from panladder.core.exceptions import ConfigurationError, ToolExecutionError, ValidationError
from panladder.core.types import Locus, SequenceType, SimilarityEdge
from panladder.modules.dependencies import find_cdhit_executable
from panladder.modules.sequences import write_fasta


logger = logging.getLogger(__name__)

WeightedEdge = Tuple[str, str, float]

STANDARD_COLUMNS = [
    "qseqid", "sseqid", "pident", "length", "mismatch", "gapopen",
    "qstart", "qend", "sstart", "send", "evalue", "bitscore"
]
LENGTH_COLUMNS = ["qlen", "slen"]


def run_tool(cmd: List[str], tool: str, stage: str,
             log_file: Optional[Path] = None) -> subprocess.CompletedProcess:
    """
    Run an external command, raising ToolExecutionError on failure.

    With ``log_file`` the command's stdout and stderr are appended to it,
    otherwise they are captured.
    """
    command = " ".join(str(part) for part in cmd)
    logger.debug(f"Command: {command}")
    cmd = [str(part) for part in cmd]

    try:
        if log_file is not None:
            with open(log_file, 'a') as log:
                log.write(f"# {command}\n")
                log.flush()
                return subprocess.run(cmd, stdout=log, stderr=subprocess.STDOUT,
                                      text=True, check=True)
        return subprocess.run(cmd, capture_output=True, text=True, check=True)

    except subprocess.CalledProcessError as e:
        logger.error(f"{tool} failed: {e.stderr or 'see ' + str(log_file)}")
        error = ToolExecutionError(tool, command, e.returncode, e.stderr or "",
                                   stage=stage, log_file=log_file)
        logger.debug(f"Tool error details: {error.get_error_details()}")
        raise error from e
    except FileNotFoundError as e:
        error = ToolExecutionError(tool, command, 127, f"{cmd[0]} not found in PATH",
                                   stage=stage, log_file=log_file)
        logger.debug(f"Tool error details: {error.get_error_details()}")
        raise error from e


# Dedup (near-duplicate clustering)

@dataclass
class DedupResult:
    """Clusters from one dedup run: representative -> members (representative first)."""
    clusters: Dict[str, List[str]]


class DedupTool:
    """Near-duplicate clustering at a single identity cutoff."""
    name = "dedup"

    def run(self, loci: Sequence[Locus], work_dir: Path, label: str, cutoff: float,
            word_size: int, threads: int, memory_mb: Optional[int],
            log_file: Path) -> DedupResult:
        raise NotImplementedError


def estimate_memory_mb(fasta_file: Path, minimum: int = 2000) -> int:
    """CD-HIT memory budget: five times the input size in MB, at least ``minimum``."""
    required = int(fasta_file.stat().st_size * 5 / 1000000)
    required = max(required, minimum)

    available = int(psutil.virtual_memory().available / 1000000)
    if required > available:
        logger.warning(
            f"CD-HIT memory budget ({required} MB) exceeds available memory ({available} MB)"
        )
    return required


class CdHitTool(DedupTool):
    """CD-HIT (protein) / CD-HIT-EST (nucleotide)."""
    name = "cd-hit"

    def __init__(self, sequence_type: SequenceType, coverage: float = 0.9,
                 executable: Optional[str] = None) -> None:
        self.sequence_type = sequence_type
        self.coverage = coverage
        default = "cd-hit" if sequence_type == SequenceType.PROTEIN else "cd-hit-est"
        self.executable = executable or find_cdhit_executable(sequence_type) or default

    def build_command(self, input_fasta: Path, output_prefix: Path, cutoff: float,
                      word_size: int, threads: int, memory_mb: int) -> List[str]:
        cmd = [
            self.executable,
            "-i", str(input_fasta),
            "-o", str(output_prefix),
            "-aS", f"{self.coverage:g}",
            "-c", f"{cutoff:g}",
            "-T", str(threads),
            "-g", "1",
            "-n", str(word_size),
            "-M", str(memory_mb),
            "-d", "256"
        ]
        if self.sequence_type == SequenceType.NUCLEOTIDE:
            cmd.extend(["-r", "0"])
        return cmd

    def run(self, loci, work_dir, label, cutoff, word_size, threads, memory_mb, log_file):
        work_dir.mkdir(parents=True, exist_ok=True)
        input_fasta = write_fasta(loci, work_dir / f"{label}.input.fasta")
        output_prefix = work_dir / label

        if not memory_mb:
            memory_mb = estimate_memory_mb(input_fasta)

        cmd = self.build_command(input_fasta, output_prefix, cutoff, word_size, threads, memory_mb)
        logger.info(f"Running {self.executable} at {cutoff:g} (word size {word_size})")
        run_tool(cmd, self.executable, "deflation", log_file=log_file)

        clusters = parse_cdhit_clusters(Path(f"{output_prefix}.clstr"))
        return DedupResult(clusters=clusters)


CDHIT_HEADER = re.compile(r"^>Cluster\s+(\d+)")
CDHIT_MEMBER = re.compile(r"^\d+\s+(\d+)(?:aa|nt),\s+>(.+?)\.\.\.\s*(.*)$")


def parse_cdhit_clusters(clstr_file: Path) -> Dict[str, List[str]]:
    """
    Parse a CD-HIT ``.clstr`` report.

    Format::

        >Cluster 0
        0	312aa, >locus_a... *
        1	310aa, >locus_b... at 99.36%

    Returns:
        Representative id -> member ids, representative first, in report order

    Raises:
        ValidationError: Malformed line or cluster without a representative
    """
    clusters = {}
    members: Optional[List[str]] = None
    representative = None

    def close_cluster() -> None:
        if members is None:
            return
        if representative is None:
            raise ValidationError(f"Cluster without representative in {clstr_file}",
                                  stage="deflation")
        clusters[representative] = [representative] + [m for m in members if m != representative]

    with open(clstr_file, 'r') as f:
        for line_no, line in enumerate(f, 1):
            line = line.rstrip("\n")
            if not line.strip():
                continue

            if CDHIT_HEADER.match(line):
                close_cluster()
                members = []
                representative = None
                continue

            match = CDHIT_MEMBER.match(line)
            if match is None or members is None:
                raise ValidationError(
                    f"{clstr_file}:{line_no} did not match cd-hit format: {line}",
                    stage="deflation"
                )
            locus_id = match.group(2)
            members.append(locus_id)
            if match.group(3).startswith("*"):
                representative = locus_id

    close_cluster()
    logger.debug(f"Parsed {len(clusters)} clusters from {clstr_file}")
    return clusters


# Homology search

class SearchTool:
    """All-vs-all homology search: build a database once, search query chunks against it."""
    name = "search"
    default_evalue = 1e-6

    def make_database(self, loci: Sequence[Locus], work_dir: Path) -> Path:
        raise NotImplementedError

    def search(self, queries: Sequence[Locus], database: Path, output_file: Path,
               evalue: float, threads: int, include_lengths: bool) -> List[SimilarityEdge]:
        raise NotImplementedError


class BlastSearchTool(SearchTool):
    """NCBI BLAST+ (blastp for protein, blastn for nucleotide)."""
    name = "blast"

    def __init__(self, sequence_type: SequenceType) -> None:
        self.sequence_type = sequence_type
        self.program = "blastp" if sequence_type == SequenceType.PROTEIN else "blastn"

    def make_database(self, loci, work_dir):
        work_dir.mkdir(parents=True, exist_ok=True)
        fasta = write_fasta(loci, work_dir / "representatives.fasta")
        dbtype = "prot" if self.sequence_type == SequenceType.PROTEIN else "nucl"
        run_tool(["makeblastdb", "-in", fasta, "-dbtype", dbtype], "makeblastdb", "similarity")
        return fasta

    def build_command(self, query_fasta: Path, database: Path, output_file: Path,
                      evalue: float, threads: int, include_lengths: bool) -> List[str]:
        outfmt = "6 std qlen slen" if include_lengths else "6"
        cmd = [self.program]
        if self.sequence_type == SequenceType.NUCLEOTIDE:
            cmd.extend(["-task", "blastn", "-dust", "no"])
        cmd.extend([
            "-query", str(query_fasta),
            "-db", str(database),
            "-max_hsps", "1",
            "-outfmt", outfmt,
            "-num_threads", str(threads),
            "-max_target_seqs", "10000",
            "-evalue", f"{evalue:g}",
            "-out", str(output_file)
        ])
        return cmd

    def search(self, queries, database, output_file, evalue, threads, include_lengths):
        query_fasta = write_fasta(queries, output_file.with_suffix(".query.fasta"))
        cmd = self.build_command(query_fasta, database, output_file, evalue, threads,
                                 include_lengths)
        run_tool(cmd, self.program, "similarity")
        return parse_search_output(output_file)


class DiamondSearchTool(SearchTool):
    """DIAMOND blastp in sensitive mode (protein only)."""
    name = "diamond"
    default_evalue = 0.001

    def __init__(self, query_cover: float = 0.0) -> None:
        self.query_cover = query_cover

    def make_database(self, loci, work_dir):
        work_dir.mkdir(parents=True, exist_ok=True)
        fasta = write_fasta(loci, work_dir / "representatives.fasta")
        database = work_dir / "representatives_db"
        run_tool(["diamond", "makedb", "--in", fasta, "--db", database], "diamond", "similarity")
        return database

    def build_command(self, query_fasta: Path, database: Path, output_file: Path,
                      evalue: float, threads: int, include_lengths: bool) -> List[str]:
        columns = STANDARD_COLUMNS + (LENGTH_COLUMNS if include_lengths else [])
        return [
            "diamond", "blastp",
            "-q", str(query_fasta),
            "-d", str(database),
            "-c", "1",
            "--query-cover", f"{self.query_cover * 100:g}",
            "--masking", "0",
            "--evalue", f"{evalue:g}",
            "--max-hsps", "1",
            "--threads", str(threads),
            "--outfmt", "6", *columns,
            "--sensitive",
            "--max-target-seqs", "0",
            "-o", str(output_file)
        ]

    def search(self, queries, database, output_file, evalue, threads, include_lengths):
        query_fasta = write_fasta(queries, output_file.with_suffix(".query.fasta"))
        cmd = self.build_command(query_fasta, database, output_file, evalue, threads,
                                 include_lengths)
        run_tool(cmd, "diamond", "similarity")
        return parse_search_output(output_file)


def parse_search_output(output_file: Path) -> List[SimilarityEdge]:
    """Parse tab-separated search output (12 standard columns, optional qlen/slen)."""
    edges = []
    if not output_file.exists():
        return edges

    with open(output_file, 'r') as f:
        for line_no, line in enumerate(f, 1):
            line = line.rstrip("\n")
            if not line.strip():
                continue
            try:
                edges.append(SimilarityEdge.from_row(line.split("\t")))
            except ValueError as e:
                raise ValidationError(f"{output_file}:{line_no} malformed search row: {e}",
                                      stage="similarity")
    return edges


# Graph clustering

class GraphClusterTool:
    """Clusters a weighted graph given as (label, label, weight) edges."""
    name = "graph"

    def cluster(self, edges: Sequence[WeightedEdge], work_dir: Path,
                inflation: float, threads: int) -> List[List[str]]:
        raise NotImplementedError


class MclTool(GraphClusterTool):
    """Markov Cluster algorithm in label (--abc) mode."""
    name = "mcl"

    def __init__(self, executable: str = "mcl") -> None:
        self.executable = executable

    def build_command(self, abc_file: Path, output_file: Path,
                      inflation: float, threads: int) -> List[str]:
        return [
            self.executable, str(abc_file), "--abc",
            "-te", str(threads),
            "-I", f"{inflation:g}",
            "-o", str(output_file)
        ]

    def cluster(self, edges, work_dir, inflation, threads):
        if not edges:
            return []
        work_dir.mkdir(parents=True, exist_ok=True)
        abc_file = write_abc(edges, work_dir / "graph.abc")
        output_file = work_dir / "clusters.mcl"

        cmd = self.build_command(abc_file, output_file, inflation, threads)
        run_tool(cmd, "mcl", "clustering", log_file=work_dir / "mcl.log")
        return parse_mcl_clusters(output_file)


def write_abc(edges: Sequence[WeightedEdge], abc_file: Path) -> Path:
    with open(abc_file, 'w') as f:
        for query, subject, weight in edges:
            f.write(f"{query}\t{subject}\t{weight:g}\n")
    return abc_file


def parse_mcl_clusters(output_file: Path) -> List[List[str]]:
    """One cluster per line, members separated by whitespace."""
    with open(output_file, 'r') as f:
        return [line.split() for line in f if line.strip()]


@dataclass
class ToolSet:
    """One adapter per external tool role."""
    dedup: DedupTool
    search: SearchTool
    graph: GraphClusterTool


def build_toolset(config: Dict[str, Any]) -> ToolSet:
    """Create the default adapters for a validated configuration."""
    sequence_type = SequenceType(config.get("sequence", {}).get("type", "protein"))
    deflation_config = config.get("deflation", {})
    similarity_config = config.get("similarity", {})
    engine = similarity_config.get("engine", "blast")

    dedup = CdHitTool(sequence_type, coverage=deflation_config.get("coverage", 0.9))

    if engine == "blast":
        search = BlastSearchTool(sequence_type)
    elif engine == "diamond":
        if sequence_type != SequenceType.PROTEIN:
            raise ConfigurationError("diamond can only be applied to protein alignments")
        search = DiamondSearchTool(query_cover=float(similarity_config.get("hsp_length") or 0.0))
    else:
        raise ConfigurationError(f"Unknown search engine: {engine}")

    return ToolSet(dedup=dedup, search=search, graph=MclTool())
