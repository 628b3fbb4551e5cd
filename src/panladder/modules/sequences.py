"""Reading loci from FASTA and genome membership from loci tables."""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd
from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from panladder.core.exceptions import ValidationError
from panladder.core.types import Locus


logger = logging.getLogger(__name__)

FASTA_SUFFIXES = (".aa.fasta", ".fasta", ".fa", ".fas")


def sample_name(fasta_file: Path) -> str:
    """Dataset name: the FASTA file name without its recognised suffix."""
    name = Path(fasta_file).name
    for suffix in FASTA_SUFFIXES:
        if name.endswith(suffix):
            return name[:-len(suffix)]
    raise ValidationError(f"{fasta_file} suffix not recognised", stage="input")


def read_loci(fasta_file: Path) -> List[Locus]:
    """
    Read loci from a FASTA file.

    Alignment gap characters are removed from sequences.

    Args:
        fasta_file: Input FASTA file (.fasta, .fa, .fas or .aa.fasta)

    Returns:
        Loci in file order

    Raises:
        ValidationError: Missing file, unknown suffix, no sequences or duplicate ids
    """
    fasta_file = Path(fasta_file)
    sample_name(fasta_file)
    if not fasta_file.is_file():
        raise ValidationError(f"file {fasta_file} does not exist.", stage="input")

    loci = []
    seen = set()
    duplicates = []
    try:
        for record in SeqIO.parse(str(fasta_file), "fasta"):
            if record.id in seen:
                duplicates.append(record.id)
                continue
            seen.add(record.id)
            loci.append(Locus(locus_id=record.id, sequence=str(record.seq).replace("-", "")))
    except ValueError as e:
        raise ValidationError(f"{fasta_file} is not a valid FASTA file: {e}", stage="input") from e

    if duplicates:
        raise ValidationError(
            f"{len(duplicates)} duplicate locus ids in {fasta_file}",
            errors=duplicates[:10],
            stage="input"
        )
    if not loci:
        raise ValidationError(f"No sequences in input fasta file {fasta_file}", stage="input")

    logger.info(f"{fasta_file} contains {len(loci)} sequences")
    return loci


def read_genome_map(loci_file: Path) -> Dict[str, str]:
    """
    Read a loci table mapping locus id (column 1) to genome id (column 2).

    Additional columns are ignored.
    """
    loci_file = Path(loci_file)
    if not loci_file.is_file():
        raise ValidationError(f"loci list file not found: {loci_file}", stage="input")

    table = pd.read_csv(loci_file, sep="\t", header=None, usecols=[0, 1], dtype=str)
    table.columns = ["locus_id", "genome_id"]
    table = table.dropna()
    genome_map = dict(zip(table["locus_id"], table["genome_id"]))

    logger.info(
        f"Loci file contains {len(genome_map)} loci from "
        f"{table['genome_id'].nunique()} genomes"
    )
    return genome_map


def assign_genomes(loci: Sequence[Locus], genome_map: Optional[Dict[str, str]]) -> List[Locus]:
    """Attach genome ids to loci; loci absent from the map keep no genome."""
    if not genome_map:
        return list(loci)
    return [replace(locus, genome_id=genome_map.get(locus.locus_id)) for locus in loci]


def count_genomes(genome_map: Optional[Dict[str, str]]) -> int:
    """Number of distinct genomes named by the loci table (0 without one)."""
    if not genome_map:
        return 0
    return len(set(genome_map.values()))


def write_fasta(loci: Sequence[Locus], fasta_file: Path) -> Path:
    """Write loci to a FASTA file with bare identifiers."""
    records = (
        SeqRecord(Seq(locus.sequence), id=locus.locus_id, description="")
        for locus in loci
    )
    with open(fasta_file, 'w') as f:
        SeqIO.write(records, f, "fasta")
    return fasta_file
