"""Checks for the external binaries the pipeline drives."""

import logging
import shutil
from typing import Dict, Any, List, Optional, Tuple

from panladder.core.types import SequenceType, ValidationResult


logger = logging.getLogger(__name__)

# Alternative spellings of the CD-HIT binaries, (protein, nucleotide)
CDHIT_EXECUTABLES: List[Tuple[str, str]] = [
    ("cd-hit", "cd-hit-est"),
    ("cdhit", "cdhit-est"),
]

SEARCH_EXECUTABLES = {
    ("blast", SequenceType.PROTEIN): ["makeblastdb", "blastp"],
    ("blast", SequenceType.NUCLEOTIDE): ["makeblastdb", "blastn"],
    ("diamond", SequenceType.PROTEIN): ["diamond"],
}

CLUSTERING_EXECUTABLES = ["mcl"]
OPTIONAL_EXECUTABLES = {"diamond": "cannot use the DIAMOND search engine"}


def find_cdhit_executable(sequence_type: SequenceType) -> Optional[str]:
    """Return the CD-HIT binary for the sequence type, or None if absent."""
    for protein_bin, nucleotide_bin in CDHIT_EXECUTABLES:
        if shutil.which(protein_bin) and shutil.which(nucleotide_bin):
            return protein_bin if sequence_type == SequenceType.PROTEIN else nucleotide_bin
    return None


def check_dependencies(config: Dict[str, Any]) -> ValidationResult:
    """
    Check that every binary the configured pipeline needs is on PATH.

    Missing required binaries are errors; missing optional binaries are
    warnings that only disable the feature depending on them.

    Args:
        config: Pipeline configuration

    Returns:
        ValidationResult listing missing binaries
    """
    errors = []
    warnings = []
    details = {}

    sequence_type = SequenceType(config.get("sequence", {}).get("type", "protein"))
    engine = config.get("similarity", {}).get("engine", "blast")

    cdhit = find_cdhit_executable(sequence_type)
    if cdhit is None:
        errors.append("cd-hit (or alternate invocation cdhit) not found in system path")
    details["cd-hit"] = cdhit

    required = SEARCH_EXECUTABLES.get((engine, sequence_type), []) + CLUSTERING_EXECUTABLES
    for executable in required:
        location = shutil.which(executable)
        details[executable] = location
        if location is None:
            errors.append(f"{executable} binary not found in system path")

    for executable, consequence in OPTIONAL_EXECUTABLES.items():
        if executable in required:
            continue
        if shutil.which(executable) is None:
            warnings.append(f"{executable} binary not found in system path, {consequence}")

    for warning in warnings:
        logger.warning(warning)

    return ValidationResult(
        is_valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        details=details
    )
