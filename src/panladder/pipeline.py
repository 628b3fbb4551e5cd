"""Main pipeline orchestration module."""

import logging
import shutil
from pathlib import Path
from typing import Dict, Any, Union, Optional, Literal, Sequence
import psutil
import time

from panladder.core.artifacts import create_artifact_store
from panladder.core.context import PipelineContext
from panladder.core.exceptions import DependencyError, PipelineError, ValidationError
from panladder.core.types import ValidationResult
from panladder.utils.config import validate_pipeline_settings
from panladder.modules.dependencies import check_dependencies
from panladder.modules.sequences import (
    assign_genomes, count_genomes, read_genome_map, read_loci, sample_name
)
from panladder.modules.tools import ToolSet, build_toolset
from panladder.modules.deflation import deflate_loci
from panladder.modules.similarity import build_similarity_graph
from panladder.modules.hierarchy import cluster_hierarchy
from panladder.modules.reinflation import reinflate_clusters
from panladder.modules.output import write_deliverables, write_summary


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def run_pangenome_construction(
    input_fasta: Union[str, Path],
    output_dir: Union[str, Path],
    config: Dict[str, Any],
    loci_file: Optional[Union[str, Path]] = None,
    tools: Optional[ToolSet] = None,
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
) -> Dict[str, Any]:
    """
    Deflate, search, cluster and reinflate one dataset.

    Args:
        input_fasta: FASTA file of loci sequences
        output_dir: Directory for pipeline outputs
        config: Complete pipeline configuration dictionary
        loci_file: Optional table of locus id -> genome id (enables core extraction)
        tools: External tool adapters; built from the configuration when omitted
        log_level: Logging verbosity level

    Returns:
        Dictionary containing pipeline results and metadata
    """
    input_fasta = Path(input_fasta)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    file_handler = setup_logging(log_level, output_dir / "pipeline.log")

    start_time = time.time()
    results = {
        "start_time": start_time,
        "pipeline_version": "1.0.0",
        "input": str(input_fasta)
    }

    try:
        # Configuration problems abort before any external tool runs
        settings = validate_pipeline_settings(config)

        validation_result = validate_pipeline_inputs([input_fasta], config, loci_file)
        for warning in validation_result.warnings:
            logger.warning(warning)
        if not validation_result.is_valid:
            raise ValidationError(
                f"Input validation failed: {validation_result.errors}", stage="input"
            )
        logger.info("Input validation passed")

        if tools is None:
            dependency_result = check_dependencies(config)
            if not dependency_result.is_valid:
                raise DependencyError(
                    f"Dependencies missing: {dependency_result.errors}",
                    dependency=", ".join(dependency_result.errors)
                )
            tools = build_toolset(config)

        sample = sample_name(input_fasta)
        results["sample"] = sample
        logger.info(f"Opening {sample}")

        genome_map = read_genome_map(Path(loci_file)) if loci_file else None
        loci = assign_genomes(read_loci(input_fasta), genome_map)

        work_dir = output_dir / f"{sample}.tmp"
        work_dir.mkdir(exist_ok=True)
        artifacts_config = config.get("artifacts", {})

        context = PipelineContext(
            sample=sample,
            config=config,
            loci={locus.locus_id: locus for locus in loci},
            sequence_type=settings["sequence_type"],
            dedup_ladder=settings["dedup_ladder"],
            cluster_ladder=settings["cluster_ladder"],
            output_dir=output_dir,
            work_dir=work_dir,
            artifacts=create_artifact_store(
                sample,
                work_dir / "artifacts",
                storage=artifacts_config.get("storage", "auto"),
                n_loci=len(loci),
                in_memory_max_loci=artifacts_config.get("in_memory_max_loci", 50000)
            ),
            n_genomes=count_genomes(genome_map)
        )

        logger.info(f"Sequence type: {context.sequence_type.value}")
        logger.info(f"Threshold(s): {context.cluster_ladder}")
        logger.info(f"MCL inflation value: {config.get('clustering', {}).get('inflation', 1.5)}")

        deflate_loci(context, tools.dedup)
        results["n_loci"] = context.total_loci
        results["n_genomes"] = context.n_genomes
        results["n_core_loci"] = len(context.core_set)
        results["n_representatives"] = len(context.deflation_map)

        build_similarity_graph(context, tools.search)
        results["n_edges"] = len(context.edges)

        cluster_hierarchy(context, tools.graph)
        reinflate_clusters(context)
        results["n_clusters"] = {t: len(rows) for t, rows in context.reinflated.items()}

        output_files = write_deliverables(context, output_dir)
        if config.get("output", {}).get("summary", True):
            output_files["summary"] = write_summary(context, output_dir)
        results["output_files"] = {k: str(v) for k, v in output_files.items()}

        if not config.get("output", {}).get("retain", False):
            shutil.rmtree(work_dir, ignore_errors=True)

        end_time = time.time()
        results["end_time"] = end_time
        results["runtime_seconds"] = end_time - start_time
        results["runtime_formatted"] = f"{(end_time - start_time) / 60:.1f} minutes"

        logger.info(f"Pipeline completed successfully in {results['runtime_formatted']}")
        return results

    except Exception as e:
        end_time = time.time()
        results["end_time"] = end_time
        results["runtime_seconds"] = end_time - start_time
        results["error"] = str(e)

        logger.error(f"Pipeline failed after {(end_time - start_time) / 60:.1f} minutes: {e}")
        raise

    finally:
        if file_handler is not None:
            logging.getLogger().removeHandler(file_handler)
            file_handler.close()


def run_datasets(
    input_files: Sequence[Union[str, Path]],
    output_dir: Union[str, Path],
    config: Dict[str, Any],
    loci_file: Optional[Union[str, Path]] = None,
    tools: Optional[ToolSet] = None,
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
) -> Dict[str, Dict[str, Any]]:
    """
    Run the pipeline on several datasets; a failing dataset does not stop the others.

    Returns:
        Dictionary mapping input file to its results (with "error" on failure)
    """
    all_results = {}
    for input_file in input_files:
        try:
            all_results[str(input_file)] = run_pangenome_construction(
                input_fasta=input_file,
                output_dir=output_dir,
                config=config,
                loci_file=loci_file,
                tools=tools,
                log_level=log_level
            )
        except PipelineError as e:
            logger.error(f"Dataset {input_file} failed: {e}")
            all_results[str(input_file)] = {"input": str(input_file), "error": str(e)}
    return all_results


def validate_pipeline_inputs(
    input_files: Sequence[Union[str, Path]],
    config: Dict[str, Any],
    loci_file: Optional[Union[str, Path]] = None
) -> ValidationResult:
    """
    Validation of pipeline inputs before processing.

    Args:
        input_files: Input FASTA files
        config: Pipeline configuration
        loci_file: Optional loci table

    Returns:
        ValidationResult with validation status and details
    """
    errors = []
    warnings = []
    details = {}

    for input_file in input_files:
        input_file = Path(input_file)
        try:
            sample_name(input_file)
        except ValidationError as e:
            errors.append(str(e))
        if not input_file.is_file():
            errors.append(f"file {input_file} does not exist")

    if loci_file is not None and not Path(loci_file).is_file():
        errors.append(f"loci list file not found: {loci_file}")

    core_extraction = config.get("deflation", {}).get("core_extraction", True)
    if core_extraction and loci_file is None:
        warnings.append("cannot extract core loci during deflation unless loci list is provided")

    memory_gb = psutil.virtual_memory().total // (1024**3)
    if memory_gb < 4:
        warnings.append(f"Low system memory: {memory_gb}GB")
    details["system_memory_gb"] = memory_gb

    return ValidationResult(
        is_valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        details=details
    )


def setup_logging(level: str, log_file: Optional[Path] = None) -> Optional[logging.FileHandler]:
    """
    Setup logging configuration.

    The console handler is only installed when the root logger has none, so an
    embedding application keeps its own. The log file is attached either way.

    Args:
        level: Logging level
        log_file: Optional log file path

    Returns:
        The file handler added for log_file, or None if none was added
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=getattr(logging, level.upper()),
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler()]
        )

    if log_file is None:
        return None

    log_path = Path(log_file).resolve()
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_path:
            return None

    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(getattr(logging, level.upper()))
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(file_handler)
    return file_handler
