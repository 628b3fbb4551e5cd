"""Configuration management and validation."""

import yaml
import json
from pathlib import Path
from typing import Dict, Any, Union

from panladder.core.types import (
    SequenceType, ValidationResult, build_cluster_ladder, build_dedup_ladder
)
from panladder.core.exceptions import ConfigurationError


SEARCH_ENGINES = ["blast", "diamond"]
ARTIFACT_STORAGE = ["auto", "memory", "disk"]
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def create_default_configuration() -> Dict[str, Any]:
    """
    Create the default pipeline configuration.

    Returns:
        Default configuration dictionary
    """
    return {
        "sequence": {
            "type": "protein"
        },
        "resources": {
            "threads": 2
        },
        "deflation": {
            "low": 98,
            "step": 0.5,
            "core_extraction": True,
            "coverage": 0.9,
            "memory_mb": None
        },
        "similarity": {
            "engine": "blast",
            "evalue": None,
            "hsp_length": 0.0,
            "hsp_prop": 0.0,
            "chunks": None
        },
        "clustering": {
            "thresholds": [50, 60, 70, 80, 90, 95, 98],
            "single_threshold": 98,
            "inflation": 1.5
        },
        "artifacts": {
            "storage": "auto",
            "in_memory_max_loci": 50000
        },
        "output": {
            "retain": False,
            "summary": True
        },
        "logging": {
            "level": "INFO"
        }
    }


def load_configuration(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a configuration file and merge it over the defaults.

    Args:
        config_path: Path to configuration file (YAML or JSON)

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigurationError: Invalid configuration
        FileNotFoundError: Configuration file not found
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r') as f:
            if config_path.suffix.lower() in ['.yaml', '.yml']:
                config = yaml.safe_load(f)
            elif config_path.suffix.lower() == '.json':
                config = json.load(f)
            else:
                raise ConfigurationError(
                    f"Unsupported config file format: {config_path.suffix}", config_path
                )

    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Error parsing configuration file: {e}", config_path)

    if not isinstance(config, dict):
        raise ConfigurationError("Configuration file must contain a mapping", config_path)

    return merge_configurations(create_default_configuration(), config)


def validate_configuration_schema(config: Dict[str, Any]) -> ValidationResult:
    """
    Structural configuration checks.

    Args:
        config: Configuration dictionary

    Returns:
        ValidationResult with validation status
    """
    errors = []
    warnings = []

    for section in ["sequence", "deflation", "similarity", "clustering", "resources"]:
        if section not in config:
            warnings.append(f"Missing '{section}' configuration - using defaults")
        elif not isinstance(config[section], dict):
            errors.append(f"'{section}' must be a dictionary")

    if not errors:
        try:
            validate_pipeline_settings(config)
        except ConfigurationError as e:
            errors.append(str(e))

    return ValidationResult(
        is_valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        details={"validation": "basic_checks_completed"}
    )


def _proportion(value: Any, name: str) -> float:
    try:
        value = float(value or 0.0)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be numeric, got {value}")
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} is a proportion and must be between 0 and 1, got {value}")
    return value


def validate_pipeline_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Semantic checks run before any external tool is started.

    Args:
        config: Configuration dictionary

    Returns:
        Dictionary with the resolved sequence type and both threshold ladders

    Raises:
        ConfigurationError: Invalid values or conflicting options
    """
    sequence_config = config.get("sequence", {})
    deflation_config = config.get("deflation", {})
    similarity_config = config.get("similarity", {})
    clustering_config = config.get("clustering", {})

    try:
        sequence_type = SequenceType(sequence_config.get("type", "protein"))
    except ValueError:
        raise ConfigurationError(f"Unknown sequence type: {sequence_config.get('type')}")

    cluster_ladder = build_cluster_ladder(
        clustering_config.get("thresholds"), clustering_config.get("single_threshold", 98)
    )
    dedup_ladder = build_dedup_ladder(
        deflation_config.get("low", 98), deflation_config.get("step", 0.5)
    )
    if dedup_ladder[-1] < cluster_ladder[-1]:
        raise ConfigurationError(
            f"Lowest deflation threshold ({dedup_ladder[-1]:g}) is below the highest "
            f"clustering threshold ({cluster_ladder[-1]})"
        )

    engine = similarity_config.get("engine", "blast")
    if engine not in SEARCH_ENGINES:
        raise ConfigurationError(f"Unknown search engine: {engine}")
    if engine == "diamond" and sequence_type == SequenceType.NUCLEOTIDE:
        raise ConfigurationError("diamond can only be applied to protein alignments")

    hsp_length = _proportion(similarity_config.get("hsp_length"), "hsp_length")
    hsp_prop = _proportion(similarity_config.get("hsp_prop"), "hsp_prop")
    if hsp_length > 0 and hsp_prop > 0:
        raise ConfigurationError("hsp_length and hsp_prop filters cannot be combined")

    _proportion(deflation_config.get("coverage", 0.9), "deflation coverage")

    evalue = similarity_config.get("evalue")
    inflation = clustering_config.get("inflation", 1.5)
    try:
        evalue = None if evalue is None else float(evalue)
        inflation = float(inflation)
    except (TypeError, ValueError):
        raise ConfigurationError(f"e-value ({evalue}) and inflation ({inflation}) must be numeric")
    if evalue is not None and evalue <= 0:
        raise ConfigurationError(f"e-value must be positive, got {evalue}")
    if inflation <= 1.0:
        raise ConfigurationError(f"MCL inflation value must be greater than 1, got {inflation}")

    threads = config.get("resources", {}).get("threads", 2)
    if not isinstance(threads, int) or threads < 1:
        raise ConfigurationError(f"Threads must be a positive integer, got {threads}")

    storage = config.get("artifacts", {}).get("storage", "auto")
    if storage not in ARTIFACT_STORAGE:
        raise ConfigurationError(f"Unknown artifact storage: {storage}")

    log_level = config.get("logging", {}).get("level", "INFO")
    if str(log_level).upper() not in LOG_LEVELS:
        raise ConfigurationError(f"Unknown logging level: {log_level}")

    return {
        "sequence_type": sequence_type,
        "dedup_ladder": dedup_ladder,
        "cluster_ladder": cluster_ladder
    }


def merge_configurations(
    base_config: Dict[str, Any],
    override_config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Merge configuration dictionaries with validation.

    Args:
        base_config: Base configuration
        override_config: Override parameters

    Returns:
        Merged configuration
    """
    def merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    merged = merge_dicts(base_config, override_config)

    validation_result = validate_configuration_schema(merged)
    if not validation_result.is_valid:
        raise ConfigurationError(
            f"Merged configuration validation failed: {validation_result.errors}"
        )

    return merged


def save_configuration(config: Dict[str, Any], output_path: Union[str, Path]) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration dictionary
        output_path: Output file path

    Raises:
        ConfigurationError: Error saving configuration
    """
    output_path = Path(output_path)

    try:
        with open(output_path, 'w') as f:
            if output_path.suffix.lower() in ['.yaml', '.yml']:
                yaml.dump(config, f, default_flow_style=False, indent=2)
            elif output_path.suffix.lower() == '.json':
                json.dump(config, f, indent=2)
            else:
                raise ConfigurationError(f"Unsupported output format: {output_path.suffix}")

    except (yaml.YAMLError, TypeError, IOError) as e:
        raise ConfigurationError(f"Error saving configuration: {e}")
