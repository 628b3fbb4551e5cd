"""
Tests for configuration loading and validation.
"""

import json

import pytest
import yaml

from panladder.core.exceptions import ConfigurationError
from panladder.core.types import SequenceType
from panladder.utils.config import (
    create_default_configuration, load_configuration, merge_configurations,
    save_configuration, validate_configuration_schema, validate_pipeline_settings
)


class TestPipelineSettings:
    """Semantic configuration checks."""

    def test_defaults_are_valid(self):
        settings = validate_pipeline_settings(create_default_configuration())
        assert settings["sequence_type"] == SequenceType.PROTEIN
        assert settings["cluster_ladder"] == [50, 60, 70, 80, 90, 95, 98]
        assert settings["dedup_ladder"] == [100.0, 99.5, 99.0, 98.5, 98.0]

    def test_dedup_floor_below_top_threshold(self):
        config = create_default_configuration()
        config["deflation"]["low"] = 95
        with pytest.raises(ConfigurationError, match="below the highest"):
            validate_pipeline_settings(config)

    def test_hsp_filters_exclusive(self):
        config = create_default_configuration()
        config["similarity"]["hsp_length"] = 0.5
        config["similarity"]["hsp_prop"] = 0.5
        with pytest.raises(ConfigurationError, match="cannot be combined"):
            validate_pipeline_settings(config)

    def test_diamond_requires_protein(self):
        config = create_default_configuration()
        config["similarity"]["engine"] = "diamond"
        config["sequence"]["type"] = "nucleotide"
        with pytest.raises(ConfigurationError, match="protein"):
            validate_pipeline_settings(config)

    @pytest.mark.parametrize("section,key,value", [
        ("similarity", "engine", "mmseqs"),
        ("similarity", "evalue", "abc"),
        ("similarity", "evalue", 0),
        ("similarity", "hsp_length", 1.5),
        ("clustering", "inflation", 1.0),
        ("clustering", "thresholds", ["50", "x"]),
        ("resources", "threads", 0),
        ("artifacts", "storage", "cloud"),
        ("sequence", "type", "rna"),
        ("logging", "level", "VERBOSE"),
    ])
    def test_invalid_values(self, section, key, value):
        config = create_default_configuration()
        config[section][key] = value
        with pytest.raises(ConfigurationError):
            validate_pipeline_settings(config)


class TestConfigurationFiles:
    """Loading, merging and saving configuration files."""

    def test_load_yaml_merges_over_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"clustering": {"inflation": 2.0}, "resources": {"threads": 4}}))

        config = load_configuration(path)

        assert config["clustering"]["inflation"] == 2.0
        assert config["clustering"]["thresholds"] == [50, 60, 70, 80, 90, 95, 98]
        assert config["resources"]["threads"] == 4

    def test_load_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"sequence": {"type": "nucleotide"}}))
        assert load_configuration(path)["sequence"]["type"] == "nucleotide"

    def test_load_invalid_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"clustering": {"inflation": 0.5}}))
        with pytest.raises(ConfigurationError):
            load_configuration(path)

    def test_load_unsupported_suffix(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[clustering]\n")
        with pytest.raises(ConfigurationError, match="Unsupported"):
            load_configuration(path)

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_configuration(tmp_path / "missing.yaml")

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "saved.yaml"
        save_configuration(create_default_configuration(), path)
        assert load_configuration(path) == create_default_configuration()

    def test_schema_rejects_non_mapping_section(self):
        config = create_default_configuration()
        config["similarity"] = "blast"
        result = validate_configuration_schema(config)
        assert not result.is_valid

    def test_merge_nested(self):
        merged = merge_configurations(
            create_default_configuration(), {"deflation": {"core_extraction": False}}
        )
        assert merged["deflation"]["core_extraction"] is False
        assert merged["deflation"]["low"] == 98
