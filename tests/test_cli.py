"""
Tests for the command line interface.
"""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from panladder.main import _apply_cli_overrides, cli, create_parser
from panladder.utils.config import create_default_configuration


class TestCliOverrides:

    def _config(self, *argv):
        args = create_parser().parse_args(list(argv))
        config = create_default_configuration()
        _apply_cli_overrides(config, args)
        return config

    def test_steps_and_nucleotide(self):
        config = self._config("x.fasta", "--steps", "80, 90,95", "--nucleotide", "-t", "8")
        assert config["clustering"]["thresholds"] == ["80", "90", "95"]
        assert config["sequence"]["type"] == "nucleotide"
        assert config["resources"]["threads"] == 8

    def test_single_threshold_replaces_ladder(self):
        config = self._config("x.fasta", "--perc", "95")
        assert config["clustering"]["thresholds"] == []
        assert config["clustering"]["single_threshold"] == 95

    def test_search_and_deflation_options(self):
        config = self._config(
            "x.fasta", "--diamond", "--hsp-len", "0.5", "-e", "0.01",
            "--cd-low", "99", "--cd-step", "0.2", "--cd-core-off", "--retain"
        )
        assert config["similarity"]["engine"] == "diamond"
        assert config["similarity"]["hsp_length"] == 0.5
        assert config["similarity"]["evalue"] == 0.01
        assert config["deflation"]["low"] == 99
        assert config["deflation"]["step"] == 0.2
        assert config["deflation"]["core_extraction"] is False
        assert config["output"]["retain"] is True


class TestCliEntryPoint:

    def test_init_config(self, tmp_path):
        target = tmp_path / "config.yaml"
        with patch.object(sys, "argv", ["panladder", "--init-config", str(target)]):
            cli()
        assert yaml.safe_load(target.read_text())["clustering"]["inflation"] == 1.5

    def test_conflicting_filters_exit(self, tmp_path, capsys):
        argv = ["panladder", str(tmp_path / "x.fasta"), "--hsp-len", "0.5", "--hsp-prop", "0.5"]
        with patch.object(sys, "argv", argv):
            with pytest.raises(SystemExit) as excinfo:
                cli()
        assert excinfo.value.code == 1
        assert "cannot be combined" in capsys.readouterr().err

    def test_failed_dataset_exit_code(self, tmp_path):
        argv = ["panladder", str(tmp_path / "x.fasta"), "-o", str(tmp_path / "out")]
        failed = {str(tmp_path / "x.fasta"): {"error": "file does not exist"}}
        with patch.object(sys, "argv", argv), \
                patch("panladder.pipeline.run_datasets", return_value=failed):
            with pytest.raises(SystemExit) as excinfo:
                cli()
        assert excinfo.value.code == 1

    def test_log_level_from_configuration(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump({"logging": {"level": "DEBUG"}}))
        argv = ["panladder", str(tmp_path / "x.fasta"), "-c", str(config_file)]
        with patch.object(sys, "argv", argv), \
                patch("panladder.pipeline.run_datasets", return_value={}) as mock_run:
            cli()
        assert mock_run.call_args.kwargs["log_level"] == "DEBUG"

    def test_log_level_option_overrides_configuration(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump({"logging": {"level": "DEBUG"}}))
        argv = ["panladder", str(tmp_path / "x.fasta"), "-c", str(config_file),
                "--log-level", "WARNING"]
        with patch.object(sys, "argv", argv), \
                patch("panladder.pipeline.run_datasets", return_value={}) as mock_run:
            cli()
        assert mock_run.call_args.kwargs["log_level"] == "WARNING"
