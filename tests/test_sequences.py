"""
Tests for FASTA and loci table input.
"""

import pytest

from panladder.core.exceptions import ValidationError
from panladder.core.types import Locus
from panladder.modules.sequences import (
    assign_genomes, count_genomes, read_genome_map, read_loci, sample_name, write_fasta
)


class TestSampleName:

    @pytest.mark.parametrize("filename,expected", [
        ("ecoli.aa.fasta", "ecoli"),
        ("ecoli.fasta", "ecoli"),
        ("ecoli.fa", "ecoli"),
        ("ecoli.fas", "ecoli"),
    ])
    def test_recognised_suffixes(self, filename, expected):
        assert sample_name(filename) == expected

    def test_unknown_suffix(self):
        with pytest.raises(ValidationError, match="suffix not recognised"):
            sample_name("ecoli.gbk")


class TestReadLoci:

    def test_gaps_removed(self, tmp_path):
        fasta = tmp_path / "x.fasta"
        fasta.write_text(">a desc\nMK-V\nLL\n>b\nWW\n")
        loci = read_loci(fasta)
        assert loci == [Locus("a", "MKVLL"), Locus("b", "WW")]

    def test_duplicate_ids(self, tmp_path):
        fasta = tmp_path / "x.fasta"
        fasta.write_text(">a\nMKV\n>a\nMKV\n")
        with pytest.raises(ValidationError, match="duplicate") as excinfo:
            read_loci(fasta)
        assert excinfo.value.errors == ["a"]

    def test_not_fasta(self, tmp_path):
        fasta = tmp_path / "bad.fasta"
        fasta.write_text("this is not fasta\nMKV\n")
        with pytest.raises(ValidationError, match="not a valid FASTA"):
            read_loci(fasta)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="does not exist"):
            read_loci(tmp_path / "missing.fasta")

    def test_write_then_read(self, tmp_path):
        loci = [Locus("a", "MKV"), Locus("b", "WWW")]
        assert read_loci(write_fasta(loci, tmp_path / "y.fasta")) == loci


class TestGenomeMap:

    def test_extra_columns_ignored(self, tmp_path):
        table = tmp_path / "loci.tab"
        table.write_text("a\tg1\tproduct\nb\tg2\tproduct\nc\tg1\tproduct\n")
        genome_map = read_genome_map(table)
        assert genome_map == {"a": "g1", "b": "g2", "c": "g1"}

    def test_assign_and_count(self):
        loci = [Locus("a", "M"), Locus("b", "M"), Locus("z", "M")]
        genome_map = {"a": "g1", "b": "g2"}
        assigned = assign_genomes(loci, genome_map)
        assert [l.genome_id for l in assigned] == ["g1", "g2", None]
        assert count_genomes(genome_map) == 2
        assert count_genomes(None) == 0

    def test_missing_table(self, tmp_path):
        with pytest.raises(ValidationError, match="not found"):
            read_genome_map(tmp_path / "none.tab")
