"""
Tests for intermediate artifact storage.
"""

import pytest

from panladder.core.artifacts import (
    ArtifactKind, DiskArtifactStore, InMemoryArtifactStore, artifact_filename,
    create_artifact_store
)
from panladder.core.exceptions import ConfigurationError, PipelineError


class TestArtifactFilename:

    def test_names(self):
        assert artifact_filename("s", ArtifactKind.CORE_CLUSTERS) == "s.core_clusters.tab"
        assert artifact_filename("s", ArtifactKind.CLUSTERS, 70) == "s.mcl_70.clusters"
        assert artifact_filename("s", ArtifactKind.REINFLATED, 98) == "s.98.reclustered.reinflated"

    def test_threshold_required(self):
        with pytest.raises(PipelineError, match="requires a threshold"):
            artifact_filename("s", ArtifactKind.FILTERED_EDGES)


class TestStores:

    def test_memory_store_returns_copies(self):
        store = InMemoryArtifactStore("s")
        store.put_rows(ArtifactKind.CLUSTERS, [["a", "b"]], 50)
        rows = store.get_rows(ArtifactKind.CLUSTERS, 50)
        rows[0].append("c")
        assert store.get_rows(ArtifactKind.CLUSTERS, 50) == [["a", "b"]]
        assert not store.has(ArtifactKind.CLUSTERS, 60)
        assert store.location(ArtifactKind.CLUSTERS, 50) is None

    def test_disk_store_writes_tsv(self, tmp_path):
        store = DiskArtifactStore(tmp_path / "artifacts", "s")
        store.put_rows(ArtifactKind.CORE_CLUSTERS, [["a", "b", "c"], ["d", "e", "f"]])
        path = store.location(ArtifactKind.CORE_CLUSTERS)
        assert path.read_text() == "a\tb\tc\nd\te\tf\n"
        assert store.get_rows(ArtifactKind.CORE_CLUSTERS) == [["a", "b", "c"], ["d", "e", "f"]]

    def test_missing_artifact(self, tmp_path):
        with pytest.raises(PipelineError, match="not found"):
            DiskArtifactStore(tmp_path, "s").get_rows(ArtifactKind.EDGES)
        with pytest.raises(PipelineError, match="not found"):
            InMemoryArtifactStore("s").get_rows(ArtifactKind.EDGES)

    def test_auto_selection(self, tmp_path):
        small = create_artifact_store("s", tmp_path, "auto", n_loci=10, in_memory_max_loci=100)
        large = create_artifact_store("s", tmp_path, "auto", n_loci=1000, in_memory_max_loci=100)
        assert isinstance(small, InMemoryArtifactStore)
        assert isinstance(large, DiskArtifactStore)

    def test_unknown_storage(self, tmp_path):
        with pytest.raises(ConfigurationError):
            create_artifact_store("s", tmp_path, "cloud")
