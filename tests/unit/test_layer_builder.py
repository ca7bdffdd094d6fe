"""
Unit tests for the layer builder.
"""
from pathlib import Path

import pytest

from d2i.BUILDERS.layer_builder import LayerBuilder
from d2i.BUILDERS.timestamps import CLASS_FILE_MODIFICATION_TIME, DEFAULT_MODIFICATION_TIME
from d2i.errors import MissingArtifactDirectoryError


class TestLayerBuilder:
    """Tests for LayerBuilder."""

    def test_build_layer(self, target_dir):
        layer = LayerBuilder(str(target_dir)).build("lib")
        assert layer.name == "lib"
        assert layer.source_directory == target_dir / "lib"
        assert layer.target_path == "/app/lib"

    def test_missing_directory_fails(self, tmp_path):
        builder = LayerBuilder(str(tmp_path))
        with pytest.raises(MissingArtifactDirectoryError) as excinfo:
            builder.build("classes")
        assert "classes" in str(excinfo.value)
        assert excinfo.value.name == "classes"

    def test_file_instead_of_directory_fails(self, tmp_path):
        (tmp_path / "jars").write_text("not a directory")
        with pytest.raises(MissingArtifactDirectoryError):
            LayerBuilder(str(tmp_path)).build("jars")

    def test_empty_directory_entries(self, target_dir):
        layer = LayerBuilder(str(target_dir)).build("jars")
        entries = layer.entries()
        assert [e.target for e in entries] == ["/app/jars"]
        assert entries[0].is_directory
        assert entries[0].mode == 0o755

    def test_recursive_entries_sorted(self, target_dir):
        layer = LayerBuilder(str(target_dir)).build("classes")
        targets = [e.target for e in layer.entries()]
        assert targets == [
            "/app/classes",
            "/app/classes/my_app",
            "/app/classes/my_app/core$_main.class",
            "/app/classes/my_app/core.class",
        ]

    def test_entries_use_timestamp_policy(self, target_dir):
        layer = LayerBuilder(str(target_dir)).build("classes")
        by_target = {e.target: e for e in layer.entries()}
        assert by_target["/app/classes/my_app/core.class"].modification_time == CLASS_FILE_MODIFICATION_TIME
        assert by_target["/app/classes/my_app"].modification_time == DEFAULT_MODIFICATION_TIME
        assert by_target["/app/classes/my_app/core.class"].mode == 0o644

    def test_entries_point_at_sources(self, target_dir):
        layer = LayerBuilder(str(target_dir)).build("lib")
        files = [e for e in layer.entries() if not e.is_directory]
        assert len(files) == 1
        assert Path(files[0].source) == target_dir / "lib" / "config.edn"
        assert files[0].modification_time == DEFAULT_MODIFICATION_TIME

    def test_symlinked_directory_contents_included(self, target_dir, tmp_path):
        shared = tmp_path / "shared"
        (shared / "nested").mkdir(parents=True)
        (shared / "dep.jar").write_bytes(b"PK")
        (shared / "nested" / "util.jar").write_bytes(b"PK")
        (target_dir / "jars" / "vendor").symlink_to(shared, target_is_directory=True)

        entries = {e.target: e for e in LayerBuilder(str(target_dir)).build("jars").entries()}
        assert list(entries) == [
            "/app/jars",
            "/app/jars/vendor",
            "/app/jars/vendor/dep.jar",
            "/app/jars/vendor/nested",
            "/app/jars/vendor/nested/util.jar",
        ]
        assert entries["/app/jars/vendor"].is_directory
        assert entries["/app/jars/vendor"].mode == 0o755
        assert not entries["/app/jars/vendor/dep.jar"].is_directory

    def test_two_links_to_one_directory_both_filled(self, target_dir, tmp_path):
        shared = tmp_path / "shared"
        shared.mkdir()
        (shared / "dep.jar").write_bytes(b"PK")
        (target_dir / "jars" / "a").symlink_to(shared, target_is_directory=True)
        (target_dir / "jars" / "b").symlink_to(shared, target_is_directory=True)

        targets = [e.target for e in LayerBuilder(str(target_dir)).build("jars").entries()]
        assert "/app/jars/a/dep.jar" in targets
        assert "/app/jars/b/dep.jar" in targets

    def test_link_back_to_ancestor_not_followed(self, target_dir):
        (target_dir / "lib" / "loop").symlink_to(target_dir / "lib", target_is_directory=True)

        entries = {e.target: e for e in LayerBuilder(str(target_dir)).build("lib").entries()}
        assert sorted(entries) == ["/app/lib", "/app/lib/config.edn", "/app/lib/loop"]
        assert entries["/app/lib/loop"].is_directory
