"""
tests/test_upload_service.py — Map Image Storage Tests
=======================================================
"""

from __future__ import annotations

import pytest

from routebook.constants import MAX_MAP_UPLOAD_BYTES
from routebook.errors import ValidationError
from routebook.services.upload_service import delete_map_image, save_map_image


class TestSaveMapImage:
    def test_stores_under_event_directory(self, tmp_path):
        relative = save_map_image("ev1", "Route.JPG", b"\xff\xd8data", "image/jpeg", root=tmp_path)
        assert relative.startswith("maps/ev1/")
        assert relative.endswith(".jpg")
        assert (tmp_path / relative).read_bytes() == b"\xff\xd8data"

    def test_names_are_unique(self, tmp_path):
        first = save_map_image("ev1", "a.png", b"1", root=tmp_path)
        second = save_map_image("ev1", "a.png", b"2", root=tmp_path)
        assert first != second

    @pytest.mark.parametrize("filename,content,content_type", [
        ("a.jpg", b"", "image/jpeg"),
        ("a.gif", b"GIF89a", "image/gif"),
        ("a", b"data", None),
        ("a.jpg", b"data", "application/pdf"),
    ])
    def test_rejected(self, tmp_path, filename, content, content_type):
        with pytest.raises(ValidationError) as exc:
            save_map_image("ev1", filename, content, content_type, root=tmp_path)
        assert exc.value.field == "file"
        assert not (tmp_path / "maps").exists()

    def test_too_large(self, tmp_path):
        with pytest.raises(ValidationError, match="too large"):
            save_map_image("ev1", "a.jpg", b"0" * (MAX_MAP_UPLOAD_BYTES + 1), root=tmp_path)


class TestDeleteMapImage:
    def test_deletes(self, tmp_path):
        relative = save_map_image("ev1", "a.jpg", b"data", root=tmp_path)
        assert delete_map_image(relative, root=tmp_path) is True
        assert not (tmp_path / relative).exists()

    def test_nothing_to_delete(self, tmp_path):
        assert delete_map_image(None, root=tmp_path) is False
        assert delete_map_image("maps/ev1/missing.jpg", root=tmp_path) is False

    def test_refuses_paths_outside_root(self, tmp_path):
        outside = tmp_path / "secret.txt"
        outside.write_text("keep")
        root = tmp_path / "uploads"
        root.mkdir()
        assert delete_map_image("../secret.txt", root=root) is False
        assert outside.exists()
