"""
Path resolver tests.

Run:
    pytest backend/tests/test_paths.py -v
"""

from pathlib import Path

import pytest

from image_resizer.paths import PathResolver, clean_basename


class TestCleanBasename:
    """Request path normalization"""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("photo.jpg", "photo.jpg"),
            ("photos/./a.jpg/", "photos/a.jpg"),
            ("a/b/../c.png", "a/c.png"),
            ("../../etc/passwd.png", "etc/passwd.png"),
            ("/../x/../../y.gif", "y.gif"),
            ("//double//slash.png", "double/slash.png"),
        ],
    )
    def test_clean(self, raw, expected):
        """Test: dot segments collapse and never climb above the root"""
        assert clean_basename(raw) == expected

    def test_empty_path(self):
        """Test: an empty path cleans to an empty basename"""
        assert clean_basename("") == ""
        assert clean_basename("/") == ""


class TestPathResolver:
    """Cache layout"""

    def test_resolve_width(self, tmp_path):
        """Test: derivative lives in the width directory"""
        resolver = PathResolver(tmp_path)
        paths = resolver.resolve("origin.example.com", "dir/photo.jpg", 300)

        assert paths.original == tmp_path / "origin.example.com" / "orig" / "dir" / "photo.jpg"
        assert paths.derivative == tmp_path / "origin.example.com" / "300" / "dir" / "photo.jpg"
        assert paths.usage_log == tmp_path / "origin.example.com" / "usage.log"
        assert not paths.serves_original

    def test_resolve_no_width(self, tmp_path):
        """Test: width 0 maps the derivative onto the original"""
        paths = PathResolver(tmp_path).resolve("origin.example.com", "photo.jpg", 0)

        assert paths.derivative == paths.original
        assert paths.serves_original

    def test_negative_width_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            PathResolver(tmp_path).resolve("origin.example.com", "photo.jpg", -1)

    def test_resolve_performs_no_io(self, tmp_path):
        """Test: resolving never creates directories"""
        root = tmp_path / "cache"
        PathResolver(root).resolve("origin.example.com", "photo.jpg", 300)
        assert not root.exists()

    def test_origin_host_of(self, tmp_path):
        resolver = PathResolver(tmp_path)
        artifact = resolver.resolve("origin.example.com", "a/b.png", 120).derivative

        assert resolver.origin_host_of(artifact) == "origin.example.com"
        assert resolver.usage_log("origin.example.com") == tmp_path / "origin.example.com" / "usage.log"

    def test_origin_host_of_outside_root(self, tmp_path):
        with pytest.raises(ValueError):
            PathResolver(tmp_path / "cache").origin_host_of(Path("/elsewhere/x.png"))
