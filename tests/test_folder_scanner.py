"""Tests for the folder scanner and path helpers."""

from pathlib import Path

from desktop_upload.services.folder_scanner import (
    SUPPORTED_UPLOAD_EXTENSIONS,
    is_supported,
    scan_folder,
    summarize_snapshot,
)
from desktop_upload.services.utils import (
    format_file_size,
    get_extension,
    normalize_relative_path,
    percent,
    round_half_up,
)


class TestNormalizeRelativePath:
    """Tests for normalize_relative_path."""

    def test_backslashes_become_slashes(self) -> None:
        """Test that Windows separators are normalized."""
        assert normalize_relative_path("s01\\e01.mp4") == "s01/e01.mp4"

    def test_drops_dot_and_empty_segments(self) -> None:
        """Test that ., .. and empty segments are dropped."""
        assert normalize_relative_path("/./s01//../e01.mp4") == "s01/e01.mp4"

    def test_plain_name_unchanged(self) -> None:
        """Test a bare file name."""
        assert normalize_relative_path("00_metadata.json") == "00_metadata.json"


class TestGetExtension:
    """Tests for get_extension."""

    def test_lower_cases(self) -> None:
        """Test that extensions are lower-cased."""
        assert get_extension("s01/E01.MP4") == "mp4"

    def test_no_extension(self) -> None:
        """Test that a name without a dot reports unknown."""
        assert get_extension("s01/README") == "unknown"

    def test_dot_in_directory_only(self) -> None:
        """Test that dots in directory names are ignored."""
        assert get_extension("v1.2/notes") == "unknown"


class TestRounding:
    """Tests for half-up rounding and percentages."""

    def test_round_half_up(self) -> None:
        """Test that halves round up, unlike banker's rounding."""
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3
        assert round_half_up(2.49) == 2

    def test_percent(self) -> None:
        """Test integer percentages."""
        assert percent(100, 150) == 67
        assert percent(50, 150) == 33
        assert percent(150, 150) == 100

    def test_percent_clamps(self) -> None:
        """Test that percentages stay in 0..100."""
        assert percent(200, 100) == 100
        assert percent(5, 0) == 0

    def test_format_file_size(self) -> None:
        """Test human-readable sizes."""
        assert format_file_size(512) == "512.0 B"
        assert format_file_size(1536) == "1.5 KB"


class TestScanFolder:
    """Tests for scan_folder."""

    def test_missing_root_returns_empty(self, tmp_path: Path) -> None:
        """Test that a missing folder yields an empty snapshot."""
        assert scan_folder(tmp_path / "missing") == {}

    def test_filters_by_extension(self, tmp_path: Path) -> None:
        """Test that only allow-listed extensions are included."""
        (tmp_path / "a.mp4").write_bytes(b"x" * 10)
        (tmp_path / "b.json").write_bytes(b"{}")
        (tmp_path / "c.csv").write_bytes(b"a,b")
        (tmp_path / "d.txt").write_bytes(b"nope")
        (tmp_path / "status").write_bytes(b"nope")

        snapshot = scan_folder(tmp_path)

        assert snapshot == {"a.mp4": 10, "b.json": 2, "c.csv": 3}

    def test_extension_match_is_case_insensitive(self, tmp_path: Path) -> None:
        """Test that upper-case extensions are accepted."""
        (tmp_path / "CLIP.MP4").write_bytes(b"1234")

        assert scan_folder(tmp_path) == {"CLIP.MP4": 4}

    def test_recurses_in_sorted_order(self, tmp_path: Path) -> None:
        """Test nested folders are walked deterministically with forward slashes."""
        (tmp_path / "s02").mkdir()
        (tmp_path / "s01").mkdir()
        (tmp_path / "s02" / "e01.mp4").write_bytes(b"a")
        (tmp_path / "s01" / "e02.mp4").write_bytes(b"bb")
        (tmp_path / "s01" / "e01.mp4").write_bytes(b"ccc")
        (tmp_path / "00_metadata.json").write_bytes(b"{}")

        snapshot = scan_folder(tmp_path)

        assert list(snapshot) == [
            "00_metadata.json",
            "s01/e01.mp4",
            "s01/e02.mp4",
            "s02/e01.mp4",
        ]

    def test_custom_extensions(self, tmp_path: Path) -> None:
        """Test that callers can narrow the allow-list."""
        (tmp_path / "a.mp4").write_bytes(b"x")
        (tmp_path / "b.json").write_bytes(b"x")

        assert scan_folder(tmp_path, extensions={".json"}) == {"b.json": 1}

    def test_zero_size_files_included(self, tmp_path: Path) -> None:
        """Test that empty files are still part of the snapshot."""
        (tmp_path / "empty.csv").write_bytes(b"")

        assert scan_folder(tmp_path) == {"empty.csv": 0}


class TestSnapshotHelpers:
    """Tests for is_supported and summarize_snapshot."""

    def test_is_supported(self) -> None:
        """Test the default allow-list."""
        assert SUPPORTED_UPLOAD_EXTENSIONS == {".mp4", ".json", ".csv"}
        assert is_supported("s01/e01.mp4")
        assert not is_supported("s01/e01.mkv")

    def test_summarize_snapshot(self) -> None:
        """Test total bytes and file count."""
        assert summarize_snapshot({"a.mp4": 100, "b.json": 50}) == (150, 2)
        assert summarize_snapshot({}) == (0, 0)
