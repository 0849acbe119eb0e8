"""Unit tests for chapters.ChapterStore."""

import os
import stat
from pathlib import Path

import pytest

from chapters import ChapterStore
from conftest import write_chapter
from notestore import FileNotFound, PathEscape


class TestResolve:
    def test_plain_filename(self, chapter_store: ChapterStore, chapters_dir: Path):
        path = write_chapter(chapters_dir, "ch1.md", "x")
        assert chapter_store.resolve("ch1.md") == path.resolve()

    def test_subdirectory_allowed(self, chapter_store: ChapterStore, chapters_dir: Path):
        (chapters_dir / "part1").mkdir()
        path = write_chapter(chapters_dir / "part1", "ch.md", "x")
        assert chapter_store.resolve("part1/ch.md") == path.resolve()

    @pytest.mark.parametrize("filename", ["../outside.md", "part/../../outside.md", "/etc/passwd"])
    def test_escapes_rejected(self, chapter_store: ChapterStore, chapters_dir: Path, filename: str):
        (chapters_dir.parent / "outside.md").write_text("secret", encoding="utf-8")
        with pytest.raises(PathEscape):
            chapter_store.resolve(filename)

    def test_symlink_leaving_root_rejected(self, chapter_store: ChapterStore, chapters_dir: Path):
        outside = chapters_dir.parent / "outside.md"
        outside.write_text("secret", encoding="utf-8")
        os.symlink(outside, chapters_dir / "link.md")
        with pytest.raises(PathEscape):
            chapter_store.resolve("link.md")

    def test_missing_file(self, chapter_store: ChapterStore):
        with pytest.raises(FileNotFound):
            chapter_store.resolve("ghost.md")

    def test_directory_is_not_a_file(self, chapter_store: ChapterStore, chapters_dir: Path):
        (chapters_dir / "folder.md").mkdir()
        with pytest.raises(FileNotFound):
            chapter_store.resolve("folder.md")

    def test_new_file_allowed_when_not_required(self, chapter_store: ChapterStore, chapters_dir: Path):
        assert chapter_store.resolve("new.md", must_exist=False) == (chapters_dir / "new.md").resolve()

    def test_empty_name(self, chapter_store: ChapterStore):
        with pytest.raises(FileNotFound):
            chapter_store.resolve("")


class TestListing:
    def test_sorted_by_mtime_descending(self, chapter_store: ChapterStore, chapters_dir: Path):
        for name, mtime in [("old.md", 1_000), ("newest.mdx", 3_000), ("middle.md", 2_000)]:
            path = write_chapter(chapters_dir, name, name)
            os.utime(path, (mtime, mtime))
        assert chapter_store.listing() == {
            "files": ["newest.mdx", "middle.md", "old.md"],
            "lastModified": "newest.mdx",
        }

    def test_filters_extensions_and_directories(self, chapter_store: ChapterStore, chapters_dir: Path):
        write_chapter(chapters_dir, "keep.md", "x")
        write_chapter(chapters_dir, "notes.txt", "x")
        (chapters_dir / "dir.md").mkdir()
        assert [name for name, _ in chapter_store.list_chapters()] == ["keep.md"]

    def test_skips_symlink_leaving_root(self, chapter_store: ChapterStore, chapters_dir: Path):
        outside = chapters_dir.parent / "secret.md"
        outside.write_text('<Note id="s">outside secret</Note>', encoding="utf-8")
        write_chapter(chapters_dir, "keep.md", "x")
        os.symlink(outside, chapters_dir / "link.md")
        assert [name for name, _ in chapter_store.list_chapters()] == ["keep.md"]
        assert chapter_store.listing()["files"] == ["keep.md"]

    def test_empty_directory(self, chapter_store: ChapterStore):
        assert chapter_store.listing() == {"files": [], "lastModified": None}

    def test_missing_root_raises(self, chapter_store: ChapterStore, settings, tmp_path: Path):
        settings.chapters_dir = tmp_path / "gone"
        with pytest.raises(OSError):
            chapter_store.listing()


class TestWriteText:
    def test_preserves_mode(self, chapter_store: ChapterStore, chapters_dir: Path):
        path = write_chapter(chapters_dir, "ch1.md", "x")
        os.chmod(path, 0o644)
        chapter_store.write_text(path, "y")
        assert path.read_text(encoding="utf-8") == "y"
        assert stat.S_IMODE(path.stat().st_mode) == 0o644

    def test_keeps_line_endings(self, chapter_store: ChapterStore, chapters_dir: Path):
        path = chapters_dir / "ch1.md"
        chapter_store.write_text(path, "a\r\nb\n")
        assert path.read_bytes() == b"a\r\nb\n"
        assert chapter_store.read_text(path) == "a\r\nb\n"
