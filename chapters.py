"""Chapter file storage rooted at the configured chapters directory."""

import logging
import os
import shutil
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import TYPE_CHECKING

from werkzeug.security import safe_join

from notestore import FileNotFound, PathEscape

if TYPE_CHECKING:
    from settings import Settings

log = logging.getLogger("writer.chapters")


class ChapterStore:
    """Reads and writes chapter files under ``settings.chapters_dir``.

    The root is looked up on every call so a directory change made through
    the settings object applies to the next operation.
    """

    def __init__(self, settings: "Settings") -> None:
        self.settings = settings

    @property
    def root(self) -> Path:
        return Path(self.settings.chapters_dir)

    def is_chapter(self, name: str) -> bool:
        return any(name.endswith(ext) for ext in self.settings.extensions)

    def resolve(self, filename: str, must_exist: bool = True) -> Path:
        if not filename:
            raise FileNotFound(filename)
        joined = safe_join(str(self.root), filename)
        if joined is None:
            log.warning("Rejected path outside chapters directory: %r", filename)
            raise PathEscape(filename)
        root = self.root.resolve()
        candidate = Path(joined).resolve()
        try:
            candidate.relative_to(root)
        except ValueError:
            log.warning("Rejected path outside chapters directory: %r", filename)
            raise PathEscape(filename) from None
        if candidate == root:
            raise FileNotFound(filename)
        if must_exist and not candidate.is_file():
            raise FileNotFound(filename)
        if not must_exist and not candidate.parent.is_dir():
            raise FileNotFound(filename)
        return candidate

    def list_chapters(self) -> list[tuple[str, float]]:
        """Return ``(name, mtime)`` for each chapter file, in filename order.

        Entries that do not resolve to a regular file inside the root, such as
        symlinks pointing elsewhere, are skipped.
        """
        result = []
        for entry in sorted(os.scandir(self.root), key=lambda e: e.name):
            if not self.is_chapter(entry.name):
                continue
            try:
                path = self.resolve(entry.name)
            except FileNotFound:
                continue
            result.append((entry.name, path.stat().st_mtime))
        return result

    def listing(self) -> dict:
        chapters = sorted(self.list_chapters(), key=lambda c: c[1], reverse=True)
        return {
            "files": [name for name, _mtime in chapters],
            "lastModified": chapters[0][0] if chapters else None,
        }

    def read_text(self, path: Path) -> str:
        with open(path, encoding="utf-8", newline="") as fh:
            return fh.read()

    def append_text(self, path: Path, text: str) -> None:
        with open(path, "a", encoding="utf-8", newline="") as fh:
            fh.write(text)

    def write_text(self, path: Path, text: str) -> None:
        """Replace *path* with *text* via a temp file and ``os.replace``."""
        tmp = None
        try:
            tmp = NamedTemporaryFile("w", encoding="utf-8", newline="", dir=str(path.parent),
                                     prefix=f".{path.name}.", suffix=".tmp", delete=False)
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp.close()
            if path.exists():
                shutil.copymode(path, tmp.name)
            os.replace(tmp.name, path)
        finally:
            if tmp is not None:
                tmp.close()
                if os.path.exists(tmp.name):
                    os.unlink(tmp.name)
