"""Shared fixtures: a throwaway chapters directory and the objects built on it."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from chapters import ChapterStore
from notestore import NoteStore
from settings import Settings, load_config


def write_chapter(directory: Path, name: str, content: str) -> Path:
    path = directory / name
    path.write_text(textwrap.dedent(content), encoding="utf-8", newline="")
    return path


@pytest.fixture()
def chapters_dir(tmp_path: Path) -> Path:
    d = tmp_path / "chapters"
    d.mkdir()
    return d


@pytest.fixture()
def settings(tmp_path: Path, chapters_dir: Path) -> Settings:
    config = load_config(tmp_path / "no-such-config.json")
    config["css_output"] = str(tmp_path / "public" / "styles.css")
    return Settings(chapters_dir, config, chapters_dir_file=tmp_path / "CHAPTERS_DIR.txt")


@pytest.fixture()
def chapter_store(settings: Settings) -> ChapterStore:
    return ChapterStore(settings)


@pytest.fixture()
def store(chapter_store: ChapterStore) -> NoteStore:
    return NoteStore(chapter_store)
