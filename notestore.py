"""Note extraction, lookup and in-place update for chapter files.

A note is a span of chapter text written as::

    <Note id="42" kind="aside">content /// reference /// source</Note>

The body runs from the opening tag's ``>`` to the next literal ``</Note>``.
Notes must not nest: an opening tag inside another note's body is reported,
and the update refuses to rewrite such a span.
"""

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chapters import ChapterStore

log = logging.getLogger("writer.notes")

NOTE_CLOSE = "</Note>"
SEGMENT_DELIMITER = "///"
PREVIEW_LENGTH = 22

_OPEN_TAG_RE = re.compile(r'<Note id="([^"]+)"[^>]*>')


class NoteStoreError(Exception):
    pass


class MissingInput(NoteStoreError):
    pass


class InvalidPayload(NoteStoreError):
    pass


class NotFound(NoteStoreError):
    pass


class FileNotFound(NotFound):

    def __init__(self, filename: str, message: str = "File not found"):
        super().__init__(message)
        self.filename = filename


class PathEscape(FileNotFound):
    pass


class NoteNotFound(NotFound):

    def __init__(self, note_id: str, filename: str | None = None):
        if filename:
            message = f"Note #{note_id} not found in {filename}"
        else:
            message = f"Note #{note_id} not found"
        super().__init__(message)
        self.note_id = note_id
        self.filename = filename


class MalformedTag(NoteStoreError):

    def __init__(self, message: str = "Malformed Note tag"):
        super().__init__(message)


class MissingClosingTag(MalformedTag):

    def __init__(self, message: str = "Note closing tag not found"):
        super().__init__(message)


class NestedNote(MalformedTag):

    def __init__(self, note_id: str):
        super().__init__(f"Note #{note_id} contains a nested Note tag")
        self.note_id = note_id


@dataclass
class NoteSpan:
    """Offsets of one note inside a text; ``text[body_start:body_end]`` is the raw body."""

    id: str
    start: int
    body_start: int
    body_end: int
    nested: bool = False

    @property
    def end(self) -> int:
        return self.body_end + len(NOTE_CLOSE)

    def body(self, text: str) -> str:
        return text[self.body_start:self.body_end].strip()


@dataclass
class NoteSummary:
    id: str
    preview: str

    def to_dict(self) -> dict:
        return {"id": self.id, "preview": self.preview}


@dataclass
class ParsedNote:
    id: str
    filename: str
    content: str
    reference: str

    def to_dict(self) -> dict:
        return {
            "noteId": self.id,
            "filename": self.filename,
            "content": self.content,
            "reference": self.reference,
        }


# ---------------------------------------------------------------------------
# Text operations
# ---------------------------------------------------------------------------


def iter_note_spans(text: str):
    """Yield a :class:`NoteSpan` for every complete note, in order of appearance.

    An opening tag is paired with the first ``</Note>`` after it; scanning
    resumes after that closing tag, so spans never overlap.
    """
    pos = 0
    while True:
        m = _OPEN_TAG_RE.search(text, pos)
        if m is None:
            return
        close = text.find(NOTE_CLOSE, m.end())
        if close == -1:
            return
        nested = _OPEN_TAG_RE.search(text, m.end(), close) is not None
        if nested:
            log.warning("Note #%s contains a nested Note tag; it ends at the first </Note>", m.group(1))
        yield NoteSpan(m.group(1), m.start(), m.end(), close, nested)
        pos = close + len(NOTE_CLOSE)


def make_preview(body: str) -> str:
    lines = [line for line in body.strip().split("\n") if line.strip()]
    first = lines[0].strip() if lines else ""
    if len(first) > PREVIEW_LENGTH:
        return first[:PREVIEW_LENGTH] + ".."
    return first


def split_body(body: str) -> tuple[str, str]:
    """Split a note body into ``(content, reference)`` on ``///``.

    Everything after the first delimiter is folded into the reference,
    segments separated by a blank line.
    """
    parts = [part.strip() for part in body.strip().split(SEGMENT_DELIMITER)]
    reference = ""
    if len(parts) >= 2:
        reference = "\n\n".join(parts[1:]).strip()
    return parts[0], reference


def extract_notes(text: str) -> list[NoteSummary]:
    return [NoteSummary(span.id, make_preview(span.body(text))) for span in iter_note_spans(text)]


def locate_note(text: str, note_id: str) -> NoteSpan:
    """Locate the first ``<Note id="note_id"`` and the ``</Note>`` that closes it.

    The id is searched as literal text, never compiled into a pattern.
    """
    start = text.find(f'<Note id="{note_id}"')
    if start == -1:
        raise NoteNotFound(note_id)
    open_end = text.find(">", start)
    if open_end == -1:
        raise MalformedTag()
    close = text.find(NOTE_CLOSE, open_end)
    if close == -1:
        raise MissingClosingTag()
    nested = _OPEN_TAG_RE.search(text, open_end + 1, close) is not None
    return NoteSpan(note_id, start, open_end + 1, close, nested)


def find_note(text: str, note_id: str) -> NoteSpan | None:
    try:
        span = locate_note(text, note_id)
    except (NoteNotFound, MalformedTag):
        return None
    if span.nested:
        log.warning("Note #%s contains a nested Note tag; it ends at the first </Note>", note_id)
    return span


def replace_note_body(text: str, note_id: str, new_body: str) -> str:
    """Return *text* with the body of the first ``<Note id="note_id"`` replaced.

    The opening tag, its attributes and everything outside the body are kept
    as they are.
    """
    span = locate_note(text, note_id)
    if span.nested:
        raise NestedNote(note_id)
    return text[:span.body_start] + new_body + text[span.body_end:]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class NoteStore:
    """Note operations over the chapter files of the configured directory.

    Every call re-reads the files it needs; nothing is cached between calls.
    """

    def __init__(self, chapters: "ChapterStore") -> None:
        self.chapters = chapters

    def list_files(self) -> dict:
        return self.chapters.listing()

    def append(self, filename: str, content: str) -> dict:
        if not filename or not content:
            raise MissingInput("Missing filename or content")
        path = self.chapters.resolve(filename)
        self.chapters.append_text(path, f"\n\n{content}")
        log.info("append %s", filename)
        return {"success": True, "message": f"Content appended to {filename}"}

    def list_notes(self, filename: str) -> list[NoteSummary]:
        if not filename:
            raise MissingInput("Missing filename")
        path = self.chapters.resolve(filename)
        return extract_notes(self.chapters.read_text(path))

    def get_note(self, note_id: str) -> ParsedNote:
        if not note_id:
            raise MissingInput("Missing noteId")
        for name, _mtime in self.chapters.list_chapters():
            text = self.chapters.read_text(self.chapters.resolve(name))
            span = find_note(text, note_id)
            if span is not None:
                content, reference = split_body(span.body(text))
                return ParsedNote(note_id, name, content, reference)
        raise NoteNotFound(note_id)

    def update_note(self, note_id: str, filename: str, content: str) -> dict:
        if not filename or not content or not note_id:
            raise MissingInput("Missing filename, content, or noteId")
        path = self.chapters.resolve(filename)
        text = self.chapters.read_text(path)
        try:
            updated = replace_note_body(text, note_id, content)
        except NoteNotFound:
            raise NoteNotFound(note_id, filename) from None
        self.chapters.write_text(path, updated)
        log.info("update Note #%s in %s", note_id, filename)
        return {"success": True, "message": f"Note #{note_id} updated in {filename}"}
