"""Desktop IPC host for the writer.

The desktop shell talks to this process over stdin/stdout. Every frame is a
4-byte native-endian length followed by a UTF-8 JSON object::

    -> {"id": 3, "channel": "get-note", "args": ["42"]}
    <- {"id": 3, "ok": true, "result": {"success": true, "noteId": "42", ...}}
    <- {"id": 3, "ok": false, "error": "Note #42 not found", "kind": "NoteNotFound"}

Run with ``python desktop.py``; the loop ends when stdin is closed.
"""

import inspect
import json
import logging
import os
import struct
import sys

from chapters import ChapterStore
from notestore import InvalidPayload, MissingInput, NoteStore, NoteStoreError
from settings import Settings, load_settings, setup_logging

log = logging.getLogger("writer.desktop")

INVALID_MESSAGE = {"id": None, "ok": False, "error": "Invalid message", "kind": "InvalidPayload"}


class UnknownChannel(Exception):
    pass


def read_message(stream=None):
    """Read one frame from *stream* (stdin by default); ``None`` on EOF."""
    stream = stream or sys.stdin.buffer
    raw_length = stream.read(4)
    if len(raw_length) < 4:
        return None
    message_length = struct.unpack("=I", raw_length)[0]
    return json.loads(stream.read(message_length).decode("utf-8"))


def send_message(message, stream=None):
    stream = stream or sys.stdout.buffer
    encoded = json.dumps(message).encode("utf-8")
    stream.write(struct.pack("=I", len(encoded)))
    stream.write(encoded)
    stream.flush()


def browse_folder(initial_dir: str) -> str:
    import tkinter as tk
    from tkinter import filedialog

    root = tk.Tk()
    root.withdraw()
    root.attributes("-topmost", True)
    folder = filedialog.askdirectory(title="Select Chapters Directory", initialdir=initial_dir)
    root.destroy()
    return folder


class DesktopBridge:
    """Named request/response calls of the desktop app, backed by :class:`NoteStore`."""

    def __init__(self, settings: Settings, pick_folder=browse_folder) -> None:
        self.settings = settings
        self.chapters = ChapterStore(settings)
        self.store = NoteStore(self.chapters)
        self.pick_folder = pick_folder
        self.channels = {
            "get-files": self.get_files,
            "append-content": self.append_content,
            "get-notes": self.get_notes,
            "get-note": self.get_note,
            "update-note": self.update_note,
            "select-chapters-directory": self.select_chapters_directory,
            "read-file": self.read_file,
            "write-file": self.write_file,
            "join-path": self.join_path,
            "log": self.log_message,
        }

    def invoke(self, channel: str, *args):
        handler = self.channels.get(channel)
        if handler is None:
            raise UnknownChannel(f"No handler registered for '{channel}'")
        try:
            inspect.signature(handler).bind(*args)
        except TypeError as e:
            raise InvalidPayload(f"Bad arguments for '{channel}': {e}") from None
        return handler(*args)

    def get_files(self) -> dict:
        return self.store.list_files()

    def append_content(self, filename=None, content=None) -> dict:
        return self.store.append(filename, content)

    def get_notes(self, filename=None) -> dict:
        notes = self.store.list_notes(filename)
        return {"success": True, "filename": filename, "notes": [n.to_dict() for n in notes]}

    def get_note(self, note_id=None) -> dict:
        return {"success": True, **self.store.get_note(note_id).to_dict()}

    def update_note(self, note_id=None, filename=None, content=None) -> dict:
        return self.store.update_note(note_id, filename, content)

    def select_chapters_directory(self, path=None) -> dict:
        if path is None:
            path = self.pick_folder(str(self.settings.chapters_dir))
        if not path:
            return {"success": False, "canceled": True}
        selected = self.settings.set_chapters_dir(path)
        return {"success": True, "path": str(selected)}

    def read_file(self, filename=None) -> str:
        path = self.chapters.resolve(filename)
        return self.chapters.read_text(path)

    def write_file(self, filename=None, content=None) -> dict:
        if content is None:
            raise MissingInput("Missing content")
        path = self.chapters.resolve(filename, must_exist=False)
        self.chapters.write_text(path, content)
        return {"success": True}

    def join_path(self, *parts) -> str:
        return os.path.join(*parts)

    def log_message(self, level="info", message="", *args) -> None:
        text = " ".join([str(message), *(json.dumps(a) if not isinstance(a, str) else a for a in args)])
        log.log(getattr(logging, str(level).upper(), logging.INFO), "[renderer] %s", text)

    def handle(self, message) -> dict:
        if not isinstance(message, dict) or not isinstance(message.get("args", []), list):
            log.warning("Rejected malformed message: %r", message)
            return INVALID_MESSAGE
        request_id = message.get("id")
        channel = message.get("channel", "")
        try:
            result = self.invoke(channel, *message.get("args", []))
        except (NoteStoreError, UnknownChannel) as e:
            log.warning("%s rejected: %s", channel, e)
            return {"id": request_id, "ok": False, "error": str(e), "kind": type(e).__name__}
        except (OSError, UnicodeDecodeError) as e:
            log.error("%s failed: %s", channel, e, exc_info=e)
            return {"id": request_id, "ok": False, "error": str(e), "kind": type(e).__name__}
        return {"id": request_id, "ok": True, "result": result}


def serve(bridge: DesktopBridge, stdin=None, stdout=None) -> None:
    while True:
        try:
            message = read_message(stdin)
        except ValueError as e:
            log.warning("Rejected undecodable message: %s", e)
            send_message(INVALID_MESSAGE, stdout)
            continue
        if message is None:
            break
        send_message(bridge.handle(message), stdout)


def main():
    settings = load_settings()
    # stdout carries the frames; logs go to stderr
    setup_logging(settings.config["log_level"])
    log.info("Using chapters directory: %s", settings.chapters_dir)
    serve(DesktopBridge(settings))


if __name__ == "__main__":
    main()
