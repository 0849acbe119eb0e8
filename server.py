

import logging
import sys
from pathlib import Path

from flask import Flask, jsonify, render_template_string, send_file, request

from chapters import ChapterStore
from notestore import (
    InvalidPayload,
    MalformedTag,
    MissingInput,
    NotFound,
    NoteStore,
    NoteStoreError,
)
from settings import CONFIG_PATH, load_config, load_settings, setup_logging

app = Flask(__name__)

log = logging.getLogger("writer.server")

settings = load_settings()
chapters = ChapterStore(settings)
store = NoteStore(chapters)

_STORE_ERRORS = (NoteStoreError, OSError, UnicodeDecodeError)


def _error(status: int, message: str, details: str | None = None):
    body = {"error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def _store_error(exc: Exception, failure: str):
    if isinstance(exc, (MissingInput, InvalidPayload)):
        log.warning("%s: %s", failure, exc)
        return _error(400, str(exc))
    if isinstance(exc, NotFound):
        log.warning("%s: %s", failure, exc)
        return _error(404, str(exc))
    if isinstance(exc, MalformedTag):
        log.error("%s: %s", failure, exc)
        return _error(500, str(exc))
    log.error("%s: %s", failure, exc, exc_info=exc)
    return _error(500, failure, str(exc))


def _json_fields(*names: str) -> list:
    body = request.get_json(force=True, silent=True)
    if not isinstance(body, dict):
        raise InvalidPayload("Invalid JSON")
    values = [body.get(name) for name in names]
    if any(v is not None and not isinstance(v, str) for v in values):
        raise InvalidPayload(f"Fields {', '.join(names)} must be strings")
    return values


def generate_css(output: Path | None = None) -> Path:
    output = Path(output) if output is not None else settings.css_output
    theme = load_config()["theme"]
    log.info("Generating CSS...")
    with app.app_context():
        css = render_template_string(STYLESHEET_TEMPLATE, **theme)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(css, encoding="utf-8")
    log.info("CSS generated: %.1fKB (saved to %s)", len(css.encode()) / 1024, output.name)
    return output


def _css_is_stale(output: Path) -> bool:
    if not output.is_file():
        return True
    return CONFIG_PATH.is_file() and CONFIG_PATH.stat().st_mtime > output.stat().st_mtime


@app.before_request
def log_request():
    if request.method != "GET":
        log.info("%s %s", request.method, request.path)


@app.errorhandler(404)
@app.errorhandler(405)
def not_found(_e):
    return _error(404, "Not found")


@app.errorhandler(500)
def internal_error(e):
    log.error("Route handler error: %s", e)
    return _error(500, "Internal server error")


@app.route("/editor")
def editor():
    try:
        html = render_template_string(EDITOR_TEMPLATE, chapters_dir=str(settings.chapters_dir))
    except Exception as e:  # noqa: BLE001
        log.error("Error loading editor: %s", e, exc_info=e)
        return "Error loading editor", 500, {"Content-Type": "text/plain"}
    log.info("refresh editor")
    return html


@app.route("/styles.css")
def styles():
    output = settings.css_output
    try:
        if _css_is_stale(output):
            generate_css(output)
        mtime_ms = int(output.stat().st_mtime * 1000)
        return send_file(output, mimetype="text/css", etag=str(mtime_ms),
                         max_age=3600, conditional=True)
    except Exception as e:  # noqa: BLE001
        log.error("Error serving CSS: %s", e, exc_info=e)
        return "Error loading CSS", 500, {"Content-Type": "text/plain"}


@app.route("/api/files")
def api_files():
    try:
        return jsonify(store.list_files())
    except _STORE_ERRORS as e:
        return _store_error(e, "Failed to read chapters directory")


@app.route("/api/append", methods=["POST"])
def api_append():
    try:
        filename, content = _json_fields("filename", "content")
        return jsonify(store.append(filename, content))
    except _STORE_ERRORS as e:
        return _store_error(e, "Failed to append content")


@app.route("/api/notes/<path:filename>")
def api_notes(filename):
    try:
        notes = store.list_notes(filename)
    except _STORE_ERRORS as e:
        return _store_error(e, "Failed to load notes")
    return jsonify({"success": True, "filename": filename,
                    "notes": [n.to_dict() for n in notes]})


@app.route("/api/note/<path:note_id>", methods=["GET", "PUT"])
def api_note(note_id):
    if request.method == "PUT":
        return _api_note_put(note_id)
    try:
        note = store.get_note(note_id)
    except _STORE_ERRORS as e:
        return _store_error(e, "Failed to load note")
    return jsonify({"success": True, **note.to_dict()})


def _api_note_put(note_id: str):
    try:
        filename, content = _json_fields("filename", "content")
        return jsonify(store.update_note(note_id, filename, content))
    except _STORE_ERRORS as e:
        return _store_error(e, "Failed to update note")


STYLESHEET_TEMPLATE = r"""/* generated by server.py from writer.config.json */
:root {
  --bg: {{ background }};
  --surface: {{ surface }};
  --text: {{ text }};
  --muted: {{ muted }};
  --accent: {{ accent }};
}
* { box-sizing: border-box; }
body {
  margin: 0;
  background: var(--bg);
  color: var(--text);
  font-family: {{ font_family }};
  font-size: {{ font_size }};
  line-height: 1.5;
}
header {
  display: flex;
  align-items: center;
  gap: 0.75rem;
  padding: 0.75rem 1rem;
  background: var(--surface);
  border-bottom: 1px solid #333;
}
header h1 { font-size: 1.1rem; margin: 0; flex: 1; }
header .dir { color: var(--muted); font-size: 0.8rem; }
main { display: grid; grid-template-columns: 16rem 1fr; min-height: calc(100vh - 3.5rem); }
aside { background: var(--surface); border-right: 1px solid #333; padding: 0.75rem; overflow-y: auto; }
aside h2 { font-size: 0.8rem; text-transform: uppercase; color: var(--muted); margin: 0.5rem 0; }
.note-item {
  display: block;
  width: 100%;
  text-align: left;
  padding: 0.35rem 0.5rem;
  margin-bottom: 0.25rem;
  background: transparent;
  color: var(--text);
  border: 1px solid transparent;
  border-radius: 4px;
  cursor: pointer;
}
.note-item:hover, .note-item.active { border-color: var(--accent); }
.note-item .id { color: var(--accent); margin-right: 0.4rem; }
section { padding: 1rem; display: flex; flex-direction: column; gap: 0.75rem; }
label { font-size: 0.8rem; color: var(--muted); }
select, textarea, button {
  font: inherit;
  color: var(--text);
  background: var(--bg);
  border: 1px solid #444;
  border-radius: 4px;
}
textarea { width: 100%; min-height: 8rem; padding: 0.5rem; resize: vertical; }
button.primary { background: var(--accent); border-color: var(--accent); color: #fff; padding: 0.4rem 1rem; cursor: pointer; }
.status { min-height: 1.2rem; font-size: 0.85rem; color: var(--muted); }
.status.error { color: #e06c75; }
"""


EDITOR_TEMPLATE = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Writer</title>
<link rel="stylesheet" href="/styles.css">
</head>
<body>
<header>
  <h1>Writer</h1>
  <select id="file-select"></select>
  <span class="dir">{{ chapters_dir }}</span>
</header>
<main>
  <aside>
    <h2>Notes</h2>
    <div id="note-list"></div>
  </aside>
  <section>
    <label for="append-text">Append to chapter</label>
    <textarea id="append-text" placeholder="Write a paragraph..."></textarea>
    <div><button class="primary" id="append-btn">Append</button></div>
    <label for="note-text">Note <span id="note-label"></span></label>
    <textarea id="note-text" placeholder="content /// reference /// source"></textarea>
    <div><button class="primary" id="save-note-btn" disabled>Save note</button></div>
    <div class="status" id="status"></div>
  </section>
</main>
<script>
const fileSelect = document.getElementById('file-select');
const noteList = document.getElementById('note-list');
const statusEl = document.getElementById('status');
const noteText = document.getElementById('note-text');
const noteLabel = document.getElementById('note-label');
const saveBtn = document.getElementById('save-note-btn');
let currentNote = null;

function setStatus(msg, isError) {
  statusEl.textContent = msg;
  statusEl.classList.toggle('error', !!isError);
}

async function api(url, options) {
  const res = await fetch(url, options);
  const data = await res.json();
  if (!res.ok) throw new Error(data.error + (data.details ? ': ' + data.details : ''));
  return data;
}

async function loadFiles() {
  const data = await api('/api/files');
  fileSelect.innerHTML = '';
  data.files.forEach(name => {
    const opt = document.createElement('option');
    opt.value = name;
    opt.textContent = name;
    if (name === data.lastModified) opt.selected = true;
    fileSelect.appendChild(opt);
  });
  if (fileSelect.value) await loadNotes(fileSelect.value);
}

async function loadNotes(filename) {
  const data = await api('/api/notes/' + encodeURIComponent(filename));
  noteList.innerHTML = '';
  data.notes.forEach(note => {
    const btn = document.createElement('button');
    btn.className = 'note-item';
    btn.innerHTML = '<span class="id"></span><span class="preview"></span>';
    btn.querySelector('.id').textContent = '#' + note.id;
    btn.querySelector('.preview').textContent = note.preview;
    btn.addEventListener('click', () => openNote(note.id, btn));
    noteList.appendChild(btn);
  });
}

async function openNote(id, btn) {
  try {
    const data = await api('/api/note/' + encodeURIComponent(id));
    currentNote = {id: id, filename: data.filename};
    noteText.value = data.reference ? data.content + '\n///\n' + data.reference : data.content;
    noteLabel.textContent = '#' + id + ' in ' + data.filename;
    saveBtn.disabled = false;
    noteList.querySelectorAll('.note-item').forEach(el => el.classList.remove('active'));
    if (btn) btn.classList.add('active');
  } catch (e) { setStatus(e.message, true); }
}

document.getElementById('append-btn').addEventListener('click', async () => {
  const textarea = document.getElementById('append-text');
  try {
    const data = await api('/api/append', {
      method: 'POST',
      headers: {'Content-Type': 'application/json'},
      body: JSON.stringify({filename: fileSelect.value, content: textarea.value}),
    });
    textarea.value = '';
    setStatus(data.message);
    await loadNotes(fileSelect.value);
  } catch (e) { setStatus(e.message, true); }
});

saveBtn.addEventListener('click', async () => {
  if (!currentNote) return;
  try {
    const data = await api('/api/note/' + encodeURIComponent(currentNote.id), {
      method: 'PUT',
      headers: {'Content-Type': 'application/json'},
      body: JSON.stringify({filename: currentNote.filename, content: noteText.value}),
    });
    setStatus(data.message);
    if (currentNote.filename === fileSelect.value) await loadNotes(fileSelect.value);
  } catch (e) { setStatus(e.message, true); }
});

fileSelect.addEventListener('change', () => loadNotes(fileSelect.value).catch(e => setStatus(e.message, true)));
loadFiles().catch(e => setStatus(e.message, true));
</script>
</body>
</html>
"""


if __name__ == "__main__":
    import socket
    setup_logging(settings.config["log_level"])
    try:
        generate_css()
    except Exception as e:  # noqa: BLE001
        log.error("Failed to generate CSS on startup: %s", e, exc_info=e)
        sys.exit(1)
    hostname = socket.gethostname()
    local_ip = socket.gethostbyname(hostname)
    print(f"Serving chapters from: {settings.chapters_dir}")
    print(f"Open http://localhost:{settings.port}/editor    (this machine)")
    if settings.host not in ("127.0.0.1", "localhost"):
        print(f"     http://{local_ip}:{settings.port}/editor  (other devices on network)")
    app.run(host=settings.host, port=settings.port)
