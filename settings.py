import json as _json
import logging
import os
from pathlib import Path

APP_DIR = Path(__file__).resolve().parent

CONFIG_PATH = APP_DIR / "writer.config.json"
_CHAPTERS_DIR_FILES = (APP_DIR / "CHAPTERS_DIR", APP_DIR / "CHAPTERS_DIR.txt")
_DEFAULTS = {
    "port": 3001,
    "host": "127.0.0.1",
    "extensions": [".md", ".mdx"],
    "log_level": "INFO",
    "css_output": "public/styles.css",
    "theme": {
        "font_family": "Georgia, 'Times New Roman', serif",
        "font_size": "16px",
        "background": "#1e1e1e",
        "surface": "#262626",
        "text": "#dcddde",
        "muted": "#888888",
        "accent": "#7f6df2",
    },
}

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%H:%M:%S"

log = logging.getLogger("writer.settings")


def setup_logging(level: str = "INFO") -> logging.Logger:
    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        level=getattr(logging, str(level).upper(), logging.INFO),
    )
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    return logging.getLogger("writer")


def load_config(path: Path = CONFIG_PATH) -> dict:
    cfg = dict(_DEFAULTS)
    cfg["theme"] = dict(_DEFAULTS["theme"])
    if path.is_file():
        try:
            with open(path) as f:
                user = _json.load(f)
            if not isinstance(user, dict):
                raise ValueError("top-level value must be an object")
            theme = user.pop("theme", None) or {}
            cfg.update(user)
            cfg["theme"].update(theme)
        except (OSError, ValueError) as e:
            log.warning("could not load %s: %s", path.name, e)
    return cfg


def read_chapters_dir(candidates=_CHAPTERS_DIR_FILES) -> Path:
    env = os.environ.get("WRITER_CHAPTERS_DIR", "").strip()
    if env:
        return Path(env)
    for config_file in candidates:
        try:
            content = Path(config_file).read_text(encoding="utf-8")
        except OSError:
            continue
        lines = content.split("\n")
        chapters_path = lines[0].strip() if lines else ""
        if chapters_path:
            return Path(chapters_path)
    return Path.cwd()


class Settings:
    """Process settings handed to the note store and both transports.

    ``chapters_dir`` changes only through :meth:`set_chapters_dir`; operations
    started afterwards see the new directory.
    """

    def __init__(self, chapters_dir: Path, config: dict | None = None,
                 chapters_dir_file: Path = _CHAPTERS_DIR_FILES[1]) -> None:
        self.config = config if config is not None else load_config()
        self.chapters_dir = Path(chapters_dir)
        self.chapters_dir_file = Path(chapters_dir_file)

    @property
    def extensions(self) -> tuple[str, ...]:
        return tuple(self.config["extensions"])

    @property
    def host(self) -> str:
        return self.config["host"]

    @property
    def port(self) -> int:
        return int(self.config["port"])

    @property
    def theme(self) -> dict:
        return self.config["theme"]

    @property
    def css_output(self) -> Path:
        out = Path(self.config["css_output"])
        return out if out.is_absolute() else APP_DIR / out

    def set_chapters_dir(self, path, persist: bool = True) -> Path:
        new_dir = Path(path).expanduser().resolve()
        if not new_dir.is_dir():
            raise NotADirectoryError(f"Not a directory: {new_dir}")
        if persist:
            self.chapters_dir_file.write_text(str(new_dir), encoding="utf-8")
        self.chapters_dir = new_dir
        log.info("Chapters directory updated to: %s", new_dir)
        return new_dir


def load_settings() -> Settings:
    return Settings(read_chapters_dir(), load_config())
