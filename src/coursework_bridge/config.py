from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

CONFIG_DIR = Path.home() / ".config" / "coursework-bridge"
CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_CANVAS_BASE_URL = "https://bcourses.berkeley.edu"
DEFAULT_GRADESCOPE_BASE_URL = "https://www.gradescope.com"
DEFAULT_DRAFTS_DIR = Path.home() / ".local" / "share" / "coursework-bridge" / "drafts"
DEFAULT_LOG_LEVEL = "WARNING"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def load_config() -> dict:
    if not CONFIG_FILE.exists():
        return {}
    try:
        data = json.loads(CONFIG_FILE.read_text())
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def save_config(config: dict) -> Path:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(json.dumps(config, indent=2))
    return CONFIG_FILE


def _setting(env_name: str, key: str, default: str | None = None) -> str | None:
    env_value = os.getenv(env_name)
    if env_value:
        return env_value
    value = load_config().get(key)
    return value if isinstance(value, str) and value else default


def save_canvas_token(token: str) -> Path:
    config = load_config()
    config["canvas_api_token"] = token.strip()
    if os.getenv("CANVAS_BASE_URL"):
        config["canvas_base_url"] = os.getenv("CANVAS_BASE_URL")
    return save_config(config)


def get_canvas_token() -> str | None:
    return _setting("CANVAS_API_TOKEN", "canvas_api_token")


def get_canvas_base_url() -> str:
    return _setting("CANVAS_BASE_URL", "canvas_base_url", DEFAULT_CANVAS_BASE_URL) or ""


def get_gradescope_base_url() -> str:
    return _setting("GRADESCOPE_BASE_URL", "gradescope_base_url", DEFAULT_GRADESCOPE_BASE_URL) or ""


def get_gradescope_cookies() -> tuple[str | None, str | None]:
    """Session cookie and signed token used for automatic Gradescope login."""
    return (
        _setting("GRADESCOPE_SESSION", "gradescope_session"),
        _setting("GRADESCOPE_TOKEN", "gradescope_token"),
    )


def get_drafts_dir() -> Path:
    value = _setting("COURSEWORK_BRIDGE_DRAFTS_DIR", "drafts_dir")
    return Path(value).expanduser() if value else DEFAULT_DRAFTS_DIR


def get_log_level() -> str:
    return (_setting("COURSEWORK_BRIDGE_LOG_LEVEL", "log_level", DEFAULT_LOG_LEVEL) or "").upper()


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach a single stderr handler to the package logger.

    stdout carries the MCP stdio transport and ``--json`` output, so nothing
    is ever logged there.
    """
    logger = logging.getLogger("coursework_bridge")
    log_level = (level or get_log_level()).upper()
    logger.setLevel(getattr(logging, log_level, logging.WARNING))
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    return logger
