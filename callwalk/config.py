from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from callwalk.script.renderer import DEFAULT_TEXT_SIZE, MAX_TEXT_SIZE, MIN_TEXT_SIZE
from callwalk.store.sync import NOTIFY_DEBOUNCE_SECONDS, SAVE_DEBOUNCE_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".callwalk"


@dataclass
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    save_debounce: float = SAVE_DEBOUNCE_SECONDS
    notify_debounce: float = NOTIFY_DEBOUNCE_SECONDS
    text_size: int = DEFAULT_TEXT_SIZE
    history_limit: Optional[int] = None
    log_level: str = "WARNING"
    operator_name: str = ""


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    env_file: Optional[Path] = None,
) -> Settings:
    """Build settings from ``CALLWALK_*`` variables.

    When ``env`` is not given, ``env_file`` (default ``./.env``) is loaded into
    ``os.environ`` first; variables already set take precedence.
    """
    if env is None:
        _load_env_file(env_file or Path.cwd() / ".env")
        env = os.environ

    settings = Settings()
    data_dir = env.get("CALLWALK_DATA_DIR")
    if data_dir:
        settings.data_dir = Path(os.path.expanduser(data_dir))
    save_ms = _int_var(env, "CALLWALK_SAVE_DEBOUNCE_MS")
    if save_ms is not None and save_ms >= 0:
        settings.save_debounce = save_ms / 1000
    notify_ms = _int_var(env, "CALLWALK_NOTIFY_DEBOUNCE_MS")
    if notify_ms is not None and notify_ms >= 0:
        settings.notify_debounce = notify_ms / 1000
    text_size = _int_var(env, "CALLWALK_TEXT_SIZE")
    if text_size is not None:
        settings.text_size = max(MIN_TEXT_SIZE, min(MAX_TEXT_SIZE, text_size))
    history_limit = _int_var(env, "CALLWALK_HISTORY_LIMIT")
    if history_limit is not None and history_limit > 0:
        settings.history_limit = history_limit
    level = env.get("CALLWALK_LOG_LEVEL")
    if level:
        settings.log_level = level.strip().upper()
    operator = env.get("CALLWALK_OPERATOR_NAME")
    if operator:
        settings.operator_name = operator.strip()
    return settings


def _int_var(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning("Ignoring %s=%r (not an integer)", name, raw)
        return None


def _load_env_file(path: Path) -> None:
    try:
        raw = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("export "):
            stripped = stripped[7:].lstrip()
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        if key not in os.environ:
            os.environ[key] = value
