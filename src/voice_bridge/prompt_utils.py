"""
Assistant instruction loading.

Instructions come from inline text or a prompt file (relative paths resolve
against the project root). `{AGENT_NAME}` and `{RESTAURANT_NAME}` are filled in
from config; any other braces are left untouched.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict

import structlog

from src.voice_bridge.config import Config

logger = structlog.get_logger(__name__)

MAX_PROMPT_CHARS = 40_000

_PLACEHOLDER_RE = re.compile(r"\{([A-Z_]+)\}")


def prompt_path(path: str) -> Path:
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    # src/voice_bridge/prompt_utils.py -> project root
    return Path(__file__).resolve().parents[2] / candidate


def load_prompt_file(path: str, *, max_chars: int = MAX_PROMPT_CHARS) -> str:
    """Read a prompt file; returns "" when it is missing or unreadable."""
    if not path:
        return ""

    file_path = prompt_path(path)
    try:
        raw = file_path.read_bytes()
    except FileNotFoundError:
        logger.warning("Prompt file not found", path=str(file_path))
        return ""
    except OSError as e:
        logger.error("Prompt file read failed", path=str(file_path), error=str(e))
        return ""

    # utf-8-sig also accepts files without a BOM
    text = raw.decode("utf-8-sig", errors="replace").strip()
    if len(text) > max_chars:
        logger.warning("Prompt truncated", path=str(file_path), chars=len(text), max_chars=max_chars)
        text = text[:max_chars]
    return text


def render_prompt(template: str, config: Config) -> str:
    values: Dict[str, str] = {
        "AGENT_NAME": config.agent_name,
        "RESTAURANT_NAME": config.restaurant_name,
    }
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def resolve_prompt(
    *,
    config: Config,
    inline_text: str,
    file_path: str,
    max_chars: int = MAX_PROMPT_CHARS,
) -> str:
    """Inline text wins over the file; "" if neither yields anything."""
    template = (inline_text or "").strip() or load_prompt_file(file_path, max_chars=max_chars)
    return render_prompt(template, config) if template else ""
