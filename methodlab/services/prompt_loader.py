"""
Prompt template loading.

Templates live as text files in settings.prompts_dir and use
``{{ name }}`` placeholders.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

from methodlab.config import settings
from methodlab.models import AppLanguage

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{ (\w+) \}\}")

LANGUAGE_NAMES = {
    AppLanguage.EN: "English",
    AppLanguage.VI: "Vietnamese",
}


@lru_cache(maxsize=None)
def _read_template(prompt_path: Path) -> str:
    if not prompt_path.exists():
        raise FileNotFoundError(f"Prompt file not found: {prompt_path}")
    return prompt_path.read_text(encoding="utf-8")


def load_prompt(name: str, prompts_dir: Optional[Path] = None) -> str:
    """Load a prompt template by file stem, e.g. ``draft_role``."""
    prompts_dir = prompts_dir or settings.prompts_dir
    return _read_template(Path(prompts_dir) / f"{name}.txt")


def render_prompt(template: str, **values: str) -> str:
    """
    Substitute ``{{ name }}`` placeholders in one pass.

    Single braces and unknown names are left alone; substituted values are
    never rescanned, so user text containing placeholder syntax stays literal.
    """
    return PLACEHOLDER_PATTERN.sub(
        lambda m: values.get(m.group(1), m.group(0)), template
    )


def language_name(language: Optional[AppLanguage]) -> str:
    """Human-readable output language for prompts."""
    if language is None:
        return settings.output_language
    return LANGUAGE_NAMES[language]
