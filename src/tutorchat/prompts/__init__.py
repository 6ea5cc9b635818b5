"""Prompt templates for the tutor's study material requests.

Templates are plain ``.txt`` files with ``str.format`` placeholders. A file
with the same name under ``./prompts/`` in the working directory wins over
the packaged one, so prompts can be tuned without reinstalling.
"""

from functools import lru_cache
from pathlib import Path

_PACKAGE_DIR = Path(__file__).parent


def _candidates(filename: str) -> list[Path]:
    return [Path.cwd() / "prompts" / filename, _PACKAGE_DIR / filename]


@lru_cache(maxsize=16)
def load_prompt(name: str) -> str:
    """Text of prompt ``name`` (no extension); local override first.

    Raises:
        FileNotFoundError: Neither location has ``{name}.txt``
    """
    paths = _candidates(f"{name}.txt")
    for path in paths:
        if path.is_file():
            return path.read_text(encoding="utf-8")
    searched = "\n".join(f"  - {p}" for p in paths)
    raise FileNotFoundError(f"Prompt '{name}' not found. Searched:\n{searched}")


def render_prompt(name: str, **values: object) -> str:
    """Load a prompt template and fill in its ``{placeholders}``."""
    return load_prompt(name).format(**values)


def get_structured_system_prompt() -> str:
    """System prompt for quiz and flashcard generation."""
    return load_prompt("structured_system").strip()


def clear_cache() -> None:
    load_prompt.cache_clear()


__all__ = [
    "load_prompt",
    "render_prompt",
    "get_structured_system_prompt",
    "clear_cache",
]
