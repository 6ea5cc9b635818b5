"""Subject catalogue.

Each subject carries the system prompt that tunes the tutor. The catalogue
ships as ``catalog.json`` next to this module; a ``subjects.json`` file in
the working directory replaces it (same override rule as prompts).
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from ..errors import UnknownSubjectError

_CATALOG_PATH = Path(__file__).parent / "catalog.json"


class Subject(BaseModel):
    """A tutoring subject."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Stable identifier, also used in storage keys")
    name: str
    description: str = ""
    system_prompt: str = Field(description="System instruction for the tutor")
    quick_questions: tuple[str, ...] = ()
    quotes: tuple[str, ...] = ()
    demo_response: str | None = Field(
        default=None,
        description="Canned reply streamed in demo mode"
    )


_CATALOG_ADAPTER = TypeAdapter(list[Subject])


@lru_cache(maxsize=1)
def load_subjects() -> tuple[Subject, ...]:
    """Load the subject catalogue.

    Search order:
    1. Current working directory: ./subjects.json
    2. Package catalogue: tutorchat/subjects/catalog.json
    """
    local_path = Path.cwd() / "subjects.json"
    path = local_path if local_path.exists() else _CATALOG_PATH
    return tuple(_CATALOG_ADAPTER.validate_json(path.read_bytes()))


def get_subject(subject_id: str) -> Subject:
    """Look up a subject by id.

    Raises:
        UnknownSubjectError: If no subject has this id
    """
    for subject in load_subjects():
        if subject.id == subject_id:
            return subject
    raise UnknownSubjectError(subject_id)


def clear_cache() -> None:
    """Clear the catalogue cache (useful after modifying subjects.json)."""
    load_subjects.cache_clear()


__all__ = [
    "Subject",
    "clear_cache",
    "get_subject",
    "load_subjects",
]
