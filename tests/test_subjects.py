"""Unit tests for the subject catalogue."""
import json

import pytest

from tutorchat.errors import UnknownSubjectError
from tutorchat.subjects import clear_cache, get_subject, load_subjects


@pytest.fixture
def fresh_catalogue():
    """Clear the catalogue cache around a test."""
    clear_cache()
    yield
    clear_cache()


class TestCatalogue:
    """Tests for loading subjects."""

    def test_bundled_catalogue(self):
        """Test that the packaged subjects load with unique ids."""
        subjects = load_subjects()
        ids = [s.id for s in subjects]

        assert "physics" in ids
        assert len(ids) == len(set(ids))
        assert all(s.system_prompt for s in subjects)

    def test_get_subject(self):
        """Test lookup by id."""
        assert get_subject("physics").name == "Physics"

    def test_unknown_subject(self):
        """Test that unknown ids raise UnknownSubjectError, which is also a KeyError."""
        with pytest.raises(UnknownSubjectError) as exc_info:
            get_subject("alchemy")

        assert isinstance(exc_info.value, KeyError)
        assert exc_info.value.subject_id == "alchemy"
        assert str(exc_info.value) == "Unknown subject: alchemy"

    def test_local_catalogue_overrides_package(self, tmp_path, monkeypatch, fresh_catalogue):
        """Test that ./subjects.json replaces the bundled catalogue."""
        (tmp_path / "subjects.json").write_text(json.dumps([
            {"id": "astronomy", "name": "Astronomy", "system_prompt": "You teach astronomy."}
        ]))
        monkeypatch.chdir(tmp_path)

        assert [s.id for s in load_subjects()] == ["astronomy"]
        assert get_subject("astronomy").quick_questions == ()
