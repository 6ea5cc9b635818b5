"""Unit tests for the HTTP API."""
import pytest
from fastapi.testclient import TestClient

from tutorchat.server import create_app

CHAT_BODY = {
    "subject_id": "physics",
    "messages": [{"role": "user", "parts": [{"text": "q"}]}, {"role": "model", "parts": [{"text": "a"}]}],
    "new_parts": [{"text": "What is inertia?"}],
}


@pytest.fixture
def client_for():
    """Return a factory building a test client around a service."""
    def _client(service):
        return TestClient(create_app(service))
    return _client


class TestSubjectsEndpoint:
    """Tests for GET /api/subjects."""

    def test_lists_catalogue_without_demo_text(self, client_for, service):
        """Test that the catalogue is served."""
        response = client_for(service).get("/api/subjects")

        assert response.status_code == 200
        subjects = response.json()
        assert "physics" in [s["id"] for s in subjects]
        assert all("demo_response" not in s for s in subjects)


class TestChatEndpoint:
    """Tests for POST /api/chat."""

    def test_streams_reply(self, client_for, service):
        """Test that the reply is streamed as plain text."""
        response = client_for(service).post("/api/chat", json=CHAT_BODY)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "Hello there"

        prior, parts = service.calls[0]
        assert [m.text for m in prior] == ["q", "a"]
        assert parts[0].text == "What is inertia?"

    def test_missing_fields_return_400(self, client_for, service):
        """Test that an invalid body is rejected with an error field."""
        response = client_for(service).post("/api/chat", json={"subject_id": "physics"})

        assert response.status_code == 400
        assert "error" in response.json()

    def test_inline_subject(self, client_for, service):
        """Test that a subject sent in the body is used instead of the catalogue."""
        inline = {"id": "astronomy", "name": "Astronomy", "system_prompt": "You teach astronomy."}
        body = {k: v for k, v in CHAT_BODY.items() if k != "subject_id"}

        response = client_for(service).post("/api/chat", json={**body, "subject": inline})

        assert response.status_code == 200
        assert response.text == "Hello there"
        assert service.subjects[0].id == "astronomy"
        assert service.subjects[0].system_prompt == "You teach astronomy."

    def test_missing_subject_returns_400(self, client_for, service):
        """Test that a turn without subject_id or subject is rejected."""
        body = {k: v for k, v in CHAT_BODY.items() if k != "subject_id"}

        response = client_for(service).post("/api/chat", json=body)

        assert response.status_code == 400
        assert "error" in response.json()

    def test_empty_new_parts_return_400(self, client_for, service):
        """Test that a turn needs content."""
        response = client_for(service).post("/api/chat", json={**CHAT_BODY, "new_parts": []})
        assert response.status_code == 400

    def test_unknown_subject_returns_404(self, client_for, service):
        """Test that unknown subjects are reported."""
        response = client_for(service).post("/api/chat", json={**CHAT_BODY, "subject_id": "alchemy"})

        assert response.status_code == 404
        assert "alchemy" in response.json()["error"]

    def test_failure_before_output_returns_500(self, client_for, make_service):
        """Test that a stream failing before its first chunk is a 500."""
        response = client_for(make_service(fail_after=0)).post("/api/chat", json=CHAT_BODY)

        assert response.status_code == 500
        assert response.json()["error"] == "Internal Server Error"
        assert "stream broke" in response.json()["details"]


class TestStudyEndpoints:
    """Tests for POST /api/quiz and /api/flashcards."""

    def test_quiz(self, client_for, make_service, quiz_items):
        """Test that quiz items are returned with camelCase keys."""
        service = make_service(quiz=quiz_items)
        response = client_for(service).post("/api/quiz", json={
            "subject_id": "physics",
            "messages": CHAT_BODY["messages"],
            "question_count": 2,
        })

        assert response.status_code == 200
        assert response.json()[0]["correctAnswer"] == "Newton"
        assert service.structured_calls == [("quiz", 2)]

    def test_quiz_without_result_returns_502(self, client_for, service):
        """Test that an unusable generation is reported as a bad gateway."""
        response = client_for(service).post("/api/quiz", json={
            "subject_id": "physics",
            "messages": CHAT_BODY["messages"],
        })

        assert response.status_code == 502
        assert "error" in response.json()

    def test_quiz_count_out_of_range_returns_400(self, client_for, service):
        """Test that the question count is validated."""
        response = client_for(service).post("/api/quiz", json={
            "subject_id": "physics",
            "messages": [],
            "question_count": 0,
        })
        assert response.status_code == 400

    def test_flashcards(self, client_for, make_service, flashcard_items):
        """Test that flashcards are returned."""
        service = make_service(flashcards=flashcard_items)
        response = client_for(service).post("/api/flashcards", json={
            "subject_id": "physics",
            "messages": CHAT_BODY["messages"],
            "count": 4,
        })

        assert response.status_code == 200
        assert [c["term"] for c in response.json()] == ["Inertia", "Momentum"]
        assert service.structured_calls == [("flashcards", 4)]
