"""Tests for the Typer CLI."""
import asyncio
import functools
import io
import logging

import pytest
from rich.console import Console
from typer.testing import CliRunner

from tutorchat.cli import providers
from tutorchat.cli.app import _last_failed_index, app
from tutorchat.history import Message, Role, SessionStore, TextPart
from tutorchat.history.sqlite import SQLiteStorage
from tutorchat.llm import OpenAIProvider
from tutorchat.tutor import DemoGenerationService, RemoteGenerationService, TutorService

from conftest import make_session

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(monkeypatch, tmp_path):
    """Point the CLI at a temporary database and the instant demo service."""
    db_path = tmp_path / "history.db"
    monkeypatch.setenv("TUTORCHAT_STORAGE", "sqlite")
    monkeypatch.setenv("TUTORCHAT_DB_PATH", str(db_path))
    monkeypatch.setenv("TUTORCHAT_DEMO_MODE", "true")
    monkeypatch.delenv("TUTORCHAT_API_URL", raising=False)
    monkeypatch.delenv("TUTORCHAT_QUOTA_BYTES", raising=False)
    monkeypatch.setattr(providers, "DemoGenerationService", functools.partial(DemoGenerationService, delay=0))
    yield db_path

    # The CLI installs its own handler on the package logger
    logger = logging.getLogger("tutorchat")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


def _seed(db_path, *sessions):
    async def _write():
        async with SQLiteStorage(path=str(db_path)) as storage:
            await SessionStore(storage).save("physics", list(sessions))

    asyncio.run(_write())


def _load(db_path):
    async def _read():
        async with SQLiteStorage(path=str(db_path)) as storage:
            return await SessionStore(storage).load("physics")

    return asyncio.run(_read())


class TestOneShotCommands:
    """Tests for non-interactive commands."""

    def test_subjects(self):
        """Test that the catalogue is listed."""
        result = runner.invoke(app, ["subjects"])

        assert result.exit_code == 0
        assert "physics" in result.output

    def test_unknown_subject_exits_with_error(self):
        """Test that an unknown subject id exits with code 1."""
        result = runner.invoke(app, ["history", "alchemy"])

        assert result.exit_code == 1
        assert "Unknown subject: alchemy" in result.output

    def test_history_empty(self):
        """Test the message for a subject without chats."""
        result = runner.invoke(app, ["history", "physics"])

        assert result.exit_code == 0
        assert "No saved chats" in result.output

    def test_history_lists_and_shows_sessions(self, cli_env):
        """Test listing saved chats and printing one transcript."""
        _seed(cli_env, make_session("1", 1, "What is inertia?", "Resistance."), make_session("2", 2, "What is work?", "Force times distance."))

        listing = runner.invoke(app, ["history", "physics"])
        shown = runner.invoke(app, ["history", "physics", "--show", "2"])

        assert listing.exit_code == 0
        assert "What is work?" in listing.output
        assert "What is inertia?" in listing.output
        assert shown.exit_code == 0
        assert "Resistance." in shown.output

    def test_clear_with_yes(self, cli_env):
        """Test that clear --yes deletes saved chats."""
        _seed(cli_env, make_session("1", 1, "q", "a"))

        result = runner.invoke(app, ["clear", "physics", "--yes"])

        assert result.exit_code == 0
        assert _load(cli_env) == []

    def test_flashcards_from_newest_chat(self, cli_env):
        """Test generating flashcards in demo mode."""
        _seed(cli_env, make_session("1", 1, "Tell me about plants", "They photosynthesize."))

        result = runner.invoke(app, ["flashcards", "physics", "--count", "2"])

        assert result.exit_code == 0
        assert "Photosynthesis" in result.output
        assert "Algorithm" not in result.output

    def test_quiz_without_chats_fails(self):
        """Test that a quiz needs a saved chat."""
        result = runner.invoke(app, ["quiz", "physics"])

        assert result.exit_code == 1
        assert "No saved" in result.output

    def test_quiz_scores_answers(self, cli_env):
        """Test the interactive quiz in demo mode."""
        _seed(cli_env, make_session("1", 1, "q", "a"))

        result = runner.invoke(app, ["quiz", "physics", "--count", "2"], input="2\n1\n")

        assert result.exit_code == 0
        assert "You scored 1 out of 2" in result.output

    def test_missing_provider_configuration(self, monkeypatch):
        """Test that commands needing a model fail cleanly without credentials."""
        monkeypatch.delenv("TUTORCHAT_DEMO_MODE")
        monkeypatch.setenv("LLM_PROVIDER", "gemini")
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)

        result = runner.invoke(app, ["chat", "physics"], input="/quit\n")

        assert result.exit_code == 1
        assert "not configured" in result.output


class TestChatRepl:
    """Tests for the interactive chat."""

    def test_chat_streams_and_saves(self, cli_env):
        """Test a demo turn followed by listing and quitting."""
        result = runner.invoke(app, ["chat", "physics"], input="What is inertia?\n/list\n/quit\n")

        assert result.exit_code == 0
        assert "Newton's First Law" in result.output
        assert "Goodbye" in result.output

        saved = _load(cli_env)
        assert len(saved) == 1
        assert saved[0].messages[0].text == "What is inertia?"
        assert saved[0].messages[-1].text.startswith("Newton's First Law")

    def test_unknown_command(self):
        """Test that unknown slash commands are reported."""
        result = runner.invoke(app, ["chat", "physics"], input="/dance\n")

        assert result.exit_code == 0
        assert "Unknown command /dance" in result.output

    def test_retry_without_failure(self, cli_env):
        """Test that /retry needs a failed reply."""
        _seed(cli_env, make_session("1", 1, "q", "a"))

        result = runner.invoke(app, ["chat", "physics"], input="/load 1\n/retry\n/quit\n")

        assert result.exit_code == 0
        assert "Nothing to retry" in result.output


class TestHelpers:
    """Tests for CLI helper functions."""

    def test_last_failed_index(self):
        """Test finding the newest interrupted reply."""
        messages = (
            Message(role=Role.USER, parts=[TextPart(text="q1")]),
            Message(role=Role.MODEL, parts=[TextPart(text="x")], is_interrupted=True),
            Message(role=Role.USER, parts=[TextPart(text="q2")]),
            Message(role=Role.MODEL, parts=[TextPart(text="ok")]),
        )

        assert _last_failed_index(messages) == 1
        assert _last_failed_index(messages[:1]) is None
        assert _last_failed_index(()) is None


class TestEnvironmentWiring:
    """Tests for building services from environment variables."""

    @pytest.fixture
    def quiet(self):
        return Console(file=io.StringIO(), width=200)

    def test_missing_key_warns(self, monkeypatch, quiet):
        """Test that a provider without its key is disabled with a warning."""
        monkeypatch.setenv("LLM_PROVIDER", "anthropic")
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

        assert providers.get_llm(quiet) is None
        assert "ANTHROPIC_API_KEY not set" in quiet.file.getvalue()

    def test_model_override(self, monkeypatch, quiet):
        """Test that the vendor's model variable is honoured."""
        monkeypatch.setenv("LLM_PROVIDER", "openai")
        monkeypatch.setenv("OPENAI_API_KEY", "fake-key")
        monkeypatch.setenv("OPENAI_CHAT_MODEL", "gpt-4o")

        llm = providers.get_llm(quiet)

        assert isinstance(llm, OpenAIProvider)
        assert llm.model == "gpt-4o"

    def test_unknown_provider(self, monkeypatch, quiet):
        """Test that an unknown LLM_PROVIDER is reported."""
        monkeypatch.setenv("LLM_PROVIDER", "llama")

        assert providers.get_llm(quiet) is None
        assert "Unknown LLM provider: llama" in quiet.file.getvalue()

    def test_service_resolution_order(self, monkeypatch, quiet):
        """Test demo mode first, then the remote server, then a local model."""
        monkeypatch.delenv("LLM_PROVIDER", raising=False)
        monkeypatch.setenv("TUTORCHAT_API_URL", "http://tutor.test")
        assert isinstance(providers.get_service(quiet), DemoGenerationService)

        monkeypatch.delenv("TUTORCHAT_DEMO_MODE")
        assert isinstance(providers.get_service(quiet), RemoteGenerationService)

        monkeypatch.setenv("LLM_PROVIDER", "gemini")
        monkeypatch.setenv("GEMINI_API_KEY", "fake-key")
        assert isinstance(providers.get_service(quiet, allow_remote=False), TutorService)

    def test_memory_storage(self, monkeypatch):
        """Test selecting the in-memory backend with a quota."""
        monkeypatch.setenv("TUTORCHAT_STORAGE", "memory")
        monkeypatch.setenv("TUTORCHAT_QUOTA_BYTES", "2048")

        storage = providers.get_storage()

        assert storage.backend_type == "memory"
        assert storage.quota_bytes == 2048
