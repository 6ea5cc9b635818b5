"""Unit tests for the pure session-list updates."""
from hypothesis import given
from hypothesis import strategies as st

from tutorchat.chat import state
from tutorchat.history import Message, Role

from conftest import make_session


def _with_placeholder(session):
    return session.model_copy(update={"messages": [*session.messages, Message.placeholder()]})


class TestSessionUpdates:
    """Tests for session list update functions."""

    def test_insert_session_puts_new_session_first_and_caps(self):
        """Test that insertion keeps the newest session at the head."""
        sessions = tuple(make_session(str(i), i, "q") for i in range(3, 0, -1))
        new = make_session("9", 9, "fresh")

        result = state.insert_session(sessions, new, limit=3)

        assert [s.id for s in result] == ["9", "3", "2"]

    def test_begin_turn_appends_and_resorts(self):
        """Test that a turn on an older session moves it to the head."""
        sessions = (make_session("b", 2, "q"), make_session("a", 1, "q"))

        result = state.begin_turn(
            sessions, "a", [Message.user([]), Message.placeholder()], timestamp=5
        )

        assert [s.id for s in result] == ["a", "b"]
        assert result[0].timestamp == 5
        assert len(result[0].messages) == 3

    def test_replace_tail_keeps_prefix(self):
        """Test that the tail after ``keep`` messages is replaced."""
        sessions = (make_session("a", 1, "q1", "a1", "q2", "failed"),)

        result = state.replace_tail(sessions, "a", 2, [Message.placeholder()], timestamp=7)

        assert [m.text for m in result[0].messages] == ["q1", "a1", ""]
        assert result[0].timestamp == 7

    def test_append_chunk_targets_only_its_session(self):
        """Test that chunks never leak into another session."""
        sessions = (
            _with_placeholder(make_session("a", 2, "q")),
            _with_placeholder(make_session("b", 1, "q")),
        )

        result = state.append_chunk(sessions, "b", "hi")

        assert result[0].messages[-1].text == ""
        assert result[1].messages[-1].text == "hi"

    def test_updates_for_missing_session_are_noops(self):
        """Test that updates addressed to a deleted session change nothing."""
        sessions = (_with_placeholder(make_session("a", 1, "q")),)

        assert state.append_chunk(sessions, "gone", "x") == sessions
        assert state.settle_ok(sessions, "gone", "x") == sessions
        assert state.settle_error(sessions, "gone", "x") == sessions

    def test_append_chunk_ignores_trailing_user_message(self):
        """Test that chunks are only applied to a trailing model message."""
        sessions = (make_session("a", 1, "question"),)
        assert state.append_chunk(sessions, "a", "x") == sessions

    def test_settle_error_then_ok(self):
        """Test that settling sets and clears the interrupted flag."""
        sessions = (_with_placeholder(make_session("a", 1, "q")),)

        failed = state.settle_error(sessions, "a", "Oops")
        last = failed[0].messages[-1]
        assert last.text == "Oops"
        assert last.interrupted

        recovered = state.settle_ok(failed, "a", "Fine")
        last = recovered[0].messages[-1]
        assert last.text == "Fine"
        assert last.is_interrupted is None
        assert last.role == Role.MODEL

    def test_remove_and_keep_sessions(self):
        """Test filtering sessions by id."""
        sessions = tuple(make_session(str(i), i, "q") for i in range(3))

        assert [s.id for s in state.remove_session(sessions, "1")] == ["0", "2"]
        assert [s.id for s in state.keep_sessions(sessions, {"2", "0"})] == ["0", "2"]

    @given(st.lists(st.text(min_size=1), max_size=20))
    def test_appended_chunks_concatenate_in_order(self, chunks):
        """Property test: the reply is the in-order concatenation of its chunks."""
        sessions = (_with_placeholder(make_session("a", 1, "q")),)
        for chunk in chunks:
            sessions = state.append_chunk(sessions, "a", chunk)
        assert sessions[0].messages[-1].text == "".join(chunks)
