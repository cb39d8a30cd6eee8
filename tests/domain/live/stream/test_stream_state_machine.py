"""Tests for StreamStateMachine and RecordingStateMachine transitions."""

from app.domain.live.stream.stream_state_machine import RecordingStateMachine, StreamStateMachine
from app.schemas import RecordingStatus, StreamStatus


class TestStreamCanTransition:
    """Tests for StreamStateMachine.can_transition method."""

    def test_created_to_live_valid(self):
        """Test CREATED -> LIVE is a valid transition."""
        assert StreamStateMachine.can_transition(StreamStatus.CREATED, StreamStatus.LIVE) is True

    def test_live_to_ended_valid(self):
        """Test LIVE -> ENDED is a valid transition."""
        assert StreamStateMachine.can_transition(StreamStatus.LIVE, StreamStatus.ENDED) is True

    def test_created_to_ended_invalid(self):
        """Test CREATED -> ENDED is invalid (a stream must go live first)."""
        assert StreamStateMachine.can_transition(StreamStatus.CREATED, StreamStatus.ENDED) is False

    def test_live_to_live_invalid(self):
        """Test LIVE -> LIVE is not a transition."""
        assert StreamStateMachine.can_transition(StreamStatus.LIVE, StreamStatus.LIVE) is False

    def test_ended_to_anything_invalid(self):
        """Test ENDED never reopens."""
        for target in StreamStatus:
            assert StreamStateMachine.can_transition(StreamStatus.ENDED, target) is False


class TestStreamTerminalStates:
    """Tests for StreamStateMachine.is_terminal method."""

    def test_only_ended_is_terminal(self):
        assert StreamStateMachine.is_terminal(StreamStatus.ENDED) is True
        assert StreamStateMachine.is_terminal(StreamStatus.CREATED) is False
        assert StreamStateMachine.is_terminal(StreamStatus.LIVE) is False

    def test_terminal_states_have_no_transitions(self):
        for state in StreamStateMachine.TERMINAL_STATES:
            assert StreamStateMachine.get_valid_transitions(state) == set()


class TestRecordingTransitions:
    """Tests for the recording merge rules."""

    def test_ready_is_terminal(self):
        """Test READY accepts no further reports."""
        assert RecordingStateMachine.is_terminal(RecordingStatus.READY) is True
        for target in RecordingStatus:
            assert RecordingStateMachine.can_transition(RecordingStatus.READY, target) is False

    def test_processing_cannot_regress(self):
        """Test PROCESSING -> UPLOADING/NONE are invalid."""
        assert (
            RecordingStateMachine.can_transition(
                RecordingStatus.PROCESSING, RecordingStatus.UPLOADING
            )
            is False
        )
        assert (
            RecordingStateMachine.can_transition(RecordingStatus.PROCESSING, RecordingStatus.NONE)
            is False
        )

    def test_failed_allows_retry_and_late_ready(self):
        """Test FAILED -> UPLOADING (retry) and FAILED -> READY (late success)."""
        assert RecordingStateMachine.can_transition(
            RecordingStatus.FAILED, RecordingStatus.UPLOADING
        )
        assert RecordingStateMachine.can_transition(RecordingStatus.FAILED, RecordingStatus.READY)

    def test_same_status_is_not_a_transition(self):
        """Test repeated reports are no-ops rather than transitions."""
        for state in RecordingStatus:
            assert RecordingStateMachine.can_transition(state, state) is False


class TestRecordingValidSources:
    """Tests for RecordingStateMachine.get_valid_sources method."""

    def test_ready_sources(self):
        assert RecordingStateMachine.get_valid_sources(RecordingStatus.READY) == {
            RecordingStatus.NONE,
            RecordingStatus.UPLOADING,
            RecordingStatus.PROCESSING,
            RecordingStatus.FAILED,
        }

    def test_processing_sources(self):
        """Test a PROCESSING report never overwrites READY or FAILED."""
        assert RecordingStateMachine.get_valid_sources(RecordingStatus.PROCESSING) == {
            RecordingStatus.NONE,
            RecordingStatus.UPLOADING,
        }

    def test_failed_sources_exclude_ready(self):
        assert RecordingStatus.READY not in RecordingStateMachine.get_valid_sources(
            RecordingStatus.FAILED
        )
