"""State machines for stream lifecycle and recording ingestion."""

from app.schemas import RecordingStatus, StreamStatus


class StreamStateMachine:
    """State machine for the broadcast lifecycle.

    State flow with triggers:
    - CREATED (stream created) -> LIVE (start_stream by owner or active host)
    - LIVE -> ENDED (end_stream by owner, or owner leaves with no hosts left)
    - ENDED is terminal; rejoining never reopens a stream
    """

    TRANSITIONS: dict[StreamStatus, set[StreamStatus]] = {
        StreamStatus.CREATED: {StreamStatus.LIVE},
        StreamStatus.LIVE: {StreamStatus.ENDED},
        StreamStatus.ENDED: set(),
    }

    TERMINAL_STATES: set[StreamStatus] = {StreamStatus.ENDED}

    @classmethod
    def can_transition(cls, current: StreamStatus, new: StreamStatus) -> bool:
        """Check if state transition is valid.

        Args:
            current: Current stream status
            new: Target status to transition to

        Returns:
            True if transition is valid, False otherwise
        """
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_terminal(cls, state: StreamStatus) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def get_valid_transitions(cls, state: StreamStatus) -> set[StreamStatus]:
        return cls.TRANSITIONS.get(state, set())


class RecordingStateMachine:
    """Merge rules for recording status updates.

    Poller ticks, webhooks and the upload path all write recording status.
    Each write is applied only from one of the valid source states, so racing
    reporters converge on the same result regardless of arrival order.

    - NONE -> UPLOADING | PROCESSING | READY | FAILED
    - UPLOADING -> PROCESSING | READY | FAILED
    - PROCESSING -> READY | FAILED
    - FAILED -> UPLOADING (retry) | READY (late success report)
    - READY is terminal
    """

    TRANSITIONS: dict[RecordingStatus, set[RecordingStatus]] = {
        RecordingStatus.NONE: {
            RecordingStatus.UPLOADING,
            RecordingStatus.PROCESSING,
            RecordingStatus.READY,
            RecordingStatus.FAILED,
        },
        RecordingStatus.UPLOADING: {
            RecordingStatus.PROCESSING,
            RecordingStatus.READY,
            RecordingStatus.FAILED,
        },
        RecordingStatus.PROCESSING: {
            RecordingStatus.READY,
            RecordingStatus.FAILED,
        },
        RecordingStatus.FAILED: {
            RecordingStatus.UPLOADING,
            RecordingStatus.READY,
        },
        RecordingStatus.READY: set(),
    }

    TERMINAL_STATES: set[RecordingStatus] = {RecordingStatus.READY}

    @classmethod
    def can_transition(cls, current: RecordingStatus, new: RecordingStatus) -> bool:
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_terminal(cls, state: RecordingStatus) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def get_valid_sources(cls, target: RecordingStatus) -> set[RecordingStatus]:
        """Get all states that can transition to the target state.

        Args:
            target: Target recording status

        Returns:
            Set of states that can transition to the target
        """
        return {state for state, targets in cls.TRANSITIONS.items() if target in targets}
