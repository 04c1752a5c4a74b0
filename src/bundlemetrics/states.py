"""Job lifecycle states and their classification.

State is written by the bundling engine; nothing here performs a
transition. The collector only asks whether a persisted state is terminal.
"""

from __future__ import annotations

from enum import Enum


class UnknownStateError(ValueError):
    pass


class JobState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    INVALID_REQUEST = "invalid_request"
    COMPRESSING = "compressing"
    CREATING_HASH = "creating_hash"
    COMPLETE = "complete"
    ERROR = "error"

    @classmethod
    def from_text(cls, text: str | None) -> JobState:
        """Decode a wire token (``in_progress``) or a member name (``IN_PROGRESS``)."""
        if text is not None:
            token = str(text).strip().lower()
            for member in cls:
                if token == member.value:
                    return member
        raise UnknownStateError(f"Unknown job state: {text!r}")


TERMINAL_STATES: frozenset[JobState] = frozenset(
    {JobState.COMPLETE, JobState.ERROR, JobState.INVALID_REQUEST}
)

IN_FLIGHT_STATES: frozenset[JobState] = frozenset(set(JobState) - TERMINAL_STATES)

# Files only ever move between these two.
FILE_STATES: frozenset[JobState] = frozenset({JobState.NOT_STARTED, JobState.COMPLETE})


def is_terminal(state: JobState) -> bool:
    return state in TERMINAL_STATES


def is_in_flight(state: JobState) -> bool:
    return state in IN_FLIGHT_STATES
