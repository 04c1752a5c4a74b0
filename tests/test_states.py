import unittest

from bundlemetrics.states import (
    FILE_STATES,
    IN_FLIGHT_STATES,
    TERMINAL_STATES,
    JobState,
    UnknownStateError,
    is_in_flight,
    is_terminal,
)


class JobStateTest(unittest.TestCase):
    def test_terminal_classification(self) -> None:
        self.assertEqual(TERMINAL_STATES, {JobState.COMPLETE, JobState.ERROR, JobState.INVALID_REQUEST})
        for state in (JobState.NOT_STARTED, JobState.IN_PROGRESS, JobState.COMPRESSING, JobState.CREATING_HASH):
            self.assertFalse(is_terminal(state), state)
            self.assertTrue(is_in_flight(state), state)
        for state in TERMINAL_STATES:
            self.assertTrue(is_terminal(state), state)
            self.assertFalse(is_in_flight(state), state)
        self.assertEqual(TERMINAL_STATES | IN_FLIGHT_STATES, set(JobState))
        self.assertEqual(FILE_STATES, {JobState.NOT_STARTED, JobState.COMPLETE})

    def test_from_text(self) -> None:
        self.assertIs(JobState.from_text("in_progress"), JobState.IN_PROGRESS)
        self.assertIs(JobState.from_text("CREATING_HASH"), JobState.CREATING_HASH)
        self.assertIs(JobState.from_text(" complete "), JobState.COMPLETE)
        with self.assertRaises(UnknownStateError):
            JobState.from_text("paused")
        with self.assertRaises(UnknownStateError):
            JobState.from_text(None)


if __name__ == "__main__":
    unittest.main()
