import unittest

from looprelay.core.relay_state import RelayState
from looprelay.exceptions import AlreadyRunning, AlreadyStopped, InvariantViolation
from looprelay.models.relay import JobResult, RelayOutcome


def result(index: int, outcome: RelayOutcome) -> JobResult:
    return JobResult(index=index, outcome=outcome)


class RelayStateTests(unittest.TestCase):
    def test_start_twice_reports_conflict_and_keeps_counters(self) -> None:
        state = RelayState(3)
        run_id = state.try_start()
        job = state.begin_job(run_id)
        state.finish_job(job, result(0, RelayOutcome.DELIVERED))

        with self.assertRaises(AlreadyRunning):
            state.try_start()

        snap = state.snapshot()
        self.assertTrue(snap.running)
        self.assertEqual(snap.items_completed, 1)

    def test_stop_when_stopped_reports_conflict(self) -> None:
        with self.assertRaises(AlreadyStopped):
            RelayState(2).request_stop()

    def test_skip_while_stopped_moves_index_only(self) -> None:
        state = RelayState(3)

        self.assertEqual(state.skip(), 1)
        self.assertEqual(state.skip(), 2)
        self.assertEqual(state.skip(), 0)
        self.assertFalse(state.snapshot().running)

    def test_skip_to_index_validates_range(self) -> None:
        state = RelayState(3)

        self.assertEqual(state.skip(2), 2)
        with self.assertRaises(ValueError):
            state.skip(3)

    def test_skip_during_job_is_not_lost_to_end_of_item_advance(self) -> None:
        state = RelayState(4)
        run_id = state.try_start()
        job = state.begin_job(run_id)

        self.assertEqual(state.skip(), 1)
        self.assertTrue(job.cancelled)
        new_index = state.finish_job(job, result(0, RelayOutcome.CANCELLED))

        self.assertEqual(new_index, 1)
        self.assertEqual(state.snapshot().items_cancelled, 1)

    def test_stop_cancels_active_job_and_clears_handle(self) -> None:
        state = RelayState(2)
        run_id = state.try_start()
        job = state.begin_job(run_id)

        state.request_stop()

        snap = state.snapshot()
        self.assertTrue(job.cancelled)
        self.assertFalse(snap.running)
        self.assertFalse(snap.active_job)
        self.assertIsNone(state.begin_job(run_id))

    def test_counters_survive_stop_start_by_default(self) -> None:
        state = RelayState(2)
        run_id = state.try_start()
        state.finish_job(state.begin_job(run_id), result(0, RelayOutcome.DELIVERED))
        state.request_stop()

        state.try_start()

        self.assertEqual(state.snapshot().items_completed, 1)

    def test_counters_reset_per_run_when_configured(self) -> None:
        state = RelayState(2)
        run_id = state.try_start()
        state.finish_job(state.begin_job(run_id), result(0, RelayOutcome.ACQUISITION_FAILED))
        state.request_stop()

        state.try_start(reset_stats=True)

        self.assertEqual(state.snapshot().errors, 0)

    def test_second_active_job_is_an_invariant_violation(self) -> None:
        state = RelayState(2)
        run_id = state.try_start()
        state.begin_job(run_id)

        with self.assertRaises(InvariantViolation):
            state.begin_job(run_id)

    def test_empty_playlist_rejected(self) -> None:
        with self.assertRaises(ValueError):
            RelayState(0)


if __name__ == "__main__":
    unittest.main()
