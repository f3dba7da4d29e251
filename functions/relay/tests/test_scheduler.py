import threading
import unittest

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent

from relay.scheduler import JobScheduler, UnknownJobError


class JobSchedulerTests(unittest.TestCase):
    def setUp(self):
        self.scheduler = JobScheduler()

    def tearDown(self):
        self.scheduler.shutdown()

    def test_run_now_returns_result(self):
        self.scheduler.register("answer", lambda: 42, 60)
        run = self.scheduler.run_now("answer")
        self.assertTrue(run.ran)
        self.assertEqual(run.result, 42)
        self.assertIsNone(run.error)
        self.assertEqual(self.scheduler.jobs["answer"].runs, 1)

    def test_overlapping_run_is_skipped(self):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_job():
            calls.append(1)
            started.set()
            release.wait(5)
            return "done"

        self.scheduler.register("slow", slow_job, 60)
        worker = threading.Thread(target=self.scheduler.run_now, args=("slow",))
        worker.start()
        self.assertTrue(started.wait(5))

        second = self.scheduler.run_now("slow")
        release.set()
        worker.join(5)

        self.assertFalse(second.ran)
        self.assertEqual(len(calls), 1)
        self.assertEqual(self.scheduler.jobs["slow"].skipped, 1)
        self.assertFalse(self.scheduler.is_in_flight("slow"))

        # Once the first run finished the job can run again.
        self.assertTrue(self.scheduler.run_now("slow").ran)

    def test_failure_is_recorded_and_cleared(self):
        outcomes = [RuntimeError("firestore unavailable"), None]

        def flaky():
            outcome = outcomes.pop(0)
            if outcome:
                raise outcome
            return "ok"

        self.scheduler.register("flaky", flaky, 60)

        run = self.scheduler.run_now("flaky")
        self.assertTrue(run.ran)
        self.assertEqual(run.error, "firestore unavailable")
        self.assertEqual(self.scheduler.jobs["flaky"].last_error, "firestore unavailable")
        self.assertFalse(self.scheduler.is_in_flight("flaky"))

        run = self.scheduler.run_now("flaky")
        self.assertIsNone(run.error)
        self.assertIsNone(self.scheduler.jobs["flaky"].last_error)

    def test_unknown_job(self):
        with self.assertRaises(UnknownJobError):
            self.scheduler.run_now("missing")

    def test_register_validation(self):
        self.scheduler.register("job", lambda: None, 1)
        with self.assertRaises(ValueError):
            self.scheduler.register("job", lambda: None, 1)
        with self.assertRaises(ValueError):
            self.scheduler.register("other", lambda: None, 0)

    def test_ticks_until_shutdown(self):
        ticked = threading.Event()
        self.scheduler.register("tick", ticked.set, 0.01)

        self.scheduler.start()
        self.assertTrue(self.scheduler.running)
        self.assertTrue(ticked.wait(5))
        self.scheduler.shutdown()

        self.assertFalse(self.scheduler.running)
        self.assertGreaterEqual(self.scheduler.jobs["tick"].runs, 1)

    def test_status(self):
        self.scheduler.register("job", lambda: None, 30)
        self.scheduler.run_now("job")
        (status,) = self.scheduler.status()
        self.assertEqual(status["name"], "job")
        self.assertEqual(status["intervalSeconds"], 30)
        self.assertFalse(status["running"])
        self.assertIsNotNone(status["lastRunAt"])
        self.assertIsNone(status["lastError"])

    def test_jobs_are_registered_without_overlap(self):
        self.scheduler.register("job", lambda: None, 30)
        aps_job = self.scheduler.background.get_job("job")
        self.assertEqual(aps_job.max_instances, 1)
        self.assertTrue(aps_job.coalesce)
        self.assertEqual(aps_job.trigger.interval.total_seconds(), 30)

    def test_dropped_tick_counts_as_skipped(self):
        self.scheduler.register("slow", lambda: None, 30)
        self.scheduler.background._dispatch_event(
            JobSubmissionEvent(EVENT_JOB_MAX_INSTANCES, "slow", "default", [])
        )
        self.assertEqual(self.scheduler.jobs["slow"].skipped, 1)
        self.assertEqual(self.scheduler.status()[0]["skipped"], 1)

    def test_next_run_is_reported_once_started(self):
        self.scheduler.register("job", lambda: None, 30)
        self.assertIsNone(self.scheduler.status()[0]["nextRunAt"])
        self.scheduler.start()
        self.assertIsNotNone(self.scheduler.status()[0]["nextRunAt"])


if __name__ == "__main__":
    unittest.main()
