from __future__ import annotations

import asyncio
import unittest

from fakes import BlockingSleep, FakeJobDirectory, RecordingSleep

from domain import JobSlotName, JobStatus
from services.job_polling import JobPoller, PollingSlots


class JobPollerTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:  # noqa: N802
        self.directory = FakeJobDirectory()
        self.updates: list = []

    async def test_terminal_first_tick_stops_after_one_request(self) -> None:
        self.directory.add_job("main", "j1", "abc123", JobStatus.SUCCEEDED)
        poller = JobPoller(self.directory, sleep=RecordingSleep())

        subscription = poller.subscribe("j1", "main", self.updates.append)
        await subscription.wait()

        self.assertEqual(len(self.directory.calls_named("get_job")), 1)
        self.assertEqual([u.status for u in self.updates], [JobStatus.SUCCEEDED])
        self.assertFalse(subscription.active)

    async def test_every_tick_is_reported_until_terminal(self) -> None:
        self.directory.add_job("main", "j1", "abc123", JobStatus.RUNNING, JobStatus.RUNNING, JobStatus.FAILED)
        sleep = RecordingSleep()
        poller = JobPoller(self.directory, interval_seconds=10, sleep=sleep)

        await poller.subscribe("j1", "main", self.updates.append).wait()

        self.assertEqual(
            [u.status for u in self.updates],
            [JobStatus.RUNNING, JobStatus.RUNNING, JobStatus.FAILED],
        )
        self.assertEqual(sleep.calls, [10, 10, 10])

    async def test_failed_refresh_is_skipped_and_polling_continues(self) -> None:
        self.directory.add_job("main", "j1", "abc123", RuntimeError("timeout"), JobStatus.CANCELLED)
        poller = JobPoller(self.directory, sleep=RecordingSleep())

        async def on_update(snapshot) -> None:
            self.updates.append(snapshot)

        await poller.subscribe("j1", "main", on_update).wait()

        self.assertEqual(len(self.directory.calls_named("get_job")), 2)
        self.assertEqual([u.status for u in self.updates], [JobStatus.CANCELLED])

    async def test_cancel_is_idempotent(self) -> None:
        self.directory.add_job("main", "j1", "abc123", JobStatus.RUNNING)
        poller = JobPoller(self.directory, sleep=BlockingSleep())

        subscription = poller.subscribe("j1", "main", self.updates.append)
        await asyncio.sleep(0)
        subscription.cancel()
        subscription.cancel()
        await subscription.wait()

        self.assertFalse(subscription.active)
        self.assertEqual(self.updates, [])


class PollingSlotsTest(unittest.IsolatedAsyncioTestCase):
    async def test_starting_a_slot_twice_leaves_one_live_subscription(self) -> None:
        directory = FakeJobDirectory()
        directory.add_job("main", "j1", "a", JobStatus.RUNNING)
        directory.add_job("main", "j2", "b", JobStatus.RUNNING)
        slots = PollingSlots(JobPoller(directory, sleep=BlockingSleep()))

        first = slots.start(JobSlotName.TEST, "j1", "main", lambda _snapshot: None)
        second = slots.start(JobSlotName.TEST, "j2", "main", lambda _snapshot: None)
        await asyncio.sleep(0)

        self.assertFalse(first.active)
        self.assertTrue(second.active)
        self.assertEqual(slots.active_count(), 1)
        self.assertIs(slots.get(JobSlotName.TEST), second)

        slots.start(JobSlotName.MERGE, "j1", "main", lambda _snapshot: None)
        self.assertEqual(slots.active_count(), 2)

        slots.cancel_all()
        await second.wait()
        self.assertEqual(slots.active_count(), 0)


if __name__ == "__main__":
    unittest.main()
