"""Tests for the serial invite executor and the background job runner."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from teamseat.automation_client import InviteResult
from teamseat.dom_rules import InviteOutcome
from teamseat.errors import InviteButtonNotFound, LoginFailed
from teamseat.invite_jobs import InviteProgress, JobRunner, invite_members


class FakeClient:
    """Records call order and flags overlapping invite attempts."""

    def __init__(self, fail=(), session_error_on=None, unconfirmed=()):
        self.fail = set(fail)
        self.session_error_on = session_error_on
        self.unconfirmed = set(unconfirmed)
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def invite_member(self, email, role="member"):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.calls.append((email, role))
        try:
            await asyncio.sleep(0)
            if email == self.session_error_on:
                raise LoginFailed("session expired")
            if email in self.fail:
                raise InviteButtonNotFound("no invite button", screenshot=f"logs/{email}.png")
            outcome = InviteOutcome.ACCEPTED_UNCONFIRMED if email in self.unconfirmed else InviteOutcome.CONFIRMED
            return InviteResult(email=email, outcome=outcome, status=200)
        finally:
            self.active -= 1


ADDRESSES = ["a@acme.io", "b@acme.io", "c@acme.io"]


class TestInviteMembers:
    def test_all_fail(self):
        client = FakeClient(fail=ADDRESSES)
        events = []
        sleep = AsyncMock()

        result = asyncio.run(invite_members(client, ADDRESSES, delay_ms=10, on_progress=events.append, sleep=sleep))

        assert result.success_count == 0
        assert result.fail_count == len(ADDRESSES)
        assert len(result.errors) == len(ADDRESSES)
        assert [e.email for e in events] == ADDRESSES
        assert [e.index for e in events] == [1, 2, 3]
        assert all(e.status == "failed" and e.total == 3 for e in events)
        assert events[0].screenshot == "logs/a@acme.io.png"

    def test_mixed_outcomes_continue_after_failure(self):
        client = FakeClient(fail=["b@acme.io"], unconfirmed=["c@acme.io"])
        events = []

        result = asyncio.run(
            invite_members(client, ADDRESSES, role="admin", delay_ms=0, on_progress=events.append, sleep=AsyncMock())
        )

        assert result.success_count == 2
        assert result.fail_count == 1
        assert result.caveats == ["c@acme.io"]
        assert [c[0] for c in client.calls] == ADDRESSES
        assert all(c[1] == "admin" for c in client.calls)
        assert [e.status for e in events] == ["success", "failed", "success"]
        assert events[0].outcome == "confirmed"
        assert events[2].outcome == "accepted_unconfirmed"
        assert "b@acme.io" in events[1].error

    def test_attempts_never_overlap_and_delay_between_only(self):
        client = FakeClient()
        order = []

        async def sleep(seconds):
            order.append(("sleep", seconds))

        def on_progress(p: InviteProgress):
            order.append(("done", p.email))

        asyncio.run(invite_members(client, ADDRESSES, delay_ms=2500, on_progress=on_progress, sleep=sleep))

        assert client.max_active == 1
        assert order == [
            ("done", "a@acme.io"),
            ("sleep", 2.5),
            ("done", "b@acme.io"),
            ("sleep", 2.5),
            ("done", "c@acme.io"),
        ]

    def test_async_progress_callback_is_awaited(self):
        seen = []

        async def on_progress(p):
            seen.append(p.email)

        asyncio.run(invite_members(FakeClient(), ADDRESSES[:2], delay_ms=0, on_progress=on_progress, sleep=AsyncMock()))
        assert seen == ADDRESSES[:2]

    def test_session_error_stops_the_batch(self):
        client = FakeClient(session_error_on="b@acme.io")
        events = []

        with pytest.raises(LoginFailed):
            asyncio.run(invite_members(client, ADDRESSES, delay_ms=0, on_progress=events.append, sleep=AsyncMock()))

        assert [c[0] for c in client.calls] == ["a@acme.io", "b@acme.io"]
        assert [e.email for e in events] == ["a@acme.io", "b@acme.io"]
        assert events[1].status == "failed"
        assert "session expired" in events[1].error

    def test_empty_list(self):
        sleep = AsyncMock()
        result = asyncio.run(invite_members(FakeClient(), [], sleep=sleep))
        assert (result.success_count, result.fail_count) == (0, 0)
        sleep.assert_not_awaited()


class TestJobRunner:
    def test_crash_is_handed_to_callback(self):
        on_crash = MagicMock()

        async def execute(job_id):
            raise RuntimeError("browser vanished")

        async def scenario():
            runner = JobRunner(execute, on_crash)
            task = runner.submit("job1")
            await runner.wait_all()
            await asyncio.sleep(0)
            return runner, task

        runner, task = asyncio.run(scenario())

        assert task.done()
        on_crash.assert_called_once()
        job_id, exc = on_crash.call_args[0]
        assert job_id == "job1"
        assert isinstance(exc, RuntimeError)
        assert runner.pending == []

    def test_successful_job_does_not_report_crash(self):
        on_crash = MagicMock()
        execute = AsyncMock(return_value=None)

        async def scenario():
            runner = JobRunner(execute, on_crash)
            task = runner.submit("job1")
            await task
            await asyncio.sleep(0)

        asyncio.run(scenario())
        execute.assert_awaited_once_with("job1")
        on_crash.assert_not_called()

    def test_resubmitting_running_job_returns_same_task(self):
        gate = None

        async def execute(job_id):
            await gate.wait()

        async def scenario():
            nonlocal gate
            gate = asyncio.Event()
            runner = JobRunner(execute, MagicMock())
            first = runner.submit("job1")
            second = runner.submit("job1")
            gate.set()
            await runner.wait_all()
            return first, second

        first, second = asyncio.run(scenario())
        assert first is second

    def test_crash_callback_failure_is_contained(self):
        async def execute(job_id):
            raise ValueError("boom")

        def on_crash(job_id, exc):
            raise OSError("disk full")

        async def scenario():
            runner = JobRunner(execute, on_crash)
            runner.submit("job1")
            await runner.wait_all()
            await asyncio.sleep(0)

        asyncio.run(scenario())
