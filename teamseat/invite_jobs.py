"""Serial bulk invites for one account, plus background scheduling of jobs."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from . import config
from .common_logging import err, info, log_event, warn
from .dom_rules import InviteOutcome
from .errors import SessionError


@dataclass
class InviteProgress:
    index: int  # 1-based position in the address list
    total: int
    email: str
    status: str  # success | failed
    error: Optional[str] = None
    outcome: Optional[str] = None
    screenshot: Optional[str] = None


@dataclass
class BatchResult:
    success_count: int = 0
    fail_count: int = 0
    errors: List[str] = field(default_factory=list)
    caveats: List[str] = field(default_factory=list)


async def _report(progress: InviteProgress, on_progress) -> None:
    log_event({"type": "invite_progress", **progress.__dict__})
    if on_progress is not None:
        ret = on_progress(progress)
        if inspect.isawaitable(ret):
            await ret


async def invite_members(
    client,
    addresses: Sequence[str],
    role: str = "member",
    delay_ms: int = config.INVITE_DELAY_MS,
    on_progress: Optional[Callable[[InviteProgress], Any]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> BatchResult:
    """Invite ``addresses`` one after another on ``client``.

    A failing address is recorded and the loop moves on; only a SessionError
    (browser or login gone) stops the batch, after the address it hit is
    reported as failed. Attempts never overlap, and ``delay_ms`` separates
    one attempt's recorded outcome from the next start.
    """
    result = BatchResult()
    total = len(addresses)
    for i, email in enumerate(addresses):
        progress = InviteProgress(index=i + 1, total=total, email=email, status="failed")
        try:
            invite = await client.invite_member(email, role)
        except Exception as e:
            result.fail_count += 1
            progress.error = f"Error inviting {email}: {e}"
            progress.screenshot = getattr(e, "screenshot", None)
            result.errors.append(progress.error)
            if isinstance(e, SessionError):
                err(f"[{i + 1}/{total}] {progress.error}, stopping")
                await _report(progress, on_progress)
                raise
            warn(f"[{i + 1}/{total}] {progress.error}")
        else:
            result.success_count += 1
            progress.status = "success"
            progress.outcome = invite.outcome.value
            progress.screenshot = invite.screenshot
            if invite.outcome is InviteOutcome.ACCEPTED_UNCONFIRMED:
                result.caveats.append(email)
            info(f"[{i + 1}/{total}] Invited {email} ({invite.outcome.value})")

        await _report(progress, on_progress)

        if i < total - 1:
            await sleep(delay_ms / 1000)
    return result


class JobRunner:
    """Run invite jobs as background tasks.

    ``submit`` returns the task so callers can await it or just poll the job
    record. Whatever escapes a task is handed to ``on_crash`` so it lands in
    the job record instead of vanishing.
    """

    def __init__(
        self,
        execute: Callable[[str], Awaitable[None]],
        on_crash: Callable[[str, BaseException], None],
    ):
        self._execute = execute
        self._on_crash = on_crash
        self._tasks: Dict[str, asyncio.Task] = {}

    def submit(self, job_id: str) -> asyncio.Task:
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.get_running_loop().create_task(self._execute(job_id), name=f"invite-job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(partial(self._finished, job_id))
        log_event({"type": "job_submitted", "job_id": job_id})
        return task

    def _finished(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            exc: Optional[BaseException] = asyncio.CancelledError(f"job {job_id} cancelled")
        else:
            exc = task.exception()
        if exc is None:
            return
        err(f"Invite job {job_id} crashed: {exc!r}")
        log_event({"type": "job_crashed", "job_id": job_id, "error": repr(exc)})
        try:
            self._on_crash(job_id, exc)
        except Exception as e:
            err(f"Could not record crash of job {job_id}: {e!r}")

    @property
    def pending(self) -> List[str]:
        return list(self._tasks)

    async def wait_all(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
