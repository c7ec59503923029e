"""Account-level operations built on the automation client.

Each public method opens its own browser session (a dedicated profile browser
when the account has one on disk, otherwise a pooled browser with the stored
cookies), writes the probe outcome to the account record and returns a result
carrying a localized message next to a machine-readable code.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import time
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, AsyncIterator, Callable, Iterable, List, Optional

from . import config
from .account_selector import select_account
from .automation_client import AutomationClient
from .browser_pool import BrowserPool
from .common_logging import err, info, log_event, ok, warn
from .dom_rules import normalize_addresses
from .errors import AutomationError, LoginFailed, NotFound, WorkspaceSelectionFailed, WrongPage
from .invite_jobs import InviteProgress, JobRunner, invite_members
from .messages import error_message, get_message
from .records import Account, AccountStatus, InviteJob, JobStatus, JsonRecordStore, MemberSnapshot


@dataclass
class LoginCheck:
    success: bool
    initialized: bool
    logged_in: bool
    message: str
    code: str
    checked_at: float
    member_count: Optional[int] = None
    member_limit: Optional[int] = None
    seats_remaining: Optional[int] = None
    member_count_excluding_owner: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OperationResult:
    success: bool
    message: str
    code: str = "ok"
    count: Optional[int] = None
    screenshot: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AutoInvite:
    account: Account
    job: InviteJob
    task: Optional[asyncio.Task] = None

    def to_dict(self) -> dict:
        return {
            "account": {
                "id": self.account.id,
                "name": self.account.name,
                "member_count": self.account.member_count,
            },
            "job": self.job.to_dict(),
        }


class AccountService:
    def __init__(
        self,
        store: JsonRecordStore,
        pool: BrowserPool,
        decrypt: Callable[[str], str],
        member_limit: int = config.MEMBER_LIMIT,
        profile_root: str = config.PROFILE_ROOT,
        interactive: bool = config.INTERACTIVE,
        invite_delay_ms: int = config.INVITE_DELAY_MS,
        locale: Optional[str] = None,
        client_factory: Optional[Callable[..., Any]] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.store = store
        self.pool = pool
        self.decrypt = decrypt
        self.member_limit = member_limit
        self.profile_root = profile_root
        self.interactive = interactive
        self.invite_delay_ms = invite_delay_ms
        self.locale = locale
        self.client_factory = client_factory or self._default_client
        self._sleep = sleep
        self.runner = JobRunner(self.execute_invite_job, self._record_crash)

    def _default_client(self, profile_dir: Optional[str] = None, headless: Optional[bool] = None) -> AutomationClient:
        return AutomationClient(self.pool, profile_dir=profile_dir, headless=headless)

    def _msg(self, key: str, **kwargs: Any) -> str:
        return get_message(key, locale=self.locale, **kwargs)

    def _shot_suffix(self, path: Optional[str]) -> str:
        return self._msg("common.screenshot_suffix", path=path) if path else ""

    # --- Login state -----------------------------------------------------
    def profile_dir(self, account_id: str) -> str:
        return config.profile_dir(account_id, root=self.profile_root)

    def is_login_initialized(self, account: Account) -> bool:
        return os.path.isdir(self.profile_dir(account.id)) or bool(account.session_cookies)

    @asynccontextmanager
    async def _session(self, account: Account, mode: str = "auto", headless: Optional[bool] = None) -> AsyncIterator[Any]:
        """Open a client for ``account``.

        mode: "profile" always uses (and creates) the account's profile dir,
        "pool" always uses a pooled browser, "auto" picks the profile when it
        exists on disk.
        """
        profile = self.profile_dir(account.id)
        use_profile = mode == "profile" or (mode == "auto" and os.path.isdir(profile))
        if use_profile:
            os.makedirs(profile, exist_ok=True)
        client = self.client_factory(profile_dir=profile if use_profile else None, headless=headless)
        async with client:
            if not use_profile:
                await client.load_cookies(account.session_cookies)
            yield client

    async def _ensure_logged_in(self, client, account: Account, allow_manual: bool) -> bool:
        """Log in unless the session is already live. Returns True when a login happened."""
        if await client.is_logged_in():
            return False
        password = self.decrypt(account.credential)
        await client.login(account.email, password, allow_manual=allow_manual)
        self.store.update_account(account.id, session_cookies=await client.export_cookies())
        return True

    async def check_login(self, account_id: str) -> LoginCheck:
        account = self.store.get_account(account_id)
        now = time.time()
        if not self.is_login_initialized(account):
            self.store.update_account(
                account_id, status=AccountStatus.INACTIVE, last_check_at=now, last_error="Not initialized"
            )
            return LoginCheck(
                success=True,
                initialized=False,
                logged_in=False,
                message=self._msg("login.not_initialized"),
                code="not_initialized",
                checked_at=now,
            )

        hint: Optional[int] = None
        try:
            async with self._session(account) as client:
                logged_in = await client.is_logged_in()
                if logged_in:
                    try:
                        await client.navigate_to_members("members")
                        hint = await client.member_count_hint()
                    except AutomationError as e:
                        warn(f"[check] Member count unavailable for {account.email}: {e}")
        except Exception as e:
            err(f"[check] Login check failed for {account.email}: {e}")
            now = time.time()
            self.store.update_account(account_id, status=AccountStatus.ERROR, last_check_at=now, last_error=str(e))
            return LoginCheck(
                success=False,
                initialized=True,
                logged_in=False,
                message=self._msg("login.check_failed", error=str(e)),
                code=getattr(e, "code", "check_failed"),
                checked_at=now,
            )

        now = time.time()
        changes = {
            "status": AccountStatus.ACTIVE if logged_in else AccountStatus.ERROR,
            "last_check_at": now,
            "last_error": None if logged_in else "Not logged in",
        }
        if hint is not None:
            changes["member_count"] = hint
        self.store.update_account(account_id, **changes)
        log_event({"type": "login_check", "account": account_id, "logged_in": logged_in, "count_hint": hint})

        result = LoginCheck(
            success=True,
            initialized=True,
            logged_in=logged_in,
            message=self._msg("login.ok" if logged_in else "login.expired"),
            code="ok" if logged_in else "expired",
            checked_at=now,
            member_limit=self.member_limit,
        )
        if hint is not None:
            result.member_count = hint
            result.member_count_excluding_owner = max(0, hint - 1)
            result.seats_remaining = max(0, self.member_limit - hint)
        return result

    async def initialize_login(self, account_id: str) -> OperationResult:
        """Log in once inside the account's persistent profile, with manual assist."""
        account = self.store.get_account(account_id)
        try:
            password = self.decrypt(account.credential)
            async with self._session(account, mode="profile", headless=False) as client:
                if not await client.is_logged_in():
                    await client.login(account.email, password, allow_manual=True)
                await client.ensure_workspace_selected()
                cookies = await client.export_cookies()
        except LoginFailed as e:
            self.store.update_account(
                account_id, status=AccountStatus.ERROR, last_check_at=time.time(), last_error=str(e)
            )
            return OperationResult(False, error_message(e, self.locale), e.code, screenshot=e.screenshot)
        except AutomationError as e:
            return OperationResult(False, error_message(e, self.locale), e.code, screenshot=e.screenshot)

        self.store.update_account(
            account_id,
            profile_initialized=True,
            session_cookies=cookies,
            status=AccountStatus.ACTIVE,
            last_check_at=time.time(),
            last_error=None,
        )
        ok(f"Login initialized for {account.email}")
        return OperationResult(True, self._msg("login.initialized", email=account.email))

    async def verify_credentials(self, account_id: str) -> OperationResult:
        account = self.store.get_account(account_id)
        try:
            password = self.decrypt(account.credential)
            async with self._session(account, mode="pool") as client:
                info(f"[verify] Logging in as {account.email}…")
                await client.login(account.email, password, allow_manual=False)
                info("[verify] Selecting workspace…")
                picked = await client.ensure_workspace_selected()
                cookies = await client.export_cookies()
        except LoginFailed as e:
            self.store.update_account(
                account_id, status=AccountStatus.ERROR, last_check_at=time.time(), last_error=str(e)
            )
            return OperationResult(False, self._msg("verify.invalid"), e.code, screenshot=e.screenshot)
        except WorkspaceSelectionFailed as e:
            # Credentials worked; only the picker did not resolve.
            self.store.update_account(
                account_id, status=AccountStatus.ACTIVE, last_check_at=time.time(), last_error=str(e)
            )
            return OperationResult(False, error_message(e, self.locale), e.code, screenshot=e.screenshot)
        except Exception as e:
            err(f"[verify] Error verifying credentials for {account.email}: {e}")
            self.store.update_account(
                account_id, status=AccountStatus.ERROR, last_check_at=time.time(), last_error=str(e)
            )
            return OperationResult(
                False,
                self._msg("verify.failed", error=str(e)),
                getattr(e, "code", "verify_failed"),
                screenshot=getattr(e, "screenshot", None),
            )

        now = time.time()
        self.store.update_account(
            account_id,
            status=AccountStatus.ACTIVE,
            last_check_at=now,
            last_sync_at=now,
            last_error=None,
            session_cookies=cookies,
        )
        if picked:
            return OperationResult(True, self._msg("verify.ok"), "ok")
        return OperationResult(True, self._msg("verify.ok_no_workspace"), "ok_no_workspace")

    async def sync_members(self, account_id: str) -> OperationResult:
        account = self.store.get_account(account_id)
        try:
            async with self._session(account, mode="profile") as client:
                info("[sync] Step 1: checking login state…")
                try:
                    await self._ensure_logged_in(client, account, allow_manual=self.interactive)
                except LoginFailed as e:
                    self.store.update_account(
                        account_id, status=AccountStatus.ERROR, last_check_at=time.time(), last_error=str(e)
                    )
                    return OperationResult(False, self._msg("sync.login_failed"), e.code, count=0, screenshot=e.screenshot)

                info("[sync] Step 2: opening the members page…")
                try:
                    await client.navigate_to_members("members")
                except WrongPage as e:
                    return OperationResult(
                        False,
                        self._msg("sync.navigation_failed", screenshot=self._shot_suffix(e.screenshot)),
                        e.code,
                        count=0,
                        screenshot=e.screenshot,
                    )

                info("[sync] Step 3: reading members…")
                hint = await client.member_count_hint()
                if hint is None:
                    shot = await client.capture_debug_screenshot("sync-members-no-count") or client.last_screenshot
                    return OperationResult(
                        False,
                        self._msg("sync.no_count", screenshot=self._shot_suffix(shot)),
                        "no_count",
                        count=0,
                        screenshot=shot,
                    )
                emails = await client.member_emails(exclude=account.email)
        except Exception as e:
            err(f"[sync] Error syncing members for {account.email}: {e}")
            return OperationResult(
                False,
                self._msg("sync.failed", error=str(e)),
                getattr(e, "code", "sync_failed"),
                count=0,
                screenshot=getattr(e, "screenshot", None),
            )

        snapshot = MemberSnapshot(emails=emails, count_hint=hint)
        now = time.time()
        self.store.update_account(
            account_id,
            member_count=snapshot.count,
            member_emails=list(snapshot.emails),
            last_sync_at=now,
            status=AccountStatus.ACTIVE,
            last_check_at=now,
            last_error=None,
        )
        log_event({"type": "members_synced", "account": account_id, "count": snapshot.count, "emails": len(emails)})
        ok(f"[sync] {account.email}: {snapshot.count} member(s)")
        return OperationResult(True, self._msg("sync.ok", count=snapshot.count), "ok", count=snapshot.count)

    # --- Invite jobs -----------------------------------------------------
    def create_invite_job(self, account_id: str, addresses: Iterable[str], role: str = "member") -> InviteJob:
        """Validate and dedupe ``addresses``, then record a pending job.

        Raises ValueError for malformed addresses or an empty list, NotFound
        for an unknown account.
        """
        clean = normalize_addresses(addresses)
        if not clean:
            raise ValueError(self._msg("invite.no_addresses"))
        job = self.store.create_job(account_id, clean, role=role)
        info(self._msg("invite.job_created", count=job.total_count))
        log_event({"type": "job_created", "job_id": job.id, "account": account_id, "total": job.total_count})
        return job

    async def execute_invite_job(self, job_id: str) -> InviteJob:
        """Run a pending job to a terminal status, saving the record after every address."""
        job = self.store.get_job(job_id)
        account = self.store.get_account(job.account_id)
        job.mark_running()
        self.store.save_job(job)
        delay = account.invite_delay_ms if account.invite_delay_ms is not None else self.invite_delay_ms

        def on_progress(p: InviteProgress) -> None:
            job.record_outcome(p.index - 1, p.status, error=p.error, outcome=p.outcome, screenshot=p.screenshot)
            self.store.save_job(job)

        hint: Optional[int] = None
        try:
            async with self._session(account) as client:
                await self._ensure_logged_in(client, account, allow_manual=self.interactive)
                await client.navigate_to_members("members")
                await invite_members(
                    client,
                    job.addresses,
                    role=job.role,
                    delay_ms=delay,
                    on_progress=on_progress,
                    sleep=self._sleep,
                )
                try:
                    await client.navigate_to_members("members")
                    hint = await client.member_count_hint()
                except AutomationError as e:
                    warn(f"Member count refresh after job {job.id} failed: {e}")
        except AutomationError as e:
            message = error_message(e, self.locale)
            err(self._msg("invite.job_failed", error=message))
            job.finish(JobStatus.FAILED, error=message)
            self.store.save_job(job)
            if isinstance(e, LoginFailed):
                self.store.update_account(
                    account.id, status=AccountStatus.ERROR, last_check_at=time.time(), last_error=str(e)
                )
            log_event({"type": "job_failed", "job_id": job.id, "error": str(e), "code": e.code})
            return job
        except Exception as e:
            job.finish(JobStatus.FAILED, error=f"{type(e).__name__}: {e}")
            self.store.save_job(job)
            raise

        job.finish(JobStatus.COMPLETED)
        self.store.save_job(job)
        if hint is not None:
            self.store.update_account(account.id, member_count=hint, last_sync_at=time.time())
        ok(self._msg("invite.job_completed", success=job.success_count, failed=job.fail_count))
        log_event({
            "type": "job_completed",
            "job_id": job.id,
            "success": job.success_count,
            "failed": job.fail_count,
        })
        return job

    def schedule_invite_job(self, job_id: str) -> asyncio.Task:
        """Start ``execute_invite_job`` in the background; poll the record or await the task."""
        return self.runner.submit(job_id)

    def _record_crash(self, job_id: str, exc: BaseException) -> None:
        try:
            job = self.store.get_job(job_id)
        except NotFound:
            err(f"Crashed job {job_id} has no record")
            return
        if job.status.terminal:
            return
        job.finish(JobStatus.FAILED, error=f"{type(exc).__name__}: {exc}")
        self.store.save_job(job)

    async def auto_invite(self, addresses: Iterable[str], role: str = "member") -> AutoInvite:
        """Pick the oldest account with a free seat and schedule a job on it."""
        clean = normalize_addresses(addresses)
        if not clean:
            raise ValueError(self._msg("invite.no_addresses"))
        account = select_account(
            self.store.list_accounts(), self.member_limit, is_login_ready=self.is_login_initialized
        )
        job = self.create_invite_job(account.id, clean, role=role)
        task = self.schedule_invite_job(job.id)
        return AutoInvite(account=account, job=job, task=task)

    # --- Records ---------------------------------------------------------
    def delete_account(self, account_id: str) -> None:
        self.store.get_account(account_id)
        profile = self.profile_dir(account_id)
        if os.path.isdir(profile):
            shutil.rmtree(profile)
            info(f"Removed browser profile {profile}")
        self.store.delete_account(account_id)

    def account_stats(self, account_id: str) -> dict:
        account = self.store.get_account(account_id)
        jobs: List[InviteJob] = self.store.list_jobs(account_id)
        total_invites = sum(j.total_count for j in jobs)
        successful = sum(j.success_count for j in jobs)
        return {
            "member_count": account.member_count,
            "total_members": len(account.member_emails),
            "total_jobs": len(jobs),
            "completed_jobs": sum(1 for j in jobs if j.status is JobStatus.COMPLETED),
            "total_invites": total_invites,
            "successful_invites": successful,
            "success_rate": round(successful * 100 / total_invites, 2) if total_invites else 0.0,
        }
