"""Account and invite-job records plus a JSON-file store for them.

The engine only needs a handful of store methods (get/update account,
create/get/save job). ``JsonRecordStore`` provides them on top of one JSON
file, the same way the invite scripts keep their checkpoint files.
"""

from __future__ import annotations

import json
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .errors import InvalidTransition, NotFound


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class Account:
    id: str
    email: str
    credential: str = ""  # ciphertext
    name: str = ""
    session_cookies: Optional[List[dict]] = None
    profile_initialized: bool = False
    status: AccountStatus = AccountStatus.INACTIVE
    last_check_at: Optional[float] = None
    last_error: Optional[str] = None
    member_count: int = 0
    member_emails: List[str] = field(default_factory=list)  # last synced roster, owner excluded
    last_sync_at: Optional[float] = None
    invite_delay_ms: Optional[int] = None
    created_at: float = field(default_factory=time.time)

    @property
    def login_ready(self) -> bool:
        return self.profile_initialized or bool(self.session_cookies)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Account":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["status"] = AccountStatus(kwargs.get("status", AccountStatus.INACTIVE))
        return cls(**kwargs)


@dataclass
class MemberSnapshot:
    emails: List[str] = field(default_factory=list)
    count_hint: Optional[int] = None

    @property
    def count(self) -> int:
        # The UI hint wins; not every UI state renders every address.
        return self.count_hint if self.count_hint is not None else len(self.emails)


@dataclass
class AddressOutcome:
    email: str
    status: str = "pending"  # pending | success | failed
    error: Optional[str] = None
    outcome: Optional[str] = None
    screenshot: Optional[str] = None


@dataclass
class InviteJob:
    id: str
    account_id: str
    addresses: List[str]
    role: str = "member"
    status: JobStatus = JobStatus.PENDING
    outcomes: List[AddressOutcome] = field(default_factory=list)
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not self.outcomes:
            self.outcomes = [AddressOutcome(email=a) for a in self.addresses]

    @property
    def total_count(self) -> int:
        return len(self.addresses)

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "success")

    @property
    def fail_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")

    def _touch(self) -> None:
        self.updated_at = time.time()

    def mark_running(self) -> None:
        if self.status is not JobStatus.PENDING:
            raise InvalidTransition(f"job {self.id}: {self.status.value} -> running")
        self.status = JobStatus.RUNNING
        self._touch()

    def record_outcome(
        self,
        index: int,
        status: str,
        error: Optional[str] = None,
        outcome: Optional[str] = None,
        screenshot: Optional[str] = None,
    ) -> None:
        if self.status is not JobStatus.RUNNING:
            raise InvalidTransition(f"job {self.id}: outcome recorded while {self.status.value}")
        entry = self.outcomes[index]
        entry.status = status
        entry.error = error
        entry.outcome = outcome
        entry.screenshot = screenshot
        self._touch()

    def finish(self, status: JobStatus, error: Optional[str] = None) -> None:
        """Move to a terminal status exactly once.

        Addresses never attempted are counted as failed so the totals add up.
        """
        status = JobStatus(status)
        if not status.terminal:
            raise InvalidTransition(f"job {self.id}: {status.value} is not terminal")
        if self.status.terminal:
            raise InvalidTransition(f"job {self.id}: already {self.status.value}")
        for entry in self.outcomes:
            if entry.status == "pending":
                entry.status = "failed"
                entry.error = entry.error or (f"Not attempted: {error}" if error else "Not attempted")
        self.status = status
        self.error = error
        self._touch()

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["total_count"] = self.total_count
        data["success_count"] = self.success_count
        data["fail_count"] = self.fail_count
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "InviteJob":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["status"] = JobStatus(kwargs.get("status", JobStatus.PENDING))
        kwargs["outcomes"] = [AddressOutcome(**o) for o in kwargs.get("outcomes") or []]
        return cls(**kwargs)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


class JsonRecordStore:
    """Accounts and invite jobs persisted as one JSON document."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: Dict[str, Dict[str, dict]] = {"accounts": {}, "jobs": {}}
        if self.path.exists():
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            self._data["accounts"] = dict(raw.get("accounts") or {})
            self._data["jobs"] = dict(raw.get("jobs") or {})

    def _flush(self) -> None:
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)

    # --- Accounts --------------------------------------------------------
    def add_account(
        self,
        email: str,
        credential: str,
        name: str = "",
        session_cookies: Optional[List[dict]] = None,
    ) -> Account:
        account = Account(
            id=_new_id(),
            email=email,
            credential=credential,
            name=name or email,
            session_cookies=session_cookies,
        )
        with self._lock:
            self._data["accounts"][account.id] = account.to_dict()
            self._flush()
        return account

    def get_account(self, account_id: str) -> Account:
        with self._lock:
            data = self._data["accounts"].get(account_id)
        if data is None:
            raise NotFound(f"account {account_id}")
        return Account.from_dict(data)

    def list_accounts(self) -> List[Account]:
        with self._lock:
            rows = list(self._data["accounts"].values())
        return [Account.from_dict(r) for r in rows]

    def update_account(self, account_id: str, **changes) -> Account:
        with self._lock:
            data = self._data["accounts"].get(account_id)
            if data is None:
                raise NotFound(f"account {account_id}")
            account = Account.from_dict({**data, **changes})
            self._data["accounts"][account_id] = account.to_dict()
            self._flush()
        return account

    def delete_account(self, account_id: str) -> None:
        with self._lock:
            if self._data["accounts"].pop(account_id, None) is None:
                raise NotFound(f"account {account_id}")
            self._flush()

    # --- Jobs ------------------------------------------------------------
    def create_job(self, account_id: str, addresses: List[str], role: str = "member") -> InviteJob:
        job = InviteJob(id=_new_id(), account_id=account_id, addresses=list(addresses), role=role)
        with self._lock:
            if account_id not in self._data["accounts"]:
                raise NotFound(f"account {account_id}")
            self._data["jobs"][job.id] = job.to_dict()
            self._flush()
        return job

    def get_job(self, job_id: str) -> InviteJob:
        with self._lock:
            data = self._data["jobs"].get(job_id)
        if data is None:
            raise NotFound(f"job {job_id}")
        return InviteJob.from_dict(data)

    def save_job(self, job: InviteJob) -> InviteJob:
        with self._lock:
            current = self._data["jobs"].get(job.id)
            if current is None:
                raise NotFound(f"job {job.id}")
            # Never let a stale copy move a finished job backwards.
            if JobStatus(current["status"]).terminal and not job.status.terminal:
                raise InvalidTransition(f"job {job.id}: {current['status']} -> {job.status.value}")
            self._data["jobs"][job.id] = job.to_dict()
            self._flush()
        return job

    def list_jobs(self, account_id: Optional[str] = None) -> List[InviteJob]:
        with self._lock:
            rows = list(self._data["jobs"].values())
        jobs = [InviteJob.from_dict(r) for r in rows]
        if account_id is not None:
            jobs = [j for j in jobs if j.account_id == account_id]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)
