"""Tests for auto-invite account selection."""

import pytest

from teamseat.account_selector import rank_accounts, select_account
from teamseat.errors import NoEligibleAccount
from teamseat.records import Account, AccountStatus


def _account(id, created_at, member_count, status=AccountStatus.ACTIVE, cookies=True, profile=False):
    return Account(
        id=id,
        email=f"{id}@acme.io",
        status=status,
        member_count=member_count,
        created_at=created_at,
        session_cookies=[{"name": "sid", "value": "x"}] if cookies else None,
        profile_initialized=profile,
    )


class TestSelectAccount:
    def test_oldest_first_even_with_more_members(self):
        older = _account("t1", created_at=100.0, member_count=4)
        newer = _account("t2", created_at=200.0, member_count=1)
        assert select_account([newer, older], member_limit=5).id == "t1"

    def test_member_count_breaks_ties(self):
        a = _account("a", created_at=100.0, member_count=3)
        b = _account("b", created_at=100.0, member_count=1)
        assert select_account([a, b], member_limit=5).id == "b"

    def test_excludes_accounts_at_or_over_limit(self):
        full = _account("full", created_at=1.0, member_count=5)
        over = _account("over", created_at=2.0, member_count=7)
        free = _account("free", created_at=3.0, member_count=2)
        assert select_account([full, over, free], member_limit=5).id == "free"

    def test_excludes_inactive_and_error(self):
        accounts = [
            _account("inactive", 1.0, 0, status=AccountStatus.INACTIVE),
            _account("error", 2.0, 0, status=AccountStatus.ERROR),
            _account("ok", 3.0, 0),
        ]
        assert select_account(accounts, member_limit=5).id == "ok"

    def test_excludes_accounts_without_profile_or_cookies(self):
        bare = _account("bare", created_at=1.0, member_count=0, cookies=False)
        profiled = _account("profiled", created_at=2.0, member_count=0, cookies=False, profile=True)
        assert select_account([bare, profiled], member_limit=5).id == "profiled"

    def test_custom_login_ready_check(self):
        a = _account("a", 1.0, 0, cookies=False)
        b = _account("b", 2.0, 0, cookies=False)
        chosen = select_account([a, b], member_limit=5, is_login_ready=lambda acc: acc.id == "b")
        assert chosen.id == "b"

    def test_no_candidate_raises(self):
        with pytest.raises(NoEligibleAccount):
            select_account([_account("full", 1.0, 5)], member_limit=5)
        with pytest.raises(NoEligibleAccount):
            select_account([], member_limit=5)


def test_rank_accounts_ignores_login_state():
    bare = _account("bare", created_at=1.0, member_count=0, cookies=False)
    assert [a.id for a in rank_accounts([bare], member_limit=5)] == ["bare"]
