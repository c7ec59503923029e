"""Pick which account receives an automatic invite."""

from typing import Callable, Iterable, List, Optional

from .common_logging import info
from .errors import NoEligibleAccount
from .records import Account, AccountStatus


def rank_accounts(accounts: Iterable[Account], member_limit: int) -> List[Account]:
    """Active accounts with a free seat, oldest first, then least full."""
    eligible = [
        a for a in accounts
        if a.status is AccountStatus.ACTIVE and a.member_count < member_limit
    ]
    return sorted(eligible, key=lambda a: (a.created_at, a.member_count))


def select_account(
    accounts: Iterable[Account],
    member_limit: int,
    is_login_ready: Optional[Callable[[Account], bool]] = None,
) -> Account:
    ready = is_login_ready or (lambda a: a.login_ready)
    for account in rank_accounts(accounts, member_limit):
        if ready(account):
            info(f"Selected account {account.email} ({account.member_count}/{member_limit})")
            return account
    raise NoEligibleAccount()
