"""Command-line entry point: manage accounts and run invite jobs from a shell."""

import argparse
import asyncio
import getpass
import inspect
import json
import sys
from pathlib import Path
from typing import List, Optional

from . import config
from .browser_pool import BrowserPool
from .common_logging import err, info, ok, set_log_file, warn
from .credentials import FernetCipher
from .errors import AutomationError, InvalidTransition, NoEligibleAccount, NotFound
from .messages import error_message
from .records import JsonRecordStore
from .service import AccountService

_cipher: Optional[FernetCipher] = None


def _get_cipher() -> FernetCipher:
    global _cipher
    if _cipher is None:
        _cipher = FernetCipher(config.SECRET_KEY)
    return _cipher


def _decrypt(ciphertext: str) -> str:
    return _get_cipher().decrypt(ciphertext)


def _dump(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str), flush=True)


def _read_addresses(args) -> List[str]:
    addresses = list(args.emails or [])
    if args.file:
        for line in Path(args.file).read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                addresses.extend(part.strip() for part in line.split(",") if part.strip())
    return addresses


def _resolve_headless(args) -> bool:
    if args.headless:
        return True
    if args.interactive:
        return False
    return config.HEADLESS


def _build_service(args) -> AccountService:
    store = JsonRecordStore(args.store)
    pool = BrowserPool(
        max_browsers=args.max_browsers,
        headless=_resolve_headless(args),
        slow_mo=config.SLOW_MO,
    )
    return AccountService(
        store,
        pool,
        _decrypt,
        interactive=args.interactive or config.INTERACTIVE,
        locale=args.locale,
    )


# =======================
# Commands
# =======================
def cmd_add_account(service: AccountService, args) -> int:
    password = args.password or getpass.getpass(f"Password for {args.email}: ")
    cookies = None
    if args.cookies:
        cookies = json.loads(Path(args.cookies).read_text(encoding="utf-8"))
        if not isinstance(cookies, list):
            err("Cookie file must contain a JSON list")
            return 1
    account = service.store.add_account(
        args.email,
        _get_cipher().encrypt(password),
        name=args.name or "",
        session_cookies=cookies,
    )
    if args.delay_ms is not None:
        account = service.store.update_account(account.id, invite_delay_ms=args.delay_ms)
    ok(f"Added account {account.email} (id: {account.id})")
    return 0


def cmd_list_accounts(service: AccountService, args) -> int:
    rows = []
    for a in service.store.list_accounts():
        rows.append({
            "id": a.id,
            "email": a.email,
            "name": a.name,
            "status": a.status.value,
            "member_count": a.member_count,
            "login_initialized": service.is_login_initialized(a),
            "last_error": a.last_error,
        })
    _dump(rows)
    return 0


def cmd_delete_account(service: AccountService, args) -> int:
    service.delete_account(args.account_id)
    ok(f"Deleted account {args.account_id}")
    return 0


def cmd_stats(service: AccountService, args) -> int:
    _dump(service.account_stats(args.account_id))
    return 0


def cmd_job(service: AccountService, args) -> int:
    _dump(service.store.get_job(args.job_id).to_dict())
    return 0


async def cmd_init_login(service: AccountService, args) -> int:
    result = await service.initialize_login(args.account_id)
    _dump(result.to_dict())
    return 0 if result.success else 1


async def cmd_check_login(service: AccountService, args) -> int:
    result = await service.check_login(args.account_id)
    _dump(result.to_dict())
    return 0 if result.success and result.logged_in else 1


async def cmd_verify(service: AccountService, args) -> int:
    result = await service.verify_credentials(args.account_id)
    _dump(result.to_dict())
    return 0 if result.success else 1


async def cmd_sync(service: AccountService, args) -> int:
    result = await service.sync_members(args.account_id)
    _dump(result.to_dict())
    return 0 if result.success else 1


async def cmd_invite(service: AccountService, args) -> int:
    job = service.create_invite_job(args.account_id, _read_addresses(args), role=args.role)
    info(f"Job {job.id}: inviting {job.total_count} address(es)")
    service.schedule_invite_job(job.id)
    await service.runner.wait_all()
    job = service.store.get_job(job.id)
    _dump(job.to_dict())
    return 0 if job.status.value == "completed" else 1


async def cmd_auto_invite(service: AccountService, args) -> int:
    result = await service.auto_invite(_read_addresses(args), role=args.role)
    info(f"Selected account {result.account.email}, job {result.job.id}")
    await service.runner.wait_all()
    job = service.store.get_job(result.job.id)
    out = result.to_dict()
    out["job"] = job.to_dict()
    _dump(out)
    return 0 if job.status.value == "completed" else 1


COMMANDS = {
    "add-account": cmd_add_account,
    "list-accounts": cmd_list_accounts,
    "delete-account": cmd_delete_account,
    "stats": cmd_stats,
    "job": cmd_job,
    "init-login": cmd_init_login,
    "check-login": cmd_check_login,
    "verify": cmd_verify,
    "sync": cmd_sync,
    "invite": cmd_invite,
    "auto-invite": cmd_auto_invite,
}


def _parse_cli_args(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        prog="teamseat",
        description="Manage team-console accounts and invite members through a browser.",
    )
    parser.add_argument(
        "--store",
        default=config.DATA_FILE,
        help=f"Path to the JSON record store (default: {config.DATA_FILE}).",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run browsers headless (overrides TEAMSEAT_HEADLESS).",
    )
    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Show the browser and allow the manual login fallback.",
    )
    parser.add_argument(
        "--max-browsers",
        dest="max_browsers",
        type=int,
        default=config.MAX_BROWSERS,
        metavar="N",
        help=f"Maximum pooled browser processes (default: {config.MAX_BROWSERS}).",
    )
    parser.add_argument(
        "--log-file",
        dest="log_file",
        help="Path to JSONL log file for structured events.",
    )
    parser.add_argument(
        "--locale",
        default=config.LOCALE,
        choices=["en", "zh"],
        help="Language of operator messages.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add-account", help="Store a new account with an encrypted password.")
    p.add_argument("email")
    p.add_argument("--password", help="Account password (prompted when omitted).")
    p.add_argument("--name", help="Display name.")
    p.add_argument("--cookies", help="JSON file with an exported cookie list.")
    p.add_argument("--delay-ms", dest="delay_ms", type=int, help="Delay between invites for this account.")

    sub.add_parser("list-accounts", help="Print all stored accounts.")

    for name, text in (
        ("delete-account", "Delete an account and its browser profile."),
        ("stats", "Print invite statistics for an account."),
        ("init-login", "Log in once inside the account's persistent browser profile."),
        ("check-login", "Check whether the stored session is still logged in."),
        ("verify", "Verify credentials by logging in and selecting the workspace."),
        ("sync", "Read the member count from the members page."),
    ):
        p = sub.add_parser(name, help=text)
        p.add_argument("account_id")

    for name, text in (
        ("invite", "Invite addresses through one account and wait for the job."),
        ("auto-invite", "Pick the oldest account with a free seat and invite through it."),
    ):
        p = sub.add_parser(name, help=text)
        if name == "invite":
            p.add_argument("account_id")
        p.add_argument("emails", nargs="*", help="Addresses to invite.")
        p.add_argument("--file", help="Text file with addresses (one per line or comma separated).")
        p.add_argument("--role", default="member", choices=["member", "admin"])

    p = sub.add_parser("job", help="Print a job record.")
    p.add_argument("job_id")

    return parser.parse_args(argv)


async def _run(args) -> int:
    service = _build_service(args)
    handler = COMMANDS[args.command]
    try:
        if inspect.iscoroutinefunction(handler):
            return await handler(service, args)
        return handler(service, args)
    finally:
        await service.pool.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_cli_args(argv)
    if args.log_file:
        set_log_file(args.log_file)
    try:
        return asyncio.run(_run(args))
    except (NotFound, NoEligibleAccount, InvalidTransition, AutomationError) as e:
        err(error_message(e, args.locale))
        return 1
    except ValueError as e:
        err(str(e))
        return 2
    except KeyboardInterrupt:
        warn("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
