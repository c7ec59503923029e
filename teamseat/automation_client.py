"""Drive the team-admin console through one Playwright page.

Login, session check, workspace selection, roster reads and single-member
invites are bounded polling loops over the live DOM. Page scripts only
gather plain data (text, tagged element descriptors); the decisions are
made by the rule tables in ``dom_rules``. Every failure that propagates
carries a debug screenshot path when one could be taken.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence
from urllib.parse import urljoin

from playwright.async_api import Error as PWError
from playwright.async_api import Page, Response
from playwright.async_api import TimeoutError as PWTimeout

from . import config
from .browser_pool import BrowserLease, BrowserPool
from .common_logging import err, info, log_event, ok, warn
from .dom_rules import (
    CONTINUE_LABELS,
    EMAIL_INPUT_SELECTORS,
    LOGIN_SUBMIT_LABELS,
    NEXT_LABELS,
    PENDING_TAB_LABELS,
    RESEND_LABELS,
    ROLE_ADMIN_SELECTORS,
    SEND_LABELS,
    SEND_STILL_ENABLED_LABELS,
    ElementInfo,
    InviteOutcome,
    PageSnapshot,
    SessionState,
    choose_invite_affordance,
    classify_session,
    extract_member_emails,
    is_confirmation_text,
    is_invite_response,
    is_same_host_post,
    is_workspace_dialog_text,
    parse_member_count_hint,
    pick_labeled_button,
    resolve_invite_outcome,
    workspace_options,
)
from .errors import (
    AutomationError,
    EmailInputNotFound,
    InviteButtonNotFound,
    InviteRequestFailed,
    InviteUnconfirmed,
    LoginFailed,
    NoWorkspaceOption,
    SubmitButtonNotFound,
    WorkspaceSelectionFailed,
    WrongPage,
)
from .messages import get_message
from .records import MemberSnapshot

# =======================
# Selectors
# =======================
DIALOG = "[role='dialog']"
LOGIN_EMAIL_INPUT = "input[type='email'], input[name='email']"
LOGIN_PASSWORD_INPUT = "input[type='password'], input[name='password']"
LOGIN_SUBMIT_BTN = "button[type='submit']"
DIALOG_BUTTONS = "button, [role='button'], [role='tab'], a"
WORKSPACE_CANDIDATES = "button, [role='button'], [role='option'], [role='menuitem'], li, a"
SEND_BUTTONS = "button, [role='button']"

# Attributes used to tag elements between gathering and clicking
BUTTON_TAG = "data-teamseat-btn"
WORKSPACE_TAG = "data-teamseat-ws"
INVITE_TAG = "data-teamseat-invite"

# =======================
# Page scripts
# =======================
SESSION_PROBE_JS = """
() => {
    const visible = (el) => {
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        return rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden' && style.display !== 'none';
    };
    const txt = (el) => (el.textContent || '').trim();
    const inputs = Array.from(document.querySelectorAll(
        "input[type='email'], input[name='email'], input[autocomplete='username']"
    ));
    return {
        url: window.location.href,
        hasUsernameInput: inputs.some(visible),
        headings: Array.from(document.querySelectorAll('h1, h2, h3, h4')).map(txt).filter(Boolean).slice(0, 50),
        affordances: Array.from(document.querySelectorAll('a, button'))
            .filter(visible).map(txt).filter(Boolean).slice(0, 300),
    };
}
"""

DIALOG_TEXT_JS = """
() => {
    const dialog = document.querySelector("[role='dialog']");
    return dialog ? (dialog.textContent || '') : null;
}
"""

DIALOG_PRESENT_JS = "() => !!document.querySelector(\"[role='dialog']\")"
DIALOG_ABSENT_JS = "() => !document.querySelector(\"[role='dialog']\")"

BODY_TEXT_JS = "() => (document.querySelector('main')?.innerText || document.body.innerText || '')"

TAG_CANDIDATES_JS = """
({rootSel, sel, attr, fallback}) => {
    let root = document;
    if (rootSel) {
        root = document.querySelector(rootSel) || (fallback ? document : null);
    }
    if (!root) return null;
    document.querySelectorAll('[' + attr + ']').forEach(el => el.removeAttribute(attr));
    return Array.from(root.querySelectorAll(sel)).map((el, i) => {
        el.setAttribute(attr, String(i));
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        const visible = rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden'
            && style.display !== 'none' && style.pointerEvents !== 'none';
        const disabled = !!el.disabled || el.getAttribute('aria-disabled') === 'true';
        return {index: i, text: (el.textContent || '').replace(/\\s+/g, ' ').trim().slice(0, 300), visible, disabled};
    });
}
"""

# Tags three element groups for the invite-button cascade: plain clickables,
# flex layout containers and icon-bearing divs (with their clickable ancestor).
INVITE_CANDIDATES_JS = """
(attr) => {
    document.querySelectorAll('[' + attr + ']').forEach(el => el.removeAttribute(attr));
    let n = 0;
    const tag = (el) => {
        if (!el.hasAttribute(attr)) el.setAttribute(attr, String(n++));
        return Number(el.getAttribute(attr));
    };
    const describe = (el, group) => {
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        return {
            index: tag(el),
            group,
            text: (el.textContent || '').replace(/\\s+/g, ' ').trim().slice(0, 500),
            visible: rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden' && style.display !== 'none',
            disabled: !!el.disabled || el.getAttribute('aria-disabled') === 'true',
            hasIcon: el.querySelector('svg') !== null,
        };
    };
    const out = [];
    document.querySelectorAll("button, div[role='button'], a, div[class*='cursor-pointer']")
        .forEach(el => out.push(describe(el, 'clickable')));
    document.querySelectorAll('div.flex').forEach(el => out.push(describe(el, 'layout')));
    document.querySelectorAll('div').forEach(el => {
        if (!el.querySelector('svg')) return;
        const d = describe(el, 'icon');
        let parent = el.parentElement;
        while (parent) {
            if (parent.tagName === 'BUTTON' || parent.getAttribute('role') === 'button') {
                d.ancestorIndex = tag(parent);
                break;
            }
            parent = parent.parentElement;
        }
        out.push(d);
    });
    return out;
}
"""

EMAIL_INPUT_VISIBLE_JS = """
() => {
    const input = document.querySelector(
        "input[type='email'], input[name='email'], input[placeholder*='email' i], input[placeholder*='邮箱' i]"
    );
    if (!input) return false;
    const style = window.getComputedStyle(input);
    return style && style.visibility !== 'hidden' && style.display !== 'none';
}
"""

DIALOG_CLOSE_BUTTON_JS = """
() => {
    const dialog = document.querySelector("[role='dialog']");
    if (!dialog) return false;
    const close = dialog.querySelector("button[aria-label*='close' i]")
        || dialog.querySelector("[role='button'][aria-label*='close' i]");
    if (close) { close.click(); return true; }
    return false;
}
"""

LOGIN_HINT_JS = """
({id, text}) => {
    const existing = document.getElementById(id);
    if (existing) existing.remove();
    const hint = document.createElement('div');
    hint.id = id;
    Object.assign(hint.style, {
        position: 'fixed', top: '12px', left: '12px', right: '12px', zIndex: '2147483647',
        background: '#fff8e1', color: '#1f2937', border: '1px solid #f59e0b', borderRadius: '8px',
        padding: '12px 16px', fontSize: '14px', fontFamily: 'system-ui, -apple-system, Segoe UI, sans-serif',
    });
    hint.textContent = text;
    document.body.appendChild(hint);
}
"""


@dataclass
class InviteResult:
    email: str
    outcome: InviteOutcome
    status: Optional[int] = None
    url: Optional[str] = None
    screenshot: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.outcome is InviteOutcome.CONFIRMED


class AutomationClient:
    """One page on the target console, pooled or backed by a persistent profile."""

    def __init__(
        self,
        pool: BrowserPool,
        profile_dir: Optional[str] = None,
        headless: Optional[bool] = None,
        base_url: str = config.BASE_URL,
        target_host: str = config.TARGET_HOST,
        screenshot_dir: str = config.SCREENSHOT_DIR,
        default_timeout_ms: int = config.DEFAULT_TIMEOUT_MS,
        nav_timeout_ms: int = config.NAV_TIMEOUT_MS,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.pool = pool
        self.profile_dir = profile_dir
        self.headless = pool.headless if headless is None else headless
        self.base_url = base_url
        self.login_url = urljoin(base_url, "auth/login")
        self.target_host = target_host
        self.screenshot_dir = screenshot_dir
        self.default_timeout_ms = default_timeout_ms
        self.nav_timeout_ms = nav_timeout_ms
        self._sleep = sleep
        self._page: Optional[Page] = None
        self._lease: Optional[BrowserLease] = None
        self._context = None
        self.last_screenshot: Optional[str] = None

    # --- lifecycle -------------------------------------------------------
    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Client not initialized")
        return self._page

    @property
    def owns_browser(self) -> bool:
        return self._context is not None

    async def initialize(self) -> "AutomationClient":
        if self._page is not None:
            return self
        if self.profile_dir:
            self._context = await self.pool.launch_profile(self.profile_dir, headless=self.headless)
            try:
                pages = self._context.pages
                self._page = pages[0] if pages else await self._context.new_page()
            except Exception:
                context, self._context = self._context, None
                await context.close()
                raise
        else:
            self._lease = await self.pool.acquire()
            try:
                self._page = await self.pool.create_page(self._lease)
            except Exception:
                await self.pool.release(self._lease.lease_id)
                self._lease = None
                raise
        self._page.set_default_timeout(self.default_timeout_ms)
        return self

    async def close(self) -> None:
        page, self._page = self._page, None
        try:
            if page is not None and self._context is None:
                await page.close()
        except PWError as e:
            warn(f"Closing page failed: {str(e)[:140]}")
        finally:
            if self._context is not None:
                context, self._context = self._context, None
                try:
                    await context.close()
                except PWError as e:
                    warn(f"Closing profile browser failed: {str(e)[:140]}")
            elif self._lease is not None:
                lease, self._lease = self._lease, None
                await self.pool.release(lease.lease_id)

    async def __aenter__(self) -> "AutomationClient":
        return await self.initialize()

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # --- small helpers ---------------------------------------------------
    async def _pause(self, ms: int) -> None:
        await self._sleep(ms / 1000)

    async def goto(self, url: str) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=self.nav_timeout_ms)
        try:
            await self.page.wait_for_load_state("networkidle", timeout=self.default_timeout_ms)
        except PWTimeout:
            pass

    async def capture_debug_screenshot(self, prefix: str) -> Optional[str]:
        if self._page is None:
            return None
        try:
            os.makedirs(self.screenshot_dir, exist_ok=True)
            path = os.path.join(self.screenshot_dir, f"{prefix}-{int(time.time() * 1000)}.png")
            await self._page.screenshot(path=path, full_page=True)
        except (PWError, OSError) as e:
            warn(f"Screenshot '{prefix}' failed: {str(e)[:140]}")
            return None
        self.last_screenshot = path
        log_event({"type": "debug_screenshot", "prefix": prefix, "path": path})
        return path

    async def load_cookies(self, cookies: Optional[List[dict]]) -> None:
        if cookies:
            await self.page.context.add_cookies(cookies)

    async def export_cookies(self) -> List[dict]:
        return await self.page.context.cookies()

    async def body_text(self) -> str:
        return await self.page.evaluate(BODY_TEXT_JS) or ""

    async def _tag_candidates(
        self, attr: str, selector: str, root: Optional[str] = None, fallback: bool = True
    ) -> Optional[List[ElementInfo]]:
        raw = await self.page.evaluate(
            TAG_CANDIDATES_JS,
            {"rootSel": root, "sel": selector, "attr": attr, "fallback": fallback},
        )
        if raw is None:
            return None
        return [ElementInfo.from_dict(d) for d in raw]

    async def _click_tagged(self, attr: str, index: int) -> bool:
        loc = self.page.locator(f"[{attr}='{index}']").first
        try:
            await loc.click(delay=30, timeout=3000)
            return True
        except PWError:
            # Overlays and zero-size wrappers: fall back to a DOM click
            try:
                await loc.evaluate("el => el.click()")
                return True
            except PWError:
                return False

    async def click_button_by_text(
        self,
        labels: Sequence[str],
        timeout_ms: int,
        scope: str = "dialog",
        exclude: Sequence[str] = (),
    ) -> bool:
        """Poll for a visible, enabled control matching ``labels`` and click it.

        ``scope='dialog'`` searches the open dialog, or the page when none is open.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        root = DIALOG if scope == "dialog" else None
        while True:
            elements = await self._tag_candidates(BUTTON_TAG, DIALOG_BUTTONS, root=root) or []
            target = pick_labeled_button(elements, labels, exclude=exclude)
            if target is not None and await self._click_tagged(BUTTON_TAG, target.index):
                log_event({"type": "button_clicked", "text": target.text, "scope": scope})
                return True
            if loop.time() >= deadline:
                return False
            await self._sleep(0.25)

    async def _dialog_present(self) -> bool:
        return bool(await self.page.evaluate(DIALOG_PRESENT_JS))

    async def _wait_dialog_closed(self, timeout_ms: int) -> bool:
        try:
            await self.page.wait_for_function(DIALOG_ABSENT_JS, timeout=timeout_ms)
            return True
        except PWTimeout:
            return False

    # --- Session ---------------------------------------------------------
    async def session_state(self) -> SessionState:
        """Classify the current page as logged in or out."""
        try:
            await self.page.wait_for_selector("body", timeout=self.default_timeout_ms)
            raw = await self.page.evaluate(SESSION_PROBE_JS)
        except PWError as e:
            warn(f"Session probe failed, treating as logged out: {str(e)[:140]}")
            return SessionState.LOGGED_OUT
        snap = PageSnapshot(
            url=raw.get("url") or "",
            has_username_input=bool(raw.get("hasUsernameInput")),
            headings=list(raw.get("headings") or []),
            affordances=list(raw.get("affordances") or []),
        )
        state, rule = classify_session(snap)
        log_event({"type": "session_state", "state": state.value, "rule": rule, "url": snap.url})
        return state

    async def is_logged_in(self, navigate: bool = True) -> bool:
        if navigate:
            await self.goto(self.base_url)
        return await self.session_state() is SessionState.LOGGED_IN

    async def _credential_login(self, email: str, password: str) -> None:
        page = self.page
        await self.goto(self.login_url)
        await self._pause(1000)

        try:
            await page.wait_for_selector(LOGIN_EMAIL_INPUT, state="visible", timeout=self.default_timeout_ms)
        except PWTimeout:
            raise LoginFailed("Email input did not appear on the login page") from None
        await page.fill(LOGIN_EMAIL_INPUT, email)
        await self._pause(500)

        # Advance to the password step without taking a "Continue with <provider>" route
        if not await self.click_button_by_text(CONTINUE_LABELS, 3000, scope="page", exclude=("continue with",)):
            await page.keyboard.press("Enter")
        await self._pause(2000)

        try:
            await page.wait_for_selector(LOGIN_PASSWORD_INPUT, state="visible", timeout=self.default_timeout_ms)
        except PWTimeout:
            raise LoginFailed("Password input did not appear after submitting the email") from None
        await page.fill(LOGIN_PASSWORD_INPUT, password)
        await self._pause(500)

        submit = page.locator(LOGIN_SUBMIT_BTN).first
        try:
            await submit.click(timeout=3000)
        except PWError:
            if not await self.click_button_by_text(
                LOGIN_SUBMIT_LABELS, 3000, scope="page", exclude=("continue with",)
            ):
                await page.keyboard.press("Enter")

        try:
            await page.wait_for_load_state("networkidle", timeout=self.nav_timeout_ms)
        except PWTimeout:
            pass
        await self._pause(2000)

    async def _manual_login(self, email: str, timeout_ms: int) -> bool:
        page = self.page
        await self.goto(self.base_url)
        await page.bring_to_front()
        await page.evaluate(
            LOGIN_HINT_JS,
            {"id": "automation-login-hint", "text": get_message("login.manual_hint", email=email)},
        )
        info(f"[login] Waiting for manual login of {email}…")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        while loop.time() < deadline:
            if await self.is_logged_in(navigate=False):
                return True
            await self._pause(config.MANUAL_LOGIN_POLL_MS)
        return False

    async def login(
        self,
        email: str,
        password: str,
        allow_manual: bool = False,
        timeout_ms: int = config.MANUAL_LOGIN_TIMEOUT_MS,
    ) -> None:
        """Log in with credentials, then (visible browsers only) wait for a manual login.

        Raises LoginFailed when neither path reaches a logged-in page.
        """
        reason = "Still logged out after submitting credentials"
        try:
            await self._credential_login(email, password)
            if await self.is_logged_in(navigate=True):
                ok(f"[login] Logged in as {email}")
                log_event({"type": "login", "email": email, "mode": "credentials"})
                return
        except (PWError, LoginFailed) as e:
            reason = str(e)
            warn(f"[login] Automated login failed: {reason[:200]}")

        if allow_manual and not self.headless:
            if await self._manual_login(email, timeout_ms):
                ok(f"[login] Manual login detected for {email}")
                log_event({"type": "login", "email": email, "mode": "manual"})
                return
            reason = f"Manual login not completed within {timeout_ms // 1000}s"

        shot = await self.capture_debug_screenshot("login-failed")
        err(f"[login] {reason}{f' (screenshot: {shot})' if shot else ''}")
        raise LoginFailed(reason, screenshot=shot)

    # --- Workspace selection ---------------------------------------------
    async def workspace_dialog_open(self) -> bool:
        try:
            text = await self.page.evaluate(DIALOG_TEXT_JS)
        except PWError:
            return False
        return text is not None and is_workspace_dialog_text(text)

    async def ensure_workspace_selected(self, max_attempts: int = config.WORKSPACE_MAX_ATTEMPTS) -> bool:
        """Resolve the workspace picker if it is showing.

        Returns True when a workspace was picked, False when no picker appeared.
        """
        picked = False
        for attempt in range(max_attempts):
            if not await self.workspace_dialog_open():
                return picked
            info("Workspace picker detected, choosing the team workspace…")
            candidates = await self._tag_candidates(WORKSPACE_TAG, WORKSPACE_CANDIDATES, root=DIALOG, fallback=False)
            if candidates is None:
                return picked
            options = workspace_options(candidates)
            if not options:
                shot = await self.capture_debug_screenshot("workspace-no-option")
                raise NoWorkspaceOption("No clickable team workspace in the picker", screenshot=shot)

            clicked = None
            for option in options:
                if await self._click_tagged(WORKSPACE_TAG, option.index):
                    clicked = option
                    break
            if clicked is None:
                warn(f"Workspace click failed on attempt {attempt + 1}")
                await self._pause(1000)
                continue
            picked = True
            ok(f"Selected workspace: {clicked.text}")
            log_event({"type": "workspace_selected", "text": clicked.text, "attempt": attempt + 1})

            if await self._wait_dialog_closed(config.DIALOG_CLOSE_TIMEOUT_MS):
                await self._pause(500)
            else:
                await self._pause(1000)

        if await self.workspace_dialog_open():
            shot = await self.capture_debug_screenshot("workspace-select-failed")
            raise WorkspaceSelectionFailed(
                f"Workspace picker still open after {max_attempts} attempts", screenshot=shot
            )
        return picked

    # --- Member roster ---------------------------------------------------
    def on_members_page(self) -> bool:
        return config.MEMBERS_PATH in (self.page.url or "")

    async def navigate_to_members(self, tab: str = "members") -> None:
        url = config.members_url(tab, base_url=self.base_url)
        for attempt in range(config.MEMBERS_NAV_ATTEMPTS):
            try:
                await self.goto(url)
            except PWTimeout:
                warn(f"Members page load timed out (attempt {attempt + 1})")
                continue
            await self._pause(1000)
            await self.ensure_workspace_selected()
            await self._pause(1000)
            if self.on_members_page():
                await self._pause(1000)
                return
        shot = await self.capture_debug_screenshot("members-nav-failed")
        raise WrongPage(f"Could not reach the members page, current URL: {self.page.url}", screenshot=shot)

    async def member_count_hint(self) -> Optional[int]:
        """Member count read from the page, or None when it is not rendered."""
        try:
            await self.page.wait_for_selector("body", timeout=self.default_timeout_ms)
            text = await self.body_text()
        except PWError as e:
            warn(f"Failed to read member count hint: {str(e)[:140]}")
            return None
        return parse_member_count_hint(text)

    async def member_emails(self, exclude: Optional[str] = None) -> List[str]:
        try:
            await self.page.wait_for_selector("main", timeout=15000)
        except PWTimeout:
            pass
        await self._pause(1500)
        return extract_member_emails(await self.body_text(), exclude=exclude)

    async def read_members(self, tab: str = "members", exclude: Optional[str] = None) -> MemberSnapshot:
        await self.navigate_to_members(tab)
        hint = await self.member_count_hint()
        emails = await self.member_emails(exclude=exclude)
        log_event({"type": "members_read", "tab": tab, "count_hint": hint, "emails": len(emails)})
        return MemberSnapshot(emails=emails, count_hint=hint)

    # --- Invite ----------------------------------------------------------
    async def _wait_for_response(
        self, matcher: Callable[[str, str, str, str], bool], timeout_ms: int
    ) -> Optional[Response]:
        def predicate(response: Response) -> bool:
            request = response.request
            return matcher(request.method, request.resource_type, response.url, self.target_host)

        try:
            return await self.page.wait_for_event("response", predicate=predicate, timeout=timeout_ms)
        except PWTimeout:
            return None

    async def _locate_invite_button(self) -> Optional[int]:
        raw = await self.page.evaluate(INVITE_CANDIDATES_JS, INVITE_TAG)
        choice = choose_invite_affordance([ElementInfo.from_dict(d) for d in raw or []])
        if choice is None:
            return None
        strategy, index = choice
        log_event({"type": "invite_button_found", "strategy": strategy})
        return index

    async def _select_admin_role(self) -> None:
        for selector in ROLE_ADMIN_SELECTORS:
            loc = self.page.locator(selector).first
            try:
                await loc.wait_for(state="visible", timeout=2000)
                if selector.startswith("select"):
                    await loc.select_option("admin")
                else:
                    await loc.click()
                info("Selected admin role")
                return
            except PWError:
                continue
        info("No role selector found, keeping the default role")

    async def _send_button_still_enabled(self) -> bool:
        elements = await self._tag_candidates(BUTTON_TAG, SEND_BUTTONS, root=DIALOG, fallback=False)
        return pick_labeled_button(elements or [], SEND_STILL_ENABLED_LABELS) is not None

    async def _dismiss_dialog(self) -> None:
        try:
            await self.page.keyboard.press("Escape")
        except PWError:
            pass
        await self._pause(500)
        if await self.page.evaluate(DIALOG_CLOSE_BUTTON_JS):
            await self._pause(500)
        await self._pause(1500)

    async def _wait_invite_confirmed(self, email: str, timeout_ms: int) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        while True:
            try:
                if not await self._dialog_present() and is_confirmation_text(await self.body_text(), email):
                    return True
            except PWError:
                # page is re-rendering; poll again
                pass
            if loop.time() >= deadline:
                return False
            await self._sleep(0.5)

    async def _fail(self, exc_type, detail: str, prefix: str):
        shot = await self.capture_debug_screenshot(prefix)
        err(f"{detail}{f' (screenshot: {shot})' if shot else ''}")
        return exc_type(detail, screenshot=shot)

    async def invite_member(self, email: str, role: str = "member") -> InviteResult:
        """Invite one address from the members page.

        Returns an InviteResult whose outcome says whether the UI confirmed
        the invite or only the network response did. Raises an
        AutomationError subclass on every other path.
        """
        page = self.page
        info(f"Inviting member: {email}")
        await self._pause(2000)

        # 1) Must be on the members surface
        if not self.on_members_page():
            try:
                await self.navigate_to_members("members")
            except AutomationError as e:
                raise WrongPage(f"Recovery navigation failed: {e.detail}", screenshot=e.screenshot) from e
            if not self.on_members_page():
                raise await self._fail(WrongPage, f"Not on the members page, current URL: {page.url}", "invite-wrong-page")
            info("Recovered to the members page, continuing")

        # 2) Invite button
        index = await self._locate_invite_button()
        if index is None or not await self._click_tagged(INVITE_TAG, index):
            raise await self._fail(InviteButtonNotFound, "Invite button not found", "invite-error")
        await self._pause(2000)

        # 3) Dialog email input
        try:
            await page.wait_for_function(EMAIL_INPUT_VISIBLE_JS, timeout=5000)
        except PWTimeout:
            raise await self._fail(EmailInputNotFound, "Invite dialog email input not visible", "invite-no-input") from None

        # 4) Address
        entered = False
        for selector in EMAIL_INPUT_SELECTORS:
            loc = page.locator(selector).first
            try:
                await loc.wait_for(state="visible", timeout=3000)
                await loc.click()
                await loc.type(email, delay=60)
            except PWError:
                continue
            entered = True
            log_event({"type": "invite_email_entered", "selector": selector})
            break
        if not entered:
            raise await self._fail(EmailInputNotFound, "No email input accepted the address", "invite-no-input")
        await self._pause(500)
        await page.keyboard.press("Enter")
        await self._pause(500)

        # 5) Role (best effort)
        if role == "admin":
            await self._select_admin_role()

        # 6) Optional Next step
        if await self.click_button_by_text(NEXT_LABELS, 3000):
            info("Clicked Next")
            await self._pause(1500)

        # 7) Listen for the invite request while clicking Send
        response_task = asyncio.ensure_future(
            self._wait_for_response(is_invite_response, config.INVITE_RESPONSE_TIMEOUT_MS)
        )
        await asyncio.sleep(0)
        try:
            submitted = await self.click_button_by_text(SEND_LABELS, 5000)
            if not submitted:
                raise await self._fail(
                    SubmitButtonNotFound, "Send button not found in the invite dialog", "invite-no-submit"
                )
            await self._pause(300)
            if await self._send_button_still_enabled():
                info("Send button still enabled, clicking again")
                await self.click_button_by_text(RESEND_LABELS, 2000)

            # 8) Network evidence
            response = await response_task
        finally:
            if not response_task.done():
                response_task.cancel()
        if response is None:
            response = await self._wait_for_response(is_same_host_post, config.FALLBACK_RESPONSE_TIMEOUT_MS)
        status: Optional[int] = None
        url: Optional[str] = None
        if response is not None:
            status, url = response.status, response.url
            info(f"Invite POST response: {status} {url}")
            if status >= 400:
                try:
                    body = await response.text()
                except PWError:
                    body = ""
                shot = await self.capture_debug_screenshot("invite-request-failed")
                failure = InviteRequestFailed(status, url, body, screenshot=shot)
                err(str(failure))
                raise failure
        else:
            warn("No invite POST response captured")
        log_event({"type": "invite_response", "email": email, "status": status, "url": url})
        await self._pause(2000)

        if not await self._wait_dialog_closed(5000):
            await self._dismiss_dialog()
        if await self.click_button_by_text(PENDING_TAB_LABELS, 3000, scope="page"):
            await self._pause(1500)

        # 9) UI evidence, with one reload when only the network confirmed it
        ui_confirmed = await self._wait_invite_confirmed(email, config.INVITE_CONFIRM_TIMEOUT_MS)
        after_reload = False
        if not ui_confirmed and status is not None:
            info("Invite response was successful, reloading to confirm…")
            try:
                await self.navigate_to_members("members")
                await self._pause(2000)
                await self.click_button_by_text(PENDING_TAB_LABELS, 3000, scope="page")
                await self._pause(2000)
                after_reload = email.lower() in (await self.body_text()).lower()
            except (AutomationError, PWError) as e:
                warn(f"Reload check failed: {str(e)[:200]}")

        # 10) Outcome
        shot = None
        if not (ui_confirmed or after_reload):
            shot = await self.capture_debug_screenshot("invite-unconfirmed")
        try:
            result_outcome = resolve_invite_outcome(status, ui_confirmed, after_reload, screenshot=shot)
        except InviteUnconfirmed as e:
            err(f"Invite for {email} unconfirmed: {e}")
            raise
        if result_outcome is InviteOutcome.ACCEPTED_UNCONFIRMED:
            warn(get_message("invite.unconfirmed_caveat", email=email))
        else:
            ok(f"Invited member: {email}")
        return InviteResult(email=email, outcome=result_outcome, status=status, url=url, screenshot=shot)
