"""Declarative rule tables and pure classifiers for the target UI.

The automation client gathers plain snapshots of the page (text, element
descriptors, response metadata) and hands them to the functions here, so
every decision about what the UI is showing can be exercised without a
browser. New UI copy goes into the tables, not into control flow.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from .errors import InviteUnconfirmed


# =======================
# Session
# =======================
class SessionState(str, Enum):
    UNKNOWN = "unknown"
    LOGGED_OUT = "logged_out"
    LOGGED_IN = "logged_in"


@dataclass
class PageSnapshot:
    url: str = ""
    has_username_input: bool = False
    headings: List[str] = field(default_factory=list)
    affordances: List[str] = field(default_factory=list)


LOGIN_PATH_MARKERS = ("/auth/login", "/login", "/auth")
LOGIN_HEADINGS = ("log in or sign up",)
LOGIN_AFFORDANCES = (
    "continue with google",
    "continue with apple",
    "continue with microsoft",
    "continue with phone",
    "log in",
    "sign in",
)


def _url_is_login(snap: PageSnapshot) -> bool:
    url = (snap.url or "").lower()
    return any(marker in url for marker in LOGIN_PATH_MARKERS)


def _has_login_heading(snap: PageSnapshot) -> bool:
    return any(h in (text or "").strip().lower() for text in snap.headings for h in LOGIN_HEADINGS)


def _has_login_affordance(snap: PageSnapshot) -> bool:
    return any(a in (text or "").strip().lower() for text in snap.affordances for a in LOGIN_AFFORDANCES)


# First matching rule classifies the page as logged out.
SESSION_RULES: List[Tuple[str, Callable[[PageSnapshot], bool]]] = [
    ("login_url", _url_is_login),
    ("username_input", lambda snap: bool(snap.has_username_input)),
    ("login_heading", _has_login_heading),
    ("login_affordance", _has_login_affordance),
]


def classify_session(snap: PageSnapshot) -> Tuple[SessionState, Optional[str]]:
    """Return the session state and the name of the rule that decided it."""
    for name, predicate in SESSION_RULES:
        if predicate(snap):
            return SessionState.LOGGED_OUT, name
    return SessionState.LOGGED_IN, None


# =======================
# Element descriptors
# =======================
@dataclass
class ElementInfo:
    """Plain description of a DOM element tagged by the page scripts."""

    index: int
    text: str = ""
    group: str = "clickable"
    visible: bool = True
    disabled: bool = False
    has_icon: bool = False
    ancestor_index: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ElementInfo":
        return cls(
            index=int(data.get("index", -1)),
            text=re.sub(r"\s+", " ", str(data.get("text") or "")).strip(),
            group=str(data.get("group") or "clickable"),
            visible=bool(data.get("visible", True)),
            disabled=bool(data.get("disabled", False)),
            has_icon=bool(data.get("hasIcon", data.get("has_icon", False))),
            ancestor_index=data.get("ancestorIndex", data.get("ancestor_index")),
        )

    @property
    def usable(self) -> bool:
        return self.visible and not self.disabled


def match_button_label(text: str, labels: Iterable[str]) -> bool:
    t = (text or "").strip().lower()
    if not t:
        return False
    for label in labels:
        lab = label.lower()
        if t == lab or lab in t:
            return True
    return False


def pick_labeled_button(
    elements: Sequence[ElementInfo],
    labels: Sequence[str],
    exclude: Sequence[str] = (),
) -> Optional[ElementInfo]:
    """First visible, enabled element whose text matches one of ``labels``."""
    for el in elements:
        if not el.usable or not match_button_label(el.text, labels):
            continue
        if exclude and any(x.lower() in el.text.lower() for x in exclude):
            continue
        return el
    return None


# =======================
# Workspace selection
# =======================
def _mentions_select_workspace(text: str) -> bool:
    return "select a workspace" in text or ("workspace" in text and "select" in text)


def _mentions_select_workspace_zh(text: str) -> bool:
    return "工作空间" in text and ("选择" in text or "选取" in text)


WORKSPACE_DIALOG_RULES: List[Callable[[str], bool]] = [
    _mentions_select_workspace,
    _mentions_select_workspace_zh,
]

PERSONAL_WORKSPACE_MARKERS = ("personal account", "个人")
PERSONAL_WORKSPACE_EXACT = ("personal",)


def is_workspace_dialog_text(text: str) -> bool:
    lower = (text or "").lower()
    return any(rule(lower) for rule in WORKSPACE_DIALOG_RULES)


def is_personal_workspace(text: str) -> bool:
    lower = (text or "").strip().lower()
    return lower in PERSONAL_WORKSPACE_EXACT or any(m in lower for m in PERSONAL_WORKSPACE_MARKERS)


def workspace_options(candidates: Sequence[ElementInfo]) -> List[ElementInfo]:
    """Clickable team workspace entries in dialog order, personal ones removed."""
    return [
        el for el in candidates
        if el.usable and el.text and not is_personal_workspace(el.text)
    ]


def pick_workspace_option(candidates: Sequence[ElementInfo]) -> Optional[ElementInfo]:
    """Choose the team workspace entry, never the personal one."""
    options = workspace_options(candidates)
    return options[0] if options else None


# =======================
# Member roster
# =======================
TIERED_COUNT_RE = re.compile(r"[^\W\d_].*?\s*[-–—]\s*(\d+)\s+members?\b", re.IGNORECASE)
BARE_COUNT_RE = re.compile(r"(\d+)\s+members?\b", re.IGNORECASE)
EMAIL_RE = re.compile(r"[\w.+-]+@[\w.-]+\.\w+")
EMAIL_NOISE_MARKERS = ("noreply", "no-reply", "support", "example.com", "example.org", "example.net")


def parse_member_count_hint(text: str) -> Optional[int]:
    """Member count shown by the UI, or None when no count line is rendered.

    None means the read failed; it is never a stand-in for zero.
    """
    lines = [ln.strip() for ln in (text or "").split("\n") if ln.strip()]
    for pattern in (TIERED_COUNT_RE, BARE_COUNT_RE):
        for line in lines:
            m = pattern.search(line)
            if m:
                return int(m.group(1))
    return None


def is_noise_email(address: str) -> bool:
    lower = address.lower()
    return any(marker in lower for marker in EMAIL_NOISE_MARKERS)


def extract_member_emails(text: str, exclude: Optional[str] = None) -> List[str]:
    """Email addresses in ``text`` minus noise, deduplicated case-insensitively.

    The first spelling seen is kept and document order is preserved.
    """
    skip = (exclude or "").strip().lower()
    seen = set()
    out: List[str] = []
    for address in EMAIL_RE.findall(text or ""):
        key = address.lower()
        if key in seen or is_noise_email(address):
            continue
        seen.add(key)
        if skip and key == skip:
            continue
        out.append(address)
    return out


# =======================
# Invite affordance cascade
# =======================
INVITE_BUTTON_LABELS = ("邀请成员", "Invite member", "Invite")
INVITE_LAYOUT_LABELS = ("邀请", "Invite")
INVITE_ICON_LABELS = ("邀请成员", "Invite")


class InviteStrategy(NamedTuple):
    name: str
    predicate: Callable[[ElementInfo], bool]
    target: Callable[[ElementInfo], int]


def _contains_any(text: str, labels: Iterable[str]) -> bool:
    return any(label in text for label in labels)


def _own_index(el: ElementInfo) -> int:
    return el.index


def _clickable_ancestor(el: ElementInfo) -> int:
    return el.ancestor_index if el.ancestor_index is not None else el.index


# Evaluated in order; the first strategy with a matching element wins.
INVITE_AFFORDANCE_CASCADE: List[InviteStrategy] = [
    InviteStrategy(
        "clickable_text",
        lambda el: el.group == "clickable" and _contains_any(el.text, INVITE_BUTTON_LABELS),
        _own_index,
    ),
    InviteStrategy(
        "layout_text",
        lambda el: el.group == "layout" and _contains_any(el.text, INVITE_LAYOUT_LABELS),
        _own_index,
    ),
    InviteStrategy(
        "icon_ancestor",
        lambda el: el.group == "icon" and el.has_icon and _contains_any(el.text, INVITE_ICON_LABELS),
        _clickable_ancestor,
    ),
]


def choose_invite_affordance(
    elements: Sequence[ElementInfo],
    cascade: Sequence[InviteStrategy] = INVITE_AFFORDANCE_CASCADE,
) -> Optional[Tuple[str, int]]:
    """Return ``(strategy_name, element_index)`` for the invite control, or None."""
    for strategy in cascade:
        for el in elements:
            if strategy.predicate(el):
                return strategy.name, strategy.target(el)
    return None


# =======================
# Invite dialog controls
# =======================
EMAIL_INPUT_SELECTORS = [
    "input[type='email']",
    "input[placeholder*='email' i]",
    "input[placeholder*='邮箱' i]",
    "input[name='email']",
    "input[id*='email' i]",
]
ROLE_ADMIN_SELECTORS = [
    "select[name='role']",
    "button:has-text('管理员')",
    "button:has-text('Admin')",
]
NEXT_LABELS = ["next", "下一步"]
SEND_LABELS = ["send email", "send invite", "send invites", "invite", "发送邀请", "邀请", "确定", "ok"]
RESEND_LABELS = ["send invites", "send invite", "send email", "邀请", "发送邀请"]
SEND_STILL_ENABLED_LABELS = ["send invites", "send invite", "send email"]
PENDING_TAB_LABELS = ["pending invites", "邀请中", "待处理邀请"]
CONTINUE_LABELS = ["continue", "next", "继续", "下一步"]
LOGIN_SUBMIT_LABELS = ["continue", "log in", "sign in", "登录", "继续"]

CONFIRMATION_PHRASES = ("invitation sent", "invite sent", "已发送邀请", "邀请已发送")
INVITE_URL_MARKERS = ("invite", "invitation", "invit")
DATA_RESOURCE_TYPES = ("xhr", "fetch")


def is_invite_response(method: str, resource_type: str, url: str, host: str) -> bool:
    if (method or "").upper() != "POST" or resource_type not in DATA_RESOURCE_TYPES:
        return False
    u = (url or "").lower()
    return host.lower() in u and any(k in u for k in INVITE_URL_MARKERS)


def is_same_host_post(method: str, resource_type: str, url: str, host: str) -> bool:
    if (method or "").upper() != "POST" or resource_type not in DATA_RESOURCE_TYPES:
        return False
    return host.lower() in (url or "").lower()


def is_confirmation_text(text: str, email: str) -> bool:
    lower = (text or "").lower()
    if email and email.lower() in lower:
        return True
    return any(p in lower for p in CONFIRMATION_PHRASES)


class InviteOutcome(str, Enum):
    # UI evidence: dialog closed and the address or a "sent" notice rendered
    CONFIRMED = "confirmed"
    # Successful invite response, but the UI never reflected it
    ACCEPTED_UNCONFIRMED = "accepted_unconfirmed"


def resolve_invite_outcome(
    response_status: Optional[int],
    ui_confirmed: bool,
    confirmed_after_reload: bool = False,
    screenshot: Optional[str] = None,
) -> InviteOutcome:
    """Combine network and UI evidence into an outcome.

    Callers reject 4xx/5xx responses before getting here.
    """
    if ui_confirmed or confirmed_after_reload:
        return InviteOutcome.CONFIRMED
    if response_status is not None and response_status < 400:
        return InviteOutcome.ACCEPTED_UNCONFIRMED
    raise InviteUnconfirmed(
        "No success notice or list update after submitting the invite", screenshot=screenshot
    )


# =======================
# Address lists
# =======================
VALID_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s.]+$")


def is_valid_email(address: str) -> bool:
    return bool(VALID_EMAIL_RE.match((address or "").strip()))


def normalize_addresses(addresses: Iterable[str]) -> List[str]:
    """Trim, validate and dedupe (case-insensitive, first spelling kept).

    Raises ValueError naming every malformed address.
    """
    out: List[str] = []
    seen = set()
    bad: List[str] = []
    for raw in addresses:
        address = (raw or "").strip()
        if not address:
            continue
        if not is_valid_email(address):
            bad.append(address)
            continue
        key = address.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(address)
    if bad:
        raise ValueError(f"Invalid email address(es): {', '.join(bad)}")
    return out
