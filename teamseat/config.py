"""Environment-driven settings shared by the automation modules.

Every value is read once at import time. Callers override per instance via
keyword arguments instead of mutating these constants.
"""

import os
from urllib.parse import urljoin, urlparse


def env_flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# =======================
# Target service
# =======================
BASE_URL = os.environ.get("TEAMSEAT_BASE_URL", "https://chatgpt.com/").strip()
if not BASE_URL.endswith("/"):
    BASE_URL += "/"
LOGIN_URL = urljoin(BASE_URL, "auth/login")
MEMBERS_URL = urljoin(BASE_URL, "admin/members")
MEMBERS_PATH = "/admin/members"
TARGET_HOST = os.environ.get("TEAMSEAT_TARGET_HOST", "").strip() or (urlparse(BASE_URL).hostname or "")

# Members page tab -> query parameter value
MEMBER_TABS = {
    "members": "members",
    "pending-invites": "invites",
    "pending-requests": "requests",
}

# =======================
# Browser
# =======================
# Interactive mode shows the browser and allows the manual login fallback.
INTERACTIVE = env_flag("TEAMSEAT_INTERACTIVE")
_HEADLESS_RAW = os.environ.get("TEAMSEAT_HEADLESS", "").strip()
HEADLESS = env_flag("TEAMSEAT_HEADLESS") if _HEADLESS_RAW else not INTERACTIVE
SLOW_MO = env_int("TEAMSEAT_SLOW_MO", 0)
MAX_BROWSERS = env_int("TEAMSEAT_MAX_BROWSERS", 2)
LAUNCH_TIMEOUT_MS = env_int("TEAMSEAT_LAUNCH_TIMEOUT_MS", 30000)

# =======================
# Timeouts (ms)
# =======================
NAV_TIMEOUT_MS = env_int("TEAMSEAT_NAV_TIMEOUT_MS", 30000)
DEFAULT_TIMEOUT_MS = env_int("TEAMSEAT_DEFAULT_TIMEOUT_MS", 10000)
MANUAL_LOGIN_TIMEOUT_MS = env_int("TEAMSEAT_MANUAL_LOGIN_TIMEOUT_MS", 8 * 60 * 1000)
MANUAL_LOGIN_POLL_MS = 2000
INVITE_RESPONSE_TIMEOUT_MS = 15000
FALLBACK_RESPONSE_TIMEOUT_MS = 8000
INVITE_CONFIRM_TIMEOUT_MS = 20000
DIALOG_CLOSE_TIMEOUT_MS = 15000
WORKSPACE_MAX_ATTEMPTS = 3
MEMBERS_NAV_ATTEMPTS = 3

# =======================
# Paths
# =======================
PROFILE_ROOT = os.environ.get("TEAMSEAT_PROFILE_ROOT", ".automation-profiles").strip()
SCREENSHOT_DIR = os.environ.get("TEAMSEAT_SCREENSHOT_DIR", "logs").strip()
DATA_FILE = os.environ.get("TEAMSEAT_DATA_FILE", "teamseat_store.json").strip()

# =======================
# Business rules
# =======================
MEMBER_LIMIT = env_int("TEAMSEAT_MEMBER_LIMIT", 5)
INVITE_DELAY_MS = env_int("TEAMSEAT_INVITE_DELAY_MS", 3000)
LOCALE = os.environ.get("TEAMSEAT_LOCALE", "en").strip() or "en"
SECRET_KEY = os.environ.get("TEAMSEAT_SECRET_KEY", "")


def members_url(tab: str = "members", base_url: str = "") -> str:
    if tab not in MEMBER_TABS:
        raise ValueError(f"Unknown members tab: {tab!r}")
    root = urljoin(base_url, "admin/members") if base_url else MEMBERS_URL
    return f"{root}?tab={MEMBER_TABS[tab]}"


def profile_dir(account_id: str, root: str = "") -> str:
    return os.path.join(root or PROFILE_ROOT, str(account_id))
