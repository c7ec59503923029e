"""Tests for operator message lookup."""

from teamseat.errors import InviteRequestFailed, LoginFailed, NoEligibleAccount
from teamseat.messages import MESSAGE_TEMPLATES, error_message, get_message


def _keys(tree, prefix=""):
    out = set()
    for k, v in tree.items():
        path = f"{prefix}{k}"
        if isinstance(v, dict):
            out |= _keys(v, path + ".")
        else:
            out.add(path)
    return out


def test_locales_define_the_same_keys():
    assert _keys(MESSAGE_TEMPLATES["en"]) == _keys(MESSAGE_TEMPLATES["zh"])


def test_format_and_locale():
    assert get_message("sync.ok", locale="en", count=3) == "Sync complete! Members (including owner): 3"
    assert get_message("sync.ok", locale="zh", count=3) == "同步成功！成员数（含账号）：3"


def test_unknown_locale_falls_back_to_english():
    assert get_message("login.ok", locale="fr") == "Login session is active"


def test_missing_key_never_raises():
    assert get_message("nope.missing", locale="en") == "<Missing Template: nope.missing>"
    assert get_message("nope.missing", default="fallback") == "fallback"
    assert get_message("login", locale="en") == "<Missing Template: login>"


def test_missing_format_argument_is_reported_not_raised():
    assert get_message("sync.ok", locale="en") == "<Error Formatting Template: sync.ok>"


def test_error_message_uses_exception_key():
    msg = error_message(LoginFailed("bad password", screenshot="logs/l.png"), locale="en")
    assert msg == "Login failed: bad password (screenshot: logs/l.png)"

    msg = error_message(InviteRequestFailed(403, "https://chatgpt.com/invites", "x" * 500), locale="en")
    assert msg.startswith("Invite request rejected: Invite request failed: 403")
    assert len(msg) < 400

    assert error_message(NoEligibleAccount(), locale="zh") == "没有可用席位的团队（或未初始化登录）"


def test_error_message_for_plain_exception():
    assert error_message(RuntimeError("boom"), locale="en") == "Automation failed: boom"
