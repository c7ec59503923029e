"""Operator-facing status messages, looked up by dotted key and locale."""

from typing import Any, Dict, Optional

from . import config
from .common_logging import warn

MESSAGE_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "en": {
        "common": {
            "screenshot_suffix": ", screenshot: {path}",
        },
        "login": {
            "ok": "Login session is active",
            "expired": "Login session expired, please initialize login again",
            "not_initialized": "Login not initialized, run 'Initialize login' first",
            "check_failed": "Login check failed: {error}",
            "initialized": "Login initialized for {email}",
            "manual_hint": "Please log in manually in this window (account: {email}). "
                           "Finish any captcha/2FA and keep the page open; login is detected automatically.",
        },
        "verify": {
            "ok": "Credentials verified, workspace selected",
            "ok_no_workspace": "Credentials verified (no workspace selector found, probably already in the right workspace)",
            "invalid": "Login failed - invalid credentials",
            "failed": "Verification failed: {error}",
        },
        "sync": {
            "ok": "Sync complete! Members (including owner): {count}",
            "login_failed": "Login failed or captcha/2FA required",
            "navigation_failed": "Could not open the members page{screenshot}",
            "no_count": "Could not read the member count (wrong workspace, missing permission or page changed){screenshot}",
            "failed": "Sync failed: {error}",
        },
        "invite": {
            "job_created": "Invite job created for {count} address(es)",
            "job_completed": "Invite job finished: {success} succeeded, {failed} failed",
            "job_failed": "Invite job failed: {error}",
            "unconfirmed_caveat": "Invite request for {email} succeeded but the list did not update yet",
            "no_addresses": "No valid email addresses given",
        },
        "errors": {
            "generic": "Automation failed: {error}",
            "launch_failure": "Could not start a browser: {error}",
            "login_failed": "Login failed: {error}",
            "workspace_selection_failed": "Could not select the team workspace: {error}",
            "no_workspace_option": "No selectable team workspace found: {error}",
            "wrong_page": "Not on the members page: {error}",
            "invite_button_not_found": "Invite button not found: {error}",
            "email_input_not_found": "Invite dialog email input not found: {error}",
            "submit_button_not_found": "Invite submit button not found: {error}",
            "invite_request_failed": "Invite request rejected: {error}",
            "invite_unconfirmed": "Invite could not be confirmed: {error}",
            "no_eligible_account": "No eligible account with free seats (or login not initialized)",
            "not_found": "Record not found: {error}",
            "invalid_transition": "Invalid job status change: {error}",
        },
    },
    "zh": {
        "common": {
            "screenshot_suffix": "，截图: {path}",
        },
        "login": {
            "ok": "登录状态正常",
            "expired": "登录已失效，需要重新初始化登录",
            "not_initialized": "未初始化登录，请先点击“初始化登录”",
            "check_failed": "检测失败: {error}",
            "initialized": "已为 {email} 初始化登录",
            "manual_hint": "请在此窗口手动登录（邮箱：{email}），完成验证码/2FA 后保持页面打开。系统会自动检测登录状态。",
        },
        "verify": {
            "ok": "凭据验证成功，工作空间已选择",
            "ok_no_workspace": "凭据验证成功（未找到工作空间选择器，可能已在正确空间中）",
            "invalid": "登录失败 - 凭据无效",
            "failed": "验证失败: {error}",
        },
        "sync": {
            "ok": "同步成功！成员数（含账号）：{count}",
            "login_failed": "登录失败或需要验证码/2FA",
            "navigation_failed": "无法打开成员管理页面{screenshot}",
            "no_count": "无法读取成员数（可能未选择正确工作空间/权限不足/页面结构变化）{screenshot}",
            "failed": "同步失败: {error}",
        },
        "invite": {
            "job_created": "已创建邀请任务，共 {count} 个邮箱",
            "job_completed": "邀请任务完成：成功 {success}，失败 {failed}",
            "job_failed": "邀请任务失败: {error}",
            "unconfirmed_caveat": "{email} 的邀请请求已成功，但页面列表尚未更新",
            "no_addresses": "没有有效的邮箱地址",
        },
        "errors": {
            "generic": "自动化失败: {error}",
            "launch_failure": "无法启动浏览器: {error}",
            "login_failed": "登录失败: {error}",
            "workspace_selection_failed": "选择工作空间失败: {error}",
            "no_workspace_option": "未能在弹窗中找到可点击的工作空间选项: {error}",
            "wrong_page": "未处于成员管理页面: {error}",
            "invite_button_not_found": "找不到邀请按钮: {error}",
            "email_input_not_found": "邀请弹窗未出现或邮箱输入框不可见: {error}",
            "submit_button_not_found": "找不到提交按钮: {error}",
            "invite_request_failed": "邀请请求失败: {error}",
            "invite_unconfirmed": "提交邀请后未检测到成功提示或列表更新: {error}",
            "no_eligible_account": "没有可用席位的团队（或未初始化登录）",
            "not_found": "记录不存在: {error}",
            "invalid_transition": "任务状态变更无效: {error}",
        },
    },
}


def get_message(key: str, default: Optional[str] = None, locale: Optional[str] = None, **kwargs: Any) -> str:
    """
    Retrieves a message template by its dot-separated key, formats it with kwargs,
    and returns the formatted string. Unknown locales fall back to English.

    Example: get_message("sync.ok", count=3)
             get_message("errors.wrong_page", locale="zh", error="...")
    """
    templates = MESSAGE_TEMPLATES.get(locale or config.LOCALE) or MESSAGE_TEMPLATES["en"]
    value: Any = templates
    try:
        for k in key.split("."):
            if not isinstance(value, dict):
                raise KeyError(k)
            value = value[k]
    except KeyError:
        warn(f"Message template key '{key}' not found.")
        return default if default is not None else f"<Missing Template: {key}>"
    if not isinstance(value, str):
        return default if default is not None else f"<Missing Template: {key}>"
    try:
        return value.format(**kwargs)
    except (KeyError, IndexError, ValueError) as e:
        warn(f"Error formatting message for key '{key}' with args {kwargs}: {e}")
        return default if default is not None else f"<Error Formatting Template: {key}>"


def error_message(exc: BaseException, locale: Optional[str] = None) -> str:
    """Localized text for an exception from the errors module (or any other)."""
    key = getattr(exc, "message_key", "errors.generic")
    return get_message(key, locale=locale, error=str(exc))
