"""Failure taxonomy for the automation engine.

Each error carries a stable ``code`` for callers and a ``message_key`` into
the operator message catalog. ``screenshot`` is filled in when a debug
capture was taken before the error propagated.
"""

from typing import Optional


class AutomationError(Exception):
    code = "automation_error"
    message_key = "errors.generic"

    def __init__(self, detail: str = "", screenshot: Optional[str] = None):
        super().__init__(detail or self.code)
        self.detail = detail or self.code
        self.screenshot = screenshot

    def __str__(self) -> str:
        if self.screenshot:
            return f"{self.detail} (screenshot: {self.screenshot})"
        return self.detail


class SessionError(AutomationError):
    """Failure that invalidates the whole session; a job stops on it."""


class LaunchFailure(SessionError):
    code = "launch_failure"
    message_key = "errors.launch_failure"


class LoginFailed(SessionError):
    code = "login_failed"
    message_key = "errors.login_failed"


class WorkspaceSelectionFailed(AutomationError):
    code = "workspace_selection_failed"
    message_key = "errors.workspace_selection_failed"


class NoWorkspaceOption(WorkspaceSelectionFailed):
    code = "no_workspace_option"
    message_key = "errors.no_workspace_option"


class WrongPage(AutomationError):
    code = "wrong_page"
    message_key = "errors.wrong_page"


class InviteButtonNotFound(AutomationError):
    code = "invite_button_not_found"
    message_key = "errors.invite_button_not_found"


class EmailInputNotFound(AutomationError):
    code = "email_input_not_found"
    message_key = "errors.email_input_not_found"


class SubmitButtonNotFound(AutomationError):
    code = "submit_button_not_found"
    message_key = "errors.submit_button_not_found"


class InviteRequestFailed(AutomationError):
    code = "invite_request_failed"
    message_key = "errors.invite_request_failed"

    def __init__(self, status: int, url: str, body: str = "", screenshot: Optional[str] = None):
        self.status = status
        self.url = url
        self.body = (body or "")[:300]
        detail = f"Invite request failed: {status} {url}"
        if self.body:
            detail += f" - {self.body}"
        super().__init__(detail, screenshot=screenshot)


class InviteUnconfirmed(AutomationError):
    code = "invite_unconfirmed"
    message_key = "errors.invite_unconfirmed"


class NoEligibleAccount(Exception):
    """No managed account can take another bulk invite right now."""

    code = "no_eligible_account"
    message_key = "errors.no_eligible_account"


class NotFound(KeyError):
    code = "not_found"
    message_key = "errors.not_found"


class InvalidTransition(ValueError):
    code = "invalid_transition"
    message_key = "errors.invalid_transition"
