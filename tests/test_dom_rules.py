"""Tests for the page classifiers and rule tables (no browser involved)."""

import pytest

from teamseat.dom_rules import (
    INVITE_AFFORDANCE_CASCADE,
    ElementInfo,
    InviteOutcome,
    PageSnapshot,
    SessionState,
    choose_invite_affordance,
    classify_session,
    extract_member_emails,
    is_confirmation_text,
    is_invite_response,
    is_personal_workspace,
    is_same_host_post,
    is_workspace_dialog_text,
    normalize_addresses,
    parse_member_count_hint,
    pick_labeled_button,
    pick_workspace_option,
    resolve_invite_outcome,
)
from teamseat.errors import InviteUnconfirmed

# ---------------------------------------------------------------------------
# Member count hint
# ---------------------------------------------------------------------------


class TestParseMemberCountHint:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Team plan - 4 members", 4),
            ("Acme Workspace – 12 members", 12),
            ("Business — 1 member", 1),
        ],
    )
    def test_tiered_line(self, text, expected):
        assert parse_member_count_hint(f"Settings\n{text}\nInvite member") == expected

    def test_bare_count(self):
        assert parse_member_count_hint("Members\n3 members\nalice@acme.io") == 3

    def test_tiered_line_wins_over_earlier_bare_match(self):
        text = "Up to 10 members per seat pack\nTeam - 4 members"
        assert parse_member_count_hint(text) == 4

    def test_no_match_is_none_not_zero(self):
        assert parse_member_count_hint("Members\nInvite member\nNo results") is None
        assert parse_member_count_hint("") is None
        assert parse_member_count_hint(None) is None

    def test_zero_is_a_real_count(self):
        assert parse_member_count_hint("0 members") == 0


# ---------------------------------------------------------------------------
# Member addresses
# ---------------------------------------------------------------------------


class TestExtractMemberEmails:
    def test_dedupes_case_insensitively_keeping_first_spelling(self):
        text = "Alice@Acme.io Owner\nbob@acme.io\nalice@acme.io\nBOB@ACME.IO"
        assert extract_member_emails(text) == ["Alice@Acme.io", "bob@acme.io"]

    def test_drops_noise_addresses(self):
        text = (
            "noreply@acme.io\nno-reply@service.com\nsupport@service.com\n"
            "placeholder@example.com\ncarol@acme.io"
        )
        assert extract_member_emails(text) == ["carol@acme.io"]

    def test_excludes_own_address(self):
        text = "owner@acme.io\nDave@acme.io\nOWNER@acme.io"
        assert extract_member_emails(text, exclude="Owner@Acme.io") == ["Dave@acme.io"]

    def test_empty(self):
        assert extract_member_emails("") == []


# ---------------------------------------------------------------------------
# Session classification
# ---------------------------------------------------------------------------


class TestClassifySession:
    def test_login_url(self):
        state, rule = classify_session(PageSnapshot(url="https://chatgpt.com/auth/login"))
        assert state is SessionState.LOGGED_OUT
        assert rule == "login_url"

    def test_username_input(self):
        state, rule = classify_session(PageSnapshot(url="https://chatgpt.com/", has_username_input=True))
        assert (state, rule) == (SessionState.LOGGED_OUT, "username_input")

    def test_heading(self):
        snap = PageSnapshot(url="https://chatgpt.com/", headings=["Log in or sign up"])
        assert classify_session(snap) == (SessionState.LOGGED_OUT, "login_heading")

    def test_affordance(self):
        snap = PageSnapshot(url="https://chatgpt.com/", affordances=["New chat", "Continue with Google"])
        assert classify_session(snap) == (SessionState.LOGGED_OUT, "login_affordance")

    def test_logged_in(self):
        snap = PageSnapshot(url="https://chatgpt.com/", headings=["What can I help with?"], affordances=["New chat"])
        assert classify_session(snap) == (SessionState.LOGGED_IN, None)


# ---------------------------------------------------------------------------
# Workspace picker
# ---------------------------------------------------------------------------


def _el(index, text, **kw):
    return ElementInfo(index=index, text=text, **kw)


class TestWorkspace:
    def test_dialog_text(self):
        assert is_workspace_dialog_text("Select a workspace\nPersonal account\nAcme Team")
        assert is_workspace_dialog_text("选择工作空间")
        assert not is_workspace_dialog_text("Invite members")

    def test_personal_markers(self):
        assert is_personal_workspace("Personal account")
        assert is_personal_workspace("personal")
        assert is_personal_workspace("个人账户")
        assert not is_personal_workspace("Personal Finance Team")

    @pytest.mark.parametrize(
        "texts",
        [
            ["Personal account", "Acme Team"],
            ["Acme Team", "Personal account"],
        ],
    )
    def test_picks_team_regardless_of_order(self, texts):
        candidates = [_el(i, t) for i, t in enumerate(texts)]
        chosen = pick_workspace_option(candidates)
        assert chosen is not None
        assert chosen.text == "Acme Team"

    def test_skips_hidden_and_disabled(self):
        candidates = [
            _el(0, "Hidden Team", visible=False),
            _el(1, "Disabled Team", disabled=True),
            _el(2, "Personal account"),
            _el(3, "Acme Team"),
        ]
        assert pick_workspace_option(candidates).index == 3

    def test_only_personal_gives_none(self):
        assert pick_workspace_option([_el(0, "Personal account")]) is None


# ---------------------------------------------------------------------------
# Buttons and invite affordance
# ---------------------------------------------------------------------------


class TestButtons:
    def test_pick_labeled_button_honours_exclude(self):
        elements = [_el(0, "Continue with Google"), _el(1, "Continue")]
        chosen = pick_labeled_button(elements, ["continue"], exclude=["continue with"])
        assert chosen.index == 1

    def test_pick_labeled_button_skips_disabled(self):
        elements = [_el(0, "Send invites", disabled=True), _el(1, "Send invites")]
        assert pick_labeled_button(elements, ["send invites"]).index == 1

    def test_no_match(self):
        assert pick_labeled_button([_el(0, "Cancel")], ["send"]) is None


class TestInviteCascade:
    def test_cascade_order(self):
        assert [s.name for s in INVITE_AFFORDANCE_CASCADE] == ["clickable_text", "layout_text", "icon_ancestor"]

    def test_clickable_text_first(self):
        elements = [
            _el(0, "Invite", group="layout"),
            _el(1, "Invite member", group="clickable"),
        ]
        assert choose_invite_affordance(elements) == ("clickable_text", 1)

    def test_layout_fallback(self):
        elements = [_el(0, "Members", group="clickable"), _el(4, "邀请", group="layout")]
        assert choose_invite_affordance(elements) == ("layout_text", 4)

    def test_icon_walks_to_ancestor(self):
        elements = [_el(7, "Invite", group="icon", has_icon=True, ancestor_index=3)]
        assert choose_invite_affordance(elements) == ("icon_ancestor", 3)

    def test_nothing_found(self):
        assert choose_invite_affordance([_el(0, "Settings")]) is None

    def test_from_dict_accepts_page_script_keys(self):
        el = ElementInfo.from_dict({"index": 2, "text": "  Invite\n member ", "group": "icon", "hasIcon": True, "ancestorIndex": 9})
        assert el.text == "Invite member"
        assert el.has_icon and el.ancestor_index == 9


# ---------------------------------------------------------------------------
# Responses and outcome
# ---------------------------------------------------------------------------


class TestInviteResponses:
    def test_invite_response(self):
        assert is_invite_response("POST", "fetch", "https://chatgpt.com/backend-api/accounts/x/invites", "chatgpt.com")
        assert not is_invite_response("GET", "fetch", "https://chatgpt.com/backend-api/invites", "chatgpt.com")
        assert not is_invite_response("POST", "document", "https://chatgpt.com/invites", "chatgpt.com")
        assert not is_invite_response("POST", "xhr", "https://other.com/invites", "chatgpt.com")

    def test_same_host_post(self):
        assert is_same_host_post("post", "xhr", "https://chatgpt.com/backend-api/anything", "chatgpt.com")
        assert not is_same_host_post("POST", "xhr", "https://cdn.example.net/x", "chatgpt.com")

    def test_confirmation_text(self):
        assert is_confirmation_text("Pending\nNew@Acme.io", "new@acme.io")
        assert is_confirmation_text("Invitation sent", "x@acme.io")
        assert not is_confirmation_text("Members", "x@acme.io")


class TestResolveInviteOutcome:
    def test_ui_evidence_confirms(self):
        assert resolve_invite_outcome(None, True) is InviteOutcome.CONFIRMED
        assert resolve_invite_outcome(200, False, confirmed_after_reload=True) is InviteOutcome.CONFIRMED

    def test_response_only(self):
        assert resolve_invite_outcome(201, False) is InviteOutcome.ACCEPTED_UNCONFIRMED

    def test_no_evidence_raises(self):
        with pytest.raises(InviteUnconfirmed) as exc_info:
            resolve_invite_outcome(None, False, screenshot="logs/x.png")
        assert exc_info.value.screenshot == "logs/x.png"


# ---------------------------------------------------------------------------
# Address lists
# ---------------------------------------------------------------------------


class TestNormalizeAddresses:
    def test_dedupes_and_trims(self):
        assert normalize_addresses([" a@x.io", "A@X.io", "b@x.io", ""]) == ["a@x.io", "b@x.io"]

    def test_reports_every_invalid_address(self):
        with pytest.raises(ValueError) as exc_info:
            normalize_addresses(["ok@x.io", "bad", "also@bad"])
        assert "bad" in str(exc_info.value)
        assert "also@bad" in str(exc_info.value)
