"""Tests for the command-line entry point (no browser commands)."""

import json

import pytest

from teamseat import cli, config
from teamseat.records import JsonRecordStore


@pytest.fixture
def secret(monkeypatch):
    monkeypatch.setattr(config, "SECRET_KEY", "test-secret")
    monkeypatch.setattr(cli, "_cipher", None)


def test_add_and_list_accounts(tmp_path, capsys, secret):
    store_path = str(tmp_path / "store.json")

    assert cli.main(["--store", store_path, "add-account", "owner@acme.io", "--password", "pw", "--name", "Acme"]) == 0
    capsys.readouterr()
    assert cli.main(["--store", store_path, "list-accounts"]) == 0

    rows = json.loads(capsys.readouterr().out)
    assert len(rows) == 1
    assert rows[0]["email"] == "owner@acme.io"
    assert rows[0]["status"] == "inactive"
    assert rows[0]["login_initialized"] is False

    stored = JsonRecordStore(store_path).list_accounts()[0]
    assert stored.credential.startswith("enc:")
    assert cli._get_cipher().decrypt(stored.credential) == "pw"


def test_unknown_account_exits_nonzero(tmp_path, capsys):
    assert cli.main(["--store", str(tmp_path / "s.json"), "stats", "missing"]) == 1


def test_invalid_addresses_exit_with_usage_error(tmp_path, secret):
    store_path = str(tmp_path / "store.json")
    account = JsonRecordStore(store_path).add_account("owner@acme.io", "enc:x")
    assert cli.main(["--store", store_path, "invite", account.id, "not-an-email"]) == 2


def test_read_addresses_from_file(tmp_path):
    listing = tmp_path / "emails.txt"
    listing.write_text("# team\na@acme.io, b@acme.io\n\nc@acme.io\n", encoding="utf-8")
    args = cli._parse_cli_args(["invite", "acc", "z@acme.io", "--file", str(listing)])
    assert cli._read_addresses(args) == ["z@acme.io", "a@acme.io", "b@acme.io", "c@acme.io"]


def test_headless_flags():
    assert cli._resolve_headless(cli._parse_cli_args(["--headless", "list-accounts"])) is True
    assert cli._resolve_headless(cli._parse_cli_args(["--interactive", "list-accounts"])) is False
