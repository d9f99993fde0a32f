"""Tests for the credential management commands."""

from __future__ import annotations

import keyring
import pytest
from keyring.errors import PasswordDeleteError
from typer.testing import CliRunner

from curriculum_import.__main__ import cli

runner = CliRunner()


@pytest.fixture
def keyring_memory(monkeypatch: pytest.MonkeyPatch) -> dict[tuple[str, str], str]:
    memory: dict[tuple[str, str], str] = {}

    def fake_set_password(service: str, username: str, password: str) -> None:
        memory[(service, username)] = password

    def fake_get_password(service: str, username: str) -> str | None:
        return memory.get((service, username))

    def fake_delete_password(service: str, username: str) -> None:
        if (service, username) not in memory:
            raise PasswordDeleteError("missing")
        del memory[(service, username)]

    monkeypatch.setattr(keyring, "set_password", fake_set_password)
    monkeypatch.setattr(keyring, "get_password", fake_get_password)
    monkeypatch.setattr(keyring, "delete_password", fake_delete_password)
    return memory


def test_credentials_set_stores_access_token(
    keyring_memory: dict[tuple[str, str], str],
) -> None:
    result = runner.invoke(cli, ["credentials", "set", "access_token", "--secret", "ya29.token"])

    assert result.exit_code == 0
    assert "Stored Drive access_token." in result.output
    assert keyring_memory == {("curriculum-import", "drive:access_token"): "ya29.token"}


def test_credentials_set_prompts_for_secret(
    keyring_memory: dict[tuple[str, str], str],
) -> None:
    result = runner.invoke(cli, ["credentials", "set", "api_key"], input="api-key-1\n")

    assert result.exit_code == 0
    assert keyring_memory == {("curriculum-import", "drive:api_key"): "api-key-1"}
    assert "api-key-1" not in result.output


def test_credentials_set_rejects_blank_secret(
    keyring_memory: dict[tuple[str, str], str],
) -> None:
    result = runner.invoke(cli, ["credentials", "set", "api_key", "--secret", "   "])

    assert result.exit_code == 1
    assert "Could not store Drive api_key" in result.output
    assert keyring_memory == {}


def test_credentials_delete_removes_secret_and_tolerates_absence(
    keyring_memory: dict[tuple[str, str], str],
) -> None:
    keyring_memory[("curriculum-import", "drive:api_key")] = "api-key-1"

    first = runner.invoke(cli, ["credentials", "delete", "api_key"])
    second = runner.invoke(cli, ["credentials", "delete", "api_key"])

    assert first.exit_code == 0
    assert second.exit_code == 0
    assert "Deleted Drive api_key." in first.output
    assert keyring_memory == {}


def test_credentials_reject_unknown_kind(keyring_memory: dict[tuple[str, str], str]) -> None:
    result = runner.invoke(cli, ["credentials", "set", "password", "--secret", "x"])

    assert result.exit_code == 2
    assert keyring_memory == {}
