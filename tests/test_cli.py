"""Smoke tests for the trakt-import command line."""

import json
import logging
from unittest.mock import MagicMock

import pytest

from trakt_importer.backend.information_handlers.models import DeviceAuthPollResult, DeviceAuthStatus
from trakt_importer.cli import importer
from trakt_importer.cli._utils import load_settings_store, save_settings_store, to_serializable


@pytest.fixture(autouse=True)
def _no_env_credentials(monkeypatch):
    monkeypatch.delenv("TRAKT_CLIENT_ID", raising=False)
    monkeypatch.delenv("TRAKT_CLIENT_SECRET", raising=False)


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    saved = list(root.handlers)
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in saved:
        root.addHandler(handler)


@pytest.fixture
def settings_file(tmp_path):
    return tmp_path / "host" / "settings.json"


def _run(capsys, *argv):
    importer.main(list(argv))
    return json.loads(capsys.readouterr().out)


class TestCli:
    def test_capabilities(self, capsys, settings_file):
        payload = _run(capsys, "--settings-file", str(settings_file), "capabilities")

        assert payload["supports_history"] is True
        assert payload["requires_device_auth"] is True

    def test_auth_status_with_stored_token(self, capsys, settings_file):
        save_settings_store(
            settings_file,
            {"client_id": "cid", "access_token": "acc", "access_token_expires_at": "4102444800"},
        )

        payload = _run(capsys, "--settings-file", str(settings_file), "auth", "status")

        assert payload["authenticated"] is True
        assert payload["expires_at"] == 4102444800
        assert "acc" not in json.dumps(payload)

    def test_auth_start_without_client_id(self, capsys, settings_file):
        with pytest.raises(SystemExit) as excinfo:
            importer.main(["--settings-file", str(settings_file), "auth", "start"])

        assert excinfo.value.code == 1
        assert "client_id" in capsys.readouterr().err

    def test_client_id_from_environment(self, monkeypatch, settings_file):
        monkeypatch.setenv("TRAKT_CLIENT_ID", "env-cid")

        values = importer._host_settings(settings_file)

        assert values["client_id"] == "env-cid"

    def test_pending_poll_exit_code(self, monkeypatch, capsys, settings_file):
        provider = MagicMock()
        provider.poll_auth.return_value = DeviceAuthPollResult(status=DeviceAuthStatus.PENDING)
        monkeypatch.setattr(importer, "_open_provider", lambda args: provider)

        with pytest.raises(SystemExit) as excinfo:
            importer.main(["--settings-file", str(settings_file), "auth", "poll", "device-1"])

        assert excinfo.value.code == importer.EXIT_PENDING
        assert json.loads(capsys.readouterr().out)["status"] == "pending"
        provider.close.assert_called_once()

    def test_refreshed_tokens_are_persisted(self, settings_file):
        save_settings_store(settings_file, {"client_id": "cid", "client_secret": "secret"})

        importer._persist_tokens(settings_file)(
            {"client_id": "other", "access_token": "new", "access_token_expires_at": "10"}
        )

        stored = load_settings_store(settings_file)
        assert stored["client_id"] == "cid"
        assert stored["access_token"] == "new"


def test_to_serializable_handles_models():
    result = DeviceAuthPollResult(status=DeviceAuthStatus.SLOW_DOWN, retry_interval=10)

    data = to_serializable(result)

    assert data["status"] == "slow_down"
    assert data["retry_interval"] == 10
