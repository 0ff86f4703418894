"""Startup and shutdown wiring tests."""

import asyncio
import logging
import os
import signal
from unittest.mock import Mock, patch

import pytest
from selenium.common.exceptions import WebDriverException

from relaybot import main as entry
from relaybot.config import Settings
from relaybot.transport.base import SessionStartError
from relaybot.transport.whatsapp import WhatsAppTransport
from tests.conftest import FakeTransport


class FailingTransport(FakeTransport):
    async def _start(self):
        raise SessionStartError("QR code never scanned")


class InterruptedTransport(FakeTransport):
    """Becomes ready, then the process receives SIGINT."""

    async def _start(self):
        await self.on_ready()
        asyncio.get_running_loop().call_soon(os.kill, os.getpid(), signal.SIGINT)


def test_load_settings_without_api_key_fails(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("LLM_API_KEY", raising=False)

    assert entry.load_settings() is None


def test_load_settings_rejects_unknown_transport(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LLM_API_KEY", "test_key")
    monkeypatch.setenv("TRANSPORT", "telegram")
    monkeypatch.setenv("LOG_FILE", "")

    assert entry.load_settings() is None


def test_main_exits_1_on_bad_configuration(monkeypatch):
    monkeypatch.setattr(entry, "load_settings", lambda: None)
    monkeypatch.setattr(entry, "setup_logging", lambda *args, **kwargs: None)

    with pytest.raises(SystemExit) as exc_info:
        entry.main()

    assert exc_info.value.code == 1


@pytest.mark.asyncio
async def test_session_start_failure_returns_1_and_closes_everything():
    settings = Settings(llm_api_key="test_key", log_file=None, _env_file=None)
    created = []

    def fake_create_transport(settings, channel):
        transport = FailingTransport(channel)
        created.append(transport)
        return transport

    with patch.object(entry, "create_transport", side_effect=fake_create_transport):
        exit_code = await entry.run_bot(settings)

    assert exit_code == 1
    assert created[0].closed is True
    assert created[0].channel.running is False


@pytest.mark.asyncio
async def test_browser_crash_during_login_returns_1():
    settings = Settings(llm_api_key="test_key", log_file=None, _env_file=None)
    driver = Mock()
    driver.find_elements.side_effect = WebDriverException("chrome not reachable")
    created = []

    def fake_create_transport(settings, channel):
        transport = WhatsAppTransport(settings, channel, driver_factory=lambda: driver)
        created.append(transport)
        return transport

    with patch.object(entry, "create_transport", side_effect=fake_create_transport):
        exit_code = await entry.run_bot(settings)

    assert exit_code == 1
    driver.quit.assert_called_once()
    assert created[0].channel.running is False


@pytest.mark.asyncio
async def test_sigint_shuts_down_gracefully():
    settings = Settings(llm_api_key="test_key", log_file=None, _env_file=None)
    created = []

    def fake_create_transport(settings, channel):
        transport = InterruptedTransport(channel)
        created.append(transport)
        return transport

    with patch.object(entry, "create_transport", side_effect=fake_create_transport):
        exit_code = await asyncio.wait_for(entry.run_bot(settings), timeout=5.0)

    assert exit_code == 0
    assert created[0].closed is True
    assert created[0].channel.running is False


def test_setup_logging_survives_unwritable_log_file(tmp_path, capsys):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("")
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level

    try:
        entry.setup_logging("DEBUG", str(blocker / "relaybot.log"))
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    assert "Could not create log file" in capsys.readouterr().out
