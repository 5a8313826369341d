"""Tests for mypail.main: component wiring and the server run loop."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import structlog

from mypail.config import MypailConfig
from mypail.gateway import GatewayServer
from mypail.main import MypailServer, build_app_components, configure_logging


@pytest.fixture()
def config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> MypailConfig:
    monkeypatch.setenv("MYPAIL_SESSIONS_DIR", str(tmp_path / "sessions"))
    monkeypatch.setenv("MYPAIL_PORT", "0")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    return MypailConfig()


class TestConfigureLogging:
    def test_idempotent(self) -> None:
        configure_logging("DEBUG")
        configure_logging("INFO")
        assert structlog.is_configured()


class TestBuildAppComponents:
    def test_wiring(self, config: MypailConfig, tmp_path: Path) -> None:
        components = build_app_components(config)
        assert isinstance(components.gateway, GatewayServer)
        assert components.store.sessions_dir == tmp_path / "sessions"
        assert components.registry.store is components.store
        assert components.responses.total_count() > 0
        assert not components.generator.is_configured()

    @pytest.mark.asyncio
    async def test_turn_through_wired_graph(self, config: MypailConfig) -> None:
        from mypail.affect.state import DeviceStatus
        from mypail.orchestrator import TurnRequest

        components = build_app_components(config)
        result = await components.orchestrator.process_turn(
            TurnRequest(
                session_id="s1",
                message="hello Pail",
                ai_name="Pail",
                device_status=DeviceStatus(),
            )
        )
        assert result.emotion_mode is True
        assert result.response
        assert components.metrics.counter("turns_total") == 1


class TestMypailServer:
    @pytest.mark.asyncio
    async def test_runs_until_shutdown(self, config: MypailConfig) -> None:
        server = MypailServer(config)
        task = asyncio.create_task(server.run())
        await asyncio.sleep(0.05)
        server.request_shutdown("test")
        await asyncio.wait_for(task, timeout=5)
        assert task.done()
        assert task.exception() is None
