"""
Gateway Server — HTTP front door for the companion backend.

A thin aiohttp layer: it validates request shape, hands the turn to the
TurnOrchestrator and serializes the result. No mood logic lives here.

Routes:
  GET  /health                      Liveness and collaborator status
  POST /api/chat                    One chat turn
  GET  /api/traits/{session_id}     Persona traits
  GET  /api/thresholds/{session_id} Current mood band cut points
  POST /api/thresholds/{session_id} Replace the cut points
  GET  /api/stats                   Persistent and in-memory session counts
  GET  /api/metrics                 In-process metrics snapshot
"""

from __future__ import annotations

import json
import time
from typing import Any

import structlog
from aiohttp import web
from pydantic import ValidationError

from mypail.affect.state import DeviceStatus, InvalidThresholdsError
from mypail.affect.thresholds import ThresholdStore
from mypail.api.generator import TextGenerator
from mypail.metrics import MetricsRegistry
from mypail.orchestrator import TurnOrchestrator, TurnRequest
from mypail.registry import SessionRegistry
from mypail.responses import ResponseTable

logger = structlog.get_logger(__name__)

SERVER_ERROR = {"error": "Server error"}


class BadRequest(Exception):
    """Request body failed shape validation; mapped to HTTP 400."""


class GatewayServer:
    """HTTP gateway server.

    Lifecycle: create → start() → (serve requests) → stop()

    The registry's background sweeps are started and stopped with the
    server so a single owner controls every long-lived task.
    """

    def __init__(
        self,
        orchestrator: TurnOrchestrator,
        registry: SessionRegistry,
        thresholds: ThresholdStore,
        responses: ResponseTable,
        generator: TextGenerator,
        metrics: MetricsRegistry,
    ) -> None:
        self._orchestrator = orchestrator
        self._registry = registry
        self._thresholds = thresholds
        self._responses = responses
        self._generator = generator
        self._metrics = metrics

        # aiohttp internals
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._started_at: float = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        """Create the aiohttp application with every route registered."""
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        app.router.add_post("/api/chat", self._handle_chat)
        app.router.add_get("/api/traits/{session_id}", self._handle_get_traits)
        app.router.add_get("/api/thresholds/{session_id}", self._handle_get_thresholds)
        app.router.add_post("/api/thresholds/{session_id}", self._handle_set_thresholds)
        app.router.add_get("/api/stats", self._handle_stats)
        app.router.add_get("/api/metrics", self._handle_metrics)
        self._started_at = time.monotonic()
        return app

    async def start(self, host: str, port: int) -> None:
        """Start the HTTP server and the registry sweeps."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()
        self._registry.start()

        logger.info(
            "gateway.started",
            host=host,
            port=port,
            responses=self._responses.total_count(),
            llm_enabled=self._generator.is_configured(),
        )

    async def stop(self) -> None:
        """Graceful shutdown: stop sweeps, then the server."""
        await self._registry.stop()
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        logger.info("gateway.stopped")

    # ------------------------------------------------------------------
    # HTTP handlers
    # ------------------------------------------------------------------

    async def _handle_health(self, request: web.Request) -> web.Response:
        uptime = time.monotonic() - self._started_at if self._started_at else 0.0
        return web.json_response({
            "status": "ok",
            "responses": self._responses.total_count(),
            "llmEnabled": self._generator.is_configured(),
            "uptime": round(uptime, 1),
        })

    async def _handle_chat(self, request: web.Request) -> web.Response:
        try:
            turn = _parse_turn(await _read_json(request))
        except BadRequest as e:
            return web.json_response({"error": str(e)}, status=400)

        try:
            result = await self._orchestrator.process_turn(turn)
        except Exception:
            logger.exception("gateway.chat_failed", session_id=turn.session_id)
            return web.json_response(SERVER_ERROR, status=500)
        return web.json_response(result.to_dict())

    async def _handle_get_traits(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        try:
            traits = await self._registry.get_traits(session_id)
        except Exception:
            logger.exception("gateway.traits_failed", session_id=session_id)
            return web.json_response(SERVER_ERROR, status=500)
        return web.json_response({"traits": traits.to_dict()})

    async def _handle_get_thresholds(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        try:
            record = await self._registry.get_session(session_id)
            thresholds = self._thresholds.get(record)
        except Exception:
            logger.exception("gateway.thresholds_failed", session_id=session_id)
            return web.json_response(SERVER_ERROR, status=500)
        return web.json_response({"thresholds": thresholds.to_dict()})

    async def _handle_set_thresholds(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        try:
            body = await _read_json(request)
        except BadRequest as e:
            return web.json_response({"error": str(e)}, status=400)

        try:
            record = await self._registry.get_session(session_id)
            thresholds = await self._thresholds.set(record, body)
        except InvalidThresholdsError as e:
            return web.json_response({"error": str(e)}, status=400)
        except Exception:
            logger.exception("gateway.thresholds_failed", session_id=session_id)
            return web.json_response(SERVER_ERROR, status=500)
        return web.json_response({"thresholds": thresholds.to_dict()})

    async def _handle_stats(self, request: web.Request) -> web.Response:
        persistent = await self._registry.store_stats()
        if persistent is None:
            return web.json_response(SERVER_ERROR, status=500)
        return web.json_response({
            "persistent": persistent,
            "inMemory": self._registry.session_count(),
            "maxSessions": self._registry.max_sessions,
        })

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        snapshot = self._metrics.snapshot()
        snapshot["llm"] = self._generator.telemetry
        snapshot["sessions"] = {
            "inMemory": self._registry.session_count(),
            "maxSessions": self._registry.max_sessions,
        }
        return web.json_response(snapshot)


# ----------------------------------------------------------------------
# Request parsing
# ----------------------------------------------------------------------


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise BadRequest("Invalid JSON body") from None
    if not isinstance(body, dict):
        raise BadRequest("JSON body must be an object")
    return body


def _optional_mapping(body: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = body.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise BadRequest(f"{key} must be an object")
    return value


def _parse_turn(body: dict[str, Any]) -> TurnRequest:
    session_id = body.get("sessionId")
    message = body.get("message")
    if not isinstance(session_id, str) or not session_id.strip():
        raise BadRequest("sessionId is required")
    if not isinstance(message, str):
        raise BadRequest("message is required")

    ai_name = body.get("aiName")
    if ai_name is not None and not isinstance(ai_name, str):
        raise BadRequest("aiName must be a string")

    try:
        device = DeviceStatus.model_validate(_optional_mapping(body, "deviceStatus") or {})
    except ValidationError as e:
        raise BadRequest(f"Invalid deviceStatus: {e.error_count()} error(s)") from None

    return TurnRequest(
        session_id=session_id,
        message=message,
        device_status=device,
        ai_name=ai_name,
        schooling_levels=_optional_mapping(body, "schoolingLevels"),
        thresholds=_optional_mapping(body, "thresholds"),
    )
