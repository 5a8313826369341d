"""
Entry point wiring for the mypail companion backend.

build_app_components() turns a MypailConfig into the live object graph. The
MypailServer owns that graph for the life of the process and waits on a
shutdown event that SIGINT/SIGTERM set.
"""

from __future__ import annotations

import asyncio
import logging
import random
import signal
import sys
from dataclasses import dataclass
from typing import Optional

import structlog

from mypail.affect.mood import MoodModel
from mypail.affect.thresholds import ThresholdStore
from mypail.api.generator import TextGenerator
from mypail.classifier import KeywordClassifier
from mypail.config import MypailConfig
from mypail.gateway import GatewayServer
from mypail.memory.session_store import SessionStore
from mypail.metrics import MetricsRegistry
from mypail.orchestrator import TurnOrchestrator
from mypail.registry import SessionRegistry
from mypail.responses import ResponseTable

_logging_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog over standard-library logging.

    Safe to call more than once; subsequent calls are no-ops.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger(__name__)


@dataclass
class AppComponents:
    """The wired object graph for one process."""

    config: MypailConfig
    store: SessionStore
    registry: SessionRegistry
    mood: MoodModel
    classifier: KeywordClassifier
    responses: ResponseTable
    generator: TextGenerator
    metrics: MetricsRegistry
    orchestrator: TurnOrchestrator
    thresholds: ThresholdStore
    gateway: GatewayServer


def build_app_components(
    config: MypailConfig,
    *,
    rng: Optional[random.Random] = None,
    llm_client: object = None,
) -> AppComponents:
    metrics = MetricsRegistry()
    store = SessionStore(
        config.store.sessions_dir,
        max_age=config.store.max_age,
        active_window=config.store.active_window,
    )
    registry = SessionRegistry(
        store,
        config=config.registry,
        emotion_config=config.emotion,
        store_config=config.store,
        rng=rng,
    )
    mood = MoodModel(config.emotion, config.device)
    classifier = KeywordClassifier()
    responses = ResponseTable.load(config.server.responses_path)
    generator = TextGenerator(config.llm, client=llm_client, metrics=metrics)
    orchestrator = TurnOrchestrator(
        registry, mood, classifier, responses, generator, metrics=metrics
    )
    thresholds = ThresholdStore(store, io_timeout=config.store.io_timeout)
    gateway = GatewayServer(
        orchestrator, registry, thresholds, responses, generator, metrics
    )
    return AppComponents(
        config=config,
        store=store,
        registry=registry,
        mood=mood,
        classifier=classifier,
        responses=responses,
        generator=generator,
        metrics=metrics,
        orchestrator=orchestrator,
        thresholds=thresholds,
        gateway=gateway,
    )


class MypailServer:
    """Runs the gateway until a shutdown is requested."""

    def __init__(self, config: MypailConfig) -> None:
        self._config = config
        self._components: Optional[AppComponents] = None
        self._shutdown_event = asyncio.Event()

    async def run(self) -> None:
        self._components = build_app_components(self._config)
        gateway = self._components.gateway
        await gateway.start(self._config.server.host, self._config.server.port)
        try:
            logger.info(
                "server.ready",
                host=self._config.server.host,
                port=self._config.server.port,
            )
            await self._shutdown_event.wait()
        finally:
            await gateway.stop()
            logger.info("server.stopped")

    def request_shutdown(self, reason: str = "requested") -> None:
        logger.info("server.shutdown_requested", reason=reason)
        self._shutdown_event.set()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        """Install SIGINT/SIGTERM handlers for graceful shutdown."""
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(
                    sig, self.request_shutdown, f"signal_{sig.name.lower()}"
                )
            except NotImplementedError:
                pass


def run_server(config: Optional[MypailConfig] = None) -> None:
    """Load config, start the gateway, block until SIGINT/SIGTERM."""
    try:
        config = config or MypailConfig()
    except Exception as e:
        print(f"[mypail] Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.server.log_level)
    server = MypailServer(config)
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    server.install_signal_handlers(loop)
    try:
        loop.run_until_complete(server.run())
    except KeyboardInterrupt:
        pass
    finally:
        loop.close()


if __name__ == "__main__":
    run_server()
