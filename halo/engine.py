"""
Halo Guardian service engine.

Wires configuration, the inference backend, the Reflex Controller and the
speech collaborators together, and exposes a small aiohttp surface for
health probes, Prometheus metrics and remote control (toggle, clear alerts,
simulate attack).
"""
from __future__ import annotations

import asyncio
import signal
from typing import Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .backends import BackendSelector, InferenceBackend, create_backend
from .config import AppConfig, get_log_level, load_config, validate_config
from .core.alert_log import AlertLog
from .core.classifier import SignalClassifier
from .core.models import BackendState, ModelCandidate
from .core.reflex_controller import ReflexController
from .logging_config import configure_logging, get_logger
from .speech import (
    CaptureOptions,
    ConsoleCapture,
    LoggingSpeechOutput,
    NullOverlay,
    Overlay,
    SpeechCapture,
    SpeechOutput,
)

logger = get_logger(__name__)


class HaloEngine:
    """Process-level owner of the guardian."""

    def __init__(
        self,
        config: AppConfig,
        *,
        backend: Optional[InferenceBackend] = None,
        capture: Optional[SpeechCapture] = None,
        speech: Optional[SpeechOutput] = None,
        overlay: Optional[Overlay] = None,
    ):
        self.config = config
        self.backend = backend or create_backend(config.backend)
        self.selector = BackendSelector(self.backend)
        self.classifier = SignalClassifier(self.selector, config.classifier)
        self.capture = capture or ConsoleCapture()
        self.speech = speech or LoggingSpeechOutput(
            speech_duration_sec=config.speech.simulated_speech_sec,
            language=config.speech.language,
        )
        self.controller = ReflexController(
            self.selector,
            self.classifier,
            self.capture,
            self.speech,
            alert_log=AlertLog(config.reflex.alert_capacity),
            overlay=overlay or NullOverlay(),
            config=config.reflex,
            min_transcript_chars=config.classifier.min_transcript_chars,
            capture_options=CaptureOptions(language=config.speech.language),
        )
        self._health_runner: Optional[web.AppRunner] = None

    async def start(self) -> BackendState:
        await self.backend.start()
        if self.config.health.enabled:
            await self._start_health_server()

        candidates = ModelCandidate.from_ids(self.config.backend.candidates)
        state = await self.selector.select(candidates, probe_timeout=self.config.backend.probe_timeout_sec)
        if not state.is_ready:
            logger.error("❌ No model available; guardian stays inactive", reason=state.reason)
            return state

        logger.info("✅ Guardian ready", model=state.model_id, backend=self.backend.name)
        if self.config.reflex.auto_activate:
            await self.controller.toggle()
        return state

    async def stop(self) -> None:
        await self.controller.shutdown()
        close = getattr(self.capture, "close", None)
        if close is not None:
            await close()
        await self.backend.stop()
        if self._health_runner is not None:
            await self._health_runner.cleanup()
            self._health_runner = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/live', self._live_handler)
        app.router.add_get('/ready', self._ready_handler)
        app.router.add_get('/health', self._health_handler)
        app.router.add_get('/metrics', self._metrics_handler)
        app.router.add_post('/toggle', self._toggle_handler)
        app.router.add_post('/alerts/clear', self._clear_alerts_handler)
        app.router.add_post('/simulate', self._simulate_handler)
        return app

    async def _start_health_server(self) -> None:
        """Start aiohttp health/metrics server (defaults to 127.0.0.1:15000)."""
        host = self.config.health.host
        port = self.config.health.port
        try:
            runner = web.AppRunner(self.build_app())
            await runner.setup()
            site = web.TCPSite(runner, host, port)
            await site.start()
            self._health_runner = runner
            logger.info("Health endpoint started", host=host, port=port)
        except OSError as exc:
            logger.error("Failed to start health endpoint", host=host, port=port, error=str(exc))

    async def _live_handler(self, request):
        return web.Response(text="ok", status=200)

    async def _ready_handler(self, request):
        """200 only when a model has been warmed up."""
        state = self.selector.state
        return web.json_response(
            {"ready": state.is_ready, "backend_status": state.status.value, "model": state.model_id},
            status=200 if state.is_ready else 503,
        )

    async def _health_handler(self, request):
        return web.json_response(self.controller.snapshot())

    async def _metrics_handler(self, request):
        data = generate_latest()
        # aiohttp forbids 'charset=' inside content_type arg; pass full header via headers.
        return web.Response(body=data, headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def _toggle_handler(self, request):
        state = await self.controller.toggle()
        return web.json_response({"state": state.value, "status": self.controller.status})

    async def _clear_alerts_handler(self, request):
        self.controller.clear_alerts()
        return web.json_response({"alerts": 0})

    async def _simulate_handler(self, request):
        result = await self.controller.simulate_attack()
        if result is None:
            return web.json_response(
                {"error": "Guardian is not listening", "state": self.controller.state.value},
                status=409,
            )
        return web.json_response({"result": result.to_dict(), "state": self.controller.state.value})


async def main():
    config = load_config()
    configure_logging(
        log_level=get_log_level(config),
        log_to_file=config.logging.to_file,
        log_file_path=config.logging.file_path,
    )

    errors, warnings = validate_config(config)
    if errors:
        logger.error("❌ Configuration validation FAILED", errors=errors, warnings=warnings)
        raise RuntimeError(f"Configuration errors: {errors}")
    if warnings:
        logger.warning("⚠️  Configuration warnings", warnings=warnings)

    engine = HaloEngine(config)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_event.set)

    await engine.start()
    await shutdown_event.wait()
    await engine.stop()


def run() -> None:
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        logger.info("Halo Guardian has shut down.")


if __name__ == "__main__":
    run()
