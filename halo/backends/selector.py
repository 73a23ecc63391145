"""
Backend Selector: pick and warm up the first responsive model.

The active model id lives here and nowhere else. Selection is sequential
and first-success-wins; a probe that fails or times out moves on to the
next candidate and is never retried.
"""
from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from prometheus_client import Counter

from ..errors import BackendError, BackendUnavailable
from ..core.models import BackendState, BackendStatus, ModelCandidate
from ..logging_config import get_logger
from .base import GenerationOptions, InferenceBackend

logger = get_logger(__name__)

_SELECTION_OUTCOMES = Counter(
    "halo_backend_selection_total",
    "Backend selection outcomes",
    labelnames=("outcome",),
)
_PROBE_FAILURES = Counter(
    "halo_backend_probe_failures_total",
    "Warmup probes that failed or timed out",
    labelnames=("model",),
)

WARMUP_PROMPT = "hi"
DEFAULT_PROBE_TIMEOUT_SEC = 30.0


class BackendSelector:
    """Owns the backend selection lifecycle and the active model id."""

    def __init__(self, backend: InferenceBackend):
        self._backend = backend
        self._state = BackendState()
        self._lock = asyncio.Lock()

    @property
    def backend(self) -> InferenceBackend:
        return self._backend

    @property
    def state(self) -> BackendState:
        return self._state

    @property
    def active_model(self) -> Optional[str]:
        return self._state.model_id if self._state.is_ready else None

    def require_active_model(self) -> str:
        """Return the active model id or raise BackendUnavailable."""
        if not self._state.is_ready:
            raise BackendUnavailable(self._state.reason or "No model loaded")
        return self._state.model_id

    async def select(
        self,
        candidates: Sequence[ModelCandidate],
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT_SEC,
    ) -> BackendState:
        """Warm up the highest-priority available candidate.

        Never raises; the outcome is READY(model) or UNAVAILABLE.
        """
        if self._lock.locked():
            logger.warning("Backend selection already in progress; ignoring request")
            return self._state

        async with self._lock:
            self._state = BackendState(status=BackendStatus.PROBING)
            self._state = await self._select(candidates, probe_timeout)
            _SELECTION_OUTCOMES.labels(outcome=self._state.status.value).inc()
            return self._state

    async def _select(self, candidates: Sequence[ModelCandidate], probe_timeout: float) -> BackendState:
        try:
            available = await self._backend.list_models()
        except BackendError as e:
            logger.error("Inference service unreachable", backend=self._backend.name, error=str(e))
            return BackendState.unavailable(f"Inference service unreachable: {e}")
        except Exception as e:
            logger.error("Model listing failed", backend=self._backend.name, error=str(e), exc_info=True)
            return BackendState.unavailable(f"Model listing failed: {e}")

        logger.info("Available models", backend=self._backend.name, models=sorted(available))

        options = GenerationOptions(temperature=0.0, max_output_tokens=1, timeout_sec=probe_timeout)
        for candidate in sorted(candidates, key=lambda c: c.priority):
            if candidate.model_id not in available:
                continue
            logger.info("Warming up model", model=candidate.model_id, timeout_sec=probe_timeout)
            try:
                # wait_for bounds backends whose own timeout handling is looser
                await asyncio.wait_for(
                    self._backend.generate(candidate.model_id, WARMUP_PROMPT, options),
                    timeout=probe_timeout,
                )
            except asyncio.TimeoutError:
                _PROBE_FAILURES.labels(model=candidate.model_id).inc()
                logger.warning("Warmup timed out", model=candidate.model_id)
                continue
            except BackendError as e:
                _PROBE_FAILURES.labels(model=candidate.model_id).inc()
                logger.warning("Warmup failed", model=candidate.model_id, error=str(e))
                continue
            except Exception as e:
                _PROBE_FAILURES.labels(model=candidate.model_id).inc()
                logger.error("Warmup raised unexpectedly", model=candidate.model_id, error=str(e), exc_info=True)
                continue

            logger.info("✅ Model ready", model=candidate.model_id)
            return BackendState.ready(candidate.model_id)

        logger.error(
            "No model could be loaded",
            candidates=[c.model_id for c in candidates],
            available=sorted(available),
        )
        return BackendState.unavailable("No candidate model could be warmed up")

    def mark_unavailable(self, reason: str) -> None:
        """Drop a READY model after persistent failure."""
        if self._state.is_ready:
            logger.warning("Active model marked unavailable", model=self._state.model_id, reason=reason)
            self._state = BackendState.unavailable(reason)
