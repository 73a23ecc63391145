"""
On-device inference through llama-cpp-python.

Models are GGUF files mapped by id in backend.model_paths. A model is loaded
on first use and kept; inference runs in a worker thread under a lock
because llama-cpp is NOT thread-safe and will crash on concurrent calls.
"""
from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, Optional, Set

from ..errors import BackendTimeout, ModelError
from ..logging_config import get_logger
from .base import GenerationOptions, InferenceBackend

logger = get_logger(__name__)


def _load_llama_class():
    try:
        from llama_cpp import Llama
    except ImportError as e:
        raise ModelError(
            "llama_cpp backend requested but llama-cpp-python is not installed "
            "(pip install 'halo-guardian[llama]')"
        ) from e
    return Llama


class LlamaCppBackend(InferenceBackend):
    """In-process GGUF models."""

    name = "llama_cpp"

    def __init__(
        self,
        model_paths: Dict[str, str],
        n_threads: int = 4,
        n_ctx: int = 2048,
        n_gpu_layers: int = 0,
    ):
        self._model_paths = dict(model_paths or {})
        self._n_threads = n_threads
        self._n_ctx = n_ctx
        self._n_gpu_layers = n_gpu_layers
        self._models: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def stop(self) -> None:
        self._models.clear()
        logger.debug("llama.cpp backend stopped")

    async def list_models(self) -> Set[str]:
        available = {mid for mid, path in self._model_paths.items() if os.path.isfile(path)}
        missing = sorted(set(self._model_paths) - available)
        if missing:
            logger.warning("GGUF model files not found", models=missing)
        return available

    def _get_or_load(self, model_id: str) -> Any:
        model = self._models.get(model_id)
        if model is not None:
            return model
        path = self._model_paths.get(model_id)
        if not path:
            raise ModelError(f"No model path configured for {model_id}", model=model_id)
        Llama = _load_llama_class()
        logger.info("Loading GGUF model", model=model_id, path=path, threads=self._n_threads)
        try:
            model = Llama(
                model_path=path,
                n_ctx=self._n_ctx,
                n_threads=self._n_threads,
                n_gpu_layers=self._n_gpu_layers,
                verbose=False,
            )
        except (ValueError, RuntimeError, OSError) as e:
            raise ModelError(f"Failed to load {model_id}: {e}", model=model_id) from e
        self._models[model_id] = model
        return model

    def _run(self, model_id: str, prompt: str, options: GenerationOptions) -> str:
        model = self._get_or_load(model_id)
        try:
            output = model(
                prompt,
                max_tokens=options.max_output_tokens,
                temperature=options.temperature,
                echo=False,
            )
        except (ValueError, RuntimeError) as e:
            raise ModelError(f"Inference failed: {e}", model=model_id) from e
        choices = output.get("choices", []) if isinstance(output, dict) else []
        if not choices:
            raise ModelError("Model returned no choices", model=model_id)
        return str(choices[0].get("text", "")).strip()

    async def generate(self, model_id: str, prompt: str, options: GenerationOptions) -> str:
        async with self._lock:
            loop = asyncio.get_running_loop()
            started = loop.time()
            try:
                text = await asyncio.wait_for(
                    asyncio.to_thread(self._run, model_id, prompt, options),
                    timeout=options.timeout_sec,
                )
            except asyncio.TimeoutError:
                # The worker thread cannot be interrupted; it finishes in the background
                raise BackendTimeout(
                    f"llama.cpp generate exceeded {options.timeout_sec}s", model=model_id
                )
            logger.debug(
                "llama.cpp completion",
                model=model_id,
                latency_ms=round((loop.time() - started) * 1000.0, 2),
            )
            return text
