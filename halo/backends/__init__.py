"""Inference backends and model selection."""

from halo.backends.base import GenerationOptions, InferenceBackend
from halo.backends.llama_cpp import LlamaCppBackend
from halo.backends.ollama import OllamaBackend
from halo.backends.selector import BackendSelector


def create_backend(backend_config) -> InferenceBackend:
    """Build the backend named by backend_config.kind."""
    if backend_config.kind == "llama_cpp":
        return LlamaCppBackend(
            model_paths=backend_config.model_paths,
            n_threads=backend_config.llama_threads,
            n_ctx=backend_config.llama_context,
            n_gpu_layers=backend_config.llama_gpu_layers,
        )
    return OllamaBackend(
        base_url=backend_config.base_url,
        list_timeout_sec=backend_config.list_timeout_sec,
    )


__all__ = [
    "BackendSelector",
    "GenerationOptions",
    "InferenceBackend",
    "LlamaCppBackend",
    "OllamaBackend",
    "create_backend",
]
