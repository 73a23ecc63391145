"""
Ollama backend for self-hosted local language models.

Talks to Ollama's /api/tags and /api/generate endpoints. No API key is
required; the server must be reachable from this process.

SETUP:
1. Install Ollama: https://ollama.ai
2. Pull a model: ollama pull tinyllama
3. Point backend.base_url (or OLLAMA_BASE_URL) at http://<host>:11434
"""
from __future__ import annotations

import asyncio
from typing import Optional, Set
from urllib.parse import urlparse

import aiohttp

from ..errors import BackendNetworkError, BackendTimeout, ModelError
from ..logging_config import get_logger
from .base import GenerationOptions, InferenceBackend

logger = get_logger(__name__)

_DEFAULT_BASE_URL = "http://localhost:11434"


def _strip_think(text: str) -> str:
    """Drop <think>...</think> blocks some reasoning models emit."""
    if "<think>" not in text:
        return text
    parts = text.split("</think>")
    if len(parts) > 1:
        return parts[-1].strip()
    return text.split("<think>")[0].strip()


class OllamaBackend(InferenceBackend):
    """Inference over HTTP against a local Ollama instance."""

    name = "ollama"

    def __init__(self, base_url: str = _DEFAULT_BASE_URL, list_timeout_sec: float = 10.0):
        self._base_url = (base_url or _DEFAULT_BASE_URL).rstrip("/")
        self._list_timeout_sec = list_timeout_sec
        self._session: Optional[aiohttp.ClientSession] = None
        self._warn_if_openai_url()

    @property
    def base_url(self) -> str:
        return self._base_url

    def _warn_if_openai_url(self) -> None:
        # A common misconfiguration: an OpenAI-style URL yields 404s on /api/*
        parsed = urlparse(self._base_url)
        host = (parsed.hostname or "").lower()
        path = (parsed.path or "").rstrip("/")
        if host == "api.openai.com" or path.endswith("/v1"):
            logger.warning(
                "Ollama base_url looks like an OpenAI endpoint; /api/generate will 404",
                base_url=self._base_url,
                hint="Set base_url to http://<ollama-host>:11434",
            )

    async def start(self) -> None:
        await self._ensure_session()
        logger.info("Ollama backend initialized", base_url=self._base_url)

    async def stop(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        logger.debug("Ollama backend stopped")

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def list_models(self) -> Set[str]:
        session = await self._ensure_session()
        url = f"{self._base_url}/api/tags"
        try:
            timeout = aiohttp.ClientTimeout(total=self._list_timeout_sec)
            async with session.get(url, timeout=timeout) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise ModelError(
                        f"Ollama /api/tags returned status {response.status}: {body[:200]}",
                        status=response.status,
                    )
                data = await response.json()
        except asyncio.TimeoutError:
            raise BackendTimeout(f"Timed out listing models at {url}")
        except aiohttp.ClientError as e:
            raise BackendNetworkError(f"Cannot connect to Ollama at {self._base_url}: {e}")
        except ValueError as e:
            raise ModelError(f"Ollama /api/tags returned invalid JSON: {e}")

        if not isinstance(data, dict):
            raise ModelError(f"Ollama /api/tags returned {type(data).__name__}, expected an object")
        models = data.get("models") or []
        if not isinstance(models, list):
            raise ModelError("Ollama /api/tags 'models' is not a list")
        names = {m["name"] for m in models if isinstance(m, dict) and isinstance(m.get("name"), str) and m["name"]}
        logger.debug("Ollama models listed", count=len(names), models=sorted(names)[:10])
        return names

    async def generate(self, model_id: str, prompt: str, options: GenerationOptions) -> str:
        session = await self._ensure_session()
        url = f"{self._base_url}/api/generate"
        payload = {
            "model": model_id,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": options.temperature,
                "num_predict": options.max_output_tokens,
            },
        }
        try:
            timeout = aiohttp.ClientTimeout(total=options.timeout_sec)
            async with session.post(url, json=payload, timeout=timeout) as response:
                if response.status >= 400:
                    body = await response.text()
                    logger.error(
                        "Ollama API error",
                        model=model_id,
                        status=response.status,
                        body_preview=body[:200],
                    )
                    raise ModelError(
                        f"Ollama returned status {response.status}: {body[:200]}",
                        model=model_id,
                        status=response.status,
                    )
                data = await response.json()
        except asyncio.TimeoutError:
            raise BackendTimeout(
                f"Ollama generate exceeded {options.timeout_sec}s", model=model_id
            )
        except aiohttp.ClientError as e:
            raise BackendNetworkError(f"Ollama request failed: {e}", model=model_id)
        except ValueError as e:
            raise ModelError(f"Ollama returned invalid JSON: {e}", model=model_id)

        if not isinstance(data, dict):
            raise ModelError(
                f"Ollama /api/generate returned {type(data).__name__}, expected an object", model=model_id
            )
        text = str(data.get("response") or "").strip()
        return _strip_think(text)
