import logging
import time

import requests

from .base import LLMClient

logger = logging.getLogger(__name__)


class OllamaGenerator(LLMClient):
    """Text generator backed by a local Ollama server."""

    def __init__(self, base_url: str, model: str, timeout: float = 120.0,
                 availability_ttl: float = 30.0, **kwargs):
        super().__init__(**kwargs)
        self.model = model
        self.timeout = timeout
        self.availability_ttl = availability_ttl
        # Accept either the server root or a full /api/... endpoint
        if "/api/" in base_url:
            self._api_root = base_url.rsplit("/api/", 1)[0]
        else:
            self._api_root = base_url.rstrip("/")
        self._available: bool | None = None
        self._checked_at = 0.0

    # ── Capability check ──

    def is_available(self) -> bool:
        now = time.monotonic()
        if self._available is not None and now - self._checked_at < self.availability_ttl:
            return self._available
        try:
            response = requests.get(f"{self._api_root}/api/tags", timeout=2)
            response.raise_for_status()
            names = [m.get("name", "") for m in response.json().get("models", [])]
            self._available = any(
                n == self.model or n.split(":", 1)[0] == self.model for n in names
            )
            if not self._available:
                logger.info("[Ollama] Model %s not installed on %s", self.model, self._api_root)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.debug("[Ollama] Unavailable: %s", e)
            self._available = False
        self._checked_at = now
        return self._available

    # ── Non-streaming generation ──

    def _generate(self, system: str, prompt: str) -> str:
        est_tokens = int(len(prompt.split()) * 1.3)
        logger.debug("[Ollama] Sending ~%d est. tokens", est_tokens)

        payload = {
            "model": self.model,
            "system": system,
            "prompt": prompt,
            "stream": False,
        }
        response = requests.post(f"{self._api_root}/api/generate", json=payload,
                                 timeout=(10, self.timeout))
        response.raise_for_status()
        data = response.json()
        result = data.get("response", "")
        logger.debug("[Ollama] Usage: prompt=%s completion=%s",
                     data.get("prompt_eval_count"), data.get("eval_count"))
        return result
