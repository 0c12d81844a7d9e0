import logging
import random
import time
from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from ..errors import DocSyncError

logger = logging.getLogger(__name__)

PERSONA_PROMPTS = {
    "developer": (
        "You document source code for software developers. Be precise and "
        "technical: mention inputs, outputs, side effects and notable "
        "implementation details."
    ),
    "architect": (
        "You document source code for software architects. Focus on the "
        "component's role, its layer, its collaborators and the design "
        "patterns it uses."
    ),
    "product-manager": (
        "You document source code for product managers. Explain the "
        "user-facing capability or business value this code enables, "
        "avoiding implementation jargon."
    ),
    "business-analyst": (
        "You document source code for business analysts who are new to the "
        "codebase. Use plain language and explain how this piece fits into "
        "the overall system."
    ),
}


class LLMError(DocSyncError):
    """Raised when all LLM retries are exhausted."""


@runtime_checkable
class TextGenerator(Protocol):
    """Text-generation collaborator with an up-front capability check."""

    def is_available(self) -> bool:
        ...

    def generate(self, prompt: str, persona: str = "developer") -> str:
        ...


class LLMClient(ABC):

    def __init__(self, max_retries: int = 3, retry_delay: float = 2.0):
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

    # ── Public entry point ──

    def generate(self, prompt: str, persona: str = "developer") -> str:
        """Generate a response with automatic retry and exponential backoff.

        Raises :class:`LLMError` after all retries are exhausted.
        """
        system = PERSONA_PROMPTS.get(persona, PERSONA_PROMPTS["developer"])
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                result = self._generate(system, prompt)
                if result and result.strip():
                    return result.strip()
                last_error = LLMError("empty response")
                logger.warning(
                    "[LLM] Empty response on attempt %d/%d", attempt, self.max_retries)
            except Exception as e:
                last_error = e
                logger.warning(
                    "[LLM] Error on attempt %d/%d: %s", attempt, self.max_retries, e)

            if attempt < self.max_retries:
                # Jittered exponential backoff
                wait = self.retry_delay * (2 ** (attempt - 1))
                jitter = wait * 0.1 * random.random()

                # Special handling for 429: wait longer
                if "429" in str(last_error):
                    wait *= 2
                    logger.info("[LLM] Rate limit detected (429). Backing off for %.1fs", wait)

                time.sleep(wait + jitter)

        raise LLMError(
            f"LLM failed after {self.max_retries} retries: {last_error}")

    # ── Subclass hooks ──

    @abstractmethod
    def is_available(self) -> bool:
        """Cheap reachability check; must not raise."""

    @abstractmethod
    def _generate(self, system: str, prompt: str) -> str:
        """Single non-streaming generation call."""
