"""Change generator — one completion call per attempt.

The completion capability is injected, so the loop never holds a global
client.  Raw text comes back untouched; parsing belongs to
``response_parser``.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from smith_core.errors import GenerationError

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.1

# (prompt, model, temperature) -> text
CompletionFn = Callable[[str, str, float], Awaitable[str | None]]


class ChangeGenerator:
    """Send a prompt to the model and return its raw text."""

    def __init__(
        self,
        complete: CompletionFn,
        *,
        model: str,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        self._complete = complete
        self.model = model
        self.temperature = temperature

    async def generate(self, prompt: str) -> str:
        """Return the model's raw response for *prompt*.

        Raises
        ------
        GenerationError
            When the completion call fails for any reason.  This aborts the
            whole task; it is never treated as a build failure.
        """
        logger.info("Sending prompt to %s (%d chars)", self.model, len(prompt))
        try:
            text = await self._complete(prompt, self.model, self.temperature)
        except Exception as exc:
            logger.error("Completion call to %s failed: %s", self.model, exc)
            raise GenerationError(f"{type(exc).__name__}: {exc}", model=self.model) from exc
        return text or ""


__all__ = ["ChangeGenerator", "CompletionFn", "DEFAULT_TEMPERATURE"]
