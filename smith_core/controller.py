"""Retry controller — the generate → apply → verify state machine.

Each attempt gathers repository context, builds a prompt, asks the model for
a complete change set, writes it to the working tree, and runs the
verification stages.  A failing stage ends the attempt; its error text is
embedded verbatim in the next attempt's description.  The loop stops at
the first clean attempt or after ``max_retries`` attempts.

States::

    ATTEMPTING(1) ─ok──────────────▶ SUCCEEDED
         │ fail
         ▼
    ATTEMPTING(n) ─fail, n = max──▶ EXHAUSTED_RETRIES
         │
         └─ cancel signal set ───▶ CANCELLED (raises LoopCancelled)

Exhaustion is not an error: the caller still receives the iteration log
and the aggregate change set.  Build and test failures never escape as
exceptions.  ``GenerationError`` and unexpected stage exceptions do.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from smith_core.applier import MANIFEST_FILES, apply_changes
from smith_core.context import ContextGatherer
from smith_core.contracts import Attempt, BuildOutcome, LoopResult, LoopState, Task
from smith_core.errors import LoopCancelled
from smith_core.generator import ChangeGenerator
from smith_core.prompt_builder import MAX_CONTEXT_CHARS, build_prompt, build_retry_description
from smith_core.verifier import VerificationStage

logger = logging.getLogger(__name__)

MAX_RETRIES = 3

AttemptHook = Callable[[Attempt], Awaitable[None]]


class RetryController:
    """Drive one task's attempts to a terminal state."""

    def __init__(
        self,
        gatherer: ContextGatherer,
        generator: ChangeGenerator,
        stages: Sequence[VerificationStage],
        *,
        max_retries: int = MAX_RETRIES,
        max_context_chars: int = MAX_CONTEXT_CHARS,
        manifest_files: frozenset[str] = MANIFEST_FILES,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.gatherer = gatherer
        self.generator = generator
        self.stages = list(stages)
        self.max_retries = max_retries
        self.max_context_chars = max_context_chars
        self.manifest_files = manifest_files

    async def _verify(self, working_dir: str, changed: list[str]) -> BuildOutcome:
        """Run stages in order; the first failing stage decides the outcome."""
        outcome = BuildOutcome.ok()
        for stage in self.stages:
            outcome = await stage.verify(working_dir, changed)
            if not outcome.success:
                return outcome
        return outcome

    async def run_loop(
        self,
        task: Task,
        working_dir: str | Path,
        *,
        cancel: asyncio.Event | None = None,
        on_attempt: AttemptHook | None = None,
    ) -> LoopResult:
        """Run attempts until success or ``max_retries``.

        Raises
        ------
        GenerationError
            When the completion call fails (fatal, not retried).
        LoopCancelled
            When *cancel* is set before an attempt starts.
        """
        workdir = str(working_dir)
        iterations: list[Attempt] = []
        all_changed: dict[str, None] = {}
        description = task.description
        state = LoopState.ATTEMPTING

        logger.info("Starting iterative code generation for %s", task.issue_key)

        for attempt_number in range(1, self.max_retries + 1):
            if cancel is not None and cancel.is_set():
                logger.warning("Cancelled before attempt %d", attempt_number)
                raise LoopCancelled(len(iterations), iterations)

            logger.info("Attempt %d/%d", attempt_number, self.max_retries)

            context = await self.gatherer.gather(workdir, f"{task.summary}\n\n{description}")
            prompt = build_prompt(
                context, task.summary, description,
                max_context_chars=self.max_context_chars,
            )
            logger.info("Prompt length %d", len(prompt))

            raw_response = await self.generator.generate(prompt)
            logger.info("Model response length %d", len(raw_response))

            changed = await apply_changes(
                workdir, raw_response, manifest_files=self.manifest_files,
            )
            logger.info("Changed files: %s", changed)
            for path in changed:
                all_changed.setdefault(path, None)

            outcome = await self._verify(workdir, changed)

            build_error: str | None = None
            test_failure: str | None = None
            if not outcome.success:
                failure = outcome.error_output or "Verification failed with no output"
                if outcome.kind == "test":
                    test_failure = failure
                    logger.error("Tests failed on attempt %d", attempt_number)
                else:
                    build_error = failure
                    logger.error("Build failed on attempt %d", attempt_number)

            attempt = Attempt(
                attempt_number=attempt_number,
                prompt=prompt,
                raw_response=raw_response,
                build_error=build_error,
                test_failure=test_failure,
                changed_paths=changed,
            )
            iterations.append(attempt)
            if on_attempt is not None:
                await on_attempt(attempt)

            if not attempt.failed:
                state = LoopState.SUCCEEDED
                logger.info("Attempt %d succeeded", attempt_number)
                break

            description = build_retry_description(attempt.failure_text or "")
        else:
            state = LoopState.EXHAUSTED_RETRIES
            logger.warning("All %d attempts failed verification", self.max_retries)

        return LoopResult(
            state=state,
            changed_files=list(all_changed),
            iterations=iterations,
        )


__all__ = ["MAX_RETRIES", "AttemptHook", "RetryController"]
