"""Tests for smith_core.controller — the generate → apply → verify loop.

Scenarios use the real parser, applier and prompt builder against a
``tmp_path`` working tree.  Only the model, the retriever and the build
are scripted.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from smith_core.context import NO_FILES_SENTINEL, ContextGatherer
from smith_core.contracts import BuildOutcome, LoopState, Task
from smith_core.controller import RetryController
from smith_core.errors import GenerationError, LoopCancelled
from smith_core.generator import ChangeGenerator
from smith_core.verifier import TEST_FAILURE_PREFIX
from tests.conftest import make_response

TS2307 = "src/index.ts(1,21): error TS2307: Cannot find module 'express'"

HEALTH_RESPONSE = make_response({
    "src/health.ts": "export const health = () => ({ status: 'ok' });",
})


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ScriptedModel:
    """Completion callable returning canned responses and recording prompts."""

    def __init__(self, *responses: str):
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def __call__(self, prompt: str, model: str, temperature: float) -> str:
        self.prompts.append(prompt)
        return self.responses[min(len(self.prompts), len(self.responses)) - 1]


class ScriptedStage:
    """Verification stage returning canned outcomes in order."""

    name = "build"

    def __init__(self, *outcomes: BuildOutcome):
        self.outcomes = list(outcomes)
        self.calls: list[list[str]] = []

    async def verify(self, working_dir: str, changed_paths: list[str]) -> BuildOutcome:
        self.calls.append(list(changed_paths))
        return self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]


def _gatherer() -> ContextGatherer:
    retriever = AsyncMock()
    retriever.index.return_value = "collection"
    retriever.query.return_value = []
    return ContextGatherer(retriever)


def _controller(model: ScriptedModel, *stages, max_retries: int = 3) -> RetryController:
    return RetryController(
        _gatherer(),
        ChangeGenerator(model, model="test-model"),
        list(stages),
        max_retries=max_retries,
    )


@pytest.fixture
def task() -> Task:
    return Task(
        issue_key="PROJ-1",
        summary="Add health endpoint",
        description="Expose GET /health returning {status: 'ok'}",
        repository_url="https://example.com/acme/api.git",
    )


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    @pytest.mark.asyncio
    async def test_success_first_try(self, task, tmp_path):
        model = ScriptedModel(HEALTH_RESPONSE)
        result = await _controller(model, ScriptedStage(BuildOutcome.ok())).run_loop(task, tmp_path)

        assert result.state is LoopState.SUCCEEDED
        assert result.succeeded
        assert result.changed_files == ["src/health.ts"]
        assert len(result.iterations) == 1
        first = result.iterations[0]
        assert first.attempt_number == 1
        assert first.build_error is None and first.test_failure is None
        assert (tmp_path / "src" / "health.ts").exists()

    @pytest.mark.asyncio
    async def test_retry_then_success(self, task, tmp_path):
        model = ScriptedModel(
            make_response({"src/index.ts": "import express from 'express';"}),
            make_response({
                "package.json": json.dumps({"dependencies": {"express": "^4.18.0"}}),
                "src/index.ts": "import express from 'express';\nexpress();",
            }),
        )
        stage = ScriptedStage(BuildOutcome.failed(TS2307), BuildOutcome.ok())
        result = await _controller(model, stage).run_loop(task, tmp_path)

        assert result.state is LoopState.SUCCEEDED
        assert len(result.iterations) == 2
        assert result.iterations[0].build_error == TS2307
        assert result.iterations[1].build_error is None
        assert "Cannot find module 'express'" in model.prompts[1]
        assert "Previous code generated errors:" in model.prompts[1]
        assert "Cannot find module" not in model.prompts[0]
        assert result.changed_files == ["src/index.ts", "package.json"]

    @pytest.mark.asyncio
    async def test_exhaustion(self, task, tmp_path):
        model = ScriptedModel(HEALTH_RESPONSE)
        stage = ScriptedStage(BuildOutcome.failed("error TS1005: ';' expected"))
        result = await _controller(model, stage).run_loop(task, tmp_path)

        assert result.state is LoopState.EXHAUSTED_RETRIES
        assert not result.succeeded
        assert len(result.iterations) == 3
        assert all(a.build_error for a in result.iterations)
        assert [a.attempt_number for a in result.iterations] == [1, 2, 3]
        assert result.changed_files == ["src/health.ts"]


# ---------------------------------------------------------------------------
# Loop mechanics
# ---------------------------------------------------------------------------


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_iterations_bounded_by_max_retries(self, task, tmp_path):
        model = ScriptedModel(HEALTH_RESPONSE)
        stage = ScriptedStage(BuildOutcome.failed("boom"))
        result = await _controller(model, stage, max_retries=5).run_loop(task, tmp_path)
        assert len(result.iterations) == 5
        assert len(model.prompts) == 5

    def test_max_retries_must_be_positive(self):
        with pytest.raises(ValueError):
            _controller(ScriptedModel(""), max_retries=0)

    @pytest.mark.asyncio
    async def test_first_prompt_uses_original_description(self, task, tmp_path):
        model = ScriptedModel(HEALTH_RESPONSE)
        await _controller(model, ScriptedStage(BuildOutcome.ok())).run_loop(task, tmp_path)
        assert task.description in model.prompts[0]
        assert NO_FILES_SENTINEL in model.prompts[0]

    @pytest.mark.asyncio
    async def test_empty_response_still_verifies(self, task, tmp_path):
        model = ScriptedModel("")
        stage = ScriptedStage(BuildOutcome.ok())
        result = await _controller(model, stage).run_loop(task, tmp_path)
        assert result.succeeded
        assert result.changed_files == []
        assert stage.calls == [[]]

    @pytest.mark.asyncio
    async def test_test_failure_recorded_separately(self, task, tmp_path):
        model = ScriptedModel(HEALTH_RESPONSE)
        build_stage = ScriptedStage(BuildOutcome.ok())
        test_stage = ScriptedStage(
            BuildOutcome.failed(f"{TEST_FAILURE_PREFIX}: 1 failing", kind="test"),
            BuildOutcome.ok(kind="test"),
        )
        result = await _controller(model, build_stage, test_stage).run_loop(task, tmp_path)
        first = result.iterations[0]
        assert first.build_error is None
        assert first.test_failure.startswith(TEST_FAILURE_PREFIX)
        assert f"{TEST_FAILURE_PREFIX}: 1 failing" in model.prompts[1]

    @pytest.mark.asyncio
    async def test_first_failing_stage_stops_the_rest(self, task, tmp_path):
        model = ScriptedModel(HEALTH_RESPONSE)
        build_stage = ScriptedStage(BuildOutcome.failed("boom"))
        test_stage = ScriptedStage(BuildOutcome.ok(kind="test"))
        await _controller(model, build_stage, test_stage, max_retries=1).run_loop(task, tmp_path)
        assert test_stage.calls == []

    @pytest.mark.asyncio
    async def test_generation_error_propagates(self, task, tmp_path):
        async def broken(prompt, model, temperature):
            raise ConnectionError("upstream down")

        controller = RetryController(
            _gatherer(), ChangeGenerator(broken, model="m"), [ScriptedStage(BuildOutcome.ok())],
        )
        with pytest.raises(GenerationError):
            await controller.run_loop(task, tmp_path)

    @pytest.mark.asyncio
    async def test_cancel_between_attempts(self, task, tmp_path):
        cancel = asyncio.Event()
        model = ScriptedModel(HEALTH_RESPONSE)
        stage = ScriptedStage(BuildOutcome.failed("boom"))

        async def cancel_after_first(attempt):
            cancel.set()

        with pytest.raises(LoopCancelled) as exc_info:
            await _controller(model, stage).run_loop(
                task, tmp_path, cancel=cancel, on_attempt=cancel_after_first,
            )
        assert exc_info.value.attempts_completed == 1
        assert len(exc_info.value.iterations) == 1
        assert len(model.prompts) == 1
