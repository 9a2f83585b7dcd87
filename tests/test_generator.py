"""Tests for smith_core.generator — the completion call wrapper."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from smith_core.errors import GenerationError
from smith_core.generator import ChangeGenerator


@pytest.mark.asyncio
async def test_generate_returns_raw_text():
    complete = AsyncMock(return_value="- Path: a.ts\n- Content:\nx")
    gen = ChangeGenerator(complete, model="gpt-4o")

    assert await gen.generate("prompt") == "- Path: a.ts\n- Content:\nx"
    complete.assert_awaited_once_with("prompt", "gpt-4o", 0.1)


@pytest.mark.asyncio
async def test_none_becomes_empty_string():
    gen = ChangeGenerator(AsyncMock(return_value=None), model="m")
    assert await gen.generate("p") == ""


@pytest.mark.asyncio
async def test_custom_temperature_passed_through():
    complete = AsyncMock(return_value="")
    await ChangeGenerator(complete, model="m", temperature=0.7).generate("p")
    assert complete.await_args.args == ("p", "m", 0.7)


@pytest.mark.asyncio
async def test_failure_wrapped_in_generation_error():
    complete = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
    gen = ChangeGenerator(complete, model="gpt-4o")

    with pytest.raises(GenerationError) as exc_info:
        await gen.generate("p")

    err = exc_info.value
    assert "connection refused" in str(err)
    assert err.model == "gpt-4o"
    assert err.to_dict()["error"] == "GenerationError"
    assert isinstance(err.__cause__, httpx.ConnectError)
