"""LLM client -- multi-provider chat and embedding wrapper (OpenAI + Anthropic)."""

import asyncio
import logging

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for LLM API calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=300.0)
    return _client


async def close_client() -> None:
    """Close the shared LLM HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None

# ---------------------------------------------------------------------------
# Retry configuration
# ---------------------------------------------------------------------------

MAX_RETRIES = 4
RETRY_BACKOFF_BASE = 2.0  # seconds, exponential: 2, 4, 8, 16
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 529})


def _compute_wait(exc: httpx.HTTPStatusError | None, attempt: int) -> float:
    """Return seconds to wait before retrying.

    Prefers the ``retry-after`` header for 429s. Falls back to exponential
    backoff capped at 90 seconds.
    """
    if exc is not None and exc.response is not None:
        retry_after = exc.response.headers.get("retry-after")
        if retry_after:
            try:
                return min(float(retry_after), 120.0)
            except (ValueError, TypeError):
                pass
    return min(RETRY_BACKOFF_BASE ** (attempt + 1), 90.0)


async def _retry_on_transient(
    coro_factory,
    *,
    max_retries: int = MAX_RETRIES,
    backoff_base: float = RETRY_BACKOFF_BASE,
):
    """Retry a coroutine factory on transient HTTP / timeout errors.

    ``coro_factory`` is a zero-arg callable that returns a new awaitable each
    time (so we can retry fresh).  Only transport-level trouble and the
    status codes in ``_RETRYABLE_STATUS_CODES`` are retried; anything else
    propagates on the first failure.
    """
    last_exc: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            last_exc = exc
            if attempt < max_retries:
                wait = min(backoff_base ** (attempt + 1), 90.0)
                logger.warning(
                    "LLM request %s (attempt %d/%d), retrying in %.1fs",
                    type(exc).__name__, attempt + 1, max_retries + 1, wait,
                )
                await asyncio.sleep(wait)
            else:
                raise
        except httpx.HTTPStatusError as exc:
            last_exc = exc
            if exc.response.status_code in _RETRYABLE_STATUS_CODES and attempt < max_retries:
                wait = _compute_wait(exc, attempt)
                logger.warning(
                    "LLM request %d (attempt %d/%d), retrying in %.1fs",
                    exc.response.status_code, attempt + 1, max_retries + 1, wait,
                )
                await asyncio.sleep(wait)
            else:
                raise
    raise last_exc  # type: ignore[misc]  # pragma: no cover


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("error", {}).get("message", response.text)
    except ValueError:
        return response.text

# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"


def _anthropic_headers(api_key: str) -> dict:
    """Return standard Anthropic API headers."""
    return {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_API_VERSION,
        "Content-Type": "application/json",
    }


async def chat_anthropic(
    api_key: str,
    model: str,
    messages: list[dict],
    *,
    system_prompt: str = "",
    max_tokens: int = 2048,
    temperature: float | None = None,
) -> dict:
    """Send a chat request to the Anthropic Messages API.

    Returns ``{"text": ..., "usage": ..., "stop_reason": ...}``.
    """
    body: dict = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": messages,
    }
    if system_prompt:
        body["system"] = system_prompt
    if temperature is not None:
        body["temperature"] = temperature

    async def _call():
        client = _get_client()
        response = await client.post(
            ANTHROPIC_MESSAGES_URL,
            headers=_anthropic_headers(api_key),
            json=body,
        )
        if response.status_code in _RETRYABLE_STATUS_CODES:
            response.raise_for_status()
        if response.status_code >= 400:
            raise ValueError(
                f"Anthropic API {response.status_code}: {_error_message(response)}"
            )

        data = response.json()
        usage = data.get("usage", {})
        text_parts = [
            block["text"]
            for block in data.get("content", [])
            if block.get("type") == "text"
        ]
        if not text_parts:
            raise ValueError("No text block in Anthropic API response")

        return {
            "text": "\n".join(text_parts),
            "usage": {
                "input_tokens": usage.get("input_tokens", 0),
                "output_tokens": usage.get("output_tokens", 0),
            },
            "stop_reason": data.get("stop_reason", "end_turn"),
        }

    return await _retry_on_transient(_call)


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"


def _openai_headers(api_key: str) -> dict:
    """Return standard OpenAI API headers."""
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


async def chat_openai(
    api_key: str,
    model: str,
    messages: list[dict],
    *,
    system_prompt: str = "",
    max_tokens: int = 2048,
    temperature: float | None = None,
) -> dict:
    """Send a chat request to the OpenAI Chat Completions API.

    The response ``text`` may be empty when the model returns no content;
    callers decide whether that is an error.
    """
    oai_messages: list[dict] = []
    if system_prompt:
        oai_messages.append({"role": "system", "content": system_prompt})
    oai_messages.extend(messages)

    body: dict = {
        "model": model,
        "messages": oai_messages,
        # Newer OpenAI models (o-series, gpt-4o, etc.) use max_completion_tokens
        "max_completion_tokens": max_tokens,
    }
    if temperature is not None:
        body["temperature"] = temperature

    async def _call():
        client = _get_client()
        response = await client.post(
            OPENAI_CHAT_URL,
            headers=_openai_headers(api_key),
            json=body,
        )
        if response.status_code == 400:
            raise ValueError(f"OpenAI API error: {_error_message(response)}")
        response.raise_for_status()

        data = response.json()
        choices = data.get("choices", [])
        if not choices:
            raise ValueError("Empty response from OpenAI API")

        usage = data.get("usage", {})
        return {
            "text": choices[0].get("message", {}).get("content") or "",
            "usage": {
                "input_tokens": usage.get("prompt_tokens", 0),
                "output_tokens": usage.get("completion_tokens", 0),
            },
        }

    return await _retry_on_transient(_call)


async def embed_openai(api_key: str, model: str, text: str) -> list[float]:
    """Return the embedding vector for *text*."""

    async def _call():
        client = _get_client()
        response = await client.post(
            OPENAI_EMBEDDINGS_URL,
            headers=_openai_headers(api_key),
            json={"model": model, "input": text},
        )
        if response.status_code == 400:
            raise ValueError(f"OpenAI API error: {_error_message(response)}")
        response.raise_for_status()

        data = response.json().get("data", [])
        if not data:
            raise ValueError("Empty embedding response from OpenAI API")
        return list(data[0]["embedding"])

    return await _retry_on_transient(_call)


# ---------------------------------------------------------------------------
# Unified entry points
# ---------------------------------------------------------------------------


async def chat(
    api_key: str,
    model: str,
    messages: list[dict],
    *,
    system_prompt: str = "",
    max_tokens: int = 2048,
    temperature: float | None = None,
    provider: str = "openai",
) -> dict:
    """Send a chat request to the configured LLM provider.

    Parameters
    ----------
    api_key : str
        API key for the chosen provider.
    model : str
        Model identifier.
    messages : list[dict]
        Conversation history as ``[{"role": "user"|"assistant", "content": str}]``.
    system_prompt : str
        Optional system-level instructions.
    max_tokens : int
        Maximum tokens in the response.
    temperature : float | None
        Sampling temperature; provider default when ``None``.
    provider : str
        ``"openai"`` (default) or ``"anthropic"``.

    Returns
    -------
    dict
        ``{"text": str, "usage": {"input_tokens": int, "output_tokens": int}}``
    """
    if provider == "anthropic":
        return await chat_anthropic(
            api_key, model, messages,
            system_prompt=system_prompt, max_tokens=max_tokens,
            temperature=temperature,
        )
    return await chat_openai(
        api_key, model, messages,
        system_prompt=system_prompt, max_tokens=max_tokens,
        temperature=temperature,
    )


async def complete(prompt: str, model: str, temperature: float) -> str:
    """Single-turn completion using the process-wide provider settings.

    The prompt is sent as one user message with no system prompt.
    """
    result = await chat(
        settings.completion_api_key,
        model,
        [{"role": "user", "content": prompt}],
        max_tokens=settings.LLM_MAX_TOKENS,
        temperature=temperature,
        provider=settings.LLM_PROVIDER,
    )
    usage = result.get("usage", {})
    logger.info(
        "Completion from %s: %d in / %d out tokens",
        model, usage.get("input_tokens", 0), usage.get("output_tokens", 0),
    )
    return result["text"]


async def embed(text: str) -> list[float]:
    """Embed *text* with the configured embedding model (always OpenAI)."""
    return await embed_openai(settings.OPENAI_API_KEY, settings.EMBEDDING_MODEL, text)
