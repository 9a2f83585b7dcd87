"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Validates required settings on import — fails
fast if critical vars are missing outside of tests.
"""

VERSION = "0.1.0"

import sys
import tempfile
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Required var names, checked after instantiation (not during), so tests
# that leave them blank still work.
# ---------------------------------------------------------------------------
_REQUIRED_VARS: list[str] = [
    "OPENAI_API_KEY",
]


class Settings(BaseSettings):
    """Application settings — sourced from environment / ``.env`` file.

    Required vars (must be set in production, may be blank in test):
      OPENAI_API_KEY  (also used for embeddings when LLM_PROVIDER=anthropic)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- required in production (default empty so tests don't fail) --
    OPENAI_API_KEY: str = ""

    # -- optional with sensible defaults --
    FRONTEND_URL: str = "http://localhost:5173"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # -------------------------------------------------------------------------
    # Generative model.  One model id is configured for the whole process;
    # the loop never switches models between attempts.
    # -------------------------------------------------------------------------
    LLM_PROVIDER: str = "openai"  # "openai" | "anthropic"
    LLM_MODEL: str = "gpt-4o"
    LLM_TEMPERATURE: float = Field(default=0.1, ge=0.0, le=2.0)
    LLM_MAX_TOKENS: int = 16_384
    ANTHROPIC_API_KEY: str = ""

    EMBEDDING_MODEL: str = "text-embedding-3-small"

    # -------------------------------------------------------------------------
    # Retry loop
    # -------------------------------------------------------------------------
    MAX_RETRIES: int = Field(default=3, ge=1)
    CONTEXT_TOP_K: int = Field(default=10, ge=1)
    MAX_CONTEXT_CHARS: int = 32_000
    SOURCE_DIR: str = "src"
    SOURCE_EXTENSIONS: list[str] = [".js", ".ts", ".tsx", ".jsx"]

    # -------------------------------------------------------------------------
    # Working copies and verification
    # -------------------------------------------------------------------------
    WORKSPACE_ROOT: str = ""
    BUILD_COMMAND: str = "npm run build"
    TEST_COMMAND: str = "npm test -- --ci --runInBand"
    ENABLE_TEST_SYNTHESIS: bool = False
    INSTALL_DEPENDENCIES: bool = True
    BUILD_TIMEOUT_SECONDS: int = Field(default=600, ge=1)

    # Whole-task wall-clock limit (0 = disabled).  Files written by an
    # abandoned attempt stay on disk.
    TASK_TIMEOUT_SECONDS: int = Field(default=0, ge=0)

    # Commit and push the last attempt even when every attempt failed the
    # build, so a human can review it.  Set False to keep failed work local.
    PUSH_ON_EXHAUSTION: bool = True

    @model_validator(mode="after")
    def _default_workspace_root(self) -> "Settings":
        """Place working copies under the system temp dir unless configured."""
        if not self.WORKSPACE_ROOT:
            self.WORKSPACE_ROOT = str(Path(tempfile.gettempdir()) / "ai-assist-repos")
        return self

    @property
    def completion_api_key(self) -> str:
        if self.LLM_PROVIDER == "anthropic":
            return self.ANTHROPIC_API_KEY
        return self.OPENAI_API_KEY


settings = Settings()


# Validate at import time, but only when NOT running under pytest.
if "pytest" not in sys.modules:
    _missing = [v for v in _REQUIRED_VARS if not getattr(settings, v)]
    if _missing:
        print(
            f"[config] FATAL: missing required environment variables: "
            f"{', '.join(_missing)}",
            file=sys.stderr,
        )
        sys.exit(1)
