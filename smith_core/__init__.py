"""Code-generation loop — turn a change request into a build-verified edit.

Public API
----------
Retry loop::

    RetryController, MAX_RETRIES

Contracts (Pydantic models)::

    Task, Attempt, BuildOutcome, FileBlock,
    LoopResult, LoopState, RetrievedFile, TaskResult

Errors::

    SmithError, GenerationError, SandboxViolation,
    DefaultBranchError, LoopCancelled

Context::

    ContextGatherer, NO_FILES_SENTINEL, format_digest,
    Retriever, EmbeddingRetriever, VectorStore, sanitize_collection_key

Prompting and generation::

    build_prompt, build_retry_description, truncate_context,
    ChangeGenerator

Parsing and applying::

    parse_file_blocks, clean_content,
    apply_changes, merge_manifest, resolve_in_workdir

Verification::

    BuildStage, TestSynthesisStage, InstallStage, VerificationStage,
    TEST_FAILURE_PREFIX, RunResult, run_command
"""

from smith_core.applier import apply_changes, merge_manifest, resolve_in_workdir
from smith_core.context import NO_FILES_SENTINEL, ContextGatherer, format_digest
from smith_core.contracts import (
    Attempt,
    BuildOutcome,
    FileBlock,
    LoopResult,
    LoopState,
    RetrievedFile,
    Task,
    TaskResult,
)
from smith_core.controller import MAX_RETRIES, RetryController
from smith_core.errors import (
    DefaultBranchError,
    GenerationError,
    LoopCancelled,
    SandboxViolation,
    SmithError,
)
from smith_core.generator import ChangeGenerator
from smith_core.prompt_builder import (
    build_prompt,
    build_retry_description,
    truncate_context,
)
from smith_core.response_parser import clean_content, parse_file_blocks
from smith_core.retrieval import (
    EmbeddingRetriever,
    Retriever,
    VectorStore,
    sanitize_collection_key,
)
from smith_core.runner import RunResult
from smith_core.runner import run as run_command
from smith_core.verifier import (
    TEST_FAILURE_PREFIX,
    BuildStage,
    InstallStage,
    TestSynthesisStage,
    VerificationStage,
)

__all__ = [
    # Retry loop
    "MAX_RETRIES",
    "RetryController",
    # Contracts
    "Attempt",
    "BuildOutcome",
    "FileBlock",
    "LoopResult",
    "LoopState",
    "RetrievedFile",
    "Task",
    "TaskResult",
    # Errors
    "DefaultBranchError",
    "GenerationError",
    "LoopCancelled",
    "SandboxViolation",
    "SmithError",
    # Context
    "NO_FILES_SENTINEL",
    "ContextGatherer",
    "format_digest",
    "EmbeddingRetriever",
    "Retriever",
    "VectorStore",
    "sanitize_collection_key",
    # Prompting and generation
    "build_prompt",
    "build_retry_description",
    "truncate_context",
    "ChangeGenerator",
    # Parsing and applying
    "clean_content",
    "parse_file_blocks",
    "apply_changes",
    "merge_manifest",
    "resolve_in_workdir",
    # Verification
    "TEST_FAILURE_PREFIX",
    "BuildStage",
    "InstallStage",
    "TestSynthesisStage",
    "VerificationStage",
    "RunResult",
    "run_command",
]
