"""Task service -- runs one issue end to end.

Flow for a task::

    ensure working copy (clone or checkout+pull default branch)
      → install dependencies (best effort)
      → create feature/<issue_key>-<run suffix>
      → retry loop (context → prompt → generate → apply → verify)
      → commit as the requester → push

A loop that exhausts its retries still commits and pushes (unless
``PUSH_ON_EXHAUSTION`` is off) so the partial work can be reviewed.  Any
fatal failure raises ``TaskError`` naming the step, and nothing is pushed.
"""

import asyncio
import hashlib
import logging
import secrets
import weakref
from pathlib import Path

from app.clients import git_client, llm_client
from app.config import settings
from app.errors import BadRequestError, TaskError, TaskTimeoutError
from app.services.dependency_installer import install_dependencies
from smith_core.context import ContextGatherer
from smith_core.contracts import LoopResult, Task, TaskResult
from smith_core.controller import RetryController
from smith_core.errors import DefaultBranchError, GenerationError, LoopCancelled, SandboxViolation
from smith_core.generator import ChangeGenerator
from smith_core.retrieval import EmbeddingRetriever
from smith_core.verifier import BuildStage, InstallStage, TestSynthesisStage, VerificationStage

logger = logging.getLogger(__name__)

# Working-dir path -> lock.  Two tasks for the same issue and repository
# share a checkout, so they must run one after the other.  An entry lives
# only while some task holds or awaits its lock.
_workdir_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def working_dir_for(task: Task) -> Path:
    """``<WORKSPACE_ROOT>/<issue slug>-<md5(repository_url)>``.

    Raises ``BadRequestError`` if the result would leave ``WORKSPACE_ROOT``.
    """
    root = Path(settings.WORKSPACE_ROOT)
    url_hash = hashlib.md5(task.repository_url.encode("utf-8")).hexdigest()
    workdir = root / f"{task.slug}-{url_hash}"
    if workdir.resolve().parent != root.resolve():
        raise BadRequestError(f"Issue key {task.issue_key!r} does not map to a workspace directory")
    return workdir


def feature_branch_for(task: Task) -> str:
    """A fresh branch name per run, so reruns never collide with a pushed branch."""
    return f"{task.branch_name}-{secrets.token_hex(3)}"


def build_stages() -> list[VerificationStage]:
    """Verification stages in run order, per the current settings."""
    stages: list[VerificationStage] = []
    if settings.INSTALL_DEPENDENCIES:
        stages.append(InstallStage(install_dependencies))
    stages.append(BuildStage(settings.BUILD_COMMAND, timeout_s=settings.BUILD_TIMEOUT_SECONDS))
    if settings.ENABLE_TEST_SYNTHESIS:
        stages.append(
            TestSynthesisStage(settings.TEST_COMMAND, timeout_s=settings.BUILD_TIMEOUT_SECONDS)
        )
    return stages


def build_controller() -> RetryController:
    """Assemble a ``RetryController`` for one task.

    Each controller gets its own retriever, so indexed files never cross
    from one task into another.  Within the task the retriever is reused
    across attempts and unchanged files are not re-embedded.
    """
    retriever = EmbeddingRetriever(
        llm_client.embed,
        extensions=tuple(settings.SOURCE_EXTENSIONS),
    )
    gatherer = ContextGatherer(
        retriever,
        source_dir=settings.SOURCE_DIR,
        top_k=settings.CONTEXT_TOP_K,
    )
    generator = ChangeGenerator(
        llm_client.complete,
        model=settings.LLM_MODEL,
        temperature=settings.LLM_TEMPERATURE,
    )
    return RetryController(
        gatherer,
        generator,
        build_stages(),
        max_retries=settings.MAX_RETRIES,
        max_context_chars=settings.MAX_CONTEXT_CHARS,
    )


# ---------------------------------------------------------------------------
# Task execution
# ---------------------------------------------------------------------------


def _result_message(branch: str, loop: LoopResult, pushed: bool) -> str:
    if loop.succeeded:
        return f"Branch {branch} pushed successfully."
    attempts = len(loop.iterations)
    if pushed:
        return f"Branch {branch} pushed after {attempts} failed attempt(s); build still failing."
    return f"Build still failing after {attempts} attempt(s); branch {branch} was not pushed."


async def _prepare(task: Task, workdir: Path, branch: str) -> None:
    try:
        await git_client.ensure_working_copy(task.repository_url, workdir)
    except DefaultBranchError as exc:
        raise TaskError(str(exc), step="prepare", detail=exc.detail) from exc
    except RuntimeError as exc:
        raise TaskError(str(exc), step="prepare") from exc

    if settings.INSTALL_DEPENDENCIES:
        await install_dependencies(workdir)

    try:
        await git_client.create_branch(workdir, branch)
    except RuntimeError as exc:
        raise TaskError(str(exc), step="branch") from exc
    logger.info("Working on branch %s in %s", branch, workdir)


async def _run_task(
    task: Task,
    workdir: Path,
    controller: RetryController,
    cancel: asyncio.Event | None,
) -> TaskResult:
    branch = feature_branch_for(task)
    await _prepare(task, workdir, branch)

    try:
        loop = await controller.run_loop(task, workdir, cancel=cancel)
    except GenerationError as exc:
        raise TaskError(str(exc), step="generate", detail=exc.detail) from exc
    except LoopCancelled as exc:
        raise TaskError(str(exc), step="generate", status_code=409, detail=exc.detail) from exc
    except SandboxViolation as exc:
        raise TaskError(str(exc), step="verify", detail=exc.detail) from exc

    should_push = loop.succeeded or settings.PUSH_ON_EXHAUSTION
    if should_push:
        try:
            sha = await git_client.commit(
                workdir,
                task.commit_message,
                author_name=task.author_name,
                author_email=task.author_email,
            )
        except RuntimeError as exc:
            raise TaskError(str(exc), step="commit") from exc
        logger.info("Committed %s on %s", sha or "(nothing)", branch)

        try:
            await git_client.push(workdir, branch=branch)
        except RuntimeError as exc:
            raise TaskError(str(exc), step="push") from exc
        logger.info("Branch pushed: %s", branch)
    else:
        logger.warning("Retries exhausted; leaving %s unpushed", branch)

    return TaskResult(
        message=_result_message(branch, loop, should_push),
        changed_files=loop.changed_files,
        iterations=loop.iterations,
        branch=branch,
        succeeded=loop.succeeded,
        pushed=should_push,
    )


async def handle_task(
    task: Task,
    *,
    controller: RetryController | None = None,
    cancel: asyncio.Event | None = None,
) -> TaskResult:
    """Run *task* to completion and return its ``TaskResult``.

    Raises
    ------
    BadRequestError
        When the task has no repository URL or its issue key cannot name
        a workspace directory.
    TaskError
        When any step fails fatally (``detail["step"]`` names it).
    TaskTimeoutError
        When ``TASK_TIMEOUT_SECONDS`` elapses first.
    """
    if not task.repository_url.strip():
        raise BadRequestError("Missing repository URL")

    workdir = working_dir_for(task)
    lock = _workdir_locks.setdefault(str(workdir), asyncio.Lock())
    if lock.locked():
        logger.info("Waiting for running task on %s", workdir)

    logger.info("Handling task %s: %s", task.issue_key, task.summary)
    async with lock:
        job = _run_task(task, workdir, controller or build_controller(), cancel)
        if settings.TASK_TIMEOUT_SECONDS <= 0:
            return await job
        try:
            return await asyncio.wait_for(job, timeout=settings.TASK_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as exc:
            logger.error(
                "Task %s timed out after %ds", task.issue_key, settings.TASK_TIMEOUT_SECONDS,
            )
            raise TaskTimeoutError(
                f"Task timed out after {settings.TASK_TIMEOUT_SECONDS}s"
            ) from exc
