"""
run_task.py — CLI entry point for running one IssueSmith task locally.

Usage:
    python run_task.py <repo_url> [--issue-key KEY] [--summary TEXT]
                       [--description TEXT | --description-file PATH]
                       [--author-name NAME] [--author-email EMAIL]
                       [--max-retries N] [--no-push-on-exhaustion]

Examples:
    # Add a health endpoint to a repo and push feature/PROJ-1-<suffix>
    python run_task.py git@github.com:acme/api.git --issue-key PROJ-1 \\
        --summary "Add health endpoint" \\
        --description "Expose GET /health returning {status: 'ok'}"

Runs the same flow as ``POST /api/ai-task`` and prints the iteration log.
Set OPENAI_API_KEY in the environment (or .env) before running.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from app.config import settings
from app.errors import AppError
from app.logging_config import configure_logging
from app.services import task_service
from smith_core.contracts import Task, TaskResult


def _print_summary(result: TaskResult) -> None:
    print(f"\n[SMITH] ════════════════════════════════════")
    print(f"[SMITH] {result.message}")
    print(f"[SMITH]   Branch:     {result.branch}")
    print(f"[SMITH]   Succeeded:  {result.succeeded}")
    print(f"[SMITH]   Pushed:     {result.pushed}")
    print(f"[SMITH]   Iterations: {len(result.iterations)}")
    for attempt in result.iterations:
        status = "ok" if not attempt.failed else "failed"
        print(f"[SMITH]     #{attempt.attempt_number}: {status} ({len(attempt.changed_paths)} file(s))")
    print(f"[SMITH] CHANGED FILES:")
    for path in result.changed_files:
        print(f"[SMITH]   {path}")
    print(f"[SMITH] ════════════════════════════════════")


def _read_description(args: argparse.Namespace) -> str | None:
    if args.description_file:
        p = Path(args.description_file)
        if not p.exists():
            sys.exit(f"[SMITH] ERROR: description file not found: {p}")
        return p.read_text(encoding="utf-8")
    return args.description


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Generate, build-verify and push a change for one issue.",
    )
    parser.add_argument("repo_url", help="Clone URL of the target repository")
    parser.add_argument("--issue-key", default=None, help="Issue key (default: temp-issue)")
    parser.add_argument("--summary", default=None, help="One-line issue summary")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--description", default=None, help="Issue description text")
    group.add_argument("--description-file", default=None, help="Read the description from a file")
    parser.add_argument("--author-name", default="IssueSmith", help="Commit author name")
    parser.add_argument("--author-email", default="issuesmith@localhost", help="Commit author email")
    parser.add_argument(
        "--max-retries", type=int, default=None,
        help=f"Attempts before giving up (default: {settings.MAX_RETRIES})",
    )
    parser.add_argument(
        "--no-push-on-exhaustion", action="store_true",
        help="Keep the branch local when every attempt fails the build",
    )
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    args = parser.parse_args()

    if args.max_retries is not None:
        if args.max_retries < 1:
            sys.exit("[SMITH] ERROR: --max-retries must be at least 1")
        settings.MAX_RETRIES = args.max_retries
    if args.no_push_on_exhaustion:
        settings.PUSH_ON_EXHAUSTION = False

    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    task = Task(
        issue_key=args.issue_key,
        summary=args.summary,
        description=_read_description(args),
        repository_url=args.repo_url,
        author_name=args.author_name,
        author_email=args.author_email,
    )

    try:
        result = asyncio.run(task_service.handle_task(task))
    except AppError as exc:
        print(json.dumps({"error": str(exc), "detail": exc.detail}, indent=2), file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        _print_summary(result)
    sys.exit(0 if result.succeeded else 2)


if __name__ == "__main__":
    main()
