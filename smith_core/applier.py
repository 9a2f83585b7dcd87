"""Patch applier — write parsed model output into the working tree.

``apply_changes`` parses a raw model response (see ``response_parser``),
skips malformed or unsafe blocks, and writes each remaining block to disk.
Every write is a full overwrite except for the project manifest, which is
merged additively so the model can add scripts and dependencies but never
replace ones the project already declares.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

from smith_core.contracts import FileBlock
from smith_core.errors import SandboxViolation
from smith_core.response_parser import parse_file_blocks

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MANIFEST_FILES: frozenset[str] = frozenset({"package.json"})

# Manifest sections merged additively; all other keys keep the existing value.
MERGED_SECTIONS: tuple[str, ...] = ("scripts", "dependencies", "devDependencies")


# ---------------------------------------------------------------------------
# Path safety
# ---------------------------------------------------------------------------


def resolve_in_workdir(working_dir: str | Path, rel_path: str) -> Path:
    """Resolve *rel_path* under *working_dir*.

    Raises
    ------
    SandboxViolation
        If the path is empty, absolute, contains null bytes, traverses
        with ``..``, or resolves outside the working directory.
    """
    root = Path(working_dir).resolve()
    root_str = str(root)

    if not rel_path:
        raise SandboxViolation(rel_path, root=root_str, reason="Path is empty")
    if "\x00" in rel_path:
        raise SandboxViolation(rel_path, root=root_str, reason="Path contains null bytes")
    if os.path.isabs(rel_path) or rel_path.startswith(("/", "\\")):
        raise SandboxViolation(rel_path, root=root_str, reason="Absolute paths are not allowed")
    if ".." in rel_path.replace("\\", "/").split("/"):
        raise SandboxViolation(
            rel_path, root=root_str, reason="Path traversal with '..' is not allowed"
        )

    target = (root / rel_path).resolve()
    if target != root and root not in target.parents:
        raise SandboxViolation(rel_path, root=root_str)
    return target


# ---------------------------------------------------------------------------
# Manifest merge
# ---------------------------------------------------------------------------


def merge_manifest(existing: dict, incoming: dict) -> dict:
    """Merge *incoming* manifest sections into *existing* without overriding.

    For each of ``scripts``, ``dependencies`` and ``devDependencies`` a key
    from *incoming* is added only when the existing section lacks it.
    Everything else in *existing* is returned untouched; *incoming*'s other
    top-level keys are ignored.

    >>> merge_manifest(
    ...     {"scripts": {"build": "tsc"}},
    ...     {"scripts": {"build": "webpack", "test": "jest"}},
    ... )["scripts"]
    {'build': 'tsc', 'test': 'jest'}
    """
    merged = dict(existing)
    for section in MERGED_SECTIONS:
        current = existing.get(section)
        proposed = incoming.get(section)
        if not isinstance(current, dict):
            current = {}
        if not isinstance(proposed, dict):
            proposed = {}
        if section not in existing and not proposed:
            continue
        combined = dict(current)
        for key, value in proposed.items():
            if key not in combined:
                combined[key] = value
        merged[section] = combined
    return merged


def _read_manifest(path: Path) -> dict:
    """Return the existing manifest, or ``{}`` when absent or unreadable."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Existing manifest %s unreadable (%s); merging into {}", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def render_manifest(data: dict) -> str:
    return json.dumps(data, indent=2) + "\n"


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def _write_block(target: Path, block: FileBlock, *, is_manifest: bool) -> bool:
    """Write one block to disk.  Returns False when the block was skipped."""
    content = block.content or ""
    target.parent.mkdir(parents=True, exist_ok=True)

    if is_manifest:
        try:
            incoming = json.loads(content)
        except ValueError as exc:
            logger.warning("Skipping manifest %s: model output is not JSON (%s)", block.path, exc)
            return False
        if not isinstance(incoming, dict):
            logger.warning("Skipping manifest %s: model output is not a JSON object", block.path)
            return False
        merged = merge_manifest(_read_manifest(target), incoming)
        target.write_text(render_manifest(merged), encoding="utf-8")
        return True

    target.write_text(content, encoding="utf-8")
    return True


def apply_blocks(
    working_dir: str | Path,
    blocks: list[FileBlock],
    *,
    manifest_files: frozenset[str] = MANIFEST_FILES,
) -> list[str]:
    """Write *blocks* under *working_dir*; return written paths in order."""
    changed: list[str] = []

    for block in blocks:
        if not block.path:
            logger.warning("Skipping block with empty path")
            continue
        if block.is_placeholder:
            logger.warning("Skipping invalid model path: %s", block.path)
            continue
        if not block.has_content:
            logger.warning("Skipping %s: no '- Content:' marker", block.path)
            continue

        try:
            target = resolve_in_workdir(working_dir, block.path)
        except SandboxViolation as exc:
            logger.warning("Skipping %s: %s", block.path, exc)
            continue

        is_manifest = block.path.replace("\\", "/") in manifest_files
        if _write_block(target, block, is_manifest=is_manifest):
            logger.info("Wrote %s (%d chars)", block.path, len(block.content or ""))
            changed.append(block.path)

    return changed


async def apply_changes(
    working_dir: str | Path,
    raw_response: str,
    *,
    manifest_files: frozenset[str] = MANIFEST_FILES,
) -> list[str]:
    """Parse *raw_response* and apply it to *working_dir*.

    Returns the relative paths written, in order of appearance.  A response
    with zero valid blocks yields ``[]`` and is not an error.
    """
    blocks = parse_file_blocks(raw_response)
    changed = await asyncio.to_thread(
        apply_blocks, working_dir, blocks, manifest_files=manifest_files,
    )
    logger.info("Applied %d of %d file block(s)", len(changed), len(blocks))
    return changed


__all__ = [
    "MANIFEST_FILES",
    "MERGED_SECTIONS",
    "apply_blocks",
    "apply_changes",
    "merge_manifest",
    "render_manifest",
    "resolve_in_workdir",
]
