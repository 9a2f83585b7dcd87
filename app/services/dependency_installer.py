"""Best-effort npm dependency installation for task working copies.

``npm ci --ignore-scripts`` first (lockfile-exact, no lifecycle scripts),
falling back to ``npm install``.  Failures are logged and swallowed so a
broken install surfaces later as a build error the model can react to.
"""

import logging
from pathlib import Path

from smith_core.runner import INSTALL_PREFIXES, run

logger = logging.getLogger(__name__)

INSTALL_COMMANDS: tuple[str, ...] = ("npm ci --ignore-scripts", "npm install")
INSTALL_TIMEOUT_S = 600


async def install_dependencies(working_dir: str | Path) -> bool:
    """Install dependencies in *working_dir*. Returns True when one command succeeded."""
    cwd = str(working_dir)
    if not (Path(cwd) / "package.json").exists():
        logger.info("No package.json in %s, skipping dependency install", cwd)
        return False

    for command in INSTALL_COMMANDS:
        result = await run(
            command,
            cwd=cwd,
            timeout_s=INSTALL_TIMEOUT_S,
            allowed_prefixes=INSTALL_PREFIXES,
        )
        if result.ok:
            logger.info("Dependencies installed with '%s' in %dms", command, result.duration_ms)
            return True
        logger.warning(
            "'%s' failed (exit %d): %s",
            command, result.exit_code, result.combined_output[-500:],
        )

    logger.warning("Dependency install failed in %s; continuing", cwd)
    return False
