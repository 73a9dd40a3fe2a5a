"""Locate the design document a run validates against.

This module is intentionally *dumb*: it does not interpret document content,
it only decides which file a run is about and which files changed.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from gated_orchestrator.orchestrator.errors import NotFoundError

logger = logging.getLogger(__name__)

DESIGN_DOC_SUFFIXES = (".md", ".markdown")


def is_template(path: Path) -> bool:
    return "template" in path.name.lower()


def discover_design_docs(directory: Path) -> list[Path]:
    """Return non-template design documents, most recently modified first."""

    if not directory.is_dir():
        return []

    candidates = [
        p
        for p in directory.rglob("*")
        if p.is_file() and p.suffix.lower() in DESIGN_DOC_SUFFIXES and not is_template(p)
    ]
    # Stable ordering for equal mtimes: path sort.
    return sorted(candidates, key=lambda p: (-p.stat().st_mtime, p.as_posix()))


def resolve_design_doc(explicit: Path | None, directory: Path) -> Path:
    """Resolve the design document for a run.

    Raises:
        NotFoundError: If the explicit path does not exist, or no candidate
            document exists in `directory`.
    """

    if explicit is not None:
        if not explicit.is_file():
            raise NotFoundError(f"Design document not found: {explicit}")
        return explicit

    docs = discover_design_docs(directory)
    if not docs:
        raise NotFoundError(f"No design document found in {directory}")
    logger.info("Selected most recent design document", extra={"path": str(docs[0])})
    return docs[0]


def list_changed_files(repo_root: Path, *, base: str = "HEAD") -> list[str]:
    """Return files changed relative to `base`, or [] outside a git checkout."""

    try:
        result = subprocess.run(
            ["git", "diff", "--name-only", base],
            cwd=repo_root,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        logger.debug("git is not installed; no changed files")
        return []

    if result.returncode != 0:
        logger.debug("git diff failed; no changed files", extra={"stderr": result.stderr.strip()})
        return []

    return [line.strip() for line in result.stdout.splitlines() if line.strip()]
