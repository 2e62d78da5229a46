"""
Service for Docker build context archiving.

Handles:
- Collecting the build context next to a Dockerfile
- Applying .dockerignore exclusions
- Packing everything into a tar stream for the runtime build call
"""
import asyncio
import fnmatch
import io
import logging
import os
import tarfile
from typing import Iterable, List, Optional

from devstack.core.exceptions import DockerBuildError

logger = logging.getLogger(__name__)

DOCKERFILE_NAME = "Dockerfile"
DOCKERIGNORE_NAME = ".dockerignore"

# Everything, dotfiles included. The Dockerfile is added back as a named entry.
DEFAULT_SOURCES = ["**", ".*", "**/.*", f"!{DOCKERFILE_NAME}"]


def read_ignore_patterns(content: str) -> List[str]:
    """
    Parse a .dockerignore file into exclusion patterns.

    Blank lines and ``#`` comments are skipped, every other line is trimmed
    and prefixed with ``!``.
    """
    patterns = []
    for entry in content.strip().split("\n"):
        entry = entry.strip()
        if not entry or entry.startswith("#"):
            continue
        patterns.append(f"!{entry}")
    return patterns


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def _normalize(pattern: str) -> str:
    pattern = pattern.strip()
    while pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern.lstrip("/").rstrip("/")


def _pattern_matches(pattern: str, rel_path: str) -> bool:
    """
    Match a relative path (or any of its parents) against a glob pattern.

    ``**`` spans directories. A pattern naming a directory excludes the
    whole subtree.
    """
    pattern = _normalize(pattern)
    if not pattern:
        return False

    parts = rel_path.split("/")
    candidates = ["/".join(parts[:i]) for i in range(1, len(parts) + 1)]
    variants = {pattern}
    if pattern.startswith("**/"):
        variants.add(pattern[3:])

    for candidate in candidates:
        for variant in variants:
            if fnmatch.fnmatchcase(candidate, variant):
                return True
    return False


def select_files(context_dir: str, sources: List[str]) -> List[str]:
    """
    Resolve the inclusion/exclusion source list against a directory.

    Args:
        context_dir: Build context root
        sources: Glob list, ``!`` prefixed entries are exclusions

    Returns:
        Sorted relative paths (``/`` separated) of the selected files
    """
    includes = [s for s in sources if not s.startswith("!")]
    excludes = [s[1:] for s in sources if s.startswith("!")]

    selected = []
    for root, dirs, files in os.walk(context_dir):
        dirs.sort()
        rel_root = os.path.relpath(root, context_dir)
        for name in sorted(files):
            rel_path = name if rel_root == "." else f"{rel_root}/{name}".replace(os.sep, "/")
            if not any(_pattern_matches(p, rel_path) or p == "**" for p in includes):
                continue
            if any(_pattern_matches(p, rel_path) for p in excludes):
                continue
            selected.append(rel_path)
    return selected


def build_archive(dockerfile_path: str, extra_excludes: Optional[List[str]] = None) -> io.BytesIO:
    """
    Pack the build context of a Dockerfile into a tar archive.

    The archive always holds exactly one ``Dockerfile`` entry and, when the
    context has one, one ``.dockerignore`` entry.

    Args:
        dockerfile_path: Path to the Dockerfile; its directory is the context
        extra_excludes: Additional exclusion patterns

    Returns:
        BytesIO positioned at the start of the tar stream

    Raises:
        DockerBuildError: cannot_find_dockerfile
    """
    if not os.path.isfile(dockerfile_path):
        raise DockerBuildError(DockerBuildError.CANNOT_FIND_DOCKERFILE, dockerfile=dockerfile_path)

    context_dir = os.path.dirname(os.path.abspath(dockerfile_path))
    sources = list(DEFAULT_SOURCES)

    ignore_path = os.path.join(context_dir, DOCKERIGNORE_NAME)
    has_ignore = os.path.isfile(ignore_path)
    if has_ignore:
        with open(ignore_path, "r") as f:
            sources = sources + read_ignore_patterns(f.read())

    if extra_excludes:
        sources = sources + [f"!{p}" for p in extra_excludes if p and p.strip()]
    sources = _unique(sources)

    named = {DOCKERFILE_NAME, DOCKERIGNORE_NAME}
    files = [f for f in select_files(context_dir, sources) if f not in named]

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for rel_path in files:
            tar.add(os.path.join(context_dir, rel_path), arcname=rel_path, recursive=False)
        tar.add(dockerfile_path, arcname=DOCKERFILE_NAME, recursive=False)
        if has_ignore:
            tar.add(ignore_path, arcname=DOCKERIGNORE_NAME, recursive=False)

    buffer.seek(0)
    logger.debug(f"Archived build context {context_dir}: {len(files)} files")
    return buffer


async def create_archive(dockerfile_path: str, extra_excludes: Optional[List[str]] = None) -> io.BytesIO:
    """Async wrapper running build_archive in a worker thread."""
    return await asyncio.to_thread(build_archive, dockerfile_path, extra_excludes)
