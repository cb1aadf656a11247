"""Utility functions for Hoarfrost.

This module contains small helpers used throughout the Hoarfrost codebase.
These include glob matching, URL resolution, path handling and data file loading.

Key functions:
    glob_match: Match a relative path against a glob pattern.
    url_resolve: Resolve a filename against a base URL.
    slugify: Convert text to a URL slug.
    strip_extension: Remove the final extension from a filename.
    read_data_file: Load a JSON or YAML data file.
    read_dir_recursive: List the files below a directory.
    maybe_await: Await a value if it is awaitable.
    ensure_clean_dir: Ensure a directory exists and is empty.
"""

from __future__ import annotations

import inspect
import json
import os
import re
import shutil
from pathlib import Path
from typing import Any
from urllib.parse import quote, urljoin

import yaml
from wcmatch import glob

# Dotfiles are only matched by patterns that name them explicitly.
GLOB_FLAGS = glob.GLOBSTAR | glob.EXTGLOB | glob.BRACE

_URL_SAFE = "/:@!$&'()*+,;=~"


def glob_match(path: str, pattern: str) -> bool:
    """Check whether a relative path matches a glob pattern.

    Supports ``**`` for any number of directories and extended patterns such
    as ``*.+(md|markdown)``. Wildcards never match names starting with a dot.

    Args:
        path: Relative path using ``/`` separators.
        pattern: Glob pattern.

    Returns:
        True if the path matches.
    """
    if not pattern:
        return False
    return glob.globmatch(path, pattern, flags=GLOB_FLAGS)


def url_resolve(base: str, target: str) -> str:
    """Resolve a target path against a base URL.

    Args:
        base: Base URL or URL path (e.g. ``/`` or ``/blog/``).
        target: Relative target, such as an output filename.

    Returns:
        The resolved URL. Characters not valid in a URL path are percent-encoded.

    Examples:
        >>> url_resolve("/blog/", "posts/a b.html")
        '/blog/posts/a%20b.html'
    """
    quoted = quote(target, safe=_URL_SAFE)
    if not quoted.startswith("/"):
        # keeps a colon in the first segment from reading as a scheme
        quoted = "./" + quoted
    return urljoin(base, quoted)


def slugify(text: str) -> str:
    """Convert text to a lowercase, hyphen-separated slug.

    Args:
        text: Text to convert, usually a title.

    Returns:
        URL-friendly slug.
    """
    cleaned = re.sub(r"[^\w\s-]", "", text.lower().strip())
    cleaned = re.sub(r"[-\s]+", "-", cleaned)
    return cleaned.strip("-")


def strip_extension(filename: str) -> str:
    """Remove the final extension from a filename.

    A leading dot is not treated as an extension separator.

    Args:
        filename: Filename or path.

    Returns:
        The filename without its last extension.
    """
    return re.sub(r"(.+)\.[^.]+$", r"\1", filename)


def read_data_file(path: str | Path) -> Any:
    """Load a JSON or YAML file.

    Files ending in ``.json`` are parsed as JSON, everything else as YAML.

    Args:
        path: Path to the data file.

    Returns:
        The parsed data.

    Raises:
        ValueError: If the file cannot be parsed. The message names the file.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValueError(f"parsing {path.name}: {exc}") from exc


def read_dir_recursive(directory: str | Path) -> list[str]:
    """List the files below a directory.

    Args:
        directory: Directory to walk.

    Returns:
        Sorted relative paths (``/`` separated) of every file below the directory.
    """
    root = Path(directory)
    return sorted(
        path.relative_to(root).as_posix() for path in root.rglob("*") if not path.is_dir()
    )


def to_posix(path: str) -> str:
    """Normalise path separators to ``/``."""
    return path.replace(os.sep, "/") if os.sep != "/" else path


async def maybe_await(value: Any) -> Any:
    """Return ``value``, awaiting it first if it is awaitable.

    Plugins may provide either plain functions or coroutine functions.
    """
    if inspect.isawaitable(value):
        return await value
    return value


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    If the directory exists, removes all contents. Creates the
    directory if it doesn't exist.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(str(path), ignore_errors=True)
        if path.exists():
            # Fallback for stubborn directories
            for item in path.rglob("*"):
                if item.is_file():
                    item.unlink()
            for item in sorted(
                [p for p in path.rglob("*") if p.is_dir()], reverse=True
            ):
                item.rmdir()
            path.rmdir()
    path.mkdir(parents=True, exist_ok=True)
