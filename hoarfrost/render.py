"""Rendering content to the output directory.

Each leaf of the content tree names a view: either a function, or the name
of a view registered with the environment. The view turns the leaf into a
byte buffer, a readable binary stream, or None when the leaf produces no
output.

Key functions:
- render_view: Render a single leaf.
- render: Render every leaf of a tree into an output directory.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .content import ContentPlugin
from .log import logger, verbose
from .tree import ContentTree, flatten, inspect
from .utils import maybe_await

if TYPE_CHECKING:
    from .environment import Environment
    from .protocols import RenderedData, TemplateRenderer


class ViewError(Exception):
    """A leaf names a view that is not registered."""


async def render_view(
    env: Environment,
    content: ContentPlugin,
    locals: Mapping[str, Any] | None,
    contents: ContentTree,
    templates: Mapping[str, TemplateRenderer] | None,
) -> RenderedData:
    """Render a leaf with its view.

    The view is called as ``view(env, locals, contents, templates, content)``,
    where ``locals`` holds ``env`` and ``contents`` plus the given locals.

    Args:
        env: The environment.
        content: Leaf to render.
        locals: Template context data.
        contents: The full content tree.
        templates: Loaded templates, keyed on relative path.

    Returns:
        Whatever the view returns: bytes, a binary stream, or None.

    Raises:
        ViewError: If the leaf names an unknown view.
    """
    view = content.view
    if isinstance(view, str):
        name = view
        view = env.views.get(name)
        if view is None:
            raise ViewError(f"Content {content.filename} specifies unknown view {name}")
    merged_locals = {"env": env, "contents": contents, **(locals or {})}
    return await maybe_await(view(env, merged_locals, contents, templates or {}, content))


def _write_output(destination: Path, output: Any) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    with open(destination, "wb") as f:
        if isinstance(output, (bytes, bytearray, memoryview)):
            f.write(output)
        else:
            try:
                shutil.copyfileobj(output, f)
            finally:
                output.close()


async def _render_content(
    env: Environment,
    output_dir: Path,
    content: ContentPlugin,
    locals: Mapping[str, Any] | None,
    contents: ContentTree,
    templates: Mapping[str, TemplateRenderer] | None,
) -> bool:
    output = await render_view(env, content, locals, contents, templates)
    if output is None:
        verbose("Skipping %s", content.get_url())
        return False
    destination = output_dir / content.filename
    verbose("Writing content %s to %s", content.get_url(), destination)
    await asyncio.to_thread(_write_output, destination, output)
    return True


async def render(
    env: Environment,
    output_dir: str | Path,
    contents: ContentTree,
    templates: Mapping[str, TemplateRenderer] | None,
    locals: Mapping[str, Any] | None,
) -> int:
    """Render every leaf of a tree into an output directory.

    Leaves are rendered one at a time unless ``parallel_render`` is set, in
    which case at most ``render_workers`` renders run concurrently. The first
    failure aborts the render.

    Args:
        env: The environment.
        output_dir: Directory to write output files to.
        contents: Tree to render.
        templates: Loaded templates.
        locals: Template context data.

    Returns:
        Number of files written.
    """
    output_dir = Path(output_dir)
    logger.info("Rendering tree:\n%s\n", inspect(contents, 1))
    verbose("Render to output directory %s", output_dir)
    items = flatten(contents)

    if not env.config.parallel_render:
        written = 0
        for item in items:
            written += await _render_content(env, output_dir, item, locals, contents, templates)
        return written

    semaphore = asyncio.Semaphore(max(1, env.config.render_workers))

    async def bounded(item: ContentPlugin) -> bool:
        async with semaphore:
            return await _render_content(env, output_dir, item, locals, contents, templates)

    results = await asyncio.gather(*(bounded(item) for item in items))
    return sum(results)
