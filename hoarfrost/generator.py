"""Generator runner.

Generators add content that is not backed by a content file, such as index
pages or archives. Each generator receives the file-based content tree and
returns a tree holding only the new content; the runner reshapes that result
into a fresh ContentTree whose leaves are tagged with the generator, ready to
be merged into the main tree.

Generators never see each other's output: they all run against the same base
tree, and their results are merged afterwards. When two results define the
same path, the one merged later wins.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .content import GENERATED, ContentPlugin, GeneratorDef
from .log import logger
from .tree import ContentTree
from .utils import maybe_await

if TYPE_CHECKING:
    from .environment import Environment


def _attach(
    env: Environment,
    generator: GeneratorDef,
    groups: list[str],
    root: ContentTree,
    items: Mapping[str, Any] | None,
) -> None:
    if items is None:
        return
    for key, item in items.items():
        if item is None:
            continue
        if isinstance(item, ContentPlugin):
            item.env = env
            item.source_path = GENERATED
            item.plugin = generator
            if generator.group not in root.groupnames:
                root.groupnames.append(generator.group)
            root[key] = item
        elif isinstance(item, Mapping):
            branch = ContentTree(key, groups)
            root[key] = branch
            _attach(env, generator, groups, branch, item)
        else:
            logger.error("Generator %s produced %r for %s, which is not content.", generator.name, item, key)


async def run_generator(env: Environment, contents: ContentTree, generator: GeneratorDef) -> ContentTree:
    """Run a generator and return the content it produces.

    Args:
        env: Environment the generated content belongs to.
        contents: File-based content tree. Generators must not modify it.
        generator: The generator to run.

    Returns:
        A new tree holding only the generated content.
    """
    groups = env.get_content_groups()
    generated = await maybe_await(generator.fn(contents))
    tree = ContentTree("", groups)
    _attach(env, generator, groups, tree, generated)
    return tree


async def run_generators(env: Environment, contents: ContentTree) -> list[ContentTree]:
    """Run every registered generator concurrently against the same tree.

    Returns:
        The generated trees, in generator registration order.
    """
    return list(
        await asyncio.gather(*(run_generator(env, contents, g) for g in env.registry.generators))
    )
