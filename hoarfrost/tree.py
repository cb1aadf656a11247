"""The content tree.

The content tree mirrors the content directory: branches (ContentTree
instances) stand for directories or synthetic groupings, and leaves are
content plugin instances. Every branch also indexes its children by group:
``directories`` holds its branch children, and each content plugin group
(``files`` for the static file fallback, ``pages`` for Markdown pages, and so
on) holds the leaves that plugins of that group produced.

Key functions:
- from_directory: Build a tree from a directory, resolving files through the plugin registry.
- flatten: List every leaf of a tree.
- merge: Merge one tree into another, in place.
- inspect: Render a tree as sorted, indented text.
"""

from __future__ import annotations

import asyncio
import os
import stat
from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

import click

from .content import ContentPlugin
from .log import logger, verbose
from .utils import glob_match

if TYPE_CHECKING:
    from .environment import Environment

ContentNode = Union["ContentTree", ContentPlugin]

COLOURS = frozenset(
    {
        "black",
        "red",
        "green",
        "yellow",
        "blue",
        "magenta",
        "cyan",
        "white",
        "bright_black",
        "bright_red",
        "bright_green",
        "bright_yellow",
        "bright_blue",
        "bright_magenta",
        "bright_cyan",
        "bright_white",
    }
)
STYLES = frozenset({"bold", "dim", "italic", "underline", "blink", "reverse", "strikethrough"})
COLOUR_ALIASES = {"grey": "bright_black", "gray": "bright_black"}


@dataclass(frozen=True)
class FilePath:
    """Location of a content or template file.

    Attributes:
        full: Absolute path.
        relative: Path relative to the content (or template) root, ``/`` separated.
    """

    full: str
    relative: str


class ContentTree(MutableMapping[str, ContentNode]):
    """A branch of the content tree.

    Children are kept in an ordered mapping from name to node. Assigning a
    child keeps the rest of the structure consistent: the child's ``parent``
    is set to this branch, the child is filed under ``directories`` or under
    its plugin group, and a child it replaces is removed from its group.

    Attributes:
        filename: Name of this branch in its parent ("" for roots).
        groupnames: Group names known when the branch was created.
        parent: Parent branch, or None for a root.
        groups: Children indexed by group name.
    """

    is_leaf = False

    def __init__(self, filename: str = "", groupnames: Iterable[str] | None = None):
        self.filename = filename
        self.groupnames: list[str] = list(groupnames) if groupnames else []
        self.parent: ContentTree | None = None
        self.groups: dict[str, list[ContentNode]] = {"directories": [], "files": []}
        self._children: dict[str, ContentNode] = {}

    def __getitem__(self, key: str) -> ContentNode:
        return self._children[key]

    def __setitem__(self, key: str, node: ContentNode) -> None:
        if not isinstance(node, (ContentTree, ContentPlugin)):
            raise TypeError(f"Content tree nodes must be branches or content plugins, not {type(node).__name__}")
        previous = self._children.get(key)
        if previous is not None and previous is not node:
            self._unfile(previous)
        self._children[key] = node
        node.parent = self
        self._file(node)

    def __delitem__(self, key: str) -> None:
        node = self._children.pop(key)
        self._unfile(node)
        if node.parent is self:
            node.parent = None

    def __iter__(self) -> Iterator[str]:
        return iter(self._children)

    def __len__(self) -> int:
        return len(self._children)

    # Branches are graph nodes; two branches are only equal if they are the same branch.
    __hash__ = object.__hash__

    def __eq__(self, other: object) -> bool:
        return self is other

    @property
    def index(self) -> ContentNode | None:
        """The first child whose name starts with ``index.``, if any."""
        for key, node in self._children.items():
            if key.startswith("index."):
                return node
        return None

    def _group_name(self, node: ContentNode) -> str:
        return "directories" if isinstance(node, ContentTree) else node.group

    def _file(self, node: ContentNode) -> None:
        members = self.groups.setdefault(self._group_name(node), [])
        if not any(member is node for member in members):
            members.append(node)

    def _unfile(self, node: ContentNode) -> None:
        members = self.groups.get(self._group_name(node), [])
        for position, member in enumerate(members):
            if member is node:
                del members[position]
                return

    def __repr__(self) -> str:
        return f"<ContentTree {self.filename!r} ({len(self)} children)>"


def _filter_ignored(env: Environment, filepaths: list[FilePath]) -> list[FilePath]:
    patterns = env.config.ignore
    if not patterns:
        return filepaths
    kept = []
    for filepath in filepaths:
        pattern = next((p for p in patterns if glob_match(filepath.relative, p)), None)
        if pattern is None:
            kept.append(filepath)
        else:
            verbose("Ignoring %s (matches %s)", filepath.relative, pattern)
    return kept


async def _create_node(env: Environment, filepath: FilePath) -> ContentNode | None:
    await asyncio.sleep(0)
    mode = (await asyncio.to_thread(os.stat, filepath.full)).st_mode
    if stat.S_ISDIR(mode):
        return await from_directory(env, filepath.full)
    if stat.S_ISREG(mode):
        plugin = env.registry.resolve(filepath)
        return await env.registry.instantiate(env, filepath, plugin)
    return None


async def from_directory(env: Environment, directory: str) -> ContentTree:
    """Build a content tree from a directory and its subdirectories.

    Entries matching any of the configured ignore patterns are skipped.
    Sibling entries are scanned concurrently; once all of them are done they
    are added to the branch in name order, so the result does not depend on
    which scan finished first.

    Args:
        env: Environment providing the configuration and plugin registry.
        directory: Directory to scan, inside the environment's content directory.

    Returns:
        The branch for ``directory``.

    Raises:
        ContentError: If a content plugin fails to load a file.
    """
    reldir = env.relative_contents_path(directory)
    tree = ContentTree(os.path.basename(reldir), env.get_content_groups())
    names = sorted(await asyncio.to_thread(os.listdir, directory))
    filepaths = [
        FilePath(
            full=os.path.join(env.contents_path, reldir, name),
            relative=f"{reldir}/{name}" if reldir else name,
        )
        for name in names
    ]
    filepaths = _filter_ignored(env, filepaths)
    nodes = await asyncio.gather(*(_create_node(env, filepath) for filepath in filepaths))
    for filepath, node in zip(filepaths, nodes):
        if node is not None:
            tree[filepath.relative.rsplit("/", 1)[-1]] = node
    return tree


def flatten(tree: ContentTree | Iterable[ContentTree]) -> list[ContentPlugin]:
    """List the leaves of a tree, depth first, in child order.

    Args:
        tree: A branch, or a sequence of branches whose results are concatenated.

    Returns:
        Every leaf reachable from the given branches.
    """
    if not isinstance(tree, ContentTree):
        leaves: list[ContentPlugin] = []
        for item in tree:
            leaves.extend(flatten(item))
        return leaves
    leaves = []
    for node in tree.values():
        if isinstance(node, ContentTree):
            leaves.extend(flatten(node))
        elif node.is_leaf:
            leaves.append(node)
    return leaves


def merge(target: ContentTree, source: Mapping[str, Any] | None) -> None:
    """Merge ``source`` into ``target``, mutating ``target`` only.

    Leaves are moved into ``target`` by reference, replacing any node with the
    same name. Branches are merged recursively, creating a branch in ``target``
    when it has none of that name. Values that are neither are logged as
    errors and skipped.

    Args:
        target: Branch to merge into.
        source: Branch (or mapping of nodes) to merge from.
    """
    if source is None:
        return
    for key, item in list(source.items()):
        if isinstance(item, ContentPlugin):
            target[key] = item
        elif isinstance(item, ContentTree):
            existing = target.get(key)
            if existing is None:
                existing = ContentTree(key, item.groupnames)
                target[key] = existing
            if isinstance(existing, ContentTree):
                merge(existing, item)
            else:
                verbose("Not merging branch %s over existing content", key)
        else:
            logger.error("Found a non-leaf content tree node which is not a ContentTree instance (%s).", key)


def _colourise(key: str, colour: str) -> str:
    colour = COLOUR_ALIASES.get(colour, colour)
    if colour == "none":
        return key
    if colour in COLOURS:
        return click.style(key, fg=colour)
    if colour in STYLES:
        return click.style(key, **{colour: True})
    raise ValueError(f"Plugin {key} specifies invalid plugin colour {colour}")


def inspect(tree: ContentTree, depth: int = 0) -> str:
    """Render a tree as indented text.

    Directories are listed before leaves, each group in name order. Leaves
    are coloured with their plugin colour and followed by their plugin info.

    Args:
        tree: Branch to render.
        depth: Indentation of the first level.

    Returns:
        The rendered listing.

    Raises:
        ValueError: If a leaf declares an unknown colour.
    """
    pad = " " * depth
    lines: list[str] = []
    keys = sorted(tree, key=lambda k: (not isinstance(tree[k], ContentTree), k))
    for key in keys:
        node = tree[key]
        if isinstance(node, ContentTree):
            lines.append(f"{pad}{click.style(key, bold=True)}/")
            listing = inspect(node, depth + 1)
            if listing:
                lines.append(listing)
        else:
            info = click.style(node.plugin_info, fg="bright_black")
            lines.append(f"{pad}{_colourise(key, node.plugin_colour)} ({info})")
    return "\n".join(lines)
