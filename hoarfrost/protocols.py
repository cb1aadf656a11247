"""Protocol definitions for Hoarfrost.

This module defines the capabilities that plugins provide to the core:
content plugin classes, template plugin classes, view functions and generator
functions. The core only depends on these interfaces, so plugins are plain
classes and functions rather than members of an inheritance hierarchy.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Awaitable, Mapping
from typing import TYPE_CHECKING, Any, BinaryIO, Protocol, Union, runtime_checkable

if TYPE_CHECKING:
    from .content import ContentPlugin
    from .environment import Environment
    from .tree import ContentTree, FilePath

# What a view produces: a byte buffer, a readable binary stream, or nothing.
RenderedData = Union[bytes, BinaryIO, None]

LocalMap = dict[str, Any]


@runtime_checkable
class ContentFactory(Protocol):
    """Protocol for content plugin classes.

    The registry calls ``from_file`` for every content file whose relative
    path matches the pattern the class was registered with.
    """

    @classmethod
    @abstractmethod
    async def from_file(cls, filepath: FilePath) -> ContentPlugin:
        """Create a content plugin instance for a file.

        Args:
            filepath: Full and relative path of the content file.

        Returns:
            A leaf node for the content tree.
        """
        ...


@runtime_checkable
class TemplateRenderer(Protocol):
    """Protocol for loaded template instances."""

    @abstractmethod
    def render(self, locals: LocalMap) -> bytes:
        """Render the template with the given context.

        Args:
            locals: Template context.

        Returns:
            Rendered output.
        """
        ...


@runtime_checkable
class TemplateFactory(Protocol):
    """Protocol for template plugin classes."""

    @classmethod
    @abstractmethod
    async def from_file(cls, filepath: FilePath) -> TemplateRenderer:
        """Load and compile a template file."""
        ...


class ViewFunc(Protocol):
    """Signature of view functions.

    Views may be plain functions or coroutine functions.
    """

    def __call__(
        self,
        env: Environment,
        locals: LocalMap,
        contents: ContentTree,
        templates: Mapping[str, TemplateRenderer],
        content: ContentPlugin,
    ) -> RenderedData | Awaitable[RenderedData]: ...


class GeneratorFunc(Protocol):
    """Signature of generator functions.

    A generator receives the file-based content tree, which it must not
    modify, and returns a tree (or nested mapping) of new content only.
    """

    def __call__(
        self, contents: ContentTree
    ) -> Mapping[str, Any] | Awaitable[Mapping[str, Any]]: ...
