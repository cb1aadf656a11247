"""Content plugins for Hoarfrost.

A content plugin instance is a leaf of the content tree: one unit of
publishable content. Content plugin classes are registered against a glob
pattern and a group; the registry instantiates the latest-registered matching
class for every content file.

Key classes:
- ContentPlugin: Base class of leaf nodes.
- StaticFile: Fallback plugin that publishes a file unchanged.
- PluginDef: Registration record of a content plugin class.
- GeneratorDef: Registration record of a generator function.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, BinaryIO, Union

from .utils import to_posix, url_resolve

if TYPE_CHECKING:
    from .environment import Environment
    from .protocols import GeneratorFunc
    from .tree import ContentTree, FilePath

# source_path of leaves produced by generators rather than read from a file.
GENERATED = "<generator>"


@dataclass(frozen=True)
class PluginDef:
    """A registered content plugin.

    Attributes:
        name: Plugin name, used in diagnostics.
        group: Group the plugin's leaves are filed under in their parent branch.
        pattern: Glob pattern of content paths the plugin handles.
        cls: The content plugin class.
    """

    name: str
    group: str
    pattern: str
    cls: type[ContentPlugin]


@dataclass(frozen=True)
class GeneratorDef:
    """A registered generator.

    Attributes:
        name: Generator name.
        group: Group the generated leaves are filed under.
        fn: The generator function.
    """

    name: str
    group: str
    fn: GeneratorFunc


class ContentPlugin:
    """Base class of content plugins.

    Subclasses provide ``name``, ``view`` and ``filename`` and the async
    ``from_file`` factory. The registry stamps ``env``, ``plugin`` and
    ``source_path`` onto every instance it creates; the tree sets ``parent``.
    """

    is_leaf = True

    parent: ContentTree | None = None
    env: Environment | None = None
    plugin: Union[PluginDef, GeneratorDef, None] = None
    source_path: str | None = None

    @property
    def name(self) -> str:
        return "ContentPlugin"

    @property
    def view(self) -> str | Callable[..., Any]:
        """A view function, or the name of a registered view."""
        raise NotImplementedError("view not implemented")

    @property
    def filename(self) -> str:
        """Output path of this content, relative to the output directory."""
        raise NotImplementedError("filename not implemented")

    @classmethod
    async def from_file(cls, filepath: FilePath) -> ContentPlugin:
        raise NotImplementedError("from_file() not implemented")

    @property
    def group(self) -> str:
        return self.plugin.group if self.plugin else "files"

    def get_url(self, base_url: str | None = None) -> str:
        """Convert ``filename`` into a URL under the base URL.

        Args:
            base_url: Base URL path. Defaults to the configured ``base_url``.

        Returns:
            URL of this content.
        """
        base = base_url or (self.env.config.base_url if self.env else "/")
        if not base.endswith("/"):
            base += "/"
        return url_resolve(base, to_posix(self.filename))

    @property
    def url(self) -> str:
        return self.get_url()

    @property
    def plugin_colour(self) -> str:
        """Colour used for this leaf when the tree is printed."""
        return "cyan"

    @property
    def plugin_info(self) -> str:
        return f"url: {self.get_url()} plugin: {self.name}"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.source_path or '?'}>"


class StaticFile(ContentPlugin):
    """Fallback plugin that outputs a content file unchanged.

    Attributes:
        filepath: Path of the source file.
    """

    def __init__(self, filepath: FilePath):
        self.filepath = filepath

    @property
    def name(self) -> str:
        return "StaticFile"

    @property
    def view(self) -> Callable[..., BinaryIO]:
        return self._open

    def _open(self, *args: Any) -> BinaryIO:
        return open(self.filepath.full, "rb")

    @property
    def filename(self) -> str:
        return self.filepath.relative

    @property
    def plugin_colour(self) -> str:
        return "none"

    @classmethod
    async def from_file(cls, filepath: FilePath) -> StaticFile:
        return cls(filepath)


# Used when no registered plugin matches a file. It is never registered itself.
DEFAULT_PLUGIN_DEF = PluginDef(name="StaticFile", group="files", pattern="", cls=StaticFile)
