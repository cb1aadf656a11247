"""Plugin registry for Hoarfrost.

The registry holds content plugins, template plugins and generators in
registration order. Lookups scan the registrations from the most recent to
the oldest and take the first whose pattern matches, so a plugin registered
later shadows an earlier plugin registered for the same files.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .content import DEFAULT_PLUGIN_DEF, ContentPlugin, GeneratorDef, PluginDef
from .log import verbose
from .protocols import ContentFactory, TemplateFactory
from .utils import glob_match

if TYPE_CHECKING:
    from .environment import Environment
    from .protocols import GeneratorFunc
    from .tree import FilePath


class ContentError(Exception):
    """A content plugin failed to create content from a file.

    Attributes:
        source_path: Path of the file, relative to the content directory.
        message: Human-readable error message.
        original_error: The exception raised by the plugin.
    """

    def __init__(self, source_path: str, message: str, original_error: Exception | None = None):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


@dataclass(frozen=True)
class TemplatePluginDef:
    """A registered template plugin.

    Attributes:
        pattern: Glob pattern of template paths the plugin handles.
        cls: The template plugin class.
    """

    pattern: str
    cls: type[TemplateFactory]


def _check_factory(cls: type, protocol: type, kind: str) -> None:
    if not isinstance(cls, protocol):
        raise TypeError(f"{kind} plugin {getattr(cls, '__name__', cls)!r} has no from_file() factory")


class PluginRegistry:
    """Ordered registrations of content plugins, template plugins and generators.

    Attributes:
        content_plugins: Content plugin registrations, oldest first.
        template_plugins: Template plugin registrations, oldest first.
        generators: Generator registrations, oldest first.
    """

    def __init__(self):
        self.content_plugins: list[PluginDef] = []
        self.template_plugins: list[TemplatePluginDef] = []
        self.generators: list[GeneratorDef] = []

    def register_content(self, group: str, pattern: str, cls: type[ContentPlugin]) -> PluginDef:
        """Register a content plugin class.

        Args:
            group: Group the plugin's leaves are filed under.
            pattern: Glob pattern of relative content paths the plugin handles.
            cls: Content plugin class providing ``from_file``.

        Returns:
            The new registration.

        Raises:
            TypeError: If ``cls`` has no ``from_file`` factory.
        """
        _check_factory(cls, ContentFactory, "content")
        verbose("Registering content plugin %s that handles %s", cls.__name__, pattern)
        plugin = PluginDef(name=cls.__name__, group=group, pattern=pattern, cls=cls)
        self.content_plugins.append(plugin)
        return plugin

    def register_template(self, pattern: str, cls: type[TemplateFactory]) -> TemplatePluginDef:
        """Register a template plugin class.

        Args:
            pattern: Glob pattern of relative template paths the plugin handles.
            cls: Template plugin class providing ``from_file``.

        Returns:
            The new registration.

        Raises:
            TypeError: If ``cls`` has no ``from_file`` factory.
        """
        _check_factory(cls, TemplateFactory, "template")
        verbose("Registering template plugin %s that handles %s", cls.__name__, pattern)
        plugin = TemplatePluginDef(pattern=pattern, cls=cls)
        self.template_plugins.append(plugin)
        return plugin

    def register_generator(self, name: str, fn: GeneratorFunc, group: str | None = None) -> GeneratorDef:
        """Register a generator function.

        Args:
            name: Generator name.
            fn: Generator function.
            group: Group for the generated leaves. Defaults to the generator name.

        Returns:
            The new registration.
        """
        generator = GeneratorDef(name=name, group=group or name, fn=fn)
        self.generators.append(generator)
        return generator

    def resolve(self, filepath: FilePath) -> PluginDef:
        """Find the content plugin responsible for a file.

        Args:
            filepath: The content file.

        Returns:
            The most recently registered plugin whose pattern matches the
            relative path, or the static file plugin if none does.
        """
        for plugin in reversed(self.content_plugins):
            if glob_match(filepath.relative, plugin.pattern):
                return plugin
        return DEFAULT_PLUGIN_DEF

    def resolve_template(self, filepath: FilePath) -> TemplatePluginDef | None:
        """Find the template plugin responsible for a template file, if any."""
        for plugin in reversed(self.template_plugins):
            if glob_match(filepath.relative, plugin.pattern):
                return plugin
        return None

    async def instantiate(self, env: Environment, filepath: FilePath, plugin: PluginDef) -> ContentPlugin:
        """Create the leaf for a content file.

        Args:
            env: Environment the leaf belongs to.
            filepath: The content file.
            plugin: Plugin registration to instantiate.

        Returns:
            The new leaf, stamped with its environment, plugin and source path.

        Raises:
            ContentError: If the plugin's factory fails.
        """
        try:
            instance = await plugin.cls.from_file(filepath)
        except Exception as exc:
            raise ContentError(filepath.relative, str(exc), exc) from exc
        instance.env = env
        instance.plugin = plugin
        instance.source_path = filepath.full
        return instance

    def content_groups(self) -> list[str]:
        """Distinct groups of registered content plugins and generators, in registration order."""
        groups: list[str] = []
        for registration in [*self.content_plugins, *self.generators]:
            if registration.group not in groups:
                groups.append(registration.group)
        return groups
