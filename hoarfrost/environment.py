"""The Hoarfrost environment.

The environment is the session object shared by the core, plugins and
templates. It owns the configuration, the plugin registry and the named
views, loads plugin modules, view modules and template locals, and drives
the two top-level operations: a one-shot build and the preview server.

Key classes:
- Environment: Build-time and preview-time session state.
- PluginLoadError: A plugin or view module could not be loaded.
"""

from __future__ import annotations

import asyncio
import importlib
import importlib.util
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType, SimpleNamespace
from typing import Any, Callable

from .config import Config
from .content import ContentPlugin, StaticFile
from .generator import run_generators
from .log import logger, verbose
from .plugins import DEFAULT_PLUGINS
from .protocols import GeneratorFunc, ViewFunc
from .registry import PluginRegistry
from .render import render
from .templates import load_templates
from .tree import ContentTree, from_directory, merge
from .utils import maybe_await, read_data_file, to_posix

__all__ = ["Environment", "PluginLoadError", "SiteData"]


class PluginLoadError(Exception):
    """A plugin or view module could not be imported or failed to register."""


@dataclass
class SiteData:
    """Everything a render needs.

    Attributes:
        contents: The content tree, generated content included.
        templates: Loaded templates keyed on relative path.
        locals: Template context data.
    """

    contents: ContentTree
    templates: dict[str, Any]
    locals: dict[str, Any]


def _no_output(*args: Any) -> None:
    return None


class Environment:
    """Session state shared by the core, plugins and templates.

    Create environments with ``Environment.create``, which also loads the
    template locals.

    Attributes:
        config: The site configuration.
        workdir: Directory that relative config paths resolve against.
        mode: ``"build"`` or ``"preview"`` once an operation has started.
        registry: Registered content plugins, template plugins and generators.
        plugins: Registered plugin classes keyed on class name.
        views: Named view functions.
        helpers: Namespace that plugins can use to share helper functions.
        locals: Template context data.
        contents_path: Absolute path of the content directory.
        templates_path: Absolute path of the template directory.
        loaded_modules: Names of the modules loaded so far.
    """

    def __init__(self, config: Config, workdir: str | Path):
        self.workdir = os.path.abspath(workdir)
        self.mode: str | None = None
        self.loaded_modules: list[str] = []
        self._listeners: list[Callable[[str | None, bool], Any]] = []
        self.set_config(config)
        self._clear()

    @classmethod
    async def create(cls, config: Config | str | Path, workdir: str | Path | None = None) -> Environment:
        """Create and set up an environment.

        Args:
            config: A Config, or the path of a configuration file.
            workdir: Working directory. Defaults to the directory of the
                configuration file, or the current directory.

        Returns:
            The environment, with its locals loaded.

        Raises:
            ConfigError: If the configuration file cannot be loaded.
        """
        if not isinstance(config, Config):
            path = Path(config)
            workdir = workdir or path.parent
            config = await asyncio.to_thread(Config.from_file, path)
        env = cls(config, workdir or os.getcwd())
        await env.setup_locals()
        return env

    def _clear(self) -> None:
        self.registry = PluginRegistry()
        self.plugins: dict[str, type] = {"StaticFile": StaticFile}
        self.views: dict[str, ViewFunc] = {"none": _no_output}
        self.helpers = SimpleNamespace()
        # File-based locals and imports are loaded by setup_locals.
        self.locals: dict[str, Any] = dict(self.config.locals) if isinstance(self.config.locals, Mapping) else {}

    async def reset(self) -> None:
        """Drop every registration and reload the locals from the configuration.

        Modules that were already imported stay in the interpreter; plugin
        modules are re-registered by the next ``load_plugins`` call.
        """
        self._clear()
        await self.setup_locals()

    def set_config(self, config: Config) -> None:
        """Replace the configuration and recompute the content and template paths."""
        self.config = config
        self.contents_path = self.resolve_path(config.contents)
        self.templates_path = self.resolve_path(config.templates)

    async def setup_locals(self) -> None:
        """Load the template locals.

        ``config.locals`` is either a mapping or the path of a JSON or YAML
        file. Each module named in ``config.imports`` is then exposed in the
        locals under its alias; modules that fail to import are skipped with
        a warning.
        """
        if isinstance(self.config.locals, str):
            filename = self.resolve_path(self.config.locals)
            verbose("Loading locals from %s", filename)
            self.locals = dict(await asyncio.to_thread(read_data_file, filename) or {})
        else:
            self.locals = dict(self.config.locals or {})

        for alias, module in (self.config.imports or {}).items():
            verbose("Loading module '%s' available in locals as '%s'", module, alias)
            if alias in self.locals:
                logger.warning("Module '%s' overwrites previous local with the same key ('%s')", module, alias)
            try:
                self.locals[alias] = self.load_module(module)
            except Exception as exc:
                logger.warning("Unable to load '%s': %s", module, exc)

    def resolve_path(self, pathname: str | Path) -> str:
        """Resolve a path against the working directory."""
        return os.path.abspath(os.path.join(self.workdir, pathname))

    def resolve_contents_path(self, pathname: str = "") -> str:
        """Resolve a path against the content directory."""
        return os.path.abspath(os.path.join(self.contents_path, pathname))

    def relative_path(self, pathname: str) -> str:
        return to_posix(os.path.relpath(pathname, self.workdir))

    def relative_contents_path(self, pathname: str) -> str:
        """Return a path relative to the content directory, ``""`` for the directory itself."""
        relative = os.path.relpath(os.path.abspath(pathname), self.contents_path)
        return "" if relative == "." else to_posix(relative)

    def register_content_plugin(self, group: str, pattern: str, plugin: type[ContentPlugin]) -> None:
        """Register a content plugin class for files matching ``pattern``.

        Registered plugins are searched newest first, so a plugin can shadow
        one registered earlier for the same files.
        """
        self.registry.register_content(group, pattern, plugin)
        self.plugins[plugin.__name__] = plugin

    def register_template_plugin(self, pattern: str, plugin: type) -> None:
        """Register a template plugin class for template files matching ``pattern``."""
        self.registry.register_template(pattern, plugin)
        self.plugins[plugin.__name__] = plugin

    def register_generator(self, name: str, fn: GeneratorFunc, group: str | None = None) -> None:
        """Register a generator. Its content is filed under ``group`` (default: ``name``)."""
        self.registry.register_generator(name, fn, group)

    def register_view(self, name: str, view: ViewFunc) -> None:
        self.views[name] = view

    def get_content_groups(self) -> list[str]:
        return self.registry.content_groups()

    def load_module(self, name: str) -> ModuleType:
        """Import a module by dotted name or by file path.

        Names ending in ``.py`` or starting with ``.`` or ``/`` are treated as
        paths relative to the working directory.

        Args:
            name: Module name or path.

        Returns:
            The imported module.
        """
        if name.endswith(".py") or name.startswith((".", "/")) or os.sep in name:
            path = Path(self.resolve_path(name))
            if path.is_dir():
                path = path / "__init__.py"
            elif path.suffix != ".py":
                path = path.with_suffix(".py")
            module_name = f"_hoarfrost_{path.stem}_{abs(hash(str(path))):x}"
            spec = importlib.util.spec_from_file_location(module_name, path)
            if spec is None or spec.loader is None:
                raise ImportError(f"Cannot load module from {path}")
            module = importlib.util.module_from_spec(spec)
            sys.modules[module_name] = module
            try:
                spec.loader.exec_module(module)
            except BaseException:
                sys.modules.pop(module_name, None)
                raise
            self.loaded_modules.append(str(path))
            return module
        module = importlib.import_module(name)
        self.loaded_modules.append(name)
        return module

    async def load_plugin_module(self, module: str | ModuleType) -> None:
        """Load a plugin module and call its ``register(env)`` function.

        Args:
            module: Module name, module path, or an imported module.

        Raises:
            PluginLoadError: If the module cannot be imported or registration fails.
        """
        name = module if isinstance(module, str) else module.__name__
        try:
            if isinstance(module, str):
                module = self.load_module(module)
            register = getattr(module, "register", None)
            if register is None:
                raise AttributeError("module has no register() function")
            await maybe_await(register(self))
        except Exception as exc:
            raise PluginLoadError(f"Error loading plugin '{name}': {exc}") from exc

    async def load_plugins(self) -> None:
        """Load the default plugins, then the plugins listed in the configuration, in order."""
        for plugin in DEFAULT_PLUGINS:
            verbose("Loading default plugin %s", plugin)
            await self.load_plugin_module(plugin)
        for plugin in self.config.plugins or []:
            verbose("Loading plugin %s", plugin)
            await self.load_plugin_module(plugin)

    async def load_views(self) -> None:
        """Register the view modules in the configured views directory.

        Every ``.py`` file must define a ``view`` function, which is registered
        under the file's stem.

        Raises:
            PluginLoadError: If a view module cannot be loaded.
        """
        if not self.config.views:
            return
        views_dir = Path(self.resolve_path(self.config.views))
        for path in sorted(views_dir.glob("*.py")):
            verbose("Loading view '%s'", path.stem)
            try:
                module = self.load_module(str(path))
                view = module.view
            except Exception as exc:
                raise PluginLoadError(f"Error loading view '{path.stem}': {exc}") from exc
            self.register_view(path.stem, view)

    async def get_contents(self) -> ContentTree:
        """Load the content tree and overlay the generated content.

        Generators all run against the file-based tree. File-based content
        wins over generated content at the same path.
        """
        contents = await from_directory(self, self.contents_path)
        tree = ContentTree("", self.get_content_groups())
        for generated in await run_generators(self, contents):
            merge(tree, generated)
        merge(tree, contents)
        return tree

    async def get_locals(self) -> dict[str, Any]:
        return self.locals

    async def get_templates(self) -> dict[str, Any]:
        return await load_templates(self)

    async def load(self) -> SiteData:
        """Load plugins and views, then the contents, templates and locals."""
        await self.load_plugins()
        await self.load_views()
        contents = await self.get_contents()
        templates = await self.get_templates()
        return SiteData(contents=contents, templates=templates, locals=self.locals)

    async def build(self, output_dir: str | Path | None = None) -> int:
        """Build the site.

        Args:
            output_dir: Output directory. Defaults to the configured output.

        Returns:
            Number of files written.
        """
        self.mode = "build"
        output_dir = output_dir or self.resolve_path(self.config.output)
        site = await self.load()
        return await render(self, output_dir, site.contents, site.templates, site.locals)

    def preview(self, overrides: dict[str, Any] | None = None) -> int:
        """Run the preview server until it is stopped.

        Args:
            overrides: Configuration overrides to reapply when the config file is reloaded.

        Returns:
            Process exit status.
        """
        from .server import PreviewServer

        self.mode = "preview"
        return PreviewServer(self, overrides).run()

    def on_change(self, callback: Callable[[str | None, bool], Any]) -> None:
        """Call ``callback(path, ignored)`` whenever the preview server sees a change."""
        self._listeners.append(callback)

    def emit_change(self, path: str | None = None, ignored: bool = False) -> None:
        for listener in list(self._listeners):
            listener(path, ignored)
