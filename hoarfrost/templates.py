"""Template loading for Hoarfrost.

Every file in the template directory that a registered template plugin
claims is loaded into a template instance. Views look templates up by their
path relative to the template directory.

Key items:
- TemplatePlugin: Base class of template plugins.
- load_templates: Load the template directory into a template map.
"""

from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING, Any

from .log import verbose
from .tree import FilePath
from .utils import read_dir_recursive

if TYPE_CHECKING:
    from .environment import Environment
    from .protocols import TemplateRenderer

__all__ = ["TemplateError", "TemplatePlugin", "load_templates"]


class TemplateError(Exception):
    """A template plugin failed to load a template file.

    Attributes:
        source_path: Path of the template, relative to the template directory.
        message: Human-readable error message.
        original_error: The exception raised by the plugin.
    """

    def __init__(self, source_path: str, message: str, original_error: Exception | None = None):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"template {source_path}: {message}")


class TemplatePlugin:
    """Base class of template plugins.

    Subclasses implement ``render`` and the async ``from_file`` factory, which
    is expected to do any compilation up front so that rendering is cheap.
    """

    @property
    def name(self) -> str:
        return "TemplatePlugin"

    def render(self, locals: dict[str, Any]) -> bytes:
        raise NotImplementedError

    @classmethod
    async def from_file(cls, filepath: FilePath) -> TemplatePlugin:
        raise NotImplementedError


async def load_templates(env: Environment) -> dict[str, TemplateRenderer]:
    """Load every template in the environment's template directory.

    Files that no template plugin handles are skipped. A missing template
    directory yields an empty map.

    Args:
        env: The environment.

    Returns:
        Template instances keyed on their ``/`` separated relative path.

    Raises:
        TemplateError: If a template plugin fails to load a file.
    """
    templates: dict[str, TemplateRenderer] = {}
    if not os.path.isdir(env.templates_path):
        verbose("Template directory %s does not exist", env.templates_path)
        return templates
    for relative in await asyncio.to_thread(read_dir_recursive, env.templates_path):
        filepath = FilePath(full=os.path.join(env.templates_path, relative), relative=relative)
        plugin = env.registry.resolve_template(filepath)
        if plugin is None:
            continue
        verbose("Loading template %s", relative)
        try:
            templates[relative] = await plugin.cls.from_file(filepath)
        except Exception as exc:
            raise TemplateError(relative, str(exc), exc) from exc
    return templates
