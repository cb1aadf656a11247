"""Jinja2 template plugin.

Templates are loaded through a Jinja2 environment rooted at the site's
template directory, so ``{% extends %}`` and ``{% include %}`` take paths
relative to it. Options in the ``jinja`` setting are passed to the Jinja2
environment.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from jinja2 import Environment as JinjaEnvironment
from jinja2 import FileSystemLoader, Template, select_autoescape

from ..templates import TemplatePlugin

if TYPE_CHECKING:
    from ..environment import Environment
    from ..tree import FilePath

PATTERN = "**/*.+(html|jinja|j2)"


def _pygments_css() -> str:
    """Return Pygments CSS styles for highlighted code blocks."""
    from pygments.formatters import HtmlFormatter

    return HtmlFormatter().get_style_defs(".highlight")


def create_jinja_env(env: Environment) -> JinjaEnvironment:
    """Create the Jinja2 environment for a site.

    Args:
        env: The Hoarfrost environment.

    Returns:
        A Jinja2 environment loading from the template directory.
    """
    options = dict(env.config.get("jinja", {}) or {})
    options.setdefault("autoescape", select_autoescape(["html", "xml"]))
    jinja_env = JinjaEnvironment(loader=FileSystemLoader(env.templates_path), **options)
    jinja_env.globals["pygments_css"] = _pygments_css
    jinja_env.globals["helpers"] = env.helpers
    return jinja_env


class JinjaTemplate(TemplatePlugin):
    """A compiled Jinja2 template.

    Attributes:
        template: The compiled template.
    """

    jinja_env: JinjaEnvironment | None = None

    def __init__(self, template: Template):
        self.template = template

    @property
    def name(self) -> str:
        return "jinja"

    def render(self, locals: dict[str, Any]) -> bytes:
        return self.template.render(locals).encode("utf-8")

    @classmethod
    async def from_file(cls, filepath: FilePath) -> JinjaTemplate:
        if cls.jinja_env is None:
            raise RuntimeError("Jinja template plugin is not registered with an environment")
        template = await asyncio.to_thread(cls.jinja_env.get_template, filepath.relative)
        return cls(template)


def register(env: Environment) -> None:
    bound = type("JinjaTemplate", (JinjaTemplate,), {"jinja_env": create_jinja_env(env)})
    env.register_template_plugin(PATTERN, bound)
