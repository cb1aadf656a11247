"""Markdown and JSON pages.

MarkdownPage renders Markdown files with mistune, highlighting fenced code
blocks with Pygments. Metadata comes from YAML frontmatter, either between
``---`` lines or in a fenced ``metadata`` block at the top of the file.

Relative links and images are resolved through the content tree, so a link
to ``../other/post.md`` points at the URL that page is published under.
Links that do not name a content node are resolved against the page's own
location.

JsonPage reads the metadata from a JSON file instead, with the Markdown body
in an optional ``content`` field.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import mistune
import yaml

from ..content import ContentPlugin
from ..tree import ContentTree
from ..utils import read_data_file, slugify, url_resolve
from .page import Page

if TYPE_CHECKING:
    from ..environment import Environment
    from ..tree import FilePath

DEFAULT_MARKDOWN_PLUGINS = ["strikethrough", "footnotes", "table", "url"]

_FRONTMATTER_RE = re.compile(r"^-{3,}\s([\s\S]*?)-{3,}(\s[\s\S]*|\s?)$")
_METADATA_FENCE = "```metadata\n"
_ABSOLUTE_URI_RE = re.compile(r"^[a-zA-Z.+]+:")


def split_content(text: str) -> tuple[str, str]:
    """Split a Markdown file into its frontmatter and its body.

    Args:
        text: File content.

    Returns:
        Tuple of (YAML source, Markdown body). The YAML source is empty if
        the file has no frontmatter.
    """
    if text.startswith("---"):
        match = _FRONTMATTER_RE.match(text)
        if match:
            return match.group(1), match.group(2)
    elif text.startswith(_METADATA_FENCE):
        end = text.find("\n```\n")
        if end != -1:
            return text[len(_METADATA_FENCE) : end], text[end + 5 :]
    return "", text


def extract_metadata(source: str) -> dict[str, Any]:
    """Parse YAML frontmatter.

    Raises:
        ValueError: If the YAML cannot be parsed. The message points at the problem.
    """
    if not source:
        return {}
    try:
        return yaml.safe_load(source) or {}
    except yaml.MarkedYAMLError as exc:
        mark = exc.problem_mark
        if mark is None:
            raise ValueError(f"YAML parsing error: {exc}") from exc
        lines = source.split("\n")
        line = lines[mark.line] if mark.line < len(lines) else ""
        raise ValueError(f"YAML: {exc.problem}\n  {line}\n  {' ' * mark.column}^\n") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"YAML parsing error: {exc}") from exc


def resolve_link(content: ContentPlugin, uri: str, base_url: str) -> str:
    """Rewrite a link target relative to a page.

    Absolute URIs and in-page anchors are returned unchanged. Other targets
    are walked through the content tree from the page's parent branch: an
    empty segment (a leading ``/``) goes to the root, ``..`` to the parent,
    and any other segment to the child of that name. If the walk ends on a
    leaf, the leaf's URL is returned with the original fragment.

    Args:
        content: Page the link appears in.
        uri: Link target.
        base_url: Location to resolve unmatched targets against.

    Returns:
        The rewritten target.
    """
    if _ABSOLUTE_URI_RE.match(uri) or uri.startswith("#"):
        return uri

    pathname, hash_sep, fragment = uri.partition("#")
    pathname = pathname.split("?", 1)[0]

    node: ContentTree | ContentPlugin | None = content.parent
    parts = pathname.split("/") if pathname else []
    for part in parts:
        if node is None:
            break
        if part == "":
            while node.parent is not None:
                node = node.parent
        elif part == "..":
            node = node.parent
        elif isinstance(node, ContentTree) and part in node:
            node = node[part]
    if isinstance(node, ContentPlugin):
        return node.url + hash_sep + fragment
    return url_resolve(base_url, uri)


class _PageRenderer(mistune.HTMLRenderer):
    """HTML renderer that resolves links through the content tree.

    Attributes:
        content: Page being rendered.
        base_url: Location unresolved links are resolved against.
    """

    def __init__(self, content: ContentPlugin, base_url: str):
        super().__init__(escape=False)
        self.content = content
        self.base_url = base_url
        self._heading_id_counts: dict[str, int] = {}

    def link(self, text: str, url: str, title: str | None = None) -> str:
        return super().link(text, resolve_link(self.content, url, self.base_url), title)

    def image(self, text: str, url: str, title: str | None = None) -> str:
        return super().image(text, resolve_link(self.content, url, self.base_url), title)

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = slugify(re.sub(r"<[^>]+>", "", text))
        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a code block with Pygments syntax highlighting."""
        lang = info.split()[0] if info else None
        if lang:
            try:
                from pygments import highlight
                from pygments.formatters import HtmlFormatter
                from pygments.lexers import get_lexer_by_name, guess_lexer
                from pygments.util import ClassNotFound

                if lang == "auto":
                    lexer = guess_lexer(code)
                else:
                    lexer = get_lexer_by_name(lang, stripall=True)
                formatter = HtmlFormatter(nowrap=False, cssclass="highlight")
                return highlight(code, lexer, formatter)
            except ClassNotFound:
                pass
        escaped = code.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        lang_class = f' class="language-{lang}"' if lang else ""
        return f"<pre><code{lang_class}>{escaped}</code></pre>\n"


def render_markdown(content: ContentPlugin, markdown: str, base_url: str, options: dict[str, Any]) -> str:
    """Render Markdown to HTML for a page.

    Args:
        content: Page the Markdown belongs to.
        markdown: Markdown source.
        base_url: Location unresolved links are resolved against.
        options: The ``markdown`` setting. ``plugins`` selects mistune plugins.

    Returns:
        The rendered HTML.
    """
    renderer = _PageRenderer(content, base_url)
    parse = mistune.create_markdown(
        renderer=renderer, plugins=options.get("plugins", DEFAULT_MARKDOWN_PLUGINS)
    )
    return parse(markdown)


class MarkdownPage(Page):
    """A page written in Markdown.

    Attributes:
        markdown: Markdown body, without the frontmatter.
    """

    def __init__(self, filepath: FilePath, metadata: dict[str, Any], markdown: str):
        super().__init__(filepath, metadata)
        self.markdown = markdown

    @property
    def name(self) -> str:
        return "MarkdownPage"

    def get_location(self, base_url: str | None = None) -> str:
        """URL of the directory the page is published in, with a trailing slash."""
        url = self.get_url(base_url)
        return url[: url.rfind("/") + 1]

    def get_html(self, base_url: str | None = None) -> str:
        options = self._setting("markdown", {}) or {}
        return render_markdown(self, self.markdown, self.get_location(base_url), options)

    @classmethod
    async def from_file(cls, filepath: FilePath) -> MarkdownPage:
        text = await asyncio.to_thread(Path(filepath.full).read_text, encoding="utf-8")
        yaml_source, markdown = split_content(text)
        return cls(filepath, extract_metadata(yaml_source), markdown)


class JsonPage(MarkdownPage):
    """A page whose metadata is a JSON file, with optional Markdown in ``content``."""

    @property
    def name(self) -> str:
        return "JsonPage"

    @classmethod
    async def from_file(cls, filepath: FilePath) -> JsonPage:
        metadata = await asyncio.to_thread(read_data_file, filepath.full)
        if not isinstance(metadata, dict):
            raise ValueError(f"{filepath.relative} must contain a JSON object")
        return cls(filepath, metadata, metadata.get("content") or "")


def register(env: Environment) -> None:
    env.register_content_plugin("pages", "**/*.+(markdown|mkd|md)", MarkdownPage)
    env.register_content_plugin("pages", "**/*.json", JsonPage)
