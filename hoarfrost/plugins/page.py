"""The Page content plugin and the ``template`` view.

Page is the common base of the content plugins that ship with Hoarfrost
(everything but the static file fallback). A page has metadata, an output
filename built from a filename template, and HTML produced by a subclass's
``get_html``. Pages are rendered by the ``template`` view, which renders the
template named in the page metadata.

Filename templates support these placeholders:

- ``:year``, ``:month``, ``:day``: The page date.
- ``:title``: Slug of the page title.
- ``:file``: Source filename without its extension.
- ``:ext``: Source file extension, including the dot.
- ``:basename``: Source filename.
- ``:dirname``: Directory of the source file.
- ``{{ expression }}``: A Jinja2 expression, with ``env`` and ``page`` in scope.

A filename starting with ``/`` is relative to the output root; any other
filename is relative to the source file's directory.
"""

from __future__ import annotations

import posixpath
import re
from datetime import date, datetime, timezone
from email.utils import format_datetime
from typing import TYPE_CHECKING, Any

from jinja2 import Environment as JinjaEnvironment
from markupsafe import Markup

from ..content import ContentPlugin
from ..utils import maybe_await, slugify, strip_extension

if TYPE_CHECKING:
    from ..environment import Environment
    from ..tree import FilePath

DEFAULT_FILENAME_TEMPLATE = ":file.html"
DEFAULT_INTRO_CUTOFFS = ['<span class="more', "<h2", "<hr"]
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_PLACEHOLDER_RE = re.compile(r":(year|month|day|title|file|ext|basename|dirname)", re.IGNORECASE)
_EXPRESSION_RE = re.compile(r"\{\{(.*?)\}\}")

_expressions = JinjaEnvironment()


def _parse_date(value: Any) -> datetime:
    if not value:
        return EPOCH
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))


class Page(ContentPlugin):
    """Base class of pages.

    Subclasses override ``get_html``.

    Attributes:
        filepath: Path of the source file.
        metadata: Page metadata, typically from frontmatter.
    """

    def __init__(self, filepath: FilePath, metadata: dict[str, Any]):
        self.filepath = filepath
        self.metadata = metadata

    @property
    def name(self) -> str:
        return "Page"

    def _setting(self, key: str, default: Any = None) -> Any:
        if self.env is None:
            return default
        return self.env.config.get(key, default)

    @property
    def filename(self) -> str:
        """Output path built from the filename template."""
        dirname = posixpath.dirname(self.filepath.relative)
        basename = posixpath.basename(self.filepath.relative)
        page_date = self.date
        values = {
            "year": f"{page_date.year}",
            "month": f"{page_date.month:02d}",
            "day": f"{page_date.day:02d}",
            "title": slugify(self.title),
            "file": strip_extension(basename),
            "ext": posixpath.splitext(basename)[1],
            "basename": basename,
            "dirname": dirname,
        }
        filename = _PLACEHOLDER_RE.sub(lambda m: values[m.group(1).lower()], self.filename_template)
        filename = _EXPRESSION_RE.sub(self._evaluate, filename)
        if filename.startswith("/"):
            return filename[1:]
        return posixpath.join(dirname, filename)

    def _evaluate(self, match: re.Match) -> str:
        expression = _expressions.compile_expression(match.group(1).strip())
        return str(expression(env=self.env, page=self))

    def get_url(self, base_url: str | None = None) -> str:
        """URL of the page, with a trailing ``index.html`` removed."""
        url = super().get_url(base_url)
        if url.endswith("/index.html"):
            return url[: -len("index.html")]
        return url

    @property
    def view(self) -> str:
        return self.metadata.get("view") or "template"

    def get_html(self, base_url: str | None = None) -> str:
        """Render the page body. Subclasses must override this."""
        raise NotImplementedError("get_html() not implemented")

    @property
    def html(self) -> Markup:
        return Markup(self.get_html())

    def get_intro(self, base_url: str | None = None) -> str:
        """Return the HTML before the first intro cutoff marker.

        The markers come from the ``intro_cutoffs`` setting. Pages without any
        marker return their full HTML.
        """
        html = self.get_html(base_url)
        cutoffs = self._setting("intro_cutoffs", DEFAULT_INTRO_CUTOFFS)
        positions = [html.find(cutoff) for cutoff in cutoffs]
        positions = [p for p in positions if p != -1]
        if positions:
            return html[: min(positions)]
        return html

    @property
    def intro(self) -> Markup:
        return Markup(self.get_intro())

    @property
    def has_more(self) -> bool:
        return len(self.get_html()) > len(self.get_intro())

    @property
    def filename_template(self) -> str:
        return (
            self.metadata.get("filename")
            or self._setting("filename_template")
            or DEFAULT_FILENAME_TEMPLATE
        )

    @property
    def template(self) -> str:
        return self.metadata.get("template") or self._setting("default_template") or "none"

    @property
    def title(self) -> str:
        return self.metadata.get("title") or "Untitled"

    @property
    def date(self) -> datetime:
        return _parse_date(self.metadata.get("date"))

    @property
    def rfc2822_date(self) -> str:
        return format_datetime(self.date)

    rfc822_date = rfc2822_date


async def template_view(
    env: Environment,
    locals: dict[str, Any],
    contents: Any,
    templates: dict[str, Any],
    content: Page,
) -> bytes | None:
    """Render a page with the template named in its metadata.

    Pages whose template is ``none`` produce no output.

    Raises:
        LookupError: If the template is not loaded.
    """
    if content.template == "none":
        return None
    template = templates.get(posixpath.normpath(content.template))
    if template is None:
        raise LookupError(f"Page '{content.filename}' specifies unknown template '{content.template}'")
    return await maybe_await(template.render({"page": content, **locals}))


def register(env: Environment) -> None:
    env.plugins["Page"] = Page
    env.register_view("template", template_view)
