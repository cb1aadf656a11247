"""Fake plugins and helpers shared by the tests."""

from __future__ import annotations

from pathlib import Path

from hoarfrost.config import Config
from hoarfrost.content import ContentPlugin, PluginDef
from hoarfrost.environment import Environment
from hoarfrost.tree import FilePath


class FakePlugin(ContentPlugin):
    """Content plugin whose view returns a fixed output."""

    output: bytes | None = b"fake"

    def __init__(self, filepath: FilePath):
        self.filepath = filepath

    @property
    def name(self):
        return "FakePlugin"

    @property
    def filename(self):
        return self.filepath.relative

    @property
    def view(self):
        return self._render

    def _render(self, env, locals, contents, templates, content):
        return self.output

    @classmethod
    async def from_file(cls, filepath):
        return cls(filepath)


class BrokenPlugin(FakePlugin):
    @classmethod
    async def from_file(cls, filepath):
        raise ValueError("cannot parse")


class FakeTemplate:
    """Template that formats its source with the context and records the context."""

    def __init__(self, source: str):
        self.source = source
        self.calls: list[dict] = []

    def render(self, locals):
        self.calls.append(locals)
        return self.source.format(**locals).encode("utf-8")

    @classmethod
    async def from_file(cls, filepath):
        return cls(Path(filepath.full).read_text(encoding="utf-8"))


FAKES = PluginDef(name="FakePlugin", group="fakes", pattern="**/*", cls=FakePlugin)


def leaf(relative: str, cls: type[FakePlugin] = FakePlugin, plugin: PluginDef | None = FAKES) -> FakePlugin:
    """Create a leaf as the registry would, without touching the filesystem."""
    node = cls(FilePath(full=f"/site/contents/{relative}", relative=relative))
    node.plugin = plugin
    node.source_path = node.filepath.full
    return node


def write_files(root: Path, files: dict[str, str | bytes]) -> None:
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")


def make_env(tmp_path: Path, files: dict[str, str | bytes] | None = None, **settings) -> Environment:
    """Create an environment rooted at ``tmp_path`` with a content and template directory."""
    (tmp_path / "contents").mkdir(exist_ok=True)
    (tmp_path / "templates").mkdir(exist_ok=True)
    write_files(tmp_path / "contents", files or {})
    config = Config.from_dict({"contents": "contents", "templates": "templates", **settings})
    return Environment(config, tmp_path)
