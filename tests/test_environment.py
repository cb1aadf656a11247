import asyncio
import datetime

import pytest

from fakes import BrokenPlugin, make_env, write_files
from hoarfrost.config import Config, ConfigError
from hoarfrost.environment import Environment, PluginLoadError
from hoarfrost.log import logger
from hoarfrost.registry import ContentError

PLUGIN_MODULE = '''
from hoarfrost.content import ContentPlugin


class Feed(ContentPlugin):
    @property
    def filename(self):
        return "feed.xml"

    @property
    def view(self):
        return "feed"


def feed_view(env, locals, contents, templates, content):
    return ("<feed>%d</feed>" % len(contents["blog"].groups["pages"])).encode()


def register(env):
    env.helpers.shout = str.upper
    env.register_view("feed", feed_view)
    env.register_generator("feed", lambda contents: {"feed.xml": Feed()})
'''


def _site(tmp_path, **settings):
    env = make_env(
        tmp_path,
        {
            "index.md": "---\ntitle: Home\ntemplate: page.html\n---\nWelcome to *{{ nothing }}*.\n",
            "blog/first.md": "---\ntitle: First\ntemplate: page.html\n---\nHello.\n",
            "style.css": "body {}",
        },
        **settings,
    )
    write_files(
        tmp_path / "templates",
        {
            "base.html": "<h1>{{ site }}: {{ page.title }}</h1>{% block body %}{% endblock %}",
            "page.html": "{% extends 'base.html' %}{% block body %}{{ page.html }}{% endblock %}",
        },
    )
    return env


def test_build_renders_pages_and_static_files(tmp_path):
    env = _site(tmp_path, locals={"site": "Demo"})
    output = tmp_path / "build"

    written = asyncio.run(env.build(output))

    assert written == 3
    assert env.mode == "build"
    index = (output / "index.html").read_text(encoding="utf-8")
    assert index.startswith("<h1>Demo: Home</h1><p>Welcome to <em>{{ nothing }}</em>.</p>")
    assert "<h1>Demo: First</h1>" in (output / "blog" / "first.html").read_text(encoding="utf-8")
    assert (output / "style.css").read_text(encoding="utf-8") == "body {}"


def test_build_defaults_to_configured_output(tmp_path):
    env = _site(tmp_path, output="public")
    asyncio.run(env.build())
    assert (tmp_path / "public" / "index.html").exists()


def test_plugin_modules_load_from_config_paths(tmp_path):
    (tmp_path / "plugins").mkdir()
    (tmp_path / "plugins" / "feed.py").write_text(PLUGIN_MODULE, encoding="utf-8")
    env = _site(tmp_path, plugins=["./plugins/feed.py"])
    output = tmp_path / "build"

    written = asyncio.run(env.build(output))

    assert written == 4
    assert (output / "feed.xml").read_bytes() == b"<feed>1</feed>"
    assert env.helpers.shout("x") == "X"
    assert str(tmp_path / "plugins" / "feed.py") in env.loaded_modules


def test_plugins_load_in_order_after_defaults(tmp_path):
    env = make_env(tmp_path, plugins=["json"])
    with pytest.raises(PluginLoadError, match="Error loading plugin 'json': module has no register"):
        asyncio.run(env.load_plugins())
    assert "MarkdownPage" in env.plugins


def test_missing_plugin_module_raises(tmp_path):
    env = make_env(tmp_path, plugins=["./nowhere.py"])
    with pytest.raises(PluginLoadError, match="Error loading plugin './nowhere.py'"):
        asyncio.run(env.load_plugins())


def test_views_directory_registers_views(tmp_path):
    write_files(
        tmp_path / "views",
        {"upper.py": "def view(env, locals, contents, templates, content):\n    return b'UP'\n"},
    )
    env = make_env(tmp_path, views="views")
    asyncio.run(env.load_views())
    assert env.views["upper"](None, {}, None, {}, None) == b"UP"


def test_view_module_without_view_raises(tmp_path):
    write_files(tmp_path / "views", {"empty.py": "x = 1\n"})
    env = make_env(tmp_path, views="views")
    with pytest.raises(PluginLoadError, match="Error loading view 'empty'"):
        asyncio.run(env.load_views())


def test_imports_are_exposed_in_locals(tmp_path, caplog, monkeypatch):
    monkeypatch.setattr(logger, "propagate", True)
    env = make_env(tmp_path, locals={"dt": "shadowed"}, imports={"dt": "datetime", "bad": "no_such_module_xyz"})
    asyncio.run(env.setup_locals())

    assert env.locals["dt"] is datetime
    assert "bad" not in env.locals
    messages = [record.getMessage() for record in caplog.records]
    assert any("overwrites previous local" in message for message in messages)
    assert any("Unable to load 'no_such_module_xyz'" in message for message in messages)


def test_mapping_locals_are_available_without_setup(tmp_path):
    env = Environment(Config.from_dict({"locals": {"site": "Demo"}}), tmp_path)
    assert env.locals == {"site": "Demo"}
    assert env.locals is not env.config.locals


def test_locals_can_come_from_a_file(tmp_path):
    (tmp_path / "locals.yaml").write_text("site: From file\n", encoding="utf-8")
    env = make_env(tmp_path, locals="locals.yaml")
    asyncio.run(env.setup_locals())
    assert env.locals == {"site": "From file"}


def test_relative_contents_path(tmp_path):
    env = make_env(tmp_path)
    assert env.relative_contents_path(str(tmp_path / "contents" / "blog" / "a.md")) == "blog/a.md"
    assert env.relative_contents_path(str(tmp_path / "contents")) == ""
    assert env.resolve_contents_path("blog") == str(tmp_path / "contents" / "blog")
    assert env.relative_path(str(tmp_path / "templates")) == "templates"


def test_create_from_config_file(tmp_path):
    (tmp_path / "site.yaml").write_text("contents: src\nlocals:\n  name: demo\n", encoding="utf-8")

    env = asyncio.run(Environment.create(tmp_path / "site.yaml"))

    assert env.workdir == str(tmp_path)
    assert env.contents_path == str(tmp_path / "src")
    assert env.locals == {"name": "demo"}


def test_create_from_missing_config_file_raises(tmp_path):
    with pytest.raises(ConfigError):
        asyncio.run(Environment.create(tmp_path / "missing.yaml"))


def test_broken_content_fails_the_load(tmp_path):
    env = make_env(tmp_path, {"a.broken": "x"})
    env.register_content_plugin("broken", "**/*.broken", BrokenPlugin)

    with pytest.raises(ContentError, match="a.broken: cannot parse"):
        asyncio.run(env.get_contents())


def test_reset_drops_registrations(tmp_path):
    env = make_env(tmp_path, locals={"site": "demo"})

    async def scenario():
        await env.load_plugins()
        env.register_view("custom", lambda *args: b"")
        env.locals["extra"] = True
        await env.reset()

    asyncio.run(scenario())

    assert set(env.plugins) == {"StaticFile"}
    assert set(env.views) == {"none"}
    assert env.locals == {"site": "demo"}
    assert env.get_content_groups() == []


def test_set_config_recomputes_paths(tmp_path):
    env = make_env(tmp_path)
    env.set_config(Config.from_dict({"contents": "other", "templates": "layouts"}))
    assert env.contents_path == str(tmp_path / "other")
    assert env.templates_path == str(tmp_path / "layouts")


def test_change_listeners(tmp_path):
    env = make_env(tmp_path)
    seen = []
    env.on_change(lambda path, ignored: seen.append((path, ignored)))
    env.emit_change("a.md")
    env.emit_change()
    assert seen == [("a.md", False), (None, False)]
