import asyncio

import pytest

from fakes import FakeTemplate, make_env, write_files
from hoarfrost.templates import TemplateError, load_templates


def _templates(tmp_path, files, **settings):
    env = make_env(tmp_path, **settings)
    write_files(tmp_path / "templates", files)

    async def scenario():
        await env.load_plugins()
        return await load_templates(env)

    return env, asyncio.run(scenario())


def test_templates_are_keyed_on_relative_path(tmp_path):
    env, templates = _templates(
        tmp_path,
        {"layout.html": "<body>{% block body %}{% endblock %}</body>", "partials/nav.j2": "nav", "notes.txt": "x"},
    )
    assert sorted(templates) == ["layout.html", "partials/nav.j2"]
    assert templates["layout.html"].name == "jinja"


def test_jinja_templates_extend_and_render_bytes(tmp_path):
    env, templates = _templates(
        tmp_path,
        {
            "base.html": "<title>{{ title }}</title>{% block body %}{% endblock %}",
            "page.html": "{% extends 'base.html' %}{% block body %}<p>{{ page }}</p>{% endblock %}",
        },
    )
    output = templates["page.html"].render({"title": "Home", "page": "<b>hi</b>"})
    assert output == b"<title>Home</title><p>&lt;b&gt;hi&lt;/b&gt;</p>"


def test_jinja_options_come_from_config(tmp_path):
    env, templates = _templates(tmp_path, {"a.html": "{{ value }}"}, jinja={"autoescape": False})
    assert templates["a.html"].render({"value": "<i>"}) == b"<i>"


def test_template_errors_name_the_template(tmp_path):
    with pytest.raises(TemplateError, match="template broken.html: ") as excinfo:
        _templates(tmp_path, {"broken.html": "{% if %}"})
    assert excinfo.value.source_path == "broken.html"


def test_missing_template_directory_yields_no_templates(tmp_path):
    env = make_env(tmp_path, templates="nowhere")
    assert asyncio.run(load_templates(env)) == {}


def test_later_template_plugin_wins(tmp_path):
    env = make_env(tmp_path)
    write_files(tmp_path / "templates", {"page.html": "plain {title}"})

    async def scenario():
        await env.load_plugins()
        env.register_template_plugin("**/*.html", FakeTemplate)
        return await load_templates(env)

    templates = asyncio.run(scenario())
    assert isinstance(templates["page.html"], FakeTemplate)
    assert templates["page.html"].render({"title": "x"}) == b"plain x"
