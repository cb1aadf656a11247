import asyncio

from fakes import FakePlugin, leaf, make_env
from hoarfrost.content import GENERATED, GeneratorDef
from hoarfrost.generator import run_generator, run_generators
from hoarfrost.tree import ContentTree, flatten, from_directory


def _generated(relative):
    return leaf(relative, plugin=None)


def test_generator_output_becomes_tree(tmp_path):
    env = make_env(tmp_path)
    page = _generated("archive/2024.html")
    index = _generated("archive/index.html")
    generator = GeneratorDef(name="archive", group="archives", fn=lambda contents: {"archive": {"2024.html": page, "index.html": index}})

    tree = asyncio.run(run_generator(env, ContentTree(), generator))

    assert isinstance(tree["archive"], ContentTree)
    assert tree["archive"]["2024.html"] is page
    assert page.parent is tree["archive"]
    assert page.env is env
    assert page.plugin is generator
    assert page.source_path == GENERATED
    assert tree["archive"].groups["archives"] == [page, index]
    assert "archives" in tree["archive"].groupnames


def test_async_generators_are_awaited(tmp_path):
    env = make_env(tmp_path)

    async def feed(contents):
        return {"feed.xml": _generated("feed.xml")}

    generator = GeneratorDef(name="feed", group="feed", fn=feed)
    tree = asyncio.run(run_generator(env, ContentTree(), generator))

    assert [item.filename for item in flatten(tree)] == ["feed.xml"]
    assert tree.groups["feed"] == [tree["feed.xml"]]


def test_generator_may_return_nothing(tmp_path):
    env = make_env(tmp_path)
    generator = GeneratorDef(name="nothing", group="nothing", fn=lambda contents: None)

    tree = asyncio.run(run_generator(env, ContentTree(), generator))

    assert len(tree) == 0


def test_generators_see_only_the_file_tree(tmp_path):
    env = make_env(tmp_path, {"a.txt": "a", "b.txt": "b"})
    env.register_content_plugin("fakes", "**/*", FakePlugin)
    seen = []

    def first(contents):
        seen.append(sorted(contents))
        return {"first.html": _generated("first.html")}

    def second(contents):
        seen.append(sorted(contents))
        return {"second.html": _generated("second.html")}

    env.register_generator("first", first)
    env.register_generator("second", second)

    async def scenario():
        contents = await from_directory(env, env.contents_path)
        return await run_generators(env, contents)

    trees = asyncio.run(scenario())

    assert seen == [["a.txt", "b.txt"], ["a.txt", "b.txt"]]
    assert [list(tree) for tree in trees] == [["first.html"], ["second.html"]]


def test_file_content_wins_over_generated_content(tmp_path):
    env = make_env(tmp_path, {"index.html": "file", "blog/post.html": "file"})
    env.register_content_plugin("fakes", "**/*", FakePlugin)
    generated_index = _generated("index.html")
    generated_feed = _generated("blog/feed.xml")
    env.register_generator(
        "site", lambda contents: {"index.html": generated_index, "blog": {"feed.xml": generated_feed}}
    )

    tree = asyncio.run(env.get_contents())

    assert tree["index.html"] is not generated_index
    assert tree["index.html"].source_path == str(tmp_path / "contents" / "index.html")
    assert tree["blog"]["feed.xml"] is generated_feed
    assert sorted(tree["blog"]) == ["feed.xml", "post.html"]
    assert len(flatten(tree)) == 3
