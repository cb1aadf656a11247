from click.testing import CliRunner

from hoarfrost import __version__
from hoarfrost.cli import cli, parse_imports
from hoarfrost.environment import Environment


def _project(root):
    (root / "contents" / "blog").mkdir(parents=True)
    (root / "templates").mkdir()
    (root / "contents" / "index.md").write_text(
        "---\ntitle: Home\ntemplate: page.html\n---\nHello.\n", encoding="utf-8"
    )
    (root / "contents" / "blog" / "post.md").write_text("Post.\n", encoding="utf-8")
    (root / "templates" / "page.html").write_text("<title>{{ page.title }}</title>{{ page.html }}", encoding="utf-8")
    (root / "hoarfrost.yaml").write_text("output: public\n", encoding="utf-8")
    return root


def test_build_command_writes_site(tmp_path):
    project = _project(tmp_path / "site")
    runner = CliRunner()

    result = runner.invoke(cli, ["build", "-C", str(project)], catch_exceptions=False)

    assert result.exit_code == 0
    assert "Using config file" in result.output
    assert "Wrote 1 files" in result.output
    assert (project / "public" / "index.html").read_text(encoding="utf-8") == "<title>Home</title><p>Hello.</p>\n"
    assert not (project / "public" / "blog").exists()


def test_build_output_option_and_clean(tmp_path):
    project = _project(tmp_path / "site")
    stale = project / "out" / "stale.txt"
    stale.parent.mkdir()
    stale.write_text("old", encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(cli, ["build", "-C", str(project), "-o", "out"])
    assert result.exit_code == 0
    assert stale.exists()

    result = runner.invoke(cli, ["build", "-C", str(project), "-o", "out", "--clean"])
    assert result.exit_code == 0
    assert not stale.exists()
    assert (project / "out" / "index.html").exists()


def test_build_failure_exits_with_error(tmp_path):
    project = _project(tmp_path / "site")
    (project / "contents" / "bad.md").write_text("---\ntitle: [oops\n---\n", encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(cli, ["build", "-C", str(project)])

    assert result.exit_code == 1
    assert "bad.md: YAML" in result.output


def test_build_with_missing_plugin_fails(tmp_path):
    project = _project(tmp_path / "site")
    runner = CliRunner()

    result = runner.invoke(cli, ["build", "-C", str(project), "-P", "./missing_plugin.py"])

    assert result.exit_code == 1
    assert "Error loading plugin" in result.output


def test_build_without_config_file_uses_defaults(tmp_path):
    project = _project(tmp_path / "site")
    (project / "hoarfrost.yaml").unlink()
    runner = CliRunner()

    result = runner.invoke(cli, ["-v", "build", "-C", str(project)])

    assert result.exit_code == 0
    assert "No config file found" in result.output
    assert (project / "build" / "index.html").exists()


def test_preview_command_passes_overrides(tmp_path, monkeypatch):
    project = _project(tmp_path / "site")
    calls = []

    def fake_preview(self, overrides=None):
        calls.append((self, overrides))
        return 0

    monkeypatch.setattr(Environment, "preview", fake_preview)
    runner = CliRunner()

    result = runner.invoke(
        cli,
        ["preview", "-C", str(project), "-p", "9090", "-I", "*.tmp, drafts/**", "-M", "dt:datetime"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    env, overrides = calls[0]
    assert overrides == {"port": 9090, "ignore": ["*.tmp", "drafts/**"], "imports": {"dt": "datetime"}}
    assert env.config.port == 9090
    assert env.config.output == "public"
    assert "dt" in env.locals


def test_preview_exit_status_is_propagated(tmp_path, monkeypatch):
    project = _project(tmp_path / "site")
    monkeypatch.setattr(Environment, "preview", lambda self, overrides=None: 1)

    result = CliRunner().invoke(cli, ["preview", "-C", str(project)])

    assert result.exit_code == 1


def test_parse_imports():
    assert parse_imports(None) is None
    assert parse_imports("dt:datetime, os.path") == {"dt": "datetime", "path": "os.path"}
    assert parse_imports("./lib/helpers.py") == {"helpers": "./lib/helpers.py"}


def test_version_option():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_new_creates_a_site_that_builds(tmp_path):
    target = tmp_path / "blog"
    runner = CliRunner()

    result = runner.invoke(cli, ["new", str(target)], catch_exceptions=False)

    assert result.exit_code == 0
    assert "using template blog" in result.output
    assert "Done!" in result.output
    assert (target / "hoarfrost.yaml").exists()
    assert (target / "contents" / "index.md").exists()
    assert (target / "templates" / "page.html").exists()

    result = runner.invoke(cli, ["build", "-C", str(target)], catch_exceptions=False)

    assert result.exit_code == 0
    index = (target / "build" / "index.html").read_text(encoding="utf-8")
    assert "Hello, world" in index
    assert (target / "build" / "about.html").exists()
    assert (target / "build" / "articles" / "2024" / "01" / "hello-world.html").exists()
    assert "Hello, world" in (target / "build" / "archive.html").read_text(encoding="utf-8")
    assert (target / "build" / "css" / "main.css").exists()


def test_new_with_basic_template(tmp_path):
    target = tmp_path / "site"

    result = CliRunner().invoke(cli, ["new", "-T", "basic", str(target)])

    assert result.exit_code == 0
    assert (target / "contents" / "index.md").exists()
    assert not (target / "plugins").exists()


def test_new_refuses_existing_location_without_force(tmp_path):
    target = tmp_path / "site"
    target.mkdir()
    (target / "keep.txt").write_text("mine", encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(cli, ["new", str(target)])

    assert result.exit_code == 1
    assert "already exists" in result.output
    assert not (target / "hoarfrost.yaml").exists()

    result = runner.invoke(cli, ["new", "--force", str(target)])

    assert result.exit_code == 0
    assert (target / "hoarfrost.yaml").exists()
    assert (target / "keep.txt").read_text(encoding="utf-8") == "mine"


def test_new_with_unknown_template_fails(tmp_path):
    result = CliRunner().invoke(cli, ["new", "-T", "wiki", str(tmp_path / "site")])

    assert result.exit_code == 1
    assert "Unknown template wiki" in result.output
    assert not (tmp_path / "site").exists()
