import pytest

from hoarfrost.config import DEFAULT_CONFIG, Config, ConfigError, load_config


def test_defaults():
    config = Config()
    assert config.contents == "./contents"
    assert config.templates == "./templates"
    assert config.output == "./build"
    assert config.port == DEFAULT_CONFIG["port"]
    assert config.min_regeneration_delay == 5.0
    assert config.filename is None


def test_from_file_reads_yaml_and_keeps_plugin_settings(tmp_path):
    path = tmp_path / "hoarfrost.yaml"
    path.write_text(
        "contents: site\nport: 9000\nignore:\n  - '**/*.tmp'\nmarkdown:\n  plugins: [table]\n",
        encoding="utf-8",
    )

    config = Config.from_file(path)

    assert config.contents == "site"
    assert config.port == 9000
    assert config.ignore == ["**/*.tmp"]
    assert config.extra == {"markdown": {"plugins": ["table"]}}
    assert config.filename == str(path)


def test_from_file_accepts_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text('{"output": "public", "locals": {"name": "demo"}}', encoding="utf-8")
    config = Config.from_file(path)
    assert config.output == "public"
    assert config.locals == {"name": "demo"}


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "hoarfrost.yaml"
    path.write_text("", encoding="utf-8")
    assert Config.from_file(path).contents == "./contents"


def test_get_reads_fields_and_extra():
    config = Config.from_dict({"port": 1234, "jinja": {"trim_blocks": True}})
    assert config.get("port") == 1234
    assert config.get("jinja") == {"trim_blocks": True}
    assert config.get("hostname", "localhost") == "localhost"
    assert config.get("missing", 3) == 3


def test_update_skips_none_values():
    config = Config.from_dict({"contents": "site"})
    config.update({"contents": None, "templates": "layouts", "custom": 1})
    assert config.contents == "site"
    assert config.templates == "layouts"
    assert config.extra["custom"] == 1


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigError, match="does not exist"):
        Config.from_file(tmp_path / "nope.yaml")


def test_non_mapping_file_raises(tmp_path):
    path = tmp_path / "hoarfrost.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="must contain a mapping"):
        Config.from_file(path)


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "hoarfrost.yaml"
    path.write_text("port: [1, 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="parsing hoarfrost.yaml"):
        Config.from_file(path)


def test_load_config_without_file_returns_defaults(tmp_path):
    config = load_config(tmp_path)
    assert config.filename is None
    assert config.output == "./build"


def test_load_config_reads_project_file(tmp_path):
    (tmp_path / "hoarfrost.yaml").write_text("base_url: /docs/\n", encoding="utf-8")
    assert load_config(tmp_path).base_url == "/docs/"


def test_empty_values_keep_defaults(tmp_path):
    path = tmp_path / "hoarfrost.yaml"
    path.write_text("ignore:\nplugins:\nimports:\nport:\ncontents: site\n", encoding="utf-8")

    config = Config.from_file(path)

    assert config.ignore == []
    assert config.plugins == []
    assert config.imports == {}
    assert config.port == 8080
    assert config.contents == "site"
