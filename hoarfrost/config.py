"""Site configuration for Hoarfrost.

The configuration is read from a YAML file (``hoarfrost.yaml`` by default).
JSON configuration files are accepted too, since YAML is a superset of JSON.
Values missing from the file take their defaults from DEFAULT_CONFIG.

Keys that Hoarfrost itself does not know about are kept in ``Config.extra``
so plugins can read their own settings, e.g. a ``markdown:`` section.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_FILENAME = "hoarfrost.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "contents": "./contents",
    "templates": "./templates",
    "output": "./build",
    "ignore": [],
    "locals": {},
    "plugins": [],
    "imports": {},
    "views": None,
    "base_url": "/",
    "hostname": None,
    "port": 8080,
    "ws_port": None,
    "live_reload": True,
    "restart_on_config_change": True,
    "parallel_render": True,
    "render_workers": 8,
    "min_regeneration_delay": 5.0,
}


class ConfigError(Exception):
    """Raised when a configuration file is missing or cannot be parsed."""


@dataclass
class Config:
    """Configuration values for a site.

    Attributes:
        contents: Path to the content directory.
        templates: Path to the template directory.
        output: Output directory for builds.
        ignore: Glob patterns (relative to the content directory) to skip.
        locals: Template context data, or a path to a JSON/YAML file holding it.
        plugins: Plugin modules to load after the default plugins.
        imports: Modules exposed in the template context, keyed on alias.
        views: Directory of view modules, if any.
        base_url: URL path prefix of the site.
        hostname: Preview server bind address (None binds all interfaces).
        port: Preview server port.
        ws_port: Live reload websocket port (defaults to port + 1).
        live_reload: Inject the live reload script in preview mode.
        restart_on_config_change: Restart the preview server when this file changes.
        parallel_render: Render leaves concurrently in build mode.
        render_workers: Maximum number of concurrent renders.
        min_regeneration_delay: Seconds between generator reruns in preview mode.
        filename: File this configuration was loaded from, if any.
        extra: Settings not listed above, for use by plugins.
    """

    contents: str = DEFAULT_CONFIG["contents"]
    templates: str = DEFAULT_CONFIG["templates"]
    output: str = DEFAULT_CONFIG["output"]
    ignore: list[str] = field(default_factory=list)
    locals: dict[str, Any] | str = field(default_factory=dict)
    plugins: list[str] = field(default_factory=list)
    imports: dict[str, str] = field(default_factory=dict)
    views: str | None = None
    base_url: str = DEFAULT_CONFIG["base_url"]
    hostname: str | None = None
    port: int = DEFAULT_CONFIG["port"]
    ws_port: int | None = None
    live_reload: bool = True
    restart_on_config_change: bool = True
    parallel_render: bool = True
    render_workers: int = DEFAULT_CONFIG["render_workers"]
    min_regeneration_delay: float = DEFAULT_CONFIG["min_regeneration_delay"]
    filename: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> Config:
        """Build a Config from a mapping, splitting out unknown keys.

        Known keys set to None (an empty YAML value) keep their default.

        Args:
            values: Configuration values.

        Returns:
            New Config instance.
        """
        known = {f.name for f in fields(cls)} - {"extra"}
        config = cls()
        for key, value in values.items():
            if key in known:
                if value is not None:
                    setattr(config, key, value)
            else:
                config.extra[key] = value
        return config

    @classmethod
    def from_file(cls, path: str | Path) -> Config:
        """Load a configuration file.

        Args:
            path: Path to a YAML or JSON file.

        Returns:
            New Config instance with ``filename`` set.

        Raises:
            ConfigError: If the file does not exist or does not contain a mapping.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file {path} does not exist.")
        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"parsing {path.name}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {path} must contain a mapping.")
        config = cls.from_dict(loaded)
        config.filename = str(path)
        return config

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a setting by name, including plugin settings in ``extra``."""
        if key != "extra" and key in {f.name for f in fields(self)}:
            value = getattr(self, key)
            return default if value is None else value
        return self.extra.get(key, default)

    def update(self, overrides: dict[str, Any]) -> None:
        """Apply override values, skipping those that are None."""
        for key, value in overrides.items():
            if value is None:
                continue
            if hasattr(self, key) and key != "extra":
                setattr(self, key, value)
            else:
                self.extra[key] = value


def load_config(project_root: Path, filename: str = DEFAULT_CONFIG_FILENAME) -> Config:
    """Load the site configuration for a project.

    Args:
        project_root: Root directory of the project.
        filename: Configuration filename, relative to the project root.

    Returns:
        The loaded Config, or a default Config if the file does not exist.
    """
    config_path = project_root / filename
    if config_path.exists():
        return Config.from_file(config_path)
    return Config()
