"""Plugins loaded into every environment before any configured plugins.

Each module exposes a ``register(env)`` function, the same entry point that
third-party plugin modules provide.
"""

DEFAULT_PLUGINS = (
    "hoarfrost.plugins.page",
    "hoarfrost.plugins.jinja",
    "hoarfrost.plugins.markdown",
)
