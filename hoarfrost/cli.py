"""Command-line interface for Hoarfrost.

This module defines the CLI commands using the Click framework.

Commands:
- build: Build the site into the output directory.
- preview: Run the preview server with live reload.
- new: Create a skeleton site from a bundled template.

The build and preview commands load the configuration file (``hoarfrost.yaml``
in the working directory by default) and let command line options override
its values.
"""

from __future__ import annotations

import asyncio
import functools
import os
import shutil
import time
from pathlib import Path
from typing import Any

import click

from . import __version__
from .config import DEFAULT_CONFIG_FILENAME, Config
from .environment import Environment
from .log import configure_logging, logger, verbose
from .utils import ensure_clean_dir

SKELETONS_DIR = Path(__file__).parent / "skeletons"


def _split_list(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_imports(value: str | None) -> dict[str, str] | None:
    """Parse ``alias:module`` pairs from a comma-separated list.

    Entries without an alias are exposed under the last component of the
    module name or path.

    Examples:
        >>> parse_imports("dt:datetime,os.path")
        {'dt': 'datetime', 'path': 'os.path'}
    """
    items = _split_list(value)
    if items is None:
        return None
    imports = {}
    for item in items:
        alias, sep, module = item.partition(":")
        if not sep:
            module = alias
            name = module.rstrip("/")
            if "/" in name or name.endswith(".py"):
                alias = Path(name).stem
            else:
                alias = name.rsplit(".", 1)[-1]
        imports[alias] = module
    return imports


def common_options(f):
    """Options shared by the build and preview commands."""
    options = [
        click.option("-C", "--chdir", type=click.Path(file_okay=False), help="Change the working directory."),
        click.option(
            "-c",
            "--config",
            default=DEFAULT_CONFIG_FILENAME,
            show_default=True,
            help="Path to the config file, relative to the working directory.",
        ),
        click.option("-i", "--contents", help="Path to the contents directory."),
        click.option("-t", "--templates", help="Path to the templates directory."),
        click.option("-L", "--locals", "locals_", help="Path to a JSON or YAML file of template context data."),
        click.option("-M", "--imports", help="Comma-separated modules to expose in the template context, as alias:module."),
        click.option("-P", "--plugins", help="Comma-separated modules to load as plugins."),
        click.option("-I", "--ignore", help="Comma-separated glob patterns of content files to ignore."),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _overrides(options: dict[str, Any]) -> dict[str, Any]:
    return {
        "contents": options.get("contents"),
        "templates": options.get("templates"),
        "locals": options.get("locals_"),
        "imports": parse_imports(options.get("imports")),
        "plugins": _split_list(options.get("plugins")),
        "ignore": _split_list(options.get("ignore")),
    }


async def load_env(options: dict[str, Any], overrides: dict[str, Any]) -> Environment:
    """Load the configuration, apply the overrides and create the environment.

    Args:
        options: Common command line options.
        overrides: Configuration values set on the command line. None values are skipped.

    Returns:
        The environment.
    """
    workdir = os.path.abspath(options.get("chdir") or os.getcwd())
    verbose("Creating environment. Work directory is %s", workdir)
    config_path = Path(workdir) / options.get("config", DEFAULT_CONFIG_FILENAME)
    if config_path.exists():
        logger.info("Using config file %s", config_path)
        config = Config.from_file(config_path)
    else:
        verbose("No config file found")
        config = Config()
    config.update(overrides)
    return await Environment.create(config, workdir)


def _fail_on_error(f):
    """Log any error raised by a command and exit with status 1."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (click.ClickException, click.exceptions.Exit, SystemExit):
            raise
        except Exception as exc:
            logger.error("%s", exc, exc_info=exc)
            raise SystemExit(1) from None

    return wrapper


@click.group()
@click.version_option(version=__version__, prog_name="hoarfrost")
@click.option("-v", "--verbose", "verbose_", is_flag=True, help="Show debug information.")
@click.option("-q", "--quiet", is_flag=True, help="Only show errors.")
def cli(verbose_: bool, quiet: bool):
    """Hoarfrost static site generator."""
    configure_logging(verbose=verbose_, quiet=quiet)


async def _build(output: str | None, clean: bool, options: dict[str, Any]) -> int:
    env = await load_env(options, {**_overrides(options), "output": output})
    output_dir = Path(env.resolve_path(env.config.output))
    logger.info("Output dir is %s", output_dir)
    if output_dir.exists():
        if clean:
            verbose("Cleaning %s", output_dir)
            ensure_clean_dir(output_dir)
    else:
        verbose("Creating directory %s", output_dir)
        output_dir.mkdir(parents=True)
    return await env.build(output_dir)


@cli.command()
@click.option("-o", "--output", help="Directory to write build output to.")
@click.option("-X", "--clean", is_flag=True, help="Clear the output directory before building.")
@common_options
@_fail_on_error
def build(output: str | None, clean: bool, **options):
    """Build the site into the output directory."""
    start = time.monotonic()
    logger.info("Building site...")
    written = asyncio.run(_build(output, clean, options))
    elapsed = round((time.monotonic() - start) * 1000)
    logger.info("Wrote %d files in %sms\n", written, click.style(str(elapsed), bold=True))


@cli.command()
@click.option("-p", "--port", type=int, help="Port to run the server on.")
@click.option("-H", "--hostname", help="Host address to bind the server to (defaults to all interfaces).")
@click.option(
    "-d",
    "--min-regeneration-delay",
    type=float,
    help="Only rerun generators after this many seconds have passed.",
)
@common_options
@_fail_on_error
def preview(port: int | None, hostname: str | None, min_regeneration_delay: float | None, **options):
    """Run the preview server with live reload."""
    overrides = {
        **_overrides(options),
        "port": port,
        "hostname": hostname,
        "min_regeneration_delay": min_regeneration_delay,
    }
    env = asyncio.run(load_env(options, overrides))
    status = env.preview({k: v for k, v in overrides.items() if v is not None})
    if status:
        raise SystemExit(status)


def site_skeletons() -> dict[str, Path]:
    """Return the bundled site skeletons, keyed on name."""
    return {path.name: path for path in sorted(SKELETONS_DIR.iterdir()) if path.is_dir()}


@cli.command()
@click.argument("location", type=click.Path(file_okay=False))
@click.option(
    "-T",
    "--template",
    default="blog",
    show_default=True,
    help="Skeleton to create the site from.",
)
@click.option("-f", "--force", is_flag=True, help="Install into the location even if it exists.")
def new(location: str, template: str, force: bool):
    """Create a skeleton site in LOCATION."""
    skeletons = site_skeletons()
    source = skeletons.get(template)
    if source is None:
        logger.error("Unknown template %s. Available templates: %s", template, ", ".join(skeletons))
        raise SystemExit(1)
    target = Path(location).resolve()
    logger.info("Initialising new hoarfrost site in %s using template %s", target, template)
    if target.exists() and not force:
        logger.error("Target path '%s' already exists. Use the --force option to install into it.", target)
        raise SystemExit(1)
    verbose("Copying %s to %s", source, target)
    shutil.copytree(source, target, dirs_exist_ok=True, ignore=shutil.ignore_patterns("__pycache__"))
    logger.info("Done!")


def main():
    """Entry point for the CLI application."""
    cli()
