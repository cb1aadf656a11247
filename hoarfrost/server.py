"""Preview server for Hoarfrost.

The preview server renders content on request instead of building the site
up front, and reloads the content tree, templates and views as their files
change:

- Content is looked up by normalised URL, first among generated content,
  then among file-based content.
- Generators are rerun on a request when their output is older than the
  ``min_regeneration_delay`` setting.
- A reload that fails is logged and the previous state keeps being served.
- Changes are pushed to connected browsers over a websocket, and HTML
  responses get a small script that reloads the page when told to.

All session state lives on one asyncio event loop running in a worker thread.
HTTP handler threads and file watcher threads only submit work to that loop.

Key classes:
- PreviewSession: Request routing and reload coordination.
- PreviewServer: HTTP, websocket and file watching transport around a session.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import mimetypes
import os
import re
import shutil
import threading
import time
from collections.abc import Iterable
from concurrent.futures import Future
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING, Any, BinaryIO, Union
from urllib.parse import unquote, urlsplit

import click
import websockets
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from . import __version__
from .config import Config, ConfigError
from .content import ContentPlugin
from .generator import run_generators
from .log import logger, verbose
from .render import render_view
from .tree import ContentTree, flatten, from_directory, merge
from .utils import glob_match

if TYPE_CHECKING:
    from .environment import Environment

MESSAGE_404 = b"404 Not Found\n"

_CHARSET_RE = re.compile(r"^text/|^application/(javascript|json)")

RESOURCES = ("contents", "templates", "views", "locals")

RELOAD_SCRIPT_TEMPLATE = """
<script>
(() => {{
  const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
  ws.onmessage = (event) => {{
    const data = JSON.parse(event.data || '{{}}');
    if (data.type === 'reload') location.reload();
  }};
}})();
</script>
"""


def normalise_url(url: str) -> str:
    """Map a request path onto the URL of the content that serves it.

    Paths ending in ``/`` get ``index.html`` appended; paths whose last
    segment has no ``.`` get ``/index.html`` appended. The result is
    percent-decoded.

    Examples:
        >>> normalise_url("/foo")
        '/foo/index.html'
        >>> normalise_url("/a%20b.html")
        '/a b.html'
    """
    if url.endswith("/"):
        url += "index.html"
    elif "." not in url.rsplit("/", 1)[-1]:
        url += "/index.html"
    return unquote(url)


def build_lookup_map(contents: ContentTree | Iterable[ContentTree]) -> dict[str, ContentPlugin]:
    """Index the leaves of one or more trees by normalised URL."""
    return {normalise_url(item.url): item for item in flatten(contents)}


def lookup_charset(mime_type: str | None) -> str | None:
    """Return the charset to declare for a MIME type, if it is a text type."""
    if mime_type and _CHARSET_RE.match(mime_type):
        return "UTF-8"
    return None


def guess_content_type(filename: str, uri: str) -> str:
    mime_type = mimetypes.guess_type(filename)[0] or mimetypes.guess_type(uri)[0]
    if mime_type is None:
        return "application/octet-stream"
    charset = lookup_charset(mime_type)
    return f"{mime_type}; charset={charset}" if charset else mime_type


@dataclass
class PreviewResponse:
    """Result of routing a preview request.

    Attributes:
        status: HTTP status code.
        content_type: Value of the Content-Type header.
        body: Response body, as bytes or a readable binary stream.
        plugin_name: Name of the plugin of the matched content, if any.
        error: Exception raised while rendering, for 500 responses.
    """

    status: int
    content_type: str
    body: Union[bytes, BinaryIO]
    plugin_name: str | None = None
    error: BaseException | None = None

    def read_body(self) -> bytes:
        """Return the body as bytes, reading and closing a stream body."""
        if isinstance(self.body, (bytes, bytearray, memoryview)):
            return bytes(self.body)
        try:
            return self.body.read()
        finally:
            self.body.close()


def _not_found(plugin_name: str | None = None) -> PreviewResponse:
    return PreviewResponse(404, "text/plain", MESSAGE_404, plugin_name)


def _colour_status(status: int) -> str:
    colour = {2: "green", 4: "yellow", 5: "red"}.get(status // 100)
    return click.style(str(status), fg=colour) if colour else str(status)


class PreviewSession:
    """Request routing and reload coordination for the preview server.

    The session keeps the file-based tree with its URL map, the most recent
    generated tree with its URL map, and the loaded templates and locals.
    Each of the four resources (contents, templates, views, locals) has a
    busy flag that is set while it reloads. Requests wait until no flag is
    set; change notifications for a resource that is already reloading are
    dropped.

    A session must only be used from one event loop.

    Attributes:
        env: The environment.
        contents: File-based content tree, or None until loaded.
        static_map: File-based content by normalised URL.
        generated_tree: Tree of generated plus file-based content, or None if stale.
        generated_map: Generated content by normalised URL.
        last_generation: ``time.monotonic()`` of the last generator run.
        templates: Loaded templates, or None until loaded.
        locals: Template locals, or None until loaded.
        busy: Busy flag per resource.
    """

    def __init__(self, env: Environment):
        self.env = env
        self.contents: ContentTree | None = None
        self.static_map: dict[str, ContentPlugin] = {}
        self.generated_tree: ContentTree | None = None
        self.generated_map: dict[str, ContentPlugin] = {}
        self.last_generation: float | None = None
        self.templates: dict[str, Any] | None = None
        self.locals: dict[str, Any] | None = None
        self.busy = dict.fromkeys(RESOURCES, False)
        self._idle = asyncio.Condition()
        self._generation_lock = asyncio.Lock()

    def is_ready(self) -> bool:
        return not any(self.busy.values())

    @contextlib.asynccontextmanager
    async def _reloading(self, resource: str):
        self.busy[resource] = True
        try:
            yield
        finally:
            self.busy[resource] = False
            async with self._idle:
                self._idle.notify_all()

    async def wait_until_ready(self) -> None:
        """Wait until no resource is reloading."""
        async with self._idle:
            await self._idle.wait_for(self.is_ready)

    async def load_contents(self) -> bool:
        """Reload the file-based content tree.

        On success the generated content is marked stale. On failure the
        error is logged and the previous tree is kept.

        Returns:
            True if the tree was reloaded.
        """
        async with self._reloading("contents"):
            try:
                contents = await from_directory(self.env, self.env.contents_path)
                static_map = build_lookup_map(contents)
            except Exception as exc:
                logger.error("%s", exc, exc_info=exc)
                return False
            self.contents = contents
            self.static_map = static_map
            self.generated_tree = None
            self.generated_map = {}
            return True

    async def load_templates(self) -> bool:
        async with self._reloading("templates"):
            try:
                templates = await self.env.get_templates()
            except Exception as exc:
                logger.error("%s", exc, exc_info=exc)
                return False
            self.templates = templates
            return True

    async def load_views(self) -> bool:
        async with self._reloading("views"):
            try:
                await self.env.load_views()
            except Exception as exc:
                logger.error("%s", exc, exc_info=exc)
                return False
            return True

    async def load_locals(self) -> None:
        async with self._reloading("locals"):
            self.locals = await self.env.get_locals()

    async def setup(self) -> None:
        """Load contents, templates, views and locals, in that order."""
        await self.load_contents()
        await self.load_templates()
        await self.load_views()
        await self.load_locals()

    async def regenerate(self, force: bool = False) -> None:
        """Rerun the generators if their output is missing or older than the regeneration delay.

        The file-based tree and map are left alone. When generators are
        registered, the new generated tree holds the generated content with
        the file-based content merged over it. Only one regeneration runs at
        a time, and output built from a tree that was replaced while the
        generators ran is discarded and rebuilt from the new tree.
        """
        async with self._generation_lock:
            while force or not self._generation_is_fresh():
                contents = self.contents
                generated = await run_generators(self.env, contents)
                if self.contents is not contents:
                    verbose("Content reloaded during regeneration, regenerating again")
                    continue
                tree = contents
                generated_map: dict[str, ContentPlugin] = {}
                if generated:
                    tree = ContentTree("", self.env.get_content_groups())
                    for gentree in generated:
                        merge(tree, gentree)
                    generated_map = build_lookup_map(generated)
                    merge(tree, contents)
                self.generated_tree = tree
                self.generated_map = generated_map
                self.last_generation = time.monotonic()
                force = False

    def _generation_is_fresh(self) -> bool:
        return (
            self.generated_tree is not None
            and self.last_generation is not None
            and time.monotonic() - self.last_generation <= self.env.config.min_regeneration_delay
        )

    async def handle(self, path: str) -> PreviewResponse:
        """Serve a request path.

        Missing contents and templates are loaded first, then the request
        waits for any reload in progress before it is routed.

        Args:
            path: Request path, without the query string.

        Returns:
            The response to send.
        """
        start = time.monotonic()
        if not self.busy["contents"] and self.contents is None:
            await self.load_contents()
        if not self.busy["templates"] and self.templates is None:
            await self.load_templates()
        await self.wait_until_ready()
        response = await self._route(path)

        elapsed = round((time.monotonic() - start) * 1000)
        message = f"{_colour_status(response.status)} {click.style(path, bold=True)}"
        if response.plugin_name:
            message += f" {click.style(response.plugin_name, fg='bright_black')}"
        logger.info("%s %s", message, click.style(f"{elapsed}ms", fg="green"))
        if response.error is not None:
            logger.error("%s", response.error, exc_info=response.error)
        return response

    async def _route(self, path: str) -> PreviewResponse:
        uri = normalise_url(path)
        verbose("Handling request for %s", uri)
        if self.contents is None:
            return _not_found()
        try:
            await self.regenerate()
        except Exception as exc:
            return PreviewResponse(500, "text/plain", str(exc).encode("utf-8"), error=exc)

        content = self.generated_map.get(uri) or self.static_map.get(uri)
        if content is None:
            return _not_found()
        plugin_name = content.plugin.name if content.plugin else content.name
        try:
            output = await render_view(self.env, content, self.locals, self.generated_tree, self.templates)
            if output is None:
                return _not_found(plugin_name)
            if not isinstance(output, (bytes, bytearray, memoryview)) and not hasattr(output, "read"):
                raise TypeError(
                    f"View for content {content.filename} returned {type(output).__name__}; "
                    "bytes or a binary stream expected"
                )
        except Exception as exc:
            verbose("%s", exc)
            return PreviewResponse(500, "text/plain", str(exc).encode("utf-8"), plugin_name, exc)
        return PreviewResponse(200, guess_content_type(content.filename, uri), output, plugin_name)

    async def content_changed(self, filename: str | None) -> None:
        """React to a change in the content directory.

        Changes to ignored files are announced as ignored without a reload.
        Otherwise the tree is reloaded and the output filename of the changed
        content, if it still exists, is announced.
        """
        if self.busy["contents"]:
            return
        relative = self.env.relative_contents_path(filename) if filename else ""
        for pattern in self.env.config.ignore or []:
            if glob_match(relative, pattern):
                self.env.emit_change(relative, True)
                return
        content_filename = None
        if await self.load_contents() and filename:
            for content in flatten(self.contents):
                if content.source_path == filename:
                    content_filename = content.filename
                    break
        self.env.emit_change(content_filename, False)

    async def templates_changed(self, filename: str | None = None) -> None:
        if self.busy["templates"]:
            return
        if await self.load_templates():
            self.env.emit_change(None, False)

    async def views_changed(self, filename: str | None = None) -> None:
        if self.busy["views"]:
            return
        if await self.load_views():
            self.env.emit_change(None, False)


class _PreviewRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler that forwards requests to the preview loop.

    Attributes:
        preview: The owning preview server.
    """

    preview: PreviewServer
    server_version = f"hoarfrost/{__version__}"

    def do_GET(self):
        path = urlsplit(self.path).path
        try:
            response = self.preview.handle_request(path)
        except Exception as exc:
            logger.error("%s", exc, exc_info=exc)
            response = PreviewResponse(500, "text/plain", str(exc).encode("utf-8"))
        body = response.body
        if self.preview.reload_script and response.content_type.startswith("text/html"):
            body = self._inject(response.read_body())

        self.send_response(response.status)
        self.send_header("Content-Type", response.content_type)
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        if isinstance(body, (bytes, bytearray, memoryview)):
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
            return
        self.end_headers()
        try:
            shutil.copyfileobj(body, self.wfile)
        finally:
            body.close()

    def _inject(self, content: bytes) -> bytes:
        script = self.preview.reload_script.encode("utf-8")
        if b"</body>" in content:
            return content.replace(b"</body>", script + b"</body>", 1)
        return content + script

    def log_message(self, format, *args):
        # Requests are logged by the session.
        pass


class _ChangeHandler(FileSystemEventHandler):
    """Forward file system events to a coroutine function on the preview loop."""

    def __init__(self, server: PreviewServer, callback, paths: Iterable[str] | None = None):
        super().__init__()
        self.server = server
        self.callback = callback
        self.paths = {os.path.abspath(p) for p in paths} if paths else None

    def on_any_event(self, event: FileSystemEvent):
        if event.event_type in ("opened", "closed", "closed_no_write"):
            return
        if event.is_directory and event.event_type == "modified":
            return
        candidates = [os.fsdecode(event.src_path)]
        if getattr(event, "dest_path", None):
            candidates.append(os.fsdecode(event.dest_path))
        for path in candidates:
            if self.paths is None or os.path.abspath(path) in self.paths:
                self.server.submit(self.callback(path))
                return


class PreviewServer:
    """Serve a site with live reload.

    Attributes:
        env: The environment.
        overrides: Configuration overrides, reapplied when the config file is reloaded.
        loop: Event loop that owns the session.
        session: The current session, or None while (re)starting.
        reload_script: Script injected into HTML responses, or "" when live
            reload is off.
    """

    def __init__(self, env: Environment, overrides: dict[str, Any] | None = None):
        self.env = env
        self.overrides = dict(overrides or {})
        self.loop = asyncio.new_event_loop()
        self.session: PreviewSession | None = None
        self.reload_script = ""
        self.exit_code = 0
        self._thread: threading.Thread | None = None
        self._httpd: ThreadingHTTPServer | None = None
        self._observers: list[Observer] = []
        self._config_observer: Observer | None = None
        self._ws_server = None
        self._ws_clients: set = set()
        self._restarting = False
        self._done = threading.Event()
        env.on_change(self._on_change)

    @property
    def ws_port(self) -> int:
        return self.env.config.ws_port or self.env.config.port + 1

    @property
    def url(self) -> str:
        host = self.env.config.hostname or "localhost"
        return f"http://{host}:{self.env.config.port}{self.env.config.base_url}"

    def run(self) -> int:  # pragma: no cover - integration path
        """Start the server and block until it stops.

        Returns:
            Exit status: 0 after a clean stop, 1 after a fatal error.
        """
        self.loop.set_exception_handler(self._handle_loop_exception)
        self._thread = threading.Thread(target=self._run_loop, name="hoarfrost-preview", daemon=True)
        self._thread.start()
        try:
            asyncio.run_coroutine_threadsafe(self.start(), self.loop).result()
            if self.env.config.restart_on_config_change and self.env.config.filename:
                self._watch_config()
            while not self._done.wait(0.5):
                pass
        except KeyboardInterrupt:
            click.echo()
        except Exception as exc:
            logger.error("%s", exc, exc_info=exc)
            self.exit_code = 1
        self.stop()
        return self.exit_code

    def _run_loop(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        logger.error("%s", exc or context.get("message"), exc_info=exc)
        self.exit_code = 1
        self._done.set()

    def submit(self, coro) -> Future:
        """Run a coroutine on the preview loop in the background.

        Exceptions it raises are fatal to the server.
        """
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(self._check_future)
        return future

    def _check_future(self, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.loop.call_soon_threadsafe(
                self._handle_loop_exception, self.loop, {"message": str(exc), "exception": exc}
            )

    def handle_request(self, path: str) -> PreviewResponse:
        """Route a request on the preview loop and wait for the response."""
        return asyncio.run_coroutine_threadsafe(self._handle(path), self.loop).result()

    async def _handle(self, path: str) -> PreviewResponse:
        session = self.session
        if session is None:
            return PreviewResponse(503, "text/plain", b"503 Service Unavailable\n")
        return await session.handle(path)

    async def start(self) -> None:
        """Load the plugins, set up a session and start serving."""
        verbose("Starting preview server")
        await self.env.load_plugins()
        session = PreviewSession(self.env)
        await session.setup()
        self.session = session
        if self.env.config.live_reload and self._ws_server is None:
            await self._start_ws()
        self._start_http()
        self._start_watchers()
        logger.info("Server running on %s", click.style(self.url, bold=True))

    async def shutdown(self) -> None:
        """Stop serving HTTP and watching files, and drop the session."""
        self.session = None
        httpd, self._httpd = self._httpd, None
        if httpd is not None:
            await asyncio.to_thread(httpd.shutdown)
            httpd.server_close()
        observers, self._observers = self._observers, []
        for observer in observers:
            observer.stop()
        for observer in observers:
            await asyncio.to_thread(observer.join)

    async def restart(self) -> None:
        """Tear down the session, reset the environment and start again."""
        logger.info("Restarting server")
        await self.shutdown()
        await self.env.reset()
        await self.start()

    def stop(self) -> None:  # pragma: no cover - integration path
        if self._config_observer is not None:
            self._config_observer.stop()
            self._config_observer.join()
            self._config_observer = None
        if self.loop.is_running():
            with contextlib.suppress(Exception):
                asyncio.run_coroutine_threadsafe(self._close(), self.loop).result(timeout=10)
            self.loop.call_soon_threadsafe(self.loop.stop)
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self.loop.close()

    async def _close(self) -> None:
        await self.shutdown()
        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type("_BoundPreviewRequestHandler", (_PreviewRequestHandler,), {"preview": self})
        httpd = ThreadingHTTPServer((self.env.config.hostname or "", self.env.config.port), handler_cls)
        threading.Thread(target=httpd.serve_forever, name="hoarfrost-http", daemon=True).start()
        self._httpd = httpd

    def _start_watchers(self) -> None:  # pragma: no cover - integration path
        watches = [
            (self.env.contents_path, self._content_changed),
            (self.env.templates_path, self._templates_changed),
        ]
        if self.env.config.views:
            watches.append((self.env.resolve_path(self.env.config.views), self._views_changed))
        for path, callback in watches:
            if not os.path.isdir(path):
                verbose("Not watching %s, it does not exist", path)
                continue
            observer = Observer()
            observer.schedule(_ChangeHandler(self, callback), path, recursive=True)
            observer.start()
            self._observers.append(observer)

    def _watch_config(self) -> None:  # pragma: no cover - integration path
        filename = os.path.abspath(self.env.config.filename)
        verbose("Watching config file %s for changes.", filename)
        observer = Observer()
        observer.schedule(
            _ChangeHandler(self, self._config_changed, [filename]), os.path.dirname(filename), recursive=False
        )
        observer.start()
        self._config_observer = observer

    async def _content_changed(self, path: str) -> None:
        if self.session is not None:
            await self.session.content_changed(path)

    async def _templates_changed(self, path: str) -> None:
        if self.session is not None:
            await self.session.templates_changed(path)

    async def _views_changed(self, path: str) -> None:
        if self.session is not None:
            await self.session.views_changed(path)

    async def _config_changed(self, path: str) -> None:
        if self._restarting:
            return
        self._restarting = True
        try:
            try:
                config = await asyncio.to_thread(Config.from_file, path)
            except ConfigError as exc:
                logger.error("Error reloading config: %s", exc)
            else:
                config.update(self.overrides)
                self.env.set_config(config)
            await self.restart()
            verbose("Config file change detected, server reloaded.")
            self.env.emit_change()
        finally:
            self._restarting = False

    async def _start_ws(self) -> None:  # pragma: no cover - integration path
        try:
            self._ws_server = await websockets.serve(self._ws_handler, self.env.config.hostname, self.ws_port)
        except OSError as exc:
            logger.warning("Live reload server failed to start (port %s): %s", self.ws_port, exc)
            return
        self.reload_script = RELOAD_SCRIPT_TEMPLATE.format(ws_port=self.ws_port)

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _on_change(self, path: str | None, ignored: bool) -> None:
        if ignored:
            verbose("Ignored change to %s", path)
            return
        if path:
            verbose("Change detected in %s", path)
        if self._ws_clients:
            message = json.dumps({"type": "reload", "path": path})
            self.submit(self._broadcast(message))

    async def _broadcast(self, message: str) -> None:
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except websockets.ConnectionClosed:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)
