"""Development server for Kiln.

Runs the pieces of ``kiln dev`` side by side:
- NotificationServer: answers every request with the current build generation
  as plain text. Dev builds poll it and reload when the number changes.
- A static file server for the output tree with clean URLs and 404s.
- ReloadBroadcaster: optional websocket push of the same generation.
- SourceWatcher/RebuildCoordinator: rebuild on source changes.

Key classes:
- DevServer: Main class for running the development server.
- NotificationServer: Live-reload generation endpoint.
- _GenerationHandler: Request handler for the generation endpoint.
- _StaticHandler: HTTP request handler that enforces 404s and clean URLs.
"""

from __future__ import annotations

import asyncio
import functools
import json
import threading
import time
from http.server import (
    BaseHTTPRequestHandler,
    SimpleHTTPRequestHandler,
    ThreadingHTTPServer,
)
from pathlib import Path

import websockets

from .build import BuildPipeline, load_config
from .errors import BuildError, IOFailure
from .generation import BuildGeneration
from .watcher import RebuildCoordinator, SourceWatcher


class _GenerationHandler(BaseHTTPRequestHandler):
    """Reports the build generation on every request.

    Attributes:
        generation: Counter to read; bound per server through a subclass.
    """

    generation: BuildGeneration

    def do_GET(self):
        self._send_generation(include_body=True)

    def do_HEAD(self):
        self._send_generation(include_body=False)

    def do_OPTIONS(self):
        self.send_response(204)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, HEAD, OPTIONS")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _send_generation(self, include_body: bool) -> None:
        encoded = str(self.generation.value).encode("ascii")
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        self.end_headers()
        if include_body:
            self.wfile.write(encoded)

    def log_message(self, format, *args):
        # Every open tab polls once a second.
        return


class NotificationServer:
    """Threaded HTTP responder for the live-reload generation endpoint.

    Attributes:
        generation: Counter served to clients; never written here.
        host: Interface to bind.
        port: Port to bind; 0 picks a free port, resolved on start.
    """

    def __init__(
        self, generation: BuildGeneration, host: str = "0.0.0.0", port: int = 4242
    ):
        self.generation = generation
        self.host = host
        self.port = port
        self._httpd: ThreadingHTTPServer | None = None

    def start(self) -> None:
        """Bind the socket and serve from a daemon thread.

        Raises:
            OSError: If the port cannot be bound.
        """
        handler_cls = type(
            "_GenerationHandlerBound",
            (_GenerationHandler,),
            {"generation": self.generation},
        )
        httpd = ThreadingHTTPServer((self.host, self.port), handler_cls)
        httpd.daemon_threads = True
        self.port = httpd.server_address[1]
        self._httpd = httpd
        threading.Thread(
            target=httpd.serve_forever, name="kiln-reload", daemon=True
        ).start()

    def stop(self) -> None:
        if self._httpd:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None


class _StaticHandler(SimpleHTTPRequestHandler):
    """Serves the output tree without directory listings.

    ``/about`` resolves to ``about.html`` and a directory to its
    ``index.html``; anything else missing is a 404 (serving 404.html when
    present).
    """

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        # Never expose directory listings; treat as missing content.
        return self._serve_404()

    def _serve_404(self):
        """Serve 404.html (when present) with a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            encoded = error_page.read_bytes()
            self.send_response(404)
            self.send_header("Content-type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(encoded)))
            self.end_headers()
            self.wfile.write(encoded)
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            if not (path_obj / "index.html").exists():
                return self._serve_404()
        elif not path_obj.exists():
            clean = path_obj.with_name(path_obj.name + ".html")
            if not clean.is_file():
                return self._serve_404()
            path, _, query = self.path.partition("?")
            self.path = path + ".html" + (f"?{query}" if query else "")
        return super().send_head()


class ReloadBroadcaster:
    """Pushes ``{"type": "reload", "generation": n}`` to websocket clients.

    Attributes:
        host: Interface to bind.
        port: Websocket port.
    """

    def __init__(self, port: int, host: str = "0.0.0.0"):
        self.host = host
        self.port = port
        self._clients: set = set()
        self._loop = asyncio.new_event_loop()
        self._stopped: asyncio.Future | None = None

    def start(self) -> None:  # pragma: no cover - integration path
        threading.Thread(target=self._run, name="kiln-ws", daemon=True).start()

    def stop(self) -> None:
        if self._stopped is not None:
            self._loop.call_soon_threadsafe(self._stopped.set_result, None)

    def _run(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._serve())
        except OSError as exc:
            print(f"WebSocket server failed to start (port {self.port}): {exc}")

    async def _serve(self) -> None:  # pragma: no cover - integration path
        self._stopped = self._loop.create_future()
        async with websockets.serve(self._handler, self.host, self.port):
            await self._stopped

    async def _handler(self, websocket):
        self._clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._clients.discard(websocket)

    def broadcast(self, generation: int) -> None:
        """Send a reload message from any thread. A no-op until started."""
        if not self._loop.is_running():
            return
        message = json.dumps({"type": "reload", "generation": generation})
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in list(self._clients):
            try:
                await ws.send(message)
            except websockets.ConnectionClosed:
                stale.add(ws)
        for ws in stale:
            self._clients.discard(ws)


class DevServer:
    """Development server with live reload functionality.

    Attributes:
        project_root: Root directory of the project.
        config: Site configuration with command-line overrides applied.
        pipeline: BuildPipeline used for every build.
        generation: Counter of successful builds since startup.
        coordinator: Runs rebuilds, at most one at a time.
        notifier: Generation endpoint polled by dev pages.
        watcher: Source tree observer.
        broadcaster: Optional websocket broadcaster.
    """

    def __init__(
        self,
        project_root: Path,
        http_port: int | None = None,
        reload_port: int | None = None,
        ws_port: int | None = None,
        runner=None,
    ):
        """Initialize the development server.

        Args:
            project_root: Root directory of the project.
            http_port: Optional override for the static server port.
            reload_port: Optional override for the generation endpoint port.
            ws_port: Optional websocket port; disabled when unset.
            runner: Optional ToolRunner for the build.
        """
        self.project_root = project_root
        self.config = load_config(project_root)
        for key, value in (
            ("port", http_port),
            ("reload_port", reload_port),
            ("ws_port", ws_port),
        ):
            if value is not None:
                self.config[key] = value
        self.http_port = int(self.config["port"])
        self.pipeline = BuildPipeline(project_root, self.config, runner=runner)
        self.output_dir = self.pipeline.output_dir
        self.generation = BuildGeneration()
        self.coordinator = RebuildCoordinator(
            self.pipeline,
            self.generation,
            dev_mode=True,
            settle=float(self.config["settle"]),
        )
        self.notifier = NotificationServer(
            self.generation, port=int(self.config["reload_port"])
        )
        self.watcher = SourceWatcher(
            self.pipeline.source_dir, self.coordinator, ignore=[self.output_dir]
        )
        self.broadcaster: ReloadBroadcaster | None = None
        if self.config.get("ws_port"):
            self.broadcaster = ReloadBroadcaster(int(self.config["ws_port"]))
            self.generation.subscribe(self.broadcaster.broadcast)
        self._httpd: ThreadingHTTPServer | None = None

    def initial_build(self):
        """Run the synchronous startup build.

        Filesystem errors are fatal. Tool, translation and template failures
        are reported and the server keeps watching so they can be fixed.

        Raises:
            IOFailure: If the source or output tree cannot be read or written.
        """
        try:
            result = self.pipeline.build(dev_mode=True)
        except IOFailure:
            raise
        except BuildError as exc:
            print(f"Initial build failed: {exc}")
            return None
        if not result.ok:
            print(f"Initial build finished with {len(result.failures)} failed page(s).")
        return result

    def start(self) -> None:  # pragma: no cover - integration path
        self.initial_build()
        self._start_http()
        self.notifier.start()
        print(f"Live reload endpoint at http://localhost:{self.notifier.port}")
        if self.broadcaster:
            self.broadcaster.start()
        self.watcher.start()
        print(f"Watching {self.pipeline.source_dir} for changes")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        self.watcher.stop()
        self.coordinator.wait_idle(timeout=5)
        self.notifier.stop()
        if self.broadcaster:
            self.broadcaster.stop()
        if self._httpd:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler = functools.partial(_StaticHandler, directory=str(self.output_dir))
        httpd = ThreadingHTTPServer(("", self.http_port), handler)
        httpd.daemon_threads = True
        self._httpd = httpd
        threading.Thread(
            target=httpd.serve_forever, name="kiln-http", daemon=True
        ).start()
        print(f"Serving {self.output_dir} at http://localhost:{self.http_port}")
