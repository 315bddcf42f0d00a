"""Development server for sitepipe.

Serves the generated site with live reload and sane defaults for local authoring:
- Injects a client script into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Pushes three kinds of message to connected browsers over a websocket:
  ``reload`` (full page reload), ``css`` (refresh stylesheets in place) and
  ``notify`` (show a status message without reloading).

Interaction mirroring across devices and opening a browser are not supported.

Key classes:
- DevServer: Owns the HTTP thread and the websocket server.
- _ReloadHandler: HTTP request handler that injects the client script and enforces 404s.
"""

from __future__ import annotations

import asyncio
import functools
import json
import threading
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import websockets

from .log import error, log

DEFAULT_PORT = 8080


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects the live reload client into HTML pages.

    Attributes:
        reload_script: JavaScript connecting to the websocket and acting on messages.
    """

    reload_script_template = """
    <script>
    (() => {{
      const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
      const notify = (html) => {{
        let box = document.getElementById('__sitepipe_notify');
        if (!box) {{
          box = document.createElement('div');
          box.id = '__sitepipe_notify';
          box.style.cssText = 'position:fixed;top:0;right:0;z-index:9999;padding:12px 20px;' +
            'font:14px sans-serif;background:#1b1b1b;color:#fff;border-bottom-left-radius:5px';
          document.body.appendChild(box);
        }}
        box.innerHTML = html;
        box.style.display = 'block';
        clearTimeout(box.__timer);
        box.__timer = setTimeout(() => {{ box.style.display = 'none'; }}, 3000);
      }};
      ws.onmessage = (event) => {{
        const data = JSON.parse(event.data || '{{}}');
        if (data.type === 'reload') location.reload();
        if (data.type === 'notify') notify(data.message);
        if (data.type === 'css') {{
          document.querySelectorAll('link[rel="stylesheet"]').forEach((link) => {{
            const url = new URL(link.href);
            url.searchParams.set('_sitepipe', Date.now());
            link.href = url.toString();
          }});
        }}
      }};
    }})();
    </script>
    """
    reload_script = reload_script_template.format(ws_port=DEFAULT_PORT + 1)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        # Never expose directory listings; treat as missing content.
        return self._serve_404()

    def _inject(self, content: str) -> bytes:
        if "</body>" in content:
            content = content.replace("</body>", f"{self.reload_script}</body>")
        else:
            content += self.reload_script
        return content.encode("utf-8")

    def _send_html(self, code: int, encoded: bytes) -> None:
        self.send_response(code)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        """Serve 404.html (when present) with injected client script and a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, self._inject(error_page.read_text(encoding="utf-8")))
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path = self.translate_path(self.path)
        path_obj = Path(path)
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if index_path.exists():
                path = str(index_path)
                path_obj = index_path
            else:
                return self._serve_404()
        elif not path_obj.exists():
            return self._serve_404()

        if path.endswith(".html"):
            self._send_html(200, self._inject(path_obj.read_text(encoding="utf-8")))
            return None
        return super().send_head()


class DevServer:
    """Development server with live reload functionality.

    Attributes:
        site_dir: Directory being served.
        http_port: Port for the HTTP server.
        ws_port: Port for websocket connections.
        _ws_clients: Set of connected websocket clients.
        _loop: Event loop the websocket server runs on.
    """

    def __init__(self, site_dir: Path, http_port: int | None = None, ws_port: int | None = None):
        """Initialize the development server.

        Args:
            site_dir: Generated site directory to serve.
            http_port: HTTP port, defaults to 8080.
            ws_port: Websocket port, defaults to the HTTP port plus one.
        """
        self.site_dir = site_dir
        self.http_port = int(http_port or DEFAULT_PORT)
        self.ws_port = int(ws_port) if ws_port is not None else self.http_port + 1
        self._reload_script = _ReloadHandler.reload_script_template.format(ws_port=self.ws_port)
        self._ws_clients: set = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._httpd: ThreadingHTTPServer | None = None
        self._ws_server: Any = None

    @classmethod
    def from_settings(cls, project_root: Path, settings: dict[str, Any]) -> DevServer:
        return cls(
            project_root / settings["site_dir"],
            http_port=settings.get("port"),
            ws_port=settings.get("ws_port"),
        )

    async def start(self) -> None:  # pragma: no cover - integration path
        """Start serving; returns once both servers are listening."""
        self._loop = asyncio.get_running_loop()
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        handler = functools.partial(handler_cls, directory=str(self.site_dir))
        self._httpd = ThreadingHTTPServer(("", self.http_port), handler)
        threading.Thread(target=self._httpd.serve_forever, daemon=True).start()
        log(f"Serving {self.site_dir} at http://localhost:{self.http_port}", tag="Server")
        try:
            self._ws_server = await websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port)
        except OSError as exc:
            error(f"WebSocket server failed to start (port {self.ws_port}): {exc}", tag="Server")

    async def stop(self) -> None:
        if self._httpd is not None:
            await asyncio.to_thread(self._httpd.shutdown)
            self._httpd.server_close()
            self._httpd = None
        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def reload(self) -> None:
        """Tell every connected browser to reload the page."""
        self._broadcast({"type": "reload"})

    def notify(self, message: str) -> None:
        """Show ``message`` in every connected browser without reloading."""
        self._broadcast({"type": "notify", "message": message})

    def inject_css(self) -> None:
        """Tell every connected browser to refresh its stylesheets."""
        self._broadcast({"type": "css"})

    def _broadcast(self, payload: dict[str, Any]) -> None:
        if self._loop is None:
            return
        message = json.dumps(payload)
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        # Clients may disconnect while a send is pending.
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except Exception:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)
