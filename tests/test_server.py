import asyncio
import io
import json
from pathlib import Path

from sitepipe.config import DEFAULT_CONFIG
from sitepipe.server import DevServer, _ReloadHandler


def _handler(tmp_path, path):
    handler = _ReloadHandler.__new__(_ReloadHandler)
    handler.path = path
    handler.directory = str(tmp_path)
    handler.command = "GET"
    handler.request_version = "HTTP/1.1"
    handler.server_version = ""
    handler.sys_version = ""
    handler._headers_buffer = []
    handler.headers = {}
    handler.rfile = io.BytesIO(b"")
    handler.wfile = io.BytesIO()
    return handler


def test_async_broadcast_tracks_stale_clients():
    server = DevServer(Path("."))

    class GoodWS:
        def __init__(self):
            self.messages = []

        async def send(self, msg):
            self.messages.append(msg)

    class BadWS:
        async def send(self, msg):
            raise RuntimeError("fail")

    good = GoodWS()
    bad = BadWS()
    server._ws_clients = {good, bad}
    asyncio.run(server._async_broadcast("hello"))
    assert good.messages == ["hello"]
    assert bad not in server._ws_clients


def test_dev_server_ports(tmp_path):
    server = DevServer(tmp_path)
    assert server.http_port == 8080
    assert server.ws_port == 8081

    server = DevServer(tmp_path, http_port=5055)
    assert server.ws_port == 5056

    explicit = DevServer(tmp_path, http_port=5055, ws_port=6000)
    assert explicit.ws_port == 6000
    assert f":{explicit.ws_port}" in explicit._reload_script


def test_from_settings(tmp_path):
    settings = dict(DEFAULT_CONFIG, port=3000)
    server = DevServer.from_settings(tmp_path, settings)
    assert server.site_dir == tmp_path / "_site"
    assert server.http_port == 3000
    assert server.ws_port == 3001


def test_primitives_send_messages():
    server = DevServer(Path("."))
    sent = []

    class WS:
        async def send(self, msg):
            sent.append(json.loads(msg))

    async def scenario():
        server._loop = asyncio.get_running_loop()
        server._ws_clients = {WS()}
        server.reload()
        server.notify("Running: $ jekyll build")
        server.inject_css()
        for _ in range(5):
            await asyncio.sleep(0)

    asyncio.run(scenario())
    assert {"type": "reload"} in sent
    assert {"type": "notify", "message": "Running: $ jekyll build"} in sent
    assert {"type": "css"} in sent


def test_broadcast_before_start_is_noop():
    server = DevServer(Path("."))
    server.reload()
    server.notify("ignored")


def test_ws_handler_registers_and_discards():
    server = DevServer(Path("."))

    class DummyWS:
        def __init__(self):
            self.closed = False

        async def wait_closed(self):
            assert self in server._ws_clients
            self.closed = True

    ws = DummyWS()
    asyncio.run(server._ws_handler(ws))
    assert ws.closed
    assert ws not in server._ws_clients


def test_stop_without_start():
    server = DevServer(Path("."))
    asyncio.run(server.stop())


def test_reload_handler_injects_script(tmp_path):
    (tmp_path / "index.html").write_text("<html><body>Hello</body></html>", encoding="utf-8")
    handler = _handler(tmp_path, "/index.html")
    codes = []
    handler.send_response = lambda code, message=None: codes.append(code)
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None

    result = _ReloadHandler.send_head(handler)
    body = handler.wfile.getvalue()
    assert result is None
    assert codes == [200]
    assert b"reload" in body
    assert body.index(b"<script>") < body.index(b"</body>")


def test_reload_handler_without_body(tmp_path):
    (tmp_path / "plain.html").write_text("<html>No body here</html>", encoding="utf-8")
    handler = _handler(tmp_path, "/plain.html")
    handler.send_response = lambda code, message=None: None
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None
    _ReloadHandler.send_head(handler)
    assert b"reload" in handler.wfile.getvalue()


def test_send_head_falls_back_for_assets(tmp_path):
    (tmp_path / "style.css").write_text("body{}", encoding="utf-8")
    handler = _handler(tmp_path, "/style.css")
    handler.send_response = lambda code, message=None: None
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None
    result = _ReloadHandler.send_head(handler)
    assert result is not None
    result.close()


def test_send_head_serves_directory_index(tmp_path):
    posts = tmp_path / "posts"
    posts.mkdir()
    (posts / "index.html").write_text("<html><body>index</body></html>", encoding="utf-8")
    handler = _handler(tmp_path, "/posts/")
    codes = []
    handler.send_response = lambda code, message=None: codes.append(code)
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None

    assert _ReloadHandler.send_head(handler) is None
    assert codes == [200]
    assert b"index" in handler.wfile.getvalue()


def test_serve_404_uses_custom_page(tmp_path):
    (tmp_path / "404.html").write_text("<html><body>oops</body></html>", encoding="utf-8")
    handler = _handler(tmp_path, "/missing")
    codes = []
    handler.send_response = lambda code, message=None: codes.append(code)
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None
    handler.send_error = lambda *args, **kwargs: codes.append("error")

    assert _ReloadHandler._serve_404(handler) is None
    assert codes == [404]
    body = handler.wfile.getvalue().decode()
    assert "oops" in body
    assert "reload" in body


def test_missing_file_and_bare_directory_return_404(tmp_path):
    (tmp_path / "posts").mkdir()
    for path in ("/missing.html", "/posts/"):
        handler = _handler(tmp_path, path)
        called = {}
        handler.send_response = lambda *args, **kwargs: None
        handler.send_header = lambda *args, **kwargs: None
        handler.end_headers = lambda: None

        def send_error(code, message=None, called=called):
            called["error"] = code

        handler.send_error = send_error
        assert _ReloadHandler.send_head(handler) is None
        assert called["error"] == 404


def test_end_headers_disables_cache(tmp_path):
    handler = _handler(tmp_path, "/")
    sent = []
    handler.send_header = lambda key, value: sent.append((key, value))
    handler.wfile = io.BytesIO()
    _ReloadHandler.end_headers(handler)
    assert ("Cache-Control", "no-cache, no-store, must-revalidate") in sent


def test_async_broadcast_survives_disconnect_mid_send():
    server = DevServer(Path("."))

    class WS:
        def __init__(self):
            self.messages = []

        async def send(self, msg):
            await asyncio.sleep(0)
            for other in list(server._ws_clients):
                if other is not self:
                    server._ws_clients.discard(other)
            self.messages.append(msg)

    clients = [WS(), WS(), WS()]
    server._ws_clients = set(clients)
    asyncio.run(server._async_broadcast("reload"))
    assert any(ws.messages == ["reload"] for ws in clients)
