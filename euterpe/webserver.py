"""The web server: routing of all handlers, the WSGI application and its lifecycle."""

from __future__ import annotations

import html
import logging
import os
import ssl
import socket
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable
from urllib.parse import quote

from werkzeug.exceptions import HTTPException, MethodNotAllowed, NotFound
from werkzeug.routing import Map, RequestRedirect, Rule
from werkzeug.security import safe_join
from werkzeug.serving import BaseWSGIServer, WSGIRequestHandler, make_server
from werkzeug.utils import send_file
from werkzeug.wrappers import Request, Response

from .artwork import AlbumArtworkHandler, ArtistImageHandler
from .auth import AuthHandler
from .browse import BrowseHandler
from .files import AlbumHandler, FileHandler
from .functions import Auth
from .middleware import GzipHandler, TerryHandler
from .qr import CreateQRTokenHandler
from .search import SearchHandler
from .session import LoginHandler, LoginTokenHandler, LogoutHandler, RegisterTokenHandler
from .templates import FSTemplates, TemplateHandler

log = logging.getLogger(__name__)

Handler = Callable[..., Response]

# Shown when an album has no artwork; relative to the HTTP root directory.
NOT_FOUND_ALBUM_IMAGE = "images/unknownAlbum.png"

GZIP_EXCEPTIONS = ("/file/", "/album/", "/v1/file/", "/v1/album/")
AUTH_EXCEPTIONS = ("/v1/login/token/", "/login/", "/css/", "/js/", "/favicon/", "/fonts/")

_GET = ("GET",)
_POST = ("POST",)
_IMAGE_METHODS = ("GET", "PUT", "DELETE")

_ROUTES: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    # API v1.
    ("/v1/file/<file_id>", "file", _GET),
    ("/v1/album/<album_id>/artwork", "artwork", _IMAGE_METHODS),
    ("/v1/album/<album_id>", "album", _GET),
    ("/v1/artist/<artist_id>/image", "artist_image", _IMAGE_METHODS),
    ("/v1/browse", "browse", _GET),
    ("/v1/search/<search_query>", "search", _GET),
    ("/v1/search", "search", _GET),
    ("/v1/search/", "search", _GET),
    ("/v1/login/token/", "login_token", _POST),
    ("/v1/register/token/", "register_token", _POST),
    # Kept for clients older than the API v1.
    ("/file/<file_id>", "file", _GET),
    ("/album/<album_id>/artwork", "artwork", _IMAGE_METHODS),
    ("/album/<album_id>", "album", _GET),
    ("/artist/<artist_id>/image", "artist_image", _IMAGE_METHODS),
    ("/browse", "browse", _GET),
    ("/search/<search_query>", "search", _GET),
    ("/search", "search", _GET),
    ("/search/", "search", _GET),
    ("/login/token/", "login_token", _POST),
    ("/register/token/", "register_token", _POST),
    # Web UI and static resources.
    ("/login/", "login", _POST),
    ("/logout/", "logout", _GET),
    ("/", "index", _GET),
    ("/add_device/", "add_device", _GET),
    ("/new_qr_token/", "new_qr_token", _GET),
    ("/<path:path>", "static", _GET),
)


@dataclass
class ServerConfig:
    """Settings of the web server."""

    listen: str = ""
    gzip: bool = False
    auth: bool = False
    authenticate: Auth = field(default_factory=Auth)
    ssl: bool = False
    ssl_certificate: str = ""
    ssl_key: str = ""
    read_timeout: int = 0
    write_timeout: int = 0
    max_headers_size: int = 0
    version: str = ""


def _not_found() -> Response:
    return Response("404 page not found\n", status=404, mimetype="text/plain")


class StaticFilesHandler:
    """Serves the files under ``root``, with index pages and directory listings."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        path = request.path
        if path.endswith("/index.html"):
            return Response(status=301, headers={"Location": path[: -len("index.html")]})

        full = safe_join(str(self.root), path.lstrip("/")) if path != "/" else str(self.root)
        if full is None or not os.path.exists(full):
            return _not_found()

        if os.path.isdir(full):
            if not path.endswith("/"):
                return Response(status=301, headers={"Location": path + "/"})
            index = os.path.join(full, "index.html")
            if os.path.isfile(index):
                return send_file(index, request.environ, conditional=True)
            return self._listing(full)

        if path.endswith("/"):
            return Response(status=301, headers={"Location": path.rstrip("/")})
        return send_file(full, request.environ, conditional=True)

    @staticmethod
    def _listing(directory: str) -> Response:
        names = sorted(
            name + "/" if os.path.isdir(os.path.join(directory, name)) else name
            for name in os.listdir(directory)
        )
        links = "".join(
            f'<a href="{html.escape(quote(name))}">{html.escape(name)}</a>\n' for name in names
        )
        return Response(f"<pre>\n{links}</pre>\n", mimetype="text/html")


class _Router:
    """Dispatches requests to handlers by path and method."""

    def __init__(self, handlers: dict[str, Handler]) -> None:
        self.handlers = handlers
        self.url_map = Map(
            [Rule(path, endpoint=name, methods=list(methods)) for path, name, methods in _ROUTES],
            strict_slashes=True,
        )

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        adapter = self.url_map.bind_to_environ(request.environ)
        try:
            endpoint, values = adapter.match()
        except RequestRedirect as redirect:
            return redirect.get_response(request.environ)
        except NotFound:
            return _not_found()
        except MethodNotAllowed as err:
            return err.get_response(request.environ)
        except HTTPException as err:
            return err.get_response(request.environ)

        if "search_query" in values:
            # The search handler expects the path value still encoded.
            values["search_query"] = quote(values["search_query"], safe="+")
        return self.handlers[endpoint](request, **values)


class Application:
    """WSGI application wrapping the fully assembled handler chain."""

    def __init__(self, handler: Handler, max_headers_size: int = 0) -> None:
        self.handler = handler
        self.max_headers_size = max_headers_size

    def _headers_too_large(self, request: Request) -> bool:
        if self.max_headers_size <= 0:
            return False
        size = sum(len(key) + len(value) + 4 for key, value in request.headers.items())
        return size > self.max_headers_size

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> Any:
        request = Request(environ)
        if self._headers_too_large(request):
            response = Response(
                "431 Request Header Fields Too Large", status=431, mimetype="text/plain"
            )
        else:
            response = self.handler(request)
        return response(environ, start_response)


def build_application(
    config: ServerConfig,
    library: Any,
    http_root: str | os.PathLike[str],
    templates_root: str | os.PathLike[str],
) -> Application:
    """Assemble all handlers and middleware into a WSGI application.

    ``library`` provides searching, files, browsing and image management.
    Raises jinja2.TemplateError when the page templates cannot be parsed.
    """
    templates = FSTemplates(templates_root)
    all_templates = templates.all()

    search = SearchHandler(library)
    handlers: dict[str, Handler] = {
        "file": FileHandler(library),
        "artwork": AlbumArtworkHandler(library, http_root, NOT_FOUND_ALBUM_IMAGE),
        "album": AlbumHandler(library),
        "artist_image": ArtistImageHandler(library),
        "browse": BrowseHandler(library),
        "search": search,
        "login_token": LoginTokenHandler(config.authenticate),
        "register_token": RegisterTokenHandler(),
        "login": LoginHandler(config.authenticate),
        "logout": LogoutHandler(),
        "index": TemplateHandler(all_templates.index, "", config.version),
        "add_device": TemplateHandler(all_templates.add_device, "Add Device", config.version),
        "new_qr_token": CreateQRTokenHandler(config.auth, config.authenticate),
        "static": StaticFilesHandler(http_root),
    }

    handler: Handler = TerryHandler(_Router(handlers))
    if config.gzip:
        handler = GzipHandler(handler, GZIP_EXCEPTIONS)
    if config.auth:
        handler = AuthHandler(
            handler,
            config.authenticate.user,
            config.authenticate.password,
            templates,
            config.authenticate.secret,
            AUTH_EXCEPTIONS,
        )
    return Application(handler, config.max_headers_size)


_SERVICE_PORTS = {"http": 80, "https": 443}


def _split_address(listen: str, use_ssl: bool) -> tuple[str, int]:
    address = listen or ("localhost:https" if use_ssl else "localhost:http")
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address}: missing port in address")
    host = host.strip("[]") or "0.0.0.0"
    if port.isdigit():
        return host, int(port)
    if port in _SERVICE_PORTS:
        return host, _SERVICE_PORTS[port]
    return host, socket.getservbyname(port, "tcp")


def _tls_context(cert_file: str, key_file: str) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(cert_file, key_file)
    context.set_alpn_protocols(["http/1.1"])
    return context


def _request_handler(timeout: float | None) -> type[WSGIRequestHandler]:
    class _TimedHandler(WSGIRequestHandler):
        pass

    _TimedHandler.timeout = timeout
    return _TimedHandler


class Server:
    """A stoppable web server for the application built from its configuration."""

    def __init__(
        self,
        config: ServerConfig,
        library: Any,
        http_root: str | os.PathLike[str],
        templates_root: str | os.PathLike[str],
    ) -> None:
        self.config = config
        self.library = library
        self.http_root = http_root
        self.templates_root = templates_root
        self._lock = threading.Lock()
        self._started = False
        self._httpd: BaseWSGIServer | None = None
        self._thread: threading.Thread | None = None
        self._stopped = threading.Event()

    @property
    def address(self) -> tuple[str, int]:
        """The host and port the server listens on."""
        if self._httpd is None:
            raise RuntimeError("server is not listening")
        host, port = self._httpd.server_address[:2]
        return str(host), int(port)

    def serve(self) -> None:
        """Start listening and serving in the background.

        Returns once the server listens. Raises RuntimeError when called twice
        and OSError when listening or loading the certificate fails.
        """
        with self._lock:
            if self._started:
                raise RuntimeError("Second Server.serve call for the same server")
            self._started = True
            try:
                self._httpd = self._listen()
            except Exception as err:
                log.error("Webserver stopped. Reason: %s", err)
                self._stopped.set()
                raise
            self._thread = threading.Thread(
                target=self._run, args=(self._httpd,), name="euterpe-webserver", daemon=True
            )
            self._thread.start()

    def _listen(self) -> BaseWSGIServer:
        cfg = self.config
        app = build_application(cfg, self.library, self.http_root, self.templates_root)
        host, port = _split_address(cfg.listen, cfg.ssl)
        context = _tls_context(cfg.ssl_certificate, cfg.ssl_key) if cfg.ssl else None
        timeouts = [t for t in (cfg.read_timeout, cfg.write_timeout) if t > 0]
        httpd = make_server(
            host,
            port,
            app,
            threaded=True,
            request_handler=_request_handler(max(timeouts) if timeouts else None),
            ssl_context=context,
        )
        scheme = "https" if cfg.ssl else "http"
        log.info("Webserver started on %s://%s:%d", scheme, host, httpd.server_address[1])
        return httpd

    def _run(self, httpd: BaseWSGIServer) -> None:
        try:
            httpd.serve_forever()
        except Exception as err:  # noqa: BLE001 - logged as the reason of stopping
            log.error("Reason: %s", err)
        finally:
            log.info("Webserver stopped.")
            self._stopped.set()

    def stop(self) -> None:
        """Stop listening; does nothing when the server is not listening."""
        with self._lock:
            httpd, self._httpd = self._httpd, None
        if httpd is not None:
            httpd.shutdown()
            httpd.server_close()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the server has stopped; False when ``timeout`` ran out first."""
        return self._stopped.wait(timeout)