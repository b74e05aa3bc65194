"""
Sync server: streams the local configuration to whoever asks.

Exposes a single endpoint:

    GET /sync  ->  200 application/zip (attachment; vscode_settings.zip)

The archive is produced while the response is being sent; nothing is
buffered. Response headers go out together with the first archive
byte, so a failure before that point still becomes a clean 500. A
failure after it can only cut the stream short, and the archive is
aborted so the truncated body never parses as a valid ZIP.

Each connection gets its own thread. The source tree is only read, so
concurrent transfers share nothing.
"""

from __future__ import annotations

import logging
import signal
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Iterable, Optional
from urllib.parse import urlsplit

from . import ARCHIVE_FILENAME, DEFAULT_PORT, SYNC_PATH, __version__
from .archive import ArchiveWriter
from .errors import CodeSyncError, ConfigNotFound
from .filters import EntryFilter
from .models import USER_LABEL, ConfigRoot

logger = logging.getLogger("codesync.server")

DEFAULT_GRACE_PERIOD = 5.0


class _TransferHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server that knows which connections are in flight."""

    daemon_threads = True
    block_on_close = False

    def __init__(self, *args, **kwargs):
        self._active: set[socket.socket] = set()
        self._idle = threading.Condition()
        super().__init__(*args, **kwargs)

    def process_request_thread(self, request, client_address):
        with self._idle:
            self._active.add(request)
        try:
            super().process_request_thread(request, client_address)
        finally:
            with self._idle:
                self._active.discard(request)
                self._idle.notify_all()

    @property
    def active_count(self) -> int:
        with self._idle:
            return len(self._active)

    def wait_idle(self, timeout: float) -> bool:
        """Block until no request is in flight, or timeout passes."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._active, timeout=timeout)

    def close_active(self) -> None:
        """Cut every in-flight connection."""
        with self._idle:
            pending = list(self._active)
        for sock in pending:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as exc:
                logger.debug("Connection already closed: %s", exc)


class _ResponseBody:
    """Byte sink that sends the 200 headers on the first write."""

    def __init__(self, handler: BaseHTTPRequestHandler):
        self._handler = handler
        self.started = False

    def write(self, data) -> int:
        if not self.started:
            self._handler.send_response(200)
            self._handler.send_header("Content-Type", "application/zip")
            self._handler.send_header(
                "Content-Disposition", f"attachment; filename={ARCHIVE_FILENAME}"
            )
            self._handler.send_header("Connection", "close")
            self._handler.end_headers()
            self.started = True
        self._handler.wfile.write(data)
        return len(data)

    def flush(self) -> None:
        if self.started:
            self._handler.wfile.flush()


def usable_roots(roots: Iterable[ConfigRoot]) -> list[ConfigRoot]:
    """Drop roots that do not exist on this host.

    Raises:
        ConfigNotFound: The 'User' root is missing.
    """
    usable = []
    for root in roots:
        if root.path.is_dir():
            usable.append(root)
        elif root.label == USER_LABEL:
            raise ConfigNotFound(f"Settings directory not found: {root.path}")
        else:
            logger.warning("Skipping %s: %s does not exist", root.label, root.path)
    return usable


class SyncServer:
    """HTTP server bound to a fixed set of configuration roots.

    Args:
        roots: Roots to serve, resolved once at startup.
        entry_filter: Exclusion rules applied on every request.
        host: Address to listen on.
        port: TCP port. 0 picks a free one.
        grace_period: Seconds in-flight transfers get on stop().
        compresslevel: Deflate level, 0-9.
    """

    def __init__(
        self,
        roots: Iterable[ConfigRoot],
        entry_filter: Optional[EntryFilter] = None,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        compresslevel: int = 6,
    ):
        self.roots = usable_roots(roots)
        self.entry_filter = entry_filter or EntryFilter()
        self.host = host
        self.port = port
        self.grace_period = grace_period
        self.compresslevel = compresslevel
        self.routes: dict[str, Callable[[BaseHTTPRequestHandler], None]] = {
            SYNC_PATH: self._handle_sync,
        }
        self._httpd: Optional[_TransferHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def server_address(self) -> tuple[str, int]:
        """Address actually bound, once started."""
        if self._httpd is None:
            return self.host, self.port
        host, port = self._httpd.server_address[:2]
        return host, port

    def start(self) -> None:
        """Bind the socket and serve in a background thread.

        Raises:
            OSError: The address could not be bound.
        """
        self._httpd = _TransferHTTPServer((self.host, self.port), self._make_handler())
        self._thread = threading.Thread(
            target=self._httpd.serve_forever,
            name="codesync-http",
            daemon=True,
        )
        self._thread.start()
        host, port = self.server_address
        logger.info(
            "Serving %s on http://%s:%d%s",
            ", ".join(f"{r.label}={r.path}" for r in self.roots), host, port, SYNC_PATH,
        )

    def stop(self) -> None:
        """Stop accepting, give transfers the grace period, then cut them."""
        self._stop_event.set()
        if self._httpd is None:
            return

        httpd = self._httpd
        self._httpd = None
        httpd.shutdown()

        if httpd.active_count:
            logger.info(
                "Waiting up to %.1fs for %d transfer(s) to finish",
                self.grace_period, httpd.active_count,
            )
        if not httpd.wait_idle(self.grace_period):
            logger.warning("Grace period over, closing %d transfer(s)", httpd.active_count)
            httpd.close_active()
        httpd.server_close()

        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Server stopped")

    def run_forever(self) -> None:
        """Block until a stop is requested, then stop gracefully."""
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def request_stop(self) -> None:
        """Ask run_forever() to return. Safe from signal handlers."""
        self._stop_event.set()

    def install_signal_handlers(self) -> None:
        """Stop on SIGINT and SIGTERM."""
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s, stopping", signal.Signals(signum).name)
        self.request_stop()

    def _handle_sync(self, handler: BaseHTTPRequestHandler) -> None:
        """Stream every root into the response as one labelled archive."""
        peer = handler.client_address[0]
        logger.info("Sync requested by %s", peer)

        body = _ResponseBody(handler)
        writer = ArchiveWriter(body, self.entry_filter, self.compresslevel)
        try:
            for root in self.roots:
                writer.add_root(root.path, prefix=root.label)
            stats = writer.finalize()
        except (CodeSyncError, OSError) as exc:
            writer.abort()
            handler.close_connection = True
            if body.started:
                logger.error("Sync to %s failed mid-stream: %s", peer, exc)
                return
            logger.error("Sync to %s failed: %s", peer, exc)
            _send_text(handler, 500, str(exc))
            return

        logger.info(
            "Sent %d files (%d bytes) to %s",
            stats.files, writer.bytes_written, peer,
        )

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        routes = self.routes

        class SyncHandler(BaseHTTPRequestHandler):
            """Routes GET requests; everything else is 405."""

            server_version = f"codesync/{__version__}"

            def do_GET(self):
                route = routes.get(urlsplit(self.path).path)
                if route is None:
                    _send_text(self, 404, f"Not found: {self.path}")
                    return
                route(self)

            def _method_not_allowed(self):
                _send_text(self, 405, "Only GET is supported", allow="GET")

            do_POST = do_PUT = do_DELETE = do_PATCH = do_HEAD = do_OPTIONS = _method_not_allowed

            def log_message(self, format, *args):
                logger.debug("HTTP: %s", format % args)

        return SyncHandler


def _send_text(
    handler: BaseHTTPRequestHandler,
    status: int,
    text: str,
    allow: Optional[str] = None,
) -> None:
    payload = text.encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "text/plain; charset=utf-8")
    handler.send_header("Content-Length", str(len(payload)))
    if allow:
        handler.send_header("Allow", allow)
    handler.end_headers()
    if handler.command != "HEAD":
        handler.wfile.write(payload)
