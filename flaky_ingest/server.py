"""Threaded HTTP server hosting the ingestion app."""

import logging
import socket
import threading

from werkzeug.serving import WSGIRequestHandler, make_server

logger = logging.getLogger(__name__)

SERVER_TIMEOUT = 60.0


def _request_handler(timeout: float) -> type[WSGIRequestHandler]:
    """Request handler class whose connection sockets time out after *timeout* seconds."""

    class TimeoutRequestHandler(WSGIRequestHandler):
        pass

    TimeoutRequestHandler.timeout = timeout
    return TimeoutRequestHandler


class IngestServer:
    """Serves a WSGI app with one thread per connection.

    A request sleeping in the fault injector only blocks its own thread.
    """

    def __init__(self, app, host: str, port: int, timeout: float = SERVER_TIMEOUT):
        self._app = app
        self._host = host
        self._port = port
        self._timeout = timeout
        self._server = None
        self._thread: threading.Thread | None = None

    @property
    def server_address(self) -> tuple | None:
        if self._server is None:
            return None
        return self._server.server_address[:2]

    def start(self):
        """Bind the listening socket and serve on a background thread.

        Raises OSError when the address cannot be bound.
        """
        family = socket.AF_INET6 if ":" in self._host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._host, self._port))
            sock.listen(128)
            # werkzeug duplicates the descriptor and exits the process on its own bind errors
            self._server = make_server(
                self._host,
                self._port,
                self._app,
                threaded=True,
                request_handler=_request_handler(self._timeout),
                fd=sock.fileno(),
            )
        finally:
            sock.close()

        logger.info("Server listening on %s:%d", *self.server_address)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self):
        """Stop accepting requests and close the listening socket."""
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        logger.info("Server stopped")
