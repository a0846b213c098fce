"""A threaded HTTP forward proxy that caches responses to GET requests."""

from __future__ import annotations

import logging
import re
import socket
import sys
import threading
import time
from typing import Optional, Sequence

from .cache import LRUCache
from .parser import ParsedRequest, ParseError

MAX_BYTES = 4096
MAX_CLIENTS = 400
DEFAULT_PORT = 8080
DEFAULT_REMOTE_PORT = 80
SERVER_NAME = "cachingproxy"

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

_ERROR_TEMPLATES = {
    400: (
        "HTTP/1.1 400 Bad Request\r\nContent-Length: 95\r\nConnection: keep-alive\r\n"
        "Content-Type: text/html\r\nDate: {date}\r\nServer: {server}\r\n\r\n"
        "<HTML><HEAD><TITLE>400 Bad Request</TITLE></HEAD>\n"
        "<BODY><H1>400 Bad Rqeuest</H1>\n</BODY></HTML>"
    ),
    403: (
        "HTTP/1.1 403 Forbidden\r\nContent-Length: 112\r\nContent-Type: text/html\r\n"
        "Connection: keep-alive\r\nDate: {date}\r\nServer: {server}\r\n\r\n"
        "<HTML><HEAD><TITLE>403 Forbidden</TITLE></HEAD>\n"
        "<BODY><H1>403 Forbidden</H1><br>Permission Denied\n</BODY></HTML>"
    ),
    404: (
        "HTTP/1.1 404 Not Found\r\nContent-Length: 91\r\nContent-Type: text/html\r\n"
        "Connection: keep-alive\r\nDate: {date}\r\nServer: {server}\r\n\r\n"
        "<HTML><HEAD><TITLE>404 Not Found</TITLE></HEAD>\n"
        "<BODY><H1>404 Not Found</H1>\n</BODY></HTML>"
    ),
    500: (
        "HTTP/1.1 500 Internal Server Error\r\nContent-Length: 115\r\n"
        "Connection: keep-alive\r\nContent-Type: text/html\r\nDate: {date}\r\n"
        "Server: {server}\r\n\r\n"
        "<HTML><HEAD><TITLE>500 Internal Server Error</TITLE></HEAD>\n"
        "<BODY><H1>500 Internal Server Error</H1>\n</BODY></HTML>"
    ),
    501: (
        "HTTP/1.1 501 Not Implemented\r\nContent-Length: 103\r\nConnection: keep-alive\r\n"
        "Content-Type: text/html\r\nDate: {date}\r\nServer: {server}\r\n\r\n"
        "<HTML><HEAD><TITLE>404 Not Implemented</TITLE></HEAD>\n"
        "<BODY><H1>501 Not Implemented</H1>\n</BODY></HTML>"
    ),
    505: (
        "HTTP/1.1 505 HTTP Version Not Supported\r\nContent-Length: 125\r\n"
        "Connection: keep-alive\r\nContent-Type: text/html\r\nDate: {date}\r\n"
        "Server: {server}\r\n\r\n"
        "<HTML><HEAD><TITLE>505 HTTP Version Not Supported</TITLE></HEAD>\n"
        "<BODY><H1>505 HTTP Version Not Supported</H1>\n</BODY></HTML>"
    ),
}


def _atoi(text: str) -> int:
    """Leading decimal integer of ``text``, or 0 when there is none."""
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def error_response(status_code: int, now: Optional[float] = None) -> bytes:
    """Build the canned error response for ``status_code``.

    ``now`` is a Unix timestamp for the Date header; the current time by default.
    Raises ValueError for a status code without a canned response.
    """
    try:
        template = _ERROR_TEMPLATES[status_code]
    except KeyError:
        raise ValueError(f"no error response for status {status_code}") from None
    date = time.strftime("%a, %d %b %Y %H:%M:%S GMT", time.gmtime(now))
    return template.format(date=date, server=SERVER_NAME).encode("latin-1")


def send_error_message(sock: socket.socket, status_code: int) -> None:
    """Send the canned error response for ``status_code`` on ``sock``."""
    response = error_response(status_code)
    logger.info("%s", response.split(b"\r\n", 1)[0].decode("latin-1"))
    sock.sendall(response)


def check_http_version(version: str) -> bool:
    """True for HTTP/1.1 and HTTP/1.0, the versions the proxy handles."""
    return version.startswith("HTTP/1.1") or version.startswith("HTTP/1.0")


def connect_remote_server(host: str, port: int) -> socket.socket:
    """Open a TCP connection to ``host``:``port``; raises OSError on failure."""
    address = socket.gethostbyname(host)
    remote = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        remote.connect((address, port))
    except OSError:
        remote.close()
        raise
    return remote


def build_upstream_request(request: ParsedRequest) -> bytes:
    """Rewrite ``request`` for the origin server, in origin form.

    Forces ``Connection: close`` and adds a Host header if missing. Headers
    that would not fit in one buffer are left out.
    """
    line = f"GET {request.path} {request.version}\r\n".encode("latin-1")
    request.set_header("Connection", "close")
    if request.get_header("Host") is None:
        request.set_header("Host", request.host)
    if request.headers_len() > MAX_BYTES - len(line):
        logger.warning("headers too large, sending request line only")
        return line
    return line + request.unparse_headers()


def read_request(sock: socket.socket) -> tuple[bytes, bool]:
    """Read a client's request head.

    Returns the bytes read (cut at the first NUL) and whether the blank line
    ending the headers was seen before the connection ended or the buffer filled.
    """
    buffer = b""
    try:
        chunk = sock.recv(MAX_BYTES)
        while chunk:
            buffer = (buffer + chunk).split(b"\0", 1)[0]
            if b"\r\n\r\n" in buffer:
                return buffer, True
            room = MAX_BYTES - len(buffer)
            if room <= 0:
                break
            chunk = sock.recv(room)
    except OSError as exc:
        logger.error("error receiving from client: %s", exc)
    return buffer, False


def handle_request(
    client: socket.socket,
    request: ParsedRequest,
    raw_request: bytes,
    cache: LRUCache,
) -> bytes:
    """Fetch ``request`` from its origin, relay it to ``client`` and cache it.

    Returns the cached response. Raises OSError when the origin cannot be reached.
    """
    upstream = build_upstream_request(request)
    port = _atoi(request.port) if request.port is not None else DEFAULT_REMOTE_PORT
    response = bytearray()
    with connect_remote_server(request.host, port) as remote:
        remote.sendall(upstream)
        chunk = remote.recv(MAX_BYTES - 1)
        while chunk:
            try:
                client.sendall(chunk)
            except OSError as exc:
                logger.error("error sending data to client: %s", exc)
                break
            response += chunk
            chunk = remote.recv(MAX_BYTES - 1)
    body = bytes(response).split(b"\0", 1)[0]
    cache.add(body, raw_request)
    logger.info("Done")
    return body


class ProxyServer:
    """Listening proxy that serves each client on its own thread."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        cache: Optional[LRUCache] = None,
        max_clients: int = MAX_CLIENTS,
    ) -> None:
        self.cache = cache if cache is not None else LRUCache()
        self.max_clients = max_clients
        self._slots = threading.BoundedSemaphore(max_clients)
        self._closed = False
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._socket.bind(("", port))
            self._socket.listen(max_clients)
        except OSError:
            self._socket.close()
            raise
        self.port = self._socket.getsockname()[1]

    def handle_client(self, sock: socket.socket) -> None:
        """Serve one client connection and close it."""
        with self._slots:
            try:
                data, complete = read_request(sock)
                cached = self.cache.find(data)
                if cached is not None:
                    sock.sendall(cached.data)
                    logger.info("Data retrieved from the cache")
                elif complete:
                    self._serve(sock, data)
                else:
                    logger.info("Client disconnected")
            except OSError as exc:
                logger.error("error serving client: %s", exc)
            finally:
                try:
                    sock.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass
                sock.close()

    def _serve(self, sock: socket.socket, data: bytes) -> None:
        try:
            request = ParsedRequest.parse(data)
        except ParseError as exc:
            logger.info("Parsing failed: %s", exc)
            return
        if request.method != "GET":
            logger.info("Only GET requests are supported")
            return
        if request.host and request.path and check_http_version(request.version):
            try:
                handle_request(sock, request, data, self.cache)
            except OSError as exc:
                logger.error("upstream request failed: %s", exc)
                send_error_message(sock, 500)
        else:
            send_error_message(sock, 500)

    def serve_forever(self) -> None:
        """Accept connections until the server is closed."""
        while True:
            try:
                client, (address, port) = self._socket.accept()
            except OSError:
                if self._closed:
                    return
                raise
            logger.info("Client connected from %s:%d", address, port)
            threading.Thread(
                target=self.handle_client, args=(client,), daemon=True
            ).start()

    def close(self) -> None:
        """Stop listening."""
        self._closed = True
        try:
            self._socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._socket.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the proxy on the port given as the only argument."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 1:
        print("Too few arguments")
        return 1
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    port = _atoi(args[0])
    print(f"Setting Proxy Server Port : {port}")
    try:
        server = ProxyServer(port)
    except OSError as exc:
        print(f"Port is not free: {exc}", file=sys.stderr)
        return 1
    print(f"Binding on port: {server.port}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.close()
    return 0