"""Parsing and re-serialisation of proxied HTTP GET requests."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Union

MIN_REQUEST_LEN = 4
MAX_REQUEST_LEN = 65535
ROOT_PATH = "/"

_PORT_RE = re.compile(r"\s*[+-]?\d")


class ParseError(ValueError):
    """Raised when a request buffer cannot be parsed."""


def _strtok(text: str, delimiters: str) -> tuple[Optional[str], str]:
    """Split off the next token, skipping leading delimiters.

    Returns the token (or None when only delimiters remain) and the text
    after the single delimiter that ended the token.
    """
    start = 0
    while start < len(text) and text[start] in delimiters:
        start += 1
    if start == len(text):
        return None, ""
    for end in range(start, len(text)):
        if text[end] in delimiters:
            return text[start:end], text[end + 1:]
    return text[start:], ""


@dataclass
class ParsedRequest:
    """A parsed GET request: request-line fields plus ordered headers."""

    method: str
    protocol: str
    host: str
    port: Optional[str]
    path: str
    version: str
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, data: Union[bytes, bytearray, str]) -> "ParsedRequest":
        """Parse a request buffer ending with the blank line after the headers."""
        if isinstance(data, (bytes, bytearray)):
            text = bytes(data).decode("latin-1")
        else:
            text = str(data)

        if not MIN_REQUEST_LEN <= len(text) <= MAX_REQUEST_LEN:
            raise ParseError(f"invalid request length {len(text)}")

        text = text.split("\0", 1)[0]
        if "\r\n\r\n" not in text:
            raise ParseError("invalid request, no end of header")

        line, _, rest = text.partition("\r\n")

        method, remainder = _strtok(line, " ")
        if method is None:
            raise ParseError("invalid request line, no whitespace")
        if method != "GET":
            raise ParseError(f"invalid request line, method not 'GET': {method}")

        full_addr, version = _strtok(remainder, " ")
        if full_addr is None:
            raise ParseError("invalid request line, no full address")
        if not version.startswith("HTTP/"):
            raise ParseError(f"invalid request line, unsupported version {version}")

        protocol, after_protocol = _strtok(full_addr, ":/")
        if protocol is None:
            raise ParseError("invalid request line, missing host")
        absolute_uri = full_addr[len(protocol) + 3:]

        host_port, after_host = _strtok(after_protocol, "/")
        if host_port is None:
            raise ParseError("invalid request line, missing host")
        if len(host_port) == len(absolute_uri):
            raise ParseError("invalid request line, missing absolute path")

        if not after_host:
            path = ROOT_PATH
        elif after_host.startswith(ROOT_PATH):
            raise ParseError(
                "invalid request line, path cannot begin with two slash characters"
            )
        else:
            path = ROOT_PATH + after_host

        host, after_name = _strtok(host_port, ":")
        port, _ = _strtok(after_name, "/")
        if host is None:
            raise ParseError("invalid request line, missing host")
        if port is not None and not _PORT_RE.match(port):
            raise ParseError(f"invalid request line, bad port: {port}")

        request = cls(
            method=method,
            protocol=protocol,
            host=host,
            port=port,
            path=path,
            version=version,
        )

        current = rest
        while current and not current.startswith("\r\n"):
            header_line, separator, following = current.partition("\r\n")
            colon = header_line.find(":")
            if colon < 0:
                raise ParseError(f"no colon found in header line {header_line!r}")
            request.set_header(header_line[:colon], header_line[colon + 2:])
            if not separator:
                break
            current = following
        return request

    def set_header(self, key: str, value: str) -> None:
        """Set a header, replacing any earlier one and moving it to the end."""
        self.headers.pop(key, None)
        self.headers[key] = value

    def get_header(self, key: str) -> Optional[str]:
        """Return the value of a header, or None when it is absent."""
        return self.headers.get(key)

    def remove_header(self, key: str) -> str:
        """Remove a header and return its value; raises KeyError when absent."""
        if key not in self.headers:
            raise KeyError(key)
        return self.headers.pop(key)

    def request_line(self) -> str:
        """The request line, including its trailing CRLF."""
        port = f":{self.port}" if self.port is not None else ""
        return (
            f"{self.method} {self.protocol}://{self.host}{port}{self.path} "
            f"{self.version}\r\n"
        )

    def unparse_headers(self) -> bytes:
        """Serialise the headers followed by the terminating blank line."""
        lines = "".join(f"{key}: {value}\r\n" for key, value in self.headers.items())
        return (lines + "\r\n").encode("latin-1")

    def unparse(self) -> bytes:
        """Serialise the whole request: request line, headers and blank line."""
        return self.request_line().encode("latin-1") + self.unparse_headers()

    def headers_len(self) -> int:
        """Length of the serialised headers including the trailing CRLF."""
        return sum(len(k) + len(v) + 4 for k, v in self.headers.items()) + 2

    def total_len(self) -> int:
        """Length of the whole serialised request."""
        return len(self.request_line()) + self.headers_len()