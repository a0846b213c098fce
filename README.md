# cachingproxy

A small HTTP forward proxy. It accepts plain `GET` requests written in
absolute form (`GET http://host[:port]/path HTTP/1.x`). It forwards each
request to the origin server and streams the response back to the client.
Each response is stored in an in-memory least-recently-used cache. The cache
key is the raw request bytes, so an identical request is answered from the
cache without contacting the origin.

The package has no runtime dependencies beyond the Python standard library
(Python 3.10 or later).

## Installation

```
pip install .
```

To also install the test dependencies:

```
pip install .[test]
```

## Running the proxy

```
cachingproxy 8080
```

The only argument is the port to listen on. The command needs exactly one
argument. With any other number of arguments it prints `Too few arguments`
and exits with status 1. It also exits with status 1 if the port cannot be
bound. Progress is logged to standard error at INFO level. Stop the proxy
with Ctrl-C.

Every accepted connection is handled on its own thread. A semaphore caps how
many clients are served at once, 400 by default. For each connection the
proxy does the following:

1. It reads the request head, up to 4096 bytes.
2. If the same request bytes are already in the cache, it sends the cached
   response.
3. Otherwise it parses the request. It rewrites the request into origin form
   (`GET /path HTTP/1.x`), sets `Connection: close` and adds a `Host` header
   if there is none. It then sends the request to the origin. The default
   origin port is 80 when the URL gives no port.
4. It relays the response to the client and adds the response to the cache.

If the origin cannot be reached, the client gets a
`500 Internal Server Error` page. The same happens when the version is not
`HTTP/1.0` or `HTTP/1.1`. A request that fails to parse gets no response: the
connection is closed.

Point a client at it:

```
curl -x http://localhost:8080 http://example.com/
```

## What it does not do

- Only `GET` is handled. There is no `CONNECT` tunnelling, so HTTPS is not
  proxied, and there is no support for other methods.
- The cache lives in memory only and is lost when the process exits.
- Cached responses never expire. The proxy does not look at `Cache-Control`,
  `Expires` or validators.
- A cached response is cut at its first NUL byte, so binary bodies are not
  cached faithfully.

## Using the parts as a library

### Parsing requests (`cachingproxy.parser`)

```python
from cachingproxy.parser import ParsedRequest, ParseError

raw = (
    b"GET http://www.example.com:80/index.html HTTP/1.0\r\n"
    b"Content-Length: 80\r\n"
    b"If-Modified-Since: Sat, 29 Oct 1994 19:43:31 GMT\r\n\r\n"
)
request = ParsedRequest.parse(raw)
request.method                         # "GET"
request.protocol                       # "http"
request.host                           # "www.example.com"
request.port                           # "80"
request.path                           # "/index.html"
request.version                        # "HTTP/1.0"
request.get_header("Content-Length")   # "80"

request.remove_header("If-Modified-Since")   # returns the value; KeyError if absent
request.set_header("Connection", "close")    # replaces and moves to the end
request.request_line()     # "GET http://www.example.com:80/index.html HTTP/1.0\r\n"
request.unparse()          # bytes: request line, headers and blank line
request.unparse_headers()  # bytes: headers and blank line only
request.total_len()        # length of unparse()
request.headers_len()      # length of unparse_headers()
```

`parse` accepts `bytes`, `bytearray` or `str`. A missing path becomes `/`.
It raises `ParseError`, a subclass of `ValueError`, in these cases:

- the request is shorter than 4 or longer than 65535 characters;
- the request has no terminating blank line;
- the method is not `GET`;
- the address is missing;
- the version does not begin with `HTTP/`;
- the host or the absolute path is missing;
- the path begins with two slashes;
- the port does not start with a number;
- a header line has no colon.

### The cache (`cachingproxy.cache`)

```python
import time
from cachingproxy.cache import LRUCache

cache = LRUCache(max_size=200 * 2**20, max_element_size=10 * 2**20, clock=time.time)
key = "GET http://example.com/ HTTP/1.1\r\n\r\n"
cache.add(b"HTTP/1.1 200 OK\r\n\r\nhello", key)   # True
key in cache                                        # True
element = cache.find(key)                           # CacheElement or None
element.data                                        # b"HTTP/1.1 200 OK\r\n\r\nhello"
len(cache)                                          # 1
cache.remove_oldest()                               # evicts and returns an element
```

- `find` refreshes the element's access time, using the `clock` callable
  (`time.time` by default).
- Each element counts the length of its data, plus the length of its key,
  plus a fixed 41 bytes of overhead against `max_size`. The running total is
  in `cache.size`.
- If adding an element would go over `max_size`, the least recently used
  elements are evicted first.
- `add` returns `False` and stores nothing when the element is larger than
  `max_element_size` or `max_size`.
- All operations are thread-safe.

### The server (`cachingproxy.server`)

```python
from cachingproxy.server import ProxyServer

server = ProxyServer(port=8080)   # port=0 picks a free port; see server.port
try:
    server.serve_forever()
finally:
    server.close()
```

`ProxyServer(port, cache, max_clients)` can share an existing `LRUCache`.
`handle_client(sock)` serves one already-accepted connection.

The module also exposes these helpers:

- `error_response(status_code, now)` builds the canned error page. The
  status codes are 400, 403, 404, 500, 501 and 505, and other codes raise
  `ValueError`.
- `send_error_message(sock, status_code)` sends that page.
- `check_http_version(version)` returns whether the version is one the proxy
  handles.
- `build_upstream_request(request)` returns the rewritten request bytes.
- `read_request(sock)`, `connect_remote_server(host, port)` and
  `handle_request(client, request, raw_request, cache)` are the steps
  `ProxyServer` uses.