#
# Copyright 2025 The RestyHome contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
"""Minimal HTTP/1.1 server on asyncio streams.

Serves exactly one request per connection and then closes it
(``Connection: close``, no keep-alive, no pipelining). Only loopback peers
are served.

Request framing:

    Accumulating  - read until CRLFCRLF ends the header block
    AwaitingBody  - read until Content-Length body bytes have arrived
    Ready         - parse, route, respond

A connection that reaches end-of-stream or grows past MAX_REQUEST_SIZE
before it is Ready is closed without a response.
"""

import asyncio
import ipaddress
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import unquote

from .errors import ApiError, MalformedRequest, ResourceNotFound

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 18089

MAX_REQUEST_SIZE = 1024 * 1024
READ_CHUNK_SIZE = 65536
SHUTDOWN_TIMEOUT = 5.0
HEADER_TERMINATOR = b"\r\n\r\n"

STATUS_TEXT = {
    200: "OK",
    400: "Bad Request",
    404: "Not Found",
    500: "Internal Server Error",
}

Handler = Callable[..., Awaitable[Any]]


def is_loopback(host: str) -> bool:
    """True if host is a loopback address (or the name localhost)."""
    if host == "localhost":
        return True
    try:
        address = ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return False
    if address.is_loopback:
        return True
    mapped = getattr(address, "ipv4_mapped", None)
    return mapped is not None and mapped.is_loopback


def parse_content_length(header_block: bytes) -> int:
    """Content-Length from a raw header block; 0 when absent or invalid."""
    for line in header_block.split(b"\r\n")[1:]:
        name, sep, value = line.partition(b":")
        if sep and name.strip().lower() == b"content-length":
            try:
                length = int(value.strip())
            except ValueError:
                return 0
            return max(length, 0)
    return 0


async def read_request(reader: asyncio.StreamReader) -> Optional[Tuple[bytes, bytes]]:
    """Accumulate one full request from the stream.

    Returns:
        (header block, body) once the request is complete, or None if the
        peer closed early or the request is larger than MAX_REQUEST_SIZE
    """
    buffer = bytearray()
    header_end = -1
    content_length = 0

    while True:
        if header_end < 0:
            header_end = buffer.find(HEADER_TERMINATOR)
            if header_end >= 0:
                content_length = parse_content_length(bytes(buffer[:header_end]))
                if header_end + len(HEADER_TERMINATOR) + content_length > MAX_REQUEST_SIZE:
                    logger.debug(f"Declared body of {content_length} bytes exceeds limit")
                    return None

        if header_end >= 0:
            body_start = header_end + len(HEADER_TERMINATOR)
            if len(buffer) - body_start >= content_length:
                return bytes(buffer[:header_end]), bytes(buffer[body_start:body_start + content_length])

        if len(buffer) > MAX_REQUEST_SIZE:
            logger.debug(f"Request exceeds {MAX_REQUEST_SIZE} bytes, dropping connection")
            return None

        chunk = await reader.read(READ_CHUNK_SIZE)
        if not chunk:
            return None
        buffer.extend(chunk)


def extract_path(target: str) -> str:
    """Path of a request target.

    Absolute-form targets, as sent by HTTP proxies (for example
    ``http://localhost:18089/homes``), have scheme and authority removed.
    Query string and fragment are dropped.
    """
    path = target
    lowered = target.lower()
    if lowered.startswith("http://") or lowered.startswith("https://"):
        after_scheme = target.split("://", 1)[1]
        slash = after_scheme.find("/")
        path = after_scheme[slash:] if slash >= 0 else "/"

    for sep in ("?", "#"):
        path = path.split(sep, 1)[0]
    return path or "/"


class Request:
    """A parsed HTTP request."""

    def __init__(self, method: str, target: str, headers: Dict[str, str], body: bytes = b""):
        self.method = method
        self.target = target
        self.headers = headers
        self.body = body
        self.path = extract_path(target)
        self.segments = [unquote(s) for s in self.path.split("/") if s]

    def __repr__(self):
        return f"<Request {self.method} {self.path}>"

    def json(self) -> Any:
        """Decoded JSON body, or None when empty or not valid JSON."""
        if not self.body:
            return None
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None


def parse_request(head: bytes, body: bytes = b"") -> Request:
    """Parse the header block of a framed request.

    Raises:
        MalformedRequest: empty or malformed request line, or a header line
            without a colon
    """
    text = head.decode("utf-8", errors="replace")
    lines = text.split("\r\n")

    request_line = lines[0].strip()
    if not request_line:
        raise MalformedRequest("Empty request")

    parts = request_line.split()
    if len(parts) < 2:
        raise MalformedRequest("Malformed request line")

    headers = {}
    for line in lines[1:]:
        if not line:
            continue
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            raise MalformedRequest("Malformed header line")
        headers[name.strip().lower()] = value.strip()

    return Request(parts[0], parts[1], headers, body)


def encode_response(status: int, body: Any) -> bytes:
    """Serialize a JSON response with status line and headers."""
    payload = json.dumps(body, indent=2, sort_keys=True, ensure_ascii=False, default=str,
                         allow_nan=False).encode("utf-8")
    header = (
        f"HTTP/1.1 {status} {STATUS_TEXT.get(status, 'Unknown')}\r\n"
        "Content-Type: application/json; charset=utf-8\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Access-Control-Allow-Origin: *\r\n"
        "Access-Control-Allow-Methods: GET, POST, OPTIONS\r\n"
        "Access-Control-Allow-Headers: Content-Type\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    return header.encode("ascii") + payload


class Route:
    def __init__(self, method: str, pattern: str, handler: Handler):
        self.method = method
        self.pattern = [s for s in pattern.split("/") if s]
        self.handler = handler

    def match(self, segments: List[str]) -> Optional[Dict[str, str]]:
        """Path parameters if segments fit the pattern, else None."""
        if len(segments) != len(self.pattern):
            return None
        params = {}
        for expected, actual in zip(self.pattern, segments):
            if expected.startswith("{") and expected.endswith("}"):
                params[expected[1:-1]] = actual
            elif expected != actual:
                return None
        return params


class HTTPServer:
    """Loopback-only JSON API server with a segment-based route table.

    Handlers are registered with the ``get``/``post`` decorators and called
    as ``await handler(request, **path_params)``. A handler returns either a
    body (sent with status 200) or a ``(status, body)`` tuple, and raises
    ApiError subclasses for error responses.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
        if not is_loopback(host):
            raise ValueError(f"Refusing to bind to non-loopback address {host}")
        self.host = host
        self.port = port
        self.routes: List[Route] = []
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Routing

    def route(self, method: str, pattern: str):
        def decorator(handler: Handler) -> Handler:
            self.routes.append(Route(method, pattern, handler))
            return handler
        return decorator

    def get(self, pattern: str):
        return self.route("GET", pattern)

    def post(self, pattern: str):
        return self.route("POST", pattern)

    async def dispatch(self, request: Request) -> Tuple[int, Any]:
        """Route a request and return (status, body); never raises."""
        try:
            for route in self.routes:
                if route.method != request.method:
                    continue
                params = route.match(request.segments)
                if params is None:
                    continue
                result = await route.handler(request, **params)
                if isinstance(result, tuple):
                    return result
                return 200, result
            raise ResourceNotFound(f"Not found: {request.method} {request.path}")
        except ApiError as e:
            return e.status_code, e.to_body()
        except Exception:
            logger.exception(f"Unhandled error for {request.method} {request.path}")
            return 500, {"error": "Internal server error"}

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self):
        self._server = await asyncio.start_server(self._handle_connection, self.host, self.port)
        sockets = self._server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]
        logger.info(f"HTTP server listening on {self.host}:{self.port}")

    async def stop(self):
        """Stop listening and abort requests still waiting on the provider."""
        if self._server is None:
            return
        self._server.close()

        pending = list(self._connections)
        if pending:
            logger.info(f"Aborting {len(pending)} in-flight request(s)")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        try:
            await asyncio.wait_for(self._server.wait_closed(), SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"HTTP server did not close within {SHUTDOWN_TIMEOUT:.0f}s")
        self._server = None
        logger.info("HTTP server stopped")

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    # ------------------------------------------------------------------
    # Connections

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        peer = writer.get_extra_info("peername")
        task = asyncio.current_task()
        self._connections.add(task)
        try:
            if peer and not is_loopback(str(peer[0])):
                logger.warning(f"Rejecting connection from non-loopback peer {peer[0]}")
                return

            frame = await read_request(reader)
            if frame is None:
                logger.debug(f"Closing connection from {peer} without a complete request")
                return

            try:
                request = parse_request(*frame)
            except MalformedRequest as e:
                logger.info(f"Malformed request from {peer}: {e.detail}")
                await self._send(writer, e.status_code, e.to_body())
                return

            status, body = await self.dispatch(request)
            await self._send(writer, status, body)
            logger.info(f"{request.method} {request.path} -> {status}")

        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.debug(f"Connection from {peer} lost: {e}")
        finally:
            self._connections.discard(task)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    @staticmethod
    async def _send(writer: asyncio.StreamWriter, status: int, body: Any):
        writer.write(encode_response(status, body))
        await writer.drain()
