import asyncio
import json

import pytest

from resty_home.errors import InvalidRequest, MalformedRequest
from resty_home.server import (
    MAX_REQUEST_SIZE,
    HTTPServer,
    Request,
    encode_response,
    extract_path,
    is_loopback,
    parse_content_length,
    parse_request,
    read_request,
)


async def exchange(port, raw, close_write=True):
    """Send raw bytes to the server and return everything it sends back."""
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(raw)
    await writer.drain()
    if close_write:
        writer.write_eof()
    data = await asyncio.wait_for(reader.read(), timeout=5)
    writer.close()
    return data


def split_response(data):
    head, _, body = data.partition(b"\r\n\r\n")
    lines = head.decode("ascii").split("\r\n")
    status = int(lines[0].split()[1])
    headers = dict(line.split(": ", 1) for line in lines[1:])
    return status, headers, body


def feed(*chunks, eof=True):
    reader = asyncio.StreamReader()
    for chunk in chunks:
        reader.feed_data(chunk)
    if eof:
        reader.feed_eof()
    return reader


def test_parse_content_length():
    assert parse_content_length(b"POST / HTTP/1.1\r\nContent-Length: 12") == 12
    assert parse_content_length(b"POST / HTTP/1.1\r\ncontent-length:7\r\nHost: x") == 7
    assert parse_content_length(b"GET / HTTP/1.1\r\nHost: x") == 0
    assert parse_content_length(b"POST / HTTP/1.1\r\nContent-Length: abc") == 0
    assert parse_content_length(b"POST / HTTP/1.1\r\nContent-Length: -5") == 0


def test_extract_path():
    assert extract_path("/homes") == "/homes"
    assert extract_path("/homes?x=1#top") == "/homes"
    assert extract_path("http://localhost:18089/homes/abc/rooms") == "/homes/abc/rooms"
    assert extract_path("HTTPS://127.0.0.1") == "/"
    assert extract_path("") == "/"


def test_request_segments_are_percent_decoded():
    request = Request("GET", "/homes/My%20Home/rooms", {})
    assert request.segments == ["homes", "My Home", "rooms"]
    assert request.json() is None
    assert Request("POST", "/", {}, b"{not json").json() is None
    assert Request("POST", "/", {}, b'{"a": 1}').json() == {"a": 1}


def test_parse_request():
    request = parse_request(b"get /health HTTP/1.1\r\nHost: localhost\r\nX-Thing:  yes ", b"")
    assert request.method == "get"
    assert request.path == "/health"
    assert request.headers == {"host": "localhost", "x-thing": "yes"}


@pytest.mark.parametrize("head,detail", [
    (b"", "Empty request"),
    (b"   ", "Empty request"),
    (b"GARBAGE", "Malformed request line"),
    (b"GET / HTTP/1.1\r\nno colon here", "Malformed header line"),
])
def test_parse_request_errors(head, detail):
    with pytest.raises(MalformedRequest) as excinfo:
        parse_request(head)
    assert excinfo.value.status_code == 400
    assert excinfo.value.detail == detail


def test_encode_response_headers():
    status, headers, body = split_response(encode_response(404, {"error": "Not found: GET /x"}))
    assert status == 404
    assert headers["Content-Type"] == "application/json; charset=utf-8"
    assert headers["Access-Control-Allow-Origin"] == "*"
    assert headers["Access-Control-Allow-Methods"] == "GET, POST, OPTIONS"
    assert headers["Access-Control-Allow-Headers"] == "Content-Type"
    assert headers["Connection"] == "close"
    assert int(headers["Content-Length"]) == len(body)
    assert json.loads(body) == {"error": "Not found: GET /x"}


def test_encode_response_keeps_unicode():
    _, headers, body = split_response(encode_response(200, {"name": "Wohnzimmer ü"}))
    assert int(headers["Content-Length"]) == len(body)
    assert json.loads(body.decode("utf-8")) == {"name": "Wohnzimmer ü"}


def test_is_loopback():
    assert is_loopback("127.0.0.1")
    assert is_loopback("127.1.2.3")
    assert is_loopback("::1")
    assert is_loopback("::ffff:127.0.0.1")
    assert is_loopback("localhost")
    assert not is_loopback("0.0.0.0")
    assert not is_loopback("192.168.1.10")
    assert not is_loopback("example.com")


def test_server_refuses_non_loopback_host():
    with pytest.raises(ValueError):
        HTTPServer("0.0.0.0", 0)


@pytest.mark.asyncio
async def test_read_request_complete_in_pieces():
    reader = feed(b"POST /x HTTP/1.1\r\nContent-", b"Length: 4\r\n\r\nab", b"cd", eof=False)
    head, body = await read_request(reader)
    assert head == b"POST /x HTTP/1.1\r\nContent-Length: 4"
    assert body == b"abcd"


@pytest.mark.asyncio
async def test_read_request_ignores_bytes_past_content_length():
    head, body = await read_request(feed(b"POST / HTTP/1.1\r\nContent-Length: 2\r\n\r\nabEXTRA"))
    assert body == b"ab"


@pytest.mark.asyncio
async def test_read_request_truncated_body_is_dropped():
    reader = feed(b"POST / HTTP/1.1\r\nContent-Length: 100\r\n\r\n{\"partial\"")
    assert await read_request(reader) is None


@pytest.mark.asyncio
async def test_read_request_without_terminator_is_dropped():
    assert await read_request(feed(b"GET /health HTTP/1.1\r\nHost: x")) is None
    assert await read_request(feed()) is None


@pytest.mark.asyncio
async def test_read_request_oversize_is_dropped():
    declared = f"POST / HTTP/1.1\r\nContent-Length: {MAX_REQUEST_SIZE}\r\n\r\n".encode()
    assert await read_request(feed(declared, eof=False)) is None

    endless_header = b"GET / HTTP/1.1\r\nX: " + b"a" * (MAX_REQUEST_SIZE + 10)
    assert await read_request(feed(endless_header, eof=False)) is None


@pytest.mark.asyncio
async def test_dispatch_routes_and_errors():
    server = HTTPServer("127.0.0.1", 0)

    @server.get("/items/{item_id}")
    async def get_item(request, item_id):
        return {"id": item_id}

    @server.post("/items")
    async def create_item(request):
        raise InvalidRequest("Request body required")

    @server.get("/boom")
    async def boom(request):
        raise KeyError("oops")

    @server.get("/created")
    async def created(request):
        return 500, {"error": "custom"}

    assert await server.dispatch(Request("GET", "/items/7", {})) == (200, {"id": "7"})
    assert await server.dispatch(Request("POST", "/items", {})) == (400, {"error": "Request body required"})
    assert await server.dispatch(Request("GET", "/boom", {})) == (500, {"error": "Internal server error"})
    assert await server.dispatch(Request("GET", "/created", {})) == (500, {"error": "custom"})

    # Unknown paths and known paths with another method are both 404
    assert await server.dispatch(Request("GET", "/nope", {})) == (404, {"error": "Not found: GET /nope"})
    assert await server.dispatch(Request("DELETE", "/items/7", {})) == (404, {"error": "Not found: DELETE /items/7"})


@pytest.mark.asyncio
async def test_server_over_socket():
    server = HTTPServer("127.0.0.1", 0)

    @server.post("/echo")
    async def echo(request):
        return {"received": request.json()}

    await server.start()
    try:
        assert server.is_serving
        assert server.port != 0

        payload = b'{"value": 1}'
        raw = b"POST /echo HTTP/1.1\r\nHost: localhost\r\nContent-Length: %d\r\n\r\n%s" % (len(payload), payload)
        status, headers, body = split_response(await exchange(server.port, raw))
        assert status == 200
        assert json.loads(body) == {"received": {"value": 1}}

        # Body shorter than Content-Length, then EOF: nothing is sent back
        raw = b"POST /echo HTTP/1.1\r\nContent-Length: 50\r\n\r\n{\"value\""
        assert await exchange(server.port, raw) == b""

        # No header terminator before EOF
        assert await exchange(server.port, b"\x00\x01garbage") == b""

        status, _, body = split_response(await exchange(server.port, b"GARBAGE\r\n\r\n"))
        assert status == 400
        assert json.loads(body) == {"error": "Malformed request line"}

        status, _, body = split_response(await exchange(server.port, b"GET /missing HTTP/1.1\r\n\r\n", close_write=False))
        assert status == 404
    finally:
        await server.stop()

    assert not server.is_serving


@pytest.mark.asyncio
async def test_method_is_case_sensitive():
    server = HTTPServer("127.0.0.1", 0)

    @server.get("/health")
    async def health(request):
        return {"status": "ok"}

    request = parse_request(b"get /health HTTP/1.1")
    assert await server.dispatch(request) == (404, {"error": "Not found: get /health"})


def test_encode_response_refuses_non_finite_numbers():
    with pytest.raises(ValueError):
        encode_response(200, {"value": float("nan")})


class WriterStub:
    def __init__(self, peer):
        self.peer = peer
        self.written = []
        self.closed = False

    def get_extra_info(self, name):
        return self.peer if name == "peername" else None

    def write(self, data):
        self.written.append(data)

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


@pytest.mark.asyncio
async def test_non_loopback_peer_is_closed_without_response():
    server = HTTPServer("127.0.0.1", 0)
    writer = WriterStub(("192.168.1.5", 1234))

    await server._handle_connection(feed(b"GET /health HTTP/1.1\r\n\r\n"), writer)

    assert writer.written == []
    assert writer.closed


@pytest.mark.asyncio
async def test_loopback_peer_is_answered():
    server = HTTPServer("127.0.0.1", 0)
    writer = WriterStub(("::ffff:127.0.0.1", 1234, 0, 0))

    await server._handle_connection(feed(b"GET /health HTTP/1.1\r\n\r\n"), writer)

    status, _, _ = split_response(b"".join(writer.written))
    assert status == 404
    assert writer.closed


@pytest.mark.asyncio
async def test_stop_aborts_requests_waiting_on_a_handler():
    server = HTTPServer("127.0.0.1", 0)
    entered = asyncio.Event()

    @server.post("/slow")
    async def slow(request):
        entered.set()
        await asyncio.Event().wait()

    await server.start()
    reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
    writer.write(b"POST /slow HTTP/1.1\r\nContent-Length: 0\r\n\r\n")
    await writer.drain()
    await asyncio.wait_for(entered.wait(), timeout=5)

    await asyncio.wait_for(server.stop(), timeout=5)

    assert await asyncio.wait_for(reader.read(), timeout=5) == b""
    writer.close()
    assert not server.is_serving
