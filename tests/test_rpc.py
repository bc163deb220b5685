import gzip
import json

import httpx
import pytest

from secvirt.rpc import (
    DEFAULT_ENVD_PORT,
    FLAG_COMPRESSED,
    FLAG_END_STREAM,
    Code,
    ConnectClient,
    ConnectError,
    encode_envelope,
    gen_sandbox_header,
    iter_envelopes,
)

BASE_URL = "http://sandbox.test:48008"


def make_client(handler, sandbox_id="sbx", user="root"):
    return ConnectClient(
        BASE_URL, sandbox_id, user, transport=httpx.MockTransport(handler)
    )


def stream_body(*messages, end=b"{}"):
    body = b"".join(encode_envelope(json.dumps(m).encode()) for m in messages)
    return body + encode_envelope(end, FLAG_END_STREAM)


def test_gen_sandbox_header_with_user():
    headers = gen_sandbox_header(8000, "abc", "root")
    assert headers == {"X-HOST": "8000-abc.proxy.com", "X-User": "root"}


def test_gen_sandbox_header_without_user_omits_user():
    headers = gen_sandbox_header(DEFAULT_ENVD_PORT, "", "")
    assert headers == {"X-HOST": "48008-.proxy.com"}


def test_encode_envelope_wire_bytes():
    assert encode_envelope(b"{}") == b"\x00\x00\x00\x00\x02{}"
    assert encode_envelope(b"", FLAG_END_STREAM) == b"\x02\x00\x00\x00\x00"


def test_iter_envelopes_round_trip_over_split_chunks():
    data = encode_envelope(b"first") + encode_envelope(b"second", FLAG_END_STREAM)
    chunks = [data[i:i + 3] for i in range(0, len(data), 3)]
    assert list(iter_envelopes(chunks)) == [(0, b"first"), (FLAG_END_STREAM, b"second")]


def test_iter_envelopes_truncated_raises():
    data = encode_envelope(b"payload")[:-2]
    with pytest.raises(ConnectError) as info:
        list(iter_envelopes([data]))
    assert info.value.code is Code.DATA_LOSS


def test_call_unary_sends_json_and_headers():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["host"] = request.headers["x-host"]
        seen["user"] = request.headers["x-user"]
        seen["type"] = request.headers["content-type"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"processes": []})

    with make_client(handler) as client:
        result = client.call_unary("/process.Process/List", {"path": "/app"})

    assert result == {"processes": []}
    assert seen["path"] == "/process.Process/List"
    assert seen["host"] == gen_sandbox_header(DEFAULT_ENVD_PORT, "sbx", "root")["X-HOST"]
    assert seen["user"] == "root"
    assert seen["type"] == "application/json"
    assert seen["body"] == {"path": "/app"}


def test_call_unary_error_body_is_decoded():
    def handler(request):
        return httpx.Response(409, json={"code": "already_exists", "message": "dir exists"})

    client = make_client(handler)
    with pytest.raises(ConnectError) as info:
        client.call_unary("/filesystem.Filesystem/MakeDir", {"path": "/app"})
    assert info.value.code is Code.ALREADY_EXISTS
    assert info.value.message == "dir exists"
    assert str(info.value) == "already_exists: dir exists"


def test_call_unary_non_json_error_uses_http_status():
    def handler(request):
        return httpx.Response(404, text="no route")

    client = make_client(handler)
    with pytest.raises(ConnectError) as info:
        client.call_unary("/x.Y/Z", {})
    assert info.value.code is Code.UNIMPLEMENTED


def test_call_server_stream_yields_messages():
    seen = {}

    def handler(request):
        seen["type"] = request.headers["content-type"]
        seen["messages"] = [json.loads(p) for _, p in iter_envelopes([request.content])]
        return httpx.Response(200, content=stream_body({"chunk": 1}, {"chunk": 2}))

    client = make_client(handler)
    messages = list(client.call_server_stream("/filesystem.Filesystem/Read", {"path": "f"}))
    assert messages == [{"chunk": 1}, {"chunk": 2}]
    assert seen["type"] == "application/connect+json"
    assert seen["messages"] == [{"path": "f"}]


def test_call_server_stream_end_error_raises_after_messages():
    end = json.dumps({"error": {"code": "not_found", "message": "gone"}}).encode()

    def handler(request):
        return httpx.Response(200, content=stream_body({"n": 1}, end=end))

    client = make_client(handler)
    stream = client.call_server_stream("/process.Process/Connect", {})
    assert next(stream) == {"n": 1}
    with pytest.raises(ConnectError) as info:
        next(stream)
    assert info.value.code is Code.NOT_FOUND
    assert info.value.message == "gone"


def test_call_server_stream_missing_end_raises():
    def handler(request):
        return httpx.Response(200, content=encode_envelope(b'{"n":1}'))

    client = make_client(handler)
    with pytest.raises(ConnectError) as info:
        list(client.call_server_stream("/process.Process/Start", {}))
    assert info.value.code is Code.INTERNAL


def test_call_server_stream_gzip_message():
    payload = gzip.compress(b'{"n":7}')
    body = encode_envelope(payload, FLAG_COMPRESSED) + encode_envelope(b"{}", FLAG_END_STREAM)

    def handler(request):
        return httpx.Response(200, content=body, headers={"Connect-Content-Encoding": "gzip"})

    client = make_client(handler)
    assert list(client.call_server_stream("/process.Process/Start", {})) == [{"n": 7}]


def test_call_server_stream_http_error():
    def handler(request):
        return httpx.Response(503, text="down")

    client = make_client(handler)
    with pytest.raises(ConnectError) as info:
        list(client.call_server_stream("/process.Process/Start", {}))
    assert info.value.code is Code.UNAVAILABLE


def test_call_client_stream_sends_all_messages():
    seen = {}

    def handler(request):
        seen["messages"] = [json.loads(p) for _, p in iter_envelopes([request.content])]
        return httpx.Response(200, content=stream_body({"ok": True}))

    client = make_client(handler)
    reply = client.call_client_stream(
        "/filesystem.Filesystem/Write", iter([{"path": "a"}, {"chunk": "Yg=="}])
    )
    assert reply == {"ok": True}
    assert seen["messages"] == [{"path": "a"}, {"chunk": "Yg=="}]


def test_call_client_stream_without_reply_raises():
    def handler(request):
        return httpx.Response(200, content=stream_body())

    client = make_client(handler)
    with pytest.raises(ConnectError) as info:
        client.call_client_stream("/filesystem.Filesystem/Write", [{}])
    assert info.value.code is Code.INTERNAL


def test_base_url_trailing_slash_is_stripped():
    client = ConnectClient(BASE_URL + "/", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    assert client.base_url == BASE_URL
    client.close()