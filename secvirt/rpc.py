"""A small Connect protocol client (JSON codec) for the in-sandbox daemon."""

from __future__ import annotations

import gzip
import json
import struct
from enum import Enum
from typing import Any, Iterable, Iterator

import httpx

DEFAULT_PROXY_HOST_SUFFIX = ".proxy.com"
DEFAULT_ENVD_PORT = 48008

FLAG_COMPRESSED = 0x01
FLAG_END_STREAM = 0x02

_ENVELOPE_HEADER = struct.Struct(">BI")
_DEFAULT_TIMEOUT = httpx.Timeout(None, connect=30.0)
_UNARY_HEADERS = {
    "Content-Type": "application/json",
    "Connect-Protocol-Version": "1",
}
_STREAM_HEADERS = {"Content-Type": "application/connect+json"}


class Code(Enum):
    """Connect error codes."""

    CANCELED = "canceled"
    UNKNOWN = "unknown"
    INVALID_ARGUMENT = "invalid_argument"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    PERMISSION_DENIED = "permission_denied"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    FAILED_PRECONDITION = "failed_precondition"
    ABORTED = "aborted"
    OUT_OF_RANGE = "out_of_range"
    UNIMPLEMENTED = "unimplemented"
    INTERNAL = "internal"
    UNAVAILABLE = "unavailable"
    DATA_LOSS = "data_loss"
    UNAUTHENTICATED = "unauthenticated"


_HTTP_STATUS_CODES = {
    400: Code.INTERNAL,
    401: Code.UNAUTHENTICATED,
    403: Code.PERMISSION_DENIED,
    404: Code.UNIMPLEMENTED,
    429: Code.UNAVAILABLE,
    502: Code.UNAVAILABLE,
    503: Code.UNAVAILABLE,
    504: Code.UNAVAILABLE,
}


def _parse_code(value: Any, fallback: Code = Code.UNKNOWN) -> Code:
    if not isinstance(value, str):
        return fallback
    try:
        return Code(value)
    except ValueError:
        return Code.UNKNOWN


class ConnectError(Exception):
    """An error reported by a Connect server or raised while talking to one."""

    def __init__(self, code: Code, message: str = "", details: Iterable[Any] | None = None):
        super().__init__(code, message)
        self.code = code
        self.message = message
        self.details = list(details or [])

    def __str__(self) -> str:
        if self.message:
            return f"{self.code.value}: {self.message}"
        return self.code.value


def _error_from_json(data: Any, fallback: Code) -> ConnectError:
    if not isinstance(data, dict):
        return ConnectError(fallback)
    return ConnectError(
        _parse_code(data.get("code"), fallback),
        str(data.get("message", "")),
        data.get("details"),
    )


def _error_from_response(response: httpx.Response) -> ConnectError:
    fallback = _HTTP_STATUS_CODES.get(response.status_code, Code.UNKNOWN)
    try:
        data = response.json()
    except ValueError:
        return ConnectError(fallback, response.text)
    return _error_from_json(data, fallback)


def gen_sandbox_header(port: int, sandbox_id: str, user: str) -> dict[str, str]:
    """Build the routing headers the sandbox proxy expects."""
    headers = {"X-HOST": f"{port}-{sandbox_id}{DEFAULT_PROXY_HOST_SUFFIX}"}
    if user:
        headers["X-User"] = user
    return headers


def encode_envelope(payload: bytes, flags: int = 0) -> bytes:
    """Frame one message as a Connect streaming envelope."""
    return _ENVELOPE_HEADER.pack(flags, len(payload)) + payload


def iter_envelopes(chunks: Iterable[bytes]) -> Iterator[tuple[int, bytes]]:
    """Split a byte stream into ``(flags, payload)`` envelopes."""
    buffer = bytearray()
    for chunk in chunks:
        buffer += chunk
        while len(buffer) >= _ENVELOPE_HEADER.size:
            flags, length = _ENVELOPE_HEADER.unpack_from(buffer)
            end = _ENVELOPE_HEADER.size + length
            if len(buffer) < end:
                break
            payload = bytes(buffer[_ENVELOPE_HEADER.size:end])
            del buffer[:end]
            yield flags, payload
    if buffer:
        raise ConnectError(Code.DATA_LOSS, "incomplete envelope at end of stream")


def _encode(message: Any) -> bytes:
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _decompress(payload: bytes, encoding: str) -> bytes:
    if encoding == "gzip":
        return gzip.decompress(payload)
    raise ConnectError(Code.INTERNAL, f"unsupported message compression {encoding!r}")


def _read_stream(chunks: Iterable[bytes], encoding: str) -> Iterator[Any]:
    for flags, payload in iter_envelopes(chunks):
        if flags & FLAG_COMPRESSED:
            payload = _decompress(payload, encoding)
        if flags & FLAG_END_STREAM:
            end = json.loads(payload) if payload else {}
            error = end.get("error") if isinstance(end, dict) else None
            if error:
                raise _error_from_json(error, Code.UNKNOWN)
            return
        yield json.loads(payload) if payload else {}
    raise ConnectError(Code.INTERNAL, "missing end-of-stream message")


class ConnectClient:
    """Calls Connect procedures on one sandbox through the proxy."""

    def __init__(
        self,
        base_url: str,
        sandbox_id: str = "",
        user: str = "",
        *,
        port: int = DEFAULT_ENVD_PORT,
        transport: httpx.BaseTransport | None = None,
        timeout: httpx.Timeout = _DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=gen_sandbox_header(port, sandbox_id, user),
            transport=transport,
            timeout=timeout,
        )

    def call_unary(self, procedure: str, message: Any) -> Any:
        """Send one message and return the decoded reply."""
        response = self._client.post(procedure, content=_encode(message), headers=_UNARY_HEADERS)
        if response.status_code != 200:
            raise _error_from_response(response)
        return response.json() if response.content else {}

    def call_server_stream(self, procedure: str, message: Any) -> Iterator[Any]:
        """Send one message and yield each reply message as it arrives."""
        body = encode_envelope(_encode(message))
        with self._client.stream("POST", procedure, content=body, headers=_STREAM_HEADERS) as response:
            if response.status_code != 200:
                response.read()
                raise _error_from_response(response)
            encoding = response.headers.get("connect-content-encoding", "identity")
            yield from _read_stream(response.iter_bytes(), encoding)

    def call_client_stream(self, procedure: str, messages: Iterable[Any]) -> Any:
        """Stream messages to the server and return its single reply."""
        content = (encode_envelope(_encode(message)) for message in messages)
        with self._client.stream("POST", procedure, content=content, headers=_STREAM_HEADERS) as response:
            if response.status_code != 200:
                response.read()
                raise _error_from_response(response)
            encoding = response.headers.get("connect-content-encoding", "identity")
            replies = list(_read_stream(response.iter_bytes(), encoding))
        if len(replies) != 1:
            raise ConnectError(
                Code.INTERNAL, f"expected one response message, got {len(replies)}"
            )
        return replies[0]

    def close(self) -> None:
        """Release the underlying HTTP connections."""
        self._client.close()

    def __enter__(self) -> ConnectClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()