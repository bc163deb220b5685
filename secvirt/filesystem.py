"""Access to a sandbox's filesystem through its in-sandbox daemon."""

from __future__ import annotations

import base64
import io
import os
from typing import Any, BinaryIO, Iterable, Iterator, Union

import httpx

from .rpc import DEFAULT_ENVD_PORT, Code, ConnectClient, ConnectError

CHUNK_SIZE = 64 * 1024

_SERVICE = "/filesystem.Filesystem/"

FileSource = Union[str, "os.PathLike[str]", bytes, bytearray, memoryview, BinaryIO]


def _encode_chunk(chunk: bytes) -> str:
    return base64.b64encode(chunk).decode("ascii")


def _decode_chunk(message: Any) -> bytes:
    if not isinstance(message, dict):
        return b""
    text = message.get("chunk") or ""
    text = text.replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    return base64.b64decode(text)


def iter_chunks(source: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield successive non-empty blocks of at most ``chunk_size`` bytes from ``source``."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            return
        yield bytes(chunk)


def _write_messages(path: str, chunks: Iterable[bytes]) -> Iterator[dict[str, str]]:
    first = True
    for chunk in chunks:
        message = {"chunk": _encode_chunk(chunk)}
        if first:
            message = {"path": path, **message}
            first = False
        yield message


class StreamReader:
    """A file-like reader over the chunks of a streamed file.

    An empty chunk from the server marks the end of the file.
    """

    def __init__(self, messages: Iterator[Any]):
        self._messages = messages
        self._buffer = b""
        self._eof = False

    def _next_chunk(self) -> bytes:
        if self._eof:
            return b""
        try:
            message = next(self._messages)
        except StopIteration:
            self._eof = True
            return b""
        chunk = _decode_chunk(message)
        if not chunk:
            self._eof = True
        return chunk

    def read(self, size: int | None = -1) -> bytes:
        """Read up to ``size`` bytes, or everything left when ``size`` is negative.

        Returns ``b""`` at the end of the file.
        """
        if size is None or size < 0:
            parts = [self._buffer]
            self._buffer = b""
            while chunk := self._next_chunk():
                parts.append(chunk)
            return b"".join(parts)
        if size == 0:
            return b""
        if not self._buffer:
            self._buffer = self._next_chunk()
        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def close(self) -> None:
        """Stop reading and release the underlying stream."""
        self._eof = True
        self._buffer = b""
        close = getattr(self._messages, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> StreamReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Filesystem:
    """Reads, writes and manages files inside one sandbox."""

    def __init__(
        self,
        base_url: str,
        sandbox_id: str = "",
        user: str = "",
        *,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = ConnectClient(
            base_url, sandbox_id, user, port=DEFAULT_ENVD_PORT, transport=transport
        )

    def read(self, path: str) -> bytes:
        """Return the whole content of the file at ``path``."""
        messages = self._client.call_server_stream(_SERVICE + "Read", {"path": path})
        return b"".join(_decode_chunk(message) for message in messages)

    def read_stream(self, path: str) -> StreamReader:
        """Open the file at ``path`` for incremental reading."""
        return StreamReader(self._client.call_server_stream(_SERVICE + "Read", {"path": path}))

    def write(self, path: str, source: FileSource) -> None:
        """Write ``source`` to ``path`` in the sandbox.

        ``source`` is a local file path, a bytes-like object or a binary file object.
        """
        if isinstance(source, (str, os.PathLike)):
            with open(source, "rb") as local:
                self._send(path, local)
        elif isinstance(source, (bytes, bytearray, memoryview)):
            self._send(path, io.BytesIO(bytes(source)))
        elif hasattr(source, "read"):
            self._send(path, source)
        else:
            raise TypeError(f"unsupported source type: {type(source).__name__}")

    def _send(self, path: str, reader: BinaryIO) -> None:
        messages = _write_messages(path, iter_chunks(reader, CHUNK_SIZE))
        self._client.call_client_stream(_SERVICE + "Write", messages)

    def list(self, path: str, depth: int = 0) -> list[dict[str, Any]]:
        """Return the entries under the directory at ``path``."""
        if depth < 0:
            raise ValueError("depth must not be negative")
        reply = self._client.call_unary(_SERVICE + "ListDir", {"path": path, "depth": depth})
        return list(reply.get("entries") or [])

    def exists(self, path: str) -> bool:
        """Return True if ``path`` can be stat'ed; errors from the daemon propagate."""
        self._client.call_unary(_SERVICE + "Stat", {"path": path})
        return True

    def remove(self, path: str) -> None:
        """Remove the file or directory at ``path``."""
        self._client.call_unary(_SERVICE + "Remove", {"path": path})

    def rename(self, old: str, new: str) -> dict[str, Any] | None:
        """Move ``old`` to ``new`` and return the entry at its new place."""
        reply = self._client.call_unary(
            _SERVICE + "Move", {"source": old, "destination": new}
        )
        return reply.get("entry")

    def mkdir(self, path: str) -> bool:
        """Create the directory at ``path``; an existing directory counts as success."""
        try:
            self._client.call_unary(_SERVICE + "MakeDir", {"path": path})
        except ConnectError as error:
            if error.code is Code.ALREADY_EXISTS:
                return True
            raise
        return True

    def close(self) -> None:
        """Release the underlying HTTP connections."""
        self._client.close()

    def __enter__(self) -> Filesystem:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()