"""Running commands and pseudo-terminals inside a sandbox."""

from __future__ import annotations

import base64
import codecs
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping

import httpx

from .rpc import DEFAULT_ENVD_PORT, ConnectClient

_SERVICE = "/process.Process/"
_SHELL = "/bin/bash"
_SIGKILL = "SIGNAL_SIGKILL"


def _b64encode(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(bytes(data)).decode("ascii")


def _b64decode(text: Any) -> bytes:
    if not text or not isinstance(text, str):
        return b""
    text = text.replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    return base64.b64decode(text)


def _selector(pid: int) -> dict[str, int]:
    return {"pid": pid}


def _event(message: Any) -> Mapping[str, Any]:
    if not isinstance(message, dict):
        return {}
    return message.get("event") or {}


@dataclass
class ProcessInfo:
    """A process running in the sandbox."""

    pid: int
    tag: str = ""
    cmd: str = ""
    args: list[str] = field(default_factory=list)
    envs: dict[str, str] = field(default_factory=dict)
    cwd: str = ""

    @classmethod
    def _from_message(cls, message: Mapping[str, Any]) -> ProcessInfo:
        config = message.get("config") or {}
        return cls(
            pid=int(message.get("pid") or 0),
            tag=message.get("tag") or "",
            cmd=config.get("cmd") or "",
            args=list(config.get("args") or []),
            envs=dict(config.get("envs") or {}),
            cwd=config.get("cwd") or "",
        )


@dataclass(frozen=True)
class PtySize:
    """Terminal dimensions in character cells."""

    rows: int
    cols: int

    def _to_message(self) -> dict[str, Any]:
        return {"size": {"rows": self.rows, "cols": self.cols}}


@dataclass(frozen=True)
class CommandResult:
    """The collected output and exit status of a finished command."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    error: str = ""


class CommandExitError(Exception):
    """Raised when a command finishes with a non-zero exit code."""

    def __init__(self, result: CommandResult):
        super().__init__(result)
        self.result = result

    def __str__(self) -> str:
        return f"command exited with code {self.result.exit_code}: {self.result.error}"


class CommandHandle:
    """A started process whose events can be consumed with :meth:`wait`."""

    def __init__(self, pid: int, kill: Callable[[int], None], events: Iterator[Any]):
        self._pid = pid
        self._kill = kill
        self._events = events
        self._result: CommandResult | None = None

    @property
    def pid(self) -> int:
        return self._pid

    def disconnect(self) -> None:
        """Stop receiving events; the process keeps running."""
        close = getattr(self._events, "close", None)
        if close is not None:
            close()

    def wait(
        self,
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
        on_pty: Callable[[bytes], None] | None = None,
    ) -> CommandResult:
        """Consume events until the process ends and return its result.

        Raises CommandExitError when the exit code is not zero.
        """
        if self._result is None:
            self._result = self._collect(on_stdout, on_stderr, on_pty)
        if self._result.exit_code != 0:
            raise CommandExitError(self._result)
        return self._result

    def _collect(
        self,
        on_stdout: Callable[[str], None] | None,
        on_stderr: Callable[[str], None] | None,
        on_pty: Callable[[bytes], None] | None,
    ) -> CommandResult:
        stdout = bytearray()
        stderr = bytearray()
        out_decoder = codecs.getincrementaldecoder("utf-8")("replace")
        err_decoder = codecs.getincrementaldecoder("utf-8")("replace")
        result: CommandResult | None = None

        for message in self._events:
            event = _event(message)
            data = event.get("data")
            end = event.get("end")
            if data is not None:
                chunk = _b64decode(data.get("stdout"))
                if chunk:
                    stdout += chunk
                    text = out_decoder.decode(chunk)
                    if on_stdout is not None and text:
                        on_stdout(text)
                chunk = _b64decode(data.get("stderr"))
                if chunk:
                    stderr += chunk
                    text = err_decoder.decode(chunk)
                    if on_stderr is not None and text:
                        on_stderr(text)
                pty = _b64decode(data.get("pty"))
                if pty and on_pty is not None:
                    on_pty(pty)
            elif end is not None:
                exit_code = end.get("exitCode", end.get("exit_code", 0))
                result = CommandResult(
                    stdout=stdout.decode("utf-8", "replace"),
                    stderr=stderr.decode("utf-8", "replace"),
                    exit_code=int(exit_code or 0),
                    error=end.get("error") or "",
                )

        if result is None:
            raise RuntimeError("command ended without end event")
        return result

    def kill(self) -> None:
        """Send SIGKILL to the process."""
        self._kill(self._pid)


class _ProcessService:
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

    def _send_kill(self, pid: int) -> None:
        self._client.call_unary(
            _SERVICE + "SendSignal", {"process": _selector(pid), "signal": _SIGKILL}
        )

    def _send_input(self, pid: int, input_field: str, data: bytes | str) -> None:
        self._client.call_unary(
            _SERVICE + "SendInput",
            {"process": _selector(pid), "input": {input_field: _b64encode(data)}},
        )

    def _open(self, procedure: str, request: Mapping[str, Any]) -> CommandHandle:
        events = self._client.call_server_stream(_SERVICE + procedure, request)
        try:
            first = next(events)
        except StopIteration:
            raise RuntimeError("failed to start process") from None
        start = _event(first).get("start") or {}
        return CommandHandle(int(start.get("pid") or 0), self._send_kill, events)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._client.close()


class Cmd(_ProcessService):
    """Starts and manages shell commands in a sandbox."""

    def list(self) -> list[ProcessInfo]:
        """Return the processes currently running in the sandbox."""
        reply = self._client.call_unary(_SERVICE + "List", {})
        return [ProcessInfo._from_message(p) for p in reply.get("processes") or []]

    def kill(self, pid: int) -> None:
        """Send SIGKILL to the process with ``pid``."""
        self._send_kill(pid)

    def send_stdin(self, pid: int, data: bytes | str) -> None:
        """Send ``data`` to the standard input of the process with ``pid``."""
        self._send_input(pid, "stdin", data)

    def start(
        self, cmd: str, envs: Mapping[str, str] | None = None, cwd: str = ""
    ) -> CommandHandle:
        """Start ``cmd`` in a login shell and return a handle to it."""
        request = {
            "process": {
                "cmd": _SHELL,
                "args": ["-l", "-c", cmd],
                "envs": dict(envs or {}),
                "cwd": cwd,
            }
        }
        return self._open("Start", request)

    def run(
        self,
        cmd: str,
        envs: Mapping[str, str] | None = None,
        cwd: str = "",
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
        on_pty: Callable[[bytes], None] | None = None,
    ) -> CommandResult:
        """Start ``cmd`` and wait for it to finish."""
        handle = self.start(cmd, envs, cwd)
        return handle.wait(on_stdout, on_stderr, on_pty)

    def connect(self, pid: int) -> CommandHandle:
        """Attach to the running process with ``pid``."""
        return self._open("Connect", {"process": _selector(pid)})

    def close(self) -> None:
        """Release the underlying HTTP connections."""
        self._client.close()


class Pty(_ProcessService):
    """Creates and drives interactive terminals in a sandbox."""

    def kill(self, pid: int) -> None:
        """Send SIGKILL to the process with ``pid``."""
        self._send_kill(pid)

    def send_stdin(self, pid: int, data: bytes | str) -> None:
        """Send ``data`` to the terminal of the process with ``pid``."""
        self._send_input(pid, "pty", data)

    def create(
        self, size: PtySize, envs: Mapping[str, str] | None = None, cwd: str = ""
    ) -> CommandHandle:
        """Start an interactive login shell on a terminal of ``size``."""
        environment = dict(envs or {})
        environment["TERM"] = "xterm-256color"
        request = {
            "process": {
                "cmd": _SHELL,
                "args": ["-i", "-l"],
                "envs": environment,
                "cwd": cwd,
            },
            "pty": size._to_message(),
        }
        return self._open("Start", request)

    def resize(self, pid: int, size: PtySize) -> None:
        """Change the terminal size of the process with ``pid``."""
        self._client.call_unary(
            _SERVICE + "Update", {"process": _selector(pid), "pty": size._to_message()}
        )

    def close(self) -> None:
        """Release the underlying HTTP connections."""
        self._client.close()