"""Creating and managing sandboxes through the management API and the proxy."""

from __future__ import annotations

from typing import Any

import httpx

from .commands import Cmd, Pty
from .filesystem import Filesystem
from .options import ErrorResponse, Options, SandboxDetail, check_response
from .rpc import gen_sandbox_header

_SANDBOXES = "/secvirt/v2/sandboxes"
_TIMEOUT = httpx.Timeout(None, connect=30.0)


class Sandbox:
    """A running sandbox with clients for its API, proxy, files and processes."""

    def __init__(
        self,
        detail: SandboxDetail,
        *,
        api: httpx.Client,
        proxy: httpx.Client,
        proxy_base_url: str,
        filesystem: Filesystem,
        cmd: Cmd,
        pty: Pty,
    ):
        self.detail = detail
        self._api = api
        self._proxy = proxy
        self._proxy_base_url = proxy_base_url
        self._filesystem = filesystem
        self._cmd = cmd
        self._pty = pty

    @classmethod
    def create(
        cls, options: Options | None = None, transport: httpx.BaseTransport | None = None
    ) -> Sandbox:
        """Ask the service for a new sandbox described by ``options``.

        Raises ErrorResponse when the service refuses.
        """
        options = options or Options()
        api = httpx.Client(base_url=options.api_base_url, transport=transport, timeout=_TIMEOUT)
        proxy = httpx.Client(
            base_url=options.proxy_base_url, transport=transport, timeout=_TIMEOUT
        )
        template = getattr(options.template, "value", options.template)
        try:
            data = check_response(
                api.post(
                    _SANDBOXES,
                    json={
                        "user_id": options.user,
                        "template": template,
                        "health_ports": options.health_ports,
                    },
                )
            )
        except BaseException:
            api.close()
            proxy.close()
            raise
        detail = SandboxDetail.from_dict(data or {})
        base = options.proxy_base_url
        return cls(
            detail,
            api=api,
            proxy=proxy,
            proxy_base_url=base,
            filesystem=Filesystem(base, detail.id, options.user, transport=transport),
            cmd=Cmd(base, detail.id, options.user, transport=transport),
            pty=Pty(base, detail.id, options.user, transport=transport),
        )

    @property
    def id(self) -> str:
        return self.detail.id

    @property
    def user(self) -> str:
        return self.detail.user

    @property
    def proxy_base_url(self) -> str:
        return self._proxy_base_url

    @property
    def filesystem(self) -> Filesystem:
        return self._filesystem

    @property
    def cmd(self) -> Cmd:
        return self._cmd

    @property
    def pty(self) -> Pty:
        return self._pty

    def proxy_request(self, port: int, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request to ``port`` inside the sandbox through the proxy."""
        headers = {**gen_sandbox_header(port, self.id, self.user), **(kwargs.pop("headers", None) or {})}
        return self._proxy.request(method, path, headers=headers, **kwargs)

    def api_request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request to the management API."""
        return self._api.request(method, path, **kwargs)

    def get_sandbox(self, sandbox_id: str) -> SandboxDetail:
        """Return the details of the sandbox with ``sandbox_id``."""
        data = check_response(self.api_request("POST", f"{_SANDBOXES}/{sandbox_id}"))
        return SandboxDetail.from_dict(data or {})

    def stop_sandbox(self, sandbox_id: str) -> None:
        check_response(self.api_request("POST", f"{_SANDBOXES}/{sandbox_id}/stop"))

    def start_sandbox(self, sandbox_id: str) -> None:
        check_response(self.api_request("POST", f"{_SANDBOXES}/{sandbox_id}/start"))

    def destroy_sandbox(self, sandbox_id: str) -> None:
        check_response(self.api_request("POST", f"{_SANDBOXES}/{sandbox_id}/destroy"))

    def close(self) -> None:
        """Release every HTTP connection this sandbox holds."""
        self._filesystem.close()
        self._cmd.close()
        self._pty.close()
        self._api.close()
        self._proxy.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["Sandbox", "ErrorResponse"]