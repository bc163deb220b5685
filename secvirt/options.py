"""Sandbox options, templates and the API's shared response types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import httpx

DEFAULT_API_PORT = 8994
DEFAULT_PROXY_PORT = 8993


class TemplateType(str, Enum):
    """Images a sandbox can be created from."""

    CODEIDE = "codeide:latest"
    HOSTMCP = "hostmcp:latest"
    DESKTOP = "desktop:latest"


@dataclass
class Options:
    """Where the sandbox service lives and what sandbox to create."""

    host: str = "localhost"
    user: str = "default"
    template: TemplateType = TemplateType.CODEIDE
    sandbox_id: str = ""
    api_port: int = DEFAULT_API_PORT
    proxy_port: int = DEFAULT_PROXY_PORT
    health_ports: list[int] | None = None

    @property
    def api_base_url(self) -> str:
        return f"http://{self.host}:{self.api_port}"

    @property
    def proxy_base_url(self) -> str:
        return f"http://{self.host}:{self.proxy_port}"


@dataclass
class SandboxDetail:
    """A sandbox as described by the management API."""

    id: str = ""
    ip: str = ""
    user: str = ""
    create_at: str = ""
    cpu_limit: int = 0
    mem_limit: int = 0
    envs: list[str] = field(default_factory=list)
    binds: list[str] = field(default_factory=list)
    timeout: int = 0
    health_ports: list[int] = field(default_factory=list)
    state: str = ""
    last_action_time: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SandboxDetail:
        return cls(
            id=data.get("id") or "",
            ip=data.get("ip") or "",
            user=data.get("user") or "",
            create_at=data.get("create_at") or "",
            cpu_limit=int(data.get("cpu_limit") or 0),
            mem_limit=int(data.get("mem_limit") or 0),
            envs=list(data.get("envs") or []),
            binds=list(data.get("binds") or []),
            timeout=int(data.get("timeout") or 0),
            health_ports=[int(p) for p in data.get("health_ports") or []],
            state=data.get("state") or "",
            last_action_time=int(data.get("last_action_time") or 0),
        )


class ErrorResponse(Exception):
    """An error body returned by the sandbox service."""

    def __init__(self, code: int, message: str = ""):
        super().__init__(code, message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"Error[{self.code}]: {self.message}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ErrorResponse:
        return cls(int(data.get("code") or 0), str(data.get("message") or ""))


def check_response(response: httpx.Response) -> Any:
    """Return the decoded JSON body of a successful response, or None if it is empty.

    Raises ErrorResponse when the status is 400 or above.
    """
    if response.is_error:
        try:
            data = response.json()
        except ValueError:
            raise ErrorResponse(response.status_code, response.text) from None
        if not isinstance(data, dict):
            raise ErrorResponse(response.status_code, response.text)
        raise ErrorResponse.from_dict(data)
    if not response.content:
        return None
    return response.json()