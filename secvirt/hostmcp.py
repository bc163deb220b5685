"""A sandbox that hosts MCP servers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import timedelta
from enum import Enum
from typing import Any, Mapping

import httpx

from .options import Options, TemplateType, check_response
from .sandbox import Sandbox

DEFAULT_MCP_SERVER_PORT = 8001
DEFAULT_MCP_ROUTER_PORT = 8002


class EntryType(str, Enum):
    """How an MCP server is reached."""

    STDIO = "stdio"
    SSE = "sse"
    STREAMABLE_HTTP = "streamable-http"


@dataclass
class ServerEntry:
    """The configuration of one MCP server."""

    type: str = ""
    command: str = ""
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    timeout: timedelta = timedelta(0)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ServerEntry:
        nanoseconds = int(data.get("timeout") or 0)
        return cls(
            type=data.get("type") or "",
            command=data.get("command") or "",
            args=list(data.get("args") or []),
            env=dict(data.get("env") or {}),
            url=data.get("url") or "",
            headers=dict(data.get("headers") or {}),
            timeout=timedelta(microseconds=nanoseconds // 1000),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form, leaving out empty fields; the timeout is in nanoseconds."""
        fields: dict[str, Any] = {
            "type": getattr(self.type, "value", self.type),
            "command": self.command,
            "args": list(self.args),
            "env": dict(self.env),
            "url": self.url,
            "headers": dict(self.headers),
            "timeout": (self.timeout // timedelta(microseconds=1)) * 1000,
        }
        return {key: value for key, value in fields.items() if value}


@dataclass
class ServersFile:
    """A set of named MCP server configurations."""

    mcp_servers: dict[str, ServerEntry] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        if not self.mcp_servers:
            return {}
        return {"mcpServers": {name: e.to_dict() for name, e in self.mcp_servers.items()}}


@dataclass
class MCPEndpoint:
    """A launched MCP server and where the router serves it."""

    name: str = ""
    path: str = ""
    entry: ServerEntry = field(default_factory=ServerEntry)
    tools: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MCPEndpoint:
        return cls(
            name=data.get("name") or "",
            path=data.get("path") or "",
            entry=ServerEntry.from_dict(data.get("entry") or {}),
            tools=list(data.get("tools") or []),
        )


class HostMCPSandbox(Sandbox):
    """A sandbox created from the MCP host template."""

    @classmethod
    def create(
        cls, options: Options | None = None, transport: httpx.BaseTransport | None = None
    ) -> HostMCPSandbox:
        options = replace(
            options or Options(),
            template=TemplateType.HOSTMCP,
            health_ports=[DEFAULT_MCP_SERVER_PORT, DEFAULT_MCP_ROUTER_PORT],
        )
        return super().create(options, transport)

    def get_mcp_config(self, id: str) -> dict[str, ServerEntry]:
        """Return the stored MCP configuration with ``id``.

        Raises LookupError when there is none.
        """
        data = check_response(
            self.api_request(
                "GET", "/secvirt/v2/mcp/clients", params={"cursor": id, "limit": "1"}
            )
        )
        clients = (data or {}).get("clients") or {}
        if not clients:
            raise LookupError("mcp config not found")
        return {name: ServerEntry.from_dict(entry or {}) for name, entry in clients.items()}

    def get_launch_mcps(self) -> list[MCPEndpoint]:
        """Return the MCP servers running in the sandbox."""
        data = check_response(
            self.proxy_request(DEFAULT_MCP_SERVER_PORT, "GET", "/hostmcp/v1/mcps")
        )
        return [MCPEndpoint.from_dict(item) for item in data or []]

    def launch(self, cfg: ServersFile | None, reload: bool = False) -> list[MCPEndpoint]:
        """Launch the servers in ``cfg`` and return their endpoints.

        Raises RuntimeError when nothing was launched.
        """
        data = check_response(
            self.proxy_request(
                DEFAULT_MCP_SERVER_PORT,
                "POST",
                "/hostmcp/v1/launch",
                json={"config": None if cfg is None else cfg.to_dict(), "reload": reload},
            )
        )
        endpoints = [MCPEndpoint.from_dict(item) for item in data or []]
        if not endpoints:
            raise RuntimeError("failed to launch mcp server")
        return endpoints

    def launch_with_id(self, id: str, reload: bool = False) -> list[MCPEndpoint]:
        """Launch the stored configuration with ``id``; it is never reloaded."""
        config = self.get_mcp_config(id)
        return self.launch(ServersFile(mcp_servers=config), False)