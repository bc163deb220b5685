"""Client library for secvirt sandboxes: lifecycle, files, processes, code and MCP hosting."""

__version__ = "0.1.0"

__all__ = [
    "codeide",
    "commands",
    "desktop",
    "filesystem",
    "hostmcp",
    "options",
    "rpc",
    "sandbox",
]