# secvirt

A Python client for secvirt sandboxes. It talks to the sandbox management API and,
through the sandbox proxy, to the services running inside each sandbox. With it
you can:

- create sandboxes, and look up, stop, start and destroy them
- read, write, list, move and remove files inside a sandbox
- run shell commands and interactive terminals
- execute code through the code IDE template
- launch MCP servers through the MCP host template

It is a library only. It installs no command-line tool.

## Installation

```
pip install secvirt
```

The only runtime dependency is `httpx`.

## Creating a sandbox

```python
from secvirt.options import Options, TemplateType
from secvirt.sandbox import Sandbox

options = Options(host="localhost", user="default", template=TemplateType.CODEIDE)
with Sandbox.create(options) as sbx:
    print(sbx.id, sbx.user, sbx.detail.state)

    sbx.stop_sandbox(sbx.id)
    sbx.start_sandbox(sbx.id)
    print(sbx.get_sandbox(sbx.id))
    sbx.destroy_sandbox(sbx.id)
```

`Options` has these defaults: host `localhost`, user `default`, template
`TemplateType.CODEIDE`, API port 8994 and proxy port 8993. `health_ports` is sent
to the service when the sandbox is created. The templates are
`TemplateType.CODEIDE`, `TemplateType.HOSTMCP` and `TemplateType.DESKTOP`.

If the management API or a proxied service answers with a status of 400 or above,
the call raises `secvirt.options.ErrorResponse`. Its `code` and `message` come from
the error body, and it prints as `Error[<code>]: <message>`.

For raw access, `sbx.api_request(method, path, **kwargs)` sends a request to the
management API. `sbx.proxy_request(port, method, path, **kwargs)` sends one to a port
inside the sandbox and adds the routing headers the proxy expects. Both return an
`httpx.Response`. `sbx.close()`, or leaving the `with` block, releases every
connection.

`create` also accepts an `httpx` transport, for example `httpx.MockTransport`.
Every client the sandbox builds then uses that transport, which makes it easy to
test code that uses this library.

## Files

```python
fs = sbx.filesystem

fs.mkdir("/app/work")                # True, also when the directory already exists
fs.write("/app/work/readme", b"hello")
print(fs.read("/app/work/readme"))   # b"hello"

with fs.read_stream("/app/work/readme") as reader:
    print(reader.read(100))

for entry in fs.list("/app", 0):
    print(entry)                     # a dict describing the entry

print(fs.exists("/app"))             # True
print(fs.rename("/app/work/readme", "/app/work/README"))
fs.remove("/app/work/README")
```

`write` takes one of three kinds of source:

- a `str` or path-like object, which names a local file to upload
- a bytes-like object
- a binary file object

The content is sent in 64 KiB chunks. Any other kind of source raises `TypeError`.

`exists` returns `True` when the path can be stat'ed. It does not return `False`.
An error from the daemon, for a missing path too, is raised as a
`secvirt.rpc.ConnectError`. The exception's `code` is a `secvirt.rpc.Code` member,
such as `Code.NOT_FOUND`. Every filesystem and process call reports daemon errors in
the same way.

## Commands and terminals

```python
from secvirt.commands import CommandExitError, PtySize

try:
    result = sbx.cmd.run("ls -la", None, "/app", on_stdout=print)
    print(result.stdout, result.exit_code)
except CommandExitError as exc:
    print(exc.result.exit_code, exc.result.stderr)

handle = sbx.cmd.start("sleep 60")
print([p.pid for p in sbx.cmd.list()])
handle.kill()

term = sbx.pty.create(PtySize(rows=24, cols=80), None, "")
sbx.pty.send_stdin(term.pid, b"ls -a\n")
sbx.pty.resize(term.pid, PtySize(rows=40, cols=120))
term.wait(on_pty=lambda data: print(data.decode(errors="replace")))
```

- Commands run through `/bin/bash -l -c`.
- Terminals run `/bin/bash -i -l` with `TERM=xterm-256color`.
- `wait` raises `CommandExitError` when the exit code is not zero.
- `wait` raises `RuntimeError` when the event stream ends without an end event.
- `cmd.connect(pid)` attaches to a process that is already running.
- `handle.disconnect()` stops receiving events, and the process keeps running.

## Code execution

```python
from secvirt.codeide import CodeIDESandbox
from secvirt.options import Options

ide = CodeIDESandbox.create(Options(host="localhost"))
for package in ide.packages("python"):
    print(package.name, package.version)

response = ide.run_code("python", "print('hi')", None)
print(response.result, response.stdouts, response.errors)

simple = ide.run_code_v1("python", "1 + 1", None)
print(simple.output, simple.console)
```

`CodeIDESandbox.create` always uses the code IDE template and waits on port 8000.

`run_code_v1` returns the result unchanged when it is a string, and as JSON
otherwise. The console output is the JSON of the stdout records. When there is no
result but there are errors, it raises `RuntimeError`, whose message is the JSON of
the errors.

## Desktop sandboxes

```python
from secvirt.desktop import DesktopSandbox
from secvirt.options import Options

desktop = DesktopSandbox.create(Options(host="localhost"))
print(desktop.id)
```

## MCP servers

```python
from secvirt.hostmcp import EntryType, HostMCPSandbox, ServerEntry, ServersFile
from secvirt.options import Options

host = HostMCPSandbox.create(Options(host="localhost"))
endpoints = host.launch(
    ServersFile(
        mcp_servers={
            "duck-mcp": ServerEntry(type=EntryType.STDIO, command="duckduckgo-mcp-server"),
        }
    ),
    False,
)
for endpoint in endpoints:
    print(endpoint.name, endpoint.path, [tool.get("name") for tool in endpoint.tools])

print(host.get_launch_mcps())
print(host.get_mcp_config("some-config-id"))
host.launch_with_id("some-config-id")
```

`HostMCPSandbox.create` uses the MCP host template and waits on ports 8001 and 8002.

- `launch` raises `RuntimeError` when no server was launched.
- `get_mcp_config` raises `LookupError` when no configuration has the given id.
- `launch_with_id` launches a stored configuration and never asks for a reload.

### What this package does not do

This package does not act as an MCP client. It launches MCP servers and reports
their endpoints, but it has no way to open an MCP session with them or to list and
call their tools. To do that, use an MCP client of your own. Point it at
`host.proxy_base_url + endpoint.path + "mcp"`, with the headers from
`secvirt.rpc.gen_sandbox_header(8002, host.id, "")`.

The package also offers no tracing or telemetry hooks.

## Running the tests

```
pip install -e ".[test]"
pytest
```