[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "secvirt"
version = "0.1.0"
description = "Client library for secvirt sandboxes: lifecycle, filesystem, processes, code execution and MCP hosting"
requires-python = ">=3.10"
dependencies = [
    "httpx",
]
keywords = ["sandbox", "connect-rpc", "code-execution", "mcp", "client"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["secvirt"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
