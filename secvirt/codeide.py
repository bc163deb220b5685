"""A sandbox that runs code through its code IDE service."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import Any, Mapping

import httpx

from .options import Options, TemplateType, check_response
from .sandbox import Sandbox

DEFAULT_CODEIDE_PORT = 8000


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


@dataclass
class PackagesResponse:
    """An installed package."""

    name: str = ""
    version: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PackagesResponse:
        return cls(name=data.get("name") or "", version=data.get("version") or "")


@dataclass
class JupyterOutput:
    """One output record of a kernel execution."""

    type: str = ""
    timestamp: Any = None
    data: Any = None
    name: str = ""
    value: str = ""
    traceback: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> JupyterOutput:
        return cls(
            type=data.get("type") or "",
            timestamp=data.get("timestamp"),
            data=data.get("data"),
            name=data.get("name") or "",
            value=data.get("value") or "",
            traceback=data.get("traceback") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form, leaving out empty fields."""
        fields = {
            "type": self.type,
            "timestamp": self.timestamp,
            "data": self.data,
            "name": self.name,
            "value": self.value,
            "traceback": self.traceback,
        }
        return {key: value for key, value in fields.items() if value is not None and value != ""}


def _outputs(items: Any) -> list[JupyterOutput] | None:
    if items is None:
        return None
    return [JupyterOutput.from_dict(item) for item in items]


def _outputs_json(items: list[JupyterOutput] | None) -> str:
    return _dumps(None if items is None else [item.to_dict() for item in items])


@dataclass
class RunCodeResponseV1:
    """Execution output flattened to two strings."""

    output: str = ""
    console: str = ""


@dataclass
class RunCodeResponse:
    """The full result of a code execution."""

    result: Any = None
    errors: list[JupyterOutput] | None = None
    stdouts: list[JupyterOutput] | None = None
    stderrs: list[JupyterOutput] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RunCodeResponse:
        return cls(
            result=data.get("result"),
            errors=_outputs(data.get("errors")),
            stdouts=_outputs(data.get("stdouts")),
            stderrs=_outputs(data.get("stderrs")),
        )


class CodeIDESandbox(Sandbox):
    """A sandbox created from the code IDE template."""

    @classmethod
    def create(
        cls, options: Options | None = None, transport: httpx.BaseTransport | None = None
    ) -> CodeIDESandbox:
        options = replace(
            options or Options(),
            template=TemplateType.CODEIDE,
            health_ports=[DEFAULT_CODEIDE_PORT],
        )
        return super().create(options, transport)

    def packages(self, lang: str) -> list[PackagesResponse]:
        """Return the packages installed for ``lang``."""
        data = check_response(
            self.proxy_request(DEFAULT_CODEIDE_PORT, "GET", f"/codeide/v1/packages/{lang}")
        )
        return [PackagesResponse.from_dict(item) for item in data or []]

    def run_code(
        self, lang: str, code: str, inputs: Mapping[str, Any] | None = None
    ) -> RunCodeResponse:
        """Execute ``code`` written in ``lang`` and return the full response."""
        data = check_response(
            self.proxy_request(
                DEFAULT_CODEIDE_PORT,
                "POST",
                "/codeide/v1/execute",
                json={
                    "lang": lang,
                    "code": code,
                    "inputs": None if inputs is None else dict(inputs),
                },
            )
        )
        return RunCodeResponse.from_dict(data or {})

    def run_code_v1(
        self, lang: str, code: str, inputs: Mapping[str, Any] | None = None
    ) -> RunCodeResponseV1:
        """Execute ``code`` and return its result and console output as strings.

        Raises RuntimeError carrying the JSON of the errors when there is no result.
        """
        response = self.run_code(lang, code, inputs)
        if response.result is None and response.errors is not None:
            raise RuntimeError(_outputs_json(response.errors))
        if isinstance(response.result, str):
            output = response.result
        else:
            output = _dumps(response.result)
        return RunCodeResponseV1(output=output, console=_outputs_json(response.stdouts))