"""A sandbox running a desktop environment."""

from __future__ import annotations

from dataclasses import replace

import httpx

from .options import Options, TemplateType
from .sandbox import Sandbox


class DesktopSandbox(Sandbox):
    """A sandbox created from the desktop template."""

    @classmethod
    def create(
        cls, options: Options | None = None, transport: httpx.BaseTransport | None = None
    ) -> DesktopSandbox:
        options = replace(options or Options(), template=TemplateType.DESKTOP)
        return super().create(options, transport)