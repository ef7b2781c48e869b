"""Shared CLI testing utilities."""

from __future__ import annotations

import re
from typing import Any

_ANSI_RE = re.compile(r"\x1B\[[0-9;?]*[ -/]*[@-~]")


def cli_text(result: Any) -> str:
    """Return CLI output with rich's ANSI styling removed."""

    return _ANSI_RE.sub("", result.output)


__all__ = ["cli_text"]
