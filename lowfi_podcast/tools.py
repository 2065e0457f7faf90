from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .config import ToolsConfig
from .errors import ToolNotFoundError


logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    returncode: Optional[int]
    output: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def run_tool(cmd: Sequence[str], timeout: float, cwd: Optional[str] = None) -> ToolResult:
    """Run an external command with a timeout, capturing stdout and stderr together.

    Never raises for tool failures: a missing executable, a non-zero exit and a
    timeout all come back as a failed ToolResult.
    """
    try:
        proc = subprocess.run(
            list(cmd),
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            # Tools may print arbitrary bytes (titles, locale output)
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        out = e.output if isinstance(e.output, str) else (e.output or b"").decode("utf-8", "replace")
        logger.warning("Tool timed out", extra={"cmd": cmd[0], "timeout": timeout})
        return ToolResult(returncode=None, output=out, timed_out=True)
    except OSError as e:
        logger.error("Tool could not be started", extra={"cmd": cmd[0], "error": str(e)})
        return ToolResult(returncode=None, output=str(e))
    return ToolResult(returncode=proc.returncode, output=proc.stdout or "")


def resolve_executable(name: str) -> str:
    """Locate an executable on PATH, falling back to the current directory."""
    found = shutil.which(name)
    if found:
        return name
    local = os.path.join(os.curdir, name)
    if os.path.isfile(local) and os.access(local, os.X_OK):
        logger.warning("Executable found in current directory", extra={"tool": name})
        return local
    raise ToolNotFoundError(f"{name} executable not found")


def resolve_tools(tools: ToolsConfig) -> ToolsConfig:
    """Return a copy of the tool configuration with every executable resolved."""
    resolved: List[str] = [resolve_executable(n) for n in (tools.downloader, tools.converter, tools.probe)]
    return ToolsConfig(
        downloader=resolved[0],
        converter=resolved[1],
        probe=resolved[2],
        probe_timeout=tools.probe_timeout,
        download_timeout=tools.download_timeout,
        transcode_timeout=tools.transcode_timeout,
    )
