"""Protocol and default implementation for running external build commands."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(frozen=True, slots=True)
class RunResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""


class CommandRunner(Protocol):
    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
        capture: bool = False,
    ) -> RunResult:
        """Run *argv* in *cwd*; stream output unless *capture* is set."""


@dataclass(slots=True)
class SubprocessRunner:
    """Runs commands on the host with the current environment as a base."""

    inherit_env: bool = True

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
        capture: bool = False,
    ) -> RunResult:
        merged = dict(os.environ) if self.inherit_env else {}
        merged.update(env or {})
        completed = subprocess.run(
            list(argv),
            cwd=str(cwd),
            env=merged,
            capture_output=capture,
            text=True,
            check=False,
        )
        return RunResult(
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
