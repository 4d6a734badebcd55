"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from cratebuild.buildscript import BUILD_SCRIPT_CRATE_NAME
from cratebuild.models import Artifact, ResolvedDependency
from cratebuild.platform import HostPlatform
from cratebuild.runner import RunResult


@dataclass
class FakeRunner:
    """Stands in for rustc: writes the files a successful compile would leave behind."""

    script_stdout: str = ""
    script_returncode: int = 0
    # crate names whose rustc compile fails
    failing: set[str] = field(default_factory=set)
    failing_programs: set[str] = field(default_factory=set)
    calls: list[tuple[tuple[str, ...], Path, dict[str, str]]] = field(default_factory=list)

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
        capture: bool = False,
    ) -> RunResult:
        argv = tuple(argv)
        self.calls.append((argv, cwd, dict(env or {})))
        program = Path(argv[0]).name
        if program in self.failing_programs:
            return RunResult(returncode=1, stderr=f"{program} failed")
        if program == BUILD_SCRIPT_CRATE_NAME:
            return RunResult(
                returncode=self.script_returncode,
                stdout=self.script_stdout,
                stderr="panicked" if self.script_returncode else "",
            )
        if program == "rustc":
            if _flag(argv, "--crate-name") in self.failing:
                return RunResult(returncode=101, stderr="error: aborting")
            _emit(argv, cwd)
        return RunResult(returncode=0)

    def rustc_calls(self) -> list[tuple[str, ...]]:
        return [argv for argv, _, _ in self.calls if Path(argv[0]).name == "rustc"]


def _flag(argv: tuple[str, ...], name: str) -> str:
    return argv[argv.index(name) + 1]


def _emit(argv: tuple[str, ...], cwd: Path) -> None:
    out_dir = cwd / _flag(argv, "--out-dir")
    out_dir.mkdir(parents=True, exist_ok=True)
    name = _flag(argv, "--crate-name")
    crate_type = _flag(argv, "--crate-type")
    extra = ""
    for index, arg in enumerate(argv[:-1]):
        if arg == "-C" and argv[index + 1].startswith("extra-filename="):
            extra = argv[index + 1].split("=", 1)[1]
    if crate_type == "bin":
        path = out_dir / name
        path.write_text("#!/bin/sh\n", encoding="utf-8")
        path.chmod(0o755)
        return
    if crate_type in ("lib", "rlib"):
        suffix = ".rlib"
    elif crate_type == "staticlib":
        suffix = ".a"
    else:
        suffix = ".so"
    (out_dir / f"lib{name}{extra}{suffix}").write_bytes(f"{name}:{crate_type}".encode())


def write_crate(root: Path, files: Mapping[str, str]) -> Path:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def resolved(
    root: Path,
    name: str,
    *,
    version: str = "1.0.0",
    lib_name: str | None = None,
    crate_types: tuple[str, ...] = ("lib",),
    metadata: str = "0123456789",
    complete_deps: tuple[ResolvedDependency, ...] = (),
) -> ResolvedDependency:
    artifact = Artifact(
        crate_name=name,
        version=version,
        lib_name=lib_name or name,
        crate_types=crate_types,  # type: ignore[arg-type]
        metadata=metadata,
        root=root,
    )
    return ResolvedDependency(artifact=artifact, complete_deps=complete_deps)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def linux_host() -> HostPlatform:
    return HostPlatform(kernel="linux", machine="x86_64")
