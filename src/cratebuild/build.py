"""Build stage: turn a build plan into rustc invocations and run them."""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from cratebuild.buildscript import BuildScriptOutput, links_env_prefix
from cratebuild.configure import BuildPlan
from cratebuild.errors import CompilerInvocationError, MissingEntryPointError
from cratebuild.linker import (
    complete_deps,
    dependency_link_flags,
    library_filename,
    normalize_crate_name,
    symlink_dependencies,
)
from cratebuild.models import BinTarget, ColorMode, CrateType, ResolvedDependency
from cratebuild.observability import StructuredLogger
from cratebuild.platform import HostPlatform
from cratebuild.runner import CommandRunner

CommandKind = Literal["lib", "bin"]

LIB_OUT_DIR = "target/lib"
BIN_OUT_DIR = "target/bin"
DEPS_DIR = "target/deps"


@dataclass(frozen=True, slots=True)
class CompilerCommand:
    kind: CommandKind
    name: str
    source: str
    crate_type: str
    argv: tuple[str, ...]
    output: str
    rename_to: str | None = None


@dataclass(frozen=True, slots=True)
class BuildInvocation:
    """Every compilation needed for one crate, in execution order."""

    crate_name: str
    version: str
    lib_name: str
    crate_types: tuple[CrateType, ...]
    metadata: str
    crate_root: Path
    commands: tuple[CompilerCommand, ...]
    verbose: bool
    env: Mapping[str, str] = field(default_factory=dict)
    propagated_link_flags: tuple[str, ...] = ()
    exports: Mapping[str, str] = field(default_factory=dict)

    @property
    def library_commands(self) -> tuple[CompilerCommand, ...]:
        return tuple(command for command in self.commands if command.kind == "lib")

    @property
    def binary_commands(self) -> tuple[CompilerCommand, ...]:
        return tuple(command for command in self.commands if command.kind == "bin")


@dataclass(frozen=True, slots=True)
class BuildOutputs:
    """Files a successful build is expected to have left under ``target/``."""

    crate_name: str
    version: str
    lib_name: str
    crate_types: tuple[CrateType, ...]
    metadata: str
    target_dir: Path
    libraries: tuple[str, ...] = ()
    binaries: tuple[str, ...] = ()
    link_flags: tuple[str, ...] = ()
    exports: Mapping[str, str] = field(default_factory=dict)


def output_filename(lib_name: str, metadata: str, crate_type: str, *, host: HostPlatform) -> str:
    if crate_type == "staticlib":
        return f"lib{normalize_crate_name(lib_name)}-{metadata}.a"
    return library_filename(lib_name, metadata, (crate_type,), host=host)


def find_lib_source(crate_root: Path, plan: BuildPlan) -> str | None:
    context = {"crate": plan.crate_name, "version": plan.version, "stage": "build"}
    if plan.lib_path:
        if not (crate_root / plan.lib_path).is_file():
            raise MissingEntryPointError(
                "Declared library path does not exist.",
                hint="Fix lib_path in the crate description or its overrides.",
                context={**context, "path": plan.lib_path},
            )
        return plan.lib_path
    for candidate in ("src/lib.rs", f"src/{plan.lib_name}.rs"):
        if (crate_root / candidate).is_file():
            return candidate
    return None


def find_bin_targets(crate_root: Path, plan: BuildPlan) -> tuple[BinTarget, ...]:
    """Resolve every binary to an existing source file, relative to *crate_root*."""
    if plan.crate_bin is None:
        found: list[BinTarget] = []
        if (crate_root / "src/main.rs").is_file():
            found.append(BinTarget(plan.crate_name, "src/main.rs"))
        bin_dir = crate_root / "src" / "bin"
        if bin_dir.is_dir():
            for source in sorted(bin_dir.glob("*.rs")):
                found.append(BinTarget(source.stem, f"src/bin/{source.name}"))
        return tuple(found)

    resolved: list[BinTarget] = []
    for target in plan.crate_bin:
        if target.path:
            candidates: tuple[str, ...] = (target.path,)
        else:
            stem = normalize_crate_name(target.name)
            candidates = (
                f"src/bin/{stem}.rs",
                f"src/bin/{stem}/main.rs",
                "src/bin/main.rs",
                "src/main.rs",
            )
        path = next((c for c in candidates if (crate_root / c).is_file()), None)
        if path is None:
            raise MissingEntryPointError(
                f"No source file found for binary `{target.name}`.",
                hint="Declare an explicit path for the binary or add the source file.",
                context={
                    "crate": plan.crate_name,
                    "version": plan.version,
                    "stage": "build",
                    "binary": target.name,
                    "searched": ", ".join(candidates),
                },
            )
        resolved.append(BinTarget(target.name, path))
    return tuple(resolved)


def plan_build(
    plan: BuildPlan,
    crate_root: Path,
    *,
    dependencies: Sequence[ResolvedDependency] = (),
    build_output: BuildScriptOutput | None = None,
    verbose: bool | None = None,
    colors: ColorMode | None = None,
    host: HostPlatform | None = None,
) -> BuildInvocation:
    host = host or HostPlatform.current()
    colors = colors or plan.colors
    script = build_output or BuildScriptOutput()
    dep_link_flags = dependency_link_flags(complete_deps(dependencies))
    link_flags = (*plan.extra_link_flags, *dep_link_flags)
    common = (
        "--emit=dep-info,link",
        "-L",
        f"dependency={DEPS_DIR}",
        *plan.extern_flags(),
        "--cap-lints",
        plan.cap_lints,
        *script.rustc_args(),
        *link_flags,
        "--color",
        colors,
    )

    lib_source = find_lib_source(crate_root, plan)
    bins = find_bin_targets(crate_root, plan)
    if lib_source is None and not bins:
        raise MissingEntryPointError(
            "Crate has neither a library nor a binary entry point.",
            hint="Add src/lib.rs or src/main.rs, or declare lib_path / crate_bin.",
            context={"crate": plan.crate_name, "version": plan.version, "stage": "build"},
        )

    commands: list[CompilerCommand] = []
    lib_crate_name = normalize_crate_name(plan.lib_name)
    self_extern: tuple[str, ...] = ()
    if lib_source is not None:
        for crate_type in plan.crate_types:
            output = output_filename(plan.lib_name, plan.metadata, crate_type, host=host)
            argv = (
                plan.rustc,
                "--crate-name",
                lib_crate_name,
                lib_source,
                "--crate-type",
                crate_type,
                *plan.rustc_opts,
                *plan.metadata_flags,
                *plan.feature_flags,
                "--out-dir",
                LIB_OUT_DIR,
                *common,
            )
            commands.append(
                CompilerCommand(
                    kind="lib",
                    name=lib_crate_name,
                    source=lib_source,
                    crate_type=crate_type,
                    argv=argv,
                    output=f"{LIB_OUT_DIR}/{output}",
                )
            )
        linkable = library_filename(plan.lib_name, plan.metadata, plan.crate_types, host=host)
        if "proc-macro" not in plan.crate_types:
            self_extern = ("--extern", f"{lib_crate_name}={LIB_OUT_DIR}/{linkable}")

    for target in bins:
        bin_name = normalize_crate_name(target.name)
        argv = (
            plan.rustc,
            "--crate-name",
            bin_name,
            str(target.path),
            "--crate-type",
            "bin",
            *plan.rustc_opts,
            *plan.feature_flags,
            "--out-dir",
            BIN_OUT_DIR,
            *self_extern,
            *common,
        )
        commands.append(
            CompilerCommand(
                kind="bin",
                name=bin_name,
                source=str(target.path),
                crate_type="bin",
                argv=argv,
                output=f"{BIN_OUT_DIR}/{bin_name}",
                rename_to=f"{BIN_OUT_DIR}/{target.name}" if bin_name != target.name else None,
            )
        )

    exports = {
        f"{links_env_prefix(plan.crate_name)}_{key.upper().replace('-', '_')}": value
        for key, value in script.metadata.items()
    }
    return BuildInvocation(
        crate_name=plan.crate_name,
        version=plan.version,
        lib_name=plan.lib_name,
        crate_types=plan.crate_types,
        metadata=plan.metadata,
        crate_root=crate_root,
        commands=tuple(commands),
        verbose=plan.verbose if verbose is None else verbose,
        env=dict(script.rustc_env),
        propagated_link_flags=(*link_flags, *script.link_flags()),
        exports=exports,
    )


def run_build(
    invocation: BuildInvocation,
    *,
    dependencies: Sequence[ResolvedDependency],
    runner: CommandRunner,
    logger: StructuredLogger,
) -> BuildOutputs:
    root = invocation.crate_root
    symlink_dependencies(complete_deps(dependencies), root / DEPS_DIR)
    (root / LIB_OUT_DIR).mkdir(parents=True, exist_ok=True)
    (root / BIN_OUT_DIR).mkdir(parents=True, exist_ok=True)

    for command in invocation.commands:
        logger.build_heading(
            crate=invocation.crate_name,
            version=invocation.version,
            source=command.source,
            name=command.name,
        )
        logger.noisily(
            crate=invocation.crate_name,
            version=invocation.version,
            stage="build",
            argv=command.argv,
            verbose=invocation.verbose,
        )
        result = runner.run(command.argv, cwd=root, env=invocation.env)
        if result.returncode != 0:
            raise CompilerInvocationError(
                f"rustc exited with status {result.returncode}.",
                hint="Compiler errors are deterministic; fix the inputs rather than retrying.",
                context={
                    "crate": invocation.crate_name,
                    "version": invocation.version,
                    "stage": "build",
                    "crate_type": command.crate_type,
                    "returncode": str(result.returncode),
                    "command": shlex.join(command.argv),
                },
            )
        if command.rename_to is not None and (root / command.output).exists():
            os.replace(root / command.output, root / command.rename_to)

    return BuildOutputs(
        crate_name=invocation.crate_name,
        version=invocation.version,
        lib_name=invocation.lib_name,
        crate_types=invocation.crate_types,
        metadata=invocation.metadata,
        target_dir=root / "target",
        libraries=tuple(
            Path(command.output).name for command in invocation.library_commands
        ),
        binaries=tuple(
            Path(command.rename_to or command.output).name
            for command in invocation.binary_commands
        ),
        link_flags=invocation.propagated_link_flags,
        exports=invocation.exports,
    )
