"""Build-script (``build.rs``) compilation, execution and output parsing."""

from __future__ import annotations

import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from cratebuild.configure import BuildPlan
from cratebuild.errors import BuildScriptError, CompilerInvocationError
from cratebuild.linker import complete_build_deps, dependency_env, symlink_dependencies
from cratebuild.models import ResolvedDependency
from cratebuild.observability import StructuredLogger
from cratebuild.platform import HostPlatform
from cratebuild.runner import CommandRunner

BUILD_SCRIPT_CRATE_NAME = "build_script_build"
_IGNORED_DIRECTIVES = ("rustc-", "warning", "rerun-if-changed", "rerun-if-env-changed")


@dataclass(frozen=True, slots=True)
class BuildScriptOutput:
    cfgs: tuple[str, ...] = ()
    rustc_flags: tuple[str, ...] = ()
    link_libs: tuple[str, ...] = ()
    link_search: tuple[str, ...] = ()
    rustc_env: Mapping[str, str] = field(default_factory=dict)
    metadata: Mapping[str, str] = field(default_factory=dict)

    def rustc_args(self) -> tuple[str, ...]:
        args: list[str] = []
        for flag in self.rustc_flags:
            args.extend(shlex.split(flag))
        for cfg in self.cfgs:
            args.extend(("--cfg", cfg))
        args.extend(self.link_flags())
        return tuple(args)

    def link_flags(self) -> tuple[str, ...]:
        flags: list[str] = []
        for path in self.link_search:
            flags.extend(("-L", path))
        for lib in self.link_libs:
            flags.extend(("-l", lib))
        return tuple(flags)


def parse_build_script_output(stdout: str) -> BuildScriptOutput:
    cfgs: list[str] = []
    rustc_flags: list[str] = []
    link_libs: list[str] = []
    link_search: list[str] = []
    rustc_env: dict[str, str] = {}
    metadata: dict[str, str] = {}
    for raw in stdout.splitlines():
        line = raw.strip()
        if not line.startswith("cargo:"):
            continue
        key, sep, value = line[len("cargo:") :].partition("=")
        if not sep:
            continue
        if key == "rustc-cfg":
            cfgs.append(value)
        elif key == "rustc-flags":
            if value not in rustc_flags:
                rustc_flags.append(value)
        elif key == "rustc-link-lib":
            link_libs.append(value)
        elif key == "rustc-link-search":
            if value not in link_search:
                link_search.append(value)
        elif key == "rustc-env":
            name, _, env_value = value.partition("=")
            rustc_env[name] = env_value
        elif not key.startswith(_IGNORED_DIRECTIVES):
            metadata[key] = value
    return BuildScriptOutput(
        cfgs=tuple(cfgs),
        rustc_flags=tuple(rustc_flags),
        link_libs=tuple(link_libs),
        link_search=tuple(link_search),
        rustc_env=rustc_env,
        metadata=metadata,
    )


def links_env_prefix(crate_name: str) -> str:
    """Prefix for ``DEP_<NAME>_<KEY>`` variables exported to dependents."""
    name = crate_name.removesuffix("-sys")
    return f"DEP_{name.upper().replace('-', '_')}"


def find_build_script(crate_root: Path, plan: BuildPlan) -> str | None:
    if plan.build_script:
        return plan.build_script
    if (crate_root / "build.rs").is_file():
        return "build.rs"
    return None


def build_script_env(
    plan: BuildPlan,
    crate_root: Path,
    *,
    out_dir: Path,
    host: HostPlatform,
    dependencies_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    core, _, pre = plan.version.partition("-")
    major, minor, patch = (core.split(".") + ["0", "0", "0"])[:3]
    env: dict[str, str] = {
        "CARGO_PKG_NAME": plan.crate_name,
        "CARGO_PKG_VERSION": plan.version,
        "CARGO_PKG_VERSION_MAJOR": major,
        "CARGO_PKG_VERSION_MINOR": minor,
        "CARGO_PKG_VERSION_PATCH": patch,
        "CARGO_PKG_VERSION_PRE": pre,
        "CARGO_PKG_AUTHORS": ":".join(plan.authors),
        "CARGO_PKG_DESCRIPTION": plan.description,
        "CARGO_PKG_HOMEPAGE": plan.homepage,
        "CARGO_MANIFEST_DIR": str(crate_root.resolve()),
        "CARGO_CFG_TARGET_OS": plan.target_os,
        "OUT_DIR": str(out_dir.resolve()),
        "TARGET": host.triple,
        "HOST": host.triple,
        "PROFILE": "release" if plan.release else "debug",
        "OPT_LEVEL": "3" if plan.release else "0",
        "DEBUG": "false" if plan.release else "true",
        "RUSTC": plan.rustc,
        "NUM_JOBS": "1",
    }
    for feature in plan.features:
        env[f"CARGO_FEATURE_{feature.upper().replace('-', '_')}"] = "1"
    env.update(dependencies_env or {})
    return env


def run_build_script(
    plan: BuildPlan,
    crate_root: Path,
    *,
    dependencies: Sequence[ResolvedDependency],
    build_dependencies: Sequence[ResolvedDependency],
    runner: CommandRunner,
    logger: StructuredLogger,
    host: HostPlatform,
) -> BuildScriptOutput | None:
    """Compile and run the crate's build script; ``None`` when it has none."""
    script = find_build_script(crate_root, plan)
    if script is None:
        return None

    context = {"crate": plan.crate_name, "version": plan.version, "stage": "configure"}
    symlink_dependencies(
        complete_build_deps(build_dependencies),
        crate_root / "target" / "buildDeps",
    )
    script_dir = Path("target") / "build" / plan.crate_name
    out_dir = crate_root / "target" / "build" / f"{plan.crate_name}.out"
    (crate_root / script_dir).mkdir(parents=True, exist_ok=True)
    out_dir.mkdir(parents=True, exist_ok=True)

    argv = (
        plan.rustc,
        "--crate-name",
        BUILD_SCRIPT_CRATE_NAME,
        script,
        "--crate-type",
        "bin",
        *plan.rustc_opts,
        *plan.feature_flags,
        "--out-dir",
        str(script_dir),
        "--emit=dep-info,link",
        "-L",
        "dependency=target/buildDeps",
        *(flag for arg in plan.build_link_args for flag in arg.argv()),
        "--cap-lints",
        plan.cap_lints,
        "--color",
        plan.colors,
    )
    logger.build_heading(
        crate=plan.crate_name, version=plan.version, source=script, name=plan.crate_name
    )
    logger.noisily(
        crate=plan.crate_name,
        version=plan.version,
        stage="configure",
        argv=argv,
        verbose=plan.verbose,
    )
    compiled = runner.run(argv, cwd=crate_root)
    if compiled.returncode != 0:
        raise CompilerInvocationError(
            "rustc failed to compile the build script.",
            hint="Inspect the compiler output above; retrying with the same inputs will fail again.",
            context={**context, "returncode": str(compiled.returncode), "command": shlex.join(argv)},
        )

    env = build_script_env(
        plan,
        crate_root,
        out_dir=out_dir,
        host=host,
        dependencies_env=dependency_env(dependencies),
    )
    executable = crate_root / script_dir / BUILD_SCRIPT_CRATE_NAME
    result = runner.run((str(executable),), cwd=crate_root, env=env, capture=True)
    if result.returncode != 0:
        raise BuildScriptError(
            "Build script exited with a non-zero status.",
            hint="Check the build script's stderr for the failing step.",
            context={
                **context,
                "returncode": str(result.returncode),
                "stderr": result.stderr[-2000:] if result.stderr else "",
            },
        )
    (crate_root / "target" / "build" / f"{plan.crate_name}.opt").write_text(
        result.stdout, encoding="utf-8"
    )
    output = parse_build_script_output(result.stdout)
    logger.log(
        operation="build_script",
        crate=plan.crate_name,
        version=plan.version,
        stage="configure",
        message="Build script completed.",
        extra={"cfgs": list(output.cfgs), "link_libs": list(output.link_libs)},
    )
    return output
