"""Configure stage: normalize a crate description into a canonical build plan."""

from __future__ import annotations

import shlex
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from cratebuild.errors import ConfigurationError
from cratebuild.linker import LinkArg, dependency_tokens, link_args
from cratebuild.metadata import metadata_token
from cratebuild.models import (
    COLOR_MODES,
    CRATE_TYPES,
    BinTarget,
    BuildOptions,
    ColorMode,
    CrateDescriptor,
    CrateType,
    ResolvedDependency,
)
from cratebuild.platform import HostPlatform


@dataclass(frozen=True, slots=True)
class BuildPlan:
    """Fully resolved compiler configuration for one crate."""

    crate_name: str
    version: str
    lib_name: str
    lib_path: str | None
    crate_types: tuple[CrateType, ...]
    crate_bin: tuple[BinTarget, ...] | None
    metadata: str
    features: tuple[str, ...]
    edition: str | None
    extra_rustc_opts: tuple[str, ...]
    extra_link_flags: tuple[str, ...]
    link_args: tuple[LinkArg, ...]
    build_link_args: tuple[LinkArg, ...]
    release: bool
    verbose: bool
    colors: ColorMode
    cap_lints: str
    rustc: str
    target_os: str
    build_script: str | None
    workspace_member: str = "."
    authors: tuple[str, ...] = ()
    description: str = ""
    homepage: str = ""

    @property
    def feature_flags(self) -> tuple[str, ...]:
        return feature_flags(self.features)

    @property
    def rustc_opts(self) -> tuple[str, ...]:
        level = ("-C", "opt-level=3") if self.release else ("-C", "debuginfo=2")
        return (*level, *self.extra_rustc_opts)

    @property
    def metadata_flags(self) -> tuple[str, ...]:
        return ("-C", f"metadata={self.metadata}", "-C", f"extra-filename=-{self.metadata}")

    def extern_flags(self) -> tuple[str, ...]:
        return tuple(flag for arg in self.link_args for flag in arg.argv())


_OUTPUT_KIND = {
    "lib": "rlib",
    "rlib": "rlib",
    "dylib": "shared",
    "cdylib": "shared",
    "proc-macro": "shared",
}


def resolve_crate_types(descriptor: CrateDescriptor) -> tuple[CrateType, ...]:
    """Proc-macro beats plugin, which beats the declared type list."""
    if descriptor.proc_macro:
        return ("proc-macro",)
    if descriptor.plugin:
        return ("dylib",)
    if not descriptor.crate_type:
        return ("lib",)
    unknown = [kind for kind in descriptor.crate_type if kind not in CRATE_TYPES]
    if unknown:
        raise ConfigurationError(
            "Unsupported crate type.",
            hint=f"Use one of: {', '.join(sorted(CRATE_TYPES))}.",
            context={
                "crate": descriptor.crate_name,
                "version": descriptor.version,
                "stage": "configure",
                "crate_type": ", ".join(unknown),
            },
        )
    # Types that write the same file compile once; the first one declared wins.
    by_output: dict[str, CrateType] = {}
    for kind in descriptor.crate_type:
        by_output.setdefault(_OUTPUT_KIND.get(kind, kind), kind)
    return tuple(by_output.values())


def feature_flags(features: Iterable[str]) -> tuple[str, ...]:
    flags: list[str] = []
    for feature in sorted(set(features)):
        flags.extend(("--cfg", f'feature="{feature}"'))
    return tuple(flags)


def configure(
    descriptor: CrateDescriptor,
    dependencies: Sequence[ResolvedDependency],
    build_dependencies: Sequence[ResolvedDependency],
    options: BuildOptions,
    *,
    host: HostPlatform | None = None,
) -> BuildPlan:
    host = host or HostPlatform.current()
    crate_types = resolve_crate_types(descriptor)

    colors = descriptor.colors if descriptor.colors is not None else options.colors
    if colors not in COLOR_MODES:
        raise ConfigurationError(
            "Unsupported color mode.",
            hint="Use 'always', 'never' or 'auto'.",
            context={
                "crate": descriptor.crate_name,
                "version": descriptor.version,
                "stage": "configure",
                "colors": str(colors),
            },
        )

    features = tuple(sorted({*descriptor.features, *options.features}))
    renames = {**descriptor.crate_renames, **options.crate_renames}
    token = metadata_token(
        descriptor.crate_name,
        descriptor.version,
        features,
        dependency_tokens(dependencies, build_dependencies),
    )

    extra_rustc_opts = [*descriptor.extra_rustc_opts, *options.extra_rustc_opts]
    if descriptor.edition is not None:
        extra_rustc_opts.extend(("--edition", descriptor.edition))

    return BuildPlan(
        crate_name=descriptor.crate_name,
        version=descriptor.version,
        lib_name=descriptor.effective_lib_name,
        lib_path=descriptor.lib_path,
        crate_types=crate_types,
        crate_bin=descriptor.crate_bin,
        metadata=token,
        features=features,
        edition=descriptor.edition,
        extra_rustc_opts=tuple(extra_rustc_opts),
        extra_link_flags=tuple(
            arg for flag in descriptor.extra_link_flags for arg in shlex.split(flag)
        ),
        link_args=link_args(
            dependencies, renames, host=host, collisions=options.extern_collisions
        ),
        build_link_args=link_args(
            build_dependencies, renames, host=host, collisions=options.extern_collisions
        ),
        release=descriptor.release if descriptor.release is not None else options.release,
        verbose=descriptor.verbose if descriptor.verbose is not None else options.verbose,
        colors=colors,
        cap_lints=options.cap_lints,
        rustc=options.rustc,
        target_os=host.target_os,
        build_script=descriptor.build,
        workspace_member=descriptor.workspace_member,
        authors=descriptor.authors,
        description=descriptor.description,
        homepage=descriptor.homepage,
    )


def crate_root(source_dir: Path, plan: BuildPlan) -> Path:
    return source_dir / plan.workspace_member
