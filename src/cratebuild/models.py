"""Core typed dataclasses for crate descriptions, build options and artifacts."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from cratebuild.hooks import HookSet

CrateType = Literal["lib", "rlib", "dylib", "cdylib", "staticlib", "proc-macro"]
ColorMode = Literal["always", "never", "auto"]
CollisionPolicy = Literal["error", "warn"]

STATIC_CRATE_TYPES: frozenset[str] = frozenset({"lib", "rlib"})
CRATE_TYPES: frozenset[str] = frozenset(
    {"lib", "rlib", "dylib", "cdylib", "staticlib", "proc-macro"}
)
COLOR_MODES: frozenset[str] = frozenset({"always", "never", "auto"})


@dataclass(frozen=True, slots=True, order=True)
class CrateId:
    name: str
    version: str

    def __str__(self) -> str:
        return f"{self.name}-{self.version}"


@dataclass(frozen=True, slots=True)
class BinTarget:
    """A declared executable entry point; ``path`` is relative to the crate root."""

    name: str
    path: str | None = None


@dataclass(frozen=True, slots=True)
class CrateDescriptor:
    """Declarative description of one crate, immutable once constructed."""

    crate_name: str
    version: str
    src: Path | None = None
    sha256: str | None = None
    lib_name: str | None = None
    lib_path: str | None = None
    crate_bin: tuple[BinTarget, ...] | None = None
    crate_type: tuple[CrateType, ...] | None = None
    proc_macro: bool = False
    plugin: bool = False
    edition: str | None = None
    features: tuple[str, ...] = ()
    dependencies: tuple[CrateId, ...] = ()
    build_dependencies: tuple[CrateId, ...] = ()
    build: str | None = None
    workspace_member: str = "."
    extra_link_flags: tuple[str, ...] = ()
    extra_rustc_opts: tuple[str, ...] = ()
    crate_renames: Mapping[str, str] = field(default_factory=dict)
    patches: tuple[Path, ...] = ()
    hooks: HookSet | None = None
    authors: tuple[str, ...] = ()
    description: str = ""
    homepage: str = ""
    release: bool | None = None
    verbose: bool | None = None
    colors: ColorMode | None = None

    @property
    def crate_id(self) -> CrateId:
        return CrateId(self.crate_name, self.version)

    @property
    def derivation_name(self) -> str:
        return f"rust_{self.crate_name}-{self.version}"

    @property
    def effective_lib_name(self) -> str:
        return self.lib_name or self.crate_name


@dataclass(frozen=True, slots=True)
class BuildOptions:
    """Per-invocation build configuration shared by every crate in a graph."""

    release: bool = True
    verbose: bool = True
    colors: ColorMode = "always"
    features: tuple[str, ...] = ()
    extra_rustc_opts: tuple[str, ...] = ()
    crate_renames: Mapping[str, str] = field(default_factory=dict)
    rustc: str = "rustc"
    extern_collisions: CollisionPolicy = "error"
    cap_lints: str = "allow"


@dataclass(frozen=True, slots=True)
class Artifact:
    """Installed output of one crate build.

    ``root`` holds two partitions: ``out`` (runtime, binaries) and ``lib``
    (development, libraries and link metadata for dependents).
    """

    crate_name: str
    version: str
    lib_name: str
    crate_types: tuple[CrateType, ...]
    metadata: str
    root: Path
    libraries: tuple[str, ...] = ()
    binaries: tuple[str, ...] = ()

    @property
    def out(self) -> Path:
        return self.root / "out"

    @property
    def lib(self) -> Path:
        return self.root / "lib"

    def library_paths(self) -> tuple[Path, ...]:
        return tuple(self.lib / "lib" / name for name in self.libraries)

    def binary_paths(self) -> tuple[Path, ...]:
        return tuple(self.out / "bin" / name for name in self.binaries)


@dataclass(frozen=True, slots=True)
class ResolvedDependency:
    """A built crate as seen by its dependents."""

    artifact: Artifact
    complete_deps: tuple[ResolvedDependency, ...] = ()
    complete_build_deps: tuple[ResolvedDependency, ...] = ()

    @property
    def crate_name(self) -> str:
        return self.artifact.crate_name

    @property
    def version(self) -> str:
        return self.artifact.version

    @property
    def lib_name(self) -> str:
        return self.artifact.lib_name

    @property
    def crate_types(self) -> tuple[CrateType, ...]:
        return self.artifact.crate_types

    @property
    def metadata(self) -> str:
        return self.artifact.metadata

    @property
    def lib(self) -> Path:
        return self.artifact.lib
