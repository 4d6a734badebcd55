"""Extern linkage arguments and dependency closures."""

from __future__ import annotations

import shlex
import warnings
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from cratebuild.errors import ExternCollisionError, ExternCollisionWarning
from cratebuild.models import STATIC_CRATE_TYPES, CollisionPolicy, ResolvedDependency
from cratebuild.platform import STATIC_LIBRARY_EXTENSION, HostPlatform

_LINKABLE_SUFFIXES = frozenset({".rlib", ".so", ".dylib", ".dll", ".a"})
# Placeholder for a dependency's development root inside its `lib/link` file.
LIB_OUTPUT_MARKER = "$lib"


@dataclass(frozen=True, slots=True)
class LinkArg:
    name: str
    path: Path

    def argv(self) -> tuple[str, str]:
        return ("--extern", f"{self.name}={self.path}")


def normalize_crate_name(name: str) -> str:
    return name.replace("-", "_")


def extern_name(dependency: ResolvedDependency, renames: Mapping[str, str]) -> str:
    """Return the symbol the importing crate uses for *dependency*."""
    renamed = renames.get(dependency.crate_name)
    if renamed is not None:
        return normalize_crate_name(renamed)
    return normalize_crate_name(dependency.lib_name)


def library_filename(
    lib_name: str,
    metadata: str,
    crate_types: Iterable[str],
    *,
    host: HostPlatform,
) -> str:
    stem = f"lib{normalize_crate_name(lib_name)}-{metadata}"
    if STATIC_CRATE_TYPES.intersection(crate_types):
        return stem + STATIC_LIBRARY_EXTENSION
    return stem + host.shared_library_extension


def link_args(
    dependencies: Sequence[ResolvedDependency],
    renames: Mapping[str, str],
    *,
    host: HostPlatform | None = None,
    collisions: CollisionPolicy = "error",
) -> tuple[LinkArg, ...]:
    host = host or HostPlatform.current()
    args: list[LinkArg] = []
    for dependency in dependencies:
        filename = library_filename(
            dependency.lib_name,
            dependency.metadata,
            dependency.crate_types,
            host=host,
        )
        arg = LinkArg(
            name=extern_name(dependency, renames),
            path=dependency.lib / "lib" / filename,
        )
        if arg not in args:
            args.append(arg)

    conflicts = find_extern_collisions(args)
    if conflicts:
        names = ", ".join(sorted(conflicts))
        if collisions == "error":
            raise ExternCollisionError(
                "Several dependencies resolve to the same extern name.",
                hint="Adjust crate_renames so every dependency has a distinct name.",
                context={
                    "operation": "link_args",
                    "names": names,
                    "paths": "; ".join(
                        f"{name}: {', '.join(str(p) for p in paths)}"
                        for name, paths in sorted(conflicts.items())
                    ),
                },
            )
        warnings.warn(
            f"Extern names bound to more than one artifact: {names}",
            ExternCollisionWarning,
            stacklevel=2,
        )
    return tuple(args)


def find_extern_collisions(args: Iterable[LinkArg]) -> dict[str, tuple[Path, ...]]:
    """Return every extern name mapped to more than one distinct artifact path."""
    paths_by_name: dict[str, list[Path]] = {}
    for arg in args:
        paths = paths_by_name.setdefault(arg.name, [])
        if arg.path not in paths:
            paths.append(arg.path)
    return {name: tuple(paths) for name, paths in paths_by_name.items() if len(paths) > 1}


def complete_deps(dependencies: Sequence[ResolvedDependency]) -> tuple[ResolvedDependency, ...]:
    """Direct dependencies followed by their runtime closures, without duplicates."""
    closure = list(dependencies)
    for dependency in dependencies:
        closure.extend(dependency.complete_deps)
    return _unique(closure)


def complete_build_deps(
    build_dependencies: Sequence[ResolvedDependency],
) -> tuple[ResolvedDependency, ...]:
    closure = list(build_dependencies)
    for dependency in build_dependencies:
        closure.extend(dependency.complete_build_deps)
        closure.extend(dependency.complete_deps)
    return _unique(closure)


def dependency_tokens(
    dependencies: Sequence[ResolvedDependency],
    build_dependencies: Sequence[ResolvedDependency],
) -> tuple[str, ...]:
    """Metadata tokens of both closures, each closure ordered by crate name, each listed once."""
    tokens: list[str] = []
    for closure in (complete_deps(dependencies), complete_build_deps(build_dependencies)):
        for dependency in sorted(closure, key=lambda dep: (dep.crate_name, dep.version)):
            if dependency.metadata not in tokens:
                tokens.append(dependency.metadata)
    return tuple(tokens)


def _unique(items: Iterable[ResolvedDependency]) -> tuple[ResolvedDependency, ...]:
    seen: set[tuple[str, str, str]] = set()
    unique: list[ResolvedDependency] = []
    for item in items:
        key = (item.crate_name, item.version, item.metadata)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return tuple(unique)


def symlink_dependencies(
    dependencies: Iterable[ResolvedDependency],
    destination: Path,
) -> Path:
    """Expose every dependency library under *destination* for ``-L dependency=``."""
    destination.mkdir(parents=True, exist_ok=True)
    for dependency in dependencies:
        lib_dir = dependency.lib / "lib"
        if not lib_dir.is_dir():
            continue
        for item in sorted(lib_dir.iterdir()):
            if not item.name.startswith("lib") or item.suffix not in _LINKABLE_SUFFIXES:
                continue
            link = destination / item.name
            if link.exists() or link.is_symlink():
                continue
            link.symlink_to(item)
    return destination


def dependency_link_flags(dependencies: Iterable[ResolvedDependency]) -> tuple[str, ...]:
    """Native link flags that dependencies recorded in their ``lib/link`` files."""
    flags: list[str] = []
    for dependency in dependencies:
        link_file = dependency.lib / "lib" / "link"
        if not link_file.is_file():
            continue
        for line in link_file.read_text(encoding="utf-8").splitlines():
            flags.extend(shlex.split(line.replace(LIB_OUTPUT_MARKER, str(dependency.lib))))
    return tuple(flags)


def dependency_env(dependencies: Iterable[ResolvedDependency]) -> dict[str, str]:
    """``DEP_*`` variables exported by dependency build scripts."""
    env: dict[str, str] = {}
    for dependency in dependencies:
        env_file = dependency.lib / "env"
        if not env_file.is_file():
            continue
        for line in env_file.read_text(encoding="utf-8").splitlines():
            key, sep, value = line.partition("=")
            if sep:
                env[key.strip()] = value
    return env
