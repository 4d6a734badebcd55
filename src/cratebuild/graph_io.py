"""Resolved crate graph parser.

The graph file is the hand-off point from a resolver: every crate with a
concrete version, its enabled features and its dependency edges, plus the
build options and data-only overrides for the whole invocation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cratebuild.errors import ConfigurationError
from cratebuild.models import COLOR_MODES, BinTarget, BuildOptions, CrateDescriptor, CrateId
from cratebuild.overrides import OverrideTable
from cratebuild.pipeline import CrateGraph, graph_from

_CRATE_KEYS = frozenset(
    {
        "crate_name",
        "version",
        "src",
        "sha256",
        "lib_name",
        "lib_path",
        "crate_bin",
        "crate_type",
        "proc_macro",
        "plugin",
        "edition",
        "features",
        "dependencies",
        "build_dependencies",
        "build",
        "workspace_member",
        "extra_link_flags",
        "extra_rustc_opts",
        "crate_renames",
        "patches",
        "authors",
        "description",
        "homepage",
        "release",
        "verbose",
        "colors",
    }
)


@dataclass(frozen=True, slots=True)
class GraphInput:
    graph: CrateGraph
    options: BuildOptions = field(default_factory=BuildOptions)
    overrides: OverrideTable = field(default_factory=dict)
    roots: tuple[CrateId, ...] | None = None


def parse_crate_graph(raw: str, *, base_dir: Path | None = None) -> GraphInput:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError("Invalid crate graph JSON.", hint=str(exc)) from exc
    if not isinstance(payload, dict):
        raise ConfigurationError("Invalid crate graph payload type.")

    base = base_dir or Path.cwd()
    crates_raw = payload.get("crates")
    if not isinstance(crates_raw, list):
        raise ConfigurationError("Invalid crate graph `crates` value.")
    graph = graph_from(_parse_crate(item, base_dir=base) for item in crates_raw)

    roots_raw = payload.get("roots")
    roots = None
    if roots_raw is not None:
        if not isinstance(roots_raw, list):
            raise ConfigurationError("Invalid crate graph `roots` value.")
        roots = tuple(_parse_crate_id(item) for item in roots_raw)

    return GraphInput(
        graph=graph,
        options=_parse_options(payload.get("options", {})),
        overrides=_parse_overrides(payload.get("overrides", {})),
        roots=roots,
    )


def read_crate_graph(path: str | Path) -> GraphInput:
    graph_path = Path(path)
    try:
        raw = graph_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigurationError(
            "Crate graph file does not exist.",
            hint="Generate the resolved graph before building.",
            context={"path": str(graph_path)},
        ) from exc
    return parse_crate_graph(raw, base_dir=graph_path.parent)


def _parse_crate(item: Any, *, base_dir: Path) -> CrateDescriptor:
    if not isinstance(item, dict):
        raise ConfigurationError("Invalid crate entry in graph.")
    unknown = sorted(set(item) - _CRATE_KEYS)
    if unknown:
        raise ConfigurationError(
            "Crate entry has unknown keys.",
            context={"crate": str(item.get("crate_name", "")), "keys": ", ".join(unknown)},
        )
    src = _optional_str(item, "src")
    crate_bin_raw = item.get("crate_bin")
    crate_bin = None
    if crate_bin_raw is not None:
        if not isinstance(crate_bin_raw, list):
            raise ConfigurationError("Invalid crate `crate_bin` value.")
        crate_bin = tuple(_parse_bin(entry) for entry in crate_bin_raw)
    crate_type = item.get("crate_type")
    colors = _optional_str(item, "colors")
    if colors is not None and colors not in COLOR_MODES:
        raise ConfigurationError("Invalid crate `colors` value.", context={"colors": colors})
    return CrateDescriptor(
        crate_name=_required_str(item, "crate_name"),
        version=_required_str(item, "version"),
        src=(base_dir / src) if src is not None else None,
        sha256=_optional_str(item, "sha256"),
        lib_name=_optional_str(item, "lib_name"),
        lib_path=_optional_str(item, "lib_path"),
        crate_bin=crate_bin,
        crate_type=tuple(_str_list(item, "crate_type")) if crate_type is not None else None,
        proc_macro=_bool(item, "proc_macro", default=False),
        plugin=_bool(item, "plugin", default=False),
        edition=_optional_str(item, "edition"),
        features=tuple(_str_list(item, "features")),
        dependencies=tuple(_parse_crate_id(dep) for dep in item.get("dependencies", [])),
        build_dependencies=tuple(
            _parse_crate_id(dep) for dep in item.get("build_dependencies", [])
        ),
        build=_optional_str(item, "build"),
        workspace_member=_optional_str(item, "workspace_member") or ".",
        extra_link_flags=tuple(_str_list(item, "extra_link_flags")),
        extra_rustc_opts=tuple(_str_list(item, "extra_rustc_opts")),
        crate_renames=_str_dict(item, "crate_renames"),
        patches=tuple(base_dir / patch for patch in _str_list(item, "patches")),
        authors=tuple(_str_list(item, "authors")),
        description=_optional_str(item, "description") or "",
        homepage=_optional_str(item, "homepage") or "",
        release=_optional_bool(item, "release"),
        verbose=_optional_bool(item, "verbose"),
        colors=colors,  # type: ignore[arg-type]
    )


def _parse_bin(item: Any) -> BinTarget:
    if isinstance(item, str):
        return BinTarget(name=item)
    if not isinstance(item, dict):
        raise ConfigurationError("Invalid binary entry in crate graph.")
    return BinTarget(name=_required_str(item, "name"), path=_optional_str(item, "path"))


def _parse_crate_id(item: Any) -> CrateId:
    if not isinstance(item, dict):
        raise ConfigurationError("Invalid crate reference in graph.")
    return CrateId(name=_required_str(item, "name"), version=_required_str(item, "version"))


def _parse_options(raw: Any) -> BuildOptions:
    if not isinstance(raw, dict):
        raise ConfigurationError("Invalid crate graph `options` value.")
    defaults = BuildOptions()
    colors = _optional_str(raw, "colors") or defaults.colors
    if colors not in COLOR_MODES:
        raise ConfigurationError("Invalid `options.colors` value.", context={"colors": colors})
    collisions = _optional_str(raw, "extern_collisions") or defaults.extern_collisions
    if collisions not in ("error", "warn"):
        raise ConfigurationError(
            "Invalid `options.extern_collisions` value.",
            context={"extern_collisions": collisions},
        )
    return BuildOptions(
        release=_bool(raw, "release", default=defaults.release),
        verbose=_bool(raw, "verbose", default=defaults.verbose),
        colors=colors,  # type: ignore[arg-type]
        features=tuple(_str_list(raw, "features")),
        extra_rustc_opts=tuple(_str_list(raw, "extra_rustc_opts")),
        crate_renames=_str_dict(raw, "crate_renames"),
        rustc=_optional_str(raw, "rustc") or defaults.rustc,
        extern_collisions=collisions,  # type: ignore[arg-type]
        cap_lints=_optional_str(raw, "cap_lints") or defaults.cap_lints,
    )


def _parse_overrides(raw: Any) -> OverrideTable:
    if not isinstance(raw, dict):
        raise ConfigurationError("Invalid crate graph `overrides` value.")
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(
                "Invalid override entry in crate graph.", context={"crate": str(name)}
            )
    return raw


def _required_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"Invalid crate graph `{key}` value.")
    return value


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"Invalid crate graph `{key}` value.")
    return value


def _bool(payload: dict[str, Any], key: str, *, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"Invalid crate graph `{key}` value.")
    return value


def _optional_bool(payload: dict[str, Any], key: str) -> bool | None:
    if payload.get(key) is None:
        return None
    return _bool(payload, key, default=False)


def _str_list(payload: dict[str, Any], key: str) -> list[str]:
    value = payload.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigurationError(f"Invalid crate graph `{key}` value.")
    return list(value)


def _str_dict(payload: dict[str, Any], key: str) -> dict[str, str]:
    value = payload.get(key, {})
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise ConfigurationError(f"Invalid crate graph `{key}` value.")
    return dict(value)
