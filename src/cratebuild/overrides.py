"""Per-crate override tables merged over base crate descriptors."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

from cratebuild.errors import ConfigurationError
from cratebuild.models import BinTarget, CrateDescriptor, CrateId

OverrideEntry = Mapping[str, Any] | Callable[[CrateDescriptor], Mapping[str, Any]]
OverrideTable = Mapping[str, OverrideEntry]

_FIELD_NAMES = frozenset(f.name for f in fields(CrateDescriptor))
_STRING_TUPLE_FIELDS = frozenset(
    {"features", "extra_link_flags", "extra_rustc_opts", "authors", "crate_type"}
)


def merge(descriptor: CrateDescriptor, table: OverrideTable) -> CrateDescriptor:
    """Apply ``table[crate_name]`` over *descriptor*; the override wins field by field."""
    entry = table.get(descriptor.crate_name)
    if entry is None:
        return descriptor
    changes = entry(descriptor) if callable(entry) else entry
    if not changes:
        return descriptor
    unknown = sorted(set(changes) - _FIELD_NAMES)
    if unknown:
        raise ConfigurationError(
            "Override names fields that crate descriptors do not have.",
            hint="Check the field names in the override table.",
            context={
                "crate": descriptor.crate_name,
                "version": descriptor.version,
                "fields": ", ".join(unknown),
            },
        )
    return replace(descriptor, **{key: _coerce(key, value) for key, value in changes.items()})


def apply_overrides(
    descriptor: CrateDescriptor,
    tables: Sequence[OverrideTable],
) -> CrateDescriptor:
    """Apply override tables left to right; later tables win."""
    for table in tables:
        descriptor = merge(descriptor, table)
    return descriptor


def _coerce(key: str, value: Any) -> Any:
    if key in _STRING_TUPLE_FIELDS and isinstance(value, list | tuple):
        return tuple(value)
    if key == "patches" and isinstance(value, list | tuple):
        return tuple(Path(item) for item in value)
    if key == "src" and isinstance(value, str):
        return Path(value)
    if key in ("dependencies", "build_dependencies") and isinstance(value, list | tuple):
        return tuple(item if isinstance(item, CrateId) else CrateId(*item) for item in value)
    if key == "crate_bin" and isinstance(value, list | tuple):
        return tuple(
            item if isinstance(item, BinTarget) else BinTarget(**item) for item in value
        )
    return value
