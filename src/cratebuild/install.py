"""Install stage: publish build outputs into runtime and development partitions."""

from __future__ import annotations

import shutil
from pathlib import Path

from cratebuild.build import BuildOutputs
from cratebuild.errors import InstallError
from cratebuild.linker import LIB_OUTPUT_MARKER
from cratebuild.models import Artifact
from cratebuild.platform import SHARED_LIBRARY_EXTENSIONS

_SHARED_SUFFIXES = frozenset({".so", *SHARED_LIBRARY_EXTENSIONS.values()})


def install(
    artifact_name: str,
    metadata: str,
    build_outputs: BuildOutputs,
    destination_root: Path,
) -> Artifact:
    """Copy *build_outputs* into ``destination_root/{out,lib}`` and describe the result.

    Libraries land in the development partition (``lib/lib``) with their
    metadata-suffixed names plus an unsuffixed symlink for shared objects.
    Binaries land in the runtime partition (``out/bin``).
    """
    target = build_outputs.target_dir
    context = {
        "crate": build_outputs.crate_name,
        "version": build_outputs.version,
        "stage": "install",
        "artifact": artifact_name,
    }
    missing = [
        name for name in build_outputs.libraries if not (target / "lib" / name).is_file()
    ] + [name for name in build_outputs.binaries if not (target / "bin" / name).is_file()]
    if missing:
        raise InstallError(
            "Compiler reported success but expected outputs are missing.",
            hint="Check that the crate types and binary names match what rustc emits.",
            context={**context, "missing": ", ".join(missing)},
        )

    out_dir = destination_root / "out"
    lib_dir = destination_root / "lib"
    out_dir.mkdir(parents=True, exist_ok=True)
    lib_dir.mkdir(parents=True, exist_ok=True)
    installed_lib = lib_dir / "lib"

    if build_outputs.libraries:
        installed_lib.mkdir(parents=True, exist_ok=True)
        for item in sorted((target / "lib").iterdir()):
            if item.is_file():
                shutil.copy2(item, installed_lib / item.name)
        for name in build_outputs.libraries:
            path = installed_lib / name
            if path.suffix in _SHARED_SUFFIXES:
                unversioned = installed_lib / name.replace(f"-{metadata}", "")
                if not unversioned.exists():
                    unversioned.symlink_to(path.name)

    build_dir = target / "build"
    if build_dir.is_dir() and any(build_dir.iterdir()):
        shutil.copytree(build_dir, installed_lib, dirs_exist_ok=True)

    if build_outputs.link_flags:
        installed_lib.mkdir(parents=True, exist_ok=True)
        (installed_lib / "link").write_text(
            _final_link_flags(build_outputs.link_flags, build_dir),
            encoding="utf-8",
        )

    if build_outputs.exports:
        lines = [f"{key}={value}" for key, value in sorted(build_outputs.exports.items())]
        (lib_dir / "env").write_text("\n".join(lines) + "\n", encoding="utf-8")

    if build_outputs.binaries:
        bin_dir = out_dir / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        for name in build_outputs.binaries:
            shutil.copy2(target / "bin" / name, bin_dir / name)

    return Artifact(
        crate_name=build_outputs.crate_name,
        version=build_outputs.version,
        lib_name=build_outputs.lib_name,
        crate_types=build_outputs.crate_types,
        metadata=metadata,
        root=destination_root,
        libraries=build_outputs.libraries,
        binaries=build_outputs.binaries,
    )


def _final_link_flags(flags: tuple[str, ...], build_dir: Path) -> str:
    """Link flags for dependents; build-tree paths become `$lib`-relative."""
    build_prefix = str(build_dir.resolve())
    lines: list[str] = []
    index = 0
    while index < len(flags):
        flag = flags[index]
        if flag in ("-L", "-l") and index + 1 < len(flags):
            line = f"{flag} {flags[index + 1]}"
            index += 2
        else:
            line = flag
            index += 1
        line = line.replace(build_prefix, f"{LIB_OUTPUT_MARKER}/lib")
        if line not in lines:
            lines.append(line)
    return "\n".join(lines) + "\n"
