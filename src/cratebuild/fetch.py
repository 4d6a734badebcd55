"""Integrity-checked crate download, source unpacking and patching."""

from __future__ import annotations

import hashlib
import os
import shutil
import tarfile
from collections.abc import Sequence
from pathlib import Path
from urllib.error import URLError
from urllib.request import urlopen

from cratebuild.errors import ConfigurationError, FetchError, ReproducibilityError
from cratebuild.models import CrateDescriptor
from cratebuild.runner import CommandRunner

CRATES_IO_DOWNLOAD = "https://crates.io/api/v1/crates/{name}/{version}/download"
_ARCHIVE_SUFFIXES = (".crate", ".tar.gz", ".tgz", ".tar")


def fetch_crate(
    name: str,
    version: str,
    *,
    sha256: str,
    cache_dir: str | Path,
    url_template: str = CRATES_IO_DOWNLOAD,
) -> Path:
    """Download a published crate and return a content-addressed cached path."""
    if not sha256:
        raise ConfigurationError(
            "fetch_crate() requires a sha256 value.",
            hint="Pin the crate checksum from the lockfile.",
            context={"crate": name, "version": version, "operation": "fetch"},
        )
    cache_path = Path(cache_dir)
    cache_path.mkdir(parents=True, exist_ok=True)
    artifact_path = cache_path / f"{sha256}-{name}-{version}.crate"

    if artifact_path.exists():
        _assert_hash_matches(artifact_path, expected_sha256=sha256)
        return artifact_path

    url = url_template.format(name=name, version=version)
    try:
        with urlopen(url) as response:  # noqa: S310 - integrity check is mandatory below
            payload = response.read()
    except URLError as exc:
        raise FetchError(
            "Crate download failed.",
            hint="Check network access or provide a local `src` for the crate.",
            context={"crate": name, "version": version, "operation": "fetch", "url": url},
        ) from exc

    actual_sha256 = hashlib.sha256(payload).hexdigest()
    if actual_sha256 != sha256:
        raise ReproducibilityError(
            "Fetched crate hash mismatch.",
            hint="Update the expected hash or source URL to a trusted immutable artifact.",
            context={
                "crate": name,
                "version": version,
                "operation": "fetch",
                "url": url,
                "expected": sha256,
                "actual": actual_sha256,
            },
        )

    temp_path = artifact_path.with_suffix(".tmp")
    temp_path.write_bytes(payload)
    os.replace(temp_path, artifact_path)
    return artifact_path


def resolve_source(descriptor: CrateDescriptor, *, cache_dir: str | Path) -> Path:
    if descriptor.src is not None:
        return descriptor.src
    if descriptor.sha256:
        return fetch_crate(
            descriptor.crate_name,
            descriptor.version,
            sha256=descriptor.sha256,
            cache_dir=cache_dir,
        )
    raise ConfigurationError(
        "Crate has neither a local source nor a checksum to fetch it with.",
        hint="Set `src` or `sha256` on the crate description.",
        context={"crate": descriptor.crate_name, "version": descriptor.version, "stage": "unpack"},
    )


def unpack_source(source: Path, destination: Path) -> Path:
    """Copy or extract *source* into *destination* and return the crate root."""
    if source.is_dir():
        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
        return destination
    if not source.is_file() or not source.name.endswith(_ARCHIVE_SUFFIXES):
        raise ConfigurationError(
            "Crate source is neither a directory nor a crate archive.",
            hint="Point `src` at an unpacked crate directory or a .crate/.tar.gz file.",
            context={"stage": "unpack", "path": str(source)},
        )
    destination.mkdir(parents=True, exist_ok=True)
    with tarfile.open(source) as archive:
        archive.extractall(destination, filter="data")
    entries = [entry for entry in destination.iterdir() if not entry.name.startswith(".")]
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return destination


def apply_patches(
    patches: Sequence[Path],
    source_dir: Path,
    *,
    runner: CommandRunner,
) -> None:
    for patch in patches:
        result = runner.run(
            ("patch", "-p1", "--batch", "-i", str(Path(patch).resolve())),
            cwd=source_dir,
            capture=True,
        )
        if result.returncode != 0:
            raise ConfigurationError(
                "Patch did not apply cleanly.",
                hint="Rebase the patch onto this crate version.",
                context={
                    "stage": "patch",
                    "patch": str(patch),
                    "stderr": result.stderr[-2000:] if result.stderr else "",
                },
            )


def _assert_hash_matches(path: Path, *, expected_sha256: str) -> None:
    actual_sha256 = hashlib.sha256(path.read_bytes()).hexdigest()
    if actual_sha256 != expected_sha256:
        raise ReproducibilityError(
            "Cached crate hash mismatch.",
            hint="Clear cache and refetch with trusted inputs.",
            context={
                "operation": "fetch",
                "path": str(path),
                "expected": expected_sha256,
                "actual": actual_sha256,
            },
        )
