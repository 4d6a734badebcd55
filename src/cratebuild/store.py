"""Content-addressed artifact store with manifest verification and atomic publish."""

from __future__ import annotations

import hashlib
import json
import os
import shutil
import uuid
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from cratebuild.errors import ReproducibilityError
from cratebuild.models import Artifact


@dataclass(frozen=True, slots=True)
class StoreInputs:
    """Everything that can change the bytes of a crate's build outputs."""

    crate_name: str
    version: str
    metadata: str
    crate_types: tuple[str, ...]
    features: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    build_dependencies: tuple[str, ...] = ()
    rustc_opts: tuple[str, ...] = ()
    link_flags: tuple[str, ...] = ()
    target_os: str = "linux"
    lib_name: str = ""
    lib_path: str | None = None
    crate_bin: tuple[str, ...] | None = None
    build_script: str | None = None
    workspace_member: str = "."
    edition: str | None = None
    externs: tuple[str, ...] = ()
    rustc: str = "rustc"
    source: str = ""
    patches: tuple[str, ...] = ()


def digest_path(path: Path) -> str:
    """sha256 of a file, or of the per-file digests of a directory tree."""
    if path.is_dir():
        canonical = json.dumps(_digest_tree(path, skip_manifest=False), sort_keys=True)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return hashlib.sha256(path.read_bytes()).hexdigest()


def store_key(inputs: StoreInputs) -> str:
    canonical = json.dumps(_to_payload(inputs), sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{digest[:32]}-rust_{inputs.crate_name}-{inputs.version}"


class ArtifactStore:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def staging_dir(self, inputs: StoreInputs) -> Path:
        """Fresh private directory to install into before :meth:`publish`."""
        path = self.root / f".staging-{store_key(inputs)}-{uuid.uuid4().hex[:8]}"
        path.mkdir(parents=True)
        return path

    def load(self, *, inputs: StoreInputs) -> Artifact | None:
        key = store_key(inputs)
        entry = self.root / key
        manifest_path = entry / "manifest.json"
        if not manifest_path.exists():
            return None

        manifest = self._read_manifest(manifest_path)
        if manifest.get("inputs") != _to_payload(inputs):
            raise ReproducibilityError(
                "Store manifest inputs do not match expected build inputs.",
                hint="Invalidate the store entry and rebuild.",
                context={"operation": "store_load", "key": key},
            )
        if manifest.get("key") != key:
            raise ReproducibilityError(
                "Store manifest key mismatch.",
                hint="Invalidate the store entry and rebuild.",
                context={"operation": "store_load", "key": key},
            )
        if manifest.get("files") != _digest_tree(entry):
            raise ReproducibilityError(
                "Store entry contents do not match the recorded digests.",
                hint="Invalidate the store entry and rebuild.",
                context={"operation": "store_load", "key": key},
            )
        return _artifact_from_payload(manifest.get("artifact"), root=entry, key=key)

    def publish(self, *, inputs: StoreInputs, staging: Path, artifact: Artifact) -> Artifact:
        """Atomically move a fully installed *staging* tree to its final key."""
        key = store_key(inputs)
        entry = self.root / key
        manifest = {
            "key": key,
            "inputs": _to_payload(inputs),
            "artifact": _artifact_payload(artifact),
            "files": _digest_tree(staging),
        }
        (staging / "manifest.json").write_text(
            json.dumps(manifest, indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        if entry.exists():
            shutil.rmtree(staging)
        else:
            os.replace(staging, entry)
        return replace(artifact, root=entry)

    def _read_manifest(self, path: Path) -> dict[str, object]:
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ReproducibilityError(
                "Store manifest is not valid JSON.",
                hint="Invalidate the store entry and rebuild.",
                context={"operation": "store_load", "path": str(path)},
            ) from exc
        if not isinstance(parsed, dict):
            raise ReproducibilityError(
                "Store manifest has invalid structure.",
                hint="Invalidate the store entry and rebuild.",
                context={"operation": "store_load", "path": str(path)},
            )
        return parsed


def _to_payload(inputs: StoreInputs) -> dict[str, Any]:
    return {
        "crate_name": inputs.crate_name,
        "version": inputs.version,
        "metadata": inputs.metadata,
        "crate_types": list(inputs.crate_types),
        "features": sorted(inputs.features),
        "dependencies": list(inputs.dependencies),
        "build_dependencies": list(inputs.build_dependencies),
        "rustc_opts": list(inputs.rustc_opts),
        "link_flags": list(inputs.link_flags),
        "target_os": inputs.target_os,
        "lib_name": inputs.lib_name,
        "lib_path": inputs.lib_path,
        "crate_bin": None if inputs.crate_bin is None else list(inputs.crate_bin),
        "build_script": inputs.build_script,
        "workspace_member": inputs.workspace_member,
        "edition": inputs.edition,
        "externs": list(inputs.externs),
        "rustc": inputs.rustc,
        "source": inputs.source,
        "patches": list(inputs.patches),
    }


def _artifact_payload(artifact: Artifact) -> dict[str, Any]:
    return {
        "crate_name": artifact.crate_name,
        "version": artifact.version,
        "lib_name": artifact.lib_name,
        "crate_types": list(artifact.crate_types),
        "metadata": artifact.metadata,
        "libraries": list(artifact.libraries),
        "binaries": list(artifact.binaries),
    }


def _artifact_from_payload(payload: object, *, root: Path, key: str) -> Artifact:
    if not isinstance(payload, dict):
        raise ReproducibilityError(
            "Store manifest has no artifact description.",
            hint="Invalidate the store entry and rebuild.",
            context={"operation": "store_load", "key": key},
        )
    return Artifact(
        crate_name=str(payload["crate_name"]),
        version=str(payload["version"]),
        lib_name=str(payload["lib_name"]),
        crate_types=tuple(payload["crate_types"]),
        metadata=str(payload["metadata"]),
        root=root,
        libraries=tuple(payload["libraries"]),
        binaries=tuple(payload["binaries"]),
    )


def _digest_tree(root: Path, *, skip_manifest: bool = True) -> dict[str, str]:
    digests: dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        if skip_manifest and path.name == "manifest.json" and path.parent == root:
            continue
        relative = path.relative_to(root).as_posix()
        if path.is_symlink():
            digests[relative] = "symlink:" + os.readlink(path)
        elif path.is_file():
            digests[relative] = hashlib.sha256(path.read_bytes()).hexdigest()
    return digests
