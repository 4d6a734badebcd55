"""Tests for the content-addressed artifact store."""

from dataclasses import replace
from pathlib import Path

import pytest

from cratebuild.errors import ReproducibilityError
from cratebuild.models import Artifact
from cratebuild.store import ArtifactStore, StoreInputs, store_key


def _inputs(**changes: object) -> StoreInputs:
    base = StoreInputs(
        crate_name="alpha",
        version="1.0.0",
        metadata="0123456789",
        crate_types=("lib",),
        features=("std",),
    )
    return replace(base, **changes)  # type: ignore[arg-type]


def _publish(store: ArtifactStore, inputs: StoreInputs) -> Artifact:
    staging = store.staging_dir(inputs)
    lib_dir = staging / "lib" / "lib"
    lib_dir.mkdir(parents=True)
    (lib_dir / "libalpha-0123456789.so").write_bytes(b"shared")
    (lib_dir / "libalpha.so").symlink_to("libalpha-0123456789.so")
    artifact = Artifact(
        crate_name="alpha",
        version="1.0.0",
        lib_name="alpha",
        crate_types=("dylib",),
        metadata="0123456789",
        root=staging,
        libraries=("libalpha-0123456789.so",),
    )
    return store.publish(inputs=inputs, staging=staging, artifact=artifact)


def test_store_key_ends_with_derivation_name() -> None:
    key = store_key(_inputs())

    assert key.endswith("-rust_alpha-1.0.0")
    assert store_key(_inputs()) == key
    assert store_key(_inputs(features=("std", "alloc"))) != key


def test_publish_then_load_round_trip(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "store")
    inputs = _inputs()

    published = _publish(store, inputs)
    loaded = store.load(inputs=inputs)

    assert loaded == published
    assert published.root == store.root / store_key(inputs)
    assert published.library_paths()[0].read_bytes() == b"shared"
    assert not [p for p in store.root.iterdir() if p.name.startswith(".staging-")]


def test_load_missing_entry_returns_none(tmp_path: Path) -> None:
    assert ArtifactStore(tmp_path).load(inputs=_inputs()) is None


def test_second_publish_keeps_first_entry(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "store")
    inputs = _inputs()

    first = _publish(store, inputs)
    second = _publish(store, inputs)

    assert first.root == second.root
    assert len([p for p in store.root.iterdir() if not p.name.startswith(".")]) == 1


def test_tampered_entry_is_detected(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "store")
    inputs = _inputs()
    published = _publish(store, inputs)
    published.library_paths()[0].write_bytes(b"patched")

    with pytest.raises(ReproducibilityError) as excinfo:
        store.load(inputs=inputs)

    assert excinfo.value.context["operation"] == "store_load"


def test_corrupt_manifest_is_detected(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "store")
    inputs = _inputs()
    published = _publish(store, inputs)
    (published.root / "manifest.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(ReproducibilityError):
        store.load(inputs=inputs)
