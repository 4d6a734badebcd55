import hashlib
import io
import tarfile
from pathlib import Path

import pytest
from conftest import FakeRunner, write_crate

from cratebuild.errors import ConfigurationError, FetchError, ReproducibilityError
from cratebuild.fetch import apply_patches, fetch_crate, resolve_source, unpack_source
from cratebuild.models import CrateDescriptor


def _crate_archive(path: Path, top: str = "alpha-1.0.0") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        payload = b"pub fn hello() {}\n"
        info = tarfile.TarInfo(f"{top}/src/lib.rs")
        info.size = len(payload)
        archive.addfile(info, io.BytesIO(payload))
    data = buffer.getvalue()
    path.write_bytes(data)
    return data


def test_fetch_requires_sha256(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        fetch_crate("alpha", "1.0.0", sha256="", cache_dir=tmp_path / "cache")


def test_fetch_caches_by_content_hash(tmp_path: Path) -> None:
    source = tmp_path / "alpha.crate"
    data = _crate_archive(source)
    digest = hashlib.sha256(data).hexdigest()

    first = fetch_crate(
        "alpha", "1.0.0", sha256=digest, cache_dir=tmp_path / "cache", url_template=source.as_uri()
    )
    source.write_bytes(b"mutated upstream")
    second = fetch_crate(
        "alpha", "1.0.0", sha256=digest, cache_dir=tmp_path / "cache", url_template=source.as_uri()
    )

    assert first == second
    assert first.name == f"{digest}-alpha-1.0.0.crate"
    assert second.read_bytes() == data


def test_fetch_raises_on_hash_mismatch(tmp_path: Path) -> None:
    source = tmp_path / "alpha.crate"
    _crate_archive(source)

    with pytest.raises(ReproducibilityError) as excinfo:
        fetch_crate(
            "alpha",
            "1.0.0",
            sha256="0" * 64,
            cache_dir=tmp_path / "cache",
            url_template=source.as_uri(),
        )

    assert excinfo.value.context["expected"] == "0" * 64


def test_fetch_unreachable_source(tmp_path: Path) -> None:
    missing = (tmp_path / "missing.crate").as_uri()

    with pytest.raises(FetchError):
        fetch_crate(
            "alpha", "1.0.0", sha256="0" * 64, cache_dir=tmp_path / "cache", url_template=missing
        )


def test_resolve_source_requires_src_or_checksum(tmp_path: Path) -> None:
    local = CrateDescriptor("alpha", "1.0.0", src=tmp_path)

    assert resolve_source(local, cache_dir=tmp_path / "cache") == tmp_path
    with pytest.raises(ConfigurationError):
        resolve_source(CrateDescriptor("alpha", "1.0.0"), cache_dir=tmp_path / "cache")


def test_unpack_archive_returns_single_top_directory(tmp_path: Path) -> None:
    archive = tmp_path / "alpha-1.0.0.crate"
    _crate_archive(archive)

    root = unpack_source(archive, tmp_path / "work")

    assert root == tmp_path / "work" / "alpha-1.0.0"
    assert (root / "src" / "lib.rs").read_text(encoding="utf-8") == "pub fn hello() {}\n"


def test_unpack_directory_copies_tree(tmp_path: Path) -> None:
    source = write_crate(tmp_path / "alpha", {"src/lib.rs": "", "build.rs": ""})

    root = unpack_source(source, tmp_path / "work")

    assert (root / "build.rs").is_file()
    assert (source / "src" / "lib.rs").is_file()


def test_unpack_rejects_unknown_source(tmp_path: Path) -> None:
    stray = tmp_path / "alpha.zip"
    stray.write_bytes(b"PK")

    with pytest.raises(ConfigurationError):
        unpack_source(stray, tmp_path / "work")


def test_patches_are_applied_in_order(tmp_path: Path, fake_runner: FakeRunner) -> None:
    patches = (tmp_path / "a.patch", tmp_path / "b.patch")

    apply_patches(patches, tmp_path, runner=fake_runner)

    assert [argv[-1] for argv, _, _ in fake_runner.calls] == [str(p.resolve()) for p in patches]
    assert all(argv[:3] == ("patch", "-p1", "--batch") for argv, _, _ in fake_runner.calls)


def test_failed_patch_is_configuration_error(tmp_path: Path) -> None:
    runner = FakeRunner(failing_programs={"patch"})

    with pytest.raises(ConfigurationError) as excinfo:
        apply_patches((tmp_path / "a.patch",), tmp_path, runner=runner)

    assert excinfo.value.context["stage"] == "patch"
