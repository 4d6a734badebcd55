"""Tests for build.rs compilation, environment and directive parsing."""

from pathlib import Path

import pytest
from conftest import FakeRunner, resolved, write_crate

from cratebuild.buildscript import (
    BUILD_SCRIPT_CRATE_NAME,
    build_script_env,
    links_env_prefix,
    parse_build_script_output,
    run_build_script,
)
from cratebuild.configure import BuildPlan, configure
from cratebuild.errors import BuildScriptError, CompilerInvocationError
from cratebuild.models import BuildOptions, CrateDescriptor
from cratebuild.observability import StructuredLogger
from cratebuild.platform import HostPlatform

SCRIPT_STDOUT = """\
cargo:rerun-if-changed=build.rs
cargo:rustc-cfg=has_zlib
cargo:rustc-link-lib=static=z
cargo:rustc-link-search=native=/opt/zlib/lib
cargo:rustc-link-search=native=/opt/zlib/lib
cargo:rustc-flags=-l dylib=m
cargo:rustc-env=ZLIB_VERSION=1.3
cargo:warning=using bundled zlib
cargo:include=/opt/zlib/include
not a directive
"""


def _plan(crate: CrateDescriptor, host: HostPlatform) -> BuildPlan:
    return configure(crate, [], [], BuildOptions(), host=host)


def test_parse_directives() -> None:
    output = parse_build_script_output(SCRIPT_STDOUT)

    assert output.cfgs == ("has_zlib",)
    assert output.link_libs == ("static=z",)
    assert output.link_search == ("native=/opt/zlib/lib",)
    assert output.rustc_flags == ("-l dylib=m",)
    assert output.rustc_env == {"ZLIB_VERSION": "1.3"}
    assert output.metadata == {"include": "/opt/zlib/include"}
    assert output.rustc_args() == (
        "-l",
        "dylib=m",
        "--cfg",
        "has_zlib",
        "-L",
        "native=/opt/zlib/lib",
        "-l",
        "static=z",
    )


def test_links_env_prefix_strips_sys_suffix() -> None:
    assert links_env_prefix("libz-sys") == "DEP_LIBZ"
    assert links_env_prefix("ring") == "DEP_RING"


def test_build_script_env(tmp_path: Path, linux_host: HostPlatform) -> None:
    crate = CrateDescriptor(
        "zlib-sys",
        "1.2.3-beta.1",
        features=("static", "zlib-ng"),
        authors=("A <a@example.com>", "B"),
    )
    plan = configure(crate, [], [], BuildOptions(release=False), host=linux_host)

    env = build_script_env(
        plan,
        tmp_path,
        out_dir=tmp_path / "out",
        host=linux_host,
        dependencies_env={"DEP_OPENSSL_INCLUDE": "/ssl"},
    )

    assert env["CARGO_PKG_NAME"] == "zlib-sys"
    assert (env["CARGO_PKG_VERSION_MAJOR"], env["CARGO_PKG_VERSION_MINOR"]) == ("1", "2")
    assert (env["CARGO_PKG_VERSION_PATCH"], env["CARGO_PKG_VERSION_PRE"]) == ("3", "beta.1")
    assert env["CARGO_PKG_AUTHORS"] == "A <a@example.com>:B"
    assert env["CARGO_FEATURE_STATIC"] == env["CARGO_FEATURE_ZLIB_NG"] == "1"
    assert env["CARGO_CFG_TARGET_OS"] == "linux"
    assert (env["PROFILE"], env["OPT_LEVEL"], env["DEBUG"]) == ("debug", "0", "true")
    assert env["TARGET"] == "x86_64-unknown-linux-gnu"
    assert env["DEP_OPENSSL_INCLUDE"] == "/ssl"


def test_crate_without_script_is_skipped(
    tmp_path: Path, fake_runner: FakeRunner, linux_host: HostPlatform
) -> None:
    root = write_crate(tmp_path / "a", {"src/lib.rs": ""})

    output = run_build_script(
        _plan(CrateDescriptor("a", "1.0.0"), linux_host),
        root,
        dependencies=[],
        build_dependencies=[],
        runner=fake_runner,
        logger=StructuredLogger(),
        host=linux_host,
    )

    assert output is None
    assert fake_runner.calls == []


def test_script_is_compiled_then_run(tmp_path: Path, linux_host: HostPlatform) -> None:
    root = write_crate(tmp_path / "z", {"src/lib.rs": "", "build.rs": ""})
    cc = resolved(tmp_path / "cc", "cc", metadata="c" * 10)
    plan = configure(CrateDescriptor("zlib-sys", "1.0.0"), [], [cc], BuildOptions(), host=linux_host)
    runner = FakeRunner(script_stdout=SCRIPT_STDOUT)

    output = run_build_script(
        plan,
        root,
        dependencies=[],
        build_dependencies=[cc],
        runner=runner,
        logger=StructuredLogger(),
        host=linux_host,
    )

    (compile_argv, compile_cwd, _), (run_argv, _, run_env) = runner.calls
    assert compile_cwd == root
    assert compile_argv[compile_argv.index("--crate-name") + 1] == BUILD_SCRIPT_CRATE_NAME
    assert "dependency=target/buildDeps" in compile_argv
    assert f"cc={cc.lib / 'lib' / 'libcc-cccccccccc.rlib'}" in compile_argv
    assert run_argv == (str(root / "target" / "build" / "zlib-sys" / BUILD_SCRIPT_CRATE_NAME),)
    assert run_env["OUT_DIR"] == str((root / "target" / "build" / "zlib-sys.out").resolve())
    assert output is not None and output.cfgs == ("has_zlib",)
    assert (root / "target" / "build" / "zlib-sys.opt").read_text(encoding="utf-8") == SCRIPT_STDOUT


def test_declared_script_path_is_used(tmp_path: Path, linux_host: HostPlatform) -> None:
    root = write_crate(tmp_path / "z", {"src/lib.rs": "", "tools/gen.rs": ""})
    runner = FakeRunner()

    run_build_script(
        _plan(CrateDescriptor("z", "1.0.0", build="tools/gen.rs"), linux_host),
        root,
        dependencies=[],
        build_dependencies=[],
        runner=runner,
        logger=StructuredLogger(),
        host=linux_host,
    )

    assert "tools/gen.rs" in runner.calls[0][0]


def test_script_compile_failure(tmp_path: Path, linux_host: HostPlatform) -> None:
    root = write_crate(tmp_path / "z", {"build.rs": ""})

    with pytest.raises(CompilerInvocationError):
        run_build_script(
            _plan(CrateDescriptor("z", "1.0.0"), linux_host),
            root,
            dependencies=[],
            build_dependencies=[],
            runner=FakeRunner(failing={BUILD_SCRIPT_CRATE_NAME}),
            logger=StructuredLogger(),
            host=linux_host,
        )


def test_script_nonzero_exit(tmp_path: Path, linux_host: HostPlatform) -> None:
    root = write_crate(tmp_path / "z", {"build.rs": ""})

    with pytest.raises(BuildScriptError) as excinfo:
        run_build_script(
            _plan(CrateDescriptor("z", "1.0.0"), linux_host),
            root,
            dependencies=[],
            build_dependencies=[],
            runner=FakeRunner(script_returncode=1),
            logger=StructuredLogger(),
            host=linux_host,
        )

    assert excinfo.value.context["stderr"] == "panicked"
    assert excinfo.value.context["returncode"] == "1"
