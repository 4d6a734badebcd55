from pathlib import Path

import pytest
from conftest import resolved

from cratebuild.configure import configure, crate_root, feature_flags, resolve_crate_types
from cratebuild.errors import ConfigurationError
from cratebuild.linker import dependency_tokens
from cratebuild.metadata import metadata_token
from cratebuild.models import BuildOptions, CrateDescriptor
from cratebuild.platform import HostPlatform


def test_proc_macro_beats_plugin_and_declared_types() -> None:
    crate = CrateDescriptor(
        "derive",
        "1.0.0",
        proc_macro=True,
        plugin=True,
        crate_type=("lib", "dylib"),
    )

    assert resolve_crate_types(crate) == ("proc-macro",)


def test_plugin_beats_declared_types() -> None:
    crate = CrateDescriptor("plug", "1.0.0", plugin=True, crate_type=("lib",))

    assert resolve_crate_types(crate) == ("dylib",)


def test_crate_type_defaults_to_lib_and_dedupes() -> None:
    assert resolve_crate_types(CrateDescriptor("a", "1.0.0")) == ("lib",)
    assert resolve_crate_types(
        CrateDescriptor("a", "1.0.0", crate_type=("lib", "dylib", "lib"))
    ) == ("lib", "dylib")


def test_crate_types_with_the_same_output_compile_once() -> None:
    kinds = ("lib", "rlib", "staticlib", "cdylib", "dylib")
    crate = CrateDescriptor("a", "1.0.0", crate_type=kinds)

    assert resolve_crate_types(crate) == ("lib", "staticlib", "cdylib")


def test_unknown_crate_type_is_configuration_error() -> None:
    crate = CrateDescriptor("a", "1.0.0", crate_type=("shared",))  # type: ignore[arg-type]

    with pytest.raises(ConfigurationError) as excinfo:
        resolve_crate_types(crate)

    assert excinfo.value.context["crate_type"] == "shared"


def test_feature_flags_collapse_duplicates() -> None:
    assert feature_flags(["std", "alloc", "std"]) == (
        "--cfg",
        'feature="alloc"',
        "--cfg",
        'feature="std"',
    )


def test_configure_unions_features_and_computes_token(
    tmp_path: Path, linux_host: HostPlatform
) -> None:
    dep = resolved(tmp_path / "alpha", "alpha", metadata="a" * 10)
    crate = CrateDescriptor("beta", "0.1.0", features=("std",))
    options = BuildOptions(features=("extra", "std"))

    plan = configure(crate, [dep], [], options, host=linux_host)

    assert plan.features == ("extra", "std")
    assert plan.metadata == metadata_token(
        "beta", "0.1.0", ["extra", "std"], dependency_tokens([dep], [])
    )
    assert plan.extern_flags() == (
        "--extern",
        f"alpha={tmp_path / 'alpha' / 'lib' / 'lib' / 'libalpha-aaaaaaaaaa.rlib'}",
    )


def test_edition_is_appended_only_when_declared(linux_host: HostPlatform) -> None:
    with_edition = configure(
        CrateDescriptor("a", "1.0.0", edition="2021", extra_rustc_opts=("-Zfoo",)),
        [],
        [],
        BuildOptions(extra_rustc_opts=("-Cpanic=abort",)),
        host=linux_host,
    )
    without = configure(CrateDescriptor("a", "1.0.0"), [], [], BuildOptions(), host=linux_host)

    assert with_edition.extra_rustc_opts == ("-Zfoo", "-Cpanic=abort", "--edition", "2021")
    assert "--edition" not in without.rustc_opts


def test_release_and_debug_opt_flags(linux_host: HostPlatform) -> None:
    release = configure(CrateDescriptor("a", "1.0.0"), [], [], BuildOptions(), host=linux_host)
    debug = configure(
        CrateDescriptor("a", "1.0.0"), [], [], BuildOptions(release=False), host=linux_host
    )

    assert release.rustc_opts[:2] == ("-C", "opt-level=3")
    assert debug.rustc_opts[:2] == ("-C", "debuginfo=2")
    assert release.metadata_flags == (
        "-C",
        f"metadata={release.metadata}",
        "-C",
        f"extra-filename=-{release.metadata}",
    )


def test_descriptor_values_win_over_options_when_set(linux_host: HostPlatform) -> None:
    crate = CrateDescriptor("a", "1.0.0", release=False, colors="never")

    plan = configure(crate, [], [], BuildOptions(release=True, verbose=False), host=linux_host)

    assert plan.release is False
    assert plan.colors == "never"
    assert plan.verbose is False


def test_option_renames_overlay_descriptor_renames(
    tmp_path: Path, linux_host: HostPlatform
) -> None:
    dep = resolved(tmp_path / "rand", "rand")
    crate = CrateDescriptor("a", "1.0.0", crate_renames={"rand": "rand_a"})

    plan = configure(
        crate, [dep], [], BuildOptions(crate_renames={"rand": "rand_b"}), host=linux_host
    )

    assert plan.link_args[0].name == "rand_b"


def test_target_os_uses_macos_for_darwin() -> None:
    crate = CrateDescriptor("a", "1.0.0")

    assert configure(crate, [], [], BuildOptions(), host=HostPlatform("darwin")).target_os == "macos"
    assert configure(crate, [], [], BuildOptions(), host=HostPlatform("linux")).target_os == "linux"


def test_invalid_color_mode_is_rejected(linux_host: HostPlatform) -> None:
    crate = CrateDescriptor("a", "1.0.0", colors="sometimes")  # type: ignore[arg-type]

    with pytest.raises(ConfigurationError):
        configure(crate, [], [], BuildOptions(), host=linux_host)


def test_configure_does_not_mutate_inputs(linux_host: HostPlatform) -> None:
    crate = CrateDescriptor("a", "1.0.0", features=("b", "a"), workspace_member="crates/a")

    plan = configure(crate, [], [], BuildOptions(features=("c",)), host=linux_host)

    assert crate.features == ("b", "a")
    assert crate_root(Path("/src"), plan) == Path("/src/crates/a")
