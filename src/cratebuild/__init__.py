"""Public package entrypoint for the per-crate Rust build orchestrator."""

from .build import BuildInvocation, BuildOutputs, CompilerCommand, plan_build, run_build
from .configure import BuildPlan, configure
from .errors import (
    BuildScriptError,
    CompilerInvocationError,
    ConfigurationError,
    CrateBuildError,
    ErrorCode,
    ExternCollisionError,
    ExternCollisionWarning,
    FetchError,
    HookError,
    InstallError,
    MissingEntryPointError,
    ReproducibilityError,
)
from .graph_io import GraphInput, parse_crate_graph, read_crate_graph
from .hooks import HookSet, Stage, StageContext
from .install import install
from .linker import LinkArg, complete_build_deps, complete_deps, link_args
from .metadata import metadata_token
from .models import (
    Artifact,
    BinTarget,
    BuildOptions,
    CrateDescriptor,
    CrateId,
    ResolvedDependency,
)
from .overrides import apply_overrides, merge
from .pipeline import CrateBuilder, CrateGraph
from .platform import HostPlatform
from .report import BuildReport, VerificationResult
from .store import ArtifactStore

__all__ = [
    "Artifact",
    "ArtifactStore",
    "BinTarget",
    "BuildInvocation",
    "BuildOptions",
    "BuildOutputs",
    "BuildPlan",
    "BuildReport",
    "BuildScriptError",
    "CompilerCommand",
    "CompilerInvocationError",
    "ConfigurationError",
    "CrateBuildError",
    "CrateBuilder",
    "CrateDescriptor",
    "CrateGraph",
    "CrateId",
    "ErrorCode",
    "ExternCollisionError",
    "ExternCollisionWarning",
    "FetchError",
    "GraphInput",
    "HookError",
    "HookSet",
    "HostPlatform",
    "InstallError",
    "LinkArg",
    "MissingEntryPointError",
    "ReproducibilityError",
    "ResolvedDependency",
    "Stage",
    "StageContext",
    "VerificationResult",
    "apply_overrides",
    "complete_build_deps",
    "complete_deps",
    "configure",
    "install",
    "link_args",
    "merge",
    "metadata_token",
    "parse_crate_graph",
    "plan_build",
    "read_crate_graph",
    "run_build",
]
