"""Per-crate build pipeline and the memoized walk over a resolved crate graph.

``CrateBuilder.build`` runs one crate through
unpack -> patch -> configure -> build -> install, firing lifecycle hooks at
every stage boundary, and publishes the result into an ``ArtifactStore``.
``CrateGraph.build_all`` orders a whole dependency graph and feeds each
crate's artifact to its dependents.
"""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path

from cratebuild.build import plan_build, run_build
from cratebuild.buildscript import run_build_script
from cratebuild.configure import BuildPlan, configure, crate_root
from cratebuild.errors import ConfigurationError, CrateBuildError
from cratebuild.fetch import apply_patches, resolve_source, unpack_source
from cratebuild.hooks import HookPoint, Stage, StageContext, run_hooks
from cratebuild.install import install
from cratebuild.linker import complete_build_deps, complete_deps
from cratebuild.models import (
    Artifact,
    BuildOptions,
    CrateDescriptor,
    CrateId,
    ResolvedDependency,
)
from cratebuild.observability import StructuredLogger
from cratebuild.overrides import OverrideTable, apply_overrides
from cratebuild.platform import HostPlatform
from cratebuild.runner import CommandRunner, SubprocessRunner
from cratebuild.store import ArtifactStore, StoreInputs, digest_path, store_key


@dataclass(slots=True)
class CrateBuilder:
    store: ArtifactStore
    options: BuildOptions = field(default_factory=BuildOptions)
    overrides: Sequence[OverrideTable] = ()
    runner: CommandRunner = field(default_factory=SubprocessRunner)
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    host: HostPlatform = field(default_factory=HostPlatform.current)
    fetch_cache: Path | None = None
    _memo: dict[str, ResolvedDependency] = field(init=False, default_factory=dict)

    def build(
        self,
        descriptor: CrateDescriptor,
        *,
        dependencies: Sequence[ResolvedDependency] = (),
        build_dependencies: Sequence[ResolvedDependency] = (),
    ) -> ResolvedDependency:
        crate = apply_overrides(descriptor, self.overrides)
        plan = configure(crate, dependencies, build_dependencies, self.options, host=self.host)
        inputs = _store_inputs(crate, plan, dependencies, build_dependencies)
        memo_key = store_key(inputs)
        cached = self._memo.get(memo_key)
        if cached is not None:
            return cached

        artifact = self.store.load(inputs=inputs)
        if artifact is not None:
            self._log(plan, "store_hit", "Reusing stored artifact.", stage=None)
        else:
            artifact = self._run_pipeline(
                crate,
                plan,
                inputs,
                dependencies=dependencies,
                build_dependencies=build_dependencies,
            )

        resolved = ResolvedDependency(
            artifact=artifact,
            complete_deps=complete_deps(dependencies),
            complete_build_deps=complete_build_deps(build_dependencies),
        )
        self._memo[memo_key] = resolved
        return resolved

    def _run_pipeline(
        self,
        crate: CrateDescriptor,
        plan: BuildPlan,
        inputs: StoreInputs,
        *,
        dependencies: Sequence[ResolvedDependency],
        build_dependencies: Sequence[ResolvedDependency],
    ) -> Artifact:
        hooks = crate.hooks
        staging = self.store.staging_dir(inputs)
        try:
            with _workspace(crate) as work_dir:
                ctx = StageContext(stage=Stage.UNPACK, point="pre", crate=crate, plan=plan)

                with self._stage(ctx):
                    ctx = run_hooks(hooks, ctx)
                    source = resolve_source(crate, cache_dir=self._fetch_cache())
                    source_dir = unpack_source(source, work_dir / "source")
                    ctx = run_hooks(hooks, _at(ctx, Stage.UNPACK, "post", source_dir=source_dir))

                with self._stage(ctx.at(Stage.PATCH, "pre")):
                    ctx = run_hooks(hooks, ctx.at(Stage.PATCH, "pre"))
                    apply_patches(crate.patches, _source_dir(ctx), runner=self.runner)
                    ctx = run_hooks(hooks, ctx.at(Stage.PATCH, "post"))

                with self._stage(ctx.at(Stage.CONFIGURE, "pre")):
                    ctx = run_hooks(hooks, ctx.at(Stage.CONFIGURE, "pre"))
                    plan = ctx.plan or plan
                    root = crate_root(_source_dir(ctx), plan)
                    script_output = run_build_script(
                        plan,
                        root,
                        dependencies=dependencies,
                        build_dependencies=build_dependencies,
                        runner=self.runner,
                        logger=self.logger,
                        host=self.host,
                    )
                    ctx = run_hooks(hooks, _at(ctx, Stage.CONFIGURE, "post", plan=plan))

                with self._stage(ctx.at(Stage.BUILD, "pre")):
                    ctx = run_hooks(hooks, ctx.at(Stage.BUILD, "pre"))
                    plan = ctx.plan or plan
                    invocation = plan_build(
                        plan,
                        root,
                        dependencies=dependencies,
                        build_output=script_output,
                        host=self.host,
                    )
                    outputs = run_build(
                        invocation,
                        dependencies=dependencies,
                        runner=self.runner,
                        logger=self.logger,
                    )
                    ctx = run_hooks(hooks, ctx.at(Stage.BUILD, "post"))

                with self._stage(ctx.at(Stage.INSTALL, "pre")):
                    ctx = run_hooks(hooks, ctx.at(Stage.INSTALL, "pre"))
                    artifact = install(crate.derivation_name, plan.metadata, outputs, staging)
                    ctx = run_hooks(hooks, _at(ctx, Stage.INSTALL, "post", install_root=staging))
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        published = self.store.publish(inputs=inputs, staging=staging, artifact=artifact)
        self._log(
            plan,
            "publish",
            "Published crate artifact.",
            stage="install",
            extra={"root": str(published.root), "metadata": published.metadata},
        )
        return published

    @contextmanager
    def _stage(self, ctx: StageContext) -> Iterator[None]:
        """Tag errors escaping a stage with the crate and stage that raised them."""
        self._log(ctx.plan, "stage_start", f"Starting {ctx.stage} stage.", stage=ctx.stage)
        try:
            yield
        except CrateBuildError as exc:
            exc.context.setdefault("crate", ctx.crate.crate_name)
            exc.context.setdefault("version", ctx.crate.version)
            exc.context.setdefault("stage", ctx.stage.value)
            self._log(ctx.plan, "stage_failed", str(exc), stage=ctx.stage, level="error")
            raise

    def _fetch_cache(self) -> Path:
        return self.fetch_cache or self.store.root / ".downloads"

    def _log(
        self,
        plan: BuildPlan | None,
        operation: str,
        message: str,
        *,
        stage: str | None,
        level: str = "info",
        extra: dict[str, object] | None = None,
    ) -> None:
        self.logger.log(
            operation=operation,
            crate=plan.crate_name if plan else None,
            version=plan.version if plan else None,
            stage=stage,
            message=message,
            level=level,
            extra=extra,
        )


@dataclass(slots=True)
class CrateGraph:
    """A fully resolved crate graph keyed by crate identity."""

    crates: dict[CrateId, CrateDescriptor] = field(default_factory=dict)

    def add(self, descriptor: CrateDescriptor) -> CrateGraph:
        if descriptor.crate_id in self.crates:
            raise ConfigurationError(
                "Crate declared twice in the graph.",
                context={"crate": descriptor.crate_name, "version": descriptor.version},
            )
        self.crates[descriptor.crate_id] = descriptor
        return self

    def topological_order(self, roots: Iterable[CrateId] | None = None) -> list[CrateId]:
        """Dependencies before dependents; ties broken by name, then version."""
        selected = self._reachable(roots) if roots is not None else set(self.crates)
        edges: dict[CrateId, set[CrateId]] = {
            crate_id: set(self._edges(crate_id)) for crate_id in selected
        }
        remaining = {crate_id: len(deps) for crate_id, deps in edges.items()}
        dependents: dict[CrateId, set[CrateId]] = {crate_id: set() for crate_id in selected}
        for crate_id, deps in edges.items():
            for dep in deps:
                dependents[dep].add(crate_id)

        ready = sorted(crate_id for crate_id, count in remaining.items() if count == 0)
        order: list[CrateId] = []
        while ready:
            current = ready.pop(0)
            order.append(current)
            for dependent in sorted(dependents[current]):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
            ready.sort()

        if len(order) != len(selected):
            cyclic = sorted(str(crate_id) for crate_id in selected if crate_id not in order)
            raise ConfigurationError(
                "Crate graph contains a dependency cycle.",
                hint="A resolved crate graph must be acyclic.",
                context={"operation": "topological_order", "crates": ", ".join(cyclic)},
            )
        return order

    def build_all(
        self,
        builder: CrateBuilder,
        roots: Iterable[CrateId] | None = None,
    ) -> dict[CrateId, ResolvedDependency]:
        built: dict[CrateId, ResolvedDependency] = {}
        for crate_id in self.topological_order(roots):
            descriptor = self.crates[crate_id]
            built[crate_id] = builder.build(
                descriptor,
                dependencies=[built[dep] for dep in descriptor.dependencies],
                build_dependencies=[built[dep] for dep in descriptor.build_dependencies],
            )
        return built

    def _edges(self, crate_id: CrateId) -> tuple[CrateId, ...]:
        descriptor = self.crates[crate_id]
        edges = (*descriptor.dependencies, *descriptor.build_dependencies)
        for dep in edges:
            if dep not in self.crates:
                raise ConfigurationError(
                    "Crate depends on a crate missing from the graph.",
                    hint="Include every resolved dependency in the graph input.",
                    context={"crate": str(crate_id), "dependency": str(dep)},
                )
        return edges

    def _reachable(self, roots: Iterable[CrateId]) -> set[CrateId]:
        seen: set[CrateId] = set()
        stack = list(roots)
        while stack:
            crate_id = stack.pop()
            if crate_id in seen:
                continue
            if crate_id not in self.crates:
                raise ConfigurationError(
                    "Requested crate is not part of the graph.",
                    context={"crate": str(crate_id)},
                )
            seen.add(crate_id)
            stack.extend(self._edges(crate_id))
        return seen


def _store_inputs(
    crate: CrateDescriptor,
    plan: BuildPlan,
    dependencies: Sequence[ResolvedDependency],
    build_dependencies: Sequence[ResolvedDependency],
) -> StoreInputs:
    if crate.src is not None:
        source = _input_digest(crate.src)
    else:
        source = crate.sha256 or ""
    crate_bin = None
    if plan.crate_bin is not None:
        crate_bin = tuple(f"{target.name}={target.path or ''}" for target in plan.crate_bin)
    return StoreInputs(
        crate_name=plan.crate_name,
        version=plan.version,
        metadata=plan.metadata,
        crate_types=plan.crate_types,
        features=plan.features,
        dependencies=tuple(str(dep.artifact.root) for dep in complete_deps(dependencies)),
        build_dependencies=tuple(
            str(dep.artifact.root) for dep in complete_build_deps(build_dependencies)
        ),
        rustc_opts=plan.rustc_opts,
        link_flags=plan.extra_link_flags,
        target_os=plan.target_os,
        lib_name=plan.lib_name,
        lib_path=plan.lib_path,
        crate_bin=crate_bin,
        build_script=plan.build_script,
        workspace_member=plan.workspace_member,
        edition=plan.edition,
        externs=plan.extern_flags(),
        rustc=plan.rustc,
        source=source,
        patches=tuple(_input_digest(patch) for patch in crate.patches),
    )


def _input_digest(path: Path) -> str:
    # Missing inputs fail later in the stage that reads them.
    return digest_path(path) if path.exists() else ""


@contextmanager
def _workspace(crate: CrateDescriptor) -> Iterator[Path]:
    with tempfile.TemporaryDirectory(prefix=f"{crate.derivation_name}-") as tmp:
        yield Path(tmp)


def _at(
    ctx: StageContext,
    stage: Stage,
    point: HookPoint,
    *,
    source_dir: Path | None = None,
    plan: BuildPlan | None = None,
    install_root: Path | None = None,
) -> StageContext:
    moved = ctx.at(stage, point)
    return replace(
        moved,
        source_dir=source_dir or moved.source_dir,
        plan=plan or moved.plan,
        install_root=install_root or moved.install_root,
    )


def _source_dir(ctx: StageContext) -> Path:
    if ctx.source_dir is None:
        raise ConfigurationError(
            "Source directory was cleared by a lifecycle hook.",
            context={"crate": ctx.crate.crate_name, "stage": ctx.stage.value},
        )
    return ctx.source_dir


def graph_from(descriptors: Iterable[CrateDescriptor]) -> CrateGraph:
    graph = CrateGraph()
    for descriptor in descriptors:
        graph.add(descriptor)
    return graph
