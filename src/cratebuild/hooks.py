"""Typed lifecycle extension points around each pipeline stage."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from cratebuild.errors import CrateBuildError, HookError

if TYPE_CHECKING:
    from cratebuild.configure import BuildPlan
    from cratebuild.models import CrateDescriptor

HookPoint = Literal["pre", "post"]


class Stage(StrEnum):
    UNPACK = "unpack"
    PATCH = "patch"
    CONFIGURE = "configure"
    BUILD = "build"
    INSTALL = "install"


@dataclass(frozen=True, slots=True)
class StageContext:
    """State handed to a hook. Hooks return a replacement or ``None`` to keep it."""

    stage: Stage
    point: HookPoint
    crate: CrateDescriptor
    source_dir: Path | None = None
    plan: BuildPlan | None = None
    install_root: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    def at(self, stage: Stage, point: HookPoint) -> StageContext:
        return replace(self, stage=stage, point=point)


Hook = Callable[[StageContext], "StageContext | None"]


@dataclass(frozen=True, slots=True)
class HookSet:
    pre_unpack: tuple[Hook, ...] = ()
    post_unpack: tuple[Hook, ...] = ()
    pre_patch: tuple[Hook, ...] = ()
    post_patch: tuple[Hook, ...] = ()
    pre_configure: tuple[Hook, ...] = ()
    post_configure: tuple[Hook, ...] = ()
    pre_build: tuple[Hook, ...] = ()
    post_build: tuple[Hook, ...] = ()
    pre_install: tuple[Hook, ...] = ()
    post_install: tuple[Hook, ...] = ()

    def hooks_for(self, stage: Stage, point: HookPoint) -> tuple[Hook, ...]:
        hooks: tuple[Hook, ...] = getattr(self, f"{point}_{stage.value}")
        return hooks


def run_hooks(hooks: HookSet | None, context: StageContext) -> StageContext:
    if hooks is None:
        return context
    for hook in hooks.hooks_for(context.stage, context.point):
        try:
            result = hook(context)
        except CrateBuildError:
            raise
        except Exception as exc:
            raise HookError(
                f"{context.point}-{context.stage} hook failed: {exc}",
                hint="Fix the hook or remove it from the crate overrides.",
                context={
                    "crate": context.crate.crate_name,
                    "version": context.crate.version,
                    "stage": context.stage.value,
                    "hook": getattr(hook, "__name__", repr(hook)),
                },
            ) from exc
        if result is not None:
            context = result
    return context
