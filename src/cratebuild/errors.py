"""Typed build error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across pipeline stages."""

    CONFIGURATION = "E_CONFIGURATION"
    MISSING_ENTRY_POINT = "E_MISSING_ENTRY_POINT"
    COMPILER = "E_COMPILER"
    INSTALL = "E_INSTALL"
    EXTERN_COLLISION = "E_EXTERN_COLLISION"
    HOOK = "E_HOOK"
    FETCH = "E_FETCH"
    REPRODUCIBILITY = "E_REPRODUCIBILITY"
    BUILD_SCRIPT = "E_BUILD_SCRIPT"


class CrateBuildError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: dict[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ConfigurationError(CrateBuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CONFIGURATION, hint=hint, context=context)


class MissingEntryPointError(CrateBuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            message, code=ErrorCode.MISSING_ENTRY_POINT, hint=hint, context=context
        )


class CompilerInvocationError(CrateBuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.COMPILER, hint=hint, context=context)


class InstallError(CrateBuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.INSTALL, hint=hint, context=context)


class ExternCollisionError(CrateBuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.EXTERN_COLLISION, hint=hint, context=context)


class HookError(CrateBuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.HOOK, hint=hint, context=context)


class FetchError(CrateBuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.FETCH, hint=hint, context=context)


class ReproducibilityError(CrateBuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.REPRODUCIBILITY, hint=hint, context=context)


class BuildScriptError(CrateBuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.BUILD_SCRIPT, hint=hint, context=context)


class ExternCollisionWarning(UserWarning):
    """Emitted when two dependencies share an extern name and collisions are tolerated."""


__all__ = [
    "BuildScriptError",
    "CompilerInvocationError",
    "ConfigurationError",
    "CrateBuildError",
    "ErrorCode",
    "ExternCollisionError",
    "ExternCollisionWarning",
    "FetchError",
    "HookError",
    "InstallError",
    "MissingEntryPointError",
    "ReproducibilityError",
]
