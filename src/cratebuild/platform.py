"""Host platform facts used for artifact naming and build-script environments."""

from __future__ import annotations

import platform as _platform
import sys
from dataclasses import dataclass

SHARED_LIBRARY_EXTENSIONS: dict[str, str] = {
    "darwin": ".dylib",
    "windows": ".dll",
}
STATIC_LIBRARY_EXTENSION = ".rlib"


@dataclass(frozen=True, slots=True)
class HostPlatform:
    kernel: str
    machine: str = "x86_64"

    @classmethod
    def current(cls) -> HostPlatform:
        if sys.platform == "darwin":
            kernel = "darwin"
        elif sys.platform == "win32":
            kernel = "windows"
        else:
            kernel = _platform.system().lower() or "linux"
        return cls(kernel=kernel, machine=_platform.machine() or "x86_64")

    @property
    def target_os(self) -> str:
        """Value of ``cfg(target_os)``; rustc calls the darwin kernel ``macos``."""
        return "macos" if self.kernel == "darwin" else self.kernel

    @property
    def shared_library_extension(self) -> str:
        return SHARED_LIBRARY_EXTENSIONS.get(self.kernel, ".so")

    @property
    def triple(self) -> str:
        if self.kernel == "darwin":
            return f"{self.machine}-apple-darwin"
        if self.kernel == "windows":
            return f"{self.machine}-pc-windows-msvc"
        return f"{self.machine}-unknown-{self.kernel}-gnu"


def target_os(host: HostPlatform | None = None) -> str:
    return (host or HostPlatform.current()).target_os


def shared_library_extension(host: HostPlatform | None = None) -> str:
    return (host or HostPlatform.current()).shared_library_extension
