"""Build report export and reproducibility verification."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import cbor2

from cratebuild.models import CrateId, ResolvedDependency

MismatchReason = Literal["missing_actual", "unexpected_actual", "value_mismatch"]


@dataclass(frozen=True, slots=True)
class ReportMismatch:
    key: str
    reason: MismatchReason
    expected: str | None
    actual: str | None
    hint: str


@dataclass(frozen=True, slots=True)
class VerificationResult:
    ok: bool
    mismatches: tuple[ReportMismatch, ...] = ()


@dataclass(frozen=True, slots=True)
class BuildReport:
    """Metadata tokens and output digests for every crate of a graph build.

    Keys look like ``alpha-1.0.0:metadata`` or ``alpha-1.0.0:lib/lib/libalpha-<token>.rlib``.
    """

    values: dict[str, str] = field(default_factory=dict)
    schema_version: int = 1

    @classmethod
    def from_built(cls, built: Mapping[CrateId, ResolvedDependency]) -> BuildReport:
        values: dict[str, str] = {}
        for crate_id, resolved in built.items():
            artifact = resolved.artifact
            values[f"{crate_id}:metadata"] = artifact.metadata
            for path in (*artifact.library_paths(), *artifact.binary_paths()):
                relative = path.relative_to(artifact.root).as_posix()
                values[f"{crate_id}:{relative}"] = hashlib.sha256(path.read_bytes()).hexdigest()
        return cls(values=values)

    @classmethod
    def from_json(cls, raw: str) -> BuildReport:
        payload = json.loads(raw)
        return cls(
            values={str(k): str(v) for k, v in payload.get("values", {}).items()},
            schema_version=int(payload.get("schema_version", 1)),
        )

    def to_json(self, path: str | Path | None = None) -> str:
        encoded = json.dumps(self._payload(), indent=2, sort_keys=True) + "\n"
        if path is not None:
            Path(path).write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        encoded = cbor2.dumps(self._payload(), canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    def verify(self, expected: Mapping[str, str]) -> VerificationResult:
        mismatches: list[ReportMismatch] = []
        for key, expected_value in sorted(expected.items()):
            if key not in self.values:
                mismatches.append(
                    ReportMismatch(
                        key=key,
                        reason="missing_actual",
                        expected=expected_value,
                        actual=None,
                        hint="The build did not produce this output.",
                    ),
                )
                continue
            actual_value = self.values[key]
            if actual_value != expected_value:
                mismatches.append(
                    ReportMismatch(
                        key=key,
                        reason="value_mismatch",
                        expected=expected_value,
                        actual=actual_value,
                        hint="Compare compiler versions, features and dependency tokens.",
                    ),
                )

        for key, actual_value in sorted(self.values.items()):
            if key in expected:
                continue
            mismatches.append(
                ReportMismatch(
                    key=key,
                    reason="unexpected_actual",
                    expected=None,
                    actual=actual_value,
                    hint="Expected report does not include this output.",
                ),
            )

        return VerificationResult(ok=not mismatches, mismatches=tuple(mismatches))

    def _payload(self) -> dict[str, object]:
        return {
            "schema_version": self.schema_version,
            "values": dict(sorted(self.values.items())),
        }
