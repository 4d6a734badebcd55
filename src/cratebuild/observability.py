"""Structured logging and observability helpers."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class StructuredLogger:
    records: list[dict[str, Any]] = field(default_factory=list)

    def log(
        self,
        *,
        operation: str,
        crate: str | None,
        version: str | None,
        stage: str | None,
        message: str,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "level": level,
            "operation": operation,
            "crate": crate,
            "version": version,
            "stage": stage,
            "message": message,
        }
        if extra is not None:
            record["extra"] = extra
        self.records.append(record)

    def build_heading(self, *, crate: str, version: str, source: str, name: str) -> None:
        self.log(
            operation="build_heading",
            crate=crate,
            version=version,
            stage="build",
            message=f"Building {source} ({name})",
        )

    def noisily(
        self,
        *,
        crate: str,
        version: str,
        stage: str,
        argv: Sequence[str],
        verbose: bool,
    ) -> None:
        """Record the exact command line when running verbosely."""
        if not verbose:
            return
        self.log(
            operation="command",
            crate=crate,
            version=version,
            stage=stage,
            message=" ".join(argv),
            level="debug",
            extra={"argv": list(argv)},
        )

    def records_for_crate(self, crate: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("crate") == crate]

    def to_json_lines(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        lines = [json.dumps(record, sort_keys=True) for record in self.records]
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return output_path
