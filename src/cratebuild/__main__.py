"""CLI for building a resolved crate graph.

Usage:
    python -m cratebuild order graph.json
    python -m cratebuild build graph.json --store ./store
    python -m cratebuild build graph.json --report report.json --expect golden.json
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path

from cratebuild.errors import CrateBuildError, ReproducibilityError
from cratebuild.graph_io import GraphInput, read_crate_graph
from cratebuild.observability import StructuredLogger
from cratebuild.pipeline import CrateBuilder
from cratebuild.report import BuildReport
from cratebuild.store import ArtifactStore


def cmd_order(args: argparse.Namespace) -> None:
    graph_input = read_crate_graph(args.graph)
    for crate_id in graph_input.graph.topological_order(graph_input.roots):
        print(crate_id)


def cmd_build(args: argparse.Namespace) -> None:
    graph_input = _with_cli_options(read_crate_graph(args.graph), args)
    logger = StructuredLogger()
    builder = CrateBuilder(
        store=ArtifactStore(args.store),
        options=graph_input.options,
        overrides=(graph_input.overrides,),
        logger=logger,
    )
    try:
        built = graph_input.graph.build_all(builder, graph_input.roots)
    finally:
        if args.log_json:
            logger.to_json_lines(args.log_json)
    for crate_id, resolved in built.items():
        print(f"{crate_id} {resolved.artifact.root}")

    report = BuildReport.from_built(built)
    if args.report:
        if args.report.suffix == ".cbor":
            report.to_cbor(args.report)
        else:
            report.to_json(args.report)
    if args.expect:
        expected = BuildReport.from_json(args.expect.read_text(encoding="utf-8"))
        result = report.verify(expected.values)
        if not result.ok:
            raise ReproducibilityError(
                "Build outputs differ from the expected report.",
                hint="Compare compiler versions, features and dependency tokens.",
                context={
                    "operation": "verify_report",
                    "mismatches": ", ".join(
                        f"{item.key} ({item.reason})" for item in result.mismatches
                    ),
                },
            )


def _with_cli_options(graph_input: GraphInput, args: argparse.Namespace) -> GraphInput:
    options = graph_input.options
    if args.debug:
        options = replace(options, release=False)
    if args.quiet:
        options = replace(options, verbose=False)
    if args.color:
        options = replace(options, colors=args.color)
    if args.features:
        options = replace(options, features=(*options.features, *args.features))
    return replace(graph_input, options=options)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="cratebuild", description="Per-crate Rust builder")
    sub = parser.add_subparsers(dest="command", required=True)

    order_p = sub.add_parser("order", help="Print crates in build order")
    order_p.add_argument("graph", type=Path, help="Resolved crate graph (JSON)")

    build_p = sub.add_parser("build", help="Build every crate in the graph")
    build_p.add_argument("graph", type=Path, help="Resolved crate graph (JSON)")
    build_p.add_argument("--store", type=Path, default=Path("store"), help="Artifact store root")
    build_p.add_argument("--debug", action="store_true", help="Build with debuginfo")
    build_p.add_argument("--quiet", action="store_true", help="Do not record compiler commands")
    build_p.add_argument("--color", choices=("always", "never", "auto"), help="rustc color mode")
    build_p.add_argument(
        "--features", nargs="*", default=[], help="Features enabled for every crate"
    )
    build_p.add_argument("--log-json", type=Path, help="Write structured logs as JSON lines")
    build_p.add_argument("--report", type=Path, help="Write a build report (.json or .cbor)")
    build_p.add_argument("--expect", type=Path, help="Verify outputs against a JSON report")

    args = parser.parse_args(argv)
    try:
        if args.command == "order":
            cmd_order(args)
        elif args.command == "build":
            cmd_build(args)
    except CrateBuildError as exc:
        print(json.dumps(exc.to_dict(), indent=2, sort_keys=True), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
