"""toolsmith command line.

Usage:
    toolsmith validate spec.json          # every validation problem at once
    toolsmith compile spec.json           # strict compile, prints hash + summary
    toolsmith order spec.json WORKFLOW    # topological node order
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import structlog

from toolsmith.core.errors import SpecCompileError
from toolsmith.logging import configure_logging
from toolsmith.spec.compiler import compile_spec, validate_spec
from toolsmith.spec.graph import topological_order
from toolsmith.spec.models import ToolSpecification

logger = structlog.get_logger()


def _load(path: str) -> dict[str, Any]:
    with open(Path(path)) as f:
        return json.load(f)


def cmd_validate(args: argparse.Namespace) -> int:
    report = validate_spec(_load(args.spec))
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.valid else 1


def cmd_compile(args: argparse.Namespace) -> int:
    artifact = compile_spec(_load(args.spec))
    if args.full:
        print(json.dumps(artifact.to_dict(), indent=2))
        return 0
    print(f"spec_hash:   {artifact.spec_hash}")
    print(f"compiled_at: {artifact.compiled_at.isoformat()}")
    for label, items in (
        ("actions", artifact.actions),
        ("workflows", artifact.workflows),
        ("triggers", artifact.triggers),
        ("views", artifact.views),
        ("reducers", artifact.reducers),
        ("integrations", artifact.integrations),
    ):
        print(f"{label + ':':<13}{len(items)} {', '.join(items)}")
    return 0


def cmd_order(args: argparse.Namespace) -> int:
    spec = ToolSpecification.parse(_load(args.spec))
    workflow = spec.find_workflow(args.workflow)
    if workflow is None:
        print(f"workflow not found: {args.workflow}", file=sys.stderr)
        return 1
    for node in topological_order(workflow):
        print(f"{node.id}\t{node.type}\t{node.action_id or ''}".rstrip())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="toolsmith", description="Compile and inspect tool specifications")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("validate", help="Report every validation problem in a spec")
    p.add_argument("spec")
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("compile", help="Compile a spec strictly")
    p.add_argument("spec")
    p.add_argument("--full", action="store_true", help="Print the whole compiled artifact as JSON")
    p.set_defaults(func=cmd_compile)

    p = sub.add_parser("order", help="Print a workflow's execution order")
    p.add_argument("spec")
    p.add_argument("workflow")
    p.set_defaults(func=cmd_order)
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except SpecCompileError as e:
        print(f"error [{e.code}] {e.path}: {e}", file=sys.stderr)
        return 2
    except (OSError, json.JSONDecodeError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
