from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

from aws_cdk import App
from dotenv import load_dotenv

from src.composition import compose
from src.manifest.errors import StackDefinitionError
from src.stacks.stack_builder import StackBuilder

load_dotenv(".env")


def manifests_as_dicts(builders: dict[str, StackBuilder], resolve_tokens: bool = True) -> list[dict[str, Any]]:
    """Export the manifest of every built stack, in build order."""
    records = []
    for builder in builders.values():
        if builder.manifest is None:
            continue
        resolver = builder.stack.resolve if resolve_tokens else None
        records.append(dict(builder.manifest.to_dict(resolver)))
    return records


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Declare every stack for an environment and print the manifests as JSON")
    parser.add_argument("--env", default=os.environ.get("ENV_NAME", "local"))
    parser.add_argument("--stack", required=False, help="Only print this stack")
    parser.add_argument(
        "--raw-tokens", action="store_true", help="Print CDK tokens instead of resolving them")

    args = parser.parse_args(argv)

    try:
        builders = compose(App(), args.env)
    except StackDefinitionError as exc:
        print(f"Failed to compose stacks for '{args.env}': {exc}", file=sys.stderr)
        return 1

    records = manifests_as_dicts(builders, resolve_tokens=not args.raw_tokens)
    if args.stack:
        records = [r for r in records if r["stack"] == args.stack]
        if not records:
            print(f"No stack named '{args.stack}'", file=sys.stderr)
            return 1

    print(json.dumps(records, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
