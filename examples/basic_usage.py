#!/usr/bin/env python3
"""Programmatic compilation example.

This demonstrates using the compiler components directly:

* describe a workflow with nested parallel/map steps
* let a deferred activity reference resolve while compiling
* print the definition and the policies the execution role needs

The function ARN is passed as an argument to mimic a value only known once the
function has been provisioned.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from step_function_compiler.compiler.config import CompilerSettings
from step_function_compiler.compiler.logging import configure_logging
from step_function_compiler.compiler.workflow.state_machine import compile_state_machine


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compile a demo workflow (programmatic example).")
    parser.add_argument("--name", default="thumbnails", help="State machine name")
    parser.add_argument(
        "--function-arn",
        default="arn:aws:lambda:us-east-1:123456789012:function:resize",
        help="ARN of the function resizing one image",
    )
    return parser.parse_args(argv)


async def _function_arn(arn: str) -> str:
    await asyncio.sleep(0)
    return arn


async def _compile(args: argparse.Namespace, settings: CompilerSettings) -> int:
    states = [
        {
            "name": "check",
            "choices": [{"Variable": "$.count", "NumericGreaterThan": 0, "Next": "resize-all"}],
            "default": "nothing-to-do",
        },
        {
            "name": "resize-all",
            "map": {
                "states": [{"name": "resize", "activityRef": _function_arn(args.function_arn)}],
                "itemsPath": "$.images",
                "maxConcurrency": 5,
            },
            "next": "done",
        },
        {"name": "nothing-to-do", "wait": 1},
        {"name": "done", "succeed": True},
    ]

    plan = await compile_state_machine(
        name=args.name,
        description="Resize every uploaded image",
        states=states,
        cloud_watch_level="error",
        settings=settings,
    )

    print(plan.definition)
    for policy in plan.policies:
        print(f"Policy: {policy.name} {policy.arn or '(inline)'}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = CompilerSettings()
    configure_logging(settings.log_level)

    return asyncio.run(_compile(args, settings))


if __name__ == "__main__":
    raise SystemExit(main())
