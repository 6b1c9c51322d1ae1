"""CLI entrypoint for the workflow compiler.

Reads an author-friendly workflow description (JSON) and prints either the
state machine definition or the full provisioning plan.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from step_function_compiler import __version__
from step_function_compiler.compiler.config import CompilerSettings
from step_function_compiler.compiler.logging import configure_logging
from step_function_compiler.compiler.workflow.formatter import (
    FormatError,
    find_dangling_transitions,
    format_states,
)
from step_function_compiler.compiler.workflow.resolver import resolve_activity_refs
from step_function_compiler.compiler.workflow.state_machine import (
    StateMachineArgumentError,
    build_definition,
    compile_state_machine,
    serialize_definition,
)
from step_function_compiler.compiler.workflow.steps import StepSpec, StepSpecError, coerce_steps

logger = logging.getLogger(__name__)


class WorkflowFileError(ValueError):
    pass


def load_workflow_file(path: Path) -> tuple[list[StepSpec], str | None]:
    """Load steps (and an optional comment) from a JSON workflow file.

    The file holds either a list of steps, or an object with a `states` list
    and an optional `comment`/`description`. Steps are validated strictly, a
    malformed step raises `StepSpecError`.
    """

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise WorkflowFileError(f"Workflow file is not valid JSON: {path}: {e}") from e

    if isinstance(raw, list):
        return coerce_steps(raw, strict=True), None
    if isinstance(raw, dict) and isinstance(raw.get("states"), list):
        comment = raw.get("comment", raw.get("description"))
        steps = coerce_steps(raw["states"], strict=True)
        return steps, comment if isinstance(comment, str) else None
    raise WorkflowFileError(
        f"Workflow file must hold a list of steps or an object with 'states': {path}"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sfn-compiler",
        description="Compile workflow descriptions into Step Functions state machines",
    )
    parser.add_argument(
        "--version", action="version", version=f"step-function-compiler {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_cmd = subparsers.add_parser(
        "compile", help="Print the state machine definition for a workflow file"
    )
    compile_cmd.add_argument(
        "--input", "-i", dest="input", required=True, help="Path to the workflow JSON file"
    )
    compile_cmd.add_argument(
        "--comment",
        default=None,
        help="Definition comment (overrides the one in the workflow file)",
    )
    compile_cmd.add_argument(
        "--output",
        "-o",
        default=None,
        help="Write the definition to this file instead of stdout",
    )

    plan = subparsers.add_parser(
        "plan", help="Print the provisioning plan (role, policies, logging) as JSON"
    )
    plan.add_argument(
        "--input", "-i", dest="input", required=True, help="Path to the workflow JSON file"
    )
    plan.add_argument("--name", required=True, help="State machine name")
    plan.add_argument(
        "--type",
        dest="machine_type",
        default=None,
        choices=["standard", "express"],
        help="State machine type (defaults to SFN_DEFAULT_MACHINE_TYPE)",
    )
    plan.add_argument(
        "--cloud-watch-level",
        default="OFF",
        help="Execution log level: ALL | ERROR | FATAL | OFF",
    )
    plan.add_argument(
        "--retention-days",
        type=int,
        default=0,
        help="Log retention in days (0 means never expires)",
    )

    return parser


async def _compile_definition(
    steps: list[StepSpec], *, comment: str | None, settings: CompilerSettings
) -> str:
    resolution = await resolve_activity_refs(steps, compute_pattern=settings.compute_function_regex)
    if not resolution.resolved:
        raise WorkflowFileError("Workflow has no named steps")

    document = format_states(resolution.resolved)
    if settings.strict_transitions:
        dangling = find_dangling_transitions(document)
        if dangling:
            raise StateMachineArgumentError(
                f"Transitions to unknown states: {', '.join(dangling)}"
            )

    definition = build_definition(
        document, start_at=resolution.resolved[0].name or "", comment=comment
    )
    return serialize_definition(definition, indent=settings.definition_indent)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = CompilerSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        steps, file_comment = load_workflow_file(Path(args.input))

        if args.command == "compile":
            comment = args.comment if args.comment is not None else file_comment
            text = asyncio.run(_compile_definition(steps, comment=comment, settings=settings))
            if args.output:
                out = Path(args.output)
                out.parent.mkdir(parents=True, exist_ok=True)
                out.write_text(text + "\n", encoding="utf-8")
                logger.info("Definition written", extra={"path": str(out)})
            else:
                print(text)
            return 0

        if args.command == "plan":
            plan = asyncio.run(
                compile_state_machine(
                    name=args.name,
                    states=steps,
                    description=file_comment,
                    machine_type=args.machine_type,
                    cloud_watch_level=args.cloud_watch_level,
                    logs_retention_in_days=args.retention_days,
                    settings=settings,
                )
            )
            print(json.dumps(plan.model_dump(mode="json"), indent=2, ensure_ascii=False))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except (FileNotFoundError, WorkflowFileError) as e:
        logger.error(str(e))
        print(str(e), file=sys.stderr)
        return 2

    except FormatError as e:
        logger.warning(
            str(e), extra={"error": type(e).__name__, "step": e.step_name, "path": e.path}
        )
        print(str(e), file=sys.stderr)
        return 3

    except (StateMachineArgumentError, StepSpecError) as e:
        logger.warning(str(e), extra={"error": type(e).__name__})
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
