"""Emit Amazon States Language state records from a resolved step tree.

`format_states` is pure: same input, same document. Transitions the author
left out are inferred from list order:

- `next` wins
- then `end: true`
- then the following sibling
- the last step of a list is terminal

Docs: https://docs.aws.amazon.com/step-functions/latest/dg/concepts-amazon-states-language.html
"""

from __future__ import annotations

import copy
import math
from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime
from typing import Any

from .steps import (
    TRANSITION_KINDS,
    Branch,
    StepKind,
    StepSpec,
    as_branch,
    classify_step,
    coerce_steps,
)

StateDocument = dict[str, dict[str, object]]


class FormatError(ValueError):
    """A step tree cannot be turned into a valid state document."""

    def __init__(
        self,
        message: str,
        *,
        path: str,
        step_name: str | None = None,
        branch_index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.step_name = step_name
        self.branch_index = branch_index


def format_states(
    steps: Sequence[StepSpec | Mapping[str, Any]] | None, *, path: str = "states"
) -> StateDocument:
    """Map each named step to its state record, in list order.

    Raises:
        FormatError: On the first wait value that is neither a duration nor an
            instant, or on a branch whose first step has no name.
    """

    states = coerce_steps(steps)
    document: StateDocument = {}
    for idx, step in enumerate(states):
        if not step.name:
            continue
        kind = classify_step(step)
        if kind is None:
            continue

        step_path = f"{path}[{idx}]"
        record: dict[str, object] = {"Type": kind.value}

        if kind is StepKind.TASK:
            record["Resource"] = step.activity_ref
        elif kind is StepKind.CHOICE:
            record["Choices"] = copy.deepcopy(step.choices)
            if step.default is not None:
                record["Default"] = step.default
        elif kind is StepKind.WAIT:
            record.update(_wait_fields(step, step_path))
        elif kind is StepKind.FAIL:
            assert step.error is not None
            if step.error.name:
                record["Error"] = step.error.name
            if step.error.cause:
                record["Cause"] = step.error.cause
        elif kind is StepKind.PARALLEL:
            assert step.parallel is not None
            record["Branches"] = [
                _format_branch(
                    entry,
                    branch_path=f"{step_path}.parallel.states[{i}]",
                    parent=step.name,
                    index=i,
                )
                for i, entry in enumerate(step.parallel.states)
            ]
            _copy_optional(
                record,
                ResultPath=step.parallel.result_path,
                ResultSelector=step.parallel.result_selector,
                Retry=step.parallel.retry,
                Catch=step.parallel.catch,
            )
        elif kind is StepKind.MAP:
            assert step.map is not None
            _copy_optional(
                record,
                InputPath=step.map.input_path,
                ItemsPath=step.map.items_path,
                MaxConcurrency=step.map.max_concurrency,
                ResultPath=step.map.result_path,
            )
            record["Iterator"] = _format_branch(
                step.map.states,
                branch_path=f"{step_path}.map.states",
                parent=step.name,
                index=0,
            )
            _copy_optional(
                record,
                ResultSelector=step.map.result_selector,
                Retry=step.map.retry,
                Catch=step.map.catch,
            )

        if kind in TRANSITION_KINDS:
            following = states[idx + 1].name if idx + 1 < len(states) else None
            if step.next:
                record["Next"] = step.next
            elif step.end is True:
                record["End"] = True
            elif following:
                record["Next"] = following
            else:
                record["End"] = True

        document[step.name] = record

    return document


def _format_branch(
    entry: Any, *, branch_path: str, parent: str, index: int
) -> dict[str, object]:
    branch: Branch = as_branch(entry) if entry is not None else []
    if not branch or not branch[0].name:
        raise FormatError(
            f"Missing required argument. '{branch_path}[0].name' is required "
            f"(branch {index} of step '{parent}').",
            path=f"{branch_path}[0].name",
            step_name=parent,
            branch_index=index,
        )
    return {"StartAt": branch[0].name, "States": format_states(branch, path=branch_path)}


def find_dangling_transitions(document: StateDocument, *, path: str = "States") -> list[str]:
    """List `Next`/`Default` targets missing from their sibling states.

    Branches and iterators are scoped: their targets must exist inside them.
    `format_states` never calls this, it is an opt-in check.
    """

    dangling: list[str] = []
    for name, record in document.items():
        for key in ("Next", "Default"):
            target = record.get(key)
            if isinstance(target, str) and target not in document:
                dangling.append(f"{path}.{name}.{key} -> {target}")

        nested: list[tuple[str, object]] = []
        branches = record.get("Branches")
        if isinstance(branches, list):
            nested.extend((f"{path}.{name}.Branches[{i}]", b) for i, b in enumerate(branches))
        if "Iterator" in record:
            nested.append((f"{path}.{name}.Iterator", record["Iterator"]))

        for nested_path, sub in nested:
            if not isinstance(sub, dict):
                continue
            states = sub.get("States")
            if isinstance(states, dict):
                if sub.get("StartAt") not in states:
                    dangling.append(f"{nested_path}.StartAt -> {sub.get('StartAt')}")
                dangling.extend(find_dangling_transitions(states, path=f"{nested_path}.States"))
    return dangling


def _copy_optional(record: dict[str, object], **fields: object) -> None:
    for key, value in fields.items():
        if value is not None:
            record[key] = copy.deepcopy(value)


def _wait_fields(step: StepSpec, step_path: str) -> dict[str, object]:
    if step.wait_timestamp_path:
        return {"TimestampPath": step.wait_timestamp_path}
    if step.wait_seconds_path:
        return {"SecondsPath": step.wait_seconds_path}

    value = step.wait
    if isinstance(value, date):
        return {"Timestamp": format_timestamp(value)}

    seconds = _as_seconds(value)
    if seconds is not None:
        return {"Seconds": seconds}

    if isinstance(value, str):
        timestamp = _parse_timestamp(value)
        if timestamp is not None:
            return {"Timestamp": format_timestamp(timestamp)}

    raise FormatError(
        f"Wrong argument exception. '{step_path}.wait' of step '{step.name}' must be a "
        f"number of seconds or a valid UTC date. Found {value!r} instead.",
        path=f"{step_path}.wait",
        step_name=step.name,
    )


def _as_seconds(value: object) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def _parse_timestamp(value: str) -> datetime | None:
    text = value.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def format_timestamp(value: date) -> str:
    """Render an instant as `YYYY-MM-DDTHH:MM:SS.mmmZ` in UTC.

    Naive datetimes and plain dates are taken as UTC.
    """

    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=UTC)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
