"""Author-facing workflow steps.

A workflow is an ordered list of `StepSpec`. Each step is one node of the
state machine; its kind is never stored, it is inferred by `classify_step`
from which fields are populated.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeAlias


logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    TASK = "Task"
    CHOICE = "Choice"
    WAIT = "Wait"
    SUCCEED = "Succeed"
    FAIL = "Fail"
    PARALLEL = "Parallel"
    MAP = "Map"


# Kinds that carry a Next/End transition.
TRANSITION_KINDS: frozenset[StepKind] = frozenset(
    {StepKind.TASK, StepKind.WAIT, StepKind.PARALLEL, StepKind.MAP}
)


class StepSpecError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class StepError:
    name: str | None = None
    cause: str | None = None


@dataclass(frozen=True, slots=True)
class ParallelSpec:
    """Parallel fan-out: every entry of `states` is one branch."""

    states: list[Branch | StepSpec]
    result_path: str | None = None
    result_selector: Any = None
    retry: Any = None
    catch: Any = None


@dataclass(frozen=True, slots=True)
class MapSpec:
    """Iteration: `states` is the single iteration body."""

    states: Branch | StepSpec | None
    input_path: str | None = None
    items_path: str | None = None
    max_concurrency: int | None = None
    result_path: str | None = None
    result_selector: Any = None
    retry: Any = None
    catch: Any = None


@dataclass(frozen=True, slots=True)
class StepSpec:
    """One workflow node.

    `activity_ref` is either an identifier string or an awaitable resolving to
    one. Once a tree went through the resolver it only holds strings.
    """

    name: str | None = None
    activity_ref: Any = None
    choices: list[Any] | None = None
    default: str | None = None
    wait: Any = None
    wait_seconds_path: str | None = None
    wait_timestamp_path: str | None = None
    succeed: bool | None = None
    error: StepError | None = None
    parallel: ParallelSpec | None = None
    map: MapSpec | None = None
    next: str | None = None
    end: bool | None = None

    @staticmethod
    def from_json(obj: Mapping[str, Any], *, strict: bool = True) -> StepSpec:
        """Build a step tree from an author-friendly mapping.

        Keys follow the camelCase names of the definition language
        (`activityRef`, `waitSecondsPath`, ...); snake_case spellings and the
        legacy `activityArn` key are accepted too.

        With `strict=False` malformed parts are read leniently instead of
        raising. A truthy non-mapping `error` is a failure without name or
        cause. Malformed `parallel`, `map` and `choices` values count as absent.
        Branch entries that are not steps are skipped.
        """

        if not isinstance(obj, Mapping):
            raise StepSpecError(f"A step must be a mapping, got {type(obj).__name__}")
        name = obj.get("name")

        error_raw = _get(obj, "error")
        error: StepError | None = None
        if isinstance(error_raw, Mapping):
            error = StepError(name=error_raw.get("name"), cause=error_raw.get("cause"))
        elif error_raw is not None:
            if strict:
                raise StepSpecError(f"Step {name!r}: 'error' must be a mapping")
            if error_raw:
                error = StepError()

        parallel_raw = _block(obj, "parallel", strict=strict)
        parallel: ParallelSpec | None = None
        if parallel_raw is not None:
            branches = _get(parallel_raw, "states") or []
            if isinstance(branches, Mapping):
                branches = [branches]
            if not _is_list(branches):
                if strict:
                    raise StepSpecError(f"Step {name!r}: 'parallel.states' must be a list")
                branches = []
            states: list[Branch | StepSpec] = []
            for entry in branches:
                branch = _branch_from_json(entry, strict=strict)
                if branch is not None:
                    states.append(branch)
            parallel = ParallelSpec(
                states=states,
                result_path=_get(parallel_raw, "resultPath", "result_path"),
                result_selector=_get(parallel_raw, "resultSelector", "result_selector"),
                retry=_get(parallel_raw, "retry"),
                catch=_get(parallel_raw, "catch"),
            )

        map_raw = _block(obj, "map", strict=strict)
        map_spec: MapSpec | None = None
        if map_raw is not None:
            body = _get(map_raw, "states")
            map_spec = MapSpec(
                states=_branch_from_json(body, strict=strict) if body is not None else None,
                input_path=_get(map_raw, "inputPath", "input_path"),
                items_path=_get(map_raw, "itemsPath", "items_path"),
                max_concurrency=_get(map_raw, "maxConcurrency", "max_concurrency"),
                result_path=_get(map_raw, "resultPath", "result_path"),
                result_selector=_get(map_raw, "resultSelector", "result_selector"),
                retry=_get(map_raw, "retry"),
                catch=_get(map_raw, "catch"),
            )

        choices = _get(obj, "choices")
        if choices is not None and not _is_list(choices):
            if strict:
                raise StepSpecError(f"Step {name!r}: 'choices' must be a list")
            choices = None

        return StepSpec(
            name=name,
            activity_ref=_get(obj, "activityRef", "activity_ref", "activityArn"),
            choices=list(choices) if choices is not None else None,
            default=_get(obj, "default"),
            wait=_get(obj, "wait"),
            wait_seconds_path=_get(obj, "waitSecondsPath", "wait_seconds_path"),
            wait_timestamp_path=_get(obj, "waitTimestampPath", "wait_timestamp_path"),
            succeed=_get(obj, "succeed"),
            error=error,
            parallel=parallel,
            map=map_spec,
            next=_get(obj, "next"),
            end=_get(obj, "end"),
        )


Branch: TypeAlias = list[StepSpec]


def _get(obj: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in obj:
            return obj[key]
    return None


def _block(obj: Mapping[str, Any], key: str, *, strict: bool) -> Mapping[str, Any] | None:
    raw = _get(obj, key)
    if raw is None or isinstance(raw, Mapping):
        return raw
    if strict:
        raise StepSpecError(f"Step {obj.get('name')!r}: '{key}' must be a mapping")
    logger.debug("Ignoring malformed block", extra={"step": obj.get("name"), "block": key})
    return None


def _is_list(raw: Any) -> bool:
    return isinstance(raw, Sequence) and not isinstance(raw, str)


def _branch_from_json(raw: Any, *, strict: bool) -> Branch | None:
    if isinstance(raw, (Mapping, StepSpec)):
        raw = [raw]
    if not _is_list(raw):
        if strict:
            raise StepSpecError(f"A branch must be a list of steps, got {type(raw).__name__}")
        return None
    return coerce_steps(raw, strict=strict)


def coerce_steps(
    steps: Sequence[StepSpec | Mapping[str, Any]] | None, *, strict: bool = False
) -> list[StepSpec]:
    """Normalize a mixed list of `StepSpec` and mappings into `StepSpec`.

    Lenient by default: entries that are neither are skipped. Pass
    `strict=True` to validate author input instead.
    """

    out: list[StepSpec] = []
    for step in steps or []:
        if isinstance(step, StepSpec):
            out.append(step)
        elif strict or isinstance(step, Mapping):
            out.append(StepSpec.from_json(step, strict=strict))
        else:
            logger.debug("Skipping entry that is not a step", extra={"type": type(step).__name__})
    return out


def as_branch(entry: Branch | StepSpec | Mapping[str, Any]) -> Branch:
    """A bare step in a branch position is a one-element branch."""

    if isinstance(entry, (StepSpec, Mapping)):
        return coerce_steps([entry])
    if not _is_list(entry):
        return []
    return coerce_steps(entry)


def is_deferred(value: object) -> bool:
    return inspect.isawaitable(value)


def _present(value: object) -> bool:
    return value is not None and value != ""


def classify_step(step: StepSpec) -> StepKind | None:
    """Return the kind of a step, first match wins.

    Order: activity reference, choices, wait, succeed, error, parallel, map.
    A step matching none of them has no kind and is never emitted.
    """

    ref = step.activity_ref
    if (isinstance(ref, str) and ref) or is_deferred(ref):
        return StepKind.TASK
    if step.choices:
        return StepKind.CHOICE
    if (
        _present(step.wait)
        or _present(step.wait_seconds_path)
        or _present(step.wait_timestamp_path)
    ):
        return StepKind.WAIT
    if step.succeed is True:
        return StepKind.SUCCEED
    if step.error is not None:
        return StepKind.FAIL
    if step.parallel is not None and step.parallel.states:
        return StepKind.PARALLEL
    if step.map is not None and step.map.states is not None:
        return StepKind.MAP
    return None
