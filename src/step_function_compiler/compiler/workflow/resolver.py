"""Resolve deferred activity references in a step tree.

Activity references can be awaitables whose value is only known once the
resource they point at exists. The resolver awaits them, producing a fresh
tree that the formatter can consume synchronously, and reports whether any
step invokes a compute function so the caller can grant invoke permissions.

The resolver is permissive. Unnamed steps and entries that are not steps are
skipped, unusable references are dropped. It never rejects a workflow.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any

from .steps import MapSpec, ParallelSpec, StepSpec, as_branch, coerce_steps, is_deferred

logger = logging.getLogger(__name__)

DEFAULT_COMPUTE_FUNCTION_PATTERN = r"^arn:aws:lambda:"


@dataclass(frozen=True, slots=True)
class ResolutionResult:
    uses_compute_function: bool
    resolved: list[StepSpec]


def compile_compute_pattern(pattern: str | re.Pattern[str] | None) -> re.Pattern[str]:
    if pattern is None:
        pattern = DEFAULT_COMPUTE_FUNCTION_PATTERN
    if isinstance(pattern, re.Pattern):
        return pattern
    return re.compile(pattern, re.IGNORECASE)


def is_compute_function(identifier: str | None, pattern: re.Pattern[str]) -> bool:
    return bool(pattern.search((identifier or "").strip()))


async def resolve_activity_refs(
    steps: Sequence[StepSpec | Mapping[str, Any]] | None,
    *,
    compute_pattern: str | re.Pattern[str] | None = None,
) -> ResolutionResult:
    """Await every deferred `activity_ref` in `steps`, at any nesting depth.

    Sibling steps are resolved concurrently; the output keeps input order.
    A deferred value shared by several steps is awaited once. Exceptions
    raised by a deferred value propagate unchanged.
    """

    resolution = _Resolution(compile_compute_pattern(compute_pattern))
    return await resolution.resolve_list(coerce_steps(steps), path="states")


class _Resolution:
    """State of one `resolve_activity_refs` call."""

    def __init__(self, pattern: re.Pattern[str]) -> None:
        self.pattern = pattern
        # Keyed by id(); the input tree keeps every deferred value alive.
        self._pending: dict[int, asyncio.Future[Any]] = {}

    def _once(self, ref: Any) -> asyncio.Future[Any]:
        future = self._pending.get(id(ref))
        if future is None:
            future = asyncio.ensure_future(ref)
            self._pending[id(ref)] = future
        return future

    async def resolve_list(self, steps: list[StepSpec], *, path: str) -> ResolutionResult:
        named = [(i, step) for i, step in enumerate(steps) if step.name]
        if len(named) != len(steps):
            logger.debug(
                "Skipping unnamed steps",
                extra={"path": path, "count": len(steps) - len(named)},
            )

        results = await asyncio.gather(
            *(self.resolve_step(step, path=f"{path}[{i}]") for i, step in named)
        )
        return ResolutionResult(
            uses_compute_function=any(flag for _, flag in results),
            resolved=[step for step, _ in results],
        )

    async def resolve_step(self, step: StepSpec, *, path: str) -> tuple[StepSpec, bool]:
        ref = step.activity_ref

        if ref is None or ref == "":
            return await self.resolve_nested(step, path=path)

        if isinstance(ref, str):
            return step, is_compute_function(ref, self.pattern)

        if is_deferred(ref):
            value = await self._once(ref)
            if isinstance(value, str) and value:
                logger.debug("Resolved activity reference", extra={"step": step.name, "path": path})
                return replace(step, activity_ref=value), is_compute_function(value, self.pattern)
            logger.debug(
                "Deferred activity reference resolved to no activity",
                extra={"step": step.name, "path": path},
            )
        else:
            logger.warning(
                "Dropping unsupported activity reference",
                extra={"step": step.name, "path": path, "type": type(ref).__name__},
            )
        return await self.resolve_nested(replace(step, activity_ref=None), path=path)

    async def resolve_nested(self, step: StepSpec, *, path: str) -> tuple[StepSpec, bool]:
        uses_compute_function = False
        parallel: ParallelSpec | None = step.parallel
        map_spec: MapSpec | None = step.map

        if parallel is not None and parallel.states:
            branches = await asyncio.gather(
                *(
                    self.resolve_list(as_branch(entry), path=f"{path}.parallel.states[{i}]")
                    for i, entry in enumerate(parallel.states)
                )
            )
            uses_compute_function = any(b.uses_compute_function for b in branches)
            parallel = replace(parallel, states=[b.resolved for b in branches])

        if map_spec is not None and map_spec.states is not None:
            body = await self.resolve_list(as_branch(map_spec.states), path=f"{path}.map.states")
            uses_compute_function = uses_compute_function or body.uses_compute_function
            map_spec = replace(map_spec, states=body.resolved)

        if parallel is step.parallel and map_spec is step.map:
            return step, False
        return replace(step, parallel=parallel, map=map_spec), uses_compute_function
