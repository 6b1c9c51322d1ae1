"""Unit tests for deferred activity reference resolution."""

from __future__ import annotations

import asyncio
import logging

import pytest

from step_function_compiler.compiler.workflow.formatter import format_states
from step_function_compiler.compiler.workflow.resolver import (
    compile_compute_pattern,
    is_compute_function,
    resolve_activity_refs,
)
from step_function_compiler.compiler.workflow.steps import (
    StepError,
    StepKind,
    StepSpec,
    classify_step,
)

LAMBDA_ARN = "arn:aws:lambda:us-east-1:123456789012:function:my-func"
ACTIVITY_ARN = "arn:aws:states:us-east-1:123456789012:activity:review"


def _resolve(steps, **kwargs):
    return asyncio.run(resolve_activity_refs(steps, **kwargs))


def test_literal_references_are_copied_and_flagged() -> None:
    result = _resolve(
        [
            {"name": "review", "activityRef": ACTIVITY_ARN},
            {"name": "invoke", "activityRef": LAMBDA_ARN},
        ]
    )

    assert result.uses_compute_function is True
    assert [s.activity_ref for s in result.resolved] == [ACTIVITY_ARN, LAMBDA_ARN]


def test_non_compute_references_do_not_set_flag() -> None:
    result = _resolve([{"name": "review", "activityRef": ACTIVITY_ARN}])
    assert result.uses_compute_function is False


def test_compute_pattern_is_case_insensitive_and_ignores_padding() -> None:
    pattern = compile_compute_pattern(None)

    assert is_compute_function("  ARN:AWS:LAMBDA:us-east-1:1:function:f ", pattern)
    assert not is_compute_function("arn:aws:states:us-east-1:1:activity:a", pattern)
    assert not is_compute_function(None, pattern)


def test_deferred_references_are_awaited_in_input_order(deferred) -> None:
    result = _resolve(
        [
            {"name": "slow", "activityRef": deferred(ACTIVITY_ARN, delay=0.05)},
            {"name": "fast", "activityRef": deferred(LAMBDA_ARN)},
            {"name": "done", "succeed": True},
        ]
    )

    assert [s.name for s in result.resolved] == ["slow", "fast", "done"]
    assert result.resolved[0].activity_ref == ACTIVITY_ARN
    assert result.resolved[1].activity_ref == LAMBDA_ARN
    assert result.uses_compute_function is True


@pytest.mark.parametrize("value", ["", None, 42])
def test_deferred_without_a_usable_value_drops_the_field(deferred, value: object) -> None:
    result = _resolve([{"name": "maybe", "activityRef": deferred(value)}])

    assert len(result.resolved) == 1
    assert result.resolved[0].name == "maybe"
    assert result.resolved[0].activity_ref is None
    assert result.uses_compute_function is False


def test_unsupported_literal_reference_is_dropped_with_warning(
    caplog: pytest.LogCaptureFixture,
) -> None:
    with caplog.at_level(logging.WARNING):
        result = _resolve([StepSpec(name="odd", activity_ref=12345)])

    assert result.resolved[0].activity_ref is None
    assert "Dropping unsupported activity reference" in caplog.text


def test_unnamed_steps_are_skipped() -> None:
    result = _resolve(
        [
            {"activityRef": LAMBDA_ARN},
            {"name": "kept", "activityRef": ACTIVITY_ARN},
        ]
    )

    assert [s.name for s in result.resolved] == ["kept"]
    assert result.uses_compute_function is False


def test_empty_input_resolves_to_nothing() -> None:
    for steps in (None, []):
        result = _resolve(steps)
        assert result.resolved == []
        assert result.uses_compute_function is False


def test_flag_propagates_from_three_levels_deep(deferred) -> None:
    steps = [
        {"name": "start", "activityRef": ACTIVITY_ARN},
        {
            "name": "fan-out",
            "parallel": {
                "states": [
                    [{"name": "left", "activityRef": ACTIVITY_ARN}],
                    [
                        {
                            "name": "each",
                            "map": {
                                "states": [
                                    {"name": "work", "activityRef": deferred(LAMBDA_ARN)},
                                ]
                            },
                        }
                    ],
                ]
            },
        },
    ]

    result = _resolve(steps)

    assert result.uses_compute_function is True
    fan_out = result.resolved[1]
    assert fan_out.parallel is not None
    each = fan_out.parallel.states[1][0]
    assert each.map is not None
    assert each.map.states[0].activity_ref == LAMBDA_ARN


def test_map_body_with_custom_compute_pattern(deferred) -> None:
    def workflow() -> list[dict[str, object]]:
        return [
            {
                "name": "each",
                "map": {
                    "states": [{"name": "call", "activityRef": deferred("fn:lambda:my-func")}]
                },
            }
        ]

    default_pattern = _resolve(workflow())
    assert default_pattern.uses_compute_function is False

    custom = _resolve(workflow(), compute_pattern=r"^fn:lambda:")
    assert custom.uses_compute_function is True
    assert custom.resolved[0].map.states[0].activity_ref == "fn:lambda:my-func"


def test_bare_step_in_parallel_is_a_singleton_branch() -> None:
    result = _resolve(
        [
            StepSpec.from_json(
                {
                    "name": "fan-out",
                    "parallel": {
                        "states": [
                            {"name": "solo", "activityRef": LAMBDA_ARN},
                            [{"name": "a", "activityRef": ACTIVITY_ARN}],
                        ]
                    },
                }
            )
        ]
    )

    fan_out = result.resolved[0]
    assert fan_out.parallel is not None
    assert [[s.name for s in b] for b in fan_out.parallel.states] == [["solo"], ["a"]]
    assert result.uses_compute_function is True


def test_input_tree_is_not_mutated(deferred) -> None:
    ref = deferred(LAMBDA_ARN)
    original = StepSpec.from_json(
        {
            "name": "each",
            "map": {"states": [{"name": "call", "activityRef": ref}]},
            "next": "done",
        }
    )
    body_before = list(original.map.states)

    result = _resolve([original])

    assert original.map.states == body_before
    assert original.map.states[0].activity_ref is ref
    assert result.resolved[0] is not original
    assert result.resolved[0].next == "done"


def test_steps_without_references_pass_through_unchanged() -> None:
    step = StepSpec(name="pause", wait=10, next="go")
    result = _resolve([step])

    assert result.resolved == [step]


def test_errors_from_deferred_values_propagate() -> None:
    async def broken() -> str:
        raise RuntimeError("upstream failed")

    with pytest.raises(RuntimeError, match="upstream failed"):
        _resolve([{"name": "t", "activityRef": broken()}])


@pytest.mark.parametrize(
    ("steps", "expected"),
    [
        ([None, {"name": "kept", "succeed": True}], [StepSpec(name="kept", succeed=True)]),
        ([{"name": "a", "error": "boom"}], [StepSpec(name="a", error=StepError())]),
        (
            [{"parallel": 5}, {"name": "kept", "parallel": "x", "succeed": True}],
            [StepSpec(name="kept", succeed=True)],
        ),
    ],
)
def test_malformed_steps_are_read_leniently(steps: list, expected: list[StepSpec]) -> None:
    result = _resolve(steps)

    assert result.resolved == expected
    assert result.uses_compute_function is False


@pytest.mark.parametrize("dropped", ["deferred", "literal"])
def test_dropped_reference_still_resolves_nested_steps(deferred, dropped: str) -> None:
    ref = deferred("") if dropped == "deferred" else 12345
    steps = [
        StepSpec.from_json(
            {
                "name": "p",
                "activityRef": ref,
                "parallel": {"states": [[{"name": "x", "activityRef": deferred(LAMBDA_ARN)}]]},
            }
        )
    ]

    result = _resolve(steps)

    assert result.uses_compute_function is True
    p = result.resolved[0]
    assert p.activity_ref is None
    assert classify_step(p) is StepKind.PARALLEL
    assert p.parallel.states[0][0].activity_ref == LAMBDA_ARN

    document = format_states(result.resolved)
    assert document["p"]["Branches"][0]["States"]["x"]["Resource"] == LAMBDA_ARN


def test_shared_deferred_reference_is_awaited_once() -> None:
    calls = 0

    async def function_arn() -> str:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0)
        return LAMBDA_ARN

    async def run():
        shared = function_arn()
        return await resolve_activity_refs(
            [
                {"name": "first", "activityRef": shared},
                {
                    "name": "fan-out",
                    "parallel": {"states": [{"name": "second", "activityRef": shared}]},
                },
            ]
        )

    result = asyncio.run(run())

    assert calls == 1
    assert result.resolved[0].activity_ref == LAMBDA_ARN
    assert result.resolved[1].parallel.states[0][0].activity_ref == LAMBDA_ARN
    assert result.uses_compute_function is True


def test_shared_future_reference_resolves_for_every_step() -> None:
    async def run():
        shared = asyncio.get_running_loop().create_future()
        shared.set_result(ACTIVITY_ARN)
        return await resolve_activity_refs(
            [{"name": "a", "activityRef": shared}, {"name": "b", "activityRef": shared}]
        )

    result = asyncio.run(run())

    assert [s.activity_ref for s in result.resolved] == [ACTIVITY_ARN, ACTIVITY_ARN]
