"""Wire a compiled workflow into a state machine provisioning plan.

The plan is plain data: the definition text plus the execution role, policy
attachments, log group and logging configuration a provisioning layer needs to
create the state machine. Nothing here talks to a cloud API.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from step_function_compiler.compiler.config import CompilerSettings

from .formatter import StateDocument, find_dangling_transitions, format_states
from .resolver import resolve_activity_refs
from .steps import StepSpec, is_deferred

logger = logging.getLogger(__name__)

VALID_CLOUDWATCH_LEVELS = ("ALL", "ERROR", "FATAL")

COMPUTE_FUNCTION_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AWSLambdaRole"

# Doc: https://docs.aws.amazon.com/step-functions/latest/dg/cw-logs.html#cloudwatch-iam-policy
CLOUDWATCH_DELIVERY_ACTIONS = (
    "logs:CreateLogDelivery",
    "logs:GetLogDelivery",
    "logs:UpdateLogDelivery",
    "logs:DeleteLogDelivery",
    "logs:ListLogDeliveries",
    "logs:PutResourcePolicy",
    "logs:DescribeResourcePolicies",
    "logs:DescribeLogGroups",
)


class StateMachineArgumentError(ValueError):
    pass


class StateMachineType(str, Enum):
    STANDARD = "STANDARD"
    EXPRESS = "EXPRESS"

    @classmethod
    def parse(cls, value: str | None) -> StateMachineType:
        return cls.EXPRESS if (value or "").strip().lower() == "express" else cls.STANDARD


class PolicyPlan(BaseModel):
    """A policy to attach to the execution role.

    Managed or caller policies carry an `arn`; policies created for the
    machine carry a `document` instead.
    """

    name: str
    arn: str | None = None
    description: str | None = None
    document: dict[str, Any] | None = None


class RolePlan(BaseModel):
    name: str
    assume_role_policy: dict[str, Any]
    tags: dict[str, str] = Field(default_factory=dict)


class LogGroupPlan(BaseModel):
    name: str
    retention_in_days: int = Field(default=0, ge=0, description="0 means never expires")
    tags: dict[str, str] = Field(default_factory=dict)


class LoggingConfigurationPlan(BaseModel):
    level: str
    include_execution_data: bool = True
    log_group: str
    destination_suffix: str = ":*"


class StateMachinePlan(BaseModel):
    name: str
    type: StateMachineType
    definition: str
    role: RolePlan
    policies: list[PolicyPlan] = Field(default_factory=list)
    log_group: LogGroupPlan | None = None
    logging_configuration: LoggingConfigurationPlan | None = None
    uses_compute_function: bool = False
    tags: dict[str, str] = Field(default_factory=dict)


def build_definition(
    states: StateDocument, *, start_at: str, comment: str | None = None
) -> dict[str, object]:
    definition: dict[str, object] = {}
    if comment is not None:
        definition["Comment"] = comment
    definition["StartAt"] = start_at
    definition["States"] = states
    return definition


def serialize_definition(definition: Mapping[str, object], *, indent: str = "\t") -> str:
    return json.dumps(definition, indent=indent, ensure_ascii=False)


def execution_role_trust_policy() -> dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Action": "sts:AssumeRole",
                "Principal": {"Service": "states.amazonaws.com"},
                "Effect": "Allow",
                "Sid": "",
            }
        ],
    }


def cloudwatch_delivery_policy() -> dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Action": list(CLOUDWATCH_DELIVERY_ACTIONS),
                "Resource": "*",
            }
        ],
    }


async def _resolve_value(value: object) -> object:
    return await value if is_deferred(value) else value


async def compile_state_machine(
    *,
    name: str,
    states: Sequence[StepSpec | Mapping[str, Any]] | None,
    description: str | None = None,
    machine_type: str | None = None,
    policies: Sequence[Mapping[str, Any]] | None = None,
    cloud_watch_level: str | None = None,
    logs_retention_in_days: int | None = None,
    tags: Mapping[str, str] | None = None,
    settings: CompilerSettings | None = None,
) -> StateMachinePlan:
    """Compile `states` and describe everything needed to deploy them.

    Raises:
        StateMachineArgumentError: Missing name/states, policies without a
            name or arn, or dangling transitions when strict mode is on.
        FormatError: The step tree cannot be formatted.
    """

    if not name:
        raise StateMachineArgumentError("Missing required argument 'name'.")
    if states is None:
        raise StateMachineArgumentError("Missing required argument 'states'.")
    if not len(states):
        raise StateMachineArgumentError("'states' argument cannot be empty.")

    settings = settings or CompilerSettings()
    level = (cloud_watch_level or "OFF").strip().upper()
    tags = dict(tags or {})
    canonical_name = f"{name}-step-function"

    resolution = await resolve_activity_refs(
        states, compute_pattern=settings.compute_function_regex
    )
    if not resolution.resolved:
        raise StateMachineArgumentError(f"Step function {name} has no named states.")

    document = format_states(resolution.resolved)
    if settings.strict_transitions:
        dangling = find_dangling_transitions(document)
        if dangling:
            raise StateMachineArgumentError(
                f"Step function {name} has transitions to unknown states: {', '.join(dangling)}"
            )

    definition = build_definition(
        document, start_at=resolution.resolved[0].name or "", comment=description
    )

    role = RolePlan(
        name=canonical_name,
        assume_role_policy=execution_role_trust_policy(),
        tags={**tags, "Name": canonical_name},
    )

    attached: list[PolicyPlan] = []
    for policy in policies or []:
        policy_name = await _resolve_value(policy.get("name"))
        policy_arn = await _resolve_value(policy.get("arn"))
        if not policy_name:
            raise StateMachineArgumentError(
                f"Invalid argument exception. Some policies in step-function {name} "
                "don't have a name."
            )
        if not policy_arn:
            raise StateMachineArgumentError(
                f"Invalid argument exception. Some policies in step-function {name} "
                "don't have an arn."
            )
        attached.append(PolicyPlan(name=str(policy_name), arn=str(policy_arn)))

    log_group: LogGroupPlan | None = None
    logging_configuration: LoggingConfigurationPlan | None = None
    if level in VALID_CLOUDWATCH_LEVELS:
        attached.append(
            PolicyPlan(
                name=f"{canonical_name}-cloudwatch",
                description=f"IAM policy to allow Step Function {name} to send logs to CloudWatch.",
                document=cloudwatch_delivery_policy(),
            )
        )
        log_group = LogGroupPlan(
            name=canonical_name, retention_in_days=logs_retention_in_days or 0, tags=tags
        )
        logging_configuration = LoggingConfigurationPlan(level=level, log_group=canonical_name)

    if resolution.uses_compute_function:
        attached.append(
            PolicyPlan(name=f"{canonical_name}-lambda", arn=COMPUTE_FUNCTION_POLICY_ARN)
        )

    plan = StateMachinePlan(
        name=name,
        type=StateMachineType.parse(machine_type or settings.default_machine_type),
        definition=serialize_definition(definition, indent=settings.definition_indent),
        role=role,
        policies=attached,
        log_group=log_group,
        logging_configuration=logging_configuration,
        uses_compute_function=resolution.uses_compute_function,
        tags={**tags, "Name": name},
    )
    logger.info(
        "Compiled state machine",
        extra={
            "state_machine": name,
            "type": plan.type.value,
            "states": len(document),
            "policies": len(attached),
            "uses_compute_function": resolution.uses_compute_function,
        },
    )
    return plan
