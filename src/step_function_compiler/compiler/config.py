"""Configuration for the workflow compiler.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Every setting has a usable default, so `CompilerSettings()` works without any
environment at all.
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from step_function_compiler.compiler.workflow.resolver import DEFAULT_COMPUTE_FUNCTION_PATTERN


class CompilerSettings(BaseSettings):
    """Settings for the compiler and its CLI.

    Environment variables:
    - LOG_LEVEL                     (optional)
    - SFN_COMPUTE_FUNCTION_PATTERN  (optional)
    - SFN_DEFINITION_INDENT         (optional)
    - SFN_DEFAULT_MACHINE_TYPE      (optional)
    - SFN_STRICT_TRANSITIONS        (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `CompilerSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    compute_function_pattern: str = Field(
        default=DEFAULT_COMPUTE_FUNCTION_PATTERN,
        validation_alias="SFN_COMPUTE_FUNCTION_PATTERN",
        description=(
            "Case-insensitive regular expression identifying activity references that "
            "invoke a compute function. A match grants the execution role invoke rights."
        ),
    )

    definition_indent: str = Field(
        default="\t",
        validation_alias="SFN_DEFINITION_INDENT",
        description="Indentation used when serializing the state machine definition",
    )

    default_machine_type: Literal["standard", "express"] = Field(
        default="standard",
        validation_alias="SFN_DEFAULT_MACHINE_TYPE",
        description="Machine type used when none is requested",
    )

    strict_transitions: bool = Field(
        default=False,
        validation_alias="SFN_STRICT_TRANSITIONS",
        description="Reject definitions whose Next/Default targets do not exist",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("compute_function_pattern")
    @classmethod
    def _pattern_must_compile(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"SFN_COMPUTE_FUNCTION_PATTERN is not a valid regex: {e}") from e
        return value

    @field_validator("default_machine_type", mode="before")
    @classmethod
    def _normalize_machine_type(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def compute_function_regex(self) -> re.Pattern[str]:
        """Compiled, case-insensitive compute function pattern."""

        return re.compile(self.compute_function_pattern, re.IGNORECASE)
