"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterator
from pathlib import Path
from typing import Any

import pytest

from step_function_compiler.compiler.config import CompilerSettings
from step_function_compiler.compiler.logging import JsonFormatter

SETTINGS_ENV_VARS = (
    "LOG_LEVEL",
    "SFN_COMPUTE_FUNCTION_PATTERN",
    "SFN_DEFINITION_INDENT",
    "SFN_DEFAULT_MACHINE_TYPE",
    "SFN_STRICT_TRANSITIONS",
)


async def _later(value: Any, delay: float) -> Any:
    await asyncio.sleep(delay)
    return value


@pytest.fixture
def deferred() -> Callable[..., Coroutine[Any, Any, Any]]:
    """Build an awaitable that yields `value` after `delay` seconds."""

    def make(value: Any, delay: float = 0.0) -> Coroutine[Any, Any, Any]:
        return _later(value, delay)

    return make


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run in an empty directory with no compiler settings in the environment."""

    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def settings(clean_env: Path) -> CompilerSettings:
    return CompilerSettings()


@pytest.fixture
def restore_root_logging() -> Iterator[None]:
    """Undo `configure_logging` so later tests keep a quiet root logger."""

    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler.formatter, JsonFormatter):
            root.removeHandler(handler)
    root.setLevel(level)
