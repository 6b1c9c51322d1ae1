"""Console script shim.

The CLI is implemented in `step_function_compiler.compiler.main`.
"""

from __future__ import annotations

from step_function_compiler.compiler.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
