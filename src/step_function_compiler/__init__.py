"""Step Function workflow compiler.

Turns an author-friendly, nested description of a workflow into an Amazon
States Language definition:
- deferred activity references are resolved first
- transitions the author left out are inferred from step order
- a provisioning plan (role, policies, logging) can be derived from it
"""

__version__ = "0.1.0"

from step_function_compiler.compiler.config import CompilerSettings

__all__ = ["__version__", "CompilerSettings"]
