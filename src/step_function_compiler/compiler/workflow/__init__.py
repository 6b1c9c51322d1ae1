"""Workflow definition domain.

This package holds:
- the author-facing step model and its kind classification
- the resolver for deferred activity references
- the formatter emitting Amazon States Language records
- the provisioning plan built around a compiled definition

Import from the submodules directly; `state_machine` depends on the settings
module, which itself depends on `resolver`.
"""

__all__: list[str] = []
