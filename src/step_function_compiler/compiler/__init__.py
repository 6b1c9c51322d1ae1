"""Workflow compiler components.

Provides:
- Settings loaded from .env
- Structured logging
- A small CLI surface
- The resolve -> format pipeline under `workflow`
"""
