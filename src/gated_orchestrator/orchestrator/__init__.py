"""Gated task orchestrator components.

- Settings loaded from .env
- Structured logging
- A small CLI surface
- Task files, workflow definitions and the sequential engine
"""
