"""Gated Task Orchestrator.

Runs bounded, gated multi-step workflows that delegate every unit of domain
work (review, fixing, quality checks, test generation) to external workers:
- configuration loaded from `.env`
- structured logging
- task files persisted as Markdown
- run records persisted as local JSON
"""

__version__ = "0.1.0"

from gated_orchestrator.orchestrator.config import OrchestratorSettings

__all__ = ["__version__", "OrchestratorSettings"]
