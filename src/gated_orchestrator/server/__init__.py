"""REST server for starting, watching and cancelling workflow runs."""

from gated_orchestrator.server.app import create_app

__all__ = ["create_app"]
