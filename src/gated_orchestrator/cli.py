"""Console-script shim.

The CLI is implemented in `gated_orchestrator.orchestrator.main`.
"""

from __future__ import annotations

from gated_orchestrator.orchestrator.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
