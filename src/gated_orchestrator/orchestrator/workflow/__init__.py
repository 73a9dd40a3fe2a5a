"""Explicit workflow domain concepts.

This package introduces first-class types for:
- Steps and loop regions (the ordered plan of a run)
- Workflow and step state machines
- Gates (pure threshold decisions)
- The sequential engine and the final report

The intent is to make bounded, gated runs deterministic in their control flow
and inspectable while they execute.
"""

__all__: list[str] = []
