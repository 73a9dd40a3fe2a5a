"""Task files handed between the orchestrator and its workers."""
