"""Unit tests for configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from gated_orchestrator.orchestrator.config import OrchestratorSettings
from gated_orchestrator.orchestrator.workflow.gate import ProjectStage


def test_settings_defaults(clean_env: Path) -> None:
    """Test default values with an empty environment."""
    settings = OrchestratorSettings(_env_file=None)

    assert settings.project_stage is ProjectStage.PROTOTYPE
    assert settings.worker_backend == "command"
    assert settings.max_iterations == 3
    assert settings.max_files_per_invocation == 5
    assert settings.worker_timeout_seconds == 900.0
    assert settings.runs_state_file == clean_env / "agent_state" / "runs.json"


def test_settings_from_env_file(clean_env: Path) -> None:
    """Test loading from a .env file."""
    env_file = clean_env / ".env"
    env_file.write_text(
        "PROJECT_STAGE=production\n"
        "ORCHESTRATOR_MAX_ITERATIONS=5\n"
        "ORCHESTRATOR_WORKER_BACKEND=http\n"
        "ORCHESTRATOR_WORKER_URL=http://workers.local\n",
        encoding="utf-8",
    )

    settings = OrchestratorSettings(_env_file=env_file)

    assert settings.project_stage is ProjectStage.PRODUCTION
    assert settings.max_iterations == 5
    assert settings.worker_url == "http://workers.local"


def test_environment_overrides_env_file(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = clean_env / ".env"
    env_file.write_text("PROJECT_STAGE=production\n", encoding="utf-8")
    monkeypatch.setenv("PROJECT_STAGE", "prototype")

    assert OrchestratorSettings(_env_file=env_file).project_stage is ProjectStage.PROTOTYPE


@pytest.mark.parametrize(
    "overrides",
    [
        {"PROJECT_STAGE": "staging"},
        {"ORCHESTRATOR_MAX_ITERATIONS": 0},
        {"ORCHESTRATOR_MAX_ITERATIONS": 21},
        {"ORCHESTRATOR_MAX_FILES_PER_INVOCATION": 0},
        {"ORCHESTRATOR_WORKER_BACKEND": "openai"},
        {"ORCHESTRATOR_WORKER_BACKEND": "http"},
        {"ORCHESTRATOR_WORKER_BACKEND": "carrier-pigeon"},
    ],
)
def test_invalid_settings_are_rejected(clean_env: Path, overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        OrchestratorSettings(_env_file=None, **overrides)
