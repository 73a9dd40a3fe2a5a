"""Configuration for the gated orchestrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

The only behavioural switch is the project stage, which selects the compliance
threshold used by the gates. Everything else locates state on disk or selects
and tunes the worker backend.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gated_orchestrator.orchestrator.workflow.gate import ProjectStage

WorkerBackend = Literal["openai", "command", "http"]


class OrchestratorSettings(BaseSettings):
    """Settings for the orchestrator.

    Environment variables:
    - PROJECT_STAGE                          (optional, prototype | production)
    - LOG_LEVEL                              (optional)
    - ORCHESTRATOR_DESIGN_DOCS_DIR           (optional)
    - ORCHESTRATOR_TASKS_ROOT                (optional)
    - AGENT_STATE_PATH                       (optional)
    - ORCHESTRATOR_WORKER_BACKEND            (optional, openai | command | http)
    - ORCHESTRATOR_WORKER_TIMEOUT_SECONDS    (optional)
    - ORCHESTRATOR_MAX_ITERATIONS            (optional)
    - ORCHESTRATOR_MAX_FILES_PER_INVOCATION  (optional)
    - ORCHESTRATOR_WORKER_COMMAND            (command backend)
    - ORCHESTRATOR_WORKER_URL / ORCHESTRATOR_WORKER_TOKEN (http backend)
    - OPENAI_API_KEY / ORCHESTRATOR_LLM_MODEL (openai backend)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `OrchestratorSettings(_env_file=path_to_env)`.
    """

    project_stage: ProjectStage = Field(
        default=ProjectStage.PROTOTYPE,
        validation_alias="PROJECT_STAGE",
        description="Project stage; selects the gate threshold (prototype=70, production=90)",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    design_docs_dir: Path = Field(
        default=Path("docs/design"),
        validation_alias="ORCHESTRATOR_DESIGN_DOCS_DIR",
        description="Directory searched for the most recent design document",
    )

    tasks_root: Path = Field(
        default=Path("docs/plans/tasks"),
        validation_alias="ORCHESTRATOR_TASKS_ROOT",
        description="Root directory for task files (<kind>-<date>/task-NN.md)",
    )

    repo_root: Path = Field(
        default=Path("."),
        validation_alias="ORCHESTRATOR_REPO_ROOT",
        description="Repository the workers operate on; command workers run here",
    )

    agent_state_path: Path = Field(
        default=Path("agent_state"),
        validation_alias="AGENT_STATE_PATH",
        description="Directory where run records are persisted",
    )

    worker_backend: WorkerBackend = Field(
        default="command",
        validation_alias="ORCHESTRATOR_WORKER_BACKEND",
        description="Transport used to reach workers",
    )
    worker_timeout_seconds: float = Field(
        default=900.0,
        gt=0,
        validation_alias="ORCHESTRATOR_WORKER_TIMEOUT_SECONDS",
        description="Timeout applied to every worker invocation",
    )

    max_iterations: int = Field(
        default=3,
        ge=1,
        le=20,
        validation_alias="ORCHESTRATOR_MAX_ITERATIONS",
        description="Iteration budget for fix/review loops",
    )
    max_files_per_invocation: int = Field(
        default=5,
        ge=1,
        validation_alias="ORCHESTRATOR_MAX_FILES_PER_INVOCATION",
        description="Maximum number of target files handed to one fixer/executor call",
    )

    worker_command: str = Field(
        default="claude -p --output-format json",
        validation_alias="ORCHESTRATOR_WORKER_COMMAND",
        description="Agent CLI command; the request JSON is written to its stdin",
    )

    worker_url: str = Field(
        default="",
        validation_alias="ORCHESTRATOR_WORKER_URL",
        description="Base URL of an HTTP worker service",
    )
    worker_token: str = Field(
        default="",
        validation_alias="ORCHESTRATOR_WORKER_TOKEN",
        description="Bearer token for the HTTP worker service (optional)",
    )

    openai_api_key: str = Field(default="", validation_alias="OPENAI_API_KEY")
    llm_model: str = Field(
        default="gpt-4o",
        validation_alias="ORCHESTRATOR_LLM_MODEL",
        description="Model used by the openai worker backend",
    )
    llm_temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        validation_alias="ORCHESTRATOR_LLM_TEMPERATURE",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_backend_settings(self) -> OrchestratorSettings:
        if self.worker_backend == "openai" and not self.openai_api_key.strip():
            raise ValueError("OPENAI_API_KEY is required for the openai worker backend")
        if self.worker_backend == "http" and not self.worker_url.strip():
            raise ValueError("ORCHESTRATOR_WORKER_URL is required for the http worker backend")
        if self.worker_backend == "command" and not self.worker_command.strip():
            raise ValueError("ORCHESTRATOR_WORKER_COMMAND must not be empty")
        return self

    @property
    def runs_state_file(self) -> Path:
        """Path where run records are persisted."""

        return self.agent_state_path / "runs.json"
