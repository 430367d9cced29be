"""Runtime configuration for the agent turn engine.

Two layers:
    - AgentRuntimeConfig: per-agent settings parsed from the agent's stored
      config blob (camelCase keys, as written by the platform UI).
    - EngineSettings: process-wide knobs read from environment variables.

Environment variables:
    AGENT_MAX_TOOL_ITERATIONS: model round-trips allowed per turn (default 10)
    AGENT_TURN_CONCURRENCY: 'queue' waits for a busy conversation,
        'reject' raises TurnInProgressError (default 'queue')
"""

import logging
import os
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)

DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
    "google": "gemini-2.0-flash",
}
SUPPORTED_PROVIDERS = frozenset(DEFAULT_MODELS)

DEFAULT_MAX_TOOL_ITERATIONS = 10
DEFAULT_MAX_TOKENS = 4096


class AgentRuntimeConfig(BaseModel):
    """Per-agent settings parsed from Agent.config.

    Unknown keys are ignored so the UI can store extra settings.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    provider: str = "anthropic"
    model: str | None = None
    temperature: float | None = None
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, alias="maxTokens", gt=0)
    require_approval: bool = Field(default=True, alias="requireApproval")
    show_raw_tool_results: bool = Field(default=True, alias="showRawToolResults")
    summarize_approved_results: bool = Field(
        default=True, alias="summarizeApprovedResults"
    )
    stream: bool = True

    @model_validator(mode="after")
    def fill_default_model(self) -> "AgentRuntimeConfig":
        if not self.model:
            self.model = DEFAULT_MODELS.get(self.provider)
        return self

    @classmethod
    def from_agent_config(cls, raw: dict[str, Any] | None) -> "AgentRuntimeConfig":
        """Parse a stored config blob, falling back to defaults on bad values.

        A malformed blob must not take the agent offline, so invalid input is
        logged and replaced by defaults for the offending fields.
        """
        data = dict(raw or {})
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            bad_fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
            logger.warning(
                "Invalid agent config fields %s; using defaults for them",
                sorted(bad_fields),
            )
            cleaned = {k: v for k, v in data.items() if k not in bad_fields}
            return cls.model_validate(cleaned)


class EngineSettings(BaseModel):
    """Process-wide engine settings."""

    max_tool_iterations: int = Field(default=DEFAULT_MAX_TOOL_ITERATIONS, gt=0)
    turn_concurrency: Literal["queue", "reject"] = "queue"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from AGENT_* environment variables.

        Raises:
            ValueError: If a variable is set to an invalid value.
        """
        data: dict[str, Any] = {}
        raw_iterations = os.environ.get("AGENT_MAX_TOOL_ITERATIONS", "").strip()
        if raw_iterations:
            try:
                data["max_tool_iterations"] = int(raw_iterations)
            except ValueError as e:
                raise ValueError(
                    f"AGENT_MAX_TOOL_ITERATIONS must be an integer (got {raw_iterations!r})"
                ) from e
        raw_mode = os.environ.get("AGENT_TURN_CONCURRENCY", "").strip().lower()
        if raw_mode:
            data["turn_concurrency"] = raw_mode
        return cls.model_validate(data)
