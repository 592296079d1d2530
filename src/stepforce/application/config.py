"""
Configuration management for plan execution.
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from stepforce.core.domain.approval import ApprovalPolicy
from stepforce.core.domain.executor import FailurePolicy


class ExecutorSettings(BaseSettings):
    """Executor settings with environment variable support (``STEPFORCE_*``)."""

    # Retry and failure handling
    max_retries: int = Field(default=0, ge=0, description="Extra attempts after a failed tool call")
    retry_backoff_seconds: float = Field(default=0.5, ge=0, description="Base retry delay, doubled per retry")
    failure_policy: FailurePolicy = Field(default=FailurePolicy.HALT, description="halt or continue after a failed step")

    # Approval settings
    approval_policy: ApprovalPolicy = Field(default=ApprovalPolicy.PROMPT, description="prompt, auto_approve or auto_deny")
    approval_timeout_seconds: Optional[float] = Field(default=300.0, description="Seconds before a pending approval times out")

    # Busy polling
    busy_poll_interval_seconds: float = Field(default=0.05, gt=0, description="Interval between busy probes")
    busy_max_wait_seconds: float = Field(default=60.0, ge=0, description="Budget before giving up on a busy tool")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="console or json")

    model_config = {
        "env_file": ".env",
        "env_prefix": "STEPFORCE_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("approval_policy", mode="before")
    @classmethod
    def _normalize_policy(cls, value: Any) -> Any:
        # Accept the CLI spelling "auto-approve"
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def load_from_file(cls, config_path: Path, **overrides: Any) -> "ExecutorSettings":
        """Load settings from a YAML configuration file."""
        config_data: dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}

        config_data.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**config_data)

    def save_to_file(self, config_path: Path) -> None:
        """Save settings to a YAML configuration file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)

        config_data = self.model_dump(mode="json")
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(config_data, f, default_flow_style=False, indent=2)
