"""Manager configuration and the fixed timing constants of the reconcilers."""

from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError, field_validator, model_validator

from evroc_provider.exceptions import ConfigurationError

# Delay before retrying after a transient error
TRANSIENT_RETRY_DELAY = 30.0

# Polling delay while waiting on address allocation, cluster readiness or bootstrap data
BOOTSTRAP_DATA_RETRY_DELAY = 5.0

CONTROL_PLANE_PORT = 6443

EVROC_CLUSTER_FINALIZER = "evroccluster.infrastructure.evroc.com"
EVROC_MACHINE_FINALIZER = "evrocmachine.infrastructure.evroc.com"


class ManagerConfig(BaseModel):
    """Runtime configuration of the controller manager."""

    kubeconfig: str | None = None
    namespace: str | None = None
    workers: int = 4
    resync_period: float = 600.0
    backoff_base: float = 1.0
    backoff_max: float = 300.0
    log_level: str = "INFO"

    @field_validator("workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Validate at least one worker is configured."""
        if v < 1:
            raise ValueError(f"workers must be at least 1, got {v}")
        return v

    @field_validator("resync_period", "backoff_base")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"value must be positive, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log_level is a standard logging level name."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got '{v}'")
        return v.upper()

    @model_validator(mode="after")
    def validate_backoff_range(self) -> "ManagerConfig":
        if self.backoff_max < self.backoff_base:
            raise ValueError(
                f"backoff_max ({self.backoff_max}) must not be below backoff_base ({self.backoff_base})"
            )
        return self

    def merge(self, **overrides) -> "ManagerConfig":
        """Return a copy with every non-None override applied."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return ManagerConfig(**data)

    def save(self, path: str | Path) -> None:
        """Save configuration to YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)

    @classmethod
    def load(cls, path: str | Path) -> "ManagerConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(
                f"Config file not found: {path}",
                "Create one with: evroc-provider init-config",
            )
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse config file {path}", str(e))
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid config file {path}", str(e))
