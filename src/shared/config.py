"""Harness configuration management using pydantic-settings."""
from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

from src.shared.constants import HOST_DISTRIBUTION, WORKITEM_BASELINE_PATH

_DEFAULT_BASELINE_ROOT = Path(__file__).resolve().parents[2] / "tests" / "baselines"


class HarnessConfig(BaseSettings):
    """Configuration for a generator test harness."""
    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")
    regenerate_baselines: bool = Field(
        default=False, validation_alias="REGENERATE_BASELINES"
    )
    baseline_root: str = Field(
        default=str(_DEFAULT_BASELINE_ROOT), validation_alias="BASELINE_ROOT"
    )
    workitem_root: str | None = Field(
        default=None, validation_alias="TEST_WORKITEM_ROOT"
    )
    reference_base_dir: str | None = Field(
        default=None, validation_alias="REFERENCE_BASE_DIR"
    )
    host_distribution: str = Field(
        default=HOST_DISTRIBUTION, validation_alias="HOST_DISTRIBUTION"
    )
    generator_timeout_s: float | None = Field(
        default=None, gt=0, validation_alias="GENERATOR_TIMEOUT_S"
    )

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    @property
    def on_workitem(self) -> bool:
        """True when running inside a distributed test-execution work item."""
        return bool(self.workitem_root)

    def resolve_baseline_root(self) -> Path:
        """Return the directory holding baseline files for this run."""
        if self.workitem_root:
            return Path(self.workitem_root).joinpath(*WORKITEM_BASELINE_PATH)
        return Path(self.baseline_root)
