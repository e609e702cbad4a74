"""Configuration models for visual regression capture."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from visual_test.naming import detect_os_tag

CI_ENV_VAR = "CI"
FORCE_REBUILD_ENV_VAR = "FORCE_BUILD_VISUAL_TEST_IMAGES"


class ViewportConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(default=1024, gt=0)
    height: int = Field(default=768, gt=0)

    def as_dict(self) -> dict[str, int]:
        return {"width": self.width, "height": self.height}


class VisualTestConfig(BaseModel):
    """Resolved options for one test run.

    Instances are frozen. Use ``VisualTestConfig.resolve`` to build one from
    defaults, an optional config file and the environment.
    """

    model_config = ConfigDict(frozen=True)

    # Output directories
    image_directory: str = "visual-test-output/baseline"
    image_diff_directory: str = "visual-test-output/diff"
    image_tmp_directory: str = "visual-test-output/tmp"

    # Comparison
    image_match_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    image_match_allowed_failures: int = Field(default=0, ge=0)
    include_anti_aliasing: bool = True

    # Baseline grouping
    group_by_os: bool = True
    os_tag: str = Field(default_factory=detect_os_tag)
    force_rebuild_baselines: bool = False

    # Browser
    window_width: int = Field(default=1024, gt=0)
    window_height: int = Field(default=768, gt=0)
    no_sandbox: bool = False
    chrome_port: int = Field(default=0, ge=0)
    chrome_flags: list[str] = Field(default_factory=list)
    readiness_timeout_ms: int = Field(default=30000, gt=0)

    # Request defaults
    default_delay_ms: int = Field(default=100, ge=0)
    default_full_page: bool = False

    # Logging
    image_logging: bool = False
    debug_logging: bool = False

    @field_validator("chrome_flags", mode="before")
    @classmethod
    def keep_string_flags(cls, v: Any) -> list[str]:
        if v is None:
            return []
        return [flag for flag in v if isinstance(flag, str) and flag]

    @property
    def viewport(self) -> ViewportConfig:
        return ViewportConfig(width=self.window_width, height=self.window_height)

    @classmethod
    def resolve(
        cls,
        path: str | Path | None = None,
        overrides: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "VisualTestConfig":
        """Merge defaults, a JSON config file, overrides and the environment.

        The environment is applied last and always wins: ``CI`` forces the
        browser sandbox off and ``FORCE_BUILD_VISUAL_TEST_IMAGES`` forces
        baselines to be rewritten.
        """
        data: dict[str, Any] = {}
        if path is not None:
            data.update(_read_json(Path(path)))
        if overrides:
            data.update({k: v for k, v in overrides.items() if v is not None})

        env = os.environ if environ is None else environ
        if env.get(CI_ENV_VAR):
            data["no_sandbox"] = True
        if env.get(FORCE_REBUILD_ENV_VAR):
            data["force_rebuild_baselines"] = True
        return cls(**data)

    @classmethod
    def load(cls, path: str | Path) -> "VisualTestConfig":
        """Load config from a JSON file, without environment overrides."""
        return cls(**_read_json(Path(path)))

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump()
        # Detected at load time on the machine that runs the tests
        data.pop("os_tag")
        with open(path, "w") as f:
            json.dump(data, f, indent=2)


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path) as f:
        return json.load(f)
