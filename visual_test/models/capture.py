"""Capture request and result data structures."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from visual_test.models.config import ViewportConfig, VisualTestConfig

SCREENSHOT_ROUTE = "/visual-test/make-screenshot"


class CaptureRequest(BaseModel):
    """One screenshot request as posted to the capture endpoint.

    Accepts the camelCase wire names (``fullPage``, ``delayMs``, ...) as well
    as the Python field names. Form posts send everything as strings, so
    empty strings are treated as absent.
    """

    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(min_length=1)
    name: str = Field(min_length=1)
    selector: Optional[str] = None
    full_page: Optional[bool] = Field(default=None, alias="fullPage")
    delay_ms: Optional[int] = Field(default=None, ge=0, alias="delayMs")
    window_width: Optional[int] = Field(default=None, gt=0, alias="windowWidth")
    window_height: Optional[int] = Field(default=None, gt=0, alias="windowHeight")

    @field_validator("selector", "full_page", "delay_ms", "window_width", "window_height", mode="before")
    @classmethod
    def blank_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def viewport_for(self, config: VisualTestConfig) -> ViewportConfig:
        """Requested viewport, falling back to the configured window size."""
        return ViewportConfig(
            width=self.window_width or config.window_width,
            height=self.window_height or config.window_height,
        )

    def resolved_full_page(self, config: VisualTestConfig) -> bool:
        return config.default_full_page if self.full_page is None else self.full_page

    def resolved_delay_ms(self, config: VisualTestConfig) -> int:
        return config.default_delay_ms if self.delay_ms is None else self.delay_ms


class ImageAsset(BaseModel):
    """Baseline, temp and diff paths for one resolved capture file name."""

    model_config = ConfigDict(frozen=True)

    file_name: str
    baseline: Path
    temp: Path
    diff: Path


class CaptureOutcome(BaseModel):
    """What the capture engine did for one request."""

    new_baseline: bool = False
    chrome_error: bool = False
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.chrome_error or self.error is not None


class ComparisonStatus(str, Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class ComparisonResult(BaseModel):
    """Response body of the capture endpoint."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    status: ComparisonStatus
    new_baseline: bool = Field(default=False, alias="newBaseline")
    diff_pixel_count: Optional[int] = Field(default=None, alias="diffPixelCount")
    diff_path: Optional[str] = Field(default=None, alias="diffPath")
    full_diff_path: Optional[str] = Field(default=None, alias="fullDiffPath")
    error: Optional[str] = None
    chrome_error: Optional[bool] = Field(default=None, alias="chromeError")

    @property
    def passed(self) -> bool:
        return self.status == ComparisonStatus.SUCCESS

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
