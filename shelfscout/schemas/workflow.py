"""
Workflow backend payloads.

The response shape is the one externally visible contract, so parsing is
deliberately lenient: unknown fields are ignored, missing or malformed
flags read as False, and a malformed region or delay reads as absent.
"""

import logging
import math
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger("shelfscout.schemas.workflow")

_TRUE_STRINGS = {"true", "1", "yes", "on"}


class Region(BaseModel):
    """Bounding box in image pixels: [xmin, ymin, xmax, ymax]."""

    model_config = ConfigDict(frozen=True)

    x_min: float
    y_min: float
    x_max: float
    y_max: float

    @property
    def is_valid(self) -> bool:
        values = (self.x_min, self.y_min, self.x_max, self.y_max)
        if not all(math.isfinite(v) for v in values):
            return False
        if min(values) < 0:
            return False
        return self.x_min < self.x_max and self.y_min < self.y_max

    def as_list(self) -> list[float]:
        return [self.x_min, self.y_min, self.x_max, self.y_max]


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    if isinstance(value, (int, float)):
        return value == 1
    return False


def _coerce_region(value: Any) -> Optional[Region]:
    if isinstance(value, Region):
        return value
    if isinstance(value, dict):
        try:
            return Region.model_validate(value)
        except ValidationError:
            return None
    if isinstance(value, (list, tuple)) and len(value) == 4:
        try:
            x_min, y_min, x_max, y_max = (float(v) for v in value)
        except (TypeError, ValueError):
            return None
        return Region(x_min=x_min, y_min=y_min, x_max=x_max, y_max=y_max)
    return None


class BackendResponse(BaseModel):
    """One answer from the workflow backend."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    text: str = ""
    navigation_flag: bool = Field(
        default=False,
        validation_alias=AliasChoices("navigation_flag", "navigationFlag", "navigation"),
    )
    reaching_flag: bool = Field(
        default=False,
        validation_alias=AliasChoices("reaching_flag", "reachingFlag"),
    )
    native_handoff_flag: bool = Field(
        default=False,
        validation_alias=AliasChoices("native_handoff_flag", "nativeHandoffFlag", "reaching_ios"),
    )
    region: Optional[Region] = Field(
        default=None,
        validation_alias=AliasChoices("region", "bbox"),
    )
    label: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("label", "object"),
    )
    loop_delay_ms: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("loop_delay_ms", "loopDelayMs", "loopDelay"),
    )

    @field_validator("text", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    @field_validator("navigation_flag", "reaching_flag", "native_handoff_flag", mode="before")
    @classmethod
    def coerce_flag(cls, v: Any) -> bool:
        return _coerce_flag(v)

    @field_validator("region", mode="before")
    @classmethod
    def coerce_region(cls, v: Any) -> Optional[Region]:
        return _coerce_region(v)

    @field_validator("label", mode="before")
    @classmethod
    def coerce_label(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        label = str(v).strip()
        return label or None

    @field_validator("loop_delay_ms", mode="before")
    @classmethod
    def coerce_delay(cls, v: Any) -> Optional[int]:
        if isinstance(v, bool) or v is None:
            return None
        try:
            delay = int(float(v))
        except (TypeError, ValueError):
            return None
        return delay if delay > 0 else None

    @property
    def wants_loop(self) -> bool:
        """Whether either continuous-mode flag is set."""
        return self.navigation_flag or self.reaching_flag


class WorkflowRequest(BaseModel):
    """One outbound request: transcript, photo and mode flags."""

    text: str
    image_path: str
    image_content_type: str = "image/jpeg"
    navigation: bool = False
    reaching_flag: bool = False
    session_id: Optional[str] = None

    def form_fields(self) -> dict[str, str]:
        """Multipart text fields as sent on the wire."""
        fields = {
            "text": self.text,
            "navigation": "true" if self.navigation else "false",
            "reaching_flag": "true" if self.reaching_flag else "false",
        }
        if self.session_id:
            fields["session_id"] = self.session_id
        return fields


def parse_backend_response(data: Any) -> BackendResponse:
    """Build a BackendResponse from a decoded body without ever raising."""
    if isinstance(data, BackendResponse):
        return data
    if isinstance(data, list) and len(data) == 1 and isinstance(data[0], dict):
        # Some workflow engines wrap the single result item in a list
        data = data[0]
    if not isinstance(data, dict):
        text = data if isinstance(data, str) else ""
        return BackendResponse(text=text)
    try:
        return BackendResponse.model_validate(data)
    except ValidationError as e:
        logger.warning("Malformed backend response, keeping text only: %s", e)
        return BackendResponse(text=str(data.get("text") or ""))
