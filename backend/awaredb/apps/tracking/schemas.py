from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class TrackingRequest(BaseModel):
    tracking_link_id: Optional[str] = None
    legacy_tracking_id: Optional[str] = Field(None, alias="trackingId")

    class Config:
        populate_by_name = True

    @property
    def resolved_tracking_id(self) -> Optional[str]:
        return self.tracking_link_id or self.legacy_tracking_id


class ViewRequest(TrackingRequest):
    content_id: Optional[str] = None


class InteractionRequest(TrackingRequest):
    tag_name: str = Field(..., min_length=1, max_length=128)
    interaction_type: Optional[str] = Field(None, max_length=32)
    interaction_value: Optional[str] = None
    success: Optional[bool] = None

    @field_validator("interaction_value", mode="before")
    @classmethod
    def _stringify_value(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)


class ScoreRequest(TrackingRequest):
    score: float = Field(..., allow_inf_nan=False)
    content_id: Optional[str] = None
    content_role: Optional[Literal["training", "follow_on"]] = None
    interactions: List[Dict[str, Any]] = Field(default_factory=list)


class TrackingResponse(BaseModel):
    success: bool
    reason: Optional[str] = None
    already_marked: Optional[bool] = None
    auto_completed: Optional[bool] = None


class InteractionResponse(BaseModel):
    success: bool
    interaction_id: int


class ScoreResponse(BaseModel):
    success: bool
    score: Optional[float] = None
    content_role: Optional[str] = None
    already_recorded: bool = False
    event_queued: Optional[bool] = None
    reason: Optional[str] = None
