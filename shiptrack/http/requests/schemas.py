"""
Pydantic schemas for request validation (Http/Requests).
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, Optional


def _required_text(v: Optional[str]) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("must not be empty")
    return v


# Tracking Schemas
class RegisterTrackingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tracking_number: str = Field(..., alias="trackingNumber")
    courier: str = Field(..., alias="courierCode")

    @field_validator("tracking_number", "courier")
    @classmethod
    def not_blank(cls, v):
        return _required_text(v)


class AssignShipmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tracking_number: str = Field(..., alias="trackingNumber")
    courier_code: str = Field(..., alias="courierCode")
    courier_name: Optional[str] = Field(None, alias="courierName")

    @field_validator("tracking_number", "courier_code")
    @classmethod
    def not_blank(cls, v):
        return _required_text(v)


class TrackingWebhookRequest(BaseModel):
    event: str
    data: Dict[str, Any]

    def tracking(self) -> Dict[str, Any]:
        tracking = self.data.get("tracking")
        return tracking if isinstance(tracking, dict) else {}
