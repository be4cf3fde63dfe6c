from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Tuple
import math
import uuid


class Room(BaseModel):
    """A sharing scope; the only key anchor operations are scoped by."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v):
        # Rooms usually carry UUIDs; the registry addresses them by string.
        if isinstance(v, uuid.UUID):
            return str(v)
        if isinstance(v, str) and v.strip():
            return v.strip()
        raise ValueError("room id must be a non-empty string or UUID")


class Pose(BaseModel):
    """Position + orientation (unit quaternion, x/y/z/w) in session-local coordinates."""
    model_config = ConfigDict(frozen=True)

    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)

    @field_validator("position", "rotation")
    @classmethod
    def _finite(cls, v):
        if not all(math.isfinite(c) for c in v):
            raise ValueError("pose components must be finite")
        return v

    @field_validator("rotation")
    @classmethod
    def _normalised(cls, v):
        norm = math.sqrt(sum(c * c for c in v))
        if norm == 0.0:
            raise ValueError("rotation quaternion must be non-zero")
        if abs(norm - 1.0) > 1e-6:
            return tuple(c / norm for c in v)
        return v


class CloudAnchorEntity(BaseModel):
    """One row of the registry's room listing; only ``anchor_id`` is consumed."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    anchor_id: str = Field(alias="anchorId", min_length=1)
    id: uuid.UUID


class UploadCloudAnchorParam(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    anchor_id: str = Field(alias="anchorId", min_length=1)

    def wire(self) -> dict:
        return self.model_dump(by_alias=True)
