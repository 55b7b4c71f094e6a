from __future__ import annotations
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

class CameraDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str           # becomes the post caption
    url: str            # still image endpoint
    delay_seconds: Optional[float] = None

class CatalogCamera(BaseModel):
    """Entry of config/cameras.yaml."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    name: str
    url: str
    delay: Optional[float] = None
    rush_hour_priority: bool = False

    def descriptor(self) -> CameraDescriptor:
        return CameraDescriptor(id=self.id, name=self.name, url=self.url, delay_seconds=self.delay)

# ---------- OHGO camera API ----------
class OhgoCameraView(BaseModel):
    largeUrl: str
    smallUrl: Optional[str] = None
    direction: Optional[str] = None

class OhgoCamera(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    location: str
    cameraViews: List[OhgoCameraView] = Field(min_length=1)

class OhgoResponse(BaseModel):
    results: List[OhgoCamera] = []

# ---------- media/upload ----------
class MediaUploadInit(BaseModel):
    media_id_string: str
    expires_after_secs: Optional[int] = None

class ProcessingInfo(BaseModel):
    state: str
    check_after_secs: Optional[int] = None

class MediaUploadStatus(BaseModel):
    media_id_string: Optional[str] = None
    size: Optional[int] = None
    processing_info: Optional[ProcessingInfo] = None
