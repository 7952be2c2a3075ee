"""Schemas for photo rows written to the backend."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from fieldsync.sync.queue import QueuedUpload

AUTO_DETECT = "Auto-detect"


class PhotoAnalysis(BaseModel):
    """AI-derived enrichment returned by the classification function.

    Every field is optional; unknown keys from the function are dropped.
    """

    model_config = ConfigDict(extra="ignore")

    ai_category: Optional[str] = None
    ai_room_type: Optional[str] = None
    ai_damage_type: Optional[str] = None
    ai_description: Optional[str] = None
    ai_tags: Optional[list[str]] = None
    ai_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @classmethod
    def from_room_hint(cls, room_type: str | None) -> PhotoAnalysis:
        """Seed enrichment from the photographer's room choice."""
        if room_type and room_type != AUTO_DETECT:
            return cls(ai_room_type=room_type.lower())
        return cls()

    def merged(self, other: PhotoAnalysis) -> PhotoAnalysis:
        """Overlay the fields the classifier actually returned."""
        return self.model_copy(update=other.model_dump(exclude_unset=True))


class PhotoRecord(PhotoAnalysis):
    """A row in the project photos table."""

    model_config = ConfigDict(extra="forbid")

    project_id: str
    organization_id: str
    uploaded_by: str
    file_path: str = Field(..., min_length=1)
    file_name: str
    file_size: int = Field(..., ge=0)
    mime_type: str
    caption: Optional[str] = None
    notes: Optional[str] = None
    is_before_photo: bool = False
    is_after_photo: bool = False
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None

    @classmethod
    def build(cls, item: QueuedUpload, file_path: str, analysis: PhotoAnalysis) -> PhotoRecord:
        """Assemble the row for a queued upload stored at ``file_path``."""
        return cls(
            project_id=item.project_id,
            organization_id=item.organization_id,
            uploaded_by=item.uploaded_by,
            file_path=file_path,
            file_name=item.file_name,
            file_size=item.file_size,
            mime_type=item.mime_type,
            # Empty strings are stored as NULL
            caption=item.caption or None,
            notes=item.notes or None,
            is_before_photo=item.is_before_photo,
            is_after_photo=item.is_after_photo,
            location_lat=item.location_lat,
            location_lng=item.location_lng,
            **analysis.model_dump(),
        )


def needs_classification(room_type: str | None) -> bool:
    """True when the photographer left room detection to the classifier."""
    return not room_type or room_type == AUTO_DETECT
