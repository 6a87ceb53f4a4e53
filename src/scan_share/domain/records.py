"""Domain models for measurement records."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class Record:
    """A finished scan owned by a subject."""

    id: str
    owner_id: str
    created_at: datetime
    measurements: dict[str, float] = field(default_factory=dict)
    annotated_image_url: str | None = None
    scale_mm_per_px: float | None = None
