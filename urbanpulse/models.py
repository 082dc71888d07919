from typing import Optional
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import uuid

from sqlalchemy import Column, DateTime
from sqlmodel import SQLModel, Field


class Category(str, Enum):
    ROADS = "Roads"
    SANITATION = "Sanitation"
    UTILITIES = "Utilities"
    VANDALISM = "Vandalism"


class ReportStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class Role(str, Enum):
    CITIZEN = "citizen"
    ADMINISTRATOR = "administrator"


class MediaKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"


class Report(SQLModel, table=True):
    __tablename__ = "reports"
    id: Optional[str] = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    title: str
    description: str
    category: str
    # Only LifecycleController changes this after creation.
    status: str = Field(default=ReportStatus.PENDING.value)
    # Empty string means "no asset"; never NULL.
    image_url: str = Field(default="")
    audio_url: str = Field(default="")
    # lat, lng and address are written together or not at all.
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None
    admin_update: Optional[str] = None
    admin_resolution_note: Optional[str] = None
    resolution_image_url: Optional[str] = None
    # Timestamps are timezone-aware UTC, issued by the store.
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    updated_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    last_updated: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    resolved_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    version: int = Field(default=1)

    @property
    def location(self) -> Optional["Coordinates"]:
        if self.lat is None or self.lng is None:
            return None
        return Coordinates(lat=self.lat, lng=self.lng)


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass(frozen=True)
class MediaAsset:
    """An already-captured binary (photo or voice clip) awaiting upload."""

    data: bytes
    content_type: str
    filename: Optional[str] = None


@dataclass(frozen=True)
class Viewer:
    """Identity supplied by the session collaborator. The role is taken as given."""

    viewer_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMINISTRATOR


@dataclass
class ReportDraft:
    title: str
    description: str
    category: str
    photo: Optional[MediaAsset] = None
    audio_clip: Optional[MediaAsset] = None
    coordinates: Optional[Coordinates] = None
