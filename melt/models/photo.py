from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, TYPE_CHECKING
from datetime import datetime
from enum import Enum

from .common import utcnow

if TYPE_CHECKING:
    from .submission import Submission

class PhotoOrientation(str, Enum):
    FRONT = "FRONT"
    SIDE = "SIDE"
    BACK = "BACK"

class PhotoBase(SQLModel):
    submission_id: int = Field(foreign_key="submission.submission_id", index=True, ondelete="CASCADE")
    shop: str = Field(max_length=255, index=True)
    order: int = Field(ge=1, le=3)
    orientation: PhotoOrientation
    url: str = Field(max_length=500)
    storage_key: Optional[str] = Field(default=None, max_length=500)
    file_name: str = Field(max_length=255)
    file_size: int
    mime_type: str = Field(max_length=50)
    uploaded_at: datetime = Field(default_factory=utcnow)

class Photo(PhotoBase, table=True):
    photo_id: Optional[int] = Field(default=None, primary_key=True)

    submission: Optional["Submission"] = Relationship(back_populates="photos")
