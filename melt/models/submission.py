from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime
from enum import Enum

from .common import utcnow

if TYPE_CHECKING:
    from .participant import Participant
    from .photo import Photo

class SubmissionType(str, Enum):
    START = "START"
    END = "END"

class SubmissionBase(SQLModel):
    participant_id: int = Field(foreign_key="participant.participant_id", index=True, ondelete="CASCADE")
    shop: str = Field(max_length=255, index=True)
    type: SubmissionType = Field(index=True)
    weight: float
    submitted_at: datetime = Field(default_factory=utcnow)
    notes: Optional[str] = Field(default=None, max_length=500)

class Submission(SubmissionBase, table=True):
    submission_id: Optional[int] = Field(default=None, primary_key=True)

    participant: Optional["Participant"] = Relationship(back_populates="submissions")
    photos: List["Photo"] = Relationship(
        back_populates="submission",
        cascade_delete=True,
        sa_relationship_kwargs={"order_by": "Photo.order"}
    )
