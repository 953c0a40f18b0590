from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import UniqueConstraint
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime
from enum import Enum

from .common import utcnow

if TYPE_CHECKING:
    from .challenge import Challenge
    from .submission import Submission

class ParticipantStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"

class ParticipantBase(SQLModel):
    challenge_id: int = Field(foreign_key="challenge.challenge_id", index=True, ondelete="CASCADE")
    shop: str = Field(max_length=255, index=True)
    customer_id: str = Field(max_length=255, index=True)  # Shopify customer GID, or "email:<address>"
    email: str = Field(max_length=255, index=True)
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    start_weight: Optional[float] = None
    end_weight: Optional[float] = None
    status: ParticipantStatus = Field(default=ParticipantStatus.NOT_STARTED)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    orders_count: Optional[int] = None
    total_spent: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

class Participant(ParticipantBase, table=True):
    __table_args__ = (UniqueConstraint("challenge_id", "customer_id"),)

    participant_id: Optional[int] = Field(default=None, primary_key=True)

    challenge: Optional["Challenge"] = Relationship(back_populates="participants")
    submissions: List["Submission"] = Relationship(
        back_populates="participant",
        cascade_delete=True,
        sa_relationship_kwargs={"order_by": "Submission.submitted_at"}
    )
