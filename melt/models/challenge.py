from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime

from .common import utcnow

if TYPE_CHECKING:
    from .participant import Participant

class ChallengeBase(SQLModel):
    shop: str = Field(max_length=255, index=True)
    name: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    start_date: datetime = Field(index=True)
    end_date: datetime = Field(index=True)
    is_active: bool = Field(default=True, index=True)
    customer_tag: Optional[str] = Field(default=None, max_length=100)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

class Challenge(ChallengeBase, table=True):
    challenge_id: Optional[int] = Field(default=None, primary_key=True)

    participants: List["Participant"] = Relationship(back_populates="challenge", cascade_delete=True)

class ChallengePublic(ChallengeBase):
    challenge_id: int
