from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel

from ..models.participant import Participant, ParticipantStatus
from ..models.submission import SubmissionType
from .challenges import get_submission


class SortOption(str, Enum):
    WEIGHT_LOSS = "weight_loss"
    PERCENT_BODY_WEIGHT = "percent_body_weight"
    ORDERS_COUNT = "orders_count"
    TOTAL_SPENT = "total_spent"
    NAME = "name"
    STATUS = "status"

class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

class PhotoSummary(BaseModel):
    photo_id: int
    url: str
    order: int
    orientation: str

class ParticipantRow(BaseModel):
    participant_id: int
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    customer_id: str
    status: ParticipantStatus
    start_weight: Optional[float]
    end_weight: Optional[float]
    weight_loss: Optional[float]
    percent_body_weight: Optional[float]
    start_date: Optional[str]
    end_date: Optional[str]
    start_photos: List[PhotoSummary] = []
    end_photos: List[PhotoSummary] = []
    orders_count: Optional[int]
    total_spent: Optional[float]
    rank: Optional[int] = None

    @property
    def name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


def weight_loss(start_weight: Optional[float], end_weight: Optional[float]) -> Optional[float]:
    if not start_weight or not end_weight:
        return None
    return start_weight - end_weight


def percent_body_weight(start_weight: Optional[float], end_weight: Optional[float]) -> Optional[float]:
    loss = weight_loss(start_weight, end_weight)
    if loss is None:
        return None
    return loss / start_weight * 100


def _photos(submission) -> List[PhotoSummary]:
    if submission is None:
        return []
    return [
        PhotoSummary(photo_id=p.photo_id, url=p.url, order=p.order, orientation=p.orientation.value)
        for p in submission.photos
    ]


def build_participant_row(participant: Participant) -> ParticipantRow:
    start = get_submission(participant, SubmissionType.START)
    end = get_submission(participant, SubmissionType.END)
    return ParticipantRow(
        participant_id=participant.participant_id,
        email=participant.email,
        first_name=participant.first_name,
        last_name=participant.last_name,
        customer_id=participant.customer_id,
        status=participant.status,
        start_weight=participant.start_weight,
        end_weight=participant.end_weight,
        weight_loss=weight_loss(participant.start_weight, participant.end_weight),
        percent_body_weight=percent_body_weight(participant.start_weight, participant.end_weight),
        start_date=start.submitted_at.isoformat() if start else None,
        end_date=end.submitted_at.isoformat() if end else None,
        start_photos=_photos(start),
        end_photos=_photos(end),
        orders_count=participant.orders_count,
        total_spent=participant.total_spent,
    )


def build_participant_rows(participants: Iterable[Participant]) -> List[ParticipantRow]:
    return [build_participant_row(p) for p in participants]


def _sort_value(row: ParticipantRow, sort_by: SortOption):
    if sort_by == SortOption.NAME:
        return row.name.lower()
    if sort_by == SortOption.STATUS:
        return row.status.value
    return getattr(row, sort_by.value)


def sort_rows(rows: List[ParticipantRow],
              sort_by: SortOption = SortOption.WEIGHT_LOSS,
              direction: SortDirection = SortDirection.DESC) -> List[ParticipantRow]:
    """Sorts admin table rows. Rows missing the sort value always go last.

    When ranking by weight loss (descending) the first three rows with a
    positive loss get rank 1, 2 and 3.
    """
    present = [row for row in rows if _sort_value(row, sort_by) is not None]
    missing = [row for row in rows if _sort_value(row, sort_by) is None]

    ordered = sorted(present, key=lambda row: _sort_value(row, sort_by), reverse=direction == SortDirection.DESC)
    ordered += missing

    for row in ordered:
        row.rank = None
    if sort_by == SortOption.WEIGHT_LOSS and direction == SortDirection.DESC:
        for index, row in enumerate(ordered[:3]):
            if row.weight_loss and row.weight_loss > 0:
                row.rank = index + 1

    return ordered
