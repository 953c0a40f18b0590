"""
Challenge selection, participant lifecycle and eligibility rules.

A participant moves NOT_STARTED -> IN_PROGRESS -> COMPLETED, and only a
successful start or end submission moves it. Everything here takes the
request's session as its first argument and never commits half a submission.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field as PydanticField
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..models.challenge import Challenge
from ..models.common import utcnow, as_utc
from ..models.participant import Participant, ParticipantStatus
from ..models.photo import Photo, PhotoOrientation
from ..models.submission import Submission, SubmissionType
from .validation import FormValidationError, validate_admin_challenge_form, format_weight

logger = logging.getLogger(__name__)

NO_ACTIVE_CHALLENGE = "No active challenge available"
ALREADY_STARTED = "You have already started this challenge"
MUST_START_FIRST = "You must start the challenge first"
MUST_COMPLETE_START_FORM = "You must complete the start form first"
ALREADY_COMPLETED = "You have already completed this challenge"

CLEARABLE_CHALLENGE_FIELDS = {"description", "customer_tag"}


class EligibilityError(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass
class Eligibility:
    eligible: bool
    reason: Optional[str] = None
    participant: Optional[Participant] = None
    challenge: Optional[Challenge] = None


class PhotoIn(BaseModel):
    order: int
    orientation: PhotoOrientation
    public_url: str = PydanticField(max_length=500)
    key: Optional[str] = None
    file_name: str = PydanticField(max_length=255)
    file_size: int
    mime_type: str


# ============================================
# ACTIVE CHALLENGE
# ============================================

def get_active_challenge(session: Session, shop: str, now: Optional[datetime] = None) -> Optional[Challenge]:
    """Returns the running challenge for a shop, else the next upcoming one.

    Overlapping running challenges resolve to the one that started last.
    Upcoming challenges are returned so shoppers can register early.
    """
    now = as_utc(now) if now else utcnow()

    challenge = session.exec(
        select(Challenge)
        .where(
            (Challenge.shop == shop) &
            (Challenge.is_active == True) &  # noqa: E712
            (Challenge.start_date <= now) &
            (Challenge.end_date >= now)
        )
        .order_by(Challenge.start_date.desc(), Challenge.challenge_id.desc())
    ).first()

    if challenge is None:
        challenge = session.exec(
            select(Challenge)
            .where(
                (Challenge.shop == shop) &
                (Challenge.is_active == True) &  # noqa: E712
                (Challenge.start_date > now)
            )
            .order_by(Challenge.start_date.asc(), Challenge.challenge_id.asc())
        ).first()

    return challenge


def get_active_challenges(session: Session, shop: str, now: Optional[datetime] = None) -> List[Challenge]:
    now = as_utc(now) if now else utcnow()
    return session.exec(
        select(Challenge)
        .where(
            (Challenge.shop == shop) &
            (Challenge.is_active == True) &  # noqa: E712
            (Challenge.start_date <= now) &
            (Challenge.end_date >= now)
        )
        .order_by(Challenge.start_date.desc(), Challenge.challenge_id.desc())
    ).all()


# ============================================
# PARTICIPANTS
# ============================================

def find_participant(session: Session, challenge_id: int, customer_id: str) -> Optional[Participant]:
    return session.exec(
        select(Participant).where(
            (Participant.challenge_id == challenge_id) &
            (Participant.customer_id == customer_id)
        )
    ).first()


def find_participant_by_email(session: Session, challenge_id: int, email: str) -> Optional[Participant]:
    return session.exec(
        select(Participant)
        .where(
            (Participant.challenge_id == challenge_id) &
            (func.lower(Participant.email) == email.strip().lower())
        )
        .order_by(Participant.created_at.desc())
    ).first()


def has_submission(session: Session, participant_id: int, submission_type: SubmissionType) -> bool:
    return session.exec(
        select(Submission.submission_id)
        .where(
            (Submission.participant_id == participant_id) &
            (Submission.type == submission_type)
        )
        .limit(1)
    ).first() is not None


def get_or_create_participant(
    session: Session,
    shop: str,
    customer_id: str,
    email: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Optional[Participant], bool]:
    """Idempotent get-or-create for the shop's active challenge.

    Returns ``(participant, created)``. An existing participant is returned
    untouched; its stored name and email are never overwritten. ``created`` is
    False when the row already existed, including when a concurrent request
    inserted it first. Returns ``(None, False)`` when the shop has no active
    challenge.
    """
    challenge = get_active_challenge(session, shop, now)
    if challenge is None:
        return None, False

    participant = find_participant(session, challenge.challenge_id, customer_id)
    if participant is not None:
        return participant, False

    participant = Participant(
        challenge_id=challenge.challenge_id,
        shop=shop,
        customer_id=customer_id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        status=ParticipantStatus.NOT_STARTED,
    )
    session.add(participant)
    try:
        session.commit()
    except IntegrityError:
        # Another request created the same (challenge, customer) row first
        session.rollback()
        participant = find_participant(session, challenge.challenge_id, customer_id)
        if participant is None:
            raise
        logger.info("Participant for customer %s in challenge %s already existed", customer_id, challenge.challenge_id)
        return participant, False

    session.refresh(participant)
    logger.info("Created participant %s for challenge %s", participant.participant_id, challenge.challenge_id)
    return participant, True


def get_participant_with_submissions(session: Session, participant_id: int) -> Optional[Participant]:
    return session.get(Participant, participant_id)


def get_submission(participant: Participant, submission_type: SubmissionType) -> Optional[Submission]:
    for submission in participant.submissions:
        if submission.type == submission_type:
            return submission
    return None


# ============================================
# ELIGIBILITY
# ============================================

def can_start_challenge(session: Session, shop: str, customer_id: str, now: Optional[datetime] = None) -> Eligibility:
    challenge = get_active_challenge(session, shop, now)
    if challenge is None:
        return Eligibility(eligible=False, reason=NO_ACTIVE_CHALLENGE)

    participant = find_participant(session, challenge.challenge_id, customer_id)
    if participant is None:
        return Eligibility(eligible=True, challenge=challenge)

    # A NOT_STARTED row can still carry an orphaned START submission, so both must hold
    if participant.status != ParticipantStatus.NOT_STARTED or has_submission(
        session, participant.participant_id, SubmissionType.START
    ):
        return Eligibility(eligible=False, reason=ALREADY_STARTED, participant=participant, challenge=challenge)

    return Eligibility(eligible=True, participant=participant, challenge=challenge)


def can_end_challenge(session: Session, shop: str, customer_id: str, now: Optional[datetime] = None) -> Eligibility:
    challenge = get_active_challenge(session, shop, now)
    if challenge is None:
        return Eligibility(eligible=False, reason=NO_ACTIVE_CHALLENGE)

    participant = find_participant(session, challenge.challenge_id, customer_id)
    if participant is None:
        return Eligibility(eligible=False, reason=MUST_START_FIRST, challenge=challenge)

    if not has_submission(session, participant.participant_id, SubmissionType.START):
        return Eligibility(eligible=False, reason=MUST_COMPLETE_START_FORM, participant=participant, challenge=challenge)

    if has_submission(session, participant.participant_id, SubmissionType.END):
        return Eligibility(eligible=False, reason=ALREADY_COMPLETED, participant=participant, challenge=challenge)

    return Eligibility(eligible=True, participant=participant, challenge=challenge)


# ============================================
# SUBMISSIONS
# ============================================

def _record_submission(
    session: Session,
    participant: Participant,
    submission_type: SubmissionType,
    weight: float,
    photos: Iterable[PhotoIn],
    notes: Optional[str],
    orders_count: Optional[int],
    total_spent: Optional[float],
    timestamp: datetime,
) -> Submission:
    # Lock the participant and re-check, so a concurrent request cannot write a second START or END
    session.exec(
        select(Participant.participant_id)
        .where(Participant.participant_id == participant.participant_id)
        .with_for_update()
    ).first()
    if has_submission(session, participant.participant_id, submission_type):
        session.rollback()
        raise EligibilityError(ALREADY_STARTED if submission_type == SubmissionType.START else ALREADY_COMPLETED)

    # Submission, photos and the status change land in a single commit
    try:
        submission = Submission(
            participant_id=participant.participant_id,
            shop=participant.shop,
            type=submission_type,
            weight=weight,
            notes=notes,
            submitted_at=timestamp,
        )
        session.add(submission)
        session.flush()

        for photo in photos:
            session.add(Photo(
                submission_id=submission.submission_id,
                shop=participant.shop,
                order=photo.order,
                orientation=photo.orientation,
                url=photo.public_url,
                storage_key=photo.key,
                file_name=photo.file_name,
                file_size=photo.file_size,
                mime_type=photo.mime_type,
                uploaded_at=timestamp,
            ))

        if submission_type == SubmissionType.START:
            participant.status = ParticipantStatus.IN_PROGRESS
            participant.start_weight = weight
            participant.started_at = timestamp
        else:
            participant.status = ParticipantStatus.COMPLETED
            participant.end_weight = weight
            participant.completed_at = timestamp

        if orders_count is not None:
            participant.orders_count = orders_count
        if total_spent is not None:
            participant.total_spent = total_spent
        participant.updated_at = timestamp
        session.add(participant)

        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(submission)
    logger.info(
        "Recorded %s submission %s for participant %s (status now %s)",
        submission_type.value, submission.submission_id, participant.participant_id, participant.status.value
    )
    return submission


def submit_start(
    session: Session,
    shop: str,
    customer_id: str,
    email: str,
    weight: float,
    photos: Iterable[PhotoIn],
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    notes: Optional[str] = None,
    orders_count: Optional[int] = None,
    total_spent: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Submission:
    now = as_utc(now) if now else utcnow()

    eligibility = can_start_challenge(session, shop, customer_id, now)
    if not eligibility.eligible:
        raise EligibilityError(eligibility.reason)

    participant = eligibility.participant
    if participant is None:
        participant, created = get_or_create_participant(
            session, shop, customer_id, email, first_name, last_name, now
        )
        if participant is None:
            raise EligibilityError(NO_ACTIVE_CHALLENGE)
        # Another request for the same shopper created the row in the meantime
        if not created:
            raise EligibilityError(ALREADY_STARTED)
    if participant.status != ParticipantStatus.NOT_STARTED:
        raise EligibilityError(ALREADY_STARTED)

    return _record_submission(
        session, participant, SubmissionType.START, weight, photos, notes, orders_count, total_spent, now
    )


def submit_end(
    session: Session,
    shop: str,
    customer_id: str,
    weight: float,
    photos: Iterable[PhotoIn],
    notes: Optional[str] = None,
    orders_count: Optional[int] = None,
    total_spent: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Submission:
    now = as_utc(now) if now else utcnow()

    eligibility = can_end_challenge(session, shop, customer_id, now)
    if not eligibility.eligible:
        raise EligibilityError(eligibility.reason)

    return _record_submission(
        session, eligibility.participant, SubmissionType.END, weight, photos, notes, orders_count, total_spent, now
    )


# ============================================
# CHALLENGE MANAGEMENT (ADMIN)
# ============================================

def create_challenge(
    session: Session,
    shop: str,
    name: str,
    start_date: datetime,
    end_date: datetime,
    description: Optional[str] = None,
    customer_tag: Optional[str] = None,
    is_active: bool = True,
) -> Challenge:
    start_date, end_date = as_utc(start_date), as_utc(end_date)
    errors = validate_admin_challenge_form(name, description, start_date, end_date)
    if errors:
        raise FormValidationError(errors)

    challenge = Challenge(
        shop=shop,
        name=name.strip(),
        description=description or None,
        start_date=start_date,
        end_date=end_date,
        customer_tag=customer_tag or None,
        is_active=is_active,
    )
    session.add(challenge)
    session.commit()
    session.refresh(challenge)
    logger.info("Created challenge %s for %s", challenge.challenge_id, shop)
    return challenge


def update_challenge(session: Session, challenge: Challenge, **changes) -> Challenge:
    """Applies every provided field. Only description and customer_tag can be cleared."""
    for field, value in changes.items():
        if value is None and field not in CLEARABLE_CHALLENGE_FIELDS:
            continue
        if field in ("start_date", "end_date"):
            value = as_utc(value)
        elif field in CLEARABLE_CHALLENGE_FIELDS:
            value = value or None
        setattr(challenge, field, value)

    errors = validate_admin_challenge_form(
        challenge.name,
        challenge.description,
        as_utc(challenge.start_date),
        as_utc(challenge.end_date),
    )
    if errors:
        session.rollback()
        raise FormValidationError(errors)

    challenge.updated_at = utcnow()
    session.add(challenge)
    session.commit()
    session.refresh(challenge)
    return challenge


def delete_challenge(session: Session, challenge: Challenge) -> None:
    challenge_id = challenge.challenge_id
    session.delete(challenge)
    session.commit()
    logger.info("Deleted challenge %s and its participants", challenge_id)


def get_challenge(session: Session, shop: str, challenge_id: int) -> Optional[Challenge]:
    challenge = session.get(Challenge, challenge_id)
    if challenge is None or challenge.shop != shop:
        return None
    return challenge


def get_all_challenges(session: Session, shop: str) -> List[Tuple[Challenge, int]]:
    return session.exec(
        select(Challenge, func.count(Participant.participant_id))
        .outerjoin(Participant, Participant.challenge_id == Challenge.challenge_id)
        .where(Challenge.shop == shop)
        .group_by(Challenge.challenge_id)
        .order_by(Challenge.start_date.desc())
    ).all()


# ============================================
# STATISTICS
# ============================================

def get_challenge_stats(session: Session, challenge_id: int) -> dict:
    participants = session.exec(
        select(Participant).where(Participant.challenge_id == challenge_id)
    ).all()

    completed_with_weights = [
        p for p in participants
        if p.status == ParticipantStatus.COMPLETED and p.start_weight and p.end_weight
    ]
    avg_weight_loss = (
        sum(p.start_weight - p.end_weight for p in completed_with_weights) / len(completed_with_weights)
        if completed_with_weights else 0
    )

    return {
        "total": len(participants),
        "not_started": sum(1 for p in participants if p.status == ParticipantStatus.NOT_STARTED),
        "in_progress": sum(1 for p in participants if p.status == ParticipantStatus.IN_PROGRESS),
        "completed": sum(1 for p in participants if p.status == ParticipantStatus.COMPLETED),
        "avg_weight_loss": format_weight(avg_weight_loss),
    }


def count_submissions(session: Session, challenge_id: int, submission_type: SubmissionType) -> int:
    return session.exec(
        select(func.count(Submission.submission_id))
        .join(Participant, Participant.participant_id == Submission.participant_id)
        .where(
            (Participant.challenge_id == challenge_id) &
            (Submission.type == submission_type)
        )
    ).one()
