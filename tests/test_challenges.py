from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session, select

from melt.models.common import as_utc, utcnow
from melt.models.participant import Participant, ParticipantStatus
from melt.models.photo import Photo, PhotoOrientation
from melt.models.submission import Submission, SubmissionType
from melt.services import challenges
from melt.services.challenges import (
    ALREADY_COMPLETED,
    ALREADY_STARTED,
    MUST_COMPLETE_START_FORM,
    MUST_START_FIRST,
    NO_ACTIVE_CHALLENGE,
    EligibilityError,
    PhotoIn,
    can_end_challenge,
    can_start_challenge,
    create_challenge,
    delete_challenge,
    get_active_challenge,
    get_all_challenges,
    get_challenge,
    get_challenge_stats,
    get_or_create_participant,
    submit_end,
    submit_start,
    update_challenge,
)
from melt.services.validation import FormValidationError

from .conftest import OTHER_SHOP, SHOP, make_challenge

CUSTOMER = "gid://shopify/Customer/1"


def photos():
    return [
        PhotoIn(order=i, orientation=orientation, public_url=f"https://cdn.example.com/p{i}.jpg",
                key=f"p{i}.jpg", file_name=f"p{i}.jpg", file_size=1000, mime_type="image/jpeg")
        for i, orientation in ((1, PhotoOrientation.FRONT), (2, PhotoOrientation.SIDE), (3, PhotoOrientation.BACK))
    ]


def start(session: Session, customer_id: str = CUSTOMER, weight: float = 200, **kwargs):
    return submit_start(session, SHOP, customer_id, "jane@example.com", weight, photos(),
                        first_name="Jane", last_name="Doe", **kwargs)


# ============================================
# ACTIVE CHALLENGE
# ============================================

def test_active_challenge_none_without_challenges(session: Session):
    assert get_active_challenge(session, SHOP) is None


def test_active_challenge_ignores_inactive_expired_and_other_shops(session: Session):
    now = utcnow()
    make_challenge(session, is_active=False)
    make_challenge(session, start_date=now - timedelta(days=30), end_date=now - timedelta(days=1))
    make_challenge(session, shop=OTHER_SHOP)

    assert get_active_challenge(session, SHOP, now) is None


def test_overlapping_challenges_resolve_to_latest_start(session: Session):
    now = utcnow()
    make_challenge(session, name="Older", start_date=now - timedelta(days=10))
    newer = make_challenge(session, name="Newer", start_date=now - timedelta(days=2))

    assert get_active_challenge(session, SHOP, now).challenge_id == newer.challenge_id


def test_upcoming_challenge_is_returned_when_none_running(session: Session):
    now = utcnow()
    later = make_challenge(session, name="Later", start_date=now + timedelta(days=10), end_date=now + timedelta(days=40))
    sooner = make_challenge(session, name="Sooner", start_date=now + timedelta(days=2), end_date=now + timedelta(days=40))

    assert get_active_challenge(session, SHOP, now).challenge_id == sooner.challenge_id
    assert later.challenge_id != sooner.challenge_id


def test_running_challenge_wins_over_upcoming(session: Session):
    now = utcnow()
    running = make_challenge(session, name="Running")
    make_challenge(session, name="Upcoming", start_date=now + timedelta(days=1), end_date=now + timedelta(days=5))

    assert get_active_challenge(session, SHOP, now).challenge_id == running.challenge_id


# ============================================
# PARTICIPANTS
# ============================================

def test_get_or_create_participant_is_idempotent(session: Session):
    make_challenge(session)
    first, created = get_or_create_participant(session, SHOP, CUSTOMER, "jane@example.com", "Jane", "Doe")
    second, created_again = get_or_create_participant(session, SHOP, CUSTOMER, "other@example.com", "Other", "Name")

    assert created is True
    assert created_again is False

    assert first.participant_id == second.participant_id
    assert second.email == "jane@example.com"
    assert second.first_name == "Jane"
    assert first.status == ParticipantStatus.NOT_STARTED


def test_get_or_create_participant_without_challenge(session: Session):
    assert get_or_create_participant(session, SHOP, CUSTOMER, "jane@example.com") == (None, False)


def test_get_or_create_participant_recovers_from_duplicate_insert(session: Session, monkeypatch):
    challenge = make_challenge(session)
    existing = Participant(challenge_id=challenge.challenge_id, shop=SHOP, customer_id=CUSTOMER, email="jane@example.com")
    session.add(existing)
    session.commit()
    existing_id = existing.participant_id

    real_find = challenges.find_participant
    calls = []

    def find_after_race(session, challenge_id, customer_id):
        calls.append(customer_id)
        if len(calls) == 1:
            return None
        return real_find(session, challenge_id, customer_id)

    monkeypatch.setattr(challenges, "find_participant", find_after_race)

    participant, created = get_or_create_participant(session, SHOP, CUSTOMER, "jane@example.com")

    assert participant.participant_id == existing_id
    assert created is False
    assert len(session.exec(select(Participant)).all()) == 1


def test_concurrent_start_records_a_single_start(engine, session: Session, monkeypatch):
    make_challenge(session)

    real_find = challenges.find_participant
    stale_lookups = []

    def find_with_stale_reads(db, challenge_id, customer_id):
        # The second request's reads happen before the first request's insert is visible
        if db is not session and len(stale_lookups) < 2:
            stale_lookups.append(customer_id)
            return None
        return real_find(db, challenge_id, customer_id)

    monkeypatch.setattr(challenges, "find_participant", find_with_stale_reads)

    # First request has created its participant but not yet written the START
    participant, created = get_or_create_participant(session, SHOP, CUSTOMER, "jane@example.com")
    assert created is True

    with Session(engine) as second_request:
        with pytest.raises(EligibilityError) as exc:
            submit_start(second_request, SHOP, CUSTOMER, "jane@example.com", 190, photos())
        assert exc.value.reason == ALREADY_STARTED

    assert len(stale_lookups) == 2
    start(session)

    starts = session.exec(select(Submission).where(Submission.type == SubmissionType.START)).all()
    assert len(starts) == 1
    assert starts[0].participant_id == participant.participant_id


def test_record_submission_rechecks_existing_submission(session: Session):
    make_challenge(session)
    participant, _ = get_or_create_participant(session, SHOP, CUSTOMER, "jane@example.com")
    session.add(Submission(participant_id=participant.participant_id, shop=SHOP, type=SubmissionType.START, weight=180))
    session.add(Submission(participant_id=participant.participant_id, shop=SHOP, type=SubmissionType.END, weight=170))
    session.commit()

    for submission_type, reason in ((SubmissionType.START, ALREADY_STARTED), (SubmissionType.END, ALREADY_COMPLETED)):
        with pytest.raises(EligibilityError) as exc:
            challenges._record_submission(
                session, participant, submission_type, 175, photos(), None, None, None, utcnow()
            )
        assert exc.value.reason == reason

    assert len(session.exec(select(Submission)).all()) == 2
    session.refresh(participant)
    assert participant.status == ParticipantStatus.NOT_STARTED


# ============================================
# ELIGIBILITY
# ============================================

def test_cannot_start_without_active_challenge(session: Session):
    result = can_start_challenge(session, SHOP, CUSTOMER)
    assert not result.eligible
    assert result.reason == NO_ACTIVE_CHALLENGE
    assert can_end_challenge(session, SHOP, CUSTOMER).reason == NO_ACTIVE_CHALLENGE


def test_new_customer_can_start_but_not_end(session: Session):
    make_challenge(session)

    assert can_start_challenge(session, SHOP, CUSTOMER).eligible
    end = can_end_challenge(session, SHOP, CUSTOMER)
    assert not end.eligible
    assert end.reason == MUST_START_FIRST


def test_not_started_participant_can_start(session: Session):
    make_challenge(session)
    get_or_create_participant(session, SHOP, CUSTOMER, "jane@example.com")

    assert can_start_challenge(session, SHOP, CUSTOMER).eligible
    assert can_end_challenge(session, SHOP, CUSTOMER).reason == MUST_COMPLETE_START_FORM


def test_orphaned_start_submission_blocks_restart(session: Session):
    make_challenge(session)
    participant, _ = get_or_create_participant(session, SHOP, CUSTOMER, "jane@example.com")
    session.add(Submission(participant_id=participant.participant_id, shop=SHOP, type=SubmissionType.START, weight=180))
    session.commit()

    result = can_start_challenge(session, SHOP, CUSTOMER)
    assert not result.eligible
    assert result.reason == ALREADY_STARTED


def test_start_submission_moves_participant_in_progress(session: Session):
    make_challenge(session)
    submission = start(session, orders_count=4, total_spent=120.5)

    participant = submission.participant
    assert submission.type == SubmissionType.START
    assert [photo.order for photo in submission.photos] == [1, 2, 3]
    assert participant.status == ParticipantStatus.IN_PROGRESS
    assert participant.start_weight == 200
    assert participant.started_at is not None
    assert participant.orders_count == 4
    assert participant.total_spent == 120.5

    again = can_start_challenge(session, SHOP, CUSTOMER)
    assert again.reason == ALREADY_STARTED
    assert can_end_challenge(session, SHOP, CUSTOMER).eligible


def test_second_start_is_rejected(session: Session):
    make_challenge(session)
    start(session)

    with pytest.raises(EligibilityError) as exc:
        start(session)
    assert exc.value.reason == ALREADY_STARTED
    assert len(session.exec(select(Submission)).all()) == 1


def test_full_lifecycle_completes_participant(session: Session):
    make_challenge(session)
    start(session)
    submission = submit_end(session, SHOP, CUSTOMER, 185, photos())

    participant = submission.participant
    assert participant.status == ParticipantStatus.COMPLETED
    assert participant.end_weight == 185
    assert participant.completed_at is not None

    result = can_end_challenge(session, SHOP, CUSTOMER)
    assert not result.eligible
    assert result.reason == ALREADY_COMPLETED

    with pytest.raises(EligibilityError) as exc:
        submit_end(session, SHOP, CUSTOMER, 180, photos())
    assert exc.value.reason == ALREADY_COMPLETED


def test_end_without_start_is_rejected(session: Session):
    make_challenge(session)
    with pytest.raises(EligibilityError) as exc:
        submit_end(session, SHOP, CUSTOMER, 185, photos())
    assert exc.value.reason == MUST_START_FIRST


def test_order_data_is_kept_when_lookup_returns_nothing(session: Session):
    make_challenge(session)
    start(session, orders_count=3, total_spent=50.0)
    submit_end(session, SHOP, CUSTOMER, 190, photos())

    participant = session.exec(select(Participant)).one()
    assert participant.orders_count == 3
    assert participant.total_spent == 50.0


def test_failed_submission_leaves_nothing_behind(session: Session):
    make_challenge(session)
    broken = photos()
    broken[2] = PhotoIn.model_construct(
        order=3, orientation=PhotoOrientation.BACK, public_url="https://cdn.example.com/p3.jpg",
        key=None, file_name=None, file_size=1000, mime_type="image/jpeg",
    )

    with pytest.raises(Exception):
        submit_start(session, SHOP, CUSTOMER, "jane@example.com", 200, broken)

    participant = session.exec(select(Participant)).one()
    assert participant.status == ParticipantStatus.NOT_STARTED
    assert session.exec(select(Submission)).all() == []
    assert session.exec(select(Photo)).all() == []

    # The customer can simply try again
    start(session)
    session.refresh(participant)
    assert participant.status == ParticipantStatus.IN_PROGRESS


# ============================================
# CHALLENGE MANAGEMENT
# ============================================

def test_create_challenge_rejects_bad_dates(session: Session):
    now = utcnow()
    with pytest.raises(FormValidationError) as exc:
        create_challenge(session, SHOP, "Challenge", now, now)
    assert exc.value.errors["dates"] == "End date must be after start date"

    with pytest.raises(FormValidationError) as exc:
        create_challenge(session, SHOP, " ", now, now + timedelta(days=1))
    assert exc.value.errors["name"] == "Challenge name is required"


def test_update_challenge_validates_merged_dates(session: Session):
    challenge = make_challenge(session)
    with pytest.raises(FormValidationError):
        update_challenge(session, challenge, end_date=challenge.start_date - timedelta(days=1))

    updated = update_challenge(session, challenge, name="Renamed", is_active=False)
    assert updated.name == "Renamed"
    assert updated.is_active is False


def test_update_challenge_clears_description_and_tag(session: Session):
    now = utcnow()
    challenge = create_challenge(session, SHOP, "Challenge", now - timedelta(days=1), now + timedelta(days=1),
                                 description="Twelve weeks", customer_tag="vip")

    updated = update_challenge(session, challenge, description=None, customer_tag="", name=None)

    assert updated.description is None
    assert updated.customer_tag is None
    assert updated.name == "Challenge"


def test_challenge_dates_are_normalized_to_utc(session: Session):
    plus_two = timezone(timedelta(hours=2))
    start_local = datetime(2026, 3, 1, 9, 0, tzinfo=plus_two)
    challenge = create_challenge(session, SHOP, "Challenge", start_local, start_local + timedelta(days=30))

    assert as_utc(challenge.start_date) == datetime(2026, 3, 1, 7, 0, tzinfo=timezone.utc)

    # Naive and aware instants select the same challenge
    assert get_active_challenge(session, SHOP, datetime(2026, 3, 1, 8, 0)).challenge_id == challenge.challenge_id
    assert get_active_challenge(session, SHOP, datetime(2026, 3, 1, 10, 0, tzinfo=plus_two)) is not None
    upcoming = get_active_challenge(session, SHOP, datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc))
    assert upcoming.challenge_id == challenge.challenge_id


def test_get_challenge_is_scoped_to_shop(session: Session):
    challenge = make_challenge(session)
    assert get_challenge(session, SHOP, challenge.challenge_id).challenge_id == challenge.challenge_id
    assert get_challenge(session, OTHER_SHOP, challenge.challenge_id) is None


def test_delete_challenge_cascades(session: Session):
    challenge = make_challenge(session)
    start(session)

    delete_challenge(session, challenge)

    assert session.exec(select(Participant)).all() == []
    assert session.exec(select(Submission)).all() == []
    assert session.exec(select(Photo)).all() == []


def test_challenge_stats_and_counts(session: Session):
    challenge = make_challenge(session)
    start(session, customer_id="a", weight=200)
    submit_end(session, SHOP, "a", 190, photos())
    start(session, customer_id="b", weight=180)
    submit_end(session, SHOP, "b", 175, photos())
    start(session, customer_id="c", weight=150)
    get_or_create_participant(session, SHOP, "d", "d@example.com")

    stats = get_challenge_stats(session, challenge.challenge_id)
    assert stats == {
        "total": 4,
        "not_started": 1,
        "in_progress": 1,
        "completed": 2,
        "avg_weight_loss": 7.5,
    }

    [(listed, count)] = get_all_challenges(session, SHOP)
    assert listed.challenge_id == challenge.challenge_id
    assert count == 4
    assert challenges.count_submissions(session, challenge.challenge_id, SubmissionType.START) == 3
    assert challenges.count_submissions(session, challenge.challenge_id, SubmissionType.END) == 2
