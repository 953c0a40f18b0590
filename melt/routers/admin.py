import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select
from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime

from .. import config
from ..auth import get_current_shop
from ..database import get_session
from ..models.challenge import Challenge, ChallengePublic
from ..models.customization import CustomizationUpdate
from ..models.participant import Participant, ParticipantStatus
from ..models.submission import SubmissionType
from ..services.challenges import (
    count_submissions,
    create_challenge,
    delete_challenge,
    get_active_challenge,
    get_active_challenges,
    get_all_challenges,
    get_challenge,
    get_challenge_stats,
    get_participant_with_submissions,
    get_submission,
    update_challenge,
)
from ..services.customization import get_customization_settings, update_customization_settings
from ..services.leaderboard import (
    ParticipantRow,
    SortDirection,
    SortOption,
    build_participant_rows,
    sort_rows,
)
from ..services.maintenance import (
    backfill_order_data,
    list_challenges_by_shop,
    migrate_shop_domain,
    participants_missing_order_data,
    shop_domain_stats,
)
from ..services.shopify import ShopifyAdminClient, get_shopify_client
from ..services.uploads import UploadAdapter, get_upload_adapter
from ..services.validation import FormValidationError, format_weight, lbs_to_kg

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["Admin"]
)


def validation_failed(e: FormValidationError):
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"errors": e.errors})


def get_shop_challenge(session: Session, shop: str, challenge_id: int) -> Challenge:
    challenge = get_challenge(session, shop, challenge_id)
    if not challenge:
        raise HTTPException(status_code=404, detail="Challenge not found")
    return challenge


# ============================================
# CHALLENGES
# ============================================

class ChallengeCreate(BaseModel):
    name: str
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    customer_tag: Optional[str] = None
    is_active: bool = True

class ChallengeUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    customer_tag: Optional[str] = None
    is_active: Optional[bool] = None

class ChallengeStats(BaseModel):
    total: int
    not_started: int
    in_progress: int
    completed: int
    avg_weight_loss: float

class ChallengeListItem(ChallengePublic):
    participant_count: int
    stats: ChallengeStats

@router.get("/challenges", response_model=List[ChallengeListItem])
def list_challenges(
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop)
):
    return [
        {
            **challenge.model_dump(),
            "participant_count": participant_count,
            "stats": get_challenge_stats(session, challenge.challenge_id),
        }
        for challenge, participant_count in get_all_challenges(session, shop)
    ]


@router.post("/challenges", response_model=ChallengePublic, status_code=status.HTTP_201_CREATED)
def create_new_challenge(
    challenge: ChallengeCreate,
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop)
):
    try:
        return create_challenge(
            session,
            shop,
            challenge.name,
            challenge.start_date,
            challenge.end_date,
            description=challenge.description,
            customer_tag=challenge.customer_tag,
            is_active=challenge.is_active,
        )
    except FormValidationError as e:
        raise validation_failed(e)


class ChallengeDetailStats(BaseModel):
    total: int
    start_forms_submitted: int
    end_forms_submitted: int
    total_weight_loss: float
    avg_weight_loss: float

class ChallengeDetail(BaseModel):
    challenge: ChallengePublic
    participants: List[ParticipantRow]
    stats: ChallengeDetailStats
    sort_by: SortOption
    direction: SortDirection

@router.get("/challenges/{challenge_id}", response_model=ChallengeDetail)
def read_challenge(
    challenge_id: int,
    sort_by: SortOption = SortOption.WEIGHT_LOSS,
    direction: SortDirection = SortDirection.DESC,
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop)
):
    challenge = get_shop_challenge(session, shop, challenge_id)

    participants = session.exec(
        select(Participant)
        .where(Participant.challenge_id == challenge.challenge_id)
        .order_by(Participant.created_at.desc())
    ).all()
    rows = build_participant_rows(participants)

    completed_losses = [row.weight_loss or 0 for row in rows if row.status == ParticipantStatus.COMPLETED]
    total_weight_loss = sum(completed_losses)

    return {
        "challenge": challenge,
        "participants": sort_rows(rows, sort_by, direction),
        "stats": {
            "total": len(rows),
            "start_forms_submitted": count_submissions(session, challenge.challenge_id, SubmissionType.START),
            "end_forms_submitted": count_submissions(session, challenge.challenge_id, SubmissionType.END),
            "total_weight_loss": format_weight(total_weight_loss),
            "avg_weight_loss": format_weight(total_weight_loss / len(completed_losses)) if completed_losses else 0,
        },
        "sort_by": sort_by,
        "direction": direction,
    }


@router.put("/challenges/{challenge_id}", response_model=ChallengePublic)
def edit_challenge(
    challenge_id: int,
    changes: ChallengeUpdate,
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop)
):
    challenge = get_shop_challenge(session, shop, challenge_id)
    try:
        return update_challenge(session, challenge, **changes.model_dump(exclude_unset=True))
    except FormValidationError as e:
        raise validation_failed(e)


@router.delete("/challenges/{challenge_id}")
def remove_challenge(
    challenge_id: int,
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop)
):
    challenge = get_shop_challenge(session, shop, challenge_id)
    delete_challenge(session, challenge)
    return {"message": "Challenge deleted successfully"}


# ============================================
# DASHBOARD
# ============================================

@router.get("/dashboard")
def read_dashboard(
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop)
):
    active_challenge = get_active_challenge(session, shop)
    if not active_challenge:
        return {"participants": [], "active_challenge": None, "stats": None}

    participants = session.exec(
        select(Participant)
        .where(Participant.challenge_id == active_challenge.challenge_id)
        .order_by(Participant.created_at.desc())
    ).all()

    return {
        "participants": build_participant_rows(participants),
        "active_challenge": {
            "challenge_id": active_challenge.challenge_id,
            "name": active_challenge.name,
            "start_date": active_challenge.start_date,
            "end_date": active_challenge.end_date,
        },
        "stats": get_challenge_stats(session, active_challenge.challenge_id),
    }


# ============================================
# PARTICIPANT DETAIL
# ============================================

def serialize_submission(submission):
    if submission is None:
        return None
    return {
        "submission_id": submission.submission_id,
        "weight": submission.weight,
        "submitted_at": submission.submitted_at,
        "notes": submission.notes,
        "photos": [
            {
                "photo_id": photo.photo_id,
                "url": photo.url,
                "order": photo.order,
                "file_name": photo.file_name,
                "orientation": photo.orientation,
            }
            for photo in submission.photos
        ],
    }

@router.get("/participants/{participant_id}")
def read_participant(
    participant_id: int,
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop)
):
    participant = get_participant_with_submissions(session, participant_id)
    if not participant:
        raise HTTPException(status_code=404, detail="Participant not found")
    if participant.shop != shop:
        raise HTTPException(status_code=403, detail="Unauthorized")

    return {
        "participant": {
            "participant_id": participant.participant_id,
            "email": participant.email,
            "first_name": participant.first_name,
            "last_name": participant.last_name,
            "status": participant.status,
            "start_weight": participant.start_weight,
            "end_weight": participant.end_weight,
            "start_weight_kg": lbs_to_kg(participant.start_weight) if participant.start_weight else None,
            "end_weight_kg": lbs_to_kg(participant.end_weight) if participant.end_weight else None,
            "started_at": participant.started_at,
            "completed_at": participant.completed_at,
            "orders_count": participant.orders_count,
            "total_spent": participant.total_spent,
        },
        "challenge": {
            "name": participant.challenge.name,
            "start_date": participant.challenge.start_date,
            "end_date": participant.challenge.end_date,
        },
        "start_submission": serialize_submission(get_submission(participant, SubmissionType.START)),
        "end_submission": serialize_submission(get_submission(participant, SubmissionType.END)),
    }


# ============================================
# CUSTOMIZATION
# ============================================

@router.get("/customize")
def read_customization(
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop)
):
    return get_customization_settings(session, shop)


@router.put("/customize")
def save_customization(
    data: CustomizationUpdate,
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop)
):
    try:
        update_customization_settings(session, shop, data)
    except FormValidationError as e:
        raise validation_failed(e)
    return get_customization_settings(session, shop)


# ============================================
# DIAGNOSTICS & BACKFILL
# ============================================

def diagnostic_shops(shop: str) -> List[str]:
    # An admin only sees their own shop and the old domains they may merge from
    return [shop] + [domain for domain in config.MIGRATABLE_SHOP_DOMAINS if domain != shop]

@router.get("/diagnostic")
def read_diagnostic(
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop),
    uploads: UploadAdapter = Depends(get_upload_adapter)
):
    shops = diagnostic_shops(shop)
    return {
        "current_shop": shop,
        "migratable_shops": shops[1:],
        "challenges": list_challenges_by_shop(session, shops),
        "running_challenges": [
            {"challenge_id": c.challenge_id, "name": c.name, "start_date": c.start_date}
            for c in get_active_challenges(session, shop)
        ],
        "upload_backend": uploads.describe(),
        **shop_domain_stats(session, shops),
    }


class ShopDomainFix(BaseModel):
    old_shop: str

@router.post("/diagnostic/fix")
def fix_shop_domain(
    fix: ShopDomainFix,
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop)
):
    # Records only ever move into the caller's own shop
    if fix.old_shop != shop and fix.old_shop not in config.MIGRATABLE_SHOP_DOMAINS:
        logger.warning("Shop %s tried to migrate records from %s", shop, fix.old_shop)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"errors": {"shop": f"{fix.old_shop} is not a domain this shop can migrate from"}}
        )

    try:
        stats = migrate_shop_domain(session, fix.old_shop, shop)
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"errors": {"shop": str(e)}})

    return {
        "success": True,
        "message": f"Successfully migrated shop domains from {fix.old_shop} to {shop}",
        "stats": stats,
    }


@router.get("/backfill-orders")
def read_backfill_candidates(
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop)
):
    participants = participants_missing_order_data(session, shop)
    return {
        "participants_needing_update": len(participants),
        "participants": [
            {
                "participant_id": p.participant_id,
                "email": p.email,
                "customer_id": p.customer_id,
                "orders_count": p.orders_count,
                "total_spent": p.total_spent,
            }
            for p in participants
        ],
    }


@router.post("/backfill-orders")
def run_backfill(
    session: Session = Depends(get_session),
    shop: str = Depends(get_current_shop),
    shopify: ShopifyAdminClient = Depends(get_shopify_client)
):
    stats = backfill_order_data(session, shop, shopify)
    message = "No participants need updating!" if stats["total"] == 0 else "Backfill complete!"
    return {"success": True, "message": message, "stats": stats}
