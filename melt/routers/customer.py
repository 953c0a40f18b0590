import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from pydantic import BaseModel, EmailStr
from typing import Optional, List, Union
from enum import Enum

from .. import config
from ..auth import CustomerIdentity, create_customer_token, get_optional_customer, get_current_customer
from ..database import get_session
from ..models.challenge import Challenge
from ..models.common import as_utc, utcnow
from ..services.challenges import (
    EligibilityError,
    PhotoIn,
    can_end_challenge,
    can_start_challenge,
    find_participant_by_email,
    get_active_challenge,
    submit_end,
    submit_start,
)
from ..services.customization import get_customization_settings
from ..services.shopify import ShopifyAdminClient, ShopifyCustomer, get_shopify_client
from ..services.uploads import UploadAdapter, get_upload_adapter
from ..services.validation import (
    kg_to_lbs,
    parse_weight,
    sanitize_string,
    validate_challenge_form,
    validate_name,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/customer",
    tags=["Customer"]
)

GENERIC_FAILURE = "Failed to submit form. Please try again."
ACCOUNT_CREATION_FAILURE = "Failed to create customer account. Please try again."


def bad_request(errors: dict):
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"errors": errors})


def resolve_shop(customer: Optional[CustomerIdentity]) -> str:
    if customer is not None:
        return customer.shop
    if config.SHOP_DOMAIN:
        return config.SHOP_DOMAIN
    raise bad_request({"shop": "Shop could not be determined"})


def resolve_customer_id(
    session: Session,
    shop: str,
    email: str,
    customer: Optional[CustomerIdentity],
    shopify_customer: Optional[ShopifyCustomer],
) -> str:
    """Picks the identity a form submission is recorded under.

    A logged in shopper always uses their session. Anonymous shoppers reuse the
    identity of an existing participant with the same email, then the Shopify
    customer found by email, then a synthetic "email:" identity.
    """
    if customer is not None:
        return customer.customer_id

    challenge = get_active_challenge(session, shop)
    if challenge is not None:
        existing = find_participant_by_email(session, challenge.challenge_id, email)
        if existing is not None:
            return existing.customer_id

    if shopify_customer is not None:
        return shopify_customer.id
    return f"email:{email.strip().lower()}"


def confirm_uploads(adapter: UploadAdapter, photos: List[PhotoIn]):
    try:
        missing = [photo.order for photo in photos if not adapter.finalize(photo.key, photo.public_url)]
    except Exception:
        logger.exception("Upload backend %s failed while confirming photos", adapter.name)
        raise HTTPException(status_code=500, detail={"errors": {"general": GENERIC_FAILURE}})

    if missing:
        raise bad_request({
            "photos": f"Photo {', '.join(str(order) for order in sorted(missing))} was not uploaded. Please upload it again."
        })


# ============================================
# CUSTOMER SESSION
# ============================================

class LoginRequest(BaseModel):
    email: EmailStr
    shop: Optional[str] = None

class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    customer: CustomerIdentity

@router.post("/auth/login", response_model=LoginResponse)
def login(
    request: LoginRequest,
    shopify: ShopifyAdminClient = Depends(get_shopify_client)
):
    shop = request.shop or config.SHOP_DOMAIN
    if not shop:
        raise bad_request({"shop": "Shop could not be determined"})

    email = request.email.strip()
    shopify_customer = shopify.lookup_customer_by_email(shop, email)
    if shopify_customer is None:
        # First visit: the shopper gets a tagged account instead of a dead end
        shopify_customer = shopify.create_customer(shop, email)
        if shopify_customer is None:
            logger.error("Could not create a Shopify customer for %s on %s", email, shop)
            raise HTTPException(status_code=500, detail={"errors": {"general": ACCOUNT_CREATION_FAILURE}})

    identity = CustomerIdentity(
        customer_id=shopify_customer.id,
        email=shopify_customer.email,
        shop=shop,
        first_name=shopify_customer.first_name,
        last_name=shopify_customer.last_name,
    )
    logger.info("Customer %s logged in for %s", identity.customer_id, shop)
    return {"access_token": create_customer_token(identity), "customer": identity}


@router.get("/auth/me", response_model=CustomerIdentity)
def read_current_customer(customer: CustomerIdentity = Depends(get_current_customer)):
    return customer


# ============================================
# CHALLENGE STATUS
# ============================================

class ChallengeSummary(BaseModel):
    challenge_id: int
    name: str
    description: Optional[str]
    start_date: str
    end_date: str
    is_upcoming: bool

class ChallengeStatusResponse(BaseModel):
    challenge: Optional[ChallengeSummary]
    can_start: bool
    can_end: bool
    start_reason: Optional[str] = None
    end_reason: Optional[str] = None

def summarize(challenge: Challenge, now) -> ChallengeSummary:
    return ChallengeSummary(
        challenge_id=challenge.challenge_id,
        name=challenge.name,
        description=challenge.description,
        start_date=challenge.start_date.isoformat(),
        end_date=challenge.end_date.isoformat(),
        is_upcoming=as_utc(challenge.start_date) > now,
    )

@router.get("/challenge", response_model=ChallengeStatusResponse)
def get_challenge_status(
    email: Optional[str] = None,
    session: Session = Depends(get_session),
    customer: Optional[CustomerIdentity] = Depends(get_optional_customer)
):
    shop = resolve_shop(customer)
    now = utcnow()
    challenge = get_active_challenge(session, shop, now)

    if customer is None and not email:
        # Nothing to check eligibility against yet; the form collects the email
        return {
            "challenge": summarize(challenge, now) if challenge else None,
            "can_start": challenge is not None,
            "can_end": False,
        }

    customer_id = resolve_customer_id(session, shop, email or "", customer, None)
    start = can_start_challenge(session, shop, customer_id, now)
    end = can_end_challenge(session, shop, customer_id, now)

    return {
        "challenge": summarize(challenge, now) if challenge else None,
        "can_start": start.eligible,
        "can_end": end.eligible,
        "start_reason": start.reason,
        "end_reason": end.reason,
    }


# ============================================
# START / END FORMS
# ============================================

class WeightUnit(str, Enum):
    LBS = "lbs"
    KG = "kg"

class ChallengeForm(BaseModel):
    email: EmailStr
    weight: Optional[Union[float, str]] = None
    unit: WeightUnit = WeightUnit.LBS
    notes: Optional[str] = None
    photos: List[PhotoIn] = []

class StartChallengeForm(ChallengeForm):
    first_name: Optional[str] = None
    last_name: Optional[str] = None

class SubmissionResponse(BaseModel):
    success: bool = True
    submission_id: int
    participant_id: int
    status: str
    redirect: str

def weight_in_lbs(form: ChallengeForm) -> float:
    # Weights are stored in pounds whatever unit the shopper entered
    weight = parse_weight(form.weight)
    return kg_to_lbs(weight) if form.unit == WeightUnit.KG else weight

def clean_notes(notes: Optional[str]) -> Optional[str]:
    if not notes:
        return None
    return sanitize_string(notes) or None

@router.post("/challenge/start", response_model=SubmissionResponse)
def start_challenge(
    form: StartChallengeForm,
    session: Session = Depends(get_session),
    customer: Optional[CustomerIdentity] = Depends(get_optional_customer),
    shopify: ShopifyAdminClient = Depends(get_shopify_client),
    uploads: UploadAdapter = Depends(get_upload_adapter)
):
    errors = {}
    for field, label in (("first_name", "First name"), ("last_name", "Last name")):
        name_error = validate_name(getattr(form, field), label)
        if name_error:
            errors[field] = name_error
    errors.update(validate_challenge_form(form.weight, form.notes, form.photos, form.unit.value))
    if errors:
        raise bad_request(errors)

    shop = resolve_shop(customer)
    email = form.email.strip()
    confirm_uploads(uploads, form.photos)

    shopify_customer = shopify.lookup_customer_by_email(shop, email)
    customer_id = resolve_customer_id(session, shop, email, customer, shopify_customer)
    first_name = (customer and customer.first_name) or (shopify_customer and shopify_customer.first_name) or sanitize_string(form.first_name)
    last_name = (customer and customer.last_name) or (shopify_customer and shopify_customer.last_name) or sanitize_string(form.last_name)

    try:
        submission = submit_start(
            session,
            shop,
            customer_id,
            email,
            weight_in_lbs(form),
            form.photos,
            first_name=first_name,
            last_name=last_name,
            notes=clean_notes(form.notes),
            orders_count=shopify_customer.orders_count if shopify_customer else None,
            total_spent=shopify_customer.total_spent if shopify_customer else None,
        )
    except EligibilityError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"errors": {"general": e.reason}})
    except SQLAlchemyError:
        logger.exception("Error creating start submission for %s", customer_id)
        raise HTTPException(status_code=500, detail={"errors": {"general": GENERIC_FAILURE}})

    return {
        "submission_id": submission.submission_id,
        "participant_id": submission.participant_id,
        "status": submission.participant.status.value,
        "redirect": "/customer/challenge/success?type=start",
    }


@router.post("/challenge/end", response_model=SubmissionResponse)
def end_challenge(
    form: ChallengeForm,
    session: Session = Depends(get_session),
    customer: Optional[CustomerIdentity] = Depends(get_optional_customer),
    shopify: ShopifyAdminClient = Depends(get_shopify_client),
    uploads: UploadAdapter = Depends(get_upload_adapter)
):
    errors = validate_challenge_form(form.weight, form.notes, form.photos, form.unit.value)
    if errors:
        raise bad_request(errors)

    shop = resolve_shop(customer)
    email = form.email.strip()
    confirm_uploads(uploads, form.photos)

    # Refresh cached order data; the lookup never blocks the submission
    shopify_customer = shopify.lookup_customer_by_email(shop, email)
    customer_id = resolve_customer_id(session, shop, email, customer, shopify_customer)

    try:
        submission = submit_end(
            session,
            shop,
            customer_id,
            weight_in_lbs(form),
            form.photos,
            notes=clean_notes(form.notes),
            orders_count=shopify_customer.orders_count if shopify_customer else None,
            total_spent=shopify_customer.total_spent if shopify_customer else None,
        )
    except EligibilityError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"errors": {"general": e.reason}})
    except SQLAlchemyError:
        logger.exception("Error creating end submission for %s", customer_id)
        raise HTTPException(status_code=500, detail={"errors": {"general": GENERIC_FAILURE}})

    return {
        "submission_id": submission.submission_id,
        "participant_id": submission.participant_id,
        "status": submission.participant.status.value,
        "redirect": "/customer/challenge/success?type=end",
    }


# ============================================
# SUCCESS PAGE / PUBLIC SETTINGS
# ============================================

class SuccessType(str, Enum):
    START = "start"
    END = "end"

class SuccessResponse(BaseModel):
    type: SuccessType
    title: str
    message: Optional[str]
    sub_message: Optional[str]
    steps: List[str]

@router.get("/challenge/success", response_model=SuccessResponse)
def get_success_copy(
    type: SuccessType = SuccessType.START,
    session: Session = Depends(get_session),
    customer: Optional[CustomerIdentity] = Depends(get_optional_customer)
):
    settings = get_customization_settings(session, resolve_shop(customer))
    prefix = f"success_{type.value}"
    return {
        "type": type,
        "title": settings[f"{prefix}_title"],
        "message": settings[f"{prefix}_message"],
        "sub_message": settings[f"{prefix}_sub_message"],
        "steps": [settings[f"{prefix}_step{i}"] for i in (1, 2, 3) if settings[f"{prefix}_step{i}"]],
    }


@router.get("/settings")
def get_public_settings(
    session: Session = Depends(get_session),
    customer: Optional[CustomerIdentity] = Depends(get_optional_customer)
):
    return get_customization_settings(session, resolve_shop(customer))
