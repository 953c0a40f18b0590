"""
Form validation shared by the customer and admin routers.

Field validators return an error message or None. Form validators return a
dict of field name -> message, empty when the input is valid, so callers can
merge results and raise a single 400.
"""
import html
import re
from datetime import datetime
from typing import Dict, Iterable, Optional, Union

from ..config import MAX_PHOTO_SIZE, ALLOWED_PHOTO_TYPES

HEX_COLOR_REGEX = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")

WEIGHT_LIMITS = {
    "lbs": (50, 1000),
    "kg": (22, 450),
}

MAX_NOTES_LENGTH = 500
MAX_CHALLENGE_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000
REQUIRED_PHOTO_ORDERS = {1, 2, 3}


class FormValidationError(Exception):
    """Raised with a field -> message dict when a form fails validation."""

    def __init__(self, errors: Dict[str, str]):
        super().__init__(", ".join(f"{field}: {message}" for field, message in errors.items()))
        self.errors = errors


def request_field_errors(errors: Iterable[dict]) -> Dict[str, str]:
    """Maps pydantic request errors onto the field -> message payload.

    The location prefix (``body``, ``query``) is dropped, so ``("body", "email")``
    reports under ``email`` and nested items under dotted keys.
    """
    result: Dict[str, str] = {}
    for error in errors:
        loc = [str(part) for part in error.get("loc", ())]
        field = ".".join(loc[1:]) or ".".join(loc) or "general"
        if field in result:
            continue
        if field == "email":
            missing = error.get("type") == "missing" or not str(error.get("input") or "").strip()
            result[field] = "Email is required" if missing else "Please enter a valid email address"
        else:
            result[field] = error.get("msg", "Invalid value")
    return result


def parse_weight(weight: Union[float, int, str, None]) -> Optional[float]:
    if weight is None or isinstance(weight, bool):
        return None
    try:
        return float(weight)
    except (TypeError, ValueError):
        return None


def validate_weight(weight: Union[float, int, str, None], unit: str = "lbs") -> Optional[str]:
    weight_num = parse_weight(weight)
    if weight_num is None or weight_num != weight_num:
        return "Weight must be a number"

    if weight_num <= 0:
        return "Weight must be greater than 0"

    minimum, maximum = WEIGHT_LIMITS[unit]
    if weight_num < minimum:
        return f"Weight must be at least {minimum} {unit}"
    if weight_num > maximum:
        return f"Weight must be less than {maximum} {unit}"

    return None


def validate_name(name: Optional[str], field_name: str = "Name") -> Optional[str]:
    if not name or not name.strip():
        return f"{field_name} is required"
    if len(name.strip()) < 2:
        return f"{field_name} must be at least 2 characters"
    if len(name) > 50:
        return f"{field_name} must be less than 50 characters"
    return None


def validate_photo_file(file_type: Optional[str], file_size: Optional[int]) -> Optional[str]:
    if not file_type or file_type not in ALLOWED_PHOTO_TYPES:
        return "must be JPEG, PNG, or WebP"
    if not file_size or file_size <= 0:
        return "must not be empty"
    if file_size > MAX_PHOTO_SIZE:
        return f"must be less than {MAX_PHOTO_SIZE // 1024 // 1024}MB"
    return None


def validate_photos(photos: Iterable) -> Dict[str, str]:
    """Checks the three photo records posted with a start or end form.

    Each item needs ``order``, ``mime_type`` and ``file_size`` attributes.
    """
    photos = list(photos)
    errors: Dict[str, str] = {}

    if len(photos) != 3:
        errors["photos"] = "Exactly 3 photos are required"
        return errors

    orders = {photo.order for photo in photos}
    if orders != REQUIRED_PHOTO_ORDERS:
        errors["photos"] = "Photos must be numbered 1, 2 and 3"

    for index, photo in enumerate(photos):
        problem = validate_photo_file(photo.mime_type, photo.file_size)
        if problem:
            errors[f"photo_{index}"] = f"Photo {index + 1} {problem}"

    return errors


def validate_challenge_form(weight, notes: Optional[str] = None, photos: Optional[Iterable] = None,
                            unit: str = "lbs") -> Dict[str, str]:
    errors: Dict[str, str] = {}

    weight_error = validate_weight(weight, unit)
    if weight_error:
        errors["weight"] = weight_error

    if notes and len(notes) > MAX_NOTES_LENGTH:
        errors["notes"] = f"Notes must be less than {MAX_NOTES_LENGTH} characters"

    if photos is not None:
        errors.update(validate_photos(photos))

    return errors


def validate_date_range(start_date: Optional[datetime], end_date: Optional[datetime]) -> Optional[str]:
    if start_date is None:
        return "Invalid start date"
    if end_date is None:
        return "Invalid end date"
    # A zero-length window is rejected as well as an inverted one
    if start_date >= end_date:
        return "End date must be after start date"
    return None


def validate_admin_challenge_form(
    name: Optional[str],
    description: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    if not name or not name.strip():
        errors["name"] = "Challenge name is required"
    elif len(name) > MAX_CHALLENGE_NAME_LENGTH:
        errors["name"] = f"Challenge name must be less than {MAX_CHALLENGE_NAME_LENGTH} characters"

    if description and len(description) > MAX_DESCRIPTION_LENGTH:
        errors["description"] = f"Description must be less than {MAX_DESCRIPTION_LENGTH} characters"

    date_error = validate_date_range(start_date, end_date)
    if date_error:
        errors["dates"] = date_error

    return errors


def validate_color(value: Optional[str]) -> bool:
    # Empty clears a stored color
    if not value:
        return True
    return bool(HEX_COLOR_REGEX.match(value))


def sanitize_string(value: str) -> str:
    return html.escape(value, quote=True).strip()


def format_weight(weight: float) -> float:
    return round(weight * 10) / 10


def lbs_to_kg(lbs: float) -> float:
    return format_weight(lbs * 0.453592)


def kg_to_lbs(kg: float) -> float:
    return format_weight(kg * 2.20462)
