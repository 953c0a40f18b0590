from typing import Dict
from sqlmodel import Session, select

from ..models.common import utcnow
from ..models.customization import CustomizationSettings, CustomizationUpdate
from .validation import FormValidationError, validate_color

DEFAULTS = {
    # Start form
    "start_form_title": "Start Your Weight Loss Challenge",
    "start_form_welcome_text": None,
    "start_form_submit_button_text": "Start Challenge",

    # End form
    "end_form_title": "Complete Your Weight Loss Challenge",
    "end_form_welcome_text": None,
    "end_form_submit_button_text": "Complete Challenge",

    # Success - start
    "success_start_title": "Challenge Started!",
    "success_start_message": None,
    "success_start_sub_message": None,
    "success_start_step1": "Stay committed to your goals",
    "success_start_step2": "Track your progress regularly",
    "success_start_step3": "Come back when you're ready to complete the challenge",

    # Success - end
    "success_end_title": "Challenge Completed!",
    "success_end_message": None,
    "success_end_sub_message": None,
    "success_end_step1": "Celebrate your achievement!",
    "success_end_step2": "Check with the store for any rewards or recognition",
    "success_end_step3": "Consider joining the next challenge to keep your momentum",

    # Colors
    "primary_color": "#667eea",
    "secondary_color": "#764ba2",
    "background_color": "#ffffff",
    "text_color": "#333333",
    "button_color": "#28a745",
    "button_hover_color": "#218838",
    "input_background_color": "#f9f9f9",
    "input_border_color": "#ddd",
}

COLOR_FIELDS = [field for field in DEFAULTS if field.endswith("_color")]


def get_customization_settings(session: Session, shop: str) -> Dict[str, object]:
    """Stored settings for a shop laid over the defaults. Unset fields keep the default."""
    settings = session.exec(
        select(CustomizationSettings).where(CustomizationSettings.shop == shop)
    ).first()

    merged = dict(DEFAULTS)
    if settings:
        for field in DEFAULTS:
            value = getattr(settings, field)
            if value is not None:
                merged[field] = value
    merged["shop"] = shop
    return merged


def update_customization_settings(session: Session, shop: str, data: CustomizationUpdate) -> CustomizationSettings:
    changes = data.model_dump(exclude_unset=True)

    errors = {
        field: "Must be a hex color like #667eea"
        for field in COLOR_FIELDS
        if field in changes and not validate_color(changes[field])
    }
    if errors:
        raise FormValidationError(errors)

    settings = session.exec(
        select(CustomizationSettings).where(CustomizationSettings.shop == shop)
    ).first()
    if settings is None:
        settings = CustomizationSettings(shop=shop)

    for field, value in changes.items():
        # Blank text clears the override and falls back to the default
        setattr(settings, field, value if value != "" else None)
    settings.updated_at = utcnow()

    session.add(settings)
    session.commit()
    session.refresh(settings)
    return settings
