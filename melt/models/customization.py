from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

from .common import utcnow

class CustomizationFields(SQLModel):
    # Start form
    start_form_title: Optional[str] = Field(default=None, max_length=200)
    start_form_welcome_text: Optional[str] = Field(default=None, max_length=1000)
    start_form_submit_button_text: Optional[str] = Field(default=None, max_length=100)

    # End form
    end_form_title: Optional[str] = Field(default=None, max_length=200)
    end_form_welcome_text: Optional[str] = Field(default=None, max_length=1000)
    end_form_submit_button_text: Optional[str] = Field(default=None, max_length=100)

    # Success page after the start form
    success_start_title: Optional[str] = Field(default=None, max_length=200)
    success_start_message: Optional[str] = Field(default=None, max_length=1000)
    success_start_sub_message: Optional[str] = Field(default=None, max_length=1000)
    success_start_step1: Optional[str] = Field(default=None, max_length=200)
    success_start_step2: Optional[str] = Field(default=None, max_length=200)
    success_start_step3: Optional[str] = Field(default=None, max_length=200)

    # Success page after the end form
    success_end_title: Optional[str] = Field(default=None, max_length=200)
    success_end_message: Optional[str] = Field(default=None, max_length=1000)
    success_end_sub_message: Optional[str] = Field(default=None, max_length=1000)
    success_end_step1: Optional[str] = Field(default=None, max_length=200)
    success_end_step2: Optional[str] = Field(default=None, max_length=200)
    success_end_step3: Optional[str] = Field(default=None, max_length=200)

    # Colors
    primary_color: Optional[str] = Field(default=None, max_length=9)
    secondary_color: Optional[str] = Field(default=None, max_length=9)
    background_color: Optional[str] = Field(default=None, max_length=9)
    text_color: Optional[str] = Field(default=None, max_length=9)
    button_color: Optional[str] = Field(default=None, max_length=9)
    button_hover_color: Optional[str] = Field(default=None, max_length=9)
    input_background_color: Optional[str] = Field(default=None, max_length=9)
    input_border_color: Optional[str] = Field(default=None, max_length=9)

class CustomizationSettings(CustomizationFields, table=True):
    __tablename__ = "customization_settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    shop: str = Field(max_length=255, unique=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

class CustomizationUpdate(CustomizationFields):
    pass
