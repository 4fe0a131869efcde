"""Customer models for people who submit the booking form."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class Customer(BaseModel):
    """Customer model."""

    id: Optional[str] = None
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    social_media_name: Optional[str] = None
    is_repeat_client: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CustomerCreate(BaseModel):
    """Customer creation model."""

    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    social_media_name: Optional[str] = None
    is_repeat_client: Optional[bool] = None
