"""
Customer identity resolution for submitted booking forms.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from db.store import CalendarStore
from models.customer import Customer, CustomerCreate
from utils.logging_config import get_logger
from utils.validation import normalize_phone, validate_email, validate_phone

logger = get_logger(__name__)

# Form field labels accepted for each customer attribute (case-insensitive)
NAME_FIELDS = ("name", "full name", "fullname", "customer name")
EMAIL_FIELDS = ("email", "email address", "e-mail")
PHONE_FIELDS = ("phone", "phone number", "contact number", "mobile", "mobile number")
SOCIAL_FIELDS = ("facebook name", "fb name", "social media name", "instagram")
REPEAT_FIELDS = ("repeat client", "returning client", "have you booked before?")


def pick_field(form_data: Dict[str, str], candidates) -> Optional[str]:
    """First non-blank value whose key matches one of ``candidates``."""
    lowered = {key.strip().lower(): value for key, value in form_data.items()}
    for candidate in candidates:
        value = lowered.get(candidate)
        if value and value.strip():
            return value.strip()
    return None


def _is_yes(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.strip().lower() in ("yes", "y", "true", "repeat", "returning")


class CustomerResolver(ABC):
    """Turns submitted form data into a customer record."""

    @abstractmethod
    async def resolve(self, form_data: Dict[str, str]) -> Customer:
        ...


class StoreCustomerResolver(CustomerResolver):
    """
    Exact-match resolver backed by the calendar store.

    Matches an existing customer by email, then by phone, and creates a new
    customer when neither matches.
    """

    def __init__(self, store: CalendarStore):
        self.store = store

    async def resolve(self, form_data: Dict[str, str]) -> Customer:
        email = pick_field(form_data, EMAIL_FIELDS)
        phone = pick_field(form_data, PHONE_FIELDS)
        if email and not validate_email(email):
            email = None
        if phone:
            phone = normalize_phone(phone) if validate_phone(phone) else None

        if email:
            customer = await self.store.find_customer_by_email(email.lower())
            if customer:
                logger.debug(f"Matched customer {customer.id} by email")
                return customer
        if phone:
            customer = await self.store.find_customer_by_phone(phone)
            if customer:
                logger.debug(f"Matched customer {customer.id} by phone")
                return customer

        customer = await self.store.create_customer(
            CustomerCreate(
                name=pick_field(form_data, NAME_FIELDS) or "Unknown",
                email=email.lower() if email else None,
                phone=phone,
                social_media_name=pick_field(form_data, SOCIAL_FIELDS),
                is_repeat_client=_is_yes(pick_field(form_data, REPEAT_FIELDS)),
            )
        )
        logger.info(f"Created customer {customer.id}")
        return customer
