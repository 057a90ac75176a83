"""
Billing and card form validation.

All functions are pure: they return a mapping of field name to error
message (empty when valid) and never mutate their input.
"""

import re
from typing import Dict, Optional

from .models import BillingDetails, CardDetails, PaymentMethod

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EXPIRY_PATTERN = re.compile(r"^(0[1-9]|1[0-2])/\d{2}$")
CVV_PATTERN = re.compile(r"^\d{3,4}$")

CARD_NUMBER_LENGTH = 16
CARD_GROUP_SIZE = 4

REQUIRED_BILLING_FIELDS: Dict[str, str] = {
    "first_name": "First name is required",
    "last_name": "Last name is required",
    "email": "Email is required",
    "phone": "Phone number is required",
    "address": "Address is required",
    "city": "City is required",
    "postal_code": "Postal code is required",
}

CARD_FIELDS = ("number", "expiry", "cvv", "holder_name")


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value.strip()))


def validate_billing_field(details: BillingDetails, field_name: str) -> Optional[str]:
    """Return the error message for one billing field, or None."""
    value = getattr(details, field_name, "") or ""
    if field_name in REQUIRED_BILLING_FIELDS and not value.strip():
        return REQUIRED_BILLING_FIELDS[field_name]
    if field_name == "email" and not is_valid_email(value):
        return "Email is invalid"
    return None


def validate_billing_details(details: BillingDetails) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for field_name in REQUIRED_BILLING_FIELDS:
        message = validate_billing_field(details, field_name)
        if message:
            errors[field_name] = message
    return errors


def normalize_card_number(value: str) -> str:
    """Strip all whitespace from a card number."""
    return re.sub(r"\s+", "", value or "")


def format_card_number(value: str) -> str:
    """Group the digits of a card number in fours for display."""
    digits = re.sub(r"\D", "", value or "")
    groups = [digits[i:i + CARD_GROUP_SIZE] for i in range(0, len(digits), CARD_GROUP_SIZE)]
    return " ".join(groups)


def format_expiry(value: str) -> str:
    """Render expiry input as MM/YY, inserting the slash after the second digit."""
    digits = re.sub(r"\D", "", value or "")[:4]
    if len(digits) > 2:
        return f"{digits[:2]}/{digits[2:]}"
    return digits


def validate_card_field(card: CardDetails, field_name: str) -> Optional[str]:
    if field_name == "number":
        number = normalize_card_number(card.number)
        if not number:
            return "Card number is required"
        if not number.isdigit():
            return "Card number must contain only digits"
        if len(number) != CARD_NUMBER_LENGTH:
            return f"Card number must be {CARD_NUMBER_LENGTH} digits"
        return None
    if field_name == "expiry":
        expiry = (card.expiry or "").strip()
        if not expiry:
            return "Expiry date is required"
        if not EXPIRY_PATTERN.match(expiry):
            return "Expiry date must be in MM/YY format"
        return None
    if field_name == "cvv":
        cvv = (card.cvv or "").strip()
        if not cvv:
            return "CVV is required"
        if not CVV_PATTERN.match(cvv):
            return "CVV must be 3 or 4 digits"
        return None
    if field_name == "holder_name":
        if not (card.holder_name or "").strip():
            return "Cardholder name is required"
        return None
    raise ValueError(f"Unknown card field: {field_name}")


def validate_card(card: CardDetails) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for field_name in CARD_FIELDS:
        message = validate_card_field(card, field_name)
        if message:
            errors[field_name] = message
    return errors


def validate_payment_form(
    method: Optional[PaymentMethod],
    billing: BillingDetails,
    card: Optional[CardDetails] = None,
) -> Dict[str, str]:
    """
    Validate the full payment-details step.

    Card fields are checked only for the card method and are reported
    under a ``card.`` prefix.
    """
    errors = validate_billing_details(billing)
    if method == PaymentMethod.CREDIT_CARD:
        card_errors = validate_card(card or CardDetails())
        errors.update({f"card.{k}": v for k, v in card_errors.items()})
    return errors
