"""
giftdesk/cards/validators.py
----------------------------
Validation for card forms, after sanitising.
Returns a dict of field -> error_message.
An empty dict means all fields are valid.
"""
import re
from decimal import Decimal

from giftdesk.utils.sanitizer import CARD_TYPES


EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
PHONE_DIGITS = (7, 15)


def validate_card_form(raw: dict, clean: dict) -> dict:
    """
    Validate a create-card form.

    Args:
        raw:   the form as received (used to tell "absent" from "unparseable")
        clean: the output of sanitize_form_data(raw)

    Returns:
        dict of {field_name: error_message}, empty if all valid.
    """
    errors = {}

    # ── type ──────────────────────────────────────────────────────
    if raw.get('type') and raw.get('type') not in CARD_TYPES:
        errors['type'] = 'Type must be "giftcard" or "ewallet".'
    card_type = clean.get('type', 'giftcard')

    # ── ownerName ─────────────────────────────────────────────────
    name = clean.get('ownerName', '')
    if len(name) < 2:
        errors['ownerName'] = 'Owner name must be at least 2 characters.'

    # ── ownerEmail (optional) ─────────────────────────────────────
    if raw.get('ownerEmail'):
        problem = email_error(clean.get('ownerEmail', ''))
        if problem:
            errors['ownerEmail'] = problem

    # ── ownerPhone (optional) ─────────────────────────────────────
    if raw.get('ownerPhone'):
        problem = phone_error(clean.get('ownerPhone', ''))
        if problem:
            errors['ownerPhone'] = problem

    # ── initialAmount ─────────────────────────────────────────────
    # Wallets always start empty, so only gift cards are checked
    if card_type == 'giftcard':
        amount = clean.get('initialAmount', Decimal('0'))
        if amount <= 0:
            errors['initialAmount'] = 'A gift card needs an initial amount greater than 0.'

    # ── expiresAt (optional) ──────────────────────────────────────
    if raw.get('expiresAt') and clean.get('expiresAt') is None:
        errors['expiresAt'] = 'Invalid expiry date.'

    return errors


def first_error(errors: dict) -> str:
    """One message for the {error: ...} response body."""
    return next(iter(errors.values()))


def email_error(email: str):
    """Message for a sanitised email that doesn't look like one, else None."""
    if not (email and EMAIL_RE.match(email)):
        return 'Invalid email address.'
    return None


def phone_error(phone: str):
    digits = re.sub(r'\D', '', phone or '')
    if not (PHONE_DIGITS[0] <= len(digits) <= PHONE_DIGITS[1]):
        return 'Phone number must have between 7 and 15 digits.'
    return None
