"""
giftdesk/utils/sanitizer.py
---------------------------
Regex-based cleaning of user input before it reaches the database.
Every function is total: bad input comes back empty (or 0 / None).
"""
import re
from datetime import timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from giftdesk.utils import dates


MAX_AMOUNT = Decimal('10000000')
CENTS = Decimal('0.01')

_MARKUP_RE  = re.compile(r'[<>]')
_JS_RE      = re.compile(r'javascript:', re.IGNORECASE)
_HANDLER_RE = re.compile(r'on\w+=', re.IGNORECASE)
_SCRIPT_RE  = re.compile(r'script', re.IGNORECASE)
_PHONE_RE   = re.compile(r'[^+\d\s\-()]')
_CODE_RE    = re.compile(r'[^A-Za-z0-9]')

CARD_TYPES = ('giftcard', 'ewallet')


def _strip_markup(value: str) -> str:
    value = _MARKUP_RE.sub('', value.strip())
    value = _JS_RE.sub('', value)
    value = _HANDLER_RE.sub('', value)
    return _SCRIPT_RE.sub('', value)


def sanitize_text(value, max_length: int = 500) -> str:
    """Names, descriptions and other short free text."""
    if not value or not isinstance(value, str):
        return ''
    return _strip_markup(value)[:max_length]


def sanitize_notes(value) -> str:
    return sanitize_text(value, max_length=1000)


def sanitize_email(value) -> str:
    if not value or not isinstance(value, str):
        return ''
    return _MARKUP_RE.sub('', value.strip().lower())[:254]


def sanitize_phone(value) -> str:
    if not value or not isinstance(value, str):
        return ''
    return _PHONE_RE.sub('', value.strip())[:20]


def sanitize_amount(value) -> Decimal:
    """Parse to a 2-dp Decimal in [0, MAX_AMOUNT]. Garbage and negatives become 0."""
    if isinstance(value, bool) or value is None:
        return Decimal('0.00')
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal('0.00')
    if not amount.is_finite() or amount < 0:
        return Decimal('0.00')
    if amount > MAX_AMOUNT:
        amount = MAX_AMOUNT
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def sanitize_date(value):
    """
    Parse an expiry date into naive UTC.
    Past dates and dates more than 10 years out are rejected (None).
    """
    parsed = dates.parse_datetime(value)
    if parsed is None:
        return None
    now = dates.utcnow()
    if parsed < now:
        return None
    if parsed > now + timedelta(days=365 * 10 + 3):
        return None
    return parsed


def sanitize_card_code(value) -> str:
    if not value or not isinstance(value, str):
        return ''
    return _CODE_RE.sub('', value.strip()).upper()[:20]


def sanitize_form_data(data: dict) -> dict:
    """
    Clean a create-card form (camelCase keys, as the JSON API sends them).
    Keys that are absent or empty in the input are absent in the output,
    except expiresAt which maps to None when it fails to parse.
    """
    clean = {}

    if data.get('type') in CARD_TYPES:
        clean['type'] = data['type']
    if data.get('ownerName'):
        clean['ownerName'] = sanitize_text(data['ownerName'])
    if data.get('ownerEmail'):
        clean['ownerEmail'] = sanitize_email(data['ownerEmail'])
    if data.get('ownerPhone'):
        clean['ownerPhone'] = sanitize_phone(data['ownerPhone'])
    if data.get('initialAmount') is not None:
        clean['initialAmount'] = sanitize_amount(data['initialAmount'])
    if data.get('notes'):
        clean['notes'] = sanitize_notes(data['notes'])
    if data.get('expiresAt'):
        clean['expiresAt'] = sanitize_date(data['expiresAt'])

    return clean
