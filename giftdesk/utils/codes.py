"""
giftdesk/utils/codes.py
-----------------------
Card codes: generation, obfuscation at rest, lookup digest and the
permanent-deletion confirmation code.

Codes are stored Fernet-encrypted (AES-128-CBC + HMAC-SHA256). Fernet
tokens are randomised, so equal codes never produce equal tokens; lookups
go through code_hash, an HMAC-SHA256 of the plain code under the same key.

Format of a generated code:
    MM + YYMMDD + last 6 digits of epoch-ms + 4 random [A-Z0-9]
    e.g. MM261018123456K3ZQ  (18 characters)
"""
import base64
import hashlib
import hmac
import re
import secrets
import string
import time

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app

from giftdesk.utils import dates


CODE_PREFIX = 'MM'
PLAIN_CODE_RE = re.compile(r'^MM\d{12}[A-Z0-9]{4}$')
_ALPHABET = string.ascii_uppercase + string.digits


def _secret() -> bytes:
    key = current_app.config.get('CODE_SECRET_KEY') or current_app.config['SECRET_KEY']
    return key.encode('utf-8')


def _fernet() -> Fernet:
    # Fernet wants 32 url-safe base64 bytes; derive them from the configured secret
    digest = hashlib.sha256(_secret()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def generate_code(now=None) -> str:
    """A fresh human-readable code. Uniqueness is the caller's job."""
    now = now or dates.now_local()
    stamp = now.strftime('%y%m%d')
    millis = str(int(time.time() * 1000))[-6:]
    tail = ''.join(secrets.choice(_ALPHABET) for _ in range(4))
    return f'{CODE_PREFIX}{stamp}{millis}{tail}'


def obfuscate(code: str) -> str:
    return _fernet().encrypt(code.encode('utf-8')).decode('ascii')


def deobfuscate(token: str) -> str:
    """
    Reverse obfuscate(). Plain codes pass through unchanged;
    anything that fails to decrypt comes back as ''.
    """
    if not token:
        return ''
    if PLAIN_CODE_RE.match(token):
        return token
    try:
        return _fernet().decrypt(token.encode('ascii')).decode('utf-8')
    except (InvalidToken, UnicodeError, ValueError):
        return ''


def code_digest(code: str) -> str:
    return hmac.new(_secret(), code.encode('utf-8'), hashlib.sha256).hexdigest()


def delete_confirmation_code(card_id: str) -> str:
    """What the operator must type to permanently delete the card."""
    return f'DELETE-{str(card_id)[-8:].upper()}'
