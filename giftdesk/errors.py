"""
giftdesk/errors.py
------------------
Domain exceptions raised by the service layer.

Each carries the HTTP status the JSON error handler in create_app()
responds with, so routes can let them propagate.
"""


class GiftDeskError(Exception):
    """Base class for all expected, user-facing failures."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'success': False, 'error': self.message}


class CardNotFound(GiftDeskError):
    status_code = 404

    def __init__(self, message: str = 'Card not found'):
        super().__init__(message)


class CardValidationError(GiftDeskError):
    """Bad input: missing fields, invalid email/phone, out-of-range amounts."""
    status_code = 400


class CardStateError(GiftDeskError):
    """The card's current state forbids the operation (expired, inactive, redeemed)."""
    status_code = 409


class RateLimitExceeded(GiftDeskError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['retryAfter'] = self.retry_after
        return data


class AuthError(GiftDeskError):
    """Bad credentials or an unacceptable password change."""
    status_code = 400
