"""
giftdesk/cards/service.py
-------------------------
Business rules for gift cards and e-wallets.

Every public function works inside the current app context, commits its
own changes and raises a GiftDeskError subclass on rejection. Routes and
CLI commands are thin wrappers around these.

Gift cards only spend down; once they hit zero they are redeemed for good.
Wallets can be reloaded and come back to life as soon as they hold money.
Each balance change appends exactly one Transaction.
"""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import or_

from giftdesk import db
from giftdesk.cards.models import GiftCard, Transaction, CardType, CardStatus, TransactionType
from giftdesk.cards.validators import validate_card_form, first_error, email_error, phone_error
from giftdesk.errors import CardNotFound, CardValidationError, CardStateError
from giftdesk.utils import codes, dates, sanitizer
from giftdesk.utils.ratelimit import enforce


MAX_CODE_ATTEMPTS = 100


# ── Internal helpers ──────────────────────────────────────────────

def _log(card: GiftCard, tx_type: TransactionType, amount, description: str,
         performed_by: str) -> Transaction:
    tx = Transaction(
        gift_card=card,
        type=tx_type,
        amount=abs(Decimal(str(amount))),
        description=description,
        performed_by=performed_by,
        timestamp=dates.utcnow(),
    )
    db.session.add(tx)
    return tx


def _unique_code() -> str:
    """Generate a code whose digest isn't taken yet."""
    for _ in range(MAX_CODE_ATTEMPTS):
        code = codes.generate_code()
        if not GiftCard.query.filter_by(code_hash=codes.code_digest(code)).first():
            return code
    raise CardStateError('Could not generate a unique card code, please retry.')


def _parse_amount(value, field: str = 'amount') -> Decimal:
    """Strict parse for balance input: must be a finite, non-negative number."""
    if isinstance(value, bool) or value is None or value == '':
        raise CardValidationError(f'{field} is required.')
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise CardValidationError(f'{field} must be a valid number.')
    if not amount.is_finite():
        raise CardValidationError(f'{field} must be a valid number.')
    if amount < 0:
        raise CardValidationError('Amount cannot be negative.')
    return sanitizer.sanitize_amount(amount)


# ── Reads ─────────────────────────────────────────────────────────

def get_card(card_id: str) -> GiftCard:
    card = db.session.get(GiftCard, card_id) if card_id else None
    if card is None:
        raise CardNotFound()
    return card


def find_by_code(code: str) -> GiftCard | None:
    clean = sanitizer.sanitize_card_code(code)
    if not clean:
        return None
    return GiftCard.query.filter_by(code_hash=codes.code_digest(clean)).first()


def list_cards(status: str = None, card_type: str = None, search: str = None,
               min_amount=None, max_amount=None, created_from=None, created_to=None) -> list:
    """
    All cards, newest first, optionally filtered.

    Status is derived, so it is filtered in Python after the SQL filters.
    `search` matches owner name/email/phone substrings or an exact code.
    """
    query = GiftCard.query

    if card_type:
        try:
            query = query.filter(GiftCard.type == CardType(card_type))
        except ValueError:
            raise CardValidationError('Type must be "giftcard" or "ewallet".')

    term = sanitizer.sanitize_text(search or '')
    if term:
        like = f'%{term}%'
        conditions = [
            GiftCard.owner_name.ilike(like),
            GiftCard.owner_email.ilike(like),
            GiftCard.owner_phone.ilike(like),
        ]
        code = sanitizer.sanitize_card_code(term)
        if code:
            conditions.append(GiftCard.code_hash == codes.code_digest(code))
        query = query.filter(or_(*conditions))

    if min_amount not in (None, ''):
        query = query.filter(GiftCard.current_amount >= _parse_amount(min_amount, 'minAmount'))
    if max_amount not in (None, ''):
        query = query.filter(GiftCard.current_amount <= _parse_amount(max_amount, 'maxAmount'))

    if created_from:
        start = dates.parse_datetime(created_from)
        if start is None:
            raise CardValidationError('Invalid start date.')
        query = query.filter(GiftCard.created_at >= start)
    if created_to:
        end = dates.parse_datetime(created_to)
        if end is None:
            raise CardValidationError('Invalid end date.')
        query = query.filter(GiftCard.created_at <= end)

    cards = query.order_by(GiftCard.created_at.desc()).all()

    if status:
        try:
            wanted = CardStatus(status)
        except ValueError:
            raise CardValidationError(f'Unknown status "{status}".')
        cards = [c for c in cards if c.status == wanted]

    return cards


def card_transactions(card_id: str) -> list:
    get_card(card_id)
    return (Transaction.query
            .filter_by(gift_card_id=card_id)
            .order_by(Transaction.timestamp.desc())
            .all())


# ── Create ────────────────────────────────────────────────────────

def create_card(form: dict, performed_by: str = 'admin', rate_limited: bool = True,
                commit: bool = True) -> GiftCard:
    """
    Issue a gift card or wallet and log its creation.

    Wallets always start at 0, whatever initialAmount says.
    """
    if rate_limited:
        enforce('createCard')

    clean = sanitizer.sanitize_form_data(form)
    errors = validate_card_form(form, clean)
    if errors:
        raise CardValidationError(first_error(errors))

    card_type = CardType(clean.get('type', 'giftcard'))
    amount = clean.get('initialAmount', Decimal('0.00'))
    if card_type == CardType.ewallet:
        amount = Decimal('0.00')

    code = _unique_code()
    card = GiftCard(
        type=card_type,
        owner_name=clean['ownerName'],
        owner_email=clean.get('ownerEmail') or None,
        owner_phone=clean.get('ownerPhone') or None,
        initial_amount=amount,
        current_amount=amount,
        is_active=True,
        is_redeemed=False,
        notes=clean.get('notes') or None,
        expires_at=clean.get('expiresAt'),
    )
    card.set_code(code)
    card.sync_flags()
    db.session.add(card)

    label = 'Gift card' if card_type == CardType.giftcard else 'Wallet'
    _log(card, TransactionType.creation, amount,
         f'{label} created for {card.owner_name}', performed_by)

    if commit:
        db.session.commit()
        current_app.logger.info(f"Card created: {card.id} ({card_type.value}, {amount})")
    return card


# ── Balance ───────────────────────────────────────────────────────

def update_amount(card_id: str, new_amount, description: str,
                  performed_by: str = 'admin') -> GiftCard:
    """
    Set a card's balance to `new_amount` and log the difference.

    Gift cards may only go down. A wallet credited from zero is
    reactivated automatically.
    """
    card = get_card(card_id)

    if card.is_expired:
        raise CardStateError('Expired cards cannot be modified.')

    amount = _parse_amount(new_amount)
    old_amount = card.balance

    wallet_credit = card.type == CardType.ewallet and amount > old_amount
    if card.status == CardStatus.inactive and not wallet_credit:
        raise CardStateError('This card is inactive.')

    enforce('adjustBalance')

    if card.is_giftcard:
        if card.status == CardStatus.redeemed:
            raise CardStateError('A redeemed gift card cannot be modified.')
        if amount > old_amount:
            raise CardStateError('Gift cards cannot be reloaded, only spent.')

    text = sanitizer.sanitize_text(description or '')
    if not text:
        raise CardValidationError('A description is required.')

    reactivated = card.type == CardType.ewallet and old_amount <= 0 and amount > 0
    if reactivated:
        card.is_active = True
        text = f'{text} (wallet reactivated automatically)'
        current_app.logger.info(f"Wallet {card.id} auto-reactivated ({old_amount} -> {amount})")

    card.current_amount = amount
    card.updated_at = dates.utcnow()
    card.sync_flags()

    if amount < old_amount:
        tx_type = TransactionType.usage
    elif amount > old_amount:
        tx_type = TransactionType.refund
    else:
        tx_type = TransactionType.adjustment
    _log(card, tx_type, amount - old_amount, text, performed_by)

    db.session.commit()
    current_app.logger.info(f"Card {card.id} balance {old_amount} -> {amount}")
    return card


def redeem(card_id: str, amount=None, description: str = None,
           performed_by: str = 'admin') -> GiftCard:
    """Spend `amount` from the card, or the whole balance when omitted."""
    card = get_card(card_id)
    balance = card.balance

    if balance <= 0:
        raise CardStateError('There is no balance left to redeem.')

    if amount in (None, ''):
        spend = balance
    else:
        spend = _parse_amount(amount)
        if spend <= 0:
            raise CardValidationError('Redeem amount must be greater than 0.')
    if spend > balance:
        raise CardStateError('Insufficient balance.')

    if not description:
        kind = 'gift card' if card.is_giftcard else 'wallet'
        description = (f'Full redemption of {kind}' if spend == balance
                       else f'Partial redemption: ${spend}')

    return update_amount(card_id, balance - spend, description, performed_by)


# ── State changes ─────────────────────────────────────────────────

FUNDED_WALLET = 'A wallet stays active while it holds a balance. Redeem the balance first.'


def deactivate(card_id: str, performed_by: str = 'admin') -> GiftCard:
    """Soft delete: the card stays, with its history, but is switched off."""
    card = get_card(card_id)
    if card.type == CardType.ewallet and card.balance > 0:
        raise CardStateError(FUNDED_WALLET)
    if not card.is_active or card.status == CardStatus.inactive:
        current_app.logger.warning(f"Deactivate on already inactive card {card.id}")
        raise CardStateError('This card is already inactive.')

    card.is_active = False
    card.updated_at = dates.utcnow()
    _log(card, TransactionType.adjustment, 0, 'Card deactivated by administrator', performed_by)
    db.session.commit()

    current_app.logger.info(f"Card {card.id} deactivated")
    return card


EDITABLE_FIELDS = ('ownerName', 'ownerEmail', 'ownerPhone', 'notes', 'expiresAt', 'isActive')


def _clean_card_fields(fields: dict) -> dict:
    """Sanitise and validate an edit, field by field, using the create rules."""
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise CardValidationError(f'Field(s) cannot be edited: {", ".join(sorted(unknown))}')

    clean = {}
    if 'ownerName' in fields:
        name = sanitizer.sanitize_text(fields['ownerName'] or '')
        if len(name) < 2:
            raise CardValidationError('Owner name must be at least 2 characters.')
        clean['owner_name'] = name
    if 'ownerEmail' in fields:
        email = sanitizer.sanitize_email(fields['ownerEmail'] or '')
        if email and email_error(email):
            raise CardValidationError(email_error(email))
        clean['owner_email'] = email or None
    if 'ownerPhone' in fields:
        phone = sanitizer.sanitize_phone(fields['ownerPhone'] or '')
        if phone and phone_error(phone):
            raise CardValidationError(phone_error(phone))
        clean['owner_phone'] = phone or None
    if 'notes' in fields:
        clean['notes'] = sanitizer.sanitize_notes(fields['notes'] or '') or None
    if 'expiresAt' in fields:
        expires = None
        if fields['expiresAt']:
            expires = sanitizer.sanitize_date(fields['expiresAt'])
            if expires is None:
                raise CardValidationError('Invalid expiry date.')
        clean['expires_at'] = expires
    if 'isActive' in fields:
        if not isinstance(fields['isActive'], bool):
            raise CardValidationError('isActive must be true or false.')
        clean['is_active'] = fields['isActive']
    return clean


def update_card(card_id: str, fields: dict, performed_by: str = 'admin') -> GiftCard:
    """
    Edit owner details, notes, expiry or the active flag.
    Balances are never touched here; use update_amount() / redeem().
    Nothing is written unless the whole edit is valid.
    """
    card = get_card(card_id)
    clean = _clean_card_fields(fields)
    want_active = clean.pop('is_active', None)
    is_wallet = card.type == CardType.ewallet

    reactivate = want_active is True and not card.is_active
    if reactivate:
        if card.is_giftcard and card.status == CardStatus.redeemed:
            raise CardStateError('A redeemed gift card cannot be reactivated.')
        if card.is_expired:
            raise CardStateError('Expired cards cannot be reactivated.')
        if is_wallet and card.balance <= 0:
            raise CardStateError('An empty wallet becomes active when it is credited.')
    if want_active is False and card.is_active and is_wallet and card.balance > 0:
        raise CardStateError(FUNDED_WALLET)

    for attr, value in clean.items():
        setattr(card, attr, value)

    if reactivate:
        card.is_active = True
        if is_wallet:
            # Only rows stored switched off with money on them get here
            _log(card, TransactionType.adjustment, 0,
                 'Wallet reactivated by administrator', performed_by)
    elif want_active is False:
        card.is_active = False

    card.updated_at = dates.utcnow()
    card.sync_flags()
    db.session.commit()

    current_app.logger.info(f"Card {card.id} updated: {sorted(fields)}")
    return card


def permanently_delete(card_id: str, confirmation: str) -> None:
    """
    Remove a card and its whole transaction log. Irreversible.
    `confirmation` must equal the card's delete confirmation code exactly.
    """
    card = get_card(card_id)
    expected = card.delete_confirmation_code
    if confirmation != expected:
        raise CardValidationError(f'Incorrect confirmation code. Type exactly: {expected}')

    tx_count = len(card.transactions)
    owner, balance = card.owner_name, card.balance
    db.session.delete(card)
    db.session.commit()

    current_app.logger.warning(
        f"Card permanently deleted: {card_id} owner={owner!r} balance={balance} "
        f"transactions_deleted={tx_count}"
    )


def expire_cards() -> int:
    """
    Switch off active gift cards whose expiry has passed. Returns how many.
    Wallets are left alone: their flag follows the balance, and expired
    wallets already refuse balance changes.
    """
    now = dates.utcnow()
    expired = GiftCard.query.filter(
        GiftCard.type == CardType.giftcard,
        GiftCard.is_active == True,  # noqa: E712
        GiftCard.expires_at != None,  # noqa: E711
        GiftCard.expires_at < now,
    ).all()
    for card in expired:
        card.is_active = False
        card.updated_at = now
    db.session.commit()
    if expired:
        current_app.logger.info(f"Marked {len(expired)} expired card(s) inactive")
    return len(expired)


# ── Dashboard queries ─────────────────────────────────────────────

def expiring_cards(days: int = 7) -> list:
    """Active cards expiring within `days`, soonest first, as dicts with daysLeft."""
    now = dates.utcnow()
    until = now + timedelta(days=days)
    cards = (GiftCard.query
             .filter(GiftCard.is_active == True,  # noqa: E712
                     GiftCard.expires_at != None,  # noqa: E711
                     GiftCard.expires_at > now,
                     GiftCard.expires_at <= until)
             .order_by(GiftCard.expires_at.asc())
             .all())

    result = []
    for card in cards:
        data = card.to_dict()
        data['daysLeft'] = dates.days_until(card.expires_at, now)
        result.append(data)
    return result


def statistics() -> dict:
    cards = GiftCard.query.all()

    def _total(rows):
        return float(sum((c.balance for c in rows), Decimal('0')))

    giftcards = [c for c in cards if c.type == CardType.giftcard]
    wallets   = [c for c in cards if c.type == CardType.ewallet]
    by_status = {s: 0 for s in CardStatus}
    for card in cards:
        by_status[card.status] += 1

    return {
        'totalCards':       len(cards),
        'totalValue':       _total(cards),
        'activeCards':      by_status[CardStatus.active],
        'expiredCards':     sum(1 for c in cards if c.is_expired),
        'redeemedCards':    by_status[CardStatus.redeemed],
        'inactiveCards':    by_status[CardStatus.inactive],
        'giftCardStats':    {'count': len(giftcards), 'value': _total(giftcards)},
        'ewalletStats':     {'count': len(wallets), 'value': _total(wallets)},
        'transactionCount': Transaction.query.count(),
    }
