"""
giftdesk/cards/transfer.py
--------------------------
JSON export and import of cards.

Export document:
{
    "giftCards":    [ card dict with embedded "transactions", ... ],
    "transactions": [ every transaction, flat ],
    "exportDate":   ISO timestamp (business timezone),
    "version":      "1.0"
}

Import accepts two shapes:

1. A full export (has "transactions" and "version"): cards are restored
   by id, keeping code, balances, flags, timestamps and history.
   Existing cards with the same id are overwritten.

2. A plain list under "giftCards" (the import template): each entry is
   issued as a new card through the normal create rules. Entries whose
   "code" already exists are counted as duplicates and skipped.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from flask import current_app

from giftdesk import db
from giftdesk.cards import service
from giftdesk.cards.models import GiftCard, Transaction, CardType, TransactionType
from giftdesk.errors import GiftDeskError, CardValidationError
from giftdesk.utils import codes, dates, sanitizer
from giftdesk.utils.ratelimit import enforce


EXPORT_VERSION = '1.0'


@dataclass
class ImportResult:
    imported:   int = 0
    duplicates: int = 0
    errors:     List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.imported > 0

    def to_dict(self) -> dict:
        return {
            'success':    self.success,
            'imported':   self.imported,
            'duplicates': self.duplicates,
            'errors':     self.errors,
        }


# ── Export ────────────────────────────────────────────────────────

def export_cards(rate_limited: bool = True) -> dict:
    if rate_limited:
        enforce('export')

    cards = GiftCard.query.order_by(GiftCard.created_at.asc()).all()
    transactions = Transaction.query.order_by(Transaction.timestamp.asc()).all()

    document = {
        'giftCards':    [c.to_dict(with_transactions=True) for c in cards],
        'transactions': [t.to_dict() for t in transactions],
        'exportDate':   dates.to_iso(dates.utcnow()),
        'version':      EXPORT_VERSION,
    }
    current_app.logger.info(f"Exported {len(cards)} card(s), {len(transactions)} transaction(s)")
    return document


# ── Import ────────────────────────────────────────────────────────

def import_cards(document, performed_by: str = 'admin', rate_limited: bool = True) -> ImportResult:
    if rate_limited:
        enforce('import')

    if not isinstance(document, dict):
        raise CardValidationError('Import data must be a JSON object.')
    cards = document.get('giftCards')
    if not isinstance(cards, list):
        raise CardValidationError('The file must contain a "giftCards" array.')

    if 'transactions' in document and 'version' in document:
        result = _restore(cards)
    else:
        result = _issue(cards, performed_by)

    current_app.logger.info(
        f"Import finished: {result.imported} imported, {result.duplicates} duplicate(s), "
        f"{len(result.errors)} error(s)"
    )
    return result


def _issue(rows: list, performed_by: str) -> ImportResult:
    """Template import: every row becomes a brand-new card."""
    result = ImportResult()

    for index, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            result.errors.append(f'Card {index}: entry must be an object')
            continue
        is_wallet = row.get('type') == 'ewallet'
        if not row.get('ownerName') or (row.get('initialAmount') in (None, '') and not is_wallet):
            result.errors.append(f'Card {index}: missing required fields (ownerName, initialAmount)')
            continue

        code = sanitizer.sanitize_card_code(row.get('code') or '')
        if code and service.find_by_code(code):
            result.duplicates += 1
            continue

        try:
            card = service.create_card(row, performed_by=performed_by,
                                       rate_limited=False, commit=False)
            if code:
                card.set_code(code)
            db.session.commit()
        except GiftDeskError as e:
            db.session.rollback()
            result.errors.append(f'Card {index}: {e.message}')
            continue

        result.imported += 1

    return result


def _restore(rows: list) -> ImportResult:
    """Full-export import: put each card back exactly as it was."""
    result = ImportResult()

    for index, row in enumerate(rows, start=1):
        try:
            _restore_card(row)
            db.session.commit()
        except GiftDeskError as e:
            db.session.rollback()
            result.errors.append(f'Card {index}: {e.message}')
            continue
        result.imported += 1

    return result


def _restore_card(row) -> GiftCard:
    if not isinstance(row, dict) or not row.get('id'):
        raise CardValidationError('entry needs an "id"')

    try:
        card_type = CardType(row.get('type') or 'giftcard')
    except ValueError:
        raise CardValidationError('type must be "giftcard" or "ewallet"')

    name = sanitizer.sanitize_text(row.get('ownerName') or '')
    if len(name) < 2:
        raise CardValidationError('owner name must be at least 2 characters')

    code = sanitizer.sanitize_card_code(row.get('code') or '')
    if not code:
        raise CardValidationError('entry needs a "code"')

    card = db.session.get(GiftCard, row['id'])
    other = GiftCard.query.filter_by(code_hash=codes.code_digest(code)).first()
    if other is not None and other.id != row['id']:
        raise CardValidationError('code already belongs to another card')

    if card is None:
        card = GiftCard(id=str(row['id']))
        db.session.add(card)

    card.type = card_type
    card.set_code(code)
    card.owner_name = name
    card.owner_email = sanitizer.sanitize_email(row.get('ownerEmail') or '') or None
    card.owner_phone = sanitizer.sanitize_phone(row.get('ownerPhone') or '') or None
    card.initial_amount = sanitizer.sanitize_amount(row.get('initialAmount'))
    card.current_amount = sanitizer.sanitize_amount(row.get('currentAmount', row.get('initialAmount')))
    card.is_active = bool(row.get('isActive', True))
    card.notes = sanitizer.sanitize_notes(row.get('notes') or '') or None
    card.created_at = dates.parse_datetime(row.get('createdAt')) or dates.utcnow()
    card.updated_at = dates.parse_datetime(row.get('updatedAt')) or dates.utcnow()
    # Restores keep past expiry dates, unlike new cards
    card.expires_at = dates.parse_datetime(row.get('expiresAt'))
    card.sync_flags()

    # Replace the history wholesale; flush so old ids are free again
    card.transactions = []
    db.session.flush()
    for tx in row.get('transactions') or []:
        _restore_transaction(card, tx)

    return card


def _restore_transaction(card: GiftCard, row) -> None:
    if not isinstance(row, dict):
        return
    try:
        tx_type = TransactionType(row.get('type') or 'adjustment')
    except ValueError:
        # Old exports used "redemption" for spends
        tx_type = TransactionType.usage

    # Look the id up before the new row joins card.transactions, so the
    # autoflush this triggers never sees a half-attached Transaction
    tx_id = str(row['id']) if row.get('id') else None
    if tx_id and db.session.get(Transaction, tx_id) is not None:
        tx_id = None

    tx = Transaction(
        type=tx_type,
        amount=abs(sanitizer.sanitize_amount(row.get('amount'))),
        description=sanitizer.sanitize_text(row.get('description') or '') or 'Imported transaction',
        performed_by=sanitizer.sanitize_text(row.get('performedBy') or '', max_length=64) or 'system',
        timestamp=dates.parse_datetime(row.get('timestamp')) or dates.utcnow(),
    )
    if tx_id:
        tx.id = tx_id
    db.session.add(tx)
    tx.gift_card = card
