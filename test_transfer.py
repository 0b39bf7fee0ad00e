"""
test_transfer.py: JSON export / import of cards and their history.
Run: pytest test_transfer.py -v
"""
import json
import warnings
import pytest
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.exc import SAWarning

from giftdesk import create_app, db
from giftdesk.cards import service, transfer
from giftdesk.cards.models import GiftCard, Transaction, CardStatus, TransactionType
from giftdesk.errors import CardValidationError, RateLimitExceeded
from giftdesk.utils import dates


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def seed():
    gift = service.create_card({'type': 'giftcard', 'ownerName': 'Ana López',
                                'ownerEmail': 'ana@example.com', 'ownerPhone': '5512345678',
                                'initialAmount': 500, 'notes': 'Birthday'},
                               rate_limited=False)
    service.update_amount(gift.id, 320, 'Dinner')
    wallet = service.create_card({'type': 'ewallet', 'ownerName': 'Bruno Díaz'},
                                 rate_limited=False)
    service.update_amount(wallet.id, 75, 'Deposit')
    return gift, wallet


def wipe():
    Transaction.query.delete()
    GiftCard.query.delete()
    db.session.commit()


# ── Export ────────────────────────────────────────────────────────

def test_export_document_shape(app):
    gift, wallet = seed()
    doc = transfer.export_cards()

    assert doc['version'] == transfer.EXPORT_VERSION
    assert doc['exportDate']
    assert len(doc['giftCards']) == 2
    assert len(doc['transactions']) == 4

    exported = {c['id']: c for c in doc['giftCards']}
    assert exported[gift.id]['code'] == gift.plain_code
    assert exported[gift.id]['currentAmount'] == 320.0
    assert [t['type'] for t in exported[gift.id]['transactions']] == ['creation', 'usage']

    # must survive a trip through the json module
    json.loads(json.dumps(doc))


def test_export_is_rate_limited(app):
    for _ in range(50):
        transfer.export_cards()
    with pytest.raises(RateLimitExceeded):
        transfer.export_cards()
    transfer.export_cards(rate_limited=False)


# ── Full restore ──────────────────────────────────────────────────

def test_full_export_restores_cards_and_history(app):
    gift, wallet = seed()
    gift_id, wallet_id, gift_code = gift.id, wallet.id, gift.plain_code
    doc = json.loads(json.dumps(transfer.export_cards()))
    wipe()

    result = transfer.import_cards(doc)
    assert result.to_dict() == {'success': True, 'imported': 2, 'duplicates': 0, 'errors': []}

    restored = service.get_card(gift_id)
    assert restored.plain_code == gift_code
    assert service.find_by_code(gift_code).id == gift_id
    assert restored.owner_name == 'Ana López'
    assert restored.owner_email == 'ana@example.com'
    assert restored.owner_phone == '5512345678'
    assert restored.notes == 'Birthday'
    assert restored.initial_amount == Decimal('500')
    assert restored.balance == Decimal('320')
    assert restored.status == CardStatus.active
    assert [t.type for t in service.card_transactions(gift_id)][::-1] == \
        [TransactionType.creation, TransactionType.usage]

    wallet = service.get_card(wallet_id)
    assert wallet.balance == Decimal('75')
    assert wallet.status == CardStatus.active
    assert Transaction.query.count() == 4


def test_restore_over_existing_cards_replaces_history(app):
    gift, _ = seed()
    gift_id = gift.id
    doc = transfer.export_cards()

    service.update_amount(gift_id, 100, 'Later purchase')
    result = transfer.import_cards(doc)

    assert result.imported == 2
    card = service.get_card(gift_id)
    assert card.balance == Decimal('320')
    assert len(service.card_transactions(gift_id)) == 2
    assert GiftCard.query.count() == 2


def test_restore_keeps_past_expiry(app):
    gift, _ = seed()
    doc = transfer.export_cards()
    past = dates.to_iso(dates.utcnow() - timedelta(days=3))
    doc['giftCards'][0]['expiresAt'] = past
    wipe()

    transfer.import_cards(doc)
    card = service.get_card(doc['giftCards'][0]['id'])
    assert card.status == CardStatus.expired


def test_restore_maps_legacy_transaction_type(app):
    gift, _ = seed()
    doc = transfer.export_cards()
    for card in doc['giftCards']:
        for tx in card['transactions']:
            if tx['type'] == 'usage':
                tx['type'] = 'redemption'
    wipe()

    transfer.import_cards(doc)
    types = {t.type for t in Transaction.query.all()}
    assert TransactionType.usage in types


def test_restore_attaches_history_cleanly(app):
    gift, _ = seed()
    doc = transfer.export_cards()
    wipe()

    with warnings.catch_warnings():
        warnings.filterwarnings('error', message='.*not in session', category=SAWarning)
        result = transfer.import_cards(doc)

    assert result.errors == []
    assert Transaction.query.count() == 4
    ids = {t['id'] for t in doc['transactions']}
    assert {t.id for t in Transaction.query.all()} == ids


def test_restore_reports_bad_rows(app):
    doc = {
        'version': '1.0',
        'transactions': [],
        'giftCards': [
            {'id': 'x1', 'type': 'giftcard', 'ownerName': 'Ok Owner', 'code': 'MM260101000000AAAA',
             'initialAmount': 10, 'currentAmount': 10},
            {'type': 'giftcard', 'ownerName': 'No Id', 'code': 'MM260101000000BBBB'},
            {'id': 'x3', 'type': 'voucher', 'ownerName': 'Bad Type', 'code': 'MM260101000000CCCC'},
            {'id': 'x4', 'type': 'giftcard', 'ownerName': 'Code Clash', 'code': 'MM260101000000AAAA'},
        ],
    }
    result = transfer.import_cards(doc)

    assert result.imported == 1
    assert len(result.errors) == 3
    assert result.errors[0].startswith('Card 2:')
    assert GiftCard.query.count() == 1


# ── Template import ───────────────────────────────────────────────

def test_template_import_issues_new_cards(app):
    existing, _ = seed()
    doc = {'giftCards': [
        {'type': 'giftcard', 'ownerName': 'Carla Ríos', 'initialAmount': 250},
        {'type': 'giftcard', 'ownerName': 'Custom Code', 'initialAmount': 90,
         'code': 'MM260101123456ABCD'},
        {'type': 'ewallet', 'ownerName': 'Wallet Owner'},
        {'type': 'giftcard', 'ownerName': 'Dup', 'initialAmount': 10, 'code': existing.plain_code},
        {'type': 'giftcard', 'initialAmount': 10},
        {'type': 'giftcard', 'ownerName': 'Bad Mail', 'initialAmount': 10, 'ownerEmail': 'nope'},
    ]}
    result = transfer.import_cards(doc, performed_by='importer')

    assert result.imported == 3
    assert result.duplicates == 1
    assert len(result.errors) == 2
    assert result.success is True

    custom = service.find_by_code('MM260101123456ABCD')
    assert custom is not None
    assert custom.owner_name == 'Custom Code'
    assert custom.transactions[0].type == TransactionType.creation
    assert custom.transactions[0].performed_by == 'importer'
    assert GiftCard.query.count() == 5


def test_template_import_with_nothing_valid(app):
    result = transfer.import_cards({'giftCards': [{'ownerName': 'No amount'}]})
    assert result.success is False
    assert result.imported == 0
    assert result.errors


def test_import_rejects_wrong_shape(app):
    with pytest.raises(CardValidationError):
        transfer.import_cards(['not', 'an', 'object'])
    with pytest.raises(CardValidationError):
        transfer.import_cards({'cards': []})


def test_import_is_rate_limited(app):
    for _ in range(5):
        transfer.import_cards({'giftCards': []})
    with pytest.raises(RateLimitExceeded):
        transfer.import_cards({'giftCards': []})
