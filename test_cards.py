"""
test_cards.py: Business rules for gift cards and e-wallets.
Run: pytest test_cards.py -v
"""
import pytest
from datetime import timedelta
from decimal import Decimal

from giftdesk import create_app, db
from giftdesk.cards import service
from giftdesk.cards.models import GiftCard, Transaction, CardStatus, CardType, TransactionType
from giftdesk.errors import CardNotFound, CardValidationError, CardStateError
from giftdesk.utils import codes, dates


# ── Fixtures ──────────────────────────────────────────────────────

@pytest.fixture(scope='function')
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def make_card(**kwargs):
    form = dict(type='giftcard', ownerName='Ana López', initialAmount=500)
    form.update(kwargs)
    return service.create_card(form, rate_limited=False)


def tx_types(card):
    return [t.type for t in Transaction.query.filter_by(gift_card_id=card.id)
            .order_by(Transaction.timestamp).all()]


# ── 1. Creation ───────────────────────────────────────────────────

def test_create_giftcard_logs_creation(app):
    card = make_card(initialAmount='750.50', ownerEmail='Ana@Example.com')

    assert card.type == CardType.giftcard
    assert card.balance == Decimal('750.50')
    assert card.initial_amount == Decimal('750.50')
    assert card.owner_email == 'ana@example.com'
    assert card.status == CardStatus.active

    txs = Transaction.query.filter_by(gift_card_id=card.id).all()
    assert len(txs) == 1
    assert txs[0].type == TransactionType.creation
    assert txs[0].amount == Decimal('750.50')


def test_code_is_encrypted_at_rest(app):
    card = make_card()
    plain = card.plain_code

    assert codes.PLAIN_CODE_RE.match(plain)
    assert card.code != plain
    assert service.find_by_code(plain).id == card.id
    assert service.find_by_code(plain.lower()).id == card.id
    assert service.find_by_code('MM000000000000ZZZZ') is None


@pytest.mark.parametrize('amount', [0, -10, '0', 'abc'])
def test_giftcard_needs_positive_amount(app, amount):
    with pytest.raises(CardValidationError):
        make_card(initialAmount=amount)
    assert GiftCard.query.count() == 0


def test_ewallet_always_starts_empty(app):
    card = make_card(type='ewallet', initialAmount=900)

    assert card.balance == Decimal('0')
    assert card.initial_amount == Decimal('0')
    assert card.status == CardStatus.inactive
    assert tx_types(card) == [TransactionType.creation]


def test_create_validation(app):
    with pytest.raises(CardValidationError):
        make_card(ownerName='A')
    with pytest.raises(CardValidationError):
        make_card(ownerEmail='not-an-email')
    with pytest.raises(CardValidationError):
        make_card(ownerPhone='12')
    with pytest.raises(CardValidationError):
        make_card(type='voucher')
    with pytest.raises(CardValidationError):
        make_card(expiresAt='2001-01-01')
    with pytest.raises(CardValidationError):
        make_card(expiresAt='someday')


def test_create_strips_markup(app):
    card = make_card(ownerName='<b>Carlos</b> onclick=Ruiz', notes='<script>x</script>ok')
    assert '<' not in card.owner_name
    assert 'onclick=' not in card.owner_name
    assert 'script' not in card.notes


# ── 2. Status derivation ──────────────────────────────────────────

def test_giftcard_driven_to_zero_is_redeemed_and_rejects_credit(app):
    card = make_card(initialAmount=100)

    service.update_amount(card.id, 0, 'Purchase')
    card = service.get_card(card.id)
    assert card.status == CardStatus.redeemed
    assert card.is_redeemed is True
    assert card.is_active is False

    with pytest.raises(CardStateError):
        service.update_amount(card.id, 50, 'Top up')
    assert service.get_card(card.id).balance == Decimal('0')


def test_giftcard_cannot_be_reloaded(app):
    card = make_card(initialAmount=100)
    with pytest.raises(CardStateError):
        service.update_amount(card.id, 150, 'Top up')
    assert service.get_card(card.id).balance == Decimal('100')


def test_ewallet_auto_reactivates_on_credit(app):
    card = make_card(type='ewallet')
    assert card.status == CardStatus.inactive

    service.update_amount(card.id, 250, 'Cash deposit')
    card = service.get_card(card.id)

    assert card.status == CardStatus.active
    assert card.is_active is True
    last = card_transactions_newest(card)
    assert last.type == TransactionType.refund
    assert last.amount == Decimal('250')
    assert 'reactivated automatically' in last.description


def test_ewallet_back_to_zero_goes_inactive(app):
    card = make_card(type='ewallet')
    service.update_amount(card.id, 80, 'Deposit')
    service.redeem(card.id)

    card = service.get_card(card.id)
    assert card.status == CardStatus.inactive
    assert card.is_redeemed is False

    # and comes back with the next credit
    service.update_amount(card.id, 20, 'Deposit')
    assert service.get_card(card.id).status == CardStatus.active


def test_funded_wallet_stays_active_and_spendable(app):
    card = make_card(type='ewallet')
    service.update_amount(card.id, 40, 'Deposit')

    with pytest.raises(CardStateError):
        service.deactivate(card.id)
    card = service.get_card(card.id)
    assert card.is_active is True
    assert card.status == CardStatus.active

    service.redeem(card.id, 10)
    assert service.get_card(card.id).balance == Decimal('30')


def test_wallet_stored_switched_off_with_money_can_spend(app):
    card = make_card(type='ewallet')
    service.update_amount(card.id, 40, 'Deposit')
    card.is_active = False
    db.session.commit()
    assert card.status == CardStatus.active

    service.redeem(card.id, 10)
    card = service.get_card(card.id)
    assert card.balance == Decimal('30')
    assert card.is_active is True


def test_empty_wallet_cannot_be_deactivated_again(app):
    card = make_card(type='ewallet')
    assert card.is_active is False
    with pytest.raises(CardStateError):
        service.deactivate(card.id)


def test_expired_card_is_expired_and_blocks_mutation(app):
    card = make_card(initialAmount=100)
    card.expires_at = dates.utcnow() - timedelta(days=1)
    db.session.commit()

    assert card.status == CardStatus.expired
    with pytest.raises(CardStateError):
        service.update_amount(card.id, 50, 'Purchase')
    with pytest.raises(CardStateError):
        service.redeem(card.id, 10)


def test_spent_giftcard_wins_over_expiry(app):
    card = make_card(initialAmount=10)
    service.redeem(card.id)
    card.expires_at = dates.utcnow() - timedelta(days=1)
    db.session.commit()
    assert service.get_card(card.id).status == CardStatus.redeemed


# ── 3. Balance changes ────────────────────────────────────────────

def card_transactions_newest(card):
    return service.card_transactions(card.id)[0]


def test_usage_transaction_records_positive_amount(app):
    card = make_card(initialAmount=300)
    service.update_amount(card.id, '120.25', 'Shoes')

    last = card_transactions_newest(card)
    assert last.type == TransactionType.usage
    assert last.amount == Decimal('179.75')
    assert last.description == 'Shoes'


def test_update_amount_requires_description(app):
    card = make_card(initialAmount=300)
    with pytest.raises(CardValidationError):
        service.update_amount(card.id, 100, '   ')


def test_update_amount_rejects_negative(app):
    card = make_card(initialAmount=300)
    with pytest.raises(CardValidationError):
        service.update_amount(card.id, -5, 'Oops')


def test_unknown_card(app):
    with pytest.raises(CardNotFound):
        service.update_amount('nope', 5, 'x')
    with pytest.raises(CardNotFound):
        service.get_card('nope')


def test_inactive_giftcard_rejects_spend(app):
    card = make_card(initialAmount=300)
    service.deactivate(card.id)
    with pytest.raises(CardStateError):
        service.update_amount(card.id, 100, 'Purchase')


def test_partial_and_full_redeem(app):
    card = make_card(initialAmount=200)

    service.redeem(card.id, 50)
    assert service.get_card(card.id).balance == Decimal('150')
    assert 'Partial' in card_transactions_newest(card).description

    service.redeem(card.id)
    card = service.get_card(card.id)
    assert card.balance == Decimal('0')
    assert card.status == CardStatus.redeemed

    with pytest.raises(CardStateError):
        service.redeem(card.id)


def test_redeem_checks_amount(app):
    card = make_card(initialAmount=200)
    with pytest.raises(CardStateError):
        service.redeem(card.id, 500)
    with pytest.raises(CardValidationError):
        service.redeem(card.id, 0)


# ── 4. Deactivate / update ────────────────────────────────────────

def test_deactivate_keeps_history(app):
    card = make_card()
    service.deactivate(card.id)

    card = service.get_card(card.id)
    assert card.status == CardStatus.inactive
    last = card_transactions_newest(card)
    assert last.type == TransactionType.adjustment
    assert last.amount == Decimal('0')

    with pytest.raises(CardStateError):
        service.deactivate(card.id)


def test_update_card_fields_and_reactivate_wallet(app):
    card = make_card(type='ewallet')
    service.update_amount(card.id, 60, 'Deposit')
    # row left switched off with money on it
    card.is_active = False
    db.session.commit()
    before = len(service.card_transactions(card.id))

    service.update_card(card.id, {'isActive': True, 'ownerPhone': '+52 55 1234 5678',
                                  'notes': 'VIP'})
    card = service.get_card(card.id)

    assert card.is_active is True
    assert card.owner_phone == '+52 55 1234 5678'
    assert card.notes == 'VIP'
    txs = service.card_transactions(card.id)
    assert len(txs) == before + 1
    assert txs[0].description == 'Wallet reactivated by administrator'


def test_update_card_wallet_flag_follows_balance(app):
    empty = make_card(type='ewallet', ownerName='Empty Wallet')
    with pytest.raises(CardStateError):
        service.update_card(empty.id, {'isActive': True})

    funded = make_card(type='ewallet', ownerName='Funded Wallet')
    service.update_amount(funded.id, 25, 'Deposit')
    with pytest.raises(CardStateError):
        service.update_card(funded.id, {'isActive': False, 'notes': 'closing'})
    funded = service.get_card(funded.id)
    assert funded.is_active is True
    assert funded.notes is None


def test_update_card_validates_like_create(app):
    card = make_card(ownerEmail='ana@example.com', ownerPhone='5512345678')

    for fields in ({'ownerEmail': 'a@'}, {'ownerEmail': 'no-at-sign'},
                   {'ownerPhone': '12'}, {'ownerPhone': '1' * 16},
                   {'ownerName': 'Ok Name', 'ownerPhone': '12'}):
        with pytest.raises(CardValidationError):
            service.update_card(card.id, fields)

    card = service.get_card(card.id)
    assert card.owner_email == 'ana@example.com'
    assert card.owner_phone == '5512345678'
    assert card.owner_name == 'Ana López'

    # clearing optional fields is still allowed
    service.update_card(card.id, {'ownerEmail': '', 'ownerPhone': None})
    card = service.get_card(card.id)
    assert card.owner_email is None
    assert card.owner_phone is None


@pytest.mark.parametrize('flag', ['false', 'true', 0, 1, None])
def test_update_card_needs_a_real_boolean(app, flag):
    card = make_card()
    service.deactivate(card.id)
    with pytest.raises(CardValidationError):
        service.update_card(card.id, {'isActive': flag})
    assert service.get_card(card.id).is_active is False


def test_redeemed_giftcard_cannot_be_reactivated(app):
    card = make_card(initialAmount=10)
    service.redeem(card.id)
    with pytest.raises(CardStateError):
        service.update_card(card.id, {'isActive': True})


def test_update_card_rejects_balance_fields(app):
    card = make_card()
    with pytest.raises(CardValidationError):
        service.update_card(card.id, {'currentAmount': 9999})


# ── 5. Permanent delete ───────────────────────────────────────────

def test_permanent_delete_needs_exact_code(app):
    card = make_card()
    service.redeem(card.id, 10)
    card_id = card.id
    expected = f'DELETE-{card_id[-8:].upper()}'
    assert card.delete_confirmation_code == expected

    for wrong in ('', expected.lower(), f'DELETE-{card_id[-8:]}x', expected + ' '):
        with pytest.raises(CardValidationError):
            service.permanently_delete(card_id, wrong)
    assert db.session.get(GiftCard, card_id) is not None

    service.permanently_delete(card_id, expected)
    assert db.session.get(GiftCard, card_id) is None
    assert Transaction.query.filter_by(gift_card_id=card_id).count() == 0


# ── 6. Queries ────────────────────────────────────────────────────

def test_list_filters(app):
    a = make_card(ownerName='Ana López', initialAmount=100)
    b = make_card(ownerName='Bruno Díaz', initialAmount=900, ownerEmail='bruno@example.com')
    w = make_card(type='ewallet', ownerName='Carla Ríos')

    assert {c.id for c in service.list_cards()} == {a.id, b.id, w.id}
    assert [c.id for c in service.list_cards(card_type='ewallet')] == [w.id]
    assert [c.id for c in service.list_cards(status='inactive')] == [w.id]
    assert [c.id for c in service.list_cards(search='bruno@')] == [b.id]
    assert [c.id for c in service.list_cards(search=a.plain_code)] == [a.id]
    assert {c.id for c in service.list_cards(min_amount=50)} == {a.id, b.id}
    assert {c.id for c in service.list_cards(max_amount='100')} == {w.id, a.id}

    with pytest.raises(CardValidationError):
        service.list_cards(status='lost')


def test_expiring_cards_window(app):
    soon = make_card(ownerName='Soon Owner', expiresAt=dates.to_iso(dates.utcnow() + timedelta(days=2)))
    make_card(ownerName='Later Owner', expiresAt=dates.to_iso(dates.utcnow() + timedelta(days=30)))
    make_card(ownerName='Never Owner')

    rows = service.expiring_cards(7)
    assert [r['id'] for r in rows] == [soon.id]
    assert rows[0]['daysLeft'] == 2


def test_expire_cards_switches_off_past_due(app):
    card = make_card()
    card.expires_at = dates.utcnow() - timedelta(hours=1)
    db.session.commit()

    assert service.expire_cards() == 1
    assert service.get_card(card.id).is_active is False
    assert service.expire_cards() == 0


def test_expire_cards_leaves_wallet_flag_to_balance(app):
    wallet = make_card(type='ewallet')
    service.update_amount(wallet.id, 50, 'Deposit')
    wallet.expires_at = dates.utcnow() - timedelta(hours=1)
    db.session.commit()

    assert service.expire_cards() == 0
    wallet = service.get_card(wallet.id)
    assert wallet.is_active is True
    with pytest.raises(CardStateError):
        service.redeem(wallet.id, 10)


def test_statistics(app):
    make_card(initialAmount=100)
    spent = make_card(initialAmount=50)
    service.redeem(spent.id)
    wallet = make_card(type='ewallet')
    service.update_amount(wallet.id, 30, 'Deposit')

    stats = service.statistics()
    assert stats['totalCards'] == 3
    assert stats['totalValue'] == 130.0
    assert stats['activeCards'] == 2
    assert stats['redeemedCards'] == 1
    assert stats['giftCardStats'] == {'count': 2, 'value': 100.0}
    assert stats['ewalletStats'] == {'count': 1, 'value': 30.0}
    assert stats['transactionCount'] == 5
