"""
giftdesk/cards/routes.py
------------------------
JSON endpoints for gift cards and wallets.

Rejections from the service layer are GiftDeskError subclasses; the app's
error handler turns them into {"success": false, "error": ...} with the
matching status, so the views below only deal with the happy path.
"""
from flask import request, jsonify, current_app

from giftdesk.auth.decorators import login_required, admin_required, current_username
from giftdesk.cards import cards
from giftdesk.cards import service, transfer
from giftdesk.errors import CardNotFound, CardValidationError
from giftdesk.utils import qr
from giftdesk.utils.ratelimit import enforce


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise CardValidationError('Request body must be a JSON object.')
    return data


# ── Collection ────────────────────────────────────────────────────

@cards.route('', methods=['GET'])
@login_required
def index():
    """List cards. Filters: status, type, q, minAmount, maxAmount, from, to."""
    args = request.args
    rows = service.list_cards(
        status=args.get('status'),
        card_type=args.get('type'),
        search=args.get('q'),
        min_amount=args.get('minAmount'),
        max_amount=args.get('maxAmount'),
        created_from=args.get('from'),
        created_to=args.get('to'),
    )
    return jsonify({'success': True, 'count': len(rows), 'giftCards': [c.to_dict() for c in rows]})


@cards.route('', methods=['POST'])
@login_required
def create():
    card = service.create_card(_json_body(), performed_by=current_username())
    return jsonify({'success': True, 'giftCard': card.to_dict(with_transactions=True)}), 201


@cards.route('/lookup')
@login_required
def lookup():
    """Find a card by its human-facing code."""
    code = request.args.get('code', '').strip()
    card = service.find_by_code(code)
    if card is None:
        raise CardNotFound('No card found for that code')
    return jsonify({'success': True, 'giftCard': card.to_dict()})


@cards.route('/scan', methods=['POST'])
@login_required
def scan():
    """
    Resolve the text decoded from a QR code.
    JSON payloads resolve by cardId (then code); bare text is a code.
    """
    enforce('scanQR')
    keys = qr.parse_payload(_json_body().get('payload'))

    card = None
    if keys['card_id']:
        try:
            card = service.get_card(keys['card_id'])
        except CardNotFound:
            card = None
    if card is None and keys['code']:
        card = service.find_by_code(keys['code'])
    if card is None:
        current_app.logger.info("QR scan did not match any card")
        raise CardNotFound('Scanned code does not match any card')

    return jsonify({'success': True, 'giftCard': card.to_dict()})


@cards.route('/expiring')
@login_required
def expiring():
    raw = request.args.get('days', '').strip()
    if not raw:
        days = current_app.config.get('EXPIRING_DAYS', 7)
    else:
        try:
            days = int(raw)
        except ValueError:
            days = -1
    if days < 0:
        raise CardValidationError('days must be a non-negative whole number.')
    rows = service.expiring_cards(days)
    return jsonify({'success': True, 'days': days, 'count': len(rows), 'giftCards': rows})


@cards.route('/stats')
@login_required
def stats():
    return jsonify({'success': True, 'stats': service.statistics()})


@cards.route('/export')
@login_required
def export():
    document = transfer.export_cards()
    response = jsonify(document)
    response.headers['Content-Disposition'] = 'attachment; filename=giftcards-export.json'
    return response


@cards.route('/import', methods=['POST'])
@admin_required
def import_():
    result = transfer.import_cards(_json_body(), performed_by=current_username())
    return jsonify(result.to_dict()), (200 if result.success else 400)


# ── Single card ───────────────────────────────────────────────────

@cards.route('/<card_id>', methods=['GET'])
@login_required
def detail(card_id):
    card = service.get_card(card_id)
    return jsonify({'success': True, 'giftCard': card.to_dict(with_transactions=True)})


@cards.route('/<card_id>', methods=['PATCH'])
@login_required
def update(card_id):
    card = service.update_card(card_id, _json_body(), performed_by=current_username())
    return jsonify({'success': True, 'giftCard': card.to_dict()})


@cards.route('/<card_id>/transactions')
@login_required
def transactions(card_id):
    rows = service.card_transactions(card_id)
    return jsonify({'success': True, 'transactions': [t.to_dict() for t in rows]})


@cards.route('/<card_id>/balance', methods=['POST'])
@login_required
def set_balance(card_id):
    """POST {amount, description}: set the card's new balance."""
    data = _json_body()
    card = service.update_amount(card_id, data.get('amount'), data.get('description'),
                                 performed_by=current_username())
    return jsonify({'success': True, 'giftCard': card.to_dict()})


@cards.route('/<card_id>/redeem', methods=['POST'])
@login_required
def redeem(card_id):
    """POST {amount?, description?}: spend part or all of the balance."""
    data = _json_body()
    card = service.redeem(card_id, data.get('amount'), data.get('description'),
                          performed_by=current_username())
    return jsonify({'success': True, 'giftCard': card.to_dict()})


@cards.route('/<card_id>/deactivate', methods=['POST'])
@login_required
def deactivate(card_id):
    card = service.deactivate(card_id, performed_by=current_username())
    return jsonify({'success': True, 'giftCard': card.to_dict()})


@cards.route('/<card_id>/delete-code')
@admin_required
def delete_code(card_id):
    card = service.get_card(card_id)
    return jsonify({'success': True, 'confirmationCode': card.delete_confirmation_code})


@cards.route('/<card_id>', methods=['DELETE'])
@admin_required
def delete(card_id):
    """DELETE {confirmation}: permanent removal, card and history."""
    service.permanently_delete(card_id, _json_body().get('confirmation', ''))
    return jsonify({'success': True})


@cards.route('/<card_id>/qr')
@login_required
def qr_code(card_id):
    card = service.get_card(card_id)
    payload = qr.build_payload(card)
    return jsonify({'success': True, 'payload': payload, 'image': qr.render_data_url(payload)})
