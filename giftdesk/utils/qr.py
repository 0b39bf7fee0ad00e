"""
giftdesk/utils/qr.py
--------------------
QR payloads for cards.

The QR encodes a small JSON object:
    {"cardId": "...", "code": "MM...", "amount": 123.45, "timestamp": <epoch ms>}

Decoding the camera image happens on the client; the server only receives
the decoded text and resolves it with parse_payload().
"""
import base64
import json
import time
from io import BytesIO

import qrcode


def build_payload(card) -> dict:
    return {
        'cardId':    card.id,
        'code':      card.plain_code,
        'amount':    float(card.balance),
        'timestamp': int(time.time() * 1000),
    }


def render_data_url(payload: dict, box_size: int = 8, border: int = 1) -> str:
    """PNG data: URL of the QR for `payload`."""
    qr = qrcode.QRCode(box_size=box_size, border=border)
    qr.add_data(json.dumps(payload, separators=(',', ':')))
    qr.make(fit=True)
    img = qr.make_image(fill_color='black', back_color='white')

    buffer = BytesIO()
    img.save(buffer, format='PNG')
    return 'data:image/png;base64,' + base64.b64encode(buffer.getvalue()).decode()


def parse_payload(text: str) -> dict:
    """
    Turn scanned text into lookup keys.

    Returns {'card_id': ..., 'code': ...}; either may be None. Text that
    isn't a JSON object is taken to be a bare card code.
    """
    text = (text or '').strip()
    if not text:
        return {'card_id': None, 'code': None}
    try:
        data = json.loads(text)
    except ValueError:
        return {'card_id': None, 'code': text}
    if not isinstance(data, dict):
        return {'card_id': None, 'code': text}
    return {
        'card_id': str(data['cardId']) if data.get('cardId') else None,
        'code':    str(data['code']) if data.get('code') else None,
    }
