"""
giftdesk/cards/__init__.py
--------------------------
Gift cards & e-wallets blueprint.
URL prefix: /api/cards
"""
from flask import Blueprint

cards = Blueprint('cards', __name__)

from giftdesk.cards import routes  # noqa: E402, F401
from giftdesk.cards import models  # noqa: E402, F401
