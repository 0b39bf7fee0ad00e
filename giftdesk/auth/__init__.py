from flask import Blueprint

auth = Blueprint('auth', __name__)

from giftdesk.auth import routes   # noqa: F401, E402
from giftdesk.auth import models   # noqa: F401, E402  (registers User with SQLAlchemy)
