"""
giftdesk/main/routes.py
───────────────────────
App info, health check and the rate-limit indicator feed.
"""
from flask import jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from giftdesk import db
from giftdesk.main import main
from giftdesk.auth.decorators import login_required
from giftdesk.utils import dates
from giftdesk.utils.ratelimit import get_limiter


@main.route('/')
def index():
    return jsonify({
        'name':    current_app.config.get('APP_NAME'),
        'version': current_app.config.get('APP_VERSION'),
    })


@main.route('/health')
def health():
    """Health check for load balancers and monitoring."""
    status, db_state = 'ok', 'ok'
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError as e:
        status, db_state = 'error', 'error'
        current_app.logger.error(f"Health check failed (DB): {e}")

    response = {
        'status':    status,
        'timestamp': dates.to_iso(dates.utcnow()),
        'details':   {'db': db_state},
    }
    return jsonify(response), (200 if status == 'ok' else 503)


@main.route('/api/rate-limits')
@login_required
def rate_limits():
    """Remaining attempts per limited action, for the UI indicator."""
    limiter = get_limiter()
    return jsonify({
        'success': True,
        'limits':  {action: limiter.limit_info(action) for action in limiter.rules},
    })
