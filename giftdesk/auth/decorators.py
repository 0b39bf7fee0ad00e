"""
giftdesk/auth/decorators.py
---------------------------
Route-protection decorators for the JSON API.
Usage:
    from giftdesk.auth.decorators import login_required

    @cards.route('/<card_id>')
    @login_required
    def detail(card_id):
        ...
"""
from functools import wraps
from flask import session, jsonify


def login_required(f):
    """
    Respond 401 if the operator is not signed in.
    Checks for 'user_id' key in the Flask session.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({'success': False, 'error': 'Authentication required'}), 401
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """
    Allow access only to users with role == 'admin'.
    Unauthenticated → 401, authenticated non-admins → 403.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({'success': False, 'error': 'Authentication required'}), 401
        if session.get('role') != 'admin':
            return jsonify({'success': False, 'error': 'Access denied'}), 403
        return f(*args, **kwargs)
    return decorated


def current_username() -> str:
    """Who to record in transaction logs."""
    return session.get('username', 'system')
