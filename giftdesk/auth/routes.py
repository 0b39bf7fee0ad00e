import re

from flask import request, session, jsonify, current_app
from giftdesk import db
from giftdesk.auth import auth
from giftdesk.auth.models import User
from giftdesk.auth.decorators import login_required
from giftdesk.errors import AuthError
from giftdesk.utils.ratelimit import enforce


_SPECIAL_RE = re.compile(r'[!@#$%^&*(),.?":{}|<>]')


def validate_new_password(password: str):
    """Return an error message, or None when the password is acceptable."""
    min_length = current_app.config.get('PASSWORD_MIN_LENGTH', 8)
    if len(password) < min_length:
        return f'Password must be at least {min_length} characters.'
    if current_app.config.get('PASSWORD_REQUIRE_COMPLEX', True):
        if not (_SPECIAL_RE.search(password) and re.search(r'\d', password)
                and re.search(r'[A-Z]', password) and re.search(r'[a-z]', password)):
            return ('Password must contain at least one upper-case letter, one lower-case '
                    'letter, one number and one special character.')
    return None


@auth.route('/login', methods=['POST'])
def login():
    """
    POST {username, password}
    → 200 {success, user} and a signed session cookie,
      400 when fields are missing, 401 on bad credentials, 429 while locked.
    """
    data = request.get_json(silent=True) or {}
    username = str(data.get('username') or '').strip()
    password = str(data.get('password') or '')

    if not username or not password:
        return jsonify({'success': False, 'error': 'Username and password are required'}), 400

    guard = current_app.extensions['login_guard']
    locked_for = guard.locked_for(username)
    if locked_for:
        minutes = -(-locked_for // 60)
        return jsonify({
            'success': False,
            'error': f'Account locked. Try again in {minutes} minute(s).',
            'retryAfter': locked_for,
        }), 429

    user = User.query.filter_by(username=username, is_active=True).first()

    if user is None or not user.check_password(password):
        # Deliberately vague, don't reveal which field was wrong
        current_app.logger.warning(f"Failed login attempt for username: {username}")
        if guard.record_failure(username):
            current_app.logger.warning(f"Account locked for username: {username}")
        return jsonify({'success': False, 'error': 'Invalid username or password'}), 401

    guard.reset(username)

    # ── Populate session ──
    session.clear()
    session['user_id']  = user.id
    session['username'] = user.username
    session['role']     = user.role.value
    session.permanent   = True             # respect PERMANENT_SESSION_LIFETIME

    current_app.logger.info(f"User {user.username} logged in successfully.")
    return jsonify({'success': True, 'user': user.to_dict()})


@auth.route('/logout', methods=['POST'])
def logout():
    """Clear the session."""
    session.clear()
    return jsonify({'success': True})


@auth.route('/me')
@login_required
def me():
    user = db.session.get(User, session['user_id'])
    if user is None:
        session.clear()
        return jsonify({'success': False, 'error': 'Authentication required'}), 401
    return jsonify({'success': True, 'user': user.to_dict()})


@auth.route('/change-password', methods=['POST'])
def change_password():
    """
    POST {userId, currentPassword, newPassword}
    → 200 {success, message} or 400 {success: false, error}.
    """
    data = request.get_json(silent=True) or {}
    user_id = data.get('userId')
    current_password = data.get('currentPassword') or ''
    new_password = data.get('newPassword') or ''

    if not user_id or not current_password or not new_password:
        raise AuthError('userId, currentPassword and newPassword are required')

    enforce('changePassword')

    problem = validate_new_password(new_password)
    if problem:
        raise AuthError(problem)

    try:
        user = db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        user = None
    if user is None:
        raise AuthError('User not found')

    if not user.check_password(current_password):
        current_app.logger.warning(f"Password change with wrong current password for {user.username}")
        raise AuthError('Current password is incorrect')

    user.set_password(new_password)
    db.session.commit()

    current_app.logger.info(f"Password changed for {user.username}")
    return jsonify({'success': True, 'message': 'Password changed successfully'})
