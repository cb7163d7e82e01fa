"""
Authentication routes and utilities
"""
from datetime import datetime, timezone
from functools import wraps

from flask import Blueprint, request, current_app
from flask_login import login_user, logout_user, current_user, login_required
from sqlalchemy.exc import IntegrityError

from portal import db, login_manager
from portal.models import User, UserRole, AuditLog
from portal.utils.responses import json_response, error_response

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')

MIN_PASSWORD_LENGTH = 8


@login_manager.user_loader
def load_user(user_id):
    """Load user by ID"""
    return db.session.get(User, int(user_id))


def admin_required(f):
    """Decorator to require an admin session"""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not current_user.is_admin:
            return error_response("Admin access required", 403)
        return f(*args, **kwargs)
    return decorated_function


def log_audit_event(event_type, description, user=None):
    """Log audit event"""
    user = user or (current_user if current_user.is_authenticated else None)
    audit_log = AuditLog(
        user_id=user.id if user else None,
        event_type=event_type,
        event_description=description,
        ip_address=request.remote_addr,
    )
    db.session.add(audit_log)
    db.session.commit()


@auth_bp.route('/register', methods=['POST'])
def register():
    """
    Create an account. The very first account becomes the admin; after that
    only an admin can add users.
    """
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    first_user = User.query.count() == 0
    if not first_user:
        if not current_user.is_authenticated:
            return error_response("Authentication required", 401)
        if not current_user.is_admin:
            return error_response("Admin access required", 403)

    if not name or not email or not password:
        return error_response("Name, email and password are required", 400)
    if len(password) < MIN_PASSWORD_LENGTH:
        return error_response(f"Password must be at least {MIN_PASSWORD_LENGTH} characters", 400)
    if User.query.filter_by(email=email).first():
        return error_response("Email already registered", 400)

    try:
        role = UserRole.ADMIN if first_user else UserRole(data.get('role') or UserRole.FACULTY.value)
    except ValueError:
        return error_response("Role must be 'admin' or 'faculty'", 400)

    try:
        user = User(name=name, email=email, role=role)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return error_response(str(e), 400)
    except IntegrityError:
        db.session.rollback()
        return error_response("Email already registered", 400)

    log_audit_event('user_registered', f'User {email} registered as {role.value}', user=user)
    current_app.logger.info("Registered user %s (%s)", email, role.value)
    return json_response(user.to_dict(), "User registered successfully", 201)


@auth_bp.route('/login', methods=['POST'])
def login():
    """User login"""
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    if not email or not password:
        return error_response("Email and password are required", 400)

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        return error_response("Invalid email or password", 401)
    if not user.is_active:
        return error_response("Account is disabled. Please contact an administrator.", 403)

    login_user(user, remember=bool(data.get('remember')))
    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()

    log_audit_event('user_login', f'User {email} logged in')
    return json_response(user.to_dict(), "Logged in successfully")


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """User logout"""
    log_audit_event('user_logout', f'User {current_user.email} logged out')
    logout_user()
    return json_response(None, "Logged out successfully")


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return json_response(current_user.to_dict(), "Current user")
