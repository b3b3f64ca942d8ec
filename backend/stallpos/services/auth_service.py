# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every order must be attributable to a logged-in Admin, stall manager
or cashier. Uses bcrypt for password hashing and validates password strength.

TENANCY: Admins are tenants. Stall managers and cashiers are created
under an Admin (admin_id) and inherit its configuration and products.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
"""

import bcrypt
import re
from ..extensions import db
from ..models import User
from ..models.auth import VALID_ROLES, ROLE_ADMIN
from ..validation import NotFoundError
from ..time_utils import utcnow
from . import session_service


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class UserCreationError(Exception):
    """Raised when a user cannot be created (duplicate, bad role, missing admin)."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """Return True if password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    role: str,
    admin_id: int | None = None,
) -> User:
    """
    Create a user.

    Admins own themselves (admin_id stays NULL). Every other role must name
    an existing Admin.

    Raises PasswordValidationError or UserCreationError.
    """
    if role not in VALID_ROLES:
        raise UserCreationError(f"Invalid role: {role}. Must be one of {VALID_ROLES}")

    if role == ROLE_ADMIN:
        admin_id = None
    else:
        owner = db.session.get(User, admin_id) if admin_id else None
        if not owner or not owner.is_admin:
            raise UserCreationError("Non-admin users must belong to an existing Admin")

    existing = db.session.query(User).filter(
        (User.username == username) | (User.email == email)
    ).first()
    if existing:
        raise UserCreationError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        admin_id=admin_id,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """
    Authenticate by username or email.

    Returns the user on success, None otherwise. Inactive users never
    authenticate.
    """
    user = db.session.query(User).filter(
        (User.username == identifier) | (User.email == identifier)
    ).first()

    if not user or not user.is_active:
        return None

    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def deactivate_user(user_id: int) -> tuple[User, int]:
    """
    Disable a login and end its open sessions.

    Returns (user, sessions_revoked). Orders the user already rang up are
    untouched.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")

    user.is_active = False
    db.session.commit()
    return user, session_service.revoke_user_sessions(user.id)
