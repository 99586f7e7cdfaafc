# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every chain-side action is attributed to a registered user whose
wallet address is the on-chain identity. Uses bcrypt for password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
- Wallet addresses stored lowercased; one user per wallet
"""

import re

import bcrypt
from web3 import Web3

from ..errors import AuthenticationError, ConflictError, ValidationError
from ..extensions import db
from ..models import User, USER_ROLES
from chaintrace.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash
        return False


def normalize_wallet_address(address: str | None) -> str:
    """Lowercased 0x address; ValidationError if it is not a 20-byte hex address."""
    if not address or not isinstance(address, str):
        raise ValidationError("walletAddress is required")
    address = address.strip()
    if not Web3.is_address(address):
        raise ValidationError(f"Invalid wallet address: {address}")
    return address.lower()


def find_user_by_wallet(address: str | None) -> User | None:
    if not address:
        return None
    return db.session.query(User).filter_by(wallet_address=address.strip().lower()).first()


def register_user(
    name: str,
    email: str,
    password: str,
    wallet_address: str,
    role: str,
    company_name: str | None = None,
) -> User:
    """
    Create a new user.

    Raises:
        ValidationError: missing fields, unknown role, bad wallet address or weak password
        ConflictError: email or wallet address already registered
    """
    if not all([name, email, password, wallet_address, role]):
        raise ValidationError("Missing fields")

    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(USER_ROLES)}")

    email = email.strip().lower()
    wallet = normalize_wallet_address(wallet_address)

    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError("Email already in use")
    if db.session.query(User).filter_by(wallet_address=wallet).first():
        raise ConflictError("Wallet address already registered")

    user = User(
        name=name.strip(),
        email=email,
        password_hash=hash_password(password),
        wallet_address=wallet,
        role=role,
        company_name=company_name,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User:
    """
    Authenticate user by email and password.

    Updates last_login_at on success. Raises AuthenticationError with the
    same message for unknown email and wrong password.
    """
    if not email or not password:
        raise ValidationError("email and password required")

    user = db.session.query(User).filter(
        User.email == email.strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    user.last_login_at = utcnow()
    db.session.commit()
    return user
