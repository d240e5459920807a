"""Authentication utilities for JWT tokens and password hashing."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from config_manager import AuthConfig, get_config

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Machine-readable 401 reasons
NO_TOKEN = "no_token"
INVALID_TOKEN = "invalid_token"
EXPIRED_TOKEN = "expired_token"
INVALID_CREDENTIALS = "invalid_credentials"
INACTIVE_USER = "inactive_user"

_MESSAGES = {
    NO_TOKEN: "No token provided. Authentication required.",
    INVALID_TOKEN: "Invalid token",
    EXPIRED_TOKEN: "Token expired",
    INVALID_CREDENTIALS: "Invalid credentials",
    INACTIVE_USER: "User not found or inactive",
}


class AuthenticationError(Exception):
    """Missing, invalid or expired credentials; always a 401"""

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        self.message = message or _MESSAGES.get(reason, "Authentication failed")
        super().__init__(self.message)


def _auth_config(config: Optional[AuthConfig]) -> AuthConfig:
    return config if config is not None else get_config().auth


# ============================================================================
# Password Hashing
# ============================================================================

def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password

    Returns:
        Hashed password
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Malformed hashes count as a mismatch.
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        logger.warning("Stored password hash could not be parsed")
        return False


# ============================================================================
# JWT Token Management
# ============================================================================

def create_access_token(
    subject: str,
    username: str,
    role: str,
    expires_delta: Optional[timedelta] = None,
    config: Optional[AuthConfig] = None
) -> str:
    """
    Create a signed access token.

    Args:
        subject: User id, stored as ``sub``
        username: Stored for display only; never trusted for authorization
        role: Role at issue time
        expires_delta: Token lifetime (default: ``auth.token_expiry_days``)
        config: Auth settings (default: global config)

    Returns:
        Encoded JWT
    """
    cfg = _auth_config(config)
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta is not None else timedelta(days=cfg.token_expiry_days))
    claims = {
        "sub": str(subject),
        "username": username,
        "role": role,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(claims, cfg.jwt_secret, algorithm=cfg.jwt_algorithm)


def decode_access_token(token: str, config: Optional[AuthConfig] = None) -> Dict[str, Any]:
    """
    Decode and validate a JWT.

    Raises:
        AuthenticationError: ``expired_token`` or ``invalid_token``
    """
    cfg = _auth_config(config)
    try:
        payload = jwt.decode(token, cfg.jwt_secret, algorithms=[cfg.jwt_algorithm])
    except ExpiredSignatureError:
        raise AuthenticationError(EXPIRED_TOKEN)
    except JWTError:
        raise AuthenticationError(INVALID_TOKEN)

    if not payload.get("sub"):
        raise AuthenticationError(INVALID_TOKEN)
    return payload


def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Pull the token out of an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthenticationError: ``no_token`` when the header is absent or not a bearer header
    """
    if not authorization:
        raise AuthenticationError(NO_TOKEN)
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError(NO_TOKEN)
    return token.strip()
