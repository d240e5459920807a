"""
Account operations: registration, login, token resolution and profile.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from access_control import Principal, RecordValidationError
from auth import (
    INACTIVE_USER,
    INVALID_CREDENTIALS,
    INVALID_TOKEN,
    AuthenticationError,
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)
from config_manager import ConfigManager, get_config
from database.models import AuditAction, User, UserRole
from database.repositories import (
    AuditRepository,
    DuplicateRecordError,
    StorageError,
    UserRepository,
)
from log_utils import sanitize_for_logging
from security_logger import get_security_logger

logger = logging.getLogger(__name__)


def serialize_user(user: User) -> Dict[str, Any]:
    """Public account shape; never includes the password hash."""
    affiliation = None
    if user.affiliation_community:
        affiliation = {
            "community": user.affiliation_community,
            "indigenousGroup": user.affiliation_group,
            "role": user.affiliation_role,
        }
    return {
        "id": str(user.id),
        "username": user.username,
        "email": user.email,
        "role": UserRole(user.role).value,
        "profile": {
            "firstName": user.first_name,
            "lastName": user.last_name,
            "institution": user.institution,
            "position": user.position,
        },
        "permissions": {
            "canReview": user.can_review,
            "canEdit": user.can_edit,
            "canApprove": user.can_approve,
            "canAccessRestrictedKnowledge": user.can_access_restricted_knowledge,
            "canManageIPR": user.can_manage_ipr,
        },
        "indigenousAffiliation": affiliation,
        "isActive": user.is_active,
        "lastLogin": user.last_login.isoformat() if user.last_login else None,
    }


class AccountService:
    """Accounts for one database session."""

    def __init__(self, session: Session, config: Optional[ConfigManager] = None):
        self.session = session
        self.config = config or get_config()
        self._users = UserRepository(session)
        self._audit = AuditRepository(session)

    def _issue_token(self, user: User) -> str:
        return create_access_token(
            subject=str(user.id),
            username=user.username,
            role=UserRole(user.role).value,
            config=self.config.auth
        )

    def _commit(self, action: str) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to {action}: {type(e).__name__}")
            raise StorageError(f"Failed to {action}") from e

    def _validate_registration(self, username: str, password: str) -> None:
        limits = self.config.validation
        errors = []
        if not limits.username_min_length <= len(username or "") <= limits.username_max_length:
            errors.append({
                "field": "username",
                "message": (
                    f"Username must be between {limits.username_min_length} "
                    f"and {limits.username_max_length} characters"
                )
            })
        if len(password or "") < limits.password_min_length:
            errors.append({
                "field": "password",
                "message": f"Password must be at least {limits.password_min_length} characters"
            })
        if errors:
            raise RecordValidationError(errors)

    def register(
        self,
        username: str,
        email: str,
        password: str,
        role: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create an account and sign it in.

        Roles outside ``access.self_registration_roles`` fall back to ``user``.

        Raises:
            DuplicateRecordError: email or username taken
        """
        self._validate_registration(username, password)

        allowed = self.config.access.self_registration_roles
        if role and role not in allowed:
            logger.warning(f"Self-registration requested role '{sanitize_for_logging(role)}'; using 'user'")
        granted = UserRole(role) if role in allowed else UserRole.USER

        if self._users.exists(email, username):
            raise DuplicateRecordError("User with this email or username already exists")

        user = User(
            username=username,
            email=email.lower(),
            password_hash=hash_password(password),
            role=granted,
            first_name=first_name,
            last_name=last_name,
        )
        self._users.create(user)
        self._audit.log(
            action=AuditAction.REGISTER,
            resource_type="user",
            resource_id=str(user.id),
            actor_id=str(user.id),
            actor_name=user.username,
            actor_role=granted.value,
        )
        self._commit("register user")

        logger.info(f"Registered user {user.id} with role {granted.value}")
        return {"user": serialize_user(user), "token": self._issue_token(user)}

    def login(self, identifier: str, password: str) -> Dict[str, Any]:
        """
        Sign in by email or username.

        Unknown account, wrong password and inactive account all fail the same way.

        Raises:
            AuthenticationError: ``invalid_credentials``
        """
        user = self._users.get_by_login(identifier)
        if user is None or not verify_password(password, user.password_hash) or not user.is_active:
            get_security_logger().log_auth_failure(
                reason=INVALID_CREDENTIALS,
                identifier=identifier,
                source="AccountService.login"
            )
            raise AuthenticationError(INVALID_CREDENTIALS)

        self._users.touch_last_login(user)
        self._audit.log(
            action=AuditAction.LOGIN,
            resource_type="user",
            resource_id=str(user.id),
            actor_id=str(user.id),
            actor_name=user.username,
            actor_role=UserRole(user.role).value,
        )
        self._commit("record login")

        return {"user": serialize_user(user), "token": self._issue_token(user)}

    def resolve_user(self, token: str) -> User:
        """
        Turn a bearer token into the active account it names.

        Role and permissions come from the stored account, not the token.

        Raises:
            AuthenticationError: invalid/expired token, or account gone or inactive
        """
        payload = decode_access_token(token, self.config.auth)
        try:
            user_id = uuid.UUID(payload["sub"])
        except ValueError:
            raise AuthenticationError(INVALID_TOKEN)

        user = self._users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise AuthenticationError(INACTIVE_USER)
        return user

    def profile(self, principal: Principal) -> Dict[str, Any]:
        user = self._users.get_by_id(uuid.UUID(principal.user_id)) if principal.user_id else None
        if user is None or not user.is_active:
            raise AuthenticationError(INACTIVE_USER)
        return {"user": serialize_user(user)}
