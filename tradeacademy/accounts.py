"""
Account Lifecycle

Email verification, password changes and resets, token revocation and the
admin side of user management. Reset and verification tokens travel by email
in the clear and are stored only as SHA-256 digests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from tradeacademy.models import RevokedToken, User, UserRole, db, hash_token, utcnow
from tradeacademy.utils.exceptions import (
    AuthenticationError, BusinessLogicError, ConflictError, NotFoundError,
    ValidationError
)
from tradeacademy.utils.logger import get_logger, log_security_event

logger = get_logger(__name__)


def _invalid_token() -> BusinessLogicError:
    return BusinessLogicError("Token is invalid or has expired", code="INVALID_TOKEN")


class AccountService:

    def __init__(self, notifier=None, reset_lifetime: timedelta = timedelta(minutes=10),
                 verification_lifetime: timedelta = timedelta(hours=48)):
        self.notifier = notifier
        self.reset_lifetime = reset_lifetime
        self.verification_lifetime = verification_lifetime

    # Email verification

    def start_email_verification(self, user: User) -> str:
        """Issue a verification token and email the link to the user."""
        token = user.create_email_verification_token(self.verification_lifetime)
        db.session.commit()
        if self.notifier is not None:
            self.notifier.send_email_verification(
                user, token, int(self.verification_lifetime.total_seconds() // 3600)
            )
        return token

    def verify_email(self, token: str) -> User:
        user = User.query.filter_by(email_verification_token=hash_token(token)).first()
        if user is None or user.email_verification_expires < utcnow():
            raise _invalid_token()

        user.email_verified = True
        user.email_verification_token = None
        user.email_verification_expires = None
        db.session.commit()

        logger.info(f"Email verified for user {user.id}")
        return user

    # Passwords

    def change_password(self, user: User, current_password: str, new_password: str) -> User:
        if not user.check_password(current_password):
            log_security_event("password_change_failed", user_id=str(user.id))
            raise AuthenticationError("Current password is incorrect")
        if current_password == new_password:
            raise ValidationError(
                "New password must differ from the current password", field="new_password"
            )

        user.change_password(new_password)
        db.session.commit()
        log_security_event("password_changed", user_id=str(user.id))
        return user

    def request_password_reset(self, email: str) -> Optional[str]:
        """
        Email a reset link when ``email`` belongs to an active account.

        Returns the raw token, or None when no email was sent. Callers must
        answer the same way in both cases so accounts cannot be enumerated.
        """
        user = User.query.filter_by(email=email.lower()).first()
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return None

        token = user.create_password_reset_token(self.reset_lifetime)
        db.session.commit()
        if self.notifier is not None:
            self.notifier.send_password_reset(
                user, token, int(self.reset_lifetime.total_seconds() // 60)
            )
        log_security_event("password_reset_requested", user_id=str(user.id))
        return token

    def reset_password(self, token: str, new_password: str) -> User:
        user = User.query.filter_by(password_reset_token=hash_token(token)).first()
        if user is None or not user.is_active or user.password_reset_expires < utcnow():
            raise _invalid_token()

        user.change_password(new_password)
        db.session.commit()
        log_security_event("password_reset", user_id=str(user.id))
        return user

    # Access tokens

    def revoke_token(self, user: User, jwt_payload: Dict[str, Any],
                     commit: bool = True) -> RevokedToken:
        jti = jwt_payload["jti"]
        revoked = RevokedToken.query.filter_by(jti=jti).first()
        if revoked is None:
            expires = jwt_payload.get("exp")
            revoked = RevokedToken(
                jti=jti,
                user_id=user.id,
                expires_at=(
                    datetime.fromtimestamp(expires, tz=timezone.utc).replace(tzinfo=None)
                    if expires else None
                ),
            )
            db.session.add(revoked)
        if commit:
            db.session.commit()
        return revoked

    def is_token_revoked(self, jwt_payload: Dict[str, Any]) -> bool:
        """True for logged-out tokens and tokens issued before the last password change."""
        if RevokedToken.query.filter_by(jti=jwt_payload.get("jti")).first() is not None:
            return True

        try:
            user = db.session.get(User, UUID(str(jwt_payload.get("sub"))))
        except ValueError:
            return False
        if user is None or user.password_changed_at is None or "iat" not in jwt_payload:
            return False
        changed = int(user.password_changed_at.replace(tzinfo=timezone.utc).timestamp())
        return jwt_payload["iat"] < changed

    def deactivate(self, user: User, jwt_payload: Dict[str, Any]) -> None:
        """Soft-delete the caller's own account; the account can no longer log in."""
        user.is_active = False
        self.revoke_token(user, jwt_payload, commit=False)
        db.session.commit()
        log_security_event("account_deactivated", user_id=str(user.id))

    # Administration

    def get_user(self, user_id) -> User:
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        return user

    def update_user(self, admin: User, user: User, changes: Dict[str, Any]) -> User:
        if user.id == admin.id and (
            changes.get("role", UserRole.ADMIN) != UserRole.ADMIN
            or changes.get("is_active", True) is False
        ):
            raise BusinessLogicError(
                "Administrators cannot demote or deactivate themselves",
                code="SELF_MODIFICATION",
            )

        email = changes.get("email")
        if email and email.lower() != user.email:
            if User.query.filter_by(email=email.lower()).first() is not None:
                raise ConflictError(
                    "User with this email already exists",
                    code="EMAIL_TAKEN",
                    details={"email": email},
                )
            user.email_verified = False

        for key, value in changes.items():
            setattr(user, key, value)
        db.session.commit()

        log_security_event(
            "user_updated_by_admin",
            user_id=str(user.id),
            admin_id=str(admin.id),
            fields=sorted(changes),
        )
        return user

    def delete_user(self, admin: User, user: User) -> None:
        if user.id == admin.id:
            raise BusinessLogicError(
                "Administrators cannot delete their own account", code="SELF_MODIFICATION"
            )
        RevokedToken.query.filter_by(user_id=user.id).delete(synchronize_session=False)
        db.session.delete(user)
        db.session.commit()
        log_security_event("user_deleted", user_id=str(user.id), admin_id=str(admin.id))
