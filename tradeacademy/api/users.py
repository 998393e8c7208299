"""
TradeAcademy - Users API

Registration, login, the current user's profile and password, email
verification, logout, and account administration for admins.
"""

from datetime import timedelta

from flask import Blueprint, jsonify, request
from flask_jwt_extended import create_access_token, current_user, get_jwt, jwt_required

from tradeacademy import limiter
from tradeacademy.api import apply_changes, load_json, success
from tradeacademy.models import AchievementCriteria, User, UserRole, db, utcnow
from tradeacademy.schemas import (
    AdminUserUpdateSchema, ForgotPasswordSchema, LoginSchema, RegisterSchema,
    ResetPasswordSchema, UpdatePasswordSchema, UpdateProfileSchema
)
from tradeacademy.services import get_services
from tradeacademy.utils.auth import roles_required
from tradeacademy.utils.exceptions import AuthenticationError, ConflictError
from tradeacademy.utils.logger import get_logger, log_security_event
from tradeacademy.utils.query import paginate

users_bp = Blueprint("users", __name__)
logger = get_logger(__name__)


def _token_response(user: User, message: str, status_code: int):
    return jsonify(
        success(
            {"user": user.to_dict()},
            message=message,
            token=create_access_token(identity=user),
        )
    ), status_code


def _advance_login_streak(user: User) -> int:
    now = utcnow()
    if user.last_login is None:
        user.login_streak = 1
    else:
        gap = now.date() - user.last_login.date()
        if gap == timedelta(days=1):
            user.login_streak = (user.login_streak or 0) + 1
        elif gap > timedelta(days=1):
            user.login_streak = 1
    user.last_login = now
    return user.login_streak


@users_bp.route("/register", methods=["POST"])
@limiter.limit("5 per minute")
def register():
    """
    Register a new user account.

    Expects:
    {
        "email": "trader@example.com",
        "password": "at least 8 characters",
        "name": "Jane Trader"
    }
    """
    data = load_json(RegisterSchema())

    if User.query.filter_by(email=data["email"].lower()).first():
        raise ConflictError(
            "User with this email already exists",
            code="EMAIL_TAKEN",
            details={"email": data["email"]},
        )

    user = User(email=data["email"], name=data["name"])
    user.set_password(data["password"])
    db.session.add(user)
    db.session.commit()

    log_security_event(
        event_type="user_registration",
        user_id=str(user.id),
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )
    services = get_services()
    services.notifier.send_welcome(user, services.trade_engine.default_starting_balance)
    services.accounts.start_email_verification(user)

    logger.info(f"New user registered: {user.email}")
    return _token_response(user, "User registered successfully", 201)


@users_bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    """Authenticate a user and return a JWT access token."""
    data = load_json(LoginSchema())

    user = User.query.filter_by(email=data["email"].lower()).first()
    if not user or not user.check_password(data["password"]):
        log_security_event(
            event_type="login_failed",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
            reason="invalid_credentials",
        )
        raise AuthenticationError("Invalid email or password")

    if not user.is_active:
        log_security_event(
            event_type="login_blocked",
            user_id=str(user.id),
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        raise AuthenticationError("Account is deactivated. Please contact support.")

    streak = _advance_login_streak(user)
    db.session.commit()
    get_services().achievements.record_event(user, AchievementCriteria.LOGIN_STREAK, streak)

    logger.info(f"User logged in: {user.email}")
    return _token_response(user, "Login successful", 200)


@users_bp.route("/me", methods=["GET"])
@jwt_required()
def get_me():
    return jsonify(success({"user": current_user.to_dict()})), 200


@users_bp.route("/me", methods=["PATCH"])
@jwt_required()
def update_me():
    """Update the current user's name, bio or profile picture."""
    data = load_json(UpdateProfileSchema(), partial=True)
    apply_changes(current_user, data)
    db.session.commit()
    return jsonify(success({"user": current_user.to_dict()})), 200


@users_bp.route("/me", methods=["DELETE"])
@jwt_required()
def delete_me():
    """Deactivate the caller's account. The data is kept; logging in is no longer possible."""
    get_services().accounts.deactivate(current_user, get_jwt())
    logger.info(f"User deactivated their account: {current_user.id}")
    return "", 204


@users_bp.route("/logout", methods=["POST"])
@jwt_required()
def logout():
    """Revoke the access token used for this request."""
    get_services().accounts.revoke_token(current_user, get_jwt())
    log_security_event(
        event_type="logout",
        user_id=str(current_user.id),
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )
    return jsonify(success(message="Logged out successfully")), 200


@users_bp.route("/update-password", methods=["PATCH"])
@jwt_required()
def update_password():
    """
    Change the password and receive a fresh token; the old token is revoked.

    Expects:
    {
        "current_password": "...",
        "new_password": "at least 8 characters"
    }
    """
    data = load_json(UpdatePasswordSchema())
    accounts = get_services().accounts
    accounts.change_password(current_user, data["current_password"], data["new_password"])
    accounts.revoke_token(current_user, get_jwt())
    return _token_response(current_user, "Password updated successfully", 200)


@users_bp.route("/forgot-password", methods=["POST"])
@limiter.limit("5 per minute")
def forgot_password():
    data = load_json(ForgotPasswordSchema())
    get_services().accounts.request_password_reset(data["email"])
    # Same answer whether or not the address is registered
    return jsonify(
        success(message="If that email is registered, a password reset link has been sent")
    ), 200


@users_bp.route("/reset-password/<token>", methods=["PATCH"])
@limiter.limit("10 per minute")
def reset_password(token):
    data = load_json(ResetPasswordSchema())
    user = get_services().accounts.reset_password(token, data["password"])
    return _token_response(user, "Password reset successfully", 200)


@users_bp.route("/verify-email/<token>", methods=["GET"])
def verify_email(token):
    get_services().accounts.verify_email(token)
    return jsonify(success(message="Email verified successfully")), 200


@users_bp.route("/verify-email", methods=["POST"])
@jwt_required()
@limiter.limit("3 per hour")
def resend_verification():
    if current_user.email_verified:
        raise ConflictError("Email is already verified", code="ALREADY_VERIFIED")
    get_services().accounts.start_email_verification(current_user)
    return jsonify(success(message="Verification email sent")), 200


# Administration

@users_bp.route("", methods=["GET"])
@roles_required(UserRole.ADMIN.value)
def list_users():
    """All accounts, filterable by any public column (``?role=instructor&is_active=false``)."""
    return jsonify(paginate(User.query, User, request.args)), 200


@users_bp.route("/<uuid:user_id>", methods=["GET"])
@roles_required(UserRole.ADMIN.value)
def get_user(user_id):
    return jsonify(success({"user": get_services().accounts.get_user(user_id).to_dict()})), 200


@users_bp.route("/<uuid:user_id>", methods=["PATCH"])
@roles_required(UserRole.ADMIN.value)
def update_user(user_id):
    accounts = get_services().accounts
    user = accounts.get_user(user_id)
    changes = load_json(AdminUserUpdateSchema(), partial=True)
    accounts.update_user(current_user, user, changes)
    return jsonify(success({"user": user.to_dict()})), 200


@users_bp.route("/<uuid:user_id>", methods=["DELETE"])
@roles_required(UserRole.ADMIN.value)
def delete_user(user_id):
    accounts = get_services().accounts
    accounts.delete_user(current_user, accounts.get_user(user_id))
    return "", 204
