"""
TradeAcademy - Authorization helpers

Role checks layered on top of Flask-JWT-Extended.
"""

from functools import wraps

from flask import request
from flask_jwt_extended import current_user, get_current_user, verify_jwt_in_request

from tradeacademy.utils.exceptions import AuthenticationError, AuthorizationError
from tradeacademy.utils.logger import log_security_event


def roles_required(*roles):
    """Decorator to require a valid token whose user holds one of ``roles``."""

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            verify_jwt_in_request()
            user = get_current_user()
            if user is None or not user.is_active:
                raise AuthenticationError("Account is not active")
            if not user.has_role(*roles):
                log_security_event(
                    event_type="forbidden",
                    user_id=str(user.id),
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    path=request.path,
                )
                raise AuthorizationError(
                    "You do not have permission to perform this action",
                    details={"required_roles": list(roles)},
                )
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def is_owner_or_staff(owner_id, *staff_roles) -> bool:
    """True when the current user owns a resource or holds a staff role."""
    return owner_id == current_user.id or current_user.has_role(*(staff_roles or ("admin",)))
