"""
TradeAcademy - Flask Application Factory

E-learning and virtual trading platform API:
- JWT authentication and role based authorization
- Courses, modules, lessons, assignments and progress tracking
- Forum and community posts
- Achievements, badges and leaderboards
- Simulated stock trading against cached market data
- Stripe payments for premium access
"""

import os
from typing import Any, Dict, Optional
from uuid import UUID

from flask import Flask, g, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_mail import Mail
from flask_migrate import Migrate
from werkzeug.middleware.proxy_fix import ProxyFix

from tradeacademy.config import get_config
from tradeacademy.models import db, init_db
from tradeacademy.services import EXTENSION_KEY, build_services, get_services
from tradeacademy.utils.exceptions import AuthenticationError, create_error_response, register_error_handlers
from tradeacademy.utils.logger import setup_logging
from tradeacademy.utils.middleware import setup_middleware

__all__ = ["create_app", "get_services", "db", "jwt", "limiter", "mail"]

# Global instances
jwt = JWTManager()
mail = Mail()
migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address, default_limits=["200 per day", "50 per hour"]
)


def create_app(config_name: Optional[str] = None,
               services: Optional[Dict[str, Any]] = None) -> Flask:
    """
    Create and configure Flask application.

    Args:
        config_name: Configuration environment (development, production, testing)
        services: overrides passed to ``build_services`` such as
            ``{"quote_provider": fake}``

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    config_obj = get_config(config_name or os.getenv("FLASK_ENV", "development"))
    app.config.from_object(config_obj)

    setup_logging(app)
    config_obj.init_app(app)
    app.logger.info(f"Starting TradeAcademy in {config_obj.ENV} mode")

    _init_extensions(app)
    setup_middleware(app)
    _register_blueprints(app)
    register_error_handlers(app)
    _setup_jwt_callbacks(app)

    app.extensions[EXTENSION_KEY] = build_services(app, mail, **(services or {}))

    with app.app_context():
        init_db(app)

    app.logger.info("TradeAcademy application created successfully")
    return app


def _init_extensions(app: Flask) -> None:
    """Initialize Flask extensions."""

    db.init_app(app)
    migrate.init_app(app, db)

    cors_origins = (
        app.config.get("CORS_ORIGINS", "").split(",")
        if isinstance(app.config.get("CORS_ORIGINS"), str)
        else app.config.get("CORS_ORIGINS", [])
    )
    CORS(
        app,
        origins=cors_origins,
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    )

    jwt.init_app(app)
    limiter.init_app(app)
    mail.init_app(app)

    # Handle reverse proxy headers
    if app.config.get("PROXY_FIX"):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)


def _register_blueprints(app: Flask) -> None:
    """Register application blueprints."""

    from tradeacademy.api.achievements import achievements_bp
    from tradeacademy.api.assignments import assignments_bp
    from tradeacademy.api.community import community_bp
    from tradeacademy.api.courses import courses_bp, lessons_bp, modules_bp
    from tradeacademy.api.forum import forum_bp
    from tradeacademy.api.gamification import gamification_bp
    from tradeacademy.api.market import market_bp
    from tradeacademy.api.payments import payments_bp
    from tradeacademy.api.trading import trading_bp
    from tradeacademy.api.users import users_bp

    api_prefix = "/api"
    app.register_blueprint(users_bp, url_prefix=f"{api_prefix}/users")
    app.register_blueprint(courses_bp, url_prefix=f"{api_prefix}/courses")
    app.register_blueprint(modules_bp, url_prefix=f"{api_prefix}/modules")
    app.register_blueprint(lessons_bp, url_prefix=f"{api_prefix}/lessons")
    app.register_blueprint(assignments_bp, url_prefix=f"{api_prefix}/assignments")
    app.register_blueprint(forum_bp, url_prefix=f"{api_prefix}/forum")
    app.register_blueprint(community_bp, url_prefix=f"{api_prefix}/community")
    app.register_blueprint(achievements_bp, url_prefix=f"{api_prefix}/achievements")
    app.register_blueprint(gamification_bp, url_prefix=f"{api_prefix}/gamification")
    app.register_blueprint(trading_bp, url_prefix=f"{api_prefix}/trading")
    app.register_blueprint(market_bp, url_prefix=f"{api_prefix}/market")
    app.register_blueprint(payments_bp, url_prefix=f"{api_prefix}/payments")

    @app.route("/health")
    @limiter.exempt
    def health_check():
        """Health check endpoint for load balancers."""
        return jsonify(
            {
                "status": "healthy",
                "version": app.config.get("VERSION", "1.0.0"),
                "environment": app.config.get("ENV", "unknown"),
            }
        ), 200


def _setup_jwt_callbacks(app: Flask) -> None:
    """Setup JWT callback functions."""

    def _unauthorized(message: str, code: str):
        error = AuthenticationError(message)
        error.code = code
        response, status_code = create_error_response(error)
        return jsonify(response), status_code

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return _unauthorized("Token has expired", "TOKEN_EXPIRED")

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        return _unauthorized("Invalid token", "INVALID_TOKEN")

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        return _unauthorized("Authorization token is required", "AUTHORIZATION_REQUIRED")

    @jwt.user_lookup_error_loader
    def user_lookup_error_callback(jwt_header, jwt_payload):
        return _unauthorized("User no longer exists", "USER_NOT_FOUND")

    @jwt.token_in_blocklist_loader
    def check_if_token_revoked(jwt_header, jwt_payload):
        return get_services().accounts.is_token_revoked(jwt_payload)

    @jwt.revoked_token_loader
    def revoked_token_callback(jwt_header, jwt_payload):
        return _unauthorized("Token has been revoked", "TOKEN_REVOKED")

    @jwt.user_identity_loader
    def user_identity_lookup(user):
        """Return user ID for JWT identity."""
        return str(user.id) if hasattr(user, "id") else str(user)

    @jwt.user_lookup_loader
    def user_lookup_callback(_jwt_header, jwt_data):
        """Load user from JWT payload."""
        from tradeacademy.models import User

        try:
            user_id = UUID(jwt_data["sub"])
        except (ValueError, TypeError):
            return None
        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return None
        g.current_user_id = str(user.id)
        return user
