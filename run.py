#!/usr/bin/env python3
"""
TradeAcademy - Application Runner

Development entry point. In production point a WSGI server at ``run:app``.
"""

import os
import sys

from tradeacademy import create_app
from tradeacademy.models import db
from tradeacademy.utils.logger import get_logger

app = create_app(os.getenv("FLASK_ENV", "development"))
logger = get_logger(__name__)


def create_tables():
    """Create database tables if they don't exist."""
    with app.app_context():
        db.create_all()
    logger.info("Database tables ready")


def main():
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_DEBUG", "False").lower() == "true"

    create_tables()
    logger.info(f"TradeAcademy starting on {host}:{port}", extra={"debug": debug})

    try:
        app.run(host=host, port=port, debug=debug, use_reloader=debug)
    except KeyboardInterrupt:
        logger.info("TradeAcademy shutting down")
        sys.exit(0)


if __name__ == "__main__":
    main()
