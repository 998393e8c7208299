"""
TradeAcademy - Gamification API

Leaderboards and badges.
"""

from flask import Blueprint, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from tradeacademy.api import int_arg, load_json, success
from tradeacademy.models import Badge, User, db
from tradeacademy.schemas import BadgeSchema
from tradeacademy.services import get_services
from tradeacademy.utils.auth import roles_required
from tradeacademy.utils.exceptions import ConflictError, NotFoundError

gamification_bp = Blueprint("gamification", __name__)


@gamification_bp.route("/leaderboard", methods=["GET"])
def leaderboard():
    """
    Ranked users.

    Query parameters:
    - type: overall (default), trading, courses or badges
    - limit: default 100
    """
    board_type = request.args.get("type", "overall")
    limit = int_arg("limit", 100, 100)
    rows = get_services().gamification.leaderboard(board_type, limit)
    return jsonify(success(rows, type=board_type, results=len(rows))), 200


@gamification_bp.route("/check-badges", methods=["POST"])
@jwt_required()
def check_badges():
    """Award every badge the current user qualifies for."""
    awarded = get_services().gamification.check_and_award_badges(current_user)
    return jsonify(
        success(
            {
                "awarded": [b.to_dict() for b in awarded],
                "badges": [b.to_dict() for b in current_user.badges],
            },
            message=f"{len(awarded)} new badges awarded",
        )
    ), 200


@gamification_bp.route("/badges/<uuid:user_id>", methods=["GET"])
def user_badges(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User")
    return jsonify(
        success({"user": user.to_public_dict(), "badges": [b.to_dict() for b in user.badges]})
    ), 200


@gamification_bp.route("/badges", methods=["POST"])
@roles_required("admin")
def create_badge():
    data = load_json(BadgeSchema())
    if Badge.query.filter_by(name=data["name"]).first():
        raise ConflictError("Badge name already exists", code="BADGE_EXISTS")
    badge = Badge(**data)
    db.session.add(badge)
    db.session.commit()
    return jsonify(success(badge.to_dict())), 201
