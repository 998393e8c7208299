"""
TradeAcademy - Achievements API
"""

from flask import Blueprint, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from tradeacademy.api import int_arg, load_json, success
from tradeacademy.models import Achievement, Badge, db
from tradeacademy.schemas import AchievementSchema, ProgressEventSchema
from tradeacademy.services import get_services
from tradeacademy.utils.auth import roles_required
from tradeacademy.utils.exceptions import NotFoundError, ValidationError
from tradeacademy.utils.logger import get_logger
from tradeacademy.utils.query import paginate

achievements_bp = Blueprint("achievements", __name__)
logger = get_logger(__name__)


@achievements_bp.route("", methods=["GET"])
def list_achievements():
    """List achievements; supports the standard page/limit/sort/fields/filter arguments."""
    return jsonify(paginate(Achievement.query, Achievement, request.args, default_sort="name")), 200


@achievements_bp.route("", methods=["POST"])
@roles_required("admin")
def create_achievement():
    """
    Create an achievement.

    Expects:
    {
        "name": "First Steps",
        "description": "Place your first trade",
        "criteria_type": "trade_volume",
        "threshold": 1,
        "reward_type": "xp|badge|title|feature_unlock",
        "reward_value": "100"
    }
    """
    data = load_json(AchievementSchema())
    if data.get("reward_badge_id") and db.session.get(Badge, data["reward_badge_id"]) is None:
        raise NotFoundError("Reward badge")

    achievement = Achievement(**data)
    db.session.add(achievement)
    db.session.commit()

    logger.info(f"Achievement created: {achievement.name}")
    return jsonify(success(achievement.to_dict())), 201


@achievements_bp.route("/me", methods=["GET"])
@jwt_required()
def my_achievements():
    """Current user's progress rows, optionally filtered by ``status``."""
    status = request.args.get("status")
    try:
        rows = get_services().achievements.list_for_user(current_user, status)
    except ValueError:
        raise ValidationError(f"Unknown status {status}", field="status")
    return jsonify(success([r.to_dict() for r in rows], results=len(rows))), 200


@achievements_bp.route("/<uuid:achievement_id>/progress", methods=["GET"])
@jwt_required()
def get_progress(achievement_id):
    progress = get_services().achievements.get_progress(current_user, achievement_id)
    return jsonify(success(progress.to_dict())), 200


@achievements_bp.route("/progress", methods=["POST"])
@jwt_required()
def record_progress():
    """
    Report the current user's value for an achievement criteria.

    Expects:
    {
        "type": "forum_participation",
        "value": 12
    }
    """
    data = load_json(ProgressEventSchema())
    rows = get_services().achievements.record_event(current_user, data["type"], data["value"])
    return jsonify(success([r.to_dict() for r in rows], results=len(rows))), 200


@achievements_bp.route("/<uuid:achievement_id>/claim", methods=["POST"])
@jwt_required()
def claim(achievement_id):
    """Claim a completed achievement and receive its reward."""
    progress = get_services().achievements.claim(current_user, achievement_id)
    return jsonify(
        success(
            {"progress": progress.to_dict(), "user": current_user.to_dict()},
            message="Achievement claimed",
        )
    ), 200


@achievements_bp.route("/leaderboard", methods=["GET"])
def leaderboard():
    limit = int_arg("limit", 10, 100)
    return jsonify(success(get_services().achievements.leaderboard(limit))), 200
