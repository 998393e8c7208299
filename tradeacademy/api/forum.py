"""
TradeAcademy - Forum API

Discussion topics, replies, accepted answers and votes.
"""

from flask import Blueprint, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from tradeacademy.api import apply_changes, load_json, success
from tradeacademy.models import (
    AchievementCriteria, Course, ForumReply, ForumTopic, TopicStatus, UserRole, db
)
from tradeacademy.schemas import ReplySchema, TopicModerationSchema, TopicSchema, VoteSchema
from tradeacademy.services import get_services
from tradeacademy.utils.auth import is_owner_or_staff
from tradeacademy.utils.exceptions import (
    AuthorizationError, BusinessLogicError, NotFoundError
)
from tradeacademy.utils.logger import get_logger
from tradeacademy.utils.query import paginate

forum_bp = Blueprint("forum", __name__)
logger = get_logger(__name__)

MODERATOR_ROLES = (UserRole.INSTRUCTOR.value, UserRole.ADMIN.value)


def _get_topic(topic_id) -> ForumTopic:
    topic = db.session.get(ForumTopic, topic_id)
    if topic is None:
        raise NotFoundError("Topic")
    return topic


def _participation(user) -> int:
    topics = ForumTopic.query.filter_by(author_id=user.id).count()
    replies = ForumReply.query.filter_by(author_id=user.id).count()
    return topics + replies


def _record_participation(user) -> None:
    count = _participation(user)
    get_services().achievements.record_event(user, AchievementCriteria.FORUM_PARTICIPATION, count)
    logger.debug(f"Forum participation for {user.id}: {count}")


def _vote(target, user_id: str, direction: str) -> None:
    upvotes = [v for v in (target.upvotes or []) if v != user_id]
    downvotes = [v for v in (target.downvotes or []) if v != user_id]
    if direction == "up":
        upvotes.append(user_id)
    elif direction == "down":
        downvotes.append(user_id)
    target.upvotes = upvotes
    target.downvotes = downvotes


@forum_bp.route("", methods=["GET"])
def list_topics():
    """
    List topics, pinned first by default.

    Accepts the standard page/limit/sort/fields arguments and column filters
    such as ``category=strategy`` or ``course_id=<uuid>``.
    """
    query = ForumTopic.query.filter(ForumTopic.status != TopicStatus.ARCHIVED)
    if "sort" not in request.args:
        query = query.order_by(ForumTopic.is_pinned.desc())
    return jsonify(paginate(query, ForumTopic, request.args)), 200


@forum_bp.route("/<uuid:topic_id>", methods=["GET"])
def get_topic(topic_id):
    topic = _get_topic(topic_id)
    topic.views = (topic.views or 0) + 1
    db.session.commit()

    data = topic.to_dict(include_replies=True)
    data["author"] = topic.author.to_public_dict()
    return jsonify(success(data)), 200


@forum_bp.route("", methods=["POST"])
@jwt_required()
def create_topic():
    """
    Expects:
    {
        "title": "How do you size positions?",
        "description": "Short summary",
        "category": "risk-management",
        "course_id": "optional uuid",
        "content": "...",
        "tags": ["risk"]
    }
    """
    data = load_json(TopicSchema())
    if data.get("course_id") and db.session.get(Course, data["course_id"]) is None:
        raise NotFoundError("Course")

    topic = ForumTopic(author_id=current_user.id, **data)
    db.session.add(topic)
    db.session.commit()

    _record_participation(current_user)
    return jsonify(success(topic.to_dict())), 201


@forum_bp.route("/<uuid:topic_id>", methods=["PATCH"])
@jwt_required()
def update_topic(topic_id):
    """Authors edit their topic; moderators may also pin or lock it."""
    topic = _get_topic(topic_id)
    if not is_owner_or_staff(topic.author_id, *MODERATOR_ROLES):
        raise AuthorizationError("You can only edit your own topics")

    body = request.get_json(silent=True) or {}
    moderation = {k: body.pop(k) for k in ("is_pinned", "is_locked") if k in body}
    if moderation:
        if not current_user.has_role(*MODERATOR_ROLES):
            raise AuthorizationError("Only moderators can pin or lock topics")
        apply_changes(topic, TopicModerationSchema().load(moderation))
    if body:
        apply_changes(topic, TopicSchema(partial=True).load(body))

    db.session.commit()
    return jsonify(success(topic.to_dict())), 200


@forum_bp.route("/<uuid:topic_id>", methods=["DELETE"])
@jwt_required()
def delete_topic(topic_id):
    topic = _get_topic(topic_id)
    if not is_owner_or_staff(topic.author_id, *MODERATOR_ROLES):
        raise AuthorizationError("You can only delete your own topics")
    db.session.delete(topic)
    db.session.commit()
    return "", 204


@forum_bp.route("/<uuid:topic_id>/replies", methods=["POST"])
@jwt_required()
def add_reply(topic_id):
    topic = _get_topic(topic_id)
    if topic.is_locked or topic.status != TopicStatus.ACTIVE:
        raise BusinessLogicError("Topic is locked", code="TOPIC_LOCKED")

    data = load_json(ReplySchema())
    reply = ForumReply(topic_id=topic.id, author_id=current_user.id, content=data["content"])
    db.session.add(reply)
    db.session.commit()

    _record_participation(current_user)
    return jsonify(success(reply.to_dict())), 201


@forum_bp.route("/<uuid:topic_id>/replies/<uuid:reply_id>/answer", methods=["PATCH"])
@jwt_required()
def mark_answer(topic_id, reply_id):
    """Mark one reply as the accepted answer; any previous answer is unmarked."""
    topic = _get_topic(topic_id)
    if not is_owner_or_staff(topic.author_id, UserRole.ADMIN.value):
        raise AuthorizationError("Only the topic author can accept an answer")

    reply = db.session.get(ForumReply, reply_id)
    if reply is None or reply.topic_id != topic.id:
        raise NotFoundError("Reply")

    for other in topic.replies:
        other.is_answer = other.id == reply.id
    db.session.commit()
    return jsonify(success(reply.to_dict(), message="Reply marked as answer")), 200


@forum_bp.route("/<uuid:topic_id>/vote", methods=["POST"])
@jwt_required()
def vote(topic_id):
    """
    Expects:
    {
        "direction": "up|down|none"
    }
    """
    data = load_json(VoteSchema())
    topic = _get_topic(topic_id)
    _vote(topic, str(current_user.id), data["direction"])
    db.session.commit()
    return jsonify(
        success({"score": topic.score, "upvotes": len(topic.upvotes), "downvotes": len(topic.downvotes)})
    ), 200
