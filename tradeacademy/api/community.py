"""
TradeAcademy - Community API

Posts, comments and likes.
"""

from flask import Blueprint, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from tradeacademy.api import apply_changes, load_json, success
from tradeacademy.models import Comment, Post, PublishStatus, db
from tradeacademy.schemas import CommentSchema, PostSchema
from tradeacademy.utils.auth import is_owner_or_staff
from tradeacademy.utils.exceptions import AuthorizationError, NotFoundError
from tradeacademy.utils.query import paginate

community_bp = Blueprint("community", __name__)


def _get_post(post_id) -> Post:
    post = db.session.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post")
    return post


@community_bp.route("/posts", methods=["GET"])
def list_posts():
    query = Post.query.filter(Post.status == PublishStatus.PUBLISHED)
    return jsonify(paginate(query, Post, request.args)), 200


@community_bp.route("/posts/<uuid:post_id>", methods=["GET"])
def get_post(post_id):
    post = _get_post(post_id)
    data = post.to_dict(include_comments=True)
    data["author"] = post.author.to_public_dict()
    return jsonify(success(data)), 200


@community_bp.route("/posts", methods=["POST"])
@jwt_required()
def create_post():
    """
    Expects:
    {
        "title": "My first week of paper trading",
        "content": "...",
        "category": "journal",
        "tags": ["beginner"]
    }
    """
    data = load_json(PostSchema())
    post = Post(author_id=current_user.id, **data)
    db.session.add(post)
    db.session.commit()
    return jsonify(success(post.to_dict())), 201


@community_bp.route("/posts/<uuid:post_id>", methods=["PATCH"])
@jwt_required()
def update_post(post_id):
    post = _get_post(post_id)
    if not is_owner_or_staff(post.author_id):
        raise AuthorizationError("You can only edit your own posts")
    apply_changes(post, load_json(PostSchema(), partial=True))
    db.session.commit()
    return jsonify(success(post.to_dict())), 200


@community_bp.route("/posts/<uuid:post_id>", methods=["DELETE"])
@jwt_required()
def delete_post(post_id):
    post = _get_post(post_id)
    if not is_owner_or_staff(post.author_id):
        raise AuthorizationError("You can only delete your own posts")
    db.session.delete(post)
    db.session.commit()
    return "", 204


@community_bp.route("/posts/<uuid:post_id>/comments", methods=["POST"])
@jwt_required()
def add_comment(post_id):
    post = _get_post(post_id)
    data = load_json(CommentSchema())
    comment = Comment(post_id=post.id, author_id=current_user.id, content=data["content"])
    db.session.add(comment)
    db.session.commit()
    return jsonify(success(comment.to_dict())), 201


@community_bp.route("/comments/<uuid:comment_id>", methods=["DELETE"])
@jwt_required()
def delete_comment(comment_id):
    comment = db.session.get(Comment, comment_id)
    if comment is None:
        raise NotFoundError("Comment")
    if comment.author_id != current_user.id:
        raise AuthorizationError("You can only delete your own comments")
    db.session.delete(comment)
    db.session.commit()
    return "", 204


@community_bp.route("/posts/<uuid:post_id>/like", methods=["POST"])
@jwt_required()
def toggle_like(post_id):
    """Like a post, or remove the like if already given."""
    post = _get_post(post_id)
    user_id = str(current_user.id)
    likes = list(post.likes or [])
    if user_id in likes:
        likes.remove(user_id)
        liked = False
    else:
        likes.append(user_id)
        liked = True
    post.likes = likes
    db.session.commit()
    return jsonify(success({"liked": liked, "like_count": len(likes)})), 200
