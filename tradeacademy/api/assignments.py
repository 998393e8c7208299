"""
TradeAcademy - Assignments API

Assignment CRUD for instructors; submissions, grading and regrade requests.
"""

from flask import Blueprint, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from tradeacademy.api import apply_changes, load_json, success
from tradeacademy.models import Assignment, Course, CourseModule, Submission, UserRole, db
from tradeacademy.schemas import AssignmentSchema, GradeSchema, RegradeSchema, SubmissionSchema
from tradeacademy.services import get_services
from tradeacademy.utils.auth import is_owner_or_staff, roles_required
from tradeacademy.utils.exceptions import AuthorizationError, NotFoundError, ValidationError
from tradeacademy.utils.query import paginate

assignments_bp = Blueprint("assignments", __name__)

EDITOR_ROLES = (UserRole.INSTRUCTOR.value, UserRole.ADMIN.value)


def _require_editor(course: Course) -> None:
    if not is_owner_or_staff(course.instructor_id, UserRole.ADMIN.value):
        raise AuthorizationError("Only the course instructor can manage its assignments")


def _check_module(data) -> None:
    module_id = data.get("module_id")
    if module_id is None:
        return
    module = db.session.get(CourseModule, module_id)
    if module is None:
        raise NotFoundError("Module")
    if "course_id" in data and module.course_id != data["course_id"]:
        raise ValidationError("Module does not belong to the course", field="module_id")


@assignments_bp.route("", methods=["GET"])
@jwt_required()
def list_assignments():
    return jsonify(paginate(Assignment.query, Assignment, request.args)), 200


@assignments_bp.route("/<uuid:assignment_id>", methods=["GET"])
@jwt_required()
def get_assignment(assignment_id):
    assignment = get_services().learning.get_assignment(assignment_id)
    data = assignment.to_dict()
    data["course"] = assignment.course.to_dict(["title", "level"])
    return jsonify(success(data)), 200


@assignments_bp.route("", methods=["POST"])
@roles_required(*EDITOR_ROLES)
def create_assignment():
    """
    Expects:
    {
        "course_id": "uuid",
        "module_id": "optional uuid",
        "title": "Analyse a chart",
        "description": "...",
        "type": "quiz|analysis|project|trading",
        "points": 100,
        "max_attempts": 3,
        "grading_type": "automatic|manual|hybrid",
        "answer_key": ["a", "c"]     // automatic grading only
    }
    """
    data = load_json(AssignmentSchema())
    course = db.session.get(Course, data["course_id"])
    if course is None:
        raise NotFoundError("Course")
    _require_editor(course)
    _check_module(data)

    assignment = Assignment(**data)
    db.session.add(assignment)
    db.session.commit()
    return jsonify(success(assignment.to_dict())), 201


@assignments_bp.route("/<uuid:assignment_id>", methods=["PATCH"])
@roles_required(*EDITOR_ROLES)
def update_assignment(assignment_id):
    assignment = get_services().learning.get_assignment(assignment_id)
    _require_editor(assignment.course)
    data = load_json(AssignmentSchema(), partial=True)
    data.pop("course_id", None)
    _check_module({**data, "course_id": assignment.course_id})
    apply_changes(assignment, data)
    db.session.commit()
    return jsonify(success(assignment.to_dict())), 200


@assignments_bp.route("/<uuid:assignment_id>", methods=["DELETE"])
@roles_required(*EDITOR_ROLES)
def delete_assignment(assignment_id):
    assignment = get_services().learning.get_assignment(assignment_id)
    _require_editor(assignment.course)
    db.session.delete(assignment)
    db.session.commit()
    return "", 204


@assignments_bp.route("/<uuid:assignment_id>/submit", methods=["POST"])
@jwt_required()
def submit(assignment_id):
    """
    Expects:
    {
        "content": {"text": "...", "answers": [...]}
    }
    """
    data = load_json(SubmissionSchema())
    submission = get_services().learning.submit_assignment(
        current_user, assignment_id, data["content"]
    )
    return jsonify(success(submission.to_dict())), 201


@assignments_bp.route("/<uuid:assignment_id>/submissions", methods=["GET"])
@roles_required(*EDITOR_ROLES)
def list_submissions(assignment_id):
    learning = get_services().learning
    _require_editor(learning.get_assignment(assignment_id).course)
    submissions = learning.submissions_for(assignment_id)
    return jsonify(
        success(
            [{**s.to_dict(), "user": s.user.to_public_dict()} for s in submissions],
            results=len(submissions),
        )
    ), 200


@assignments_bp.route("/submissions/me", methods=["GET"])
@jwt_required()
def my_submissions():
    submissions = get_services().learning.submissions_of(current_user)
    return jsonify(
        success(
            [{**s.to_dict(), "assignment": s.assignment.to_dict(["title", "points"])}
             for s in submissions],
            results=len(submissions),
        )
    ), 200


@assignments_bp.route("/submissions/<uuid:submission_id>/grade", methods=["POST"])
@roles_required(*EDITOR_ROLES)
def grade(submission_id):
    """
    Expects:
    {
        "score": 85,
        "feedback": "optional"
    }
    """
    data = load_json(GradeSchema())
    submission = db.session.get(Submission, submission_id)
    if submission is None:
        raise NotFoundError("Submission")
    _require_editor(submission.assignment.course)
    submission = get_services().learning.grade_submission(
        current_user, submission_id, data["score"], data.get("feedback")
    )
    return jsonify(success(submission.to_dict())), 200


@assignments_bp.route("/submissions/<uuid:submission_id>/regrade", methods=["POST"])
@jwt_required()
def regrade(submission_id):
    data = load_json(RegradeSchema())
    submission = get_services().learning.request_regrade(
        current_user, submission_id, data["reason"]
    )
    return jsonify(success(submission.to_dict(), message="Regrade requested")), 200
